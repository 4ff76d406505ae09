"""
Unit tests for gradio_param_calculator: shape parsing, parameter aggregation
and the Markdown renderers.
"""

import pytest

from gradio_param_calculator import (
    compute_param_results,
    explanation_rows,
    format_count,
    normalize_num_str,
    parse_bool,
    parse_int,
    parse_shape_group,
    render_param_explanation,
    render_param_summary,
    sum_shapes,
)


class TestSumShapes:
    """Tests for sum_shapes() and its helpers."""

    def test_sum_shapes_when_groups_on_separate_lines_then_sums_products(self):
        assert sum_shapes("[2,3]\n[4]") == 10

    def test_sum_shapes_when_empty_or_none_then_zero(self):
        assert sum_shapes("") == 0
        assert sum_shapes(None) == 0

    def test_sum_shapes_when_non_numeric_dim_then_zero(self):
        assert sum_shapes("[abc]") == 0

    def test_sum_shapes_when_one_bad_dim_then_group_is_zero(self):
        # Arrange
        text = "[2048, oops]\n[4]"

        # Act
        result = sum_shapes(text)

        # Assert
        assert result == 4

    def test_sum_shapes_when_several_groups_on_one_line_then_all_counted(self):
        assert sum_shapes("[2, 3] [4, 5]  q_proj [10]") == 6 + 20 + 10

    def test_sum_shapes_when_bare_line_then_treated_as_one_group(self):
        assert sum_shapes("2, 3, 4") == 24

    def test_sum_shapes_when_windows_line_endings_then_parsed(self):
        assert sum_shapes("[2,3]\r\n[4]\r\n") == 10

    def test_sum_shapes_when_blank_lines_then_ignored(self):
        assert sum_shapes("\n   \n[7]\n\n") == 7

    def test_sum_shapes_when_empty_brackets_then_zero(self):
        assert sum_shapes("[]\n[5]") == 5

    def test_sum_shapes_when_thousands_separators_inside_dim_then_stripped(self):
        # Narrow no-break space, no-break space and underscore separators
        assert sum_shapes("[7\u202f168, 2\u00a0048]") == 7168 * 2048
        assert sum_shapes("[7_168]") == 7168
        assert sum_shapes("[7'168]") == 7168

    def test_sum_shapes_when_large_dims_then_exact(self):
        assert sum_shapes("[163840, 7168]\n[163840, 7168]") == 2 * 163840 * 7168

    def test_sum_shapes_when_non_ascii_digits_then_group_is_zero(self):
        # Arabic-Indic digits are not dimension digits
        assert sum_shapes("[\u0663, 4]\n[5]") == 5

    def test_parse_shape_group_when_text_around_brackets_then_ignored(self):
        assert parse_shape_group("weight: [3, 4] # bf16") == 12

    def test_parse_shape_group_when_empty_items_then_skipped(self):
        assert parse_shape_group("[2,,3]") == 6

    def test_parse_shape_group_when_trailing_garbage_on_dim_then_leading_int_used(self):
        assert parse_shape_group("[4096x, 2]") == 8192

    def test_normalize_num_str_strips_separators(self):
        assert normalize_num_str(" 1 000_000 ") == "1000000"
        assert normalize_num_str("1'000") == "1000"


class TestParseInt:
    """Tests for parse_int() lenient integer parsing."""

    @pytest.mark.parametrize("value, expected", [
        ("12", 12),
        (" 12 ", 12),
        ("12abc", 12),
        ("1.9", 1),
        ("-3", -3),
        ("abc", 0),
        ("", 0),
        (None, 0),
        (7, 7),
        (7.8, 7),
        (float('nan'), 0),
        (True, 1),
        ("\u0663", 0),
        ("\u0661\u0662", 0),
    ])
    def test_parse_int_when_value_then_expected(self, value, expected):
        assert parse_int(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (True, True),
        (False, False),
        (None, False),
        (1, True),
        (0, False),
        ("true", True),
        (" Yes ", True),
        ("on", True),
        ("1", True),
        ("false", False),
        ("0", False),
        ("off", False),
        ("", False),
    ])
    def test_parse_bool_when_value_then_expected(self, value, expected):
        assert parse_bool(value) is expected


class TestComputeParamResults:
    """Tests for compute_param_results()."""

    def test_compute_when_small_moe_then_expected_totals(self, moe_param_inputs):
        # Act
        r = compute_param_results(moe_param_inputs)

        # Assert
        assert r['dense_per_layer'] == 420
        assert r['dense_active'] == 1430
        assert r['moe_always_per_layer'] == 150
        assert r['experts_per_layer_total'] == 400
        assert r['moe_expert_total'] == 800
        assert r['moe_total'] == 1100
        assert r['total_params'] == 2530
        assert r['experts_active_per_layer'] == 200
        assert r['moe_active'] == 700
        assert r['total_active'] == 2130
        assert r['moe_inactive_per_token'] == 400
        assert r['total_mlp'] == 1100
        assert r['total_attn'] == 300
        assert r['moe_experts_active'] == 400
        assert r['total_layers'] == 3

    def test_compute_when_small_moe_then_percentages(self, moe_param_inputs):
        r = compute_param_results(moe_param_inputs)

        assert r['always_active_pct'] == pytest.approx(100 * 1730 / 2130)
        assert r['moe_experts_pct'] == pytest.approx(100 * 400 / 2130)
        assert r['dense_active_pct'] + r['moe_active_pct'] == pytest.approx(100)
        assert r['always_active_pct'] + r['moe_experts_pct'] == pytest.approx(100)

    @pytest.mark.parametrize("overrides", [
        {},
        {'has_shared_expert': True, 'shared_expert_tensors': '[10, 6]'},
        {'has_shared_expert': True, 'shared_expert_tensors': '[10, 6]', 'shared_expert_scope': 'total'},
        {'experts_include_dim': True, 'moe_experts': '[4, 10, 5]\n[4, 5, 10]'},
        {'dense_layers': '0', 'moe_layers': '0'},
        {'active_experts': '99'},
    ])
    def test_compute_when_any_input_then_total_is_dense_active_plus_moe_total(self, moe_param_inputs, overrides):
        # Arrange
        moe_param_inputs.update(overrides)

        # Act
        r = compute_param_results(moe_param_inputs)

        # Assert
        assert r['total_params'] == r['dense_active'] + r['moe_total']
        assert r['total_active'] == r['dense_active'] + r['moe_active']

    def test_compute_when_active_exceeds_experts_then_same_as_all_active(self, moe_param_inputs):
        # Arrange
        over = dict(moe_param_inputs, active_experts='9')
        exact = dict(moe_param_inputs, active_experts='4')

        # Act
        r_over = compute_param_results(over)
        r_exact = compute_param_results(exact)

        # Assert
        r_over.pop('active_experts')
        r_exact.pop('active_experts')
        assert r_over == r_exact
        assert r_over['active_experts_clamped'] == 4
        assert r_over['moe_inactive_per_token'] == 0

    def test_compute_when_negative_active_experts_then_clamped_to_zero(self, moe_param_inputs):
        r = compute_param_results(dict(moe_param_inputs, active_experts='-2'))

        assert r['active_experts_clamped'] == 0
        assert r['experts_active_per_layer'] == 0
        assert r['moe_active'] == r['moe_always_total']

    def test_compute_when_experts_include_dim_then_active_share_is_fraction(self, moe_param_inputs):
        # Arrange
        moe_param_inputs.update({'experts_include_dim': True, 'moe_experts': '[4, 10, 5]\n[4, 5, 10]'})

        # Act
        r = compute_param_results(moe_param_inputs)

        # Assert
        assert r['experts_per_layer_total'] == 400
        assert r['experts_active_per_layer'] == pytest.approx(200)
        assert r['total_params'] == 2530
        assert r['total_active'] == pytest.approx(2130)

    def test_compute_when_experts_include_dim_and_zero_experts_then_no_active_experts(self, moe_param_inputs):
        moe_param_inputs.update({'experts_include_dim': True, 'experts_per_layer': '0'})

        r = compute_param_results(moe_param_inputs)

        assert r['experts_active_per_layer'] == 0
        assert r['experts_per_layer_total'] == 100

    def test_compute_when_shared_expert_per_layer_then_counted_every_moe_layer(self, moe_param_inputs):
        moe_param_inputs.update({'has_shared_expert': True, 'shared_expert_tensors': '[10, 6]'})

        r = compute_param_results(moe_param_inputs)

        assert r['shared_expert_params'] == 60
        assert r['shared_per_layer'] == 60
        assert r['moe_always_per_layer'] == 210
        assert r['shared_expert_total'] == 120
        assert r['moe_total'] == 1220
        assert r['total_mlp'] == 1220

    def test_compute_when_shared_expert_total_scope_then_spread_over_moe_layers(self, moe_param_inputs):
        moe_param_inputs.update({
            'has_shared_expert': True,
            'shared_expert_tensors': '[10, 6]',
            'shared_expert_scope': 'total',
        })

        r = compute_param_results(moe_param_inputs)

        assert r['shared_per_layer'] == pytest.approx(30)
        assert r['shared_expert_total'] == 60
        assert r['moe_total'] == pytest.approx(1160)
        assert r['total_mlp'] == 1160

    def test_compute_when_shared_expert_unchecked_then_tensors_ignored(self, moe_param_inputs):
        moe_param_inputs.update({'has_shared_expert': False, 'shared_expert_tensors': '[10, 6]'})

        r = compute_param_results(moe_param_inputs)

        assert r['shared_expert_params'] == 0
        assert r['total_params'] == 2530

    def test_compute_when_checkbox_values_are_false_strings_then_flags_off(self, moe_param_inputs):
        # Arrange
        moe_param_inputs.update({
            'has_shared_expert': 'false',
            'shared_expert_tensors': '[10, 6]',
            'experts_include_dim': 'false',
        })

        # Act
        r = compute_param_results(moe_param_inputs)

        # Assert
        assert r['has_shared_expert'] is False
        assert r['experts_include_dim'] is False
        assert r['total_params'] == 2530

    def test_compute_when_checkbox_value_is_true_string_then_flag_on(self, moe_param_inputs):
        moe_param_inputs.update({'has_shared_expert': 'true', 'shared_expert_tensors': '[10, 6]'})

        r = compute_param_results(moe_param_inputs)

        assert r['shared_expert_params'] == 60

    def test_compute_when_total_scope_and_zero_moe_layers_then_no_division_error(self, moe_param_inputs):
        moe_param_inputs.update({
            'moe_layers': '0',
            'has_shared_expert': True,
            'shared_expert_tensors': '[10, 6]',
            'shared_expert_scope': 'total',
        })

        r = compute_param_results(moe_param_inputs)

        assert r['shared_per_layer'] == 0
        assert r['moe_total'] == 0

    def test_compute_when_empty_input_then_all_zero(self):
        # Act
        r = compute_param_results({})

        # Assert
        assert r['total_params'] == 0
        assert r['total_active'] == 0
        assert r['always_active_pct'] == 0
        assert r['moe_experts_pct'] == 0
        assert r['shared_expert_scope'] == 'per_layer'

    def test_compute_when_garbage_input_then_never_raises(self):
        r = compute_param_results({
            'dense_layers': 'lots',
            'moe_layers': None,
            'experts_per_layer': '',
            'active_experts': 'all',
            'dense_attn': '[x, y]\n]]][[',
            'moe_experts': 'not a shape',
        })

        assert r['total_params'] == 0


class TestRendering:
    """Tests for the Markdown renderers."""

    def test_format_count_when_integer_then_thousands_separators(self):
        assert format_count(1026470731056) == "1,026,470,731,056"
        assert format_count(0) == "0"
        assert format_count(None) == "0"
        assert format_count(12.0) == "12"

    def test_format_count_when_fraction_then_three_decimals_max(self):
        assert format_count(1234.56789) == "1,234.568"
        assert format_count(0.5) == "0.5"

    def test_render_summary_when_results_then_table_with_totals(self, moe_param_inputs):
        r = compute_param_results(moe_param_inputs)

        output = render_param_summary(r)

        assert "| Exact total param count | 2,530 |" in output
        assert "| Exact active param count | 2,130 |" in output
        assert f"{100 * 1730 / 2130:.4f}%" in output

    def test_render_explanation_when_results_then_every_code_present(self, moe_param_inputs):
        r = compute_param_results(moe_param_inputs)

        output = render_param_explanation(r)
        codes = [row[0] for row in explanation_rows(r)]

        assert codes == ['AA', 'AB', 'AC', 'AD', 'AE', 'AF', 'AG', 'AH', 'AI', 'AJ',
                         'AK', 'AL', 'AM', 'AN', 'AO', 'AP', 'AQ', 'AR']
        assert "AI + AE = AJ" in output
        assert "1,430 + 1,100 = 2,530" in output

    @pytest.mark.parametrize("overrides, expected", [
        ({}, 'N + O + S = AC'),
        ({'has_shared_expert': True}, 'N + O + S + M = AC'),
        ({'has_shared_expert': True, 'shared_expert_scope': 'total'}, 'N + O + S + M/C = AC'),
    ])
    def test_explanation_when_shared_expert_variant_then_formula_matches(self, moe_param_inputs, overrides, expected):
        moe_param_inputs.update(overrides)

        rows = {row[0]: row for row in explanation_rows(compute_param_results(moe_param_inputs))}

        assert rows['AC'][3] == expected

    def test_explanation_when_experts_include_dim_then_fractional_formulas(self, moe_param_inputs):
        moe_param_inputs.update({'experts_include_dim': True})

        rows = {row[0]: row for row in explanation_rows(compute_param_results(moe_param_inputs))}

        assert rows['AD'][3] == 'T = AD'
        assert rows['AQ'][3] == 'C × T × (min(J, I) ÷ I) = AQ'
        assert rows['AR'][3] == 'C × T = AR'
