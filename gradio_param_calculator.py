#!/usr/bin/env python3
"""
MoE Parameter Calculator (tensor shapes)

This tool computes exact parameter counts from per-layer tensor shapes:
- Dense layers, MoE layers, routed experts and an optional shared expert
- Total vs per-token active parameters
- Always-active share and routed-experts share of active parameters
- Total MLP and attention parameter counts

Notes:
- Shapes are entered as bracketed dimension groups, e.g. "[2048, 7168]",
  one or more per line. Each group contributes the product of its dims.
- Malformed dims count as 0 and never raise (the page keeps rendering while
  the user types).
- Letters in labels (A, B, C, ...) are the symbols used in the formulas.
"""

import math
import re

import gradio as gr

SHARED_SCOPE_PER_LAYER = 'per_layer'
SHARED_SCOPE_TOTAL = 'total'

_STRIP_SPACES_RE = re.compile(r"[\u00A0\u202F\u2009\s_]")
_STRIP_SEPARATORS_RE = re.compile(r"[,']")
_LEADING_INT_RE = re.compile(r"^\s*([+-]?[0-9]+)")
_GROUP_RE = re.compile(r"\[[^\]]*\]")
_TRUE_STRINGS = {'true', 'yes', 'on', '1'}

# Order of inputs as wired into the UI callbacks
PARAM_INPUT_KEYS = [
    'dense_layers', 'moe_layers',
    'embedding_shapes', 'pre_first_norms',
    'dense_norms', 'dense_attn', 'dense_ffn',
    'experts_per_layer', 'active_experts',
    'has_shared_expert', 'shared_expert_scope', 'shared_expert_tensors',
    'moe_attn', 'moe_transitional', 'moe_shared_ffn', 'moe_experts',
    'experts_include_dim',
]

# Single source of truth for defaults: a small 12-layer MoE (1 dense + 11 MoE)
PARAM_DEFAULTS = {
    'dense_layers': '1',
    'moe_layers': '11',
    'embedding_shapes': '[32000, 768]\n[32000, 768]',
    'pre_first_norms': '',
    'dense_norms': '[768]\n[768]',
    'dense_attn': '[768, 1152]\n[768, 768]\n[128]\n[128]',
    'dense_ffn': '[768, 2048]\n[768, 2048]\n[2048, 768]',
    'experts_per_layer': '128',
    'active_experts': '2',
    'has_shared_expert': False,
    'shared_expert_scope': SHARED_SCOPE_PER_LAYER,
    'shared_expert_tensors': '',
    'moe_attn': '[768, 1152]\n[768, 768]\n[128]\n[128]',
    'moe_transitional': '[768]\n[768]\n[128, 768]',
    'moe_shared_ffn': '',
    'moe_experts': '[768, 128]\n[768, 128]\n[128, 768]',
    'experts_include_dim': False,
}


def format_count(num):
    """Format a count with en-US thousands separators (up to 3 decimals)"""
    num = num or 0
    if isinstance(num, float) and not num.is_integer():
        return f"{num:,.3f}".rstrip('0').rstrip('.')
    return f"{int(num):,}"


def parse_int(val, default=0):
    """Leading-integer parse; anything unparseable falls back to default"""
    if val is None:
        return default
    if isinstance(val, (bool, int)):
        return int(val)
    if isinstance(val, float):
        return int(val) if math.isfinite(val) else default
    m = _LEADING_INT_RE.match(str(val))
    return int(m.group(1)) if m else default


def parse_bool(val):
    """Checkbox value; strings count only when they spell a true value"""
    if isinstance(val, str):
        return val.strip().lower() in _TRUE_STRINGS
    return bool(val)


def normalize_num_str(s):
    """Drop spaces (incl. NBSP / narrow / thin), underscores, commas and apostrophes"""
    return _STRIP_SEPARATORS_RE.sub('', _STRIP_SPACES_RE.sub('', str(s)))


def parse_shape_group(group):
    """Product of the dims in one "[d0, d1, ...]" group; 0 if the group is empty"""
    content = re.sub(r"^[^\[]*\[", '', group, count=1)
    content = re.sub(r"\].*$", '', content, count=1)
    dims = [parse_int(normalize_num_str(d)) for d in re.split(r"\s*,\s*", content) if d]
    if not dims:
        return 0
    product = 1
    for d in dims:
        product *= d
    return product


def sum_shapes(text):
    """Sum of the products of every shape group in a (multi-line) shape list"""
    if not text:
        return 0
    total = 0
    for raw_line in re.split(r"\r?\n", str(text)):
        line = raw_line.strip()
        if not line:
            continue
        groups = _GROUP_RE.findall(line)
        if groups:
            for g in groups:
                total += parse_shape_group(g)
        else:
            # Bare "a, b, c" line is treated as one group
            total += parse_shape_group('[' + line + ']')
    return total


def compute_param_results(inputs):
    """
    Aggregate dense / MoE / shared-expert parameter counts.

    Args:
        inputs: dict keyed by PARAM_INPUT_KEYS; missing keys default to 0 / ''

    Returns:
        Flat dict of per-section counts, totals and percentages. Never raises
        for malformed values.
    """
    # Integers with safe defaults
    dense_layers = parse_int(inputs.get('dense_layers'))
    moe_layers = parse_int(inputs.get('moe_layers'))
    experts_per = parse_int(inputs.get('experts_per_layer'))
    active_experts = parse_int(inputs.get('active_experts'))
    experts_include_dim = parse_bool(inputs.get('experts_include_dim'))
    has_shared = parse_bool(inputs.get('has_shared_expert'))
    shared_scope = inputs.get('shared_expert_scope') or SHARED_SCOPE_PER_LAYER
    per_layer_scope = shared_scope == SHARED_SCOPE_PER_LAYER

    # Shapes -> counts (D, E)
    embed_count = sum_shapes(inputs.get('embedding_shapes'))
    pre_first_count = sum_shapes(inputs.get('pre_first_norms'))

    # Dense layer (F, G, H)
    d_norms = sum_shapes(inputs.get('dense_norms'))
    d_attn = sum_shapes(inputs.get('dense_attn'))
    d_ffn = sum_shapes(inputs.get('dense_ffn'))
    d_per_layer = d_norms + d_attn + d_ffn  # AA

    # MoE layer (N, O, S, T)
    m_attn = sum_shapes(inputs.get('moe_attn'))
    m_norms_trans = sum_shapes(inputs.get('moe_transitional'))
    m_shared_ffn = sum_shapes(inputs.get('moe_shared_ffn'))
    m_experts_input = sum_shapes(inputs.get('moe_experts'))

    # Shared expert (M)
    shared_expert_params = sum_shapes(inputs.get('shared_expert_tensors')) if has_shared else 0
    if not has_shared:
        shared_per_layer = 0
    elif per_layer_scope:
        shared_per_layer = shared_expert_params
    else:
        shared_per_layer = shared_expert_params / moe_layers if moe_layers > 0 else 0

    m_always_per_layer = m_norms_trans + m_attn + m_shared_ffn + shared_per_layer  # AC

    dense_total = dense_layers * d_per_layer  # AB
    experts_per_layer_total = m_experts_input if experts_include_dim else m_experts_input * experts_per  # AD
    moe_expert_total = moe_layers * experts_per_layer_total  # AR
    if not has_shared:
        shared_expert_total = 0
    elif per_layer_scope:
        shared_expert_total = moe_layers * shared_expert_params
    else:
        shared_expert_total = shared_expert_params
    moe_total = moe_layers * m_always_per_layer + moe_expert_total  # AE

    dense_active = embed_count + pre_first_count + dense_total  # AI
    total_params = dense_active + moe_total  # AJ

    active_experts_clamped = max(0, min(active_experts, experts_per))
    if experts_include_dim:
        experts_active_per_layer = m_experts_input * (active_experts_clamped / experts_per) if experts_per > 0 else 0
    else:
        experts_active_per_layer = m_experts_input * active_experts_clamped
    moe_active = moe_layers * (m_always_per_layer + experts_active_per_layer)  # AF
    total_active = dense_active + moe_active  # AK

    dense_active_pct = 100 * dense_active / total_active if total_active > 0 else 0
    moe_active_pct = 100 * moe_active / total_active if total_active > 0 else 0
    moe_inactive_per_token = moe_layers * max(0, experts_per_layer_total - experts_active_per_layer)  # AH
    total_mlp = dense_layers * d_ffn + moe_layers * (m_shared_ffn + experts_per_layer_total) + shared_expert_total  # AO
    total_attn = dense_layers * d_attn + moe_layers * m_attn  # AP

    moe_always_total = moe_layers * m_always_per_layer  # AG
    total_always_active = dense_active + moe_always_total  # AL
    always_active_pct = 100 * total_always_active / total_active if total_active > 0 else 0  # AM
    moe_experts_only = max(0, moe_active - moe_always_total)
    moe_experts_pct = 100 * moe_experts_only / total_active if total_active > 0 else 0  # AN
    moe_experts_active = moe_layers * experts_active_per_layer  # AQ

    return {
        # inputs
        'dense_layers': dense_layers,
        'moe_layers': moe_layers,
        'experts_per_layer': experts_per,
        'active_experts': active_experts,
        'experts_include_dim': experts_include_dim,
        'has_shared_expert': has_shared,
        'shared_expert_scope': shared_scope,
        # per-section counts
        'embed_count': embed_count,
        'pre_first_count': pre_first_count,
        'dense_norms': d_norms,
        'dense_attn': d_attn,
        'dense_ffn': d_ffn,
        'dense_per_layer': d_per_layer,
        'moe_attn': m_attn,
        'moe_norms_trans': m_norms_trans,
        'moe_shared_ffn': m_shared_ffn,
        'moe_experts_input': m_experts_input,
        'shared_expert_params': shared_expert_params,
        'shared_per_layer': shared_per_layer,
        'moe_always_per_layer': m_always_per_layer,
        # totals
        'dense_total': dense_total,
        'experts_per_layer_total': experts_per_layer_total,
        'moe_expert_total': moe_expert_total,
        'shared_expert_total': shared_expert_total,
        'moe_total': moe_total,
        'total_params': total_params,
        'dense_active': dense_active,
        'active_experts_clamped': active_experts_clamped,
        'experts_active_per_layer': experts_active_per_layer,
        'moe_active': moe_active,
        'total_active': total_active,
        'dense_active_pct': dense_active_pct,
        'moe_active_pct': moe_active_pct,
        'moe_inactive_per_token': moe_inactive_per_token,
        'total_mlp': total_mlp,
        'total_attn': total_attn,
        'moe_always_total': moe_always_total,
        'total_always_active': total_always_active,
        'always_active_pct': always_active_pct,
        'moe_experts_only': moe_experts_only,
        'moe_experts_pct': moe_experts_pct,
        'moe_experts_active': moe_experts_active,
        # derived display
        'total_layers': dense_layers + moe_layers,
    }


def summary_rows(r):
    """(code, title, value) rows of the summary table"""
    return [
        ('AJ', 'Exact total param count', format_count(r['total_params'])),
        ('AK', 'Exact active param count', format_count(r['total_active'])),
        ('AL', 'Total always-active param count', format_count(r['total_always_active'])),
        ('AM', 'Always-active share of active (%)', f"{r['always_active_pct']:.4f}%"),
        ('AQ', 'MoE active param count', format_count(r['moe_experts_active'])),
        ('AN', 'MoE share of active (%)', f"{r['moe_experts_pct']:.4f}%"),
        ('AR', 'Total MoE param count (excluding shared expert)', format_count(r['moe_expert_total'])),
        ('AO', 'Total MLP param count', format_count(r['total_mlp'])),
        ('AH', 'MoE inactive per token count', format_count(r['moe_inactive_per_token'])),
        ('AP', 'Total attention param count', format_count(r['total_attn'])),
    ]


def render_param_summary(r):
    output = "## Results\n\n"
    output += "| Metric | Value |\n"
    output += "|---|---:|\n"
    for _, title, value in summary_rows(r):
        output += f"| {title} | {value} |\n"
    return output


def explanation_rows(r):
    """
    (code, title, value, letters_eq, numeric_eq) rows, one per derived quantity.

    The lettered formula uses the symbols from the input labels; the numeric
    formula substitutes the actual counts.
    """
    f = format_count
    include_dim = r['experts_include_dim']
    has_shared = r['has_shared_expert']
    per_layer_scope = r['shared_expert_scope'] == SHARED_SCOPE_PER_LAYER
    clamped = f(r['active_experts_clamped'])
    rows = []

    rows.append((
        'AA', 'Dense layer(s) per-layer params', f(r['dense_per_layer']),
        'F + G + H = AA',
        f"{f(r['dense_norms'])} + {f(r['dense_attn'])} + {f(r['dense_ffn'])} = {f(r['dense_per_layer'])}",
    ))

    rows.append((
        'AB', 'Dense layer(s) total params', f(r['dense_total']),
        'AA × B = AB',
        f"{f(r['dense_per_layer'])} × {f(r['dense_layers'])} = {f(r['dense_total'])}",
    ))

    if not has_shared:
        ac_letters = 'N + O + S = AC'
    elif per_layer_scope:
        ac_letters = 'N + O + S + M = AC'
    else:
        ac_letters = 'N + O + S + M/C = AC'
    rows.append((
        'AC', 'MoE layers always-active per-layer params', f(r['moe_always_per_layer']),
        ac_letters,
        f"{f(r['moe_attn'])} + {f(r['moe_norms_trans'])} + {f(r['moe_shared_ffn'])} + "
        f"{f(r['shared_per_layer'])} = {f(r['moe_always_per_layer'])}",
    ))

    if include_dim:
        ad_num = f"{f(r['moe_experts_input'])} = {f(r['experts_per_layer_total'])}"
    else:
        ad_num = f"{f(r['moe_experts_input'])} × {f(r['experts_per_layer'])} = {f(r['experts_per_layer_total'])}"
    rows.append((
        'AD', 'MoE experts per-layer params', f(r['experts_per_layer_total']),
        'T = AD' if include_dim else 'T × I = AD',
        ad_num,
    ))

    rows.append((
        'AE', 'MoE layers total params', f(r['moe_total']),
        'C × (AC + AD) = AE',
        f"{f(r['moe_layers'])} × ({f(r['moe_always_per_layer'])} + {f(r['experts_per_layer_total'])}) = {f(r['moe_total'])}",
    ))

    if include_dim and r['experts_per_layer'] > 0:
        active_num = f"{f(r['moe_experts_input'])} × ({clamped} ÷ {f(r['experts_per_layer'])})"
        active_letters = 'T × (min(J, I) ÷ I)'
    elif include_dim:
        active_num = f"{f(r['moe_experts_input'])} × 0"
        active_letters = 'T × 0'
    else:
        active_num = f"{f(r['moe_experts_input'])} × {clamped}"
        active_letters = 'T × min(J, I)'
    rows.append((
        'AF', 'MoE layers total active params', f(r['moe_active']),
        f"C × (AC + {active_letters}) = AF",
        f"{f(r['moe_layers'])} × ({f(r['moe_always_per_layer'])} + {active_num}) = {f(r['moe_active'])}",
    ))

    rows.append((
        'AG', 'MoE layers total always-active params', f(r['moe_always_total']),
        'C × AC = AG',
        f"{f(r['moe_layers'])} × {f(r['moe_always_per_layer'])} = {f(r['moe_always_total'])}",
    ))

    if include_dim:
        ah_letters = 'C × T × (1 − (min(J, I) ÷ I)) = AH'
        ah_num = (f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} × (1 − ({clamped} ÷ "
                  f"{f(r['experts_per_layer'])})) = {f(r['moe_inactive_per_token'])}")
    else:
        ah_letters = 'C × T × (I − min(J, I)) = AH'
        ah_num = (f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} × ({f(r['experts_per_layer'])} − "
                  f"{clamped}) = {f(r['moe_inactive_per_token'])}")
    rows.append(('AH', 'MoE inactive per token param count', f(r['moe_inactive_per_token']), ah_letters, ah_num))

    rows.append((
        'AI', 'Dense layer(s) active param count', f(r['dense_active']),
        'D + E + AB = AI',
        f"{f(r['embed_count'])} + {f(r['pre_first_count'])} + {f(r['dense_total'])} = {f(r['dense_active'])}",
    ))

    rows.append((
        'AJ', 'Exact total param count', f(r['total_params']),
        'AI + AE = AJ',
        f"{f(r['dense_active'])} + {f(r['moe_total'])} = {f(r['total_params'])}",
    ))

    rows.append((
        'AK', 'Total active param count', f(r['total_active']),
        'AI + AF = AK',
        f"{f(r['dense_active'])} + {f(r['moe_active'])} = {f(r['total_active'])}",
    ))

    rows.append((
        'AL', 'Total always-active param count', f(r['total_always_active']),
        'AI + AG = AL',
        f"{f(r['dense_active'])} + {f(r['moe_always_total'])} = {f(r['total_always_active'])}",
    ))

    rows.append((
        'AM', 'Always-active share of active (%)', f"{r['always_active_pct']:.4f}",
        'AL ÷ AK × 100 = AM',
        f"{f(r['total_always_active'])} ÷ {f(r['total_active'])} × 100 = {r['always_active_pct']:.4f}%",
    ))

    rows.append((
        'AN', 'MoE share of active (%)', f"{r['moe_experts_pct']:.4f}",
        '(AF − AG) ÷ AK × 100 = AN',
        f"({f(r['moe_active'])} − {f(r['moe_always_total'])}) ÷ {f(r['total_active'])} × 100 = {r['moe_experts_pct']:.4f}%",
    ))

    if not has_shared:
        shared_letters = ''
    elif per_layer_scope:
        shared_letters = ' + C × M'
    else:
        shared_letters = ' + M'
    ao_num = (f"{f(r['dense_layers'])} × {f(r['dense_ffn'])} + {f(r['moe_layers'])} × {f(r['moe_shared_ffn'])} + "
              f"{f(r['moe_layers'])} × {f(r['experts_per_layer_total'])}")
    if has_shared:
        ao_num += f" + {f(r['shared_expert_total'])}"
    ao_num += f" = {f(r['total_mlp'])}"
    rows.append(('AO', 'Total MLP param count', f(r['total_mlp']), f"B × H + C × S + C × AD{shared_letters} = AO", ao_num))

    rows.append((
        'AP', 'Total attention param count', f(r['total_attn']),
        'B × G + C × N = AP',
        f"{f(r['dense_layers'])} × {f(r['dense_attn'])} + {f(r['moe_layers'])} × {f(r['moe_attn'])} = {f(r['total_attn'])}",
    ))

    # Experts-only rows that otherwise only appear in the summary
    if include_dim:
        aq_letters = 'C × T × (min(J, I) ÷ I) = AQ'
        aq_num = (f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} × ({clamped} ÷ {f(r['experts_per_layer'])}) = "
                  f"{f(r['moe_experts_active'])}")
        ar_letters = 'C × T = AR'
        ar_num = f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} = {f(r['moe_expert_total'])}"
    else:
        aq_letters = 'C × T × min(J, I) = AQ'
        aq_num = f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} × {clamped} = {f(r['moe_experts_active'])}"
        ar_letters = 'C × T × I = AR'
        ar_num = (f"{f(r['moe_layers'])} × {f(r['moe_experts_input'])} × {f(r['experts_per_layer'])} = "
                  f"{f(r['moe_expert_total'])}")
    rows.append(('AQ', 'MoE experts active param count', f(r['moe_experts_active']), aq_letters, aq_num))
    rows.append(('AR', 'MoE experts total param count', f(r['moe_expert_total']), ar_letters, ar_num))

    return rows


def render_param_explanation(r):
    output = "## Explanation\n\n"
    output += "| Code | Quantity | Value | Formula | Numbers |\n"
    output += "|---|---|---:|---|---|\n"
    for code, title, value, letters_eq, numeric_eq in explanation_rows(r):
        output += f"| {code} | {title} | {value} | {letters_eq} | {numeric_eq} |\n"
    return output


def build_param_calculator():
    """Lay out the parameter calculator inside the current gr.Blocks context"""
    d = PARAM_DEFAULTS

    with gr.Row():
        # Layers
        with gr.Column():
            gr.Markdown("### 🏗️ Layers & Embeddings")
            total_layers = gr.Textbox(label="A: Total layers (B + C)", interactive=False,
                                      value=str(parse_int(d['dense_layers']) + parse_int(d['moe_layers'])))
            dense_layers = gr.Textbox(label="B: Dense layers", value=d['dense_layers'])
            moe_layers = gr.Textbox(label="C: MoE layers", value=d['moe_layers'])
            embedding_shapes = gr.Textbox(label="D: Embedding / LM head shapes", value=d['embedding_shapes'], lines=3,
                                          placeholder="[vocab, hidden]")
            pre_first_norms = gr.Textbox(label="E: Norms before first layer", value=d['pre_first_norms'], lines=2)

        # Dense layer
        with gr.Column():
            gr.Markdown("### 🧱 Dense Layer (per layer)")
            dense_norms = gr.Textbox(label="F: Norms", value=d['dense_norms'], lines=3)
            dense_attn = gr.Textbox(label="G: Attention", value=d['dense_attn'], lines=4)
            dense_ffn = gr.Textbox(label="H: FFN", value=d['dense_ffn'], lines=3)

        # MoE layer
        with gr.Column():
            gr.Markdown("### 🎯 MoE Layer (per layer)")
            experts_per_layer = gr.Textbox(label="I: Experts per layer", value=d['experts_per_layer'])
            active_experts = gr.Textbox(label="J: Active experts per token", value=d['active_experts'])
            moe_attn = gr.Textbox(label="N: Attention", value=d['moe_attn'], lines=4)
            moe_transitional = gr.Textbox(label="O: Norms / router (transitional)", value=d['moe_transitional'], lines=3)
            moe_shared_ffn = gr.Textbox(label="S: Always-on FFN", value=d['moe_shared_ffn'], lines=2)
            moe_experts = gr.Textbox(label="T: Expert tensors (one expert)", value=d['moe_experts'], lines=3)
            experts_include_dim = gr.Checkbox(label="Expert shapes already include the experts dimension",
                                              value=d['experts_include_dim'])

        # Shared expert
        with gr.Column():
            gr.Markdown("### 🤝 Shared Expert")
            has_shared_expert = gr.Checkbox(label="Model has a shared expert", value=d['has_shared_expert'])
            shared_expert_scope = gr.Dropdown(
                choices=[("Per MoE layer", SHARED_SCOPE_PER_LAYER), ("Total across MoE layers", SHARED_SCOPE_TOTAL)],
                value=d['shared_expert_scope'],
                label="Shared expert shapes are",
                interactive=d['has_shared_expert'],
            )
            shared_expert_tensors = gr.Textbox(label="M: Shared expert tensors", value=d['shared_expert_tensors'],
                                               lines=3, interactive=d['has_shared_expert'])

    calculate_btn = gr.Button("Calculate", variant="primary")
    summary_output = gr.Markdown()
    explanation_output = gr.Markdown()

    inputs = [
        dense_layers, moe_layers,
        embedding_shapes, pre_first_norms,
        dense_norms, dense_attn, dense_ffn,
        experts_per_layer, active_experts,
        has_shared_expert, shared_expert_scope, shared_expert_tensors,
        moe_attn, moe_transitional, moe_shared_ffn, moe_experts,
        experts_include_dim,
    ]
    outputs = [summary_output, explanation_output, total_layers]

    def update_output(*args):
        r = compute_param_results(dict(zip(PARAM_INPUT_KEYS, args)))
        return render_param_summary(r), render_param_explanation(r), str(r['total_layers'])

    def update_shared_state(enabled):
        return gr.update(interactive=enabled), gr.update(interactive=enabled)

    # Live update
    for inp in inputs:
        inp.change(update_output, inputs=inputs, outputs=outputs)
    calculate_btn.click(update_output, inputs=inputs, outputs=outputs)

    has_shared_expert.change(
        update_shared_state,
        inputs=has_shared_expert,
        outputs=[shared_expert_scope, shared_expert_tensors]
    )

    return inputs, outputs, update_output


def main():
    with gr.Blocks(title="MoE Parameter Calculator", theme=gr.themes.Soft()) as demo:
        gr.Markdown("# 🧮 MoE Parameter Calculator")
        gr.Markdown("Exact total and active parameter counts from tensor shapes. "
                    "Enter one or more shape groups per line, e.g. `[2048, 7168]`.")

        inputs, outputs, update_output = build_param_calculator()

        # Initial load
        demo.load(update_output, inputs=inputs, outputs=outputs)

    return demo


if __name__ == "__main__":
    demo = main()
    demo.launch(server_name="0.0.0.0", server_port=7834, share=False)
