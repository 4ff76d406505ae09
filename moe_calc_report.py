#!/usr/bin/env python3
"""
Headless report for the MoE calculators.

Runs the parameter or speed calculator without the web UI, prints the
rendered report to stdout and optionally writes the result rows to CSV.
Inputs come from a JSON config (keys are the form-field names) and/or flags;
flags win over the config, presets fill whatever is still missing.

Examples:
  python moe_calc_report.py params --config my_model_shapes.json --explain
  python moe_calc_report.py params --config shapes.json --active-experts 8 --output-csv params.csv
  python moe_calc_report.py speed --model deepseek --gpu1 rtx3090 --gpu2 rtx3090 --system-bw 80 --kv-cache 4
  python moe_calc_report.py speed --config rig.json --quant-bits 8

Shape lists in the params config may be a string ("[2048, 7168]\\n[7168]"),
a list of strings, or a list of dimension lists ([[2048, 7168], [7168]]).
"""

from __future__ import annotations

import argparse
import csv
import json
import sys
from pathlib import Path
from typing import List, Optional

from gradio_param_calculator import (
    PARAM_DEFAULTS,
    PARAM_INPUT_KEYS,
    SHARED_SCOPE_PER_LAYER,
    SHARED_SCOPE_TOTAL,
    compute_param_results,
    explanation_rows,
    render_param_explanation,
    render_param_summary,
    summary_rows,
)
from gradio_speed_calculator import (
    GPU_PRESETS,
    MODEL_PRESETS,
    SPEED_INPUT_KEYS,
    calculate_speed,
    gpu_preset_values,
    model_preset_values,
    render_speed_results,
)

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_BAD_CONFIG = 2

SHAPE_KEYS = [
    'embedding_shapes', 'pre_first_norms', 'dense_norms', 'dense_attn', 'dense_ffn',
    'shared_expert_tensors', 'moe_attn', 'moe_transitional', 'moe_shared_ffn', 'moe_experts',
]


class ConfigError(Exception):
    pass


def load_config(path: Optional[str]) -> dict:
    if path is None:
        return {}
    config_path = Path(path)
    try:
        config = json.loads(config_path.read_text())
    except OSError as e:
        raise ConfigError(f"cannot read config {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"config {config_path} is not valid JSON: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"config {config_path} must be a JSON object, got {type(config).__name__}")
    return config


def shape_text(value) -> str:
    """Turn a config shape entry into the multi-line text the parser expects"""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        # Not a shape list; counts as zero like any other malformed entry
        return ''
    if not isinstance(value, (list, tuple)):
        return str(value)
    lines = []
    for item in value:
        if isinstance(item, (list, tuple)):
            lines.append('[' + ', '.join(str(d) for d in item) + ']')
        else:
            lines.append(str(item))
    return '\n'.join(lines)


def write_rows_to_csv(rows: List[dict], fieldnames: List[str], output_csv: str) -> None:
    with open(output_csv, 'w', newline='') as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=fieldnames)
        writer.writeheader()
        for row in rows:
            writer.writerow({field: row.get(field, '') for field in fieldnames})


def build_param_inputs(args: argparse.Namespace, config: dict) -> dict:
    inputs = dict(PARAM_DEFAULTS) if args.defaults else {}
    for key in PARAM_INPUT_KEYS:
        if key in config:
            inputs[key] = shape_text(config[key]) if key in SHAPE_KEYS else config[key]
    unknown = sorted(set(config) - set(PARAM_INPUT_KEYS))
    if unknown:
        print(f"WARN: ignoring unknown config keys: {', '.join(unknown)}", file=sys.stderr)

    overrides = {
        'dense_layers': args.dense_layers,
        'moe_layers': args.moe_layers,
        'experts_per_layer': args.experts_per_layer,
        'active_experts': args.active_experts,
        'shared_expert_scope': args.shared_expert_scope,
    }
    for key, value in overrides.items():
        if value is not None:
            inputs[key] = value
    if args.has_shared_expert:
        inputs['has_shared_expert'] = True
    if args.experts_include_dim:
        inputs['experts_include_dim'] = True
    return inputs


def build_speed_inputs(args: argparse.Namespace, config: dict) -> dict:
    inputs = {}

    # Presets first, so the config and flags can override single fields
    model_key = args.model or config.get('model')
    if model_key:
        if model_key not in MODEL_PRESETS:
            raise ConfigError(f"unknown model preset '{model_key}' (choices: {', '.join(MODEL_PRESETS)})")
        inputs.update({k: v for k, v in model_preset_values(model_key).items() if v})
    for slot in ('gpu1', 'gpu2'):
        gpu_key = getattr(args, slot) or config.get(slot)
        if not gpu_key:
            continue
        if gpu_key not in GPU_PRESETS:
            raise ConfigError(f"unknown GPU preset '{gpu_key}' (choices: {', '.join(GPU_PRESETS)})")
        values = gpu_preset_values(gpu_key)
        if values is not None:
            inputs[f'{slot}_vram'], inputs[f'{slot}_bw'] = values

    for key in SPEED_INPUT_KEYS:
        if key in config:
            inputs[key] = config[key]
    for key in SPEED_INPUT_KEYS:
        value = getattr(args, key)
        if value is not None:
            inputs[key] = value
    return inputs


def run_params(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    results = compute_param_results(build_param_inputs(args, config))

    print(render_param_summary(results))
    if args.explain:
        print(render_param_explanation(results))

    if args.output_csv:
        rows = [{'code': code, 'title': title, 'value': value} for code, title, value in summary_rows(results)]
        if args.explain:
            rows += [{'code': code, 'title': title, 'value': value}
                     for code, title, value, _, _ in explanation_rows(results)]
        write_rows_to_csv(rows, ['code', 'title', 'value'], args.output_csv)
        print(f"Results written to: {args.output_csv}", file=sys.stderr)
    return EXIT_OK


def run_speed(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    results = calculate_speed(build_speed_inputs(args, config))

    print(render_speed_results(results))
    if 'error' in results:
        print(f"ERROR: {results.get('detail', results['error'])}", file=sys.stderr)
        return EXIT_INVALID_INPUT

    if args.output_csv:
        rows = [
            {'field': key, 'value': ' '.join(value) if isinstance(value, list) else value}
            for key, value in results.items()
        ]
        write_rows_to_csv(rows, ['field', 'value'], args.output_csv)
        print(f"Results written to: {args.output_csv}", file=sys.stderr)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Headless MoE parameter / speed report",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
    )
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('params', help="Parameter counts from tensor shapes")
    p.add_argument('--config', type=str, default=None, help="JSON file with shape lists and layer/expert counts")
    p.add_argument('--defaults', action='store_true', help="Start from the built-in example model instead of zeros")
    p.add_argument('--dense-layers', type=int, default=None)
    p.add_argument('--moe-layers', type=int, default=None)
    p.add_argument('--experts-per-layer', type=int, default=None)
    p.add_argument('--active-experts', type=int, default=None)
    p.add_argument('--has-shared-expert', action='store_true')
    p.add_argument('--shared-expert-scope', choices=[SHARED_SCOPE_PER_LAYER, SHARED_SCOPE_TOTAL], default=None)
    p.add_argument('--experts-include-dim', action='store_true',
                   help="Expert shapes already include the experts dimension")
    p.add_argument('--explain', action='store_true', help="Also print the formula breakdown")
    p.add_argument('--output-csv', type=str, default=None, help="Write result rows to this CSV file")
    p.set_defaults(func=run_params)

    s = sub.add_parser('speed', help="Bandwidth-bound tokens/s estimate")
    s.add_argument('--config', type=str, default=None, help="JSON file with hardware and model fields")
    s.add_argument('--model', choices=list(MODEL_PRESETS), default=None, help="Model preset")
    s.add_argument('--gpu1', choices=list(GPU_PRESETS), default=None, help="GPU 1 preset")
    s.add_argument('--gpu2', choices=list(GPU_PRESETS), default=None, help="GPU 2 preset")
    s.add_argument('--gpu1-vram', type=float, default=None, help="GB")
    s.add_argument('--gpu1-bw', type=float, default=None, help="GB/s")
    s.add_argument('--gpu2-vram', type=float, default=None, help="GB")
    s.add_argument('--gpu2-bw', type=float, default=None, help="GB/s")
    s.add_argument('--system-bw', type=float, default=None, help="GB/s")
    s.add_argument('--total-params', type=float, default=None)
    s.add_argument('--dense-params', type=float, default=None)
    s.add_argument('--moe-params', type=float, default=None, help="Active MoE params per token")
    s.add_argument('--kv-cache', type=float, default=None, help="GB")
    s.add_argument('--quant-bits', type=int, default=None)
    s.add_argument('--output-csv', type=str, default=None, help="Write result fields to this CSV file")
    s.set_defaults(func=run_speed)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_BAD_CONFIG


if __name__ == "__main__":
    raise SystemExit(main())
