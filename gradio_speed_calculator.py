#!/usr/bin/env python3
"""
MoE Token Speed Calculator (bandwidth-bound)

This tool estimates decode speed for a MoE model split across:
- GPU 1: always-active dense weights + KV cache
- GPU 2: as much of the MoE expert pool as fits in its VRAM
- System RAM: the rest of the expert pool

Per token, the dense+KV weights are read once from GPU 1 and the active
expert weights are read from GPU 2 / system RAM in proportion to where the
expert pool lives. The three reads are serial, so

    ms/token = dense_kv_ms + gpu2_moe_ms + system_moe_ms
    tokens/s = 1000 / ms/token

Notes:
- Bandwidth-bound only; compute, PCIe transfers and kernel overheads ignored
- 1 GB = 1e9 bytes (vendor convention for VRAM and bandwidth)
- A zero bandwidth makes its path infinitely slow, unless nothing has to be
  read over that path
"""

import math
import re

import gradio as gr

VALIDATION_MESSAGE = "Please fill in all fields with valid (non-negative) numbers before calculating."

NUM_BYTES_IN_GB = 1e9
MS_PER_SECOND = 1000

QUANTIZATION_BITS = [2, 3, 4, 5, 6, 8, 16]
DEFAULT_QUANT_BITS = 4

# GPU presets: VRAM in GB and memory bandwidth in GB/s (vendor datasheets).
# Ordered by vendor (NVIDIA, AMD, Intel), then consumer / workstation /
# datacenter, then release year.
GPU_PRESETS = {
    'custom': {'name': 'Custom (enter your own values)', 'vram': None, 'bw': None},
    # NVIDIA consumer
    'rtx3090': {'name': 'NVIDIA GeForce RTX 3090 (24 GB, 936 GB/s)', 'vram': 24, 'bw': 936},
    'rtx4060ti': {'name': 'NVIDIA GeForce RTX 4060 Ti (16 GB, 288 GB/s)', 'vram': 16, 'bw': 288},
    'rtx4070': {'name': 'NVIDIA GeForce RTX 4070 (12 GB, 504 GB/s)', 'vram': 12, 'bw': 504},
    'rtx4090': {'name': 'NVIDIA GeForce RTX 4090 (24 GB, 1008 GB/s)', 'vram': 24, 'bw': 1008},
    'rtx5090': {'name': 'NVIDIA GeForce RTX 5090 (32 GB, 1792 GB/s)', 'vram': 32, 'bw': 1792},
    # NVIDIA workstation
    'a6000': {'name': 'NVIDIA RTX A6000 (48 GB, 768 GB/s)', 'vram': 48, 'bw': 768},
    'a5000': {'name': 'NVIDIA RTX A5000 (24 GB, 768 GB/s)', 'vram': 24, 'bw': 768},
    'rtxpro6000': {'name': 'NVIDIA RTX Pro 6000 Blackwell (96 GB, 1792 GB/s)', 'vram': 96, 'bw': 1792},
    # NVIDIA datacenter
    'p40': {'name': 'NVIDIA P40 (24 GB, 346 GB/s)', 'vram': 24, 'bw': 346},
    'p100': {'name': 'NVIDIA P100 (16 GB, 732 GB/s)', 'vram': 16, 'bw': 732},
    'a100': {'name': 'NVIDIA A100 80GB (80 GB, 1940 GB/s)', 'vram': 80, 'bw': 1940},
    'h100': {'name': 'NVIDIA H100 80GB (80 GB, 2000 GB/s)', 'vram': 80, 'bw': 2000},
    'b200': {'name': 'NVIDIA B200 (192 GB, 8200 GB/s)', 'vram': 192, 'bw': 8200},
    # AMD consumer
    'radeonvii': {'name': 'AMD Radeon VII (16 GB, 1024 GB/s)', 'vram': 16, 'bw': 1024},
    'rx7900xtx': {'name': 'AMD Radeon RX 7900 XTX (24 GB, 960 GB/s)', 'vram': 24, 'bw': 960},
    # AMD datacenter
    'mi25': {'name': 'AMD Instinct MI25 (16 GB, 484 GB/s)', 'vram': 16, 'bw': 484},
    'mi50': {'name': 'AMD Instinct MI50 (32 GB, 1024 GB/s)', 'vram': 32, 'bw': 1024},
    'mi60': {'name': 'AMD Instinct MI60 (32 GB, 1024 GB/s)', 'vram': 32, 'bw': 1024},
    'mi100': {'name': 'AMD Instinct MI100 (32 GB, 1230 GB/s)', 'vram': 32, 'bw': 1230},
    'mi210': {'name': 'AMD Instinct MI210 (64 GB, 1640 GB/s)', 'vram': 64, 'bw': 1640},
    'mi250': {'name': 'AMD Instinct MI250 (128 GB, 3280 GB/s)', 'vram': 128, 'bw': 3280},
    # Intel consumer
    'arca770': {'name': 'Intel Arc A770 (16 GB, 560 GB/s)', 'vram': 16, 'bw': 560},
}

# Model presets: total params, always-active dense params per token and
# active MoE params per token
MODEL_PRESETS = {
    'custom': {'name': 'Custom', 'total_params': None, 'dense_params': None, 'moe_params': None},
    'kimi': {'name': 'Kimi-K2', 'total_params': 1026470731056,
             'dense_params': 11722775856, 'moe_params': 21140582400},
    'qwen': {'name': 'Qwen3-235B', 'total_params': 235044351488,
             'dense_params': 7947951616, 'moe_params': 14193524736},
    'deepseek': {'name': 'DeepSeek-R1-0528', 'total_params': 671026419200,
                 'dense_params': 14563317248, 'moe_params': 22988980224},
    'gpt-oss-120b': {'name': 'gpt-oss-120b', 'total_params': 116829156672,
                     'dense_params': 1548424512, 'moe_params': 3584424960},
    'glm-4.5-air': {'name': 'GLM 4.5 Air', 'total_params': 106852251264,
                    'dense_params': 6393421824, 'moe_params': 7030707840},
}

SPEED_INPUT_KEYS = [
    'gpu1_vram', 'gpu1_bw', 'gpu2_vram', 'gpu2_bw', 'system_bw',
    'total_params', 'dense_params', 'moe_params', 'kv_cache', 'quant_bits',
]

REQUIRED_SPEED_KEYS = SPEED_INPUT_KEYS[:8]


def format_number(num):
    """Format with en-US thousands separators"""
    if isinstance(num, float) and not num.is_integer():
        return f"{num:,.3f}".rstrip('0').rstrip('.')
    return f"{int(num):,}"


def format_float(value, decimals):
    """Fixed decimals with trailing zeros removed; infinity renders as ∞"""
    if math.isinf(value):
        return '∞' if value > 0 else '-∞'
    s = f"{value:.{decimals}f}"
    s = re.sub(r"\.0+$", '', s)
    return re.sub(r"(\.[0-9]*[1-9])0+$", r"\1", s)


def format_plain(value):
    """Echo a user-entered number without a trailing .0"""
    return format_float(value, 6)


def safe_float(val, default=0.0):
    """Safely convert to float, handling empty/None/invalid and non-strings"""
    if val is None:
        return default
    if isinstance(val, str):
        val = val.strip()
        if val == '' or val.lower() == 'none':
            return default
    try:
        result = float(val)
    except (ValueError, TypeError):
        raise ValueError(f"Invalid float value '{val}' (expected number, got non-numeric)")
    if not math.isfinite(result):
        raise ValueError(f"Invalid float value '{val}' (not finite)")
    return result


def model_preset_values(model_key):
    """
    Field values for a model preset.

    Returns a dict with total_params, dense_params, moe_params and kv_cache.
    A value of None means "leave the field as it is": named presets keep the
    current KV cache, while custom clears every field.
    """
    preset = MODEL_PRESETS.get(model_key)
    if preset is None or model_key == 'custom':
        return {'total_params': '', 'dense_params': '', 'moe_params': '', 'kv_cache': ''}
    return {
        'total_params': str(preset['total_params']),
        'dense_params': str(preset['dense_params']),
        'moe_params': str(preset['moe_params']),
        'kv_cache': None,
    }


def gpu_preset_values(gpu_key):
    """(vram, bw) for a GPU preset, or None to leave custom values unchanged"""
    preset = GPU_PRESETS.get(gpu_key)
    if preset is None or preset['vram'] is None:
        return None
    return str(preset['vram']), str(preset['bw'])


def _path_ms(load_gb, bandwidth):
    """Time to stream load_gb at bandwidth GB/s; infinite when bandwidth is 0"""
    if bandwidth > 0:
        return load_gb / bandwidth * MS_PER_SECOND
    return math.inf


def calculate_speed(inputs):
    """
    Bandwidth-bound per-token load time.

    Args:
        inputs: dict keyed by SPEED_INPUT_KEYS (strings or numbers)

    Returns:
        Result dict, or {'error': VALIDATION_MESSAGE} if a required field is
        missing, non-numeric or negative.
    """
    try:
        values = {}
        for key in REQUIRED_SPEED_KEYS:
            values[key] = safe_float(inputs.get(key), None)
            if values[key] is None or values[key] < 0:
                raise ValueError(f"{key} must be a non-negative number")
        try:
            kv_cache = safe_float(inputs.get('kv_cache'), 0.0)
        except ValueError:
            kv_cache = 0.0
        quant_bits = int(safe_float(inputs.get('quant_bits'), DEFAULT_QUANT_BITS))
        if quant_bits <= 0:
            raise ValueError("quant_bits must be positive")
    except ValueError as e:
        return {'error': VALIDATION_MESSAGE, 'detail': str(e)}

    gpu1_vram = values['gpu1_vram']
    gpu1_bw = values['gpu1_bw']
    gpu2_vram = values['gpu2_vram']
    gpu2_bw = values['gpu2_bw']
    system_bw = values['system_bw']
    total_params = values['total_params']
    dense_params = values['dense_params']
    active_moe_params = values['moe_params']

    # Derived sizes
    total_moe_params = max(total_params - dense_params, 0)
    bytes_per_param = quant_bits / 8.0

    dense_size_gb = dense_params * bytes_per_param / NUM_BYTES_IN_GB
    dense_kv_gb = dense_size_gb + kv_cache
    fits_on_gpu1 = dense_kv_gb <= gpu1_vram

    moe_total_gb = total_moe_params * bytes_per_param / NUM_BYTES_IN_GB
    moe_share = 0.0
    if moe_total_gb > 0 and gpu2_vram > 0:
        moe_share = min(1.0, gpu2_vram / moe_total_gb)
    system_share = 1 - moe_share
    active_moe_gb = active_moe_params * bytes_per_param / NUM_BYTES_IN_GB

    # Three serial reads per token
    gpu2_load_gb = moe_share * active_moe_gb
    system_load_gb = system_share * active_moe_gb
    dense_load_ms = _path_ms(dense_kv_gb, gpu1_bw)
    gpu2_moe_ms = _path_ms(gpu2_load_gb, gpu2_bw)
    system_moe_ms = _path_ms(system_load_gb, system_bw)

    # A path with nothing to read does not count, even at zero bandwidth
    path_ms = {
        'dense_load_ms': dense_load_ms,
        'gpu2_moe_ms': gpu2_moe_ms,
        'system_moe_ms': system_moe_ms,
    }
    counted_paths = [
        key for key, load_gb in (
            ('dense_load_ms', dense_kv_gb),
            ('gpu2_moe_ms', gpu2_load_gb),
            ('system_moe_ms', system_load_gb),
        )
        if load_gb > 0 or not math.isinf(path_ms[key])
    ]
    total_ms_per_token = sum(path_ms[key] for key in counted_paths)
    if total_ms_per_token > 0 and not math.isinf(total_ms_per_token):
        tokens_per_sec = MS_PER_SECOND / total_ms_per_token
    else:
        tokens_per_sec = 0.0

    return {
        # inputs
        'gpu1_vram': gpu1_vram,
        'gpu1_bw': gpu1_bw,
        'gpu2_vram': gpu2_vram,
        'gpu2_bw': gpu2_bw,
        'system_bw': system_bw,
        'total_params': total_params,
        'dense_params': dense_params,
        'moe_params': active_moe_params,
        'kv_cache': kv_cache,
        'quant_bits': quant_bits,
        # derived
        'bytes_per_param': bytes_per_param,
        'total_moe_params': total_moe_params,
        'dense_size_gb': dense_size_gb,
        'dense_kv_gb': dense_kv_gb,
        'fits_on_gpu1': fits_on_gpu1,
        'dense_load_ms': dense_load_ms,
        'moe_total_gb': moe_total_gb,
        'moe_share': moe_share,
        'system_share': system_share,
        'active_moe_gb': active_moe_gb,
        'gpu2_moe_ms': gpu2_moe_ms,
        'system_moe_ms': system_moe_ms,
        'counted_paths': counted_paths,
        'total_ms_per_token': total_ms_per_token,
        'tokens_per_sec': tokens_per_sec,
    }


def speed_rows(r):
    """(title, value, equation) rows in display order"""
    bits = r['quant_bits']
    to_gb = f"({bits} bits/param ÷ 8 bits/byte) ÷ 1e9 bytes/GB"
    dense_kv = format_float(r['dense_kv_gb'], 4)
    moe_total = format_float(r['moe_total_gb'], 4)
    dense_ms = format_float(r['dense_load_ms'], 3)
    gpu2_ms = format_float(r['gpu2_moe_ms'], 3)
    system_ms = format_float(r['system_moe_ms'], 3)
    total_ms = format_float(r['total_ms_per_token'], 3)
    tps = format_float(r['tokens_per_sec'], 2)
    # Only the paths that contributed to the total appear in its sum
    total_terms = ' + '.join(f"{format_float(r[key], 3)} ms" for key in r['counted_paths']) or '0 ms'
    active_params = format_number(r['moe_params'])

    return [
        ('Dense parameters + KV cache size', f"{dense_kv} GB",
         f"{format_number(r['dense_params'])} params × {to_gb} + {format_plain(r['kv_cache'])} GB = {dense_kv} GB"),
        ('Fits in GPU 1 memory?', 'Yes' if r['fits_on_gpu1'] else 'No',
         f"{dense_kv} GB ≤ {format_plain(r['gpu1_vram'])} GB → {r['fits_on_gpu1']}"),
        ('Dense/KV load time', f"{dense_ms} ms",
         f"{dense_kv} GB ÷ {format_plain(r['gpu1_bw'])} GB/s × 1000 ms/s = {dense_ms} ms"),
        ('Total MoE size', f"{moe_total} GB",
         f"{format_number(r['total_moe_params'])} params × {to_gb} = {moe_total} GB"),
        ('Percentage of MoE on GPU 2', f"{format_float(r['moe_share'] * 100, 2)} %",
         f"min(1, {format_plain(r['gpu2_vram'])} GB ÷ {moe_total} GB) = {format_float(r['moe_share'], 4)}"),
        ('MoE load time on GPU 2', f"{gpu2_ms} ms",
         f"{format_float(r['moe_share'], 4)} × ({active_params} params × {to_gb}) ÷ "
         f"{format_plain(r['gpu2_bw'])} GB/s × 1000 ms/s = {gpu2_ms} ms"),
        ('MoE load time from system RAM', f"{system_ms} ms",
         f"{format_float(r['system_share'], 4)} × ({active_params} params × {to_gb}) ÷ "
         f"{format_plain(r['system_bw'])} GB/s × 1000 ms/s = {system_ms} ms"),
        ('Total time per token', f"{total_ms} ms",
         f"{total_terms} = {total_ms} ms"),
        ('Tokens per second', f"{tps} tokens/s",
         f"1000 ms/s ÷ {total_ms} ms = {tps} tokens/s"),
    ]


def render_speed_results(results):
    if 'error' in results:
        return f"ℹ️ {results['error']}"

    output = "⚡ MoE Token Speed Estimate (bandwidth-bound)\n\n"
    for title, value, equation in speed_rows(results):
        output += f"• {title}: {value}\n"
        output += f"    {equation}\n"

    output += "\n⚠️ Assumptions & Notes:\n"
    output += "• Memory-bandwidth bound; compute, PCIe and kernel launch overheads ignored\n"
    output += "• Expert reads split between GPU 2 and system RAM by the share of the expert pool each holds\n"
    output += "• KV cache read in full from GPU 1 every token\n"
    return output


def build_speed_calculator():
    """Lay out the speed calculator inside the current gr.Blocks context"""
    gpu_choices = [(p['name'], key) for key, p in GPU_PRESETS.items()]
    model_choices = [(p['name'], key) for key, p in MODEL_PRESETS.items()]

    with gr.Row():
        # Hardware
        with gr.Column():
            gr.Markdown("### 🖥️ GPU 1 (dense weights + KV cache)")
            gpu1_select = gr.Dropdown(choices=gpu_choices, value='custom', label="GPU 1 preset")
            gpu1_vram = gr.Textbox(label="GPU 1 VRAM (GB)", placeholder="e.g., 24")
            gpu1_bw = gr.Textbox(label="GPU 1 bandwidth (GB/s)", placeholder="e.g., 936")

        with gr.Column():
            gr.Markdown("### 🖥️ GPU 2 (MoE experts)")
            gpu2_select = gr.Dropdown(choices=gpu_choices, value='custom', label="GPU 2 preset")
            gpu2_vram = gr.Textbox(label="GPU 2 VRAM (GB)", placeholder="e.g., 24")
            gpu2_bw = gr.Textbox(label="GPU 2 bandwidth (GB/s)", placeholder="e.g., 936")
            system_bw = gr.Textbox(label="System RAM bandwidth (GB/s)", placeholder="e.g., 80")

        # Model
        with gr.Column():
            gr.Markdown("### 🧠 Model")
            model_select = gr.Dropdown(choices=model_choices, value='custom', label="Model preset")
            total_params = gr.Textbox(label="Total parameters", placeholder="e.g., 671026419200")
            dense_params = gr.Textbox(label="Always-active dense parameters", placeholder="e.g., 14563317248")
            moe_params = gr.Textbox(label="Active MoE parameters per token", placeholder="e.g., 22988980224")
            kv_cache = gr.Textbox(label="KV cache (GB)", placeholder="0")
            quant_bits = gr.Dropdown(choices=QUANTIZATION_BITS, value=DEFAULT_QUANT_BITS, label="Quantization (bits/param)")

    calculate_btn = gr.Button("Calculate", variant="primary")
    output = gr.Textbox(label="📈 Speed Results", lines=22, show_copy_button=True)

    inputs = [gpu1_vram, gpu1_bw, gpu2_vram, gpu2_bw, system_bw,
              total_params, dense_params, moe_params, kv_cache, quant_bits]

    def update_output(*args):
        return render_speed_results(calculate_speed(dict(zip(SPEED_INPUT_KEYS, args))))

    def prefill_model(model_key):
        values = model_preset_values(model_key)
        return [gr.update() if values[k] is None else values[k]
                for k in ('total_params', 'dense_params', 'moe_params', 'kv_cache')]

    def prefill_gpu(gpu_key):
        values = gpu_preset_values(gpu_key)
        if values is None:
            return gr.update(), gr.update()
        return values

    model_select.change(prefill_model, inputs=model_select, outputs=[total_params, dense_params, moe_params, kv_cache])
    gpu1_select.change(prefill_gpu, inputs=gpu1_select, outputs=[gpu1_vram, gpu1_bw])
    gpu2_select.change(prefill_gpu, inputs=gpu2_select, outputs=[gpu2_vram, gpu2_bw])
    calculate_btn.click(update_output, inputs=inputs, outputs=output)

    return inputs, output, update_output


def main():
    with gr.Blocks(title="MoE Token Speed Calculator", theme=gr.themes.Soft()) as demo:
        gr.Markdown("# ⚡ MoE Token Speed Calculator")
        gr.Markdown("Bandwidth-bound tokens/s for a MoE model split across two GPUs and system RAM. "
                    "Pick presets or enter your own values, then press Calculate.")
        build_speed_calculator()

    return demo


if __name__ == "__main__":
    demo = main()
    demo.launch(server_name="0.0.0.0", server_port=7835, share=False)
