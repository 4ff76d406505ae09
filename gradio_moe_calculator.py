#!/usr/bin/env python3
"""
MoE Calculator: Speed & Parameters

Combined page that hosts both calculators as tabs:
- Speed: bandwidth-bound tokens/s for a MoE model split across GPU 1,
  GPU 2 and system RAM (gradio_speed_calculator.py)
- Parameters: exact total / active parameter counts from tensor shapes
  (gradio_param_calculator.py)

The two tabs are independent; each reads its own fields fresh on every
calculation.

Usage:
  python gradio_moe_calculator.py                 # http://0.0.0.0:7833
  python gradio_moe_calculator.py --port 8080 --share
"""

import argparse
import sys

import gradio as gr

from gradio_param_calculator import build_param_calculator
from gradio_speed_calculator import build_speed_calculator

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 7833


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="MoE speed & parameter calculator (Gradio)")
    p.add_argument("--host", default=DEFAULT_HOST, type=str, help=f"Interface to bind (default: {DEFAULT_HOST})")
    p.add_argument("--port", default=DEFAULT_PORT, type=int, help=f"Port to listen on (default: {DEFAULT_PORT})")
    p.add_argument("--share", action="store_true", help="Create a public Gradio share link")
    return p.parse_args(argv)


def main():
    with gr.Blocks(title="MoE Calculator", theme=gr.themes.Soft()) as demo:
        gr.Markdown("# 🧠 MoE Calculator: Speed & Parameters")
        gr.Markdown("Estimate decode speed from memory bandwidth, or count exact parameters from tensor shapes.")

        with gr.Tabs():
            with gr.TabItem("Speed Calculator"):
                build_speed_calculator()
            with gr.TabItem("Parameter Calculator"):
                param_inputs, param_outputs, update_params = build_param_calculator()

        # Initial load (speed tab starts blank and waits for Calculate)
        demo.load(update_params, inputs=param_inputs, outputs=param_outputs)

    return demo


def run(argv=None):
    args = parse_args(argv)
    if not 0 < args.port < 65536:
        print(f"ERROR: invalid port {args.port}", file=sys.stderr)
        return 2
    print(f"Starting MoE calculator on {args.host}:{args.port} (share={args.share})", file=sys.stderr)
    demo = main()
    demo.launch(server_name=args.host, server_port=args.port, share=args.share)
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
