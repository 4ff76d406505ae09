import sys
from pathlib import Path

import pytest

# Add the repo root to sys.path so the calculator modules import without installing
ROOT_PATH = Path(__file__).resolve().parent.parent
if ROOT_PATH.as_posix() not in sys.path:
    sys.path.insert(0, ROOT_PATH.as_posix())


@pytest.fixture
def moe_param_inputs():
    """Small MoE: 1 dense layer, 2 MoE layers, 4 experts with 2 active."""
    return {
        'dense_layers': '1',
        'moe_layers': '2',
        'embedding_shapes': '[100, 10]',
        'pre_first_norms': '[10]',
        'dense_norms': '[10]\n[10]',
        'dense_attn': '[10, 10]',
        'dense_ffn': '[10, 30]',
        'experts_per_layer': '4',
        'active_experts': '2',
        'has_shared_expert': False,
        'shared_expert_scope': 'per_layer',
        'shared_expert_tensors': '',
        'moe_attn': '[10, 10]',
        'moe_transitional': '[10]\n[10, 4]',
        'moe_shared_ffn': '',
        'moe_experts': '[10, 5]\n[5, 10]',
        'experts_include_dim': False,
    }


@pytest.fixture
def speed_inputs():
    """Two 24 GB GPUs and 100 GB/s system RAM, 100B-total / 10B-dense / 8B-active model at 8 bits."""
    return {
        'gpu1_vram': '24',
        'gpu1_bw': '1000',
        'gpu2_vram': '24',
        'gpu2_bw': '500',
        'system_bw': '100',
        'total_params': '100000000000',
        'dense_params': '10000000000',
        'moe_params': '8000000000',
        'kv_cache': '2',
        'quant_bits': 8,
    }
