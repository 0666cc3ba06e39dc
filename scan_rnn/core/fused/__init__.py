"""
ScanRNN.core.fused

Backend-equivalence adapter: runs a stacked network on torch's fused
RNN modules with translated parameter and state layouts.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from .layout import (
    GATES,
    NUM_PROJECTIONS,
    FUSED_MODES,
    projection_offsets,
    build_fused,
    zero_field,
    linear_params,
    linear_grads,
    copy_params,
    extract_params,
    extract_grads,
    stack_hidden,
    unstack_hidden,
)
from .wrapped import FusedRecurrent
from .equivalence import EquivalenceReport, compare

__all__ = [
    'GATES',
    'NUM_PROJECTIONS',
    'FUSED_MODES',
    'projection_offsets',
    'build_fused',
    'zero_field',
    'linear_params',
    'linear_grads',
    'copy_params',
    'extract_params',
    'extract_grads',
    'stack_hidden',
    'unstack_hidden',
    'FusedRecurrent',
    'EquivalenceReport',
    'compare',
]
