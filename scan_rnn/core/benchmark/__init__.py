"""
ScanRNN.core.benchmark

Stacked vs fused timing.

Usage:
    from scan_rnn.core.benchmark import run

    result = run('gru', hidden_size=256, num_layers=3, device='cuda')
    print(result.summary())
    result.save('gru.json')

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from .runner import time_fn, BenchmarkResult, run

__all__ = ['time_fn', 'BenchmarkResult', 'run']
