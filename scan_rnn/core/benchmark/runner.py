"""
ScanRNN.core.benchmark.runner

Time a stacked network against its fused adapter.

Both sides run one full forward + backward per iteration on identical
weights, input and output gradients.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

import torch

from ..fused import FusedRecurrent, compare
from ..module import Mode
from ..registry import build_cell
from ..stacked import StackedNetwork


def time_fn(
        fn: Callable,
        warmup: int,
        iters: int,
        device: str,
) -> float:
    """
    Time a function.

    Returns:
        Mean time in milliseconds
    """
    # Warmup
    for _ in range(warmup):
        fn()

    if device == 'cuda':
        torch.cuda.synchronize()

    # Timed runs
    t0 = time.perf_counter()
    for _ in range(iters):
        fn()

    if device == 'cuda':
        torch.cuda.synchronize()

    return (time.perf_counter() - t0) / iters * 1000


@dataclass
class BenchmarkResult:
    """Stacked vs fused timing for one configuration."""
    cell: str
    input_size: int
    hidden_sizes: List[int]
    batch_size: int
    seq_len: int
    device: str
    stacked_ms: float
    fused_ms: float
    max_error: float
    equivalent: bool
    iters: int = 0
    started_at: str = ''
    errors: List[str] = field(default_factory=list)

    @property
    def speedup(self) -> float:
        return self.stacked_ms / self.fused_ms if self.fused_ms > 0 else 0.0

    def summary(self) -> str:
        """Concise human-readable summary."""
        mark = '✓' if self.equivalent else '✗'
        lines = [
            f"{'='*60}",
            f"  {self.cell.upper()} {self.hidden_sizes}",
            f"{'='*60}",
            f"  Device:       {self.device}",
            f"  Shape:        T={self.seq_len}, B={self.batch_size}, input={self.input_size}",
            f"  Stacked:      {self.stacked_ms:.3f}ms",
            f"  Fused:        {self.fused_ms:.3f}ms",
            f"  Speedup:      {self.speedup:.2f}x",
            f"  Equivalent:   {mark} (max_err={self.max_error:.3e})",
        ]
        for err in self.errors:
            lines.append(f"  ERROR: {err}")
        return '\n'.join(lines)

    def to_dict(self) -> dict:
        data = asdict(self)
        data['speedup'] = self.speedup
        return data

    def save(self, path: str) -> None:
        """Save to JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'BenchmarkResult':
        """Load from JSON file."""
        with open(path) as f:
            data = json.load(f)
        data.pop('speedup', None)
        return cls(**data)


def run(
        cell: str = 'lstm',
        input_size: int = 64,
        hidden_size: int = 128,
        num_layers: int = 2,
        batch_size: int = 32,
        seq_len: int = 50,
        iters: int = 10,
        warmup: int = 2,
        device: str = 'cuda',
        dtype: Optional[torch.dtype] = None,
        verbose: bool = True,
) -> BenchmarkResult:
    """
    Benchmark one homogeneous network.

    Args:
        cell: Registered cell name with a fused backend.
        input_size, hidden_size, num_layers: Network shape.
        batch_size, seq_len: Input shape.
        iters, warmup: Timed and untimed iterations.
        device: 'cuda' falls back to 'cpu' when unavailable.
        dtype: Parameter dtype. Defaults to float32.
        verbose: Print progress.
    """
    if device == 'cuda' and not torch.cuda.is_available():
        device = 'cpu'
        if verbose:
            print("CUDA not available, using CPU")
    dtype = dtype or torch.float32

    hidden_sizes = [hidden_size] * num_layers
    sizes = [input_size] + hidden_sizes
    cells = [build_cell(cell, sizes[i], sizes[i + 1]) for i in range(num_layers)]

    if verbose:
        print(f"Benchmark: {cell} {hidden_sizes}")
        print(f"Device: {device}")
        print("=" * 60)

    started_at = datetime.now().isoformat()
    stacked = StackedNetwork(cells, dtype=dtype, device=device)
    fused = FusedRecurrent.from_network(stacked, persist_hidden=False)

    x = torch.randn(seq_len, batch_size, input_size, dtype=dtype, device=device)
    hidden = [c.init(batch_size, dtype, device) for c in cells]
    grad_top = [torch.randn(batch_size, hidden_size, dtype=dtype, device=device) for _ in range(seq_len)]
    grad_out = [None] * (num_layers - 1) + [grad_top]
    steps = list(x.unbind(0))

    def run_stacked():
        stacked([list(hidden), steps], Mode.TRAIN)
        stacked.backward(None, [None, grad_out], 1.0, Mode.TRAIN)

    fused_hidden = fused.fused_states(hidden)

    def run_fused():
        fused(x, Mode.TRAIN, hidden=fused_hidden)
        fused.backward(None, [None, [grad_top]], 1.0, Mode.TRAIN)

    errors = []
    report = compare(stacked, fused, x, rtol=1e-3, atol=1e-4)
    if not report.passed:
        errors.append(f"mismatch in {', '.join(report.mismatches)}")

    if verbose:
        print("stacked...", end=" ", flush=True)
    stacked_ms = time_fn(run_stacked, warmup, iters, device)
    if verbose:
        print(f"{stacked_ms:.3f}ms")
        print("fused...", end=" ", flush=True)
    fused_ms = time_fn(run_fused, warmup, iters, device)
    if verbose:
        print(f"{fused_ms:.3f}ms")

    result = BenchmarkResult(
        cell=cell,
        input_size=input_size,
        hidden_sizes=hidden_sizes,
        batch_size=batch_size,
        seq_len=seq_len,
        device=device if device == 'cpu' else torch.cuda.get_device_name(),
        stacked_ms=stacked_ms,
        fused_ms=fused_ms,
        max_error=report.max_error,
        equivalent=report.passed,
        iters=iters,
        started_at=started_at,
        errors=errors,
    )

    if verbose:
        print(result.summary())

    return result


__all__ = ['time_fn', 'BenchmarkResult', 'run']
