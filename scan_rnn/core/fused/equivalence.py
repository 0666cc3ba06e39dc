"""
ScanRNN.core.fused.equivalence

Check that a FusedRecurrent computes what its StackedNetwork computes.

    report = compare(network, fused, sequence, hidden)
    assert report.passed

Both sides run forward and backward with identical input, initial state
and output gradients. Five quantities are compared: top-layer outputs,
final states, input gradients, initial-state gradients and weight
gradients. Parameter gradients are zeroed on both sides first.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import torch
from torch import Tensor

from ..module import Mode
from ..table_util import flatten_tensors, split_sequence
from .layout import extract_grads
from .wrapped import FusedRecurrent


@dataclass
class EquivalenceReport:
    """Max absolute errors per compared quantity."""
    cell_type: str
    hidden_sizes: List[int]
    errors: Dict[str, float] = field(default_factory=dict)
    mismatches: List[str] = field(default_factory=list)
    rtol: float = 1e-6
    atol: float = 1e-8

    @property
    def passed(self) -> bool:
        return not self.mismatches

    @property
    def max_error(self) -> float:
        return max(self.errors.values()) if self.errors else 0.0

    def summary(self) -> str:
        mark = '✓' if self.passed else '✗'
        lines = [f"{mark} {self.cell_type} {self.hidden_sizes}"]
        for name, err in self.errors.items():
            flag = '✗' if name in self.mismatches else ' '
            lines.append(f"  {flag} {name:<12} max_err={err:.3e}")
        return '\n'.join(lines)


def _compare(report: EquivalenceReport, name: str, expected: Sequence[Tensor], actual: Sequence[Tensor]) -> None:
    err = 0.0
    ok = len(expected) == len(actual)
    for e, a in zip(expected, actual):
        if e is None or a is None:
            ok = ok and e is None and a is None
            continue
        if e.shape != a.shape:
            ok = False
            continue
        err = max(err, (e - a).abs().max().item() if e.numel() else 0.0)
        ok = ok and torch.allclose(a, e, rtol=report.rtol, atol=report.atol)
    report.errors[name] = err
    if not ok:
        report.mismatches.append(name)


def compare(
    network,
    fused: FusedRecurrent,
    sequence: Any,
    hidden: Optional[List[Any]] = None,
    grad_output: Optional[Sequence[Tensor]] = None,
    grad_state: Optional[List[Any]] = None,
    rtol: float = 1e-6,
    atol: float = 1e-8,
) -> EquivalenceReport:
    """
    Run both networks and compare.

    Args:
        network: StackedNetwork, or a RecurrentNetwork around one.
        fused: FusedRecurrent with weights copied from network.
        sequence: [T, B, input] tensor or list of T [B, input] tensors.
        hidden: Per-layer initial states. Random when None.
        grad_output: Per-step gradients on the top layer output. Random when None.
        grad_state: Per-layer gradients on the final states. Random when None.
        rtol, atol: torch.allclose tolerances.
    """
    stacked = getattr(network, 'body', network)
    steps = split_sequence(sequence)
    batch = steps[0].shape[0]
    units = stacked.step_units
    dtype, device = steps[0].dtype, steps[0].device

    def rand_state(cell):
        state = cell.init(batch, dtype, device)
        return tuple(torch.randn_like(s) for s in state) if isinstance(state, tuple) else torch.randn_like(state)

    if hidden is None:
        hidden = [rand_state(cell) for cell in stacked.cells]
    if grad_state is None:
        grad_state = [rand_state(cell) for cell in stacked.cells]
    if grad_output is None:
        top = stacked.cells[-1].hidden_size
        grad_output = [torch.randn(batch, top, dtype=dtype, device=device) for _ in steps]

    report = EquivalenceReport(
        cell_type=fused.cell_type.value,
        hidden_sizes=list(fused.hidden_sizes),
        rtol=rtol,
        atol=atol,
    )

    # Stacked network
    stacked.zero_grad_parameters()
    out = stacked([list(hidden), steps], Mode.TRAIN)
    length = len(steps)
    grad_hist = [[None] * (length - 1) + [g] for g in grad_state]
    grad_out = [None] * (stacked.num_layers - 1) + [list(grad_output)]
    ref_grad = stacked.backward(None, [grad_hist, grad_out], 1.0, Mode.TRAIN)

    # Fused, without touching its hidden buffer
    fused.zero_grad_parameters()
    persist, fused.persist_hidden = fused.persist_hidden, False
    try:
        fused_out = fused(steps, Mode.TRAIN, hidden=fused.fused_states(hidden))
        got_grad = fused.backward(
            None, [fused.fused_states(grad_state), [list(grad_output)]], 1.0, Mode.TRAIN
        )
    finally:
        fused.persist_hidden = persist

    _compare(report, 'output', out[1][-1], fused_out[1][-1])
    _compare(
        report, 'state',
        flatten_tensors([h[-1] for h in out[0]]),
        flatten_tensors(fused.layer_states(fused_out[0])),
    )
    _compare(report, 'grad_input', ref_grad[1], got_grad[1])
    _compare(
        report, 'grad_state',
        flatten_tensors(ref_grad[0]),
        flatten_tensors(fused.layer_states(got_grad[0])),
    )

    fused_param_grads = extract_grads(fused.cell_type, list(fused.fused))
    expected, actual = [], []
    for unit, grads in zip(units, fused_param_grads):
        for name in ('i2h', 'h2h'):
            expected.append(unit.params[name].grad)
            actual.append(grads[name])
    _compare(report, 'grad_params', expected, actual)

    return report


__all__ = ['EquivalenceReport', 'compare']
