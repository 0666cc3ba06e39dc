"""
ScanRNN.core.step_unit

StepUnit - one parameterized instantiation of a cell, used at one timestep.

Input is the composite [state, input]; output is [state', output].

Forward in TRAIN mode detaches the incoming composite into fresh autograd
leaves, runs the cell under enable_grad and keeps (leaves, outputs) as the
record for backward. The returned tensors are detached, so no graph ever
spans more than one step-unit. Backward replays the record through
torch.autograd.grad and adds parameter gradients into the (possibly
shared) accumulators with an explicit add.

EVALUATE mode runs under no_grad and records nothing.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Union

import torch
from torch import Tensor

from .cells import Cell
from .errors import LengthMismatch, ShapeMismatch
from .module import Module, Mode, ParameterSet, as_mode
from .table_util import flatten_like, flatten_tensors, map_tensors, unflatten_like


def _leaf(t: Tensor) -> Tensor:
    leaf = t.detach()
    if leaf.is_floating_point() or leaf.is_complex():
        leaf.requires_grad_(True)
    return leaf


class StepUnit(Module):
    """
    Cell + ParameterSet.

    Args:
        cell: The step function.
        params: Parameter set to use. A fresh one matching
            cell.parameter_shapes() is created and initialized when None.
        dtype, device: For a freshly created parameter set.
    """

    def __init__(
        self,
        cell: Cell,
        params: Optional[ParameterSet] = None,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
    ):
        super().__init__()
        self.cell = cell
        if params is None:
            params = ParameterSet.from_shapes(cell.parameter_shapes(), dtype=dtype, device=device)
            cell.reset_parameters(params)
        self.params = params
        self._record = None

    def own_parameter_sets(self) -> List[ParameterSet]:
        return [self.params]

    def reset_parameters(self, init_range: Optional[float] = None) -> None:
        self._check_mutable('reset_parameters')
        self.cell.reset_parameters(self.params, init_range)

    def clone(self, share: Sequence[str] = ()) -> 'StepUnit':
        return StepUnit(self.cell, self.params.share(share))

    # -------------------------------------------------------------------------
    # Forward / backward
    # -------------------------------------------------------------------------

    def forward(self, input: Any, mode: Union[str, Mode] = Mode.TRAIN) -> List[Any]:
        mode = as_mode(mode)
        if len(input) != 2:
            raise ShapeMismatch(f"step input must be [state, input], got {len(input)} slots")
        state, x = input
        self.cell.check(state, x)

        if mode is Mode.EVALUATE:
            self._record = None
            with torch.no_grad():
                next_state, out = self.cell.make(self.params, state, x)
            self.output = [next_state, out]
            return self.output

        leaves = map_tensors(_leaf, [state, x])
        with torch.enable_grad():
            next_state, out = self.cell.make(self.params, leaves[0], leaves[1])
        outputs = [next_state, out]
        self._record = (leaves, outputs)
        self.output = map_tensors(Tensor.detach, outputs)
        return self.output

    def backward(
        self,
        input: Any,
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        if self._record is None:
            raise LengthMismatch(
                "backward called on a step-unit without a recorded TRAIN forward"
            )
        leaves, outputs = self._record
        self._record = None

        out_leaves = flatten_tensors(outputs)
        grad_leaves = flatten_like(outputs, grad_output)
        pairs = [
            (o, g) for o, g in zip(out_leaves, grad_leaves)
            if g is not None and o.requires_grad
        ]
        for o, g in pairs:
            if g.shape != o.shape:
                raise ShapeMismatch(
                    f"gradient shape {tuple(g.shape)} does not match output shape {tuple(o.shape)}"
                )

        in_leaves = flatten_tensors(leaves)
        diff_inputs = [t for t in in_leaves if t.requires_grad]
        names = [n for n, p in self.params.items() if p.requires_grad]
        targets = diff_inputs + [self.params[n] for n in names]

        if pairs and targets:
            grads = torch.autograd.grad(
                [o for o, _ in pairs],
                targets,
                [g for _, g in pairs],
                allow_unused=True,
            )
        else:
            grads = [None] * len(targets)

        input_grads = iter(grads[:len(diff_inputs)])
        grad_leaves_in = []
        for t in in_leaves:
            if t.requires_grad:
                g = next(input_grads)
                grad_leaves_in.append(torch.zeros_like(t) if g is None else g)
            else:
                grad_leaves_in.append(None)

        for name, g in zip(names, grads[len(diff_inputs):]):
            if g is not None:
                self.params.accumulate(name, g, scale)

        self.grad_input = unflatten_like(leaves, grad_leaves_in)
        return self.grad_input

    def extra_repr(self) -> str:
        return repr(self.cell) + (', clone' if self.is_clone else '')


__all__ = ['StepUnit']
