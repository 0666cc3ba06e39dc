"""
ScanRNN.core.scan

SequenceScan - generic scan executor over an ordered list of modules.

The input is a composite: a list of slots, one of which (`dim`) holds a
sequence. Step t splices sequence[t] into the running composite, applies
units[t], and feeds every non-`dim` slot of the result into step t+1:

    composite = input
    for t in range(T):
        composite[dim] = input[dim][t]
        composite = units[t](composite)
        history.append(composite)
    output = transpose(history)          # output[slot][t]

So a scan is scanl rather than foldl: every intermediate result is kept.

Backward walks t = T-1 .. 0. The gradient of the non-`dim` slots at step
t is the external gradient for that step plus the gradient flowing back
from step t+1's input. The `dim` slot gradients are collected into a list:

    grad_input[dim] = [dL/dinput[dim][t] for t]
    grad_input[s]   = dL/dinput[s]               (s != dim)

With dim=1 over [state, x] this is one recurrent layer through time; with
dim=0 over [states, x] it is a stack of layers at a single timestep.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Union

from torch import nn

from .errors import LengthMismatch, ShapeMismatch
from .module import Module, Mode, as_mode
from .table_util import add_tables, is_table, split_sequence, transpose


InitFn = Callable[[List[Any], Optional[List[Any]], int], List[Any]]


class SequenceScan(Module):
    """
    Scan over `modules` along slot `dim` of the input composite.

    Args:
        dim: Index of the sequence slot.
        modules: One module per step. A plain scan never clones; the
            sequence may not be longer than this list.
        init_fn: Optional hook init_fn(input, previous_input, dim) -> input,
            called at the start of every forward. previous_input is the
            last step's composite from the previous forward, or None.
        axis: Name used in ShapeMismatch locations ('step', 'layer').
    """

    def __init__(
        self,
        dim: int,
        modules: Optional[Sequence[Module]] = None,
        init_fn: Optional[InitFn] = None,
        axis: str = 'step',
    ):
        super().__init__()
        self.dim = dim
        self.units = nn.ModuleList(modules or [])
        self.init_fn = init_fn
        self.axis = axis
        self.inputs: List[List[Any]] = []
        self._last_input: Optional[List[Any]] = None

    def add(self, module: Module) -> 'SequenceScan':
        self.units.append(module)
        return self

    def remove(self, index: int = -1) -> Module:
        module = self.units[index]
        del self.units[index]
        return module

    def parameter_modules(self) -> List[Module]:
        return list(self.units)

    def clone(self, share: Sequence[str] = ()) -> 'SequenceScan':
        return SequenceScan(
            self.dim,
            [m.clone(share) for m in self.units],
            init_fn=self.init_fn,
            axis=self.axis,
        )

    def _prepare(self, length: int) -> None:
        if length > len(self.units):
            raise LengthMismatch(
                f"sequence of length {length} exceeds the {len(self.units)} units of this scan"
            )

    # -------------------------------------------------------------------------
    # Forward
    # -------------------------------------------------------------------------

    def forward(self, input: Sequence[Any], mode: Union[str, Mode] = Mode.TRAIN) -> List[List[Any]]:
        mode = as_mode(mode)
        d = self.dim
        if self.init_fn is not None:
            input = self.init_fn(input, self._last_input, d)

        if not is_table(input) or not 0 <= d < len(input):
            raise ShapeMismatch(f"input must be a table with a sequence at slot {d}")

        steps = split_sequence(input[d])
        self._prepare(len(steps))

        self.inputs = []
        history = []
        current = list(input)
        for t, step in enumerate(steps):
            current = list(current)
            current[d] = step
            self.inputs.append(current)
            try:
                current = self.units[t](current, mode)
            except ShapeMismatch as e:
                raise e.at(self.axis, t) from None
            if len(current) != len(input):
                raise ShapeMismatch(
                    f"module returned {len(current)} slots, expected {len(input)}"
                ).at(self.axis, t)
            history.append(list(current))

        self._last_input = self.inputs[-1] if self.inputs else None
        if history:
            self.output = transpose(history)
        else:
            self.output = [[] for _ in input]
        return self.output

    # -------------------------------------------------------------------------
    # Backward
    # -------------------------------------------------------------------------

    def _split_grads(self, grad_output: Any, length: int, slots: int) -> List[List[Any]]:
        if grad_output is None:
            return [[None] * length for _ in range(slots)]
        if not is_table(grad_output) or len(grad_output) != slots:
            raise ShapeMismatch(f"grad_output must be a table of {slots} slots")

        grads = []
        for s, g in enumerate(grad_output):
            if g is None:
                grads.append([None] * length)
                continue
            g = split_sequence(g)
            if len(g) != length:
                raise LengthMismatch(
                    f"gradient history for slot {s} has length {len(g)}, forward recorded {length}"
                )
            grads.append(g)
        return grads

    def backward(
        self,
        input: Any,
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        mode = as_mode(mode)
        d = self.dim
        if not self.inputs:
            raise LengthMismatch("backward called without a matching forward")

        length = len(self.inputs)
        slots = len(self.inputs[0])
        grads = self._split_grads(grad_output, length, slots)

        grad_along_dim: List[Any] = [None] * length
        carry: Optional[List[Any]] = None
        for t in reversed(range(length)):
            step_grad = [grads[s][t] for s in range(slots)]
            if carry is not None:
                for s in range(slots):
                    if s != d:
                        step_grad[s] = add_tables(step_grad[s], carry[s])
            try:
                carry = list(self.units[t].backward(self.inputs[t], step_grad, scale, mode))
            except ShapeMismatch as e:
                raise e.at(self.axis, t) from None
            grad_along_dim[t] = carry[d]

        carry[d] = grad_along_dim
        self.grad_input = carry
        self.inputs = []
        return self.grad_input

    def extra_repr(self) -> str:
        return f"dim={self.dim}, axis={self.axis!r}"


__all__ = ['SequenceScan', 'InitFn']
