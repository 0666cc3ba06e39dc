"""
CustomCell - user-supplied step function.

    cell = CustomCell(lambda params, h, x: (h * x + h, h * x + h))

The function receives (params, state, input) and returns (state, output).
It must be written with differentiable torch ops; gradients come from
autograd.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from torch import Tensor

from .base import Cell, CellType, ElmanGate


StepFn = Callable[[Mapping[str, Tensor], Any, Any], Tuple[Any, Any]]


class CustomCell(Cell):
    cell_type = CellType.CUSTOM
    gates = ElmanGate

    def __init__(
        self,
        fn: StepFn,
        parameter_shapes: Optional[Dict[str, Tuple[int, ...]]] = None,
        init: Optional[Callable[..., Any]] = None,
        input_size: Optional[int] = None,
        hidden_size: Optional[int] = None,
        hidden: Optional[Callable[[Any], Tensor]] = None,
    ):
        super().__init__(input_size, hidden_size)
        self.fn = fn
        self._parameter_shapes = dict(parameter_shapes or {})
        self._init = init
        self._hidden = hidden

    def parameter_shapes(self) -> Dict[str, Tuple[int, ...]]:
        return dict(self._parameter_shapes)

    def make(self, params, state, input):
        return self.fn(params, state, input)

    def init(self, batch_size, dtype=None, device=None, cache=None):
        if self._init is not None:
            return self._init(batch_size, dtype, device, cache)
        if self.hidden_size is None:
            raise ValueError("CustomCell without hidden_size needs an explicit init function")
        return super().init(batch_size, dtype, device, cache)

    def hidden(self, state):
        if self._hidden is not None:
            return self._hidden(state)
        return state

    def __repr__(self) -> str:
        name = getattr(self.fn, '__name__', type(self.fn).__name__)
        return f"CustomCell({name}, input_size={self.input_size}, hidden_size={self.hidden_size})"


def wrap_output(cell: Cell, fn: Callable[[Tensor], Tensor]) -> CustomCell:
    """
    Cell computing the same state as `cell` but emitting fn(output).

    The state passed to the next step is unchanged; only the per-step
    output is transformed.
    """
    def step(params, state, input):
        state, output = cell.make(params, state, input)
        return state, fn(output)

    return CustomCell(
        step,
        parameter_shapes=cell.parameter_shapes(),
        init=cell.init,
        input_size=cell.input_size,
        hidden_size=cell.hidden_size,
        hidden=cell.hidden,
    )
