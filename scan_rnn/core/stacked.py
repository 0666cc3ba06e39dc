"""
ScanRNN.core.stacked

StackedNetwork - L recurrent layers composed over depth and time.

Input composite:  [hidden, sequence]
    hidden:   list of L initial states
    sequence: list of T per-step inputs, or a tensor [T, B, input_size]

Output:           [hidden_history, output_history], both indexed [layer][step]

Two compositions, same numbers:

    depth_outer:  SequenceScan(dim=0, [RecurrentLayer(dim=1, StepUnit(cell_l))])
                  each layer scans the whole sequence, then hands its output
                  history to the next layer.

    time_outer:   RecurrentLayer(dim=1, SequenceScan(dim=0, [StepUnit(cell_l)]))
                  at each step every layer runs once, bottom to top.

The time-outer scan natively produces [slot][step][layer]; it is transposed
here so both compositions report [slot][layer][step].

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Sequence, Union

import torch
from torch import Tensor

from .cells import Cell
from .errors import LengthMismatch, ShapeMismatch
from .module import Module, Mode, as_mode
from .recurrent import RecurrentLayer
from .scan import SequenceScan
from .step_unit import StepUnit
from .table_util import split_sequence, transpose


class Composition(Enum):
    DEPTH_OUTER = 'depth_outer'
    TIME_OUTER = 'time_outer'


def check_layer_sizes(cells: Sequence[Cell], input_size: Optional[int] = None) -> None:
    """Layer i's input size must equal layer i-1's hidden size."""
    expected = input_size
    for i, cell in enumerate(cells):
        if expected is not None and cell.input_size is not None and cell.input_size != expected:
            raise ShapeMismatch(
                f"layer {i} expects input size {cell.input_size}, previous layer gives {expected}"
            )
        expected = cell.hidden_size


class StackedNetwork(Module):
    """
    Args:
        cells: One cell per layer, bottom first.
        composition: 'depth_outer' or 'time_outer'.
        dtype, device: For the layer parameters.
        body: Prebuilt body matching `composition`; used by clone().
    """

    def __init__(
        self,
        cells: Sequence[Cell],
        composition: Union[str, Composition] = Composition.DEPTH_OUTER,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
        body: Optional[Module] = None,
    ):
        super().__init__()
        if not cells:
            raise ValueError("cells list is empty")
        if isinstance(composition, str):
            composition = Composition(composition)
        check_layer_sizes(cells)

        self.cells = list(cells)
        self.composition = composition
        if body is not None:
            self.body = body
            return

        units = [StepUnit(cell, dtype=dtype, device=device) for cell in self.cells]
        if composition is Composition.DEPTH_OUTER:
            self.body = SequenceScan(
                0, [RecurrentLayer(1, unit, axis='step') for unit in units], axis='layer'
            )
        else:
            self.body = RecurrentLayer(1, SequenceScan(0, units, axis='layer'), axis='step')

    @property
    def num_layers(self) -> int:
        return len(self.cells)

    @property
    def input_size(self) -> Optional[int]:
        return self.cells[0].input_size

    @property
    def hidden_sizes(self) -> List[Optional[int]]:
        return [cell.hidden_size for cell in self.cells]

    @property
    def step_units(self) -> List[StepUnit]:
        """The original (parameter-owning) step-unit of every layer."""
        if self.composition is Composition.DEPTH_OUTER:
            return [layer.original for layer in self.body.units]
        return list(self.body.original.units)

    def parameter_modules(self) -> List[Module]:
        return [self.body]

    def clone(self, share: Sequence[str] = ()) -> 'StackedNetwork':
        return StackedNetwork(self.cells, self.composition, body=self.body.clone(share))

    # -------------------------------------------------------------------------
    # Forward / backward
    # -------------------------------------------------------------------------

    def forward(self, input: Sequence[Any], mode: Union[str, Mode] = Mode.TRAIN) -> List[List[List[Any]]]:
        mode = as_mode(mode)
        hidden, sequence = input
        if len(hidden) != self.num_layers:
            raise ShapeMismatch(
                f"expected {self.num_layers} initial states, got {len(hidden)}"
            )
        out = self.body([list(hidden), sequence], mode)
        if self.composition is Composition.TIME_OUTER:
            # [step][layer] -> [layer][step]; zero steps still means num_layers rows
            out = [transpose(slot) if slot else [[] for _ in range(self.num_layers)] for slot in out]
        self.output = out
        return self.output

    def backward(
        self,
        input: Sequence[Any],
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        if self.composition is Composition.TIME_OUTER and grad_output is not None:
            grad_output = [_step_major(slot) for slot in grad_output]
        self.grad_input = self.body.backward(input, grad_output, scale, mode)
        return self.grad_input

    def extra_repr(self) -> str:
        return f"composition={self.composition.value}, cells={self.cells}"


def _step_major(slot: Any) -> Optional[List[List[Any]]]:
    """Gradient slot [layer][step] -> [step][layer]; None entries mean zero."""
    if slot is None:
        return None
    lengths = {
        layer.shape[0] if isinstance(layer, Tensor) else len(layer)
        for layer in slot if layer is not None
    }
    if not lengths:
        return None
    if len(lengths) > 1:
        raise LengthMismatch(f"gradient histories differ in length across layers: {sorted(lengths)}")
    length = lengths.pop()
    rows = [[None] * length if layer is None else split_sequence(layer) for layer in slot]
    return transpose(rows)


__all__ = ['Composition', 'StackedNetwork', 'check_layer_sizes']
