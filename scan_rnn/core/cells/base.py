"""
ScanRNN.core.cells.base

Cell contract and gate-order constants.

A cell is the math of one recurrence step, with no parameters of its own:

    state, output = cell.make(params, state, input)
    state         = cell.init(batch_size, dtype, device, cache)

`params` maps names to tensors (a ParameterSet). Built-in cells use two
fused projections without bias:

    'i2h': [num_gates * hidden, input_size]
    'h2h': [num_gates * hidden, hidden]

Gate blocks are stacked along dim 0 in the order given by the cell's gate
enum. The fused backend adapter reads the same enums, so the two layouts
can never drift apart.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import math
from enum import Enum, IntEnum
from typing import Any, Dict, Mapping, Optional, Tuple, Type, Union

import torch
from torch import nn, Tensor

from ..errors import ShapeMismatch


class CellType(Enum):
    ELMAN = 'elman'
    RNN_TANH = 'rnn_tanh'
    RNN_RELU = 'rnn_relu'
    LSTM = 'lstm'
    GRU = 'gru'
    CUSTOM = 'custom'


# =============================================================================
# GATE ORDER
# =============================================================================

class ElmanGate(IntEnum):
    HIDDEN = 0


class LSTMGate(IntEnum):
    INPUT = 0
    FORGET = 1
    CELL = 2
    OUTPUT = 3


class GRUGate(IntEnum):
    RESET = 0
    UPDATE = 1
    CANDIDATE = 2


def gate_slice(gate: int, hidden_size: int) -> slice:
    """Rows of gate `gate` in a fused projection."""
    return slice(int(gate) * hidden_size, (int(gate) + 1) * hidden_size)


# =============================================================================
# CELL
# =============================================================================

class Cell:
    """Base class for step functions."""

    cell_type: CellType = CellType.CUSTOM
    gates: Type[IntEnum] = ElmanGate

    def __init__(self, input_size: Optional[int], hidden_size: Optional[int]):
        self.input_size = input_size
        self.hidden_size = hidden_size

    @classmethod
    def from_name(cls, name: str, input_size: int, hidden_size: int, **kwargs) -> 'Cell':
        """Build from a registry name. Subclasses serving several names override."""
        return cls(input_size, hidden_size, **kwargs)

    @property
    def num_gates(self) -> int:
        return len(self.gates)

    def parameter_shapes(self) -> Dict[str, Tuple[int, ...]]:
        G, H = self.num_gates, self.hidden_size
        return {
            'i2h': (G * H, self.input_size),
            'h2h': (G * H, H),
        }

    def make(self, params: Mapping[str, Tensor], state: Any, input: Tensor) -> Tuple[Any, Tensor]:
        raise NotImplementedError

    def init(
        self,
        batch_size: int,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
        cache: Optional[Tensor] = None,
    ) -> Any:
        """Zero hidden state [batch, hidden], reusing `cache` storage when possible."""
        return _zero_state(batch_size, self.hidden_size, dtype, device, cache)

    def hidden(self, state: Any) -> Tensor:
        """The [batch, hidden] component of a state."""
        return state

    def check(self, state: Any, input: Tensor) -> None:
        """Raise ShapeMismatch when input or state disagree with this cell."""
        if self.input_size is not None and isinstance(input, Tensor):
            if input.dim() == 0 or input.shape[-1] != self.input_size:
                raise ShapeMismatch(
                    f"expected input size {self.input_size}, got {tuple(input.shape)}"
                )
        h = self.hidden(state)
        if self.hidden_size is not None and isinstance(h, Tensor):
            if h.dim() == 0 or h.shape[-1] != self.hidden_size:
                raise ShapeMismatch(
                    f"expected hidden size {self.hidden_size}, got {tuple(h.shape)}"
                )
            if isinstance(input, Tensor) and input.dim() > 1 and h.dim() > 1 \
                    and input.shape[0] != h.shape[0]:
                raise ShapeMismatch(
                    f"batch size of input ({input.shape[0]}) and state ({h.shape[0]}) differ"
                )

    def reset_parameters(self, params: Mapping[str, Tensor], init_range: Optional[float] = None) -> None:
        """Uniform init in [-r, r], r = init_range or 1/sqrt(hidden)."""
        if init_range is None:
            init_range = 1.0 / math.sqrt(self.hidden_size) if self.hidden_size else 0.1
        for p in params.values():
            nn.init.uniform_(p, -init_range, init_range)

    def __iter__(self):
        # make, init = cell
        yield self.make
        yield self.init

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.input_size}, {self.hidden_size})"


def _zero_state(
    batch_size: int,
    hidden_size: int,
    dtype: Optional[torch.dtype],
    device: Optional[Union[str, torch.device]],
    cache: Optional[Tensor],
) -> Tensor:
    if cache is not None:
        dtype = dtype or cache.dtype
        device = torch.device(device) if device is not None else cache.device
        if cache.dtype == dtype and cache.device == device:
            with torch.no_grad():
                cache.resize_(batch_size, hidden_size).zero_()
            return cache
    return torch.zeros(batch_size, hidden_size, dtype=dtype, device=device)


__all__ = [
    'CellType',
    'ElmanGate',
    'LSTMGate',
    'GRUGate',
    'gate_slice',
    'Cell',
]
