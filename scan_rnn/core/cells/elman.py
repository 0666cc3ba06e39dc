"""
ElmanCell - single-gate recurrence without bias.

    h' = g(W_in x + W_hid h),   output = h'

g is sigmoid ('elman'), tanh ('rnn_tanh') or relu ('rnn_relu'). Only the
tanh and relu variants have a fused backend counterpart.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from typing import Mapping, Tuple

import torch
from torch import Tensor
import torch.nn.functional as F

from .base import Cell, CellType, ElmanGate


_NONLINEARITIES = {
    'sigmoid': (torch.sigmoid, CellType.ELMAN),
    'tanh': (torch.tanh, CellType.RNN_TANH),
    'relu': (F.relu, CellType.RNN_RELU),
}

_NAME_TO_NONLINEARITY = {
    'elman': 'sigmoid',
    'rnn_tanh': 'tanh',
    'rnn_relu': 'relu',
}


class ElmanCell(Cell):
    gates = ElmanGate

    def __init__(self, input_size: int, hidden_size: int, nonlinearity: str = 'sigmoid'):
        super().__init__(input_size, hidden_size)
        if nonlinearity not in _NONLINEARITIES:
            raise ValueError(
                f"nonlinearity must be one of {tuple(_NONLINEARITIES)}, got {nonlinearity!r}"
            )
        self.nonlinearity = nonlinearity
        self._act, self.cell_type = _NONLINEARITIES[nonlinearity]

    @classmethod
    def from_name(cls, name: str, input_size: int, hidden_size: int, **kwargs) -> 'ElmanCell':
        kwargs.setdefault('nonlinearity', _NAME_TO_NONLINEARITY.get(name, 'sigmoid'))
        return cls(input_size, hidden_size, **kwargs)

    def make(self, params: Mapping[str, Tensor], state: Tensor, input: Tensor) -> Tuple[Tensor, Tensor]:
        h = self._act(F.linear(input, params['i2h']) + F.linear(state, params['h2h']))
        return h, h

    def __repr__(self) -> str:
        return f"ElmanCell({self.input_size}, {self.hidden_size}, nonlinearity={self.nonlinearity!r})"
