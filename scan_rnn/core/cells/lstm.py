"""
LSTMCell - long short-term memory step without bias.

Gate order (LSTMGate): input, forget, cell, output. Same as nn.LSTM.

    i, f, g, o = split(W_in x + W_hid h)
    c' = sigmoid(f) * c + sigmoid(i) * tanh(g)
    h' = sigmoid(o) * tanh(c')

State is the pair (c, h); output is h'.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from typing import Mapping, Optional, Tuple, Union

import torch
from torch import Tensor
import torch.nn.functional as F

from .base import Cell, CellType, LSTMGate, _zero_state, gate_slice


class LSTMCell(Cell):
    cell_type = CellType.LSTM
    gates = LSTMGate

    def make(
        self,
        params: Mapping[str, Tensor],
        state: Tuple[Tensor, Tensor],
        input: Tensor,
    ) -> Tuple[Tuple[Tensor, Tensor], Tensor]:
        c, h = state
        gates = F.linear(input, params['i2h']) + F.linear(h, params['h2h'])
        H = h.shape[-1]
        i, f, g, o = (gates[..., gate_slice(gate, H)] for gate in (
            LSTMGate.INPUT, LSTMGate.FORGET, LSTMGate.CELL, LSTMGate.OUTPUT,
        ))

        c_next = torch.sigmoid(f) * c + torch.sigmoid(i) * torch.tanh(g)
        h_next = torch.sigmoid(o) * torch.tanh(c_next)
        return (c_next, h_next), h_next

    def init(
        self,
        batch_size: int,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
        cache: Optional[Tuple[Tensor, Tensor]] = None,
    ) -> Tuple[Tensor, Tensor]:
        c_cache, h_cache = cache if cache is not None else (None, None)
        return (
            _zero_state(batch_size, self.hidden_size, dtype, device, c_cache),
            _zero_state(batch_size, self.hidden_size, dtype, device, h_cache),
        )

    def hidden(self, state: Tuple[Tensor, Tensor]) -> Tensor:
        return state[1]
