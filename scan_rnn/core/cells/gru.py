"""
GRUCell - gated recurrent unit step without bias.

Gate order (GRUGate): reset, update, candidate. Same as nn.GRU.

    r = sigmoid(W_r x + U_r h)
    u = sigmoid(W_u x + U_u h)
    n = tanh(W_n x + r * (U_n h))
    h' = n + u * (h - n)

The last line is (1 - u) * n + u * h, which is also nn.GRU's update rule.
Do not flip it to u * n + (1 - u) * h.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from typing import Mapping, Tuple

import torch
from torch import Tensor
import torch.nn.functional as F

from .base import Cell, CellType, GRUGate, gate_slice


class GRUCell(Cell):
    cell_type = CellType.GRU
    gates = GRUGate

    def make(self, params: Mapping[str, Tensor], state: Tensor, input: Tensor) -> Tuple[Tensor, Tensor]:
        gi = F.linear(input, params['i2h'])
        gh = F.linear(state, params['h2h'])
        H = state.shape[-1]
        reset, update, candidate = (
            gate_slice(GRUGate.RESET, H), gate_slice(GRUGate.UPDATE, H), gate_slice(GRUGate.CANDIDATE, H),
        )
        i_r, i_u, i_n = gi[..., reset], gi[..., update], gi[..., candidate]
        h_r, h_u, h_n = gh[..., reset], gh[..., update], gh[..., candidate]

        r = torch.sigmoid(i_r + h_r)
        u = torch.sigmoid(i_u + h_u)
        n = torch.tanh(i_n + r * h_n)

        h = n + u * (state - n)
        return h, h
