"""
ScanRNN.core.bidirectional

Bidirectional composition: per level, a recurrent layer reading the
sequence forward and a structural clone reading it reversed.

Level input composite:   [(h_fwd, h_rev), sequence]
Level output:            [hidden_history, output_history]

    hidden_history[t] = (fwd_state_t, rev_state_t)
        each in its own layer's processing order, so hidden_history[-1]
        holds both final states and matches the hidden buffer layout.
    output_history[t] = cat(fwd_out[t], rev_out_reversed[t])  on the feature axis

The reverse layer runs on reverse(sequence); its output history is reversed
back before concatenation so both halves of output[t] describe step t.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Union

import torch

from .cells import Cell
from .errors import LengthMismatch, ShapeMismatch
from .module import Module, Mode, as_mode
from .recurrent import RecurrentLayer
from .scan import SequenceScan
from .step_unit import StepUnit
from .table_util import reverse, split_sequence, zip_tables


class BidirectionalLayer(Module):
    """
    Args:
        layer: Forward-direction recurrent layer (dim=1 over [state, x]).
        rev_layer: Reverse-direction layer. Built with layer.clone(share)
            when None.
        share: Parameter names the reverse layer aliases when it is built
            here. Empty (default) means independent parameters; '*' ties all.
    """

    def __init__(
        self,
        layer: RecurrentLayer,
        rev_layer: Optional[RecurrentLayer] = None,
        share: Sequence[str] = (),
    ):
        super().__init__()
        self.layer = layer
        self.rev_layer = rev_layer if rev_layer is not None else layer.clone(share)
        self._split: Optional[int] = None

    def parameter_modules(self) -> List[Module]:
        return [self.layer, self.rev_layer]

    def clone(self, share: Sequence[str] = ()) -> 'BidirectionalLayer':
        return BidirectionalLayer(self.layer.clone(share), self.rev_layer.clone(share))

    def forward(self, input: Sequence[Any], mode: Union[str, Mode] = Mode.TRAIN) -> List[List[Any]]:
        mode = as_mode(mode)
        hidden, sequence = input
        if len(hidden) != 2:
            raise ShapeMismatch("bidirectional state must be a (forward, reverse) pair")
        fwd_hidden, rev_hidden = hidden
        steps = split_sequence(sequence)

        fwd_hist, fwd_out = self.layer([fwd_hidden, steps], mode)
        rev_hist, rev_out = self.rev_layer([rev_hidden, reverse(steps)], mode)
        rev_out = reverse(rev_out)

        self._split = fwd_out[0].shape[-1] if fwd_out else None
        hist = [tuple(pair) for pair in zip_tables(fwd_hist, rev_hist)]
        out = [torch.cat(pair, dim=-1) for pair in zip_tables(fwd_out, rev_out)]
        self.output = [hist, out]
        return self.output

    def backward(
        self,
        input: Sequence[Any],
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        mode = as_mode(mode)
        if self.output is None:
            raise LengthMismatch("backward called without a matching forward")
        length = len(self.output[1])
        grad_hist, grad_out = grad_output if grad_output is not None else (None, None)

        fwd_hist_grad = rev_hist_grad = None
        if grad_hist is not None:
            if len(grad_hist) != length:
                raise LengthMismatch(
                    f"hidden gradient history has length {len(grad_hist)}, forward recorded {length}"
                )
            fwd_hist_grad = [None if g is None else g[0] for g in grad_hist]
            rev_hist_grad = [None if g is None else g[1] for g in grad_hist]

        fwd_out_grad = rev_out_grad = None
        if grad_out is not None:
            grad_out = split_sequence(grad_out)
            if len(grad_out) != length:
                raise LengthMismatch(
                    f"output gradient history has length {len(grad_out)}, forward recorded {length}"
                )
            h = self._split
            fwd_out_grad = [None if g is None else g[..., :h] for g in grad_out]
            rev_out_grad = reverse([None if g is None else g[..., h:] for g in grad_out])

        fwd_grad = self.layer.backward(None, [fwd_hist_grad, fwd_out_grad], scale, mode)
        rev_grad = self.rev_layer.backward(None, [rev_hist_grad, rev_out_grad], scale, mode)

        seq_grad = [f + r for f, r in zip_tables(fwd_grad[1], reverse(rev_grad[1]))]
        self.grad_input = [(fwd_grad[0], rev_grad[0]), seq_grad]
        return self.grad_input

    def extra_repr(self) -> str:
        return f"split={self._split}"


class BidirectionalNetwork(SequenceScan):
    """
    Levels of BidirectionalLayer scanned over depth.

    Level 0 reads `input_size` features; level i > 0 reads the concatenated
    2 * hidden(i-1) features of the level below.

    Input composite:  [[(h_fwd, h_rev) per level], sequence]
    Output:           [hidden_history, output_history], indexed [level][step]

    `levels` takes prebuilt BidirectionalLayers in place of building them
    from `cells`; clone() uses it.
    """

    def __init__(
        self,
        cells: Sequence[Cell],
        share: Sequence[str] = (),
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
        levels: Optional[Sequence[BidirectionalLayer]] = None,
    ):
        if not cells:
            raise ValueError("cells list is empty")
        for i in range(1, len(cells)):
            below = cells[i - 1].hidden_size
            if cells[i].input_size is not None and below is not None \
                    and cells[i].input_size != 2 * below:
                raise ShapeMismatch(
                    f"level {i} expects input size {cells[i].input_size}, "
                    f"level below gives 2 * {below} = {2 * below}"
                )
        if levels is None:
            levels = [
                BidirectionalLayer(RecurrentLayer(1, StepUnit(cell, dtype=dtype, device=device)), share=share)
                for cell in cells
            ]
        super().__init__(0, levels, axis='layer')
        self.cells = list(cells)
        self.share = tuple(share)

    @property
    def num_layers(self) -> int:
        return len(self.cells)

    def forward(self, input: Sequence[Any], mode: Union[str, Mode] = Mode.TRAIN) -> List[List[Any]]:
        hidden, _ = input
        if len(hidden) != self.num_layers:
            raise ShapeMismatch(f"expected {self.num_layers} state pairs, got {len(hidden)}")
        return super().forward(input, mode)

    def clone(self, share: Sequence[str] = ()) -> 'BidirectionalNetwork':
        return BidirectionalNetwork(
            self.cells, self.share, levels=[level.clone(share) for level in self.units]
        )


__all__ = ['BidirectionalLayer', 'BidirectionalNetwork']
