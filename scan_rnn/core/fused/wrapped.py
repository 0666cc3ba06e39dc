"""
ScanRNN.core.fused.wrapped

FusedRecurrent - a stacked network executed by torch's fused RNN modules.

Homogeneous hidden sizes map to one nn.LSTM / nn.GRU / nn.RNN with
num_layers = L. Heterogeneous sizes are not expressible in one module;
build_fused raises UnsupportedConfiguration and from_cells falls back to
one single-layer module per layer, chained by hand (RuntimeWarning).

Input:   sequence (list of T [B, input] tensors or [T, B, input])
Hidden:  list with one fused state per module ([l, B, H] or (h, c))
Output:  [final fused state per module, [output_history]]

The output history is the top layer's per-step outputs wrapped as a
single-layer history, so `output[1][-1]` reads the top layer exactly as it
does for a StackedNetwork.

Gradients w.r.t. the weights are added into their `.grad` accumulators
explicitly, scaled like the step-units do. Biases are frozen at zero.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import warnings
from typing import Any, Iterator, List, Optional, Sequence, Union

import torch
from torch import nn, Tensor

from ..cells import Cell, CellType
from ..errors import InvalidOperation, LengthMismatch, ShapeMismatch, UnsupportedConfiguration
from ..hidden import HiddenStateManager
from ..module import Module, Mode, as_mode
from ..stacked import check_layer_sizes
from ..table_util import flatten_like, flatten_tensors, join_sequence, map_tensors, split_sequence, unflatten_like
from .layout import GATES, build_fused, copy_params, stack_hidden, unstack_hidden


class FusedRecurrent(HiddenStateManager, Module):
    """
    Args:
        cell_type: One of rnn_tanh, rnn_relu, gru, lstm.
        input_size: Features of the first layer.
        hidden_sizes: Hidden size of every layer.
        persist_hidden: See core.hidden.
        dtype, device: For the fused modules.
        debug: Print build diagnostics.
    """

    def __init__(
        self,
        cell_type: Union[str, CellType],
        input_size: int,
        hidden_sizes: Sequence[int],
        persist_hidden: bool = True,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
        debug: bool = False,
    ):
        super().__init__()
        if isinstance(cell_type, str):
            cell_type = CellType(cell_type)
        if not hidden_sizes:
            raise ValueError("hidden_sizes is empty")
        if cell_type not in GATES:
            raise UnsupportedConfiguration(
                f"cell type {cell_type.value!r} has no fused backend; "
                f"supported: {', '.join(t.value for t in GATES)}"
            )

        self.cell_type = cell_type
        self.input_size = input_size
        self.hidden_sizes = list(hidden_sizes)
        self.persist_hidden = persist_hidden
        self.hidden_buffer = None
        self._record = None

        try:
            modules = [build_fused(cell_type, input_size, self.hidden_sizes, dtype, device)]
        except UnsupportedConfiguration as e:
            if len(set(self.hidden_sizes)) == 1:
                raise
            warnings.warn(
                f"{e}; falling back to one fused module per layer",
                RuntimeWarning,
            )
            sizes = [input_size] + self.hidden_sizes
            modules = [
                build_fused(cell_type, sizes[i], [sizes[i + 1]], dtype, device)
                for i in range(len(self.hidden_sizes))
            ]
        self.fused = nn.ModuleList(modules)
        self._init_fns = [self._module_init(m) for m in self.fused]

        if debug:
            print(f"[ScanRNN] Fused {cell_type.value}: {len(self.fused)} module(s) "
                  f"for hidden sizes {self.hidden_sizes}")

    @classmethod
    def from_cells(
        cls,
        cells: Sequence[Cell],
        params: Optional[Sequence[Any]] = None,
        **kwargs,
    ) -> 'FusedRecurrent':
        """Build from step-unit cells, copying `params` (one set per layer) if given."""
        if not cells:
            raise ValueError("cells list is empty")
        cell_types = {cell.cell_type for cell in cells}
        if len(cell_types) != 1:
            raise UnsupportedConfiguration(
                f"fused backend needs one cell type, got {sorted(t.value for t in cell_types)}"
            )
        check_layer_sizes(cells)
        fused = cls(
            cells[0].cell_type,
            cells[0].input_size,
            [cell.hidden_size for cell in cells],
            **kwargs,
        )
        if params is not None:
            fused.load_params(params)
        return fused

    @classmethod
    def from_network(cls, network: Module, **kwargs) -> 'FusedRecurrent':
        """
        Build from a StackedNetwork (or a RecurrentNetwork around one) with
        identical weights.
        """
        stacked = getattr(network, 'body', network)
        units = stacked.step_units
        for name in ('dtype', 'device'):
            kwargs.setdefault(name, getattr(units[0].params['i2h'], name))
        kwargs.setdefault('persist_hidden', getattr(network, 'persist_hidden', True))
        return cls.from_cells(stacked.cells, [u.params for u in units], **kwargs)

    def load_params(self, params: Sequence[Any]) -> None:
        copy_params(self.cell_type, params, list(self.fused))

    def _module_init(self, module: nn.RNNBase):
        lstm = self.cell_type is CellType.LSTM

        def init(batch_size, dtype=None, device=None, cache=None):
            shape = (module.num_layers, batch_size, module.hidden_size)

            def zeros(c):
                if c is not None and c.dtype == dtype and c.device == torch.device(device):
                    with torch.no_grad():
                        return c.resize_(*shape).zero_()
                return torch.zeros(*shape, dtype=dtype, device=device)

            if lstm:
                h_cache, c_cache = cache if cache is not None else (None, None)
                return zeros(h_cache), zeros(c_cache)
            return zeros(cache)

        return init

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def parameters(self, recurse: bool = True) -> Iterator[nn.Parameter]:
        """Trainable weights; the frozen zero biases are excluded."""
        for p in self.fused.parameters():
            if p.requires_grad:
                yield p

    def clone(self, share: Sequence[str] = ()) -> 'FusedRecurrent':
        raise UnsupportedConfiguration("FusedRecurrent cannot be cloned")

    def reset_parameters(self, init_range: Optional[float] = None) -> None:
        self._check_mutable('reset_parameters')
        for module in self.fused:
            r = init_range if init_range is not None else module.hidden_size ** -0.5
            for p in module.parameters():
                if p.requires_grad:
                    nn.init.uniform_(p, -r, r)

    # -------------------------------------------------------------------------
    # Hidden state (per-module layout)
    # -------------------------------------------------------------------------

    def layer_states(self, fused_states: Sequence[Any]) -> List[Any]:
        """Per-module fused states -> per-layer step-unit states."""
        return unstack_hidden(self.cell_type, fused_states)

    def fused_states(self, layer_states: Sequence[Any]) -> List[Any]:
        """Per-layer step-unit states -> per-module fused states."""
        return stack_hidden(self.cell_type, layer_states, list(self.fused))

    def get_last_hidden(self) -> List[Any]:
        if self.output is None:
            raise InvalidOperation("get_last_hidden() called before forward()")
        return list(self.output[0])

    # -------------------------------------------------------------------------
    # Forward / backward
    # -------------------------------------------------------------------------

    def forward(
        self,
        input: Any,
        mode: Union[str, Mode] = Mode.TRAIN,
        hidden: Optional[List[Any]] = None,
    ) -> List[Any]:
        mode = as_mode(mode)
        hidden = list(self._resolve_hidden(hidden))
        if len(hidden) != len(self.fused):
            raise ShapeMismatch(f"expected {len(self.fused)} fused states, got {len(hidden)}")
        x = join_sequence(split_sequence(input)) if not isinstance(input, Tensor) else input
        if x.dim() != 3 or x.shape[-1] != self.input_size:
            raise ShapeMismatch(
                f"expected input [T, B, {self.input_size}], got {tuple(x.shape)}"
            )

        if mode is Mode.EVALUATE:
            self._record = None
            with torch.no_grad():
                states, out = self._run(x, hidden)
            self.output = [states, [list(out.unbind(0))]]
            if self.persist_hidden:
                self.save_last_hidden()
            return self.output

        x_leaf = x.detach().requires_grad_(True)
        hidden_leaves = map_tensors(lambda t: t.detach().requires_grad_(True), hidden)
        with torch.enable_grad():
            states, out = self._run(x_leaf, hidden_leaves)
        self._record = (x_leaf, hidden_leaves, states, out)
        self.output = [map_tensors(Tensor.detach, states), [list(out.detach().unbind(0))]]
        return self.output

    def _run(self, x: Tensor, hidden: Sequence[Any]):
        states = []
        for module, h0 in zip(self.fused, hidden):
            x, hn = module(x, h0)
            states.append(hn)
        return states, x

    def backward(
        self,
        input: Any,
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        mode = as_mode(mode)
        if self._record is None:
            raise LengthMismatch("backward called without a recorded TRAIN forward")
        x_leaf, hidden_leaves, states, out = self._record
        self._record = None

        grad_states, grad_hist = grad_output if grad_output is not None else (None, None)
        outputs, grads = [], []
        for s, g in zip(flatten_tensors(states), flatten_like(states, grad_states)):
            if g is not None:
                outputs.append(s)
                grads.append(g)
        if grad_hist is not None:
            if len(grad_hist) != 1:
                raise ShapeMismatch("fused output history has a single layer")
            steps = split_sequence(grad_hist[0]) if grad_hist[0] is not None else None
            if steps is not None:
                if len(steps) != out.shape[0]:
                    raise LengthMismatch(
                        f"gradient history has length {len(steps)}, forward recorded {out.shape[0]}"
                    )
                step_grads = [torch.zeros_like(o) if g is None else g for o, g in zip(out.unbind(0), steps)]
                outputs.append(out)
                grads.append(torch.stack(step_grads, dim=0))

        params = list(self.parameters())
        hidden_flat = flatten_tensors(hidden_leaves)
        targets = [x_leaf] + hidden_flat + params
        if outputs:
            result = torch.autograd.grad(outputs, targets, grads, allow_unused=True)
        else:
            result = [None] * len(targets)

        def zero_if_none(g, t):
            return torch.zeros_like(t) if g is None else g

        grad_x = zero_if_none(result[0], x_leaf)
        grad_hidden = [zero_if_none(g, t) for g, t in zip(result[1:1 + len(hidden_flat)], hidden_flat)]
        with torch.no_grad():
            for p, g in zip(params, result[1 + len(hidden_flat):]):
                if g is None:
                    continue
                if p.grad is None:
                    p.grad = torch.zeros_like(p)
                p.grad.add_(g, alpha=scale)

        self.grad_input = [unflatten_like(hidden_leaves, grad_hidden), list(grad_x.unbind(0))]
        if mode is Mode.TRAIN and self.persist_hidden:
            self.save_last_hidden()
        return self.grad_input

    def extra_repr(self) -> str:
        return (f"cell_type={self.cell_type.value}, input_size={self.input_size}, "
                f"hidden_sizes={self.hidden_sizes}")


__all__ = ['FusedRecurrent']
