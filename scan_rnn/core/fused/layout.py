"""
ScanRNN.core.fused.layout

Parameter and state layout translation between step-units and the fused
torch backend (nn.RNN / nn.LSTM / nn.GRU, cuDNN on GPU).

Projection ids:
    A fused layer has 2 * num_gates linear projections. Projection p < G is
    the input-side projection of gate p (weight_ih_l{k}); projection p >= G
    is the hidden-side projection of gate p - G (weight_hh_l{k}). Rows of
    gate g are [g * H, (g + 1) * H).

        rnn_tanh / rnn_relu:  2 projections
        gru:                  6 projections  (reset, update, candidate)
        lstm:                 8 projections  (input, forget, cell, output)

    Gate ids come from the cells' gate enums, so a gate is always copied to
    the rows the backend reads it from.

Biases:
    Step-units have no bias. Fused modules are built with bias=True (cuDNN
    always has one), the biases are zeroed and frozen (requires_grad False).

State:
    Step-units keep one state per layer ([B, H], or (c, h) for LSTM). A
    fused module holds [num_layers, B, H], or (h, c) for LSTM, in torch
    order. stack_hidden / unstack_hidden translate given a grouping of
    layers into fused modules.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type, Union
from enum import IntEnum

import torch
from torch import nn, Tensor

from ..cells import CellType, ElmanGate, GRUGate, LSTMGate, gate_slice
from ..errors import UnsupportedConfiguration


# =============================================================================
# TABLES
# =============================================================================

GATES: Dict[CellType, Type[IntEnum]] = {
    CellType.RNN_TANH: ElmanGate,
    CellType.RNN_RELU: ElmanGate,
    CellType.GRU: GRUGate,
    CellType.LSTM: LSTMGate,
}

NUM_PROJECTIONS: Dict[CellType, int] = {
    cell_type: 2 * len(gates) for cell_type, gates in GATES.items()
}

FUSED_MODES: Dict[CellType, Tuple[Type[nn.RNNBase], Dict[str, Any]]] = {
    CellType.RNN_TANH: (nn.RNN, {'nonlinearity': 'tanh'}),
    CellType.RNN_RELU: (nn.RNN, {'nonlinearity': 'relu'}),
    CellType.GRU: (nn.GRU, {}),
    CellType.LSTM: (nn.LSTM, {}),
}


def projection_offsets(cell_type: CellType) -> Dict[IntEnum, Tuple[int, int]]:
    """gate -> (input projection id, hidden projection id)"""
    gates = _gates(cell_type)
    return {gate: (int(gate), int(gate) + len(gates)) for gate in gates}


def _gates(cell_type: CellType) -> Type[IntEnum]:
    if cell_type not in GATES:
        raise UnsupportedConfiguration(
            f"cell type {cell_type.value!r} has no fused backend; "
            f"supported: {', '.join(t.value for t in GATES)}"
        )
    return GATES[cell_type]


# =============================================================================
# MODULES
# =============================================================================

def build_fused(
    cell_type: CellType,
    input_size: int,
    hidden_sizes: Sequence[int],
    dtype: Optional[torch.dtype] = None,
    device: Optional[Union[str, torch.device]] = None,
) -> nn.RNNBase:
    """
    One fused module covering every layer in hidden_sizes.

    Raises UnsupportedConfiguration for cell types without a fused mode and
    for heterogeneous hidden sizes (the backend has one hidden size per
    module).
    """
    _gates(cell_type)
    if len(set(hidden_sizes)) != 1:
        raise UnsupportedConfiguration(
            f"fused backend needs equal hidden sizes, got {list(hidden_sizes)}"
        )
    cls, kwargs = FUSED_MODES[cell_type]
    module = cls(
        input_size,
        hidden_sizes[0],
        num_layers=len(hidden_sizes),
        bias=True,
        **kwargs,
    )
    if dtype is not None or device is not None:
        module.to(dtype=dtype, device=device)
    zero_field(module, 'bias')
    return module


def zero_field(module: nn.RNNBase, field: str) -> None:
    """Zero and freeze every parameter whose name starts with `field`."""
    for name, p in module.named_parameters():
        if name.startswith(field):
            with torch.no_grad():
                p.zero_()
            p.requires_grad_(False)


def _projection(module: nn.RNNBase, projection: int) -> Tuple[str, slice]:
    gates = module.weight_ih_l0.shape[0] // module.hidden_size
    if projection < gates:
        return 'ih', gate_slice(projection, module.hidden_size)
    return 'hh', gate_slice(projection - gates, module.hidden_size)


def linear_params(module: nn.RNNBase, layer: int, projection: int) -> Tuple[Tensor, Tensor]:
    """
    (weight rows, bias rows) of one projection of one layer.

    Both are views into the module's storage; writing into them updates
    the module.
    """
    side, rows = _projection(module, projection)
    weight = getattr(module, f'weight_{side}_l{layer}')
    bias = getattr(module, f'bias_{side}_l{layer}')
    return weight.detach()[rows], bias.detach()[rows]


def linear_grads(module: nn.RNNBase, layer: int, projection: int) -> Optional[Tensor]:
    """Gradient rows of one projection's weight, or None when no gradient exists."""
    side, rows = _projection(module, projection)
    grad = getattr(module, f'weight_{side}_l{layer}').grad
    return None if grad is None else grad[rows]


# =============================================================================
# PARAMETERS
# =============================================================================

def copy_params(
    cell_type: CellType,
    layer_params: Sequence[Mapping[str, Tensor]],
    modules: Sequence[nn.RNNBase],
) -> None:
    """
    Copy step-unit parameters into fused modules gate by gate.

    layer_params[i] is the ParameterSet of layer i; layers are assigned to
    modules in order, module.num_layers at a time.
    """
    offsets = projection_offsets(cell_type)
    for module, k, params in _assign(modules, layer_params):
        H = module.hidden_size
        with torch.no_grad():
            for gate, (p_in, p_hid) in offsets.items():
                w, b = linear_params(module, k, p_in)
                w.copy_(params['i2h'][gate_slice(gate, H)])
                b.zero_()
                w, b = linear_params(module, k, p_hid)
                w.copy_(params['h2h'][gate_slice(gate, H)])
                b.zero_()


def extract_params(cell_type: CellType, modules: Sequence[nn.RNNBase]) -> List[Dict[str, Tensor]]:
    """Inverse of copy_params: per-layer {'i2h', 'h2h'} tensors (copies)."""
    return _extract(cell_type, modules, grads=False)


def extract_grads(cell_type: CellType, modules: Sequence[nn.RNNBase]) -> List[Dict[str, Optional[Tensor]]]:
    """Per-layer {'i2h', 'h2h'} weight gradients in step-unit layout."""
    return _extract(cell_type, modules, grads=True)


def _extract(cell_type: CellType, modules: Sequence[nn.RNNBase], grads: bool) -> List[Dict[str, Any]]:
    offsets = projection_offsets(cell_type)
    result = []
    for module in modules:
        for k in range(module.num_layers):
            i2h, h2h = [], []
            for gate in sorted(offsets):
                p_in, p_hid = offsets[gate]
                if grads:
                    g_in, g_hid = linear_grads(module, k, p_in), linear_grads(module, k, p_hid)
                    if g_in is None or g_hid is None:
                        i2h = h2h = None
                        break
                    i2h.append(g_in)
                    h2h.append(g_hid)
                else:
                    i2h.append(linear_params(module, k, p_in)[0])
                    h2h.append(linear_params(module, k, p_hid)[0])
            result.append({
                'i2h': None if i2h is None else torch.cat(i2h, dim=0).clone(),
                'h2h': None if h2h is None else torch.cat(h2h, dim=0).clone(),
            })
    return result


def _assign(modules: Sequence[nn.RNNBase], per_layer: Sequence[Any]):
    """Yield (module, layer index within module, per-layer item)."""
    total = sum(m.num_layers for m in modules)
    if total != len(per_layer):
        raise UnsupportedConfiguration(
            f"fused modules cover {total} layers, got {len(per_layer)}"
        )
    i = 0
    for module in modules:
        for k in range(module.num_layers):
            yield module, k, per_layer[i]
            i += 1


# =============================================================================
# STATE
# =============================================================================

def stack_hidden(cell_type: CellType, states: Sequence[Any], modules: Sequence[nn.RNNBase]) -> List[Any]:
    """Per-layer states -> per-module fused states."""
    result = []
    i = 0
    for module in modules:
        group = states[i:i + module.num_layers]
        i += module.num_layers
        if cell_type is CellType.LSTM:
            h = torch.stack([s[1] for s in group], dim=0)
            c = torch.stack([s[0] for s in group], dim=0)
            result.append((h, c))
        else:
            result.append(torch.stack(list(group), dim=0))
    if i != len(states):
        raise UnsupportedConfiguration(
            f"fused modules cover {i} layers, got {len(states)} states"
        )
    return result


def unstack_hidden(cell_type: CellType, fused: Sequence[Any]) -> List[Any]:
    """Per-module fused states -> per-layer states."""
    states = []
    for state in fused:
        if cell_type is CellType.LSTM:
            h, c = state
            states.extend((c[k], h[k]) for k in range(h.shape[0]))
        else:
            states.extend(state[k] for k in range(state.shape[0]))
    return states


__all__ = [
    'GATES',
    'NUM_PROJECTIONS',
    'FUSED_MODES',
    'projection_offsets',
    'build_fused',
    'zero_field',
    'linear_params',
    'linear_grads',
    'copy_params',
    'extract_params',
    'extract_grads',
    'stack_hidden',
    'unstack_hidden',
]
