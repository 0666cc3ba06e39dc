"""
ScanRNN.api

Main API entry point.

    import scan_rnn
    net = scan_rnn.make_recurrent('lstm', 32, [64, 64])
    net.initialize_hidden(batch_size)
    output = net(sequence, 'train')

Convenience constructors:
    net = scan_rnn.LSTM(32, 64, num_layers=2)
    net = scan_rnn.GRU(32, 64, use_fused=True)

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

import dataclasses
from typing import Any, List, Mapping, Optional, Sequence, Union

import torch
from torch import nn

from .core.bidirectional import BidirectionalNetwork
from .core.cells import Cell, CellType
from .core.config import ScanConfig, get_default_config
from .core.errors import UnsupportedConfiguration
from .core.fused import FusedRecurrent, compare
from .core.hidden import RecurrentNetwork
from .core.module import Module
from .core.registry import build_cell, get_registry
from .core.stacked import StackedNetwork
from .core.step_unit import StepUnit


CellLike = Union[str, Cell, Sequence[Cell]]


# =============================================================================
# MAIN API
# =============================================================================

def make_recurrent(
    cell: CellLike,
    input_size: Optional[int] = None,
    hidden_sizes: Optional[Union[int, Sequence[int]]] = None,
    *,
    config: Optional[ScanConfig] = None,
    device: Optional[Union[str, torch.device]] = None,
    # Convenience kwargs (override config)
    composition: Optional[str] = None,
    persist_hidden: Optional[bool] = None,
    precision: Optional[str] = None,
    init_range: Optional[float] = None,
    use_fused: Optional[bool] = None,
    debug: Optional[bool] = None,
    **cell_kwargs,
) -> Union[RecurrentNetwork, FusedRecurrent]:
    """
    Build a stacked recurrent network with a hidden-state lifecycle.

    Args:
        cell: Registered cell name ('lstm', 'gru', 'rnn_tanh', ...), or one
            Cell per layer.
        input_size: Features of the first layer. Required with a cell name.
        hidden_sizes: Hidden size per layer (an int means one layer).
            Required with a cell name.
        config: ScanConfig instance. Uses default if None.
        device: Parameter device.
        composition, persist_hidden, precision, init_range, use_fused, debug:
            Override the matching config field.
        **cell_kwargs: Passed to the cell constructor (e.g. nonlinearity).

    Returns:
        RecurrentNetwork, or FusedRecurrent when config.use_fused is set.

    Example:
        net = make_recurrent('gru', 16, [32, 32, 32])
        net = make_recurrent('lstm', 16, 32, composition='time_outer')
        net = make_recurrent('lstm', 16, 32, config=ScanConfig.fast())
    """
    cfg = _resolve_config(
        config,
        composition=composition,
        persist_hidden=persist_hidden,
        precision=precision,
        init_range=init_range,
        use_fused=use_fused,
        debug=debug,
    )
    cells = _build_cells(cell, input_size, hidden_sizes, **cell_kwargs)

    if cfg.use_fused:
        return _build_fused(cells, cfg, device)

    if cfg.debug:
        print(f"[ScanRNN] Building {cfg.composition} network: {cells}")

    stacked = StackedNetwork(cells, cfg.composition, dtype=cfg.dtype, device=device)
    if cfg.init_range is not None:
        stacked.reset_parameters(cfg.init_range)

    network = RecurrentNetwork(
        stacked,
        [c.init for c in cells],
        persist_hidden=cfg.persist_hidden,
    )

    if cfg.debug:
        n_params = sum(p.numel() for p in network.parameters())
        print(f"[ScanRNN] Built {network.num_layers} layers, {n_params} parameters")

    return network


def make_bidirectional(
    cell: CellLike,
    input_size: Optional[int] = None,
    hidden_sizes: Optional[Union[int, Sequence[int]]] = None,
    *,
    share: Sequence[str] = (),
    config: Optional[ScanConfig] = None,
    device: Optional[Union[str, torch.device]] = None,
    persist_hidden: bool = False,
    precision: Optional[str] = None,
    init_range: Optional[float] = None,
    debug: Optional[bool] = None,
    **cell_kwargs,
) -> RecurrentNetwork:
    """
    Build a bidirectional network.

    Level i > 0 reads the 2 * hidden_sizes[i-1] features of the level
    below. The reverse direction of every level is a clone of the forward
    one; `share` names the parameters the two directions tie ('*' for all).

    The hidden buffer holds one (forward, reverse) state pair per level.
    Persistence is off unless `persist_hidden` is passed; config.persist_hidden
    applies to stacked and fused networks only.
    """
    cfg = _resolve_config(
        config,
        precision=precision,
        init_range=init_range,
        debug=debug,
    )
    if cfg.use_fused:
        raise UnsupportedConfiguration("bidirectional networks have no fused backend")

    cells = _build_cells(cell, input_size, hidden_sizes, bidirectional=True, **cell_kwargs)

    if cfg.debug:
        print(f"[ScanRNN] Building bidirectional network: {cells}, share={tuple(share)}")

    body = BidirectionalNetwork(cells, share=share, dtype=cfg.dtype, device=device)
    if cfg.init_range is not None:
        body.reset_parameters(cfg.init_range)

    return RecurrentNetwork(
        body,
        [c.init for c in cells],
        persist_hidden=persist_hidden,
        paired=True,
    )


def make_fused_recurrent(
    cell: CellLike,
    input_size: Optional[int] = None,
    hidden_sizes: Optional[Union[int, Sequence[int]]] = None,
    *,
    config: Optional[ScanConfig] = None,
    device: Optional[Union[str, torch.device]] = None,
    persist_hidden: Optional[bool] = None,
    precision: Optional[str] = None,
    init_range: Optional[float] = None,
    validate: Optional[bool] = None,
    debug: Optional[bool] = None,
    **cell_kwargs,
) -> FusedRecurrent:
    """
    Build a network on the fused torch backend.

    Weights are initialized on a stacked reference network and copied
    gate by gate, so both backends start from the same function. With
    config.validate the two are compared after the copy and ValueError is
    raised when they disagree.

    Raises UnsupportedConfiguration for cells without a fused mode
    ('elman', custom cells).
    """
    cfg = _resolve_config(
        config,
        persist_hidden=persist_hidden,
        precision=precision,
        init_range=init_range,
        validate=validate,
        debug=debug,
    )
    cells = _build_cells(cell, input_size, hidden_sizes, **cell_kwargs)
    return _build_fused(cells, cfg, device)


# =============================================================================
# CONVENIENCE CONSTRUCTORS
# =============================================================================

def RNN(
    input_size: int,
    hidden_size: int,
    num_layers: int = 1,
    nonlinearity: str = 'tanh',
    *,
    use_fused: Optional[bool] = None,
    **kwargs,
) -> Union[RecurrentNetwork, FusedRecurrent]:
    """Homogeneous tanh or relu RNN."""
    if nonlinearity not in ('tanh', 'relu'):
        raise ValueError(f"nonlinearity must be 'tanh' or 'relu', got {nonlinearity!r}")
    return make_recurrent(
        f'rnn_{nonlinearity}', input_size, [hidden_size] * num_layers,
        use_fused=use_fused, **kwargs,
    )


def LSTM(
    input_size: int,
    hidden_size: int,
    num_layers: int = 1,
    *,
    use_fused: Optional[bool] = None,
    **kwargs,
) -> Union[RecurrentNetwork, FusedRecurrent]:
    """Homogeneous LSTM."""
    return make_recurrent('lstm', input_size, [hidden_size] * num_layers, use_fused=use_fused, **kwargs)


def GRU(
    input_size: int,
    hidden_size: int,
    num_layers: int = 1,
    *,
    use_fused: Optional[bool] = None,
    **kwargs,
) -> Union[RecurrentNetwork, FusedRecurrent]:
    """Homogeneous GRU."""
    return make_recurrent('gru', input_size, [hidden_size] * num_layers, use_fused=use_fused, **kwargs)


def Elman(input_size: int, hidden_size: int, num_layers: int = 1, **kwargs) -> RecurrentNetwork:
    """Homogeneous sigmoid Elman network. Stacked only."""
    return make_recurrent('elman', input_size, [hidden_size] * num_layers, **kwargs)


# =============================================================================
# WEIGHT INIT
# =============================================================================

def default_weight_init(module: nn.Module, init_range: float = 0.1) -> nn.Module:
    """Uniform init of every weight in [-init_range, init_range]."""
    if init_range <= 0:
        raise ValueError(f"init_range must be positive, got {init_range}")
    module.reset_parameters(init_range)
    return module


def scale_weight_init(module: nn.Module, table: Mapping[str, float]) -> nn.Module:
    """
    Multiply weights by a per-cell-type factor.

    table maps cell type names ('lstm', 'gru', 'rnn_tanh', ...) to scales;
    cell types missing from the table are left alone. Tied parameters are
    scaled once.
    """
    scales = {CellType(name): float(s) for name, s in table.items()}
    seen = set()

    def scale(params, factor):
        with torch.no_grad():
            for p in params:
                if id(p) not in seen:
                    seen.add(id(p))
                    p.mul_(factor)

    if isinstance(module, FusedRecurrent):
        if module.cell_type in scales:
            scale(module.parameters(), scales[module.cell_type])
        return module

    for m in module.modules():
        if isinstance(m, StepUnit) and not m.is_clone and m.cell.cell_type in scales:
            scale(m.params.values(), scales[m.cell.cell_type])
    return module


# =============================================================================
# BUILDER API (alternative fluent interface)
# =============================================================================

class RecurrentBuilder:
    """
    Fluent builder for recurrent networks.

    Example:
        net = (RecurrentBuilder('lstm')
            .input_size(32)
            .hidden_sizes(64, 64)
            .time_outer()
            .build())

        net = (RecurrentBuilder('gru')
            .input_size(32)
            .hidden_sizes(64)
            .bidirectional(share=('*',))
            .build())
    """

    def __init__(self, cell: CellLike, **cell_kwargs):
        self._cell = cell
        self._cell_kwargs = cell_kwargs
        self._input_size: Optional[int] = None
        self._hidden_sizes: Optional[List[int]] = None
        self._bidirectional = False
        self._share: Sequence[str] = ()
        self._device: Optional[Union[str, torch.device]] = None
        self._persist: Optional[bool] = None
        self._config = ScanConfig.default()

    def input_size(self, size: int) -> 'RecurrentBuilder':
        """Set input features of the first layer."""
        self._input_size = size
        return self

    def hidden_sizes(self, *sizes: int) -> 'RecurrentBuilder':
        """Set hidden size per layer."""
        self._hidden_sizes = list(sizes)
        return self

    def bidirectional(self, enable: bool = True, share: Sequence[str] = ()) -> 'RecurrentBuilder':
        """Build a bidirectional network."""
        self._bidirectional = enable
        self._share = tuple(share)
        return self

    def time_outer(self, enable: bool = True) -> 'RecurrentBuilder':
        """Use the time-outer composition."""
        value = 'time_outer' if enable else 'depth_outer'
        self._config = _with_override(self._config, 'composition', value)
        return self

    def fused(self, enable: bool = True, validate: bool = False) -> 'RecurrentBuilder':
        """Build on the fused backend."""
        self._config = _with_override(self._config, 'use_fused', enable)
        self._config = _with_override(self._config, 'validate', validate)
        return self

    def persist(self, enable: bool = True) -> 'RecurrentBuilder':
        """Enable/disable hidden-state persistence."""
        self._persist = enable
        self._config = _with_override(self._config, 'persist_hidden', enable)
        return self

    def on(self, device: Union[str, torch.device]) -> 'RecurrentBuilder':
        """Set parameter device."""
        self._device = device
        return self

    def with_config(self, config: ScanConfig) -> 'RecurrentBuilder':
        """Set configuration."""
        self._config = config
        return self

    def debug(self, enable: bool = True) -> 'RecurrentBuilder':
        """Enable debug output."""
        self._config = _with_override(self._config, 'debug', enable)
        return self

    def build(self) -> Module:
        """Build the network."""
        if isinstance(self._cell, str):
            if self._input_size is None:
                raise ValueError("input_size required - call .input_size()")
            if not self._hidden_sizes:
                raise ValueError("hidden sizes required - call .hidden_sizes()")

        if self._config.debug:
            kind = 'bidirectional' if self._bidirectional else (
                'fused' if self._config.use_fused else self._config.composition)
            print(f"[ScanRNN] Builder: {kind} {self._cell!r}")

        if self._bidirectional:
            return make_bidirectional(
                self._cell, self._input_size, self._hidden_sizes,
                share=self._share, config=self._config, device=self._device,
                persist_hidden=bool(self._persist),
                **self._cell_kwargs,
            )
        return make_recurrent(
            self._cell, self._input_size, self._hidden_sizes,
            config=self._config, device=self._device,
            **self._cell_kwargs,
        )


# =============================================================================
# UTILITIES
# =============================================================================

def _with_override(config: ScanConfig, field: str, value) -> ScanConfig:
    """Create new config with field overridden."""
    return dataclasses.replace(config, **{field: value})


def _resolve_config(config: Optional[ScanConfig], **overrides: Any) -> ScanConfig:
    cfg = config or get_default_config()
    for field, value in overrides.items():
        if value is not None:
            cfg = _with_override(cfg, field, value)
    return cfg


def _build_cells(
    cell: CellLike,
    input_size: Optional[int],
    hidden_sizes: Optional[Union[int, Sequence[int]]],
    bidirectional: bool = False,
    **cell_kwargs,
) -> List[Cell]:
    """Cell name + sizes, a single Cell, or a list of Cells -> list of Cells."""
    if isinstance(cell, Cell):
        return [cell]
    if not isinstance(cell, str):
        cells = list(cell)
        if not cells:
            raise ValueError("cells list is empty")
        if not all(isinstance(c, Cell) for c in cells):
            raise TypeError("cell must be a registered name, a Cell or a list of Cells")
        return cells

    if input_size is None or hidden_sizes is None:
        raise ValueError("input_size and hidden_sizes required when cell is a name")
    if isinstance(hidden_sizes, int):
        hidden_sizes = [hidden_sizes]
    hidden_sizes = list(hidden_sizes)
    if not hidden_sizes:
        raise ValueError("hidden_sizes is empty")

    cells = []
    below = input_size
    for hidden in hidden_sizes:
        cells.append(build_cell(cell, below, hidden, **cell_kwargs))
        below = 2 * hidden if bidirectional else hidden
    return cells


def _build_fused(
    cells: List[Cell],
    config: ScanConfig,
    device: Optional[Union[str, torch.device]],
) -> FusedRecurrent:
    if config.debug:
        print(f"[ScanRNN] Building fused network: {cells}")
        print(f"[ScanRNN] Registry: {get_registry()}")

    # Reference network owns the initialization
    stacked = StackedNetwork(cells, config.composition, dtype=config.dtype, device=device)
    if config.init_range is not None:
        stacked.reset_parameters(config.init_range)

    fused = FusedRecurrent.from_network(
        stacked,
        persist_hidden=config.persist_hidden,
        debug=config.debug,
    )

    if config.validate:
        _validate_fused(stacked, fused, config)

    return fused


def _validate_fused(stacked: StackedNetwork, fused: FusedRecurrent, config: ScanConfig) -> None:
    """Validate the fused adapter computes what the stacked network computes."""
    p = next(iter(fused.parameters()))
    sequence = torch.randn(3, 2, stacked.input_size, dtype=p.dtype, device=p.device)

    report = compare(
        stacked, fused, sequence,
        rtol=config.validate_rtol,
        atol=config.validate_atol,
    )
    # compare() leaves test gradients behind
    stacked.zero_grad_parameters()
    fused.zero_grad_parameters()

    if config.debug:
        print(f"[ScanRNN] Validation max_err: {report.max_error:.8f}")

    if not report.passed:
        raise ValueError(
            f"Validation failed: {', '.join(report.mismatches)} differ beyond "
            f"rtol={config.validate_rtol}, atol={config.validate_atol}.\n{report.summary()}"
        )


__all__ = [
    'make_recurrent',
    'make_bidirectional',
    'make_fused_recurrent',
    'RNN',
    'LSTM',
    'GRU',
    'Elman',
    'default_weight_init',
    'scale_weight_init',
    'RecurrentBuilder',
]
