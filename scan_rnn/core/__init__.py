"""
ScanRNN - recurrent networks as scans over weight-tied step-units.

A recurrent layer is a scan of one cell over time; a stacked network is a
scan of layers over depth. Every step-unit records its own activations, so
backward through time is an explicit reverse scan with shared gradient
accumulators.

Usage:
    from scan_rnn.core import LSTMCell, StackedNetwork, Mode

    net = StackedNetwork([LSTMCell(8, 16), LSTMCell(16, 16)])
    hidden = [cell.init(4) for cell in net.cells]
    hist, out = net([hidden, torch.randn(10, 4, 8)], Mode.TRAIN)
    net.backward(None, [None, [None, grads]])

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from .errors import (
    ScanError,
    ShapeMismatch,
    LengthMismatch,
    InvalidOperation,
    UnsupportedConfiguration,
)

from .cells import (
    CellType,
    ElmanGate,
    LSTMGate,
    GRUGate,
    Cell,
    ElmanCell,
    LSTMCell,
    GRUCell,
    CustomCell,
    wrap_output,
)

from .module import (
    SHARE_ALL,
    Mode,
    ParameterSet,
    Module,
)

from .step_unit import StepUnit
from .scan import SequenceScan
from .recurrent import RecurrentLayer
from .stacked import Composition, StackedNetwork
from .hidden import HiddenStateManager, RecurrentNetwork
from .bidirectional import BidirectionalLayer, BidirectionalNetwork

from .fused import (
    FusedRecurrent,
    EquivalenceReport,
    compare,
)

__all__ = [
    # Errors
    'ScanError',
    'ShapeMismatch',
    'LengthMismatch',
    'InvalidOperation',
    'UnsupportedConfiguration',

    # Cells
    'CellType',
    'ElmanGate',
    'LSTMGate',
    'GRUGate',
    'Cell',
    'ElmanCell',
    'LSTMCell',
    'GRUCell',
    'CustomCell',
    'wrap_output',

    # Modules
    'SHARE_ALL',
    'Mode',
    'ParameterSet',
    'Module',
    'StepUnit',
    'SequenceScan',
    'RecurrentLayer',
    'Composition',
    'StackedNetwork',
    'HiddenStateManager',
    'RecurrentNetwork',
    'BidirectionalLayer',
    'BidirectionalNetwork',

    # Fused backend
    'FusedRecurrent',
    'EquivalenceReport',
    'compare',
]
