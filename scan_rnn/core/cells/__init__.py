"""
ScanRNN.core.cells

Step functions for the scan engine.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from .base import (
    CellType,
    ElmanGate,
    LSTMGate,
    GRUGate,
    gate_slice,
    Cell,
)
from .elman import ElmanCell
from .lstm import LSTMCell
from .gru import GRUCell
from .custom import CustomCell, wrap_output

__all__ = [
    'CellType',
    'ElmanGate',
    'LSTMGate',
    'GRUGate',
    'gate_slice',
    'Cell',
    'ElmanCell',
    'LSTMCell',
    'GRUCell',
    'CustomCell',
    'wrap_output',
]
