"""
ScanRNN - recurrent networks as scans over weight-tied step-units.

Each layer is an explicit scan of one cell through time, each stack a scan
of layers through depth. Backward through time is the reverse scan, with
every clone of a step-unit adding into one shared gradient accumulator.

Main API:
    import scan_rnn

    # Simple usage
    net = scan_rnn.make_recurrent('lstm', 32, [64, 64])
    net.initialize_hidden(batch_size)
    hist, out = net(sequence, scan_rnn.Mode.TRAIN)
    net.backward(sequence, [None, [None, grads]])
    net.update_parameters(lr=0.1)

    # Convenience constructors
    net = scan_rnn.GRU(32, 64, num_layers=2)
    net = scan_rnn.RNN(32, 64, nonlinearity='relu', use_fused=True)

    # Bidirectional
    net = scan_rnn.make_bidirectional('gru', 32, [64, 64])

    # Builder pattern
    net = (scan_rnn.RecurrentBuilder('lstm')
        .input_size(32)
        .hidden_sizes(64, 64)
        .time_outer()
        .build())

Fused backend:
    fused = scan_rnn.FusedRecurrent.from_network(net)
    report = scan_rnn.compare(net, fused, sequence)
    print(report.summary())

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

__version__ = '0.1.0'

# Main API
from .api import (
    make_recurrent,
    make_bidirectional,
    make_fused_recurrent,
    RNN,
    LSTM,
    GRU,
    Elman,
    default_weight_init,
    scale_weight_init,
    RecurrentBuilder,
)

# Config
from .core.config import (
    ScanConfig,
    get_default_config,
    set_default_config,
)

# Registry
from .core.registry import (
    register,
    unregister,
    get_registry,
    list_registered,
    build_cell,
)

# Core classes (for advanced usage)
from .core import (
    ScanError,
    ShapeMismatch,
    LengthMismatch,
    InvalidOperation,
    UnsupportedConfiguration,
    CellType,
    Cell,
    ElmanCell,
    LSTMCell,
    GRUCell,
    CustomCell,
    wrap_output,
    SHARE_ALL,
    Mode,
    ParameterSet,
    Module,
    StepUnit,
    SequenceScan,
    RecurrentLayer,
    Composition,
    StackedNetwork,
    RecurrentNetwork,
    BidirectionalLayer,
    BidirectionalNetwork,
    FusedRecurrent,
    EquivalenceReport,
    compare,
)

__all__ = [
    # Main API
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

    # Config
    'ScanConfig',
    'get_default_config',
    'set_default_config',

    # Registry
    'register',
    'unregister',
    'get_registry',
    'list_registered',
    'build_cell',

    # Errors
    'ScanError',
    'ShapeMismatch',
    'LengthMismatch',
    'InvalidOperation',
    'UnsupportedConfiguration',

    # Cells
    'CellType',
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
    'RecurrentNetwork',
    'BidirectionalLayer',
    'BidirectionalNetwork',

    # Fused backend
    'FusedRecurrent',
    'EquivalenceReport',
    'compare',

    '__version__',
]
