import pytest
import torch

from scan_rnn.core import (
    Composition,
    ElmanCell,
    GRUCell,
    LSTMCell,
    Mode,
    ShapeMismatch,
    StackedNetwork,
)
from scan_rnn.core.stacked import _step_major
from scan_rnn.core.table_util import flatten_tensors

from helpers import DTYPE, copy_weights, random_state


CELLS = {
    'lstm': lambda: [LSTMCell(3, 4), LSTMCell(4, 5), LSTMCell(5, 6)],
    'gru': lambda: [GRUCell(3, 4), GRUCell(4, 5), GRUCell(5, 6)],
    'rnn_tanh': lambda: [ElmanCell(3, 4, 'tanh'), ElmanCell(4, 5, 'tanh'), ElmanCell(5, 6, 'tanh')],
}


def assert_tables_close(a, b):
    a, b = flatten_tensors(a), flatten_tensors(b)
    assert len(a) == len(b)
    for x, y in zip(a, b):
        torch.testing.assert_close(x, y)


@pytest.mark.parametrize('kind', sorted(CELLS))
def test_depth_and_time_outer_agree(kind):
    cells = CELLS[kind]()
    depth = StackedNetwork(cells, 'depth_outer', dtype=DTYPE)
    time = StackedNetwork(cells, Composition.TIME_OUTER, dtype=DTYPE)
    copy_weights(depth.step_units, time.step_units)

    B, T = 2, 4
    hidden = [random_state(c, B) for c in cells]
    x = torch.randn(T, B, 3, dtype=DTYPE)

    out_d = depth([hidden, x], Mode.TRAIN)
    out_t = time([hidden, x], Mode.TRAIN)
    for slot in range(2):
        assert len(out_d[slot]) == len(out_t[slot]) == 3
        for layer_d, layer_t in zip(out_d[slot], out_t[slot]):
            assert len(layer_d) == len(layer_t) == T
            assert_tables_close(layer_d, layer_t)

    grad_hist = [[None] * (T - 1) + [random_state(c, B)] for c in cells]
    grad_out = [[torch.randn(B, c.hidden_size, dtype=DTYPE) for _ in range(T)] for c in cells]
    grad_d = depth.backward(None, [grad_hist, grad_out])
    grad_t = time.backward(None, [grad_hist, grad_out])

    assert len(grad_d[0]) == 3
    assert len(grad_d[1]) == T
    assert_tables_close(grad_d, grad_t)
    for unit_d, unit_t in zip(depth.step_units, time.step_units):
        for name in ('i2h', 'h2h'):
            torch.testing.assert_close(unit_d.params[name].grad, unit_t.params[name].grad)


def test_gradients_match_autograd():
    cells = [GRUCell(3, 4), GRUCell(4, 4)]
    net = StackedNetwork(cells, dtype=DTYPE)
    B, T = 2, 3
    hidden = [random_state(c, B) for c in cells]
    x = torch.randn(T, B, 3, dtype=DTYPE)
    grads = [torch.randn(B, 4, dtype=DTYPE) for _ in range(T)]

    net([hidden, x], Mode.TRAIN)
    grad_hidden, grad_x = net.backward(None, [None, [None, grads]])

    # Same computation through torch's own graph
    xr = x.clone().requires_grad_(True)
    hr = [h.clone().requires_grad_(True) for h in hidden]
    inputs = list(xr.unbind(0))
    for cell, unit, h in zip(cells, net.step_units, hr):
        outs = []
        for step in inputs:
            h, out = cell.make(unit.params, h, step)
            outs.append(out)
        inputs = outs
    loss = sum((o * g).sum() for o, g in zip(inputs, grads))
    ref = torch.autograd.grad(loss, hr + [xr])

    for got, expected in zip(grad_hidden, ref[:2]):
        torch.testing.assert_close(got, expected)
    torch.testing.assert_close(torch.stack(grad_x), ref[2])


def test_properties():
    net = StackedNetwork([LSTMCell(3, 4), LSTMCell(4, 5)], 'time_outer')
    assert net.num_layers == 2
    assert net.input_size == 3
    assert net.hidden_sizes == [4, 5]
    assert net.composition is Composition.TIME_OUTER
    assert len(net.step_units) == 2
    assert len(list(net.parameters())) == 4


def test_parameters_stable_under_unroll():
    net = StackedNetwork([GRUCell(3, 4), GRUCell(4, 4)], dtype=DTYPE)
    x = torch.randn(6, 2, 3, dtype=DTYPE)
    net([[torch.zeros(2, 4, dtype=DTYPE)] * 2, x], Mode.EVALUATE)
    assert len(list(net.parameters())) == 4


def test_wrong_number_of_states():
    net = StackedNetwork([GRUCell(3, 4), GRUCell(4, 4)], dtype=DTYPE)
    with pytest.raises(ShapeMismatch):
        net([[torch.zeros(2, 4, dtype=DTYPE)], torch.randn(3, 2, 3, dtype=DTYPE)], Mode.TRAIN)


def test_empty_cells():
    with pytest.raises(ValueError):
        StackedNetwork([])


def test_unknown_composition():
    with pytest.raises(ValueError):
        StackedNetwork([GRUCell(3, 4)], 'diagonal')


@pytest.mark.parametrize('composition', ['depth_outer', 'time_outer'])
def test_empty_sequence_reports_every_layer(composition):
    cells = [ElmanCell(3, 4, 'tanh'), ElmanCell(4, 5, 'tanh')]
    net = StackedNetwork(cells, composition, dtype=DTYPE)
    hidden = [random_state(c, 2) for c in cells]
    hist, out = net([hidden, []], Mode.EVALUATE)
    assert hist == [[], []]
    assert out == [[], []]


def test_step_major_empty_gradients():
    assert _step_major([[], []]) == []
    assert _step_major([None, None]) is None


@pytest.mark.parametrize('composition', ['depth_outer', 'time_outer'])
def test_clone_builds_no_spare_body(composition, monkeypatch):
    net = StackedNetwork([GRUCell(3, 4), GRUCell(4, 4)], composition, dtype=DTYPE)
    calls = []
    original_reset = GRUCell.reset_parameters
    monkeypatch.setattr(
        GRUCell, 'reset_parameters',
        lambda self, *args, **kwargs: calls.append(self) or original_reset(self, *args, **kwargs),
    )

    copy = net.clone()
    tied = net.clone(('*',))
    assert calls == []
    assert copy.composition is net.composition
    for unit, source in zip(copy.step_units, net.step_units):
        assert unit.params['i2h'].dtype == DTYPE
        assert unit.params['i2h'] is not source.params['i2h']
        torch.testing.assert_close(unit.params['i2h'], source.params['i2h'])
    for unit, source in zip(tied.step_units, net.step_units):
        assert unit.params['h2h'] is source.params['h2h']
