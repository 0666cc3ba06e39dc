import pytest
import torch
from torch import nn

from scan_rnn.core import (
    CellType,
    CustomCell,
    ElmanCell,
    GRUCell,
    GRUGate,
    LSTMCell,
    LSTMGate,
    ParameterSet,
    ShapeMismatch,
    wrap_output,
)
from scan_rnn.core.cells import gate_slice

from helpers import DTYPE


def make_params(cell):
    params = ParameterSet.from_shapes(cell.parameter_shapes(), dtype=DTYPE)
    cell.reset_parameters(params)
    return params


def load(reference, params):
    with torch.no_grad():
        reference.weight_ih.copy_(params['i2h'])
        reference.weight_hh.copy_(params['h2h'])


# =============================================================================
# MATH AGAINST TORCH
# =============================================================================

class TestAgainstTorch:

    def test_lstm(self):
        cell = LSTMCell(3, 5)
        params = make_params(cell)
        reference = nn.LSTMCell(3, 5, bias=False).to(DTYPE)
        load(reference, params)

        x = torch.randn(4, 3, dtype=DTYPE)
        c, h = torch.randn(4, 5, dtype=DTYPE), torch.randn(4, 5, dtype=DTYPE)
        (c_next, h_next), out = cell.make(params, (c, h), x)
        h_ref, c_ref = reference(x, (h, c))

        torch.testing.assert_close(h_next, h_ref)
        torch.testing.assert_close(c_next, c_ref)
        assert out is h_next

    def test_gru(self):
        cell = GRUCell(3, 5)
        params = make_params(cell)
        reference = nn.GRUCell(3, 5, bias=False).to(DTYPE)
        load(reference, params)

        x = torch.randn(4, 3, dtype=DTYPE)
        h = torch.randn(4, 5, dtype=DTYPE)
        h_next, out = cell.make(params, h, x)

        torch.testing.assert_close(h_next, reference(x, h))
        assert out is h_next

    @pytest.mark.parametrize('nonlinearity', ['tanh', 'relu'])
    def test_rnn(self, nonlinearity):
        cell = ElmanCell(3, 5, nonlinearity)
        params = make_params(cell)
        reference = nn.RNNCell(3, 5, bias=False, nonlinearity=nonlinearity).to(DTYPE)
        load(reference, params)

        x = torch.randn(4, 3, dtype=DTYPE)
        h = torch.randn(4, 5, dtype=DTYPE)
        h_next, _ = cell.make(params, h, x)
        torch.testing.assert_close(h_next, reference(x, h))

    def test_elman_sigmoid(self):
        cell = ElmanCell(3, 5)
        params = make_params(cell)
        x = torch.randn(4, 3, dtype=DTYPE)
        h = torch.randn(4, 5, dtype=DTYPE)
        expected = torch.sigmoid(x @ params['i2h'].T + h @ params['h2h'].T)
        h_next, _ = cell.make(params, h, x)
        torch.testing.assert_close(h_next, expected)

    def test_gru_update_convention(self):
        # Saturated update gate keeps the previous state
        cell = GRUCell(2, 3)
        params = make_params(cell)
        with torch.no_grad():
            params['i2h'].zero_()
            params['h2h'].zero_()
            params['i2h'][gate_slice(GRUGate.UPDATE, 3)] = 1.0
        x = torch.full((1, 2), 10.0, dtype=DTYPE)
        h = torch.randn(1, 3, dtype=DTYPE)
        h_next, _ = cell.make(params, h, x)
        # u ~ 1, n = 0: h' = n + u * (h - n) ~ h
        torch.testing.assert_close(h_next, h)

    def test_lstm_reads_gates_by_name(self):
        # Open forget and output gates only: c' ~ c, h' ~ tanh(c)
        cell = LSTMCell(2, 3)
        params = make_params(cell)
        with torch.no_grad():
            params['i2h'].zero_()
            params['h2h'].zero_()
            params['i2h'][gate_slice(LSTMGate.FORGET, 3)] = 1.0
            params['i2h'][gate_slice(LSTMGate.OUTPUT, 3)] = 1.0
            params['i2h'][gate_slice(LSTMGate.INPUT, 3)] = -1.0
        x = torch.full((1, 2), 10.0, dtype=DTYPE)
        c = torch.randn(1, 3, dtype=DTYPE)
        h = torch.randn(1, 3, dtype=DTYPE)
        (c_next, h_next), out = cell.make(params, (c, h), x)
        torch.testing.assert_close(c_next, c)
        torch.testing.assert_close(h_next, torch.tanh(c))
        assert out is h_next

    def test_gru_reset_gate_by_name(self):
        # Closed reset gate hides the hidden candidate projection
        cell = GRUCell(2, 3)
        params = make_params(cell)
        with torch.no_grad():
            params['i2h'].zero_()
            params['h2h'].zero_()
            params['i2h'][gate_slice(GRUGate.RESET, 3)] = -1.0
            params['h2h'][gate_slice(GRUGate.CANDIDATE, 3)] = torch.eye(3, dtype=DTYPE)
        x = torch.full((1, 2), 10.0, dtype=DTYPE)
        h = torch.randn(1, 3, dtype=DTYPE)
        h_next, _ = cell.make(params, h, x)
        # r ~ 0, u = 0.5, n ~ 0: h' ~ 0.5 * h
        torch.testing.assert_close(h_next, 0.5 * h)


# =============================================================================
# CONTRACT
# =============================================================================

class TestContract:

    def test_parameter_shapes(self):
        assert LSTMCell(3, 5).parameter_shapes() == {'i2h': (20, 3), 'h2h': (20, 5)}
        assert GRUCell(3, 5).parameter_shapes() == {'i2h': (15, 3), 'h2h': (15, 5)}
        assert ElmanCell(3, 5).parameter_shapes() == {'i2h': (5, 3), 'h2h': (5, 5)}

    def test_cell_types(self):
        assert LSTMCell(1, 1).cell_type is CellType.LSTM
        assert GRUCell(1, 1).cell_type is CellType.GRU
        assert ElmanCell(1, 1).cell_type is CellType.ELMAN
        assert ElmanCell(1, 1, 'tanh').cell_type is CellType.RNN_TANH
        assert ElmanCell(1, 1, 'relu').cell_type is CellType.RNN_RELU

    def test_from_name_picks_nonlinearity(self):
        assert ElmanCell.from_name('rnn_relu', 2, 3).nonlinearity == 'relu'
        assert ElmanCell.from_name('elman', 2, 3).nonlinearity == 'sigmoid'

    def test_bad_nonlinearity(self):
        with pytest.raises(ValueError):
            ElmanCell(2, 3, 'gelu')

    def test_unpack(self):
        cell = GRUCell(2, 3)
        make, init = cell
        assert init(4).shape == (4, 3)

    def test_gate_slice(self):
        assert gate_slice(LSTMGate.CELL, 5) == slice(10, 15)

    def test_reset_parameters_range(self):
        cell = LSTMCell(3, 16)
        params = make_params(cell)
        for p in params.values():
            assert p.abs().max().item() <= 0.25
        cell.reset_parameters(params, init_range=0.01)
        for p in params.values():
            assert p.abs().max().item() <= 0.01


class TestInit:

    def test_zero_state(self):
        state = GRUCell(2, 3).init(4, DTYPE)
        assert state.shape == (4, 3)
        assert state.dtype == DTYPE
        assert not state.any()

    def test_reuses_cache(self):
        cell = ElmanCell(2, 3)
        cache = cell.init(4, DTYPE)
        cache.fill_(1.0)
        state = cell.init(6, DTYPE, cache=cache)
        assert state is cache
        assert state.shape == (6, 3)
        assert not state.any()

    def test_lstm_pair(self):
        c, h = LSTMCell(2, 3).init(4, DTYPE)
        assert c.shape == h.shape == (4, 3)
        cached = LSTMCell(2, 3).init(5, DTYPE, cache=(c, h))
        assert cached[0] is c and cached[1] is h


class TestCheck:

    def test_input_size(self):
        with pytest.raises(ShapeMismatch):
            GRUCell(3, 4).check(torch.zeros(2, 4), torch.zeros(2, 5))

    def test_hidden_size(self):
        with pytest.raises(ShapeMismatch):
            GRUCell(3, 4).check(torch.zeros(2, 6), torch.zeros(2, 3))

    def test_batch_size(self):
        with pytest.raises(ShapeMismatch):
            GRUCell(3, 4).check(torch.zeros(2, 4), torch.zeros(3, 3))

    def test_lstm_checks_h(self):
        cell = LSTMCell(3, 4)
        cell.check((torch.zeros(2, 4), torch.zeros(2, 4)), torch.zeros(2, 3))
        with pytest.raises(ShapeMismatch):
            cell.check((torch.zeros(2, 4), torch.zeros(2, 5)), torch.zeros(2, 3))


# =============================================================================
# CUSTOM
# =============================================================================

class TestCustom:

    def test_step_function(self):
        cell = CustomCell(lambda params, h, x: (h + x, 2 * h), hidden_size=2)
        state, out = cell.make({}, torch.ones(2), torch.ones(2))
        assert state.tolist() == [2.0, 2.0]
        assert out.tolist() == [2.0, 2.0]
        assert cell.init(3).shape == (3, 2)

    def test_init_needs_hidden_size(self):
        cell = CustomCell(lambda params, h, x: (h, h))
        with pytest.raises(ValueError):
            cell.init(3)

    def test_wrap_output(self):
        cell = LSTMCell(3, 4)
        params = make_params(cell)
        wrapped = wrap_output(cell, lambda out: 2 * out)

        x = torch.randn(2, 3, dtype=DTYPE)
        state = (torch.randn(2, 4, dtype=DTYPE), torch.randn(2, 4, dtype=DTYPE))
        (c, h), out = cell.make(params, state, x)
        (wc, wh), wout = wrapped.make(params, state, x)

        torch.testing.assert_close(wh, h)
        torch.testing.assert_close(wc, c)
        torch.testing.assert_close(wout, 2 * out)
        assert wrapped.parameter_shapes() == cell.parameter_shapes()
        assert wrapped.hidden((wc, wh)) is wh
