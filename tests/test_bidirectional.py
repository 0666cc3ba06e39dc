import pytest
import torch

from scan_rnn import make_bidirectional
from scan_rnn.core import (
    BidirectionalLayer,
    BidirectionalNetwork,
    GRUCell,
    LSTMCell,
    Mode,
    RecurrentLayer,
    ShapeMismatch,
    StepUnit,
)
from scan_rnn.core.table_util import reverse

from helpers import DTYPE


def gru_layer():
    return RecurrentLayer(1, StepUnit(GRUCell(3, 4), dtype=DTYPE))


def direct(params, hidden, steps, grads=None):
    """Run a fresh layer on the given parameters."""
    layer = RecurrentLayer(1, StepUnit(GRUCell(3, 4), params))
    hist, out = layer([hidden, steps], Mode.TRAIN)
    grad = layer.backward(None, [None, grads]) if grads is not None else None
    return hist, out, grad


class TestReversal:

    def test_reverse_is_involution(self):
        steps = [torch.randn(2, 3) for _ in range(5)]
        assert all(a is b for a, b in zip(reverse(reverse(steps)), steps))

    def test_round_trip(self):
        bi = BidirectionalLayer(gru_layer(), share=('*',))
        steps = [torch.randn(2, 3, dtype=DTYPE) for _ in range(5)]
        h_f = torch.randn(2, 4, dtype=DTYPE)
        h_r = torch.randn(2, 4, dtype=DTYPE)

        hist, out = bi([(h_f, h_r), steps], Mode.TRAIN)

        params = bi.layer.original.params
        _, fwd_out, _ = direct(params, h_f, steps)
        _, rev_out, _ = direct(params, h_r, reverse(steps))
        rev_out = reverse(rev_out)

        assert len(out) == 5
        for t in range(5):
            assert out[t].shape == (2, 8)
            torch.testing.assert_close(out[t][:, :4], fwd_out[t])
            torch.testing.assert_close(out[t][:, 4:], rev_out[t])

        # Final states of both directions
        f_last, r_last = hist[-1]
        torch.testing.assert_close(f_last, fwd_out[-1])
        torch.testing.assert_close(r_last, rev_out[0])

    def test_backward(self):
        bi = BidirectionalLayer(gru_layer(), share=('*',))
        bi.layer.zero_grad_parameters()
        steps = [torch.randn(2, 3, dtype=DTYPE) for _ in range(4)]
        h_f = torch.randn(2, 4, dtype=DTYPE)
        h_r = torch.randn(2, 4, dtype=DTYPE)
        grads = [torch.randn(2, 8, dtype=DTYPE) for _ in range(4)]

        bi([(h_f, h_r), steps], Mode.TRAIN)
        (g_hf, g_hr), g_steps = bi.backward(None, [None, grads])
        tied = {n: p.grad.clone() for n, p in bi.layer.original.params.items()}

        params = bi.layer.original.params.share()
        _, _, (ref_hf, ref_fwd) = direct(params, h_f, steps, [g[:, :4] for g in grads])
        _, _, (ref_hr, ref_rev) = direct(params, h_r, reverse(steps), reverse([g[:, 4:] for g in grads]))

        torch.testing.assert_close(g_hf, ref_hf)
        torch.testing.assert_close(g_hr, ref_hr)
        for got, a, b in zip(g_steps, ref_fwd, reverse(ref_rev)):
            torch.testing.assert_close(got, a + b)

        # Tied parameters collect both directions
        for name, p in params.items():
            torch.testing.assert_close(tied[name], p.grad)


class TestSharing:

    def test_default_is_independent(self):
        bi = BidirectionalLayer(gru_layer())
        fwd = bi.layer.original.params['i2h']
        rev = bi.rev_layer.original.params['i2h']
        assert fwd is not rev
        torch.testing.assert_close(fwd, rev)
        assert len(list(bi.parameters())) == 4

    def test_tied(self):
        bi = BidirectionalLayer(gru_layer(), share=('*',))
        assert bi.rev_layer.original.params['h2h'] is bi.layer.original.params['h2h']
        assert len(list(bi.parameters())) == 2


class TestNetwork:

    def test_level_sizes(self):
        with pytest.raises(ShapeMismatch):
            BidirectionalNetwork([GRUCell(3, 4), GRUCell(4, 5)])
        BidirectionalNetwork([GRUCell(3, 4), GRUCell(8, 5)])

    def test_forward_backward(self):
        net = make_bidirectional('lstm', 3, [4, 5], precision='fp64', persist_hidden=True)
        buffer = net.initialize_hidden(2)
        assert len(buffer) == 2
        (c_f, h_f), (c_r, h_r) = buffer[1]
        assert h_f.shape == h_r.shape == (2, 5)

        x = torch.randn(6, 2, 3, dtype=DTYPE)
        hist, out = net(x, Mode.TRAIN)
        assert len(out) == 2
        assert out[0][0].shape == (2, 8)
        assert out[1][-1].shape == (2, 10)

        grads = [torch.randn(2, 10, dtype=DTYPE) for _ in range(6)]
        grad_hidden, grad_x = net.backward(x, [None, [None, grads]])
        assert len(grad_hidden) == 2
        assert len(grad_x) == 6
        assert grad_x[0].shape == (2, 3)

        # Buffer holds the last (forward, reverse) pair of every level
        (sc, sh), _ = net.hidden_buffer[0]
        torch.testing.assert_close(sh, hist[0][-1][0][1])

    def test_wrong_state_count(self):
        net = BidirectionalNetwork([LSTMCell(3, 4)], dtype=DTYPE)
        with pytest.raises(ShapeMismatch):
            net([[], torch.randn(2, 2, 3, dtype=DTYPE)], Mode.TRAIN)

    def test_persistence_off_by_default(self):
        net = make_bidirectional('gru', 3, [4], precision='fp64')
        assert not net.persist_hidden
        net.initialize_hidden(2)
        net(torch.randn(3, 2, 3, dtype=DTYPE), Mode.EVALUATE)
        h_f, h_r = net.hidden_buffer[0]
        assert not h_f.any()
        assert not h_r.any()

    def test_hidden_pairs_stay_tuples(self):
        net = BidirectionalNetwork([GRUCell(3, 4)], dtype=DTYPE)
        hidden = [(torch.zeros(2, 4, dtype=DTYPE), torch.zeros(2, 4, dtype=DTYPE))]
        hist, out = net([hidden, torch.randn(3, 2, 3, dtype=DTYPE)], Mode.EVALUATE)
        assert all(isinstance(pair, tuple) for pair in hist[0])
        assert out[0][1].shape == (2, 8)

    def test_clone_builds_no_spare_levels(self, monkeypatch):
        net = BidirectionalNetwork([GRUCell(3, 4), GRUCell(8, 5)], dtype=DTYPE)
        calls = []
        original_reset = GRUCell.reset_parameters
        monkeypatch.setattr(
            GRUCell, 'reset_parameters',
            lambda self, *args, **kwargs: calls.append(self) or original_reset(self, *args, **kwargs),
        )
        copy = net.clone()
        assert calls == []
        assert len(copy.units) == 2
        for level, source in zip(copy.units, net.units):
            params = level.layer.original.params
            assert params['i2h'].dtype == DTYPE
            assert params['i2h'] is not source.layer.original.params['i2h']
            torch.testing.assert_close(params['i2h'], source.layer.original.params['i2h'])
