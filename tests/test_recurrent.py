import pytest
import torch

from scan_rnn.core import (
    ElmanCell,
    GRUCell,
    InvalidOperation,
    Mode,
    ParameterSet,
    RecurrentLayer,
    StepUnit,
)

from helpers import DTYPE


def tanh_layer(**kwargs):
    return RecurrentLayer(1, StepUnit(ElmanCell(3, 4, 'tanh'), dtype=DTYPE), **kwargs)


def run(layer, steps=5, batch=2):
    x = torch.randn(steps, batch, 3, dtype=DTYPE)
    h0 = torch.randn(batch, 4, dtype=DTYPE)
    return layer([h0, x], Mode.TRAIN), x, h0


# =============================================================================
# WEIGHT SHARING
# =============================================================================

class TestWeightSharing:

    def test_clones_alias_parameters(self):
        layer = tanh_layer()
        run(layer, steps=5)
        assert len(layer.units) == 5
        original = layer.original
        assert not original.is_clone
        for unit in layer.units[1:]:
            assert unit.is_clone
            for name in ('i2h', 'h2h'):
                assert unit.params[name] is original.params[name]

    def test_parameters_are_deduplicated(self):
        layer = tanh_layer()
        run(layer, steps=5)
        assert len(list(layer.parameters())) == 2

    def test_independent_clones(self):
        layer = tanh_layer(shared=())
        run(layer, steps=3)
        for unit in layer.units[1:]:
            assert unit.params['i2h'] is not layer.original.params['i2h']
            torch.testing.assert_close(unit.params['i2h'], layer.original.params['i2h'])

    def test_partial_share(self):
        unit = StepUnit(GRUCell(3, 4), dtype=DTYPE)
        clone = unit.clone(('h2h',))
        assert clone.params['h2h'] is unit.params['h2h']
        assert clone.params['i2h'] is not unit.params['i2h']

    def test_unknown_share_name(self):
        unit = StepUnit(GRUCell(3, 4), dtype=DTYPE)
        with pytest.raises(ValueError):
            unit.clone(('bias',))


# =============================================================================
# GRADIENT ACCUMULATION
# =============================================================================

class TestAccumulation:

    def reference(self, layer, x, h0, grads):
        w_i = layer.original.params['i2h'].detach().clone().requires_grad_(True)
        w_h = layer.original.params['h2h'].detach().clone().requires_grad_(True)
        xr = x.clone().requires_grad_(True)
        hr = h0.clone().requires_grad_(True)

        h = hr
        loss = 0
        for t in range(x.shape[0]):
            h = torch.tanh(xr[t] @ w_i.T + h @ w_h.T)
            loss = loss + (h * grads[t]).sum()
        return torch.autograd.grad(loss, [w_i, w_h, hr, xr])

    def test_matches_independent_loop(self):
        layer = tanh_layer()
        layer.zero_grad_parameters()
        _, x, h0 = run(layer, steps=6)
        grads = [torch.randn(2, 4, dtype=DTYPE) for _ in range(6)]
        grad_h0, grad_x = layer.backward(None, [None, grads])

        ref_wi, ref_wh, ref_h0, ref_x = self.reference(layer, x, h0, grads)
        torch.testing.assert_close(layer.original.params['i2h'].grad, ref_wi)
        torch.testing.assert_close(layer.original.params['h2h'].grad, ref_wh)
        torch.testing.assert_close(grad_h0, ref_h0)
        torch.testing.assert_close(torch.stack(grad_x), ref_x)

    def test_scale_applies_to_parameters_only(self):
        layer = tanh_layer()
        layer.zero_grad_parameters()
        _, x, h0 = run(layer, steps=4)
        grads = [torch.randn(2, 4, dtype=DTYPE) for _ in range(4)]
        grad_h0, _ = layer.backward(None, [None, grads], scale=0.5)

        ref_wi, _, ref_h0, _ = self.reference(layer, x, h0, grads)
        torch.testing.assert_close(layer.original.params['i2h'].grad, 0.5 * ref_wi)
        torch.testing.assert_close(grad_h0, ref_h0)

    def test_accumulates_across_calls(self):
        layer = tanh_layer()
        layer.zero_grad_parameters()
        x = torch.randn(3, 2, 3, dtype=DTYPE)
        h0 = torch.randn(2, 4, dtype=DTYPE)
        grads = [torch.randn(2, 4, dtype=DTYPE) for _ in range(3)]

        layer([h0, x], Mode.TRAIN)
        layer.backward(None, [None, grads])
        once = layer.original.params['i2h'].grad.clone()

        layer([h0, x], Mode.TRAIN)
        layer.backward(None, [None, grads])
        torch.testing.assert_close(layer.original.params['i2h'].grad, 2 * once)

    def test_parameter_set_accumulate(self):
        params = ParameterSet.from_shapes({'w': (2, 2)}, dtype=DTYPE)
        params.accumulate('w', torch.ones(2, 2, dtype=DTYPE), scale=3.0)
        params.accumulate('w', torch.ones(2, 2, dtype=DTYPE))
        assert params['w'].grad.tolist() == [[4.0, 4.0], [4.0, 4.0]]


# =============================================================================
# UNROLLING
# =============================================================================

class TestUnroll:

    def test_extend_never_reclones(self):
        layer = tanh_layer()
        run(layer, steps=3)
        first = list(layer.units)
        run(layer, steps=5)
        assert len(layer.units) == 5
        assert all(a is b for a, b in zip(first, layer.units))
        run(layer, steps=2)
        assert len(layer.units) == 5

    @pytest.mark.parametrize('mode', [Mode.TRAIN, Mode.EVALUATE])
    def test_longer_unroll_same_output(self, mode):
        # Units beyond the sequence length are left unused
        long = tanh_layer()
        long.extend(7)
        short = RecurrentLayer(1, StepUnit(ElmanCell(3, 4, 'tanh'), long.original.params.share(('*',))))

        x = torch.randn(3, 2, 3, dtype=DTYPE)
        h0 = torch.randn(2, 4, dtype=DTYPE)
        hist_long, out_long = long([h0, x], mode)
        hist_short, out_short = short([h0, x], mode)
        assert len(long.units) == 7
        assert len(short.units) == 3
        assert len(out_long) == len(out_short) == 3
        for a, b in zip(hist_long + out_long, hist_short + out_short):
            torch.testing.assert_close(a, b)

        if mode is Mode.TRAIN:
            grads = [torch.randn(2, 4, dtype=DTYPE) for _ in range(3)]
            grad_long = long.backward(None, [None, grads])
            grad_short = short.backward(None, [None, grads])
            torch.testing.assert_close(grad_long[0], grad_short[0])
            for a, b in zip(grad_long[1], grad_short[1]):
                torch.testing.assert_close(a, b)

    def test_resize(self):
        layer = tanh_layer()
        run(layer, steps=4)
        old = layer.units[1]
        layer.resize(2)
        assert len(layer.units) == 2
        assert layer.units[1] is not old
        assert layer.units[1].params['i2h'] is layer.original.params['i2h']

    def test_add_and_remove_rejected(self):
        layer = tanh_layer()
        with pytest.raises(InvalidOperation):
            layer.add(StepUnit(ElmanCell(3, 4)))
        with pytest.raises(InvalidOperation):
            layer.remove()

    def test_apply_reaches_original_only(self):
        layer = tanh_layer()
        run(layer, steps=4)
        seen = []
        layer.apply(lambda m: seen.append(m) if isinstance(m, StepUnit) else None)
        assert seen == [layer.original]

    def test_structural_clone(self):
        layer = tanh_layer()
        copy = layer.clone()
        assert copy.original.params['i2h'] is not layer.original.params['i2h']
        torch.testing.assert_close(copy.original.params['i2h'], layer.original.params['i2h'])
        tied = layer.clone(('*',))
        assert tied.original.params['i2h'] is layer.original.params['i2h']
        assert not tied.is_clone


# =============================================================================
# PARAMETER OPERATIONS
# =============================================================================

class TestParameterOps:

    @pytest.mark.parametrize('op', [
        lambda m: m.zero_grad_parameters(),
        lambda m: m.update_parameters(0.1),
        lambda m: m.reset_parameters(),
        lambda m: m.flatten_parameters(),
    ])
    def test_clone_is_read_only(self, op):
        layer = tanh_layer()
        run(layer, steps=3)
        with pytest.raises(InvalidOperation):
            op(layer.units[2])

    def test_update(self):
        layer = tanh_layer()
        layer.zero_grad_parameters()
        run(layer, steps=3)
        layer.backward(None, [None, [torch.randn(2, 4, dtype=DTYPE) for _ in range(3)]])

        w = layer.original.params['i2h']
        before = w.detach().clone()
        layer.update_parameters(0.1)
        torch.testing.assert_close(w.detach(), before - 0.1 * w.grad)

    def test_negative_lr(self):
        layer = tanh_layer()
        with pytest.raises(ValueError):
            layer.update_parameters(-1.0)

    def test_zero_grad(self):
        layer = tanh_layer()
        run(layer, steps=3)
        layer.backward(None, [None, [torch.randn(2, 4, dtype=DTYPE) for _ in range(3)]])
        layer.zero_grad_parameters()
        for p in layer.parameters():
            assert not p.grad.any()

    def test_flatten(self):
        layer = tanh_layer()
        run(layer, steps=3)
        before = [p.detach().clone() for p in layer.parameters()]

        weights, grads = layer.flatten_parameters()
        assert weights.numel() == 4 * 3 + 4 * 4
        torch.testing.assert_close(weights, torch.cat([b.reshape(-1) for b in before]))

        # Parameters are views of the flat buffer, clones included
        weights.fill_(0.5)
        assert (layer.original.params['i2h'] == 0.5).all()
        assert len(layer.units) == 3
        for unit in layer.units[1:]:
            assert (unit.params['h2h'] == 0.5).all()

        # Gradients accumulate into the flat gradient buffer
        layer.zero_grad_parameters()
        run(layer, steps=3)
        layer.backward(None, [None, [torch.randn(2, 4, dtype=DTYPE) for _ in range(3)]])
        expected = torch.cat([p.grad.reshape(-1) for p in layer.parameters()])
        torch.testing.assert_close(grads, expected)
        assert grads.abs().sum() > 0
