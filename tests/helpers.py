import torch

from scan_rnn.core import CustomCell


DTYPE = torch.float64


def axpa_cell(offset):
    """h' = h * x + h - offset, output h * x + h."""
    def step(params, h, x):
        axpa = h * x + h
        return axpa - offset, axpa
    step.__name__ = f'axpa{offset}'
    return CustomCell(step)


def scalar(v):
    return torch.tensor([float(v)], dtype=DTYPE)


def copy_weights(src_units, dst_units):
    with torch.no_grad():
        for src, dst in zip(src_units, dst_units):
            for name, p in src.params.items():
                dst.params[name].copy_(p)


def random_state(cell, batch):
    state = cell.init(batch, DTYPE)
    if isinstance(state, tuple):
        return tuple(torch.randn_like(s) for s in state)
    return torch.randn_like(state)
