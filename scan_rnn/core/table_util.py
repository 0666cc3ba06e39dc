"""
ScanRNN.core.table_util

Helpers for the nested list/tuple structures ("tables") that flow through
the scan engine.

    split_sequence: Tensor [T, ...] -> List[Tensor]   (time axis -> steps)
    join_sequence:  List[Tensor] -> Tensor [T, ...]   (inverse)
    transpose:      x[i][j] -> y[j][i]
    reverse:        output[i] = input[T - 1 - i]

Lists and tuples are both treated as tables. Tuples are kept as tuples so
an LSTM state `(c, h)` never turns into a list on the way through.
Gradient tables may contain None where no gradient flows; every helper
here accepts that.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence

import torch
from torch import Tensor


def is_table(x: Any) -> bool:
    return isinstance(x, (list, tuple))


def map_tensors(fn: Callable[[Tensor], Any], x: Any) -> Any:
    """Apply fn to every tensor leaf, keeping list/tuple structure."""
    if isinstance(x, Tensor):
        return fn(x)
    if isinstance(x, tuple):
        return tuple(map_tensors(fn, v) for v in x)
    if isinstance(x, list):
        return [map_tensors(fn, v) for v in x]
    return x


def flatten_tensors(x: Any) -> List[Tensor]:
    """Tensor leaves of a table, depth-first, left to right."""
    if isinstance(x, Tensor):
        return [x]
    if is_table(x):
        leaves: List[Tensor] = []
        for v in x:
            leaves.extend(flatten_tensors(v))
        return leaves
    return []


def flatten_like(template: Any, x: Any) -> List[Optional[Tensor]]:
    """
    Leaves of x aligned to the tensor leaves of template.

    A None anywhere in x stands for "no gradient" and expands to one None
    per tensor leaf of the matching template subtree.
    """
    if x is None:
        return [None] * len(flatten_tensors(template))
    if isinstance(template, Tensor):
        return [x]
    if is_table(template):
        if not is_table(x) or len(x) != len(template):
            raise ValueError(
                f"Structure mismatch: expected table of {len(template)}, got {_describe(x)}"
            )
        leaves: List[Optional[Tensor]] = []
        for t, v in zip(template, x):
            leaves.extend(flatten_like(t, v))
        return leaves
    return []


def unflatten_like(template: Any, leaves: Sequence[Any]) -> Any:
    """Inverse of flatten_tensors: rebuild template's structure from leaves."""
    it = iter(leaves)

    def build(t):
        if isinstance(t, Tensor):
            return next(it)
        if isinstance(t, tuple):
            return tuple(build(v) for v in t)
        if isinstance(t, list):
            return [build(v) for v in t]
        return t

    return build(template)


def transpose(x: Sequence[Sequence[Any]]) -> List[List[Any]]:
    """
    Swap the first two table dimensions (zip).

    transpose([[a, b], [c, d], [e, f]]) -> [[a, c, e], [b, d, f]]
    """
    if not x:
        return []
    width = len(x[0])
    for row in x:
        if len(row) != width:
            raise ValueError("tables must be of equal length")
    return [[row[j] for row in x] for j in range(width)]


def zip_tables(*tables: Sequence[Any]) -> List[List[Any]]:
    """zip_tables(a, b) -> [[a[0], b[0]], [a[1], b[1]], ...]"""
    return transpose(list(tables))


def reverse(seq: Optional[Sequence[Any]]) -> Optional[List[Any]]:
    """Reverse a step sequence. Applied twice it is the identity."""
    if seq is None:
        return None
    return list(reversed(seq))


def split_sequence(seq: Any) -> List[Any]:
    """
    Normalize a sequence to per-step slices.

    A tensor is split along its leading (time) axis; a list/tuple of steps
    is returned as a list unchanged.
    """
    if isinstance(seq, Tensor):
        return list(seq.unbind(0))
    if is_table(seq):
        return list(seq)
    raise TypeError(f"Sequence must be a tensor or a list of steps, got {type(seq).__name__}")


def join_sequence(steps: Sequence[Tensor]) -> Tensor:
    """Stack per-step tensors into [T, ...]."""
    if not steps:
        raise ValueError("steps list is empty")
    return torch.stack(list(steps), dim=0)


def add_tables(a: Any, b: Any) -> Any:
    """Elementwise sum of two gradient tables; None is the additive identity."""
    if a is None:
        return b
    if b is None:
        return a
    if isinstance(a, Tensor):
        return a + b
    if isinstance(a, tuple):
        return tuple(add_tables(x, y) for x, y in zip(a, b))
    return [add_tables(x, y) for x, y in zip(a, b)]


def deep_copy(x: Any) -> Any:
    """Structural copy where every tensor is cloned."""
    return map_tensors(lambda t: t.detach().clone(), x)


def resize_copy_(dst: Any, src: Any) -> Any:
    """
    Copy src into dst in place, resizing dst's tensors where needed.

    Storage is reused when shapes already match. Returns dst, or a deep copy
    of src when dst is None or structurally incompatible.
    """
    if dst is None:
        return deep_copy(src)
    if isinstance(src, Tensor):
        if not isinstance(dst, Tensor) or dst.dtype != src.dtype or dst.device != src.device:
            return src.detach().clone()
        with torch.no_grad():
            if dst.shape != src.shape:
                dst.resize_(src.shape)
            dst.copy_(src)
        return dst
    if is_table(src):
        if not is_table(dst) or len(dst) != len(src):
            return deep_copy(src)
        copied = [resize_copy_(d, s) for d, s in zip(dst, src)]
        if isinstance(dst, list):
            dst[:] = copied
            return dst
        return tuple(copied)
    return src


def _describe(x: Any) -> str:
    if isinstance(x, Tensor):
        return f"tensor{tuple(x.shape)}"
    if is_table(x):
        return f"table of {len(x)}"
    return type(x).__name__


__all__ = [
    'is_table',
    'map_tensors',
    'flatten_tensors',
    'flatten_like',
    'unflatten_like',
    'transpose',
    'zip_tables',
    'reverse',
    'split_sequence',
    'join_sequence',
    'add_tables',
    'deep_copy',
    'resize_copy_',
]
