"""
ScanRNN.core.errors

Errors raised by the scan engine and everything built on it.

    ShapeMismatch            - a slice or parameter disagrees with a unit
    LengthMismatch           - forward/backward histories disagree in length
    InvalidOperation         - illegal mutation of a weight-tied lineage
    UnsupportedConfiguration - fused backend cannot express the network

None of these are retried. Only UnsupportedConfiguration has a documented
recovery (per-layer fused modules, see core.fused.wrapped).

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Tuple


class ScanError(RuntimeError):
    """Base class for scan_rnn errors."""


class ShapeMismatch(ScanError, ValueError):
    """
    A tensor handed to a step-unit does not have the expected shape.

    The location path is built while the error propagates: every enclosing
    scan prepends its axis name and step index, so the message reads
    outermost first, e.g. "layer 1, step 4: expected input size 8, got 6".
    """

    def __init__(self, message: str, location: Tuple[Tuple[str, int], ...] = ()):
        super().__init__(message)
        self.message = message
        self.location = tuple(location)

    def at(self, axis: str, index: int) -> 'ShapeMismatch':
        """Return a copy located one level further out."""
        return ShapeMismatch(self.message, ((axis, index),) + self.location)

    def __str__(self) -> str:
        if not self.location:
            return self.message
        where = ', '.join(f"{axis} {index}" for axis, index in self.location)
        return f"{where}: {self.message}"


class LengthMismatch(ScanError, ValueError):
    """Backward history length disagrees with the recorded forward."""


class InvalidOperation(ScanError):
    """A weight-tied clone list or clone parameter was mutated directly."""


class UnsupportedConfiguration(ScanError):
    """The fused backend cannot represent the requested network."""


__all__ = [
    'ScanError',
    'ShapeMismatch',
    'LengthMismatch',
    'InvalidOperation',
    'UnsupportedConfiguration',
]
