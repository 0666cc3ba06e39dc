"""
ScanRNN.core.recurrent

RecurrentLayer - a SequenceScan that unrolls one module by cloning it.

units[0] is the original. Clones are created lazily when a longer sequence
arrives and are kept across calls; each clone aliases the original's
parameters (and so its gradient accumulators) through the share policy,
while holding its own recorded activations.

Parameter operations (zero/update/reset/apply/flatten) go to the original
only. The unit list itself is read-only from outside: add() and remove() raise
InvalidOperation, use extend()/resize().

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from torch import nn

from .errors import InvalidOperation
from .module import Module, SHARE_ALL
from .scan import SequenceScan, InitFn


class RecurrentLayer(SequenceScan):
    """
    Args:
        dim: Index of the sequence slot.
        module: The module to unroll.
        init_fn: See SequenceScan.
        shared: Parameter names clones alias. Defaults to every parameter.
        axis: Name used in ShapeMismatch locations.
    """

    def __init__(
        self,
        dim: int,
        module: Module,
        init_fn: Optional[InitFn] = None,
        shared: Sequence[str] = (SHARE_ALL,),
        axis: str = 'step',
    ):
        super().__init__(dim, [module], init_fn=init_fn, axis=axis)
        self.shared = tuple(shared)

    @property
    def original(self) -> Module:
        return self.units[0]

    def add(self, module: Module) -> 'RecurrentLayer':
        raise InvalidOperation("Cannot add a module to a RecurrentLayer; it clones its own")

    def remove(self, index: int = -1) -> Module:
        raise InvalidOperation("Cannot remove a module from a RecurrentLayer; use resize()")

    def extend(self, size: int) -> None:
        """Clone the original until `size` units exist. Never re-clones."""
        for _ in range(len(self.units), size):
            self.units.append(self.original.clone(self.shared).mark_clone())

    def resize(self, size: int) -> None:
        """Drop every clone, then extend to `size`."""
        del self.units[1:]
        self.extend(size)

    def _prepare(self, length: int) -> None:
        self.extend(length)

    # -------------------------------------------------------------------------
    # Parameter operations on the original only
    # -------------------------------------------------------------------------

    def parameter_modules(self) -> List[Module]:
        return [self.original]

    def apply(self, fn: Callable[[nn.Module], None]) -> 'RecurrentLayer':
        """Apply fn to the original module tree only."""
        self.original.apply(fn)
        return self

    def _after_flatten(self) -> None:
        # Re-clone from the flattened original.
        self.resize(len(self.units))

    def clone(self, share: Sequence[str] = ()) -> 'RecurrentLayer':
        """Structural clone: a new layer around a clone of the original."""
        return RecurrentLayer(
            self.dim,
            self.original.clone(share),
            init_fn=self.init_fn,
            shared=self.shared,
            axis=self.axis,
        )

    def extra_repr(self) -> str:
        return f"dim={self.dim}, unrolled={len(self.units)}, shared={self.shared}"


__all__ = ['RecurrentLayer']
