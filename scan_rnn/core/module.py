"""
ScanRNN.core.module

The differentiable module contract every scan building block follows.

    output     = module(input, mode)                     # forward
    grad_input = module.backward(input, grad_output, scale, mode)

Inputs and outputs are tables (lists/tuples of tensors or nested tables).
Gradients w.r.t. parameters are never left to autograd's implicit `.grad`
population: each step-unit adds its contribution into the parameter's
gradient accumulator explicitly (see ParameterSet.accumulate).

Weight tying:
    A ParameterSet maps names to nn.Parameter objects. Two step-units that
    hold the same Parameter object share both its storage and its gradient
    accumulator. `ParameterSet.share(names)` builds such a set, with '*'
    meaning every name.

Clones:
    Modules created by a recurrent layer's unroll are marked as clones.
    Parameter-mutating operations on a clone raise InvalidOperation; they
    must go through the original.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import torch
from torch import nn, Tensor

from .errors import InvalidOperation


SHARE_ALL = '*'


class Mode(Enum):
    """Explicit execution mode, passed on every forward/backward call."""
    TRAIN = 'train'
    EVALUATE = 'evaluate'


def as_mode(mode: Union[str, Mode]) -> Mode:
    if isinstance(mode, str):
        mode = Mode(mode)
    return mode


# =============================================================================
# PARAMETER SET
# =============================================================================

class ParameterSet(nn.ParameterDict):
    """
    Named parameters of one step-unit.

    Gradients live in each parameter's `.grad`, which acts as the shared
    accumulator for every step-unit holding the same Parameter object.
    """

    @classmethod
    def from_shapes(
        cls,
        shapes: Dict[str, Tuple[int, ...]],
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
    ) -> 'ParameterSet':
        params = cls()
        for name, shape in shapes.items():
            params[name] = nn.Parameter(torch.zeros(*shape, dtype=dtype, device=device))
        return params

    def share(self, names: Iterable[str] = ()) -> 'ParameterSet':
        """
        New set aliasing the named parameters; the rest are deep copies.

        Copies start with the same values but own their storage and their
        gradient accumulator.
        """
        names = set(names)
        unknown = names - set(self.keys()) - {SHARE_ALL}
        if unknown:
            raise ValueError(f"Unknown parameter names to share: {sorted(unknown)}")

        share_all = SHARE_ALL in names
        shared = ParameterSet()
        for name, p in self.items():
            if share_all or name in names:
                shared[name] = p
            else:
                shared[name] = nn.Parameter(p.detach().clone(), requires_grad=p.requires_grad)
        return shared

    def accumulate(self, name: str, grad: Tensor, scale: float = 1.0) -> None:
        """Add `scale * grad` into the accumulator of parameter `name`."""
        p = self[name]
        if p.grad is None:
            p.grad = torch.zeros_like(p)
        p.grad.add_(grad, alpha=scale)


# =============================================================================
# MODULE
# =============================================================================

class Module(nn.Module):
    """
    Base class of step-units and scan containers.

    Subclasses implement forward(input, mode), backward(input, grad_output,
    scale, mode) and clone(share).
    """

    def __init__(self):
        super().__init__()
        self._is_clone = False
        self.output: Any = None
        self.grad_input: Any = None

    # -------------------------------------------------------------------------
    # Contract
    # -------------------------------------------------------------------------

    def forward(self, input: Any, mode: Union[str, Mode] = Mode.TRAIN) -> Any:
        raise NotImplementedError

    def backward(
        self,
        input: Any,
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> Any:
        raise NotImplementedError

    def clone(self, share: Sequence[str] = ()) -> 'Module':
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Structure
    # -------------------------------------------------------------------------

    @property
    def is_clone(self) -> bool:
        return self._is_clone

    def mark_clone(self) -> 'Module':
        """Mark this module and everything below it as a clone."""
        for m in self.modules():
            if isinstance(m, Module):
                m._is_clone = True
        return self

    def parameter_modules(self) -> List['Module']:
        """Children whose parameters belong to this module."""
        return [m for m in self.children() if isinstance(m, Module)]

    def own_parameter_sets(self) -> List[ParameterSet]:
        return []

    def parameter_sets(self) -> List[ParameterSet]:
        """Distinct parameter sets reachable through parameter_modules()."""
        seen = set()
        result = []
        for ps in self.own_parameter_sets():
            if id(ps) not in seen:
                seen.add(id(ps))
                result.append(ps)
        for child in self.parameter_modules():
            for ps in child.parameter_sets():
                if id(ps) not in seen:
                    seen.add(id(ps))
                    result.append(ps)
        return result

    def parameters(self, recurse: bool = True) -> Iterator[nn.Parameter]:
        """Distinct parameters; tied parameters are yielded once."""
        seen = set()
        for ps in self.parameter_sets():
            for p in ps.values():
                if id(p) not in seen:
                    seen.add(id(p))
                    yield p

    # -------------------------------------------------------------------------
    # Parameter operations
    # -------------------------------------------------------------------------

    def _check_mutable(self, op: str) -> None:
        if self._is_clone:
            raise InvalidOperation(
                f"{op}() called on a clone of {type(self).__name__}; call it on the original"
            )

    def zero_grad_parameters(self) -> None:
        self._check_mutable('zero_grad_parameters')
        for p in self.parameters():
            if p.grad is None:
                p.grad = torch.zeros_like(p)
            else:
                p.grad.zero_()

    def update_parameters(self, lr: float) -> None:
        """Plain gradient step: w -= lr * dw."""
        self._check_mutable('update_parameters')
        if lr < 0:
            raise ValueError(f"lr must be non-negative, got {lr}")
        with torch.no_grad():
            for p in self.parameters():
                if p.grad is not None:
                    p.add_(p.grad, alpha=-lr)

    def reset_parameters(self, init_range: Optional[float] = None) -> None:
        self._check_mutable('reset_parameters')
        for child in self.parameter_modules():
            child.reset_parameters(init_range)

    def flatten_parameters(self) -> Tuple[Tensor, Tensor]:
        """
        Move every parameter into one contiguous weight buffer and its
        gradients into one contiguous gradient buffer.

        Parameters are rebound in place to views of the buffers. Returns
        (weights, grads).
        """
        self._check_mutable('flatten_parameters')
        params = list(self.parameters())
        if not params:
            raise ValueError(f"{type(self).__name__} has no parameters to flatten")

        dtypes = {p.dtype for p in params}
        devices = {p.device for p in params}
        if len(dtypes) > 1 or len(devices) > 1:
            raise ValueError("flatten_parameters requires a single dtype and device")

        total = sum(p.numel() for p in params)
        weights = torch.empty(total, dtype=params[0].dtype, device=params[0].device)
        grads = torch.zeros(total, dtype=params[0].dtype, device=params[0].device)

        offset = 0
        with torch.no_grad():
            for p in params:
                n = p.numel()
                weights[offset:offset + n].copy_(p.reshape(-1))
                if p.grad is not None:
                    grads[offset:offset + n].copy_(p.grad.reshape(-1))
                p.data = weights[offset:offset + n].view_as(p)
                p.grad = grads[offset:offset + n].view_as(p)
                offset += n

        # Originals only: clones below a recurrent layer are rebuilt by it.
        for m in list(self.modules()):
            if isinstance(m, Module) and not m.is_clone:
                m._after_flatten()

        return weights, grads

    def _after_flatten(self) -> None:
        pass


__all__ = [
    'SHARE_ALL',
    'Mode',
    'as_mode',
    'ParameterSet',
    'Module',
]
