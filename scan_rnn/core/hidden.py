"""
ScanRNN.core.hidden

Hidden-state lifecycle: initialize, save-last, get-last.

The hidden buffer holds the persisted initial state of every layer. It is
created by initialize_hidden(batch_size) and reused (resized in place) on
later calls. With persist_hidden on, the last state of each layer is copied
back into the buffer:

    Mode.EVALUATE: after forward
    Mode.TRAIN:    after backward

so the next call continues where this one stopped (truncated BPTT). With
persist_hidden off the buffer is never touched.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Any, Callable, List, Optional, Sequence, Union

import torch

from .errors import InvalidOperation
from .module import Module, Mode, as_mode
from .table_util import resize_copy_


InitHidden = Callable[..., Any]


# =============================================================================
# LIFECYCLE
# =============================================================================

class HiddenStateManager:
    """
    Mixin providing the hidden buffer lifecycle.

    Subclasses set `_init_fns` (one zero-state initializer per layer) and
    `_paired` (bidirectional: each layer holds a (forward, reverse) pair),
    and keep their last forward output in `self.output` with the hidden
    history in slot 0, indexed [layer][step].
    """

    hidden_buffer: Optional[List[Any]] = None
    persist_hidden: bool = True
    _init_fns: Sequence[InitHidden] = ()
    _paired: bool = False
    _input: Optional[List[Any]] = None

    def _default_dtype_device(self):
        for p in self.parameters():
            return p.dtype, p.device
        return torch.get_default_dtype(), torch.device('cpu')

    def initialize_hidden(
        self,
        batch_size: int,
        dtype: Optional[torch.dtype] = None,
        device: Optional[Union[str, torch.device]] = None,
    ) -> List[Any]:
        """(Re)allocate the zero initial state of every layer."""
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        default_dtype, default_device = self._default_dtype_device()
        dtype = dtype or default_dtype
        device = device or default_device

        old = self.hidden_buffer or []
        buffer = []
        for i, init in enumerate(self._init_fns):
            cache = old[i] if i < len(old) else None
            if self._paired:
                fwd_cache, rev_cache = cache if cache is not None else (None, None)
                buffer.append((
                    init(batch_size, dtype, device, fwd_cache),
                    init(batch_size, dtype, device, rev_cache),
                ))
            else:
                buffer.append(init(batch_size, dtype, device, cache))
        self.hidden_buffer = buffer
        return buffer

    def get_last_hidden(self) -> List[Any]:
        """
        history[layer][-1] for every layer of the last forward.

        A layer that ran zero steps reports the initial state it was given.
        """
        if self.output is None or self._input is None:
            raise InvalidOperation("get_last_hidden() called before forward()")
        initial = self._input[0]
        return [
            history[-1] if len(history) else initial[layer]
            for layer, history in enumerate(self.output[0])
        ]

    def save_last_hidden(self) -> List[Any]:
        """Copy the last hidden state into the buffer, reusing its storage."""
        last = self.get_last_hidden()
        if self.hidden_buffer is None:
            self.hidden_buffer = resize_copy_(None, last)
        else:
            self.hidden_buffer = resize_copy_(list(self.hidden_buffer), last)
        return self.hidden_buffer

    def _resolve_hidden(self, hidden: Optional[List[Any]]) -> List[Any]:
        if hidden is None:
            hidden = self.hidden_buffer
        if hidden is None:
            raise InvalidOperation(
                "no initial hidden state: call initialize_hidden(batch_size) before forward()"
            )
        return hidden


# =============================================================================
# NETWORK
# =============================================================================

class RecurrentNetwork(HiddenStateManager, Module):
    """
    A stacked or bidirectional body plus its hidden-state lifecycle.

        net.initialize_hidden(batch_size)
        output = net(sequence, Mode.TRAIN)
        net.backward(sequence, grad_output, mode=Mode.TRAIN)

    forward() reads the initial state from the hidden buffer unless `hidden`
    is passed explicitly. The output is the body's [hidden_history,
    output_history], both indexed [layer][step].
    """

    def __init__(
        self,
        body: Module,
        init_fns: Sequence[InitHidden],
        persist_hidden: bool = True,
        paired: bool = False,
    ):
        super().__init__()
        self.body = body
        self._init_fns = list(init_fns)
        self._paired = paired
        self.persist_hidden = persist_hidden
        self.hidden_buffer = None
        self._input = None

    def parameter_modules(self) -> List[Module]:
        return [self.body]

    @property
    def num_layers(self) -> int:
        return len(self._init_fns)

    def forward(
        self,
        input: Any,
        mode: Union[str, Mode] = Mode.TRAIN,
        hidden: Optional[List[Any]] = None,
    ) -> List[Any]:
        mode = as_mode(mode)
        composite = [list(self._resolve_hidden(hidden)), input]
        self.output = self.body(composite, mode)
        self._input = composite
        if mode is Mode.EVALUATE and self.persist_hidden:
            self.save_last_hidden()
        return self.output

    def backward(
        self,
        input: Any,
        grad_output: Any,
        scale: float = 1.0,
        mode: Union[str, Mode] = Mode.TRAIN,
    ) -> List[Any]:
        mode = as_mode(mode)
        if self._input is None:
            raise InvalidOperation("backward() called before forward()")
        self.grad_input = self.body.backward(self._input, grad_output, scale, mode)
        if mode is Mode.TRAIN and self.persist_hidden:
            self.save_last_hidden()
        return self.grad_input

    def clone(self, share: Sequence[str] = ()) -> 'RecurrentNetwork':
        return RecurrentNetwork(
            self.body.clone(share),
            self._init_fns,
            persist_hidden=self.persist_hidden,
            paired=self._paired,
        )

    def extra_repr(self) -> str:
        return f"persist_hidden={self.persist_hidden}, paired={self._paired}"


__all__ = ['HiddenStateManager', 'RecurrentNetwork']
