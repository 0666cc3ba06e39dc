"""
ScanRNN.core.config

Configuration for building recurrent networks.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Literal

import torch


_PRECISION_DTYPES = {
    'fp16': torch.float16,
    'bf16': torch.bfloat16,
    'fp32': torch.float32,
    'fp64': torch.float64,
}


@dataclass
class ScanConfig:
    """
    Configuration for recurrent network construction.

    Attributes:
        composition: Stacked network composition ('depth_outer', 'time_outer').
            Both give identical results; depth-outer scans each layer over the
            whole sequence, time-outer scans every layer at each step.

        persist_hidden: Save the last hidden state into the hidden buffer
            after forward (evaluate mode) or backward (train mode).
            Stacked and fused networks only; make_bidirectional takes its own
            persist_hidden argument, off by default.

        precision: Parameter and state dtype ('fp16', 'bf16', 'fp32', 'fp64').
        init_range: Uniform init range for weights. None uses 1/sqrt(hidden).

        use_fused: Build the fused backend adapter instead of a stacked network.
        validate: Compare the fused adapter against the stacked network after build.
        validate_rtol: Relative tolerance for validation.
        validate_atol: Absolute tolerance for validation.

        debug: Enable debug output.
    """

    # Structure
    composition: Literal['depth_outer', 'time_outer'] = 'depth_outer'
    persist_hidden: bool = True

    # Parameters
    precision: Literal['fp16', 'bf16', 'fp32', 'fp64'] = 'fp32'
    init_range: Optional[float] = None

    # Backend
    use_fused: bool = False
    validate: bool = False
    validate_rtol: float = 1e-4
    validate_atol: float = 1e-5

    # Debug
    debug: bool = False

    def __post_init__(self):
        """Validate config."""
        valid_compositions = ('depth_outer', 'time_outer')
        if self.composition not in valid_compositions:
            raise ValueError(f"composition must be one of {valid_compositions}")

        valid_precisions = tuple(_PRECISION_DTYPES)
        if self.precision not in valid_precisions:
            raise ValueError(f"precision must be one of {valid_precisions}")

        if self.init_range is not None and self.init_range <= 0:
            raise ValueError(f"init_range must be positive, got {self.init_range}")

    @property
    def dtype(self) -> torch.dtype:
        return _PRECISION_DTYPES[self.precision]

    @classmethod
    def default(cls) -> 'ScanConfig':
        """Default config for general use."""
        return cls()

    @classmethod
    def fast(cls) -> 'ScanConfig':
        """Config optimized for speed."""
        return cls(
            use_fused=True,
            validate=False,
        )

    @classmethod
    def diagnostic(cls) -> 'ScanConfig':
        """Config for debugging."""
        return cls(
            precision='fp64',
            validate=True,
            debug=True,
        )

    @classmethod
    def safe(cls) -> 'ScanConfig':
        """Config with validation enabled."""
        return cls(
            use_fused=True,
            validate=True,
        )


# Singleton default config
_default_config: Optional[ScanConfig] = None


def get_default_config() -> ScanConfig:
    """Get the default config."""
    global _default_config
    if _default_config is None:
        _default_config = ScanConfig.default()
    return _default_config


def set_default_config(config: ScanConfig) -> None:
    """Set the default config."""
    global _default_config
    _default_config = config


__all__ = [
    'ScanConfig',
    'get_default_config',
    'set_default_config',
]
