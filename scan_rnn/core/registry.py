"""
ScanRNN.core.registry

Registry of cell types with decorator-based registration.

Copyright 2025 AbstractPhil
Apache 2.0 License
"""

from __future__ import annotations

from typing import Dict, Type, Callable, Optional, List

from .cells import Cell


# =============================================================================
# REGISTRY
# =============================================================================

class CellRegistry:
    """
    Registry mapping cell names to cell classes.

    Usage:
        @registry.register('peephole')
        class PeepholeLSTMCell(Cell):
            @classmethod
            def from_name(cls, name, input_size, hidden_size, **kwargs) -> 'PeepholeLSTMCell':
                ...
    """

    def __init__(self):
        self._builders: Dict[str, Callable[..., Cell]] = {}
        self._classes: Dict[str, Type[Cell]] = {}

    def register(self, name: str, cell_class: Optional[Type[Cell]] = None):
        """
        Register a cell class.

        Can be used as decorator:
            @registry.register('lstm')
            class LSTMCell: ...

        Or directly:
            registry.register('lstm', LSTMCell)
        """
        def decorator(cls: Type[Cell]) -> Type[Cell]:
            if not hasattr(cls, 'from_name'):
                raise TypeError(
                    f"{cls.__name__} must implement classmethod "
                    f"from_name(name, input_size, hidden_size, **kwargs)"
                )

            self._classes[name] = cls
            self._builders[name] = cls.from_name
            return cls

        if cell_class is not None:
            # Direct registration
            decorator(cell_class)
            return cell_class

        # Decorator usage
        return decorator

    def unregister(self, name: str) -> None:
        """Remove a registration."""
        self._builders.pop(name, None)
        self._classes.pop(name, None)

    def get_class(self, name: str) -> Optional[Type[Cell]]:
        """Get cell class for a name."""
        return self._classes.get(name)

    def has(self, name: str) -> bool:
        """Check if name is registered."""
        return name in self._builders

    def build(self, name: str, input_size: int, hidden_size: int, **kwargs) -> Cell:
        """
        Build a cell by name.

        Raises ValueError if the name is not registered.
        """
        builder = self._builders.get(name)
        if builder is None:
            raise ValueError(
                f"Unknown cell {name!r}. Registered: {', '.join(self.list_registered())}"
            )
        return builder(name, input_size, hidden_size, **kwargs)

    def list_registered(self) -> List[str]:
        """List all registered cell names."""
        return list(self._builders.keys())

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __repr__(self) -> str:
        names = ', '.join(sorted(self._builders.keys()))
        return f"CellRegistry([{names}])"


# =============================================================================
# GLOBAL REGISTRY
# =============================================================================

# Global registry instance
_global_registry = CellRegistry()


def get_registry() -> CellRegistry:
    """Get the global registry."""
    return _global_registry


def register(name: str, cell_class: Optional[Type[Cell]] = None):
    """
    Register a cell class to the global registry.

    Usage as decorator:
        @register('mycell')
        class MyCell(Cell): ...

    Usage directly:
        register('mycell', MyCell)
    """
    return _global_registry.register(name, cell_class)


def unregister(name: str) -> None:
    """Remove from global registry."""
    _global_registry.unregister(name)


def build_cell(name: str, input_size: int, hidden_size: int, **kwargs) -> Cell:
    """Build a cell using the global registry."""
    return _global_registry.build(name, input_size, hidden_size, **kwargs)


def list_registered() -> List[str]:
    """List registered names in global registry."""
    return _global_registry.list_registered()


# =============================================================================
# AUTO-REGISTRATION
# =============================================================================

def auto_register_cells() -> None:
    """
    Register the built-in cells.
    Called on import.
    """
    from .cells import ElmanCell, LSTMCell, GRUCell

    # Elman family
    _global_registry.register('elman', ElmanCell)
    _global_registry.register('rnn_tanh', ElmanCell)
    _global_registry.register('rnn_relu', ElmanCell)
    # Gated
    _global_registry.register('lstm', LSTMCell)
    _global_registry.register('gru', GRUCell)


# Auto-register on module load
auto_register_cells()


__all__ = [
    'CellRegistry',
    'get_registry',
    'register',
    'unregister',
    'build_cell',
    'list_registered',
    'auto_register_cells',
]
