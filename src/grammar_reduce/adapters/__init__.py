"""Grammar adapters: parse bytes into syntax trees the pass catalog can edit."""

from .base import AdapterBase, GrammarAdapter, KindInfo
from .lines import LinesAdapter
from .python import PythonAdapter
from .registry import AdapterRegistry
from .treesitter import (
    TreeSitterAdapter,
    builtin_adapters,
    javascript_adapter,
    rust_adapter,
)


def default_registry() -> AdapterRegistry:
    """Registry with every built-in adapter and ``lines`` as the fallback."""

    registry = AdapterRegistry()
    for adapter in builtin_adapters():
        registry.register(adapter)
    registry.register(PythonAdapter())
    registry.register(LinesAdapter(), fallback=True)
    return registry


__all__ = [
    "AdapterBase",
    "AdapterRegistry",
    "GrammarAdapter",
    "KindInfo",
    "LinesAdapter",
    "PythonAdapter",
    "TreeSitterAdapter",
    "builtin_adapters",
    "default_registry",
    "javascript_adapter",
    "rust_adapter",
]
