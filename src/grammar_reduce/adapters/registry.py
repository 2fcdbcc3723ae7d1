"""Adapter registry with deterministic selection behaviour."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .base import GrammarAdapter


@dataclass
class AdapterRegistry:
    """Ordered adapter registry with an explicit fallback adapter."""

    _adapters: List[GrammarAdapter] = field(default_factory=list)
    _fallback: Optional[GrammarAdapter] = None

    def register(self, adapter: GrammarAdapter, *, fallback: bool = False) -> None:
        if fallback:
            self._fallback = adapter
            return
        self._adapters.append(adapter)

    def claims(self, path: str) -> bool:
        """True when a non-fallback adapter supports ``path``."""

        return any(adapter.supports_path(path) for adapter in self._adapters)

    def select(self, path: str) -> GrammarAdapter:
        for adapter in self._adapters:
            if adapter.supports_path(path):
                return adapter
        if self._fallback is not None:
            return self._fallback
        raise LookupError(f"No adapter supports path: {path}")

    def get(self, name: str) -> GrammarAdapter:
        for adapter in self.all():
            if adapter.name == name:
                return adapter
        raise LookupError(f"No adapter named {name!r}")

    def all(self) -> Tuple[GrammarAdapter, ...]:
        ordered = list(self._adapters)
        if self._fallback is not None:
            ordered.append(self._fallback)
        return tuple(ordered)

    def names(self) -> Tuple[str, ...]:
        return tuple(adapter.name for adapter in self.all())
