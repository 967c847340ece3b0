"""Analyzer implementations and discovery utilities."""

from __future__ import annotations

from functools import partial
from importlib import metadata
from typing import Callable, Dict, Iterable, List, Sequence

from .base import Analyzer, AnalyzerContext
from .categories import (
    BackendAnalyzer,
    DatabaseAnalyzer,
    LintAnalyzer,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    UXAnalyzer,
)
from .remediation import RemediationPlanner

_ENTRY_POINT_GROUP = "repoaudit.analyzers"

# Fixed order: findings are merged in this order regardless of completion order.
_BUILTIN_FACTORIES: dict[str, Callable[[], Analyzer]] = {
    "ux": UXAnalyzer,
    "backend": BackendAnalyzer,
    "database": DatabaseAnalyzer,
    "security": SecurityAnalyzer,
    "performance": PerformanceAnalyzer,
    "lint": LintAnalyzer,
}


def discover_analyzers(enabled: Sequence[str] | None = None) -> List[Analyzer]:
    """Instantiate the category analyzers, restricted to ``enabled`` when given.

    Built-ins come first in their fixed order, followed by third-party analyzers
    registered under the ``repoaudit.analyzers`` entry point group. A built-in
    name cannot be shadowed by a plugin.
    """

    registry: Dict[str, Callable[[], Analyzer]] = dict(_BUILTIN_FACTORIES)
    for entry in _iter_entry_points():
        key = entry.name.lower()
        if key in registry:
            continue
        try:
            loaded = entry.load()
        except Exception as exc:
            raise RuntimeError(f"Failed to load analyzer entry point '{entry.name}': {exc}") from exc
        registry[key] = partial(_coerce_analyzer, loaded)

    selected = list(registry)
    if enabled:
        wanted = {name.lower() for name in enabled}
        unknown = wanted.difference(registry)
        if unknown:
            raise ValueError(f"Unknown analyzers requested: {', '.join(sorted(unknown))}")
        selected = [key for key in selected if key in wanted]

    return [_coerce_analyzer(registry[key]) for key in selected]


def _coerce_analyzer(obj: object) -> Analyzer:
    if isinstance(obj, Analyzer):
        return obj
    if callable(obj):
        instance = obj()
        if isinstance(instance, Analyzer):
            return instance
    raise TypeError(f"Expected an Analyzer or a factory producing one, got {obj!r}")


def _iter_entry_points() -> Iterable[metadata.EntryPoint]:
    return metadata.entry_points().select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "Analyzer",
    "AnalyzerContext",
    "RemediationPlanner",
    "discover_analyzers",
]
