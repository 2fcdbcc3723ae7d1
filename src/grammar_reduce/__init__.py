"""grammar-reduce package."""

from . import (
    adapters,
    config,
    engine,
    errors,
    logging,
    main,
    oracle,
    passes,
    snapshots,
    source_tree,
    tnr,
    types,
    workspace,
)  # noqa: F401

__all__ = [
    "adapters",
    "config",
    "engine",
    "errors",
    "logging",
    "main",
    "oracle",
    "passes",
    "snapshots",
    "source_tree",
    "tnr",
    "types",
    "workspace",
]
