"""Configuration loading helpers for grammar-reduce."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import ConfigError
from .passes import PASS_TYPES


def _filter_kwargs(data: Dict[str, Any], *, allowed: set[str]) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key in allowed}


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping.")
    return value


@dataclass(frozen=True)
class OracleConfig:
    timeout: Optional[float] = None
    inconclusive_abort_threshold: Optional[int] = None


@dataclass(frozen=True)
class SnapshotConfig:
    directory: Optional[str] = None
    interval: float = 10.0
    retention: int = 10


@dataclass(frozen=True)
class SearchConfig:
    passes: Optional[Tuple[str, ...]] = None
    file_removal: bool = True
    include: Optional[Tuple[str, ...]] = None
    exclude: Tuple[str, ...] = ()


@dataclass(frozen=True)
class LoggingConfig:
    dir: str = ".reduce_runs"
    stream: bool = False


@dataclass(frozen=True)
class Config:
    """Aggregated configuration for a reduction run."""

    driver: Optional[str] = None
    root_path: Optional[str] = None
    resume: bool = False
    files: Tuple[str, ...] = ()
    oracle: OracleConfig = field(default_factory=OracleConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        oracle_cfg = OracleConfig(
            **_filter_kwargs(_section(data, "oracle"), allowed=set(OracleConfig.__annotations__.keys()))
        )
        snapshot_cfg = SnapshotConfig(
            **_filter_kwargs(_section(data, "snapshot"), allowed=set(SnapshotConfig.__annotations__.keys()))
        )
        search_raw = _filter_kwargs(_section(data, "search"), allowed=set(SearchConfig.__annotations__.keys()))
        for key in ("passes", "include", "exclude"):
            if search_raw.get(key) is not None:
                search_raw[key] = tuple(search_raw[key])
        search = SearchConfig(**search_raw)
        logging_cfg = LoggingConfig(
            **_filter_kwargs(_section(data, "logging"), allowed=set(LoggingConfig.__annotations__.keys()))
        )
        return cls(
            driver=data.get("driver"),
            root_path=data.get("root_path"),
            resume=bool(data.get("resume", False)),
            files=tuple(data.get("files") or ()),
            oracle=oracle_cfg,
            snapshot=snapshot_cfg,
            search=search,
            logging=logging_cfg,
        )

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """Load configuration from *path* if it exists, otherwise defaults."""

        if path is None:
            path = Path("grammar-reduce.yaml")
        else:
            path = Path(path)
        if not path.exists():
            return cls.default()
        try:
            raw = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Cannot parse config file {path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError("Config file must contain a mapping at the top level.")
        return cls.from_dict(raw)

    def with_overrides(
        self,
        *,
        oracle: Dict[str, Any] | None = None,
        snapshot: Dict[str, Any] | None = None,
        **top: Any,
    ) -> "Config":
        """Return a copy with every non-``None`` override applied."""

        cfg = replace(self, **{key: value for key, value in top.items() if value is not None})
        if oracle:
            values = {key: value for key, value in oracle.items() if value is not None}
            cfg = replace(cfg, oracle=replace(cfg.oracle, **values))
        if snapshot:
            values = {key: value for key, value in snapshot.items() if value is not None}
            cfg = replace(cfg, snapshot=replace(cfg.snapshot, **values))
        return cfg

    def validate(self) -> "Config":
        if not self.driver:
            raise ConfigError("A driver executable is required.")
        if bool(self.root_path) == bool(self.resume):
            raise ConfigError("Exactly one of root_path or resume must be given.")
        if not self.snapshot.directory:
            raise ConfigError("snapshot.directory is required.")
        if self.snapshot.interval < 0:
            raise ConfigError("snapshot.interval must not be negative.")
        if self.snapshot.retention < 1:
            raise ConfigError("snapshot.retention must be at least 1.")
        if self.oracle.timeout is not None and self.oracle.timeout <= 0:
            raise ConfigError("oracle.timeout must be positive.")
        threshold = self.oracle.inconclusive_abort_threshold
        if threshold is not None and threshold < 0:
            raise ConfigError("oracle.inconclusive_abort_threshold must not be negative.")
        unknown = [name for name in self.search.passes or () if name not in PASS_TYPES]
        if unknown:
            raise ConfigError(f"Unknown reduction pass(es): {', '.join(unknown)}")
        return self


__all__ = [
    "Config",
    "LoggingConfig",
    "OracleConfig",
    "SearchConfig",
    "SnapshotConfig",
]
