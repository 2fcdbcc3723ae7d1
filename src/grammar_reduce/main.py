"""CLI entrypoint for grammar-reduce."""

from __future__ import annotations

import argparse
import signal
import sys
import threading
from typing import Iterable

from . import config as config_module, engine, logging
from .errors import ConfigError, ReductionError

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def _parse_args(args: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="grammar-reduce",
        description="Shrink a project while an external driver keeps reproducing a bug.",
    )
    parser.add_argument("driver", nargs="?", default=None, help="Executable that exits 0 while the bug reproduces")
    origin = parser.add_mutually_exclusive_group()
    origin.add_argument("--root-path", default=None, help="Project directory to reduce in place")
    origin.add_argument("--resume", action="store_true", default=None, help="Continue from the newest snapshot")
    parser.add_argument("--snapshot-directory", default=None, help="Where snapshots are written")
    parser.add_argument("--snapshot-interval", type=float, default=None, help="Minimum seconds between snapshots")
    parser.add_argument("--snapshot-retention", type=int, default=None, help="Number of snapshots to keep")
    parser.add_argument("--oracle-timeout", type=float, default=None, help="Seconds before a driver run is killed")
    parser.add_argument(
        "--inconclusive-abort-threshold",
        type=int,
        default=None,
        help="Abort after this many consecutive inconclusive driver runs",
    )
    parser.add_argument(
        "--file",
        dest="files",
        action="append",
        default=None,
        help="Reduce only this file (repeatable, relative to the root path)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML configuration file (defaults to ./grammar-reduce.yaml if omitted)",
    )
    return parser.parse_args(list(args) if args is not None else None)


def _build_config(ns: argparse.Namespace) -> config_module.Config:
    cfg = config_module.Config.load(ns.config)
    # The command line picks the origin outright, whatever the file says.
    origin = {}
    if ns.root_path is not None:
        origin = {"root_path": ns.root_path, "resume": False}
    elif ns.resume:
        origin = {"root_path": "", "resume": True}
    cfg = cfg.with_overrides(
        driver=ns.driver,
        files=tuple(ns.files) if ns.files else None,
        **origin,
        oracle={
            "timeout": ns.oracle_timeout,
            "inconclusive_abort_threshold": ns.inconclusive_abort_threshold,
        },
        snapshot={
            "directory": ns.snapshot_directory,
            "interval": ns.snapshot_interval,
            "retention": ns.snapshot_retention,
        },
    )
    return cfg.validate()


def _install_signal_handlers(cancel: threading.Event) -> None:
    def _handler(signum, frame):  # pragma: no cover - exercised via signals
        cancel.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _handler)


def main(argv: Iterable[str] | None = None) -> int:
    ns = _parse_args(argv)
    try:
        cfg = _build_config(ns)
    except ConfigError as exc:
        print(f"grammar-reduce: configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIG

    cancel = threading.Event()
    if threading.current_thread() is threading.main_thread():
        _install_signal_handlers(cancel)

    logger = logging.RunLogger(cfg.logging.dir, stream=cfg.logging.stream)
    logger.log_json("config", {
        "driver": cfg.driver,
        "root_path": cfg.root_path,
        "resume": cfg.resume,
        "files": list(cfg.files),
        "snapshot": {
            "directory": cfg.snapshot.directory,
            "interval": cfg.snapshot.interval,
            "retention": cfg.snapshot.retention,
        },
        "oracle": {
            "timeout": cfg.oracle.timeout,
            "inconclusive_abort_threshold": cfg.oracle.inconclusive_abort_threshold,
        },
    })

    try:
        reducer = engine.ReductionEngine.from_config(cfg, logger=logger, cancel=cancel)
        if cfg.resume:
            result = reducer.resume()
        else:
            result = reducer.start(cfg.root_path, cfg.files or None)
    except ReductionError as exc:
        print(f"grammar-reduce: {type(exc).__name__}: {exc}", file=sys.stderr)
        return EXIT_FAILED

    logger.log_json("result", {
        "status": result.status,
        "initial_size": result.initial_size,
        "final_size": result.final_size,
        "counters": result.counters.to_dict(),
        "snapshots": result.snapshots,
    })
    summary = (
        f"grammar-reduce: {result.status}: {result.initial_size} -> {result.final_size} bytes "
        f"({result.counters.accepted} accepted, {result.counters.rejected} rejected)"
    )
    snapshot_failures = sum(1 for _ in logger.events("snapshot.failed"))
    if snapshot_failures:
        summary += f"; {snapshot_failures} snapshot write(s) failed"
    logger.log_text("summary", summary + "\n")
    print(summary)
    if result.status == engine.EngineState.INTERRUPTED.value:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
