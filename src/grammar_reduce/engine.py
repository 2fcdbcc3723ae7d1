"""Reduction engine: drive the pass catalog to a global fixpoint."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from . import types
from .adapters import AdapterRegistry, default_registry
from .config import Config
from .errors import (
    BaselineVerificationError,
    FilesystemWriteError,
    InvariantViolation,
    LoadError,
    OracleAbortError,
    ReductionError,
    ResumeError,
    SnapshotWriteError,
)
from .logging import RunLogger
from .oracle import OracleRunner, resolve_driver
from .passes import ReductionPass, build_catalog
from .snapshots import SnapshotManager
from .source_tree import SourceTree, discover_files
from .tnr import TrialResult, txn_candidate
from .workspace import Workspace


class EngineState(str, Enum):
    INITIALIZING = "initializing"
    VERIFYING_BASELINE = "verifying_baseline"
    RESUMING = "resuming"
    SELECTING_PASS = "selecting_pass"
    GENERATING_CANDIDATE = "generating_candidate"
    TESTING = "testing"
    ACCEPTING = "accepting"
    REJECTING = "rejecting"
    FIXPOINT = "fixpoint"
    INTERRUPTED = "interrupted"
    FAILED = "failed"


@dataclass
class ReductionState:
    """Accepted model plus where the search stands; what a snapshot captures."""

    model: SourceTree
    cursor: types.PassCursor = field(default_factory=types.PassCursor)
    counters: types.ReductionCounters = field(default_factory=types.ReductionCounters)
    phase: EngineState = EngineState.INITIALIZING


@dataclass
class ReductionResult:
    status: str
    initial_size: int
    final_size: int
    counters: types.ReductionCounters
    snapshots: List[int] = field(default_factory=list)
    model: Optional[SourceTree] = None


def normalize_paths(root: Path, files: Sequence[str]) -> List[str]:
    """Turn user-given file paths into sorted POSIX paths relative to *root*."""

    root = root.resolve()
    rels: List[str] = []
    for name in files:
        path = Path(name)
        if not path.is_absolute():
            path = root / path
        path = path.resolve()
        try:
            rel = path.relative_to(root)
        except ValueError as exc:
            raise LoadError(f"{name} is outside the project root {root}") from exc
        if not path.is_file():
            raise LoadError(f"{name} is not a file")
        rels.append(rel.as_posix())
    return sorted(set(rels))


class ReductionEngine:
    """Greedy, deterministic reduction loop.

    Passes run in catalog order. Each pass sweeps every file (sorted) until
    one sweep accepts nothing. An accept by any pass but the first sends the
    loop back to the first pass; the fixpoint is reached once the whole
    catalog runs through without a restart.
    """

    def __init__(
        self,
        driver: str | Path,
        *,
        oracle: OracleRunner,
        snapshots: SnapshotManager,
        passes: Sequence[ReductionPass] | None = None,
        registry: AdapterRegistry | None = None,
        logger: RunLogger | None = None,
        cancel: threading.Event | None = None,
        include: Sequence[str] | None = None,
        exclude: Sequence[str] = (),
    ):
        self.driver = resolve_driver(driver)
        self.oracle = oracle
        self.snapshots = snapshots
        self.passes = list(passes) if passes is not None else build_catalog()
        if not self.passes:
            raise ValueError("at least one reduction pass is required")
        self.registry = registry or default_registry()
        self.logger = logger
        self.cancel = cancel or threading.Event()
        self.include = include
        self.exclude = tuple(exclude)
        self.state = EngineState.INITIALIZING
        self.workspace: Optional[Workspace] = None
        self.current: Optional[ReductionState] = None
        self._unsaved = False

    @classmethod
    def from_config(
        cls,
        cfg: Config,
        *,
        logger: RunLogger | None = None,
        cancel: threading.Event | None = None,
        registry: AdapterRegistry | None = None,
    ) -> "ReductionEngine":
        cfg.validate()
        return cls(
            cfg.driver,
            oracle=OracleRunner(
                timeout=cfg.oracle.timeout,
                inconclusive_abort_threshold=cfg.oracle.inconclusive_abort_threshold,
            ),
            snapshots=SnapshotManager(
                cfg.snapshot.directory,
                interval=cfg.snapshot.interval,
                retention=cfg.snapshot.retention,
            ),
            passes=build_catalog(cfg.search.passes, file_removal=cfg.search.file_removal),
            registry=registry,
            logger=logger,
            cancel=cancel,
            include=cfg.search.include,
            exclude=cfg.search.exclude,
        )

    # -- entry points -----------------------------------------------------

    def start(self, root: str | Path, files: Sequence[str] | None = None) -> ReductionResult:
        """Reduce the project under *root* from scratch."""

        root = Path(root)
        self._transition(EngineState.INITIALIZING, root=str(root))
        try:
            if not root.is_dir():
                raise LoadError(f"project root {root} is not a directory")
            if files:
                paths = normalize_paths(root, files)
            else:
                skip = [self.snapshots.directory]
                if self.logger is not None:
                    skip.append(self.logger.base_dir)
                paths = discover_files(
                    root, self.registry, include=self.include, exclude=self.exclude, skip_dirs=skip
                )
            if not paths:
                raise LoadError(f"no files to reduce under {root}")
            model = SourceTree.load(root, paths, self.registry)
            self._log("engine.loaded", files=len(paths), size=model.size())

            self._transition(EngineState.VERIFYING_BASELINE)
            verdict = self.oracle.run(model.root, self.driver, self.cancel)
            if self.cancel.is_set():
                return self._finish(ReductionState(model), EngineState.INTERRUPTED, model.size())
            if not verdict.reproduces:
                raise BaselineVerificationError(
                    f"the driver does not reproduce on the unmodified input ({self._describe(verdict)})"
                )
        except ReductionError as exc:
            self._fail(exc)
            raise

        state = ReductionState(model, counters=types.ReductionCounters(initial_size=model.size()))
        self._offer_snapshot(state)
        return self._run(state)

    def resume(self) -> ReductionResult:
        """Continue from the newest valid snapshot."""

        self._transition(EngineState.RESUMING, directory=str(self.snapshots.directory))
        try:
            point = self.snapshots.resume()
            record = point.record
            root = Path(record.root)
            try:
                Workspace(root).install(point.contents, record.removed)
            except FilesystemWriteError as exc:
                raise ResumeError(f"cannot restore snapshot {record.id} into {root}: {exc}") from exc
            try:
                model = SourceTree.from_contents(root, point.contents, self.registry, removed=record.removed)
            except LoadError as exc:
                raise ResumeError(f"snapshot {record.id} does not parse: {exc}") from exc
            verdict = self.oracle.run(root, self.driver, self.cancel)
            if self.cancel.is_set():
                return self._finish(ReductionState(model), EngineState.INTERRUPTED, model.size())
            if not verdict.reproduces:
                raise ResumeError(
                    f"snapshot {record.id} no longer reproduces ({self._describe(verdict)})"
                )
        except ReductionError as exc:
            self._fail(exc)
            raise

        counters = types.ReductionCounters.from_dict(record.counters)
        if not counters.initial_size:
            counters.initial_size = model.size()
        self._log("engine.resumed", id=record.id, size=model.size(), cursor=record.cursor.to_dict())
        return self._run(ReductionState(model, cursor=record.cursor, counters=counters))

    # -- main loop --------------------------------------------------------

    def _run(self, state: ReductionState) -> ReductionResult:
        self.current = state
        self.workspace = Workspace(state.model.root)
        cursor = state.cursor
        resumed = cursor.partial
        pass_index = min(max(cursor.pass_index, 0), len(self.passes) - 1) if resumed else 0
        resume_from: Optional[types.PassCursor] = cursor if resumed and cursor.position is not None else None
        # A resumed round that did not start at the first pass is not a full round.
        restart_pending = resumed and pass_index > 0

        try:
            while True:
                if pass_index >= len(self.passes):
                    if not restart_pending:
                        return self._finish(state, EngineState.FIXPOINT, state.counters.initial_size)
                    restart_pending = False
                    pass_index = 0
                reduction_pass = self.passes[pass_index]
                self._transition(EngineState.SELECTING_PASS, pass_name=reduction_pass.name, pass_index=pass_index)
                if self.cancel.is_set():
                    return self._finish(state, EngineState.INTERRUPTED, state.counters.initial_size)
                accepted = self._run_pass(state, pass_index, reduction_pass, resume_from)
                resume_from = None
                if self.cancel.is_set():
                    continue
                if accepted and pass_index > 0:
                    restart_pending = False
                    pass_index = 0
                else:
                    pass_index += 1
        except ReductionError as exc:
            self._fail(exc)
            raise

    def _run_pass(
        self,
        state: ReductionState,
        pass_index: int,
        reduction_pass: ReductionPass,
        resume_from: Optional[types.PassCursor],
    ) -> int:
        """Sweep with one pass until a full sweep accepts nothing."""

        total = 0
        while True:
            accepted = self._sweep(state, pass_index, reduction_pass, resume_from)
            total += accepted
            self._log("engine.sweep", pass_name=reduction_pass.name, accepted=accepted, size=state.model.size())
            if self.cancel.is_set():
                return total
            if accepted == 0 and resume_from is None:
                return total
            resume_from = None

    def _sweep(
        self,
        state: ReductionState,
        pass_index: int,
        reduction_pass: ReductionPass,
        resume_from: Optional[types.PassCursor],
    ) -> int:
        accepted = 0
        targets: List[Optional[str]]
        if reduction_pass.scope == "project":
            targets = [None]
        else:
            targets = list(state.model.paths)
        for path in targets:
            position = None
            if resume_from is not None:
                if path is not None and resume_from.path is not None:
                    if path < resume_from.path:
                        continue
                    if path == resume_from.path:
                        position = resume_from.position
                elif path is None:
                    position = resume_from.position
            accepted += self._reduce_target(state, pass_index, reduction_pass, path, position)
            if self.cancel.is_set():
                break
        return accepted

    def _reduce_target(
        self,
        state: ReductionState,
        pass_index: int,
        reduction_pass: ReductionPass,
        path: Optional[str],
        position: Optional[tuple],
    ) -> int:
        """Try candidates for one file (or the project); regenerate after each accept."""

        accepted = 0
        while True:
            if path is not None and path not in state.model:
                return accepted
            committed = False
            self._transition(EngineState.GENERATING_CANDIDATE, pass_name=reduction_pass.name, path=path)
            for candidate in reduction_pass.candidates(state.model, path, pass_index, position):
                self._transition(EngineState.TESTING, pass_name=candidate.pass_name, path=candidate.path)
                trial = self._trial(state, candidate, reduction_pass)
                if trial.committed:
                    self._accept(state, trial)
                    accepted += 1
                    position = candidate.cursor.position
                    committed = True
                    break
                self._reject(state, trial)
                if self.cancel.is_set():
                    return accepted
                self._transition(EngineState.GENERATING_CANDIDATE, pass_name=reduction_pass.name, path=path)
            if not committed or self.cancel.is_set():
                return accepted

    def _trial(
        self, state: ReductionState, candidate: types.EditCandidate, reduction_pass: ReductionPass
    ) -> TrialResult:
        assert self.workspace is not None
        trial = txn_candidate(
            state.model,
            candidate,
            workspace=self.workspace,
            oracle=self.oracle,
            driver=self.driver,
            cancel=self.cancel,
            reduction_pass=reduction_pass,
        )
        if self.workspace.dirty:
            raise InvariantViolation("candidate bytes left on disk after a trial")
        return trial

    def _accept(self, state: ReductionState, trial: TrialResult) -> None:
        self._transition(EngineState.ACCEPTING, pass_name=trial.candidate.pass_name, path=trial.candidate.path)
        size = state.model.size()
        if size > trial.size_pre or size != trial.size_post:
            raise InvariantViolation(f"accepted state grew from {trial.size_pre} to {size} bytes")
        state.counters.accepted += 1
        state.cursor = trial.candidate.cursor
        self._unsaved = True
        self._log(
            "trial.accepted",
            pass_name=trial.candidate.pass_name,
            path=trial.candidate.path,
            description=trial.candidate.description,
            committed=True,
            size=size,
            removed=trial.size_pre - size,
        )
        self._offer_snapshot(state)

    def _reject(self, state: ReductionState, trial: TrialResult) -> None:
        self._transition(EngineState.REJECTING, pass_name=trial.candidate.pass_name, path=trial.candidate.path)
        state.counters.rejected += 1
        state.cursor = trial.candidate.cursor
        if trial.parse_failed:
            state.counters.parse_failures += 1
        verdict = trial.verdict
        if verdict is not None and verdict.inconclusive:
            state.counters.inconclusive += 1
        self._log(
            "trial.rejected",
            pass_name=trial.candidate.pass_name,
            path=trial.candidate.path,
            description=trial.candidate.description,
            committed=False,
            reason="; ".join(trial.logs),
        )
        if not self.cancel.is_set() and self.oracle.threshold_exceeded:
            raise OracleAbortError(
                f"{self.oracle.consecutive_inconclusive} consecutive inconclusive oracle runs "
                f"(last: {verdict.reason if verdict else 'unknown'})"
            )

    # -- helpers ----------------------------------------------------------

    def _offer_snapshot(self, state: ReductionState) -> None:
        try:
            record = self.snapshots.maybe_snapshot(state)
        except SnapshotWriteError as exc:
            self._log("snapshot.failed", reason=str(exc))
            return
        if record is not None:
            self._unsaved = False
            self._log("snapshot.written", id=record.id, size=record.size)

    def _finish(self, state: ReductionState, status: EngineState, initial_size: int) -> ReductionResult:
        if self._unsaved:
            self._offer_snapshot(state)
        self._transition(status, size=state.model.size(), counters=state.counters.to_dict())
        return ReductionResult(
            status=status.value,
            initial_size=initial_size,
            final_size=state.model.size(),
            counters=state.counters,
            snapshots=list(self.snapshots.written),
            model=state.model,
        )

    def _fail(self, exc: ReductionError) -> None:
        if self.state is not EngineState.FAILED:
            self._transition(EngineState.FAILED, reason=str(exc), error=type(exc).__name__)

    def _transition(self, new_state: EngineState, **data) -> None:
        self.state = new_state
        if self.current is not None:
            self.current.phase = new_state
        self._log("engine.state", state=new_state.value, **data)

    def _log(self, kind: str, **data) -> None:
        if self.logger is not None:
            self.logger.log_event(kind, **data)

    @staticmethod
    def _describe(verdict: types.OracleVerdict) -> str:
        if verdict.inconclusive:
            return f"inconclusive: {verdict.reason}"
        return f"exit code {verdict.exit_code}"


__all__ = [
    "EngineState",
    "ReductionEngine",
    "ReductionResult",
    "ReductionState",
    "normalize_paths",
]
