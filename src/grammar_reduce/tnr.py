"""Transactional no-regression trial of a single candidate."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from . import types
from .errors import CandidateParseError, FilesystemWriteError
from .oracle import OracleRunner
from .source_tree import SourceTree
from .workspace import Workspace

if TYPE_CHECKING:  # pragma: no cover
    from .passes import ReductionPass


@dataclass
class TrialResult:
    committed: bool
    candidate: types.EditCandidate
    verdict: Optional[types.OracleVerdict]
    size_pre: int
    size_post: int
    parse_failed: bool = False
    logs: List[str] = field(default_factory=list)


def txn_candidate(
    model: SourceTree,
    candidate: types.EditCandidate,
    *,
    workspace: Workspace,
    oracle: OracleRunner,
    driver: str | Path,
    cancel: Optional[threading.Event] = None,
    reduction_pass: Optional["ReductionPass"] = None,
) -> TrialResult:
    """Try *candidate*: commit it if the oracle still reproduces, otherwise roll back.

    The accepted state in *model* only changes on a ``REPRODUCES`` verdict, and
    the workspace never keeps candidate bytes once this returns or raises.
    *reduction_pass* gets its ``prepare`` hook before the candidate is written
    and its ``cleanup`` hook once the oracle has answered.
    """

    size_pre = model.size()
    logs: List[str] = []

    try:
        buffers = model.apply(candidate)
    except CandidateParseError as exc:
        logs.append(f"candidate does not parse: {exc}")
        return TrialResult(False, candidate, None, size_pre, size_pre, parse_failed=True, logs=logs)

    if buffers.size >= size_pre:
        logs.append(f"size did not shrink ({size_pre} -> {buffers.size}); skipped.")
        return TrialResult(False, candidate, None, size_pre, size_pre, logs=logs)

    if reduction_pass is not None:
        reduction_pass.prepare(workspace.root)

    try:
        workspace.write(buffers.contents)
    except FilesystemWriteError:
        workspace.restore(model.contents())
        raise

    try:
        verdict = oracle.run(workspace.root, driver, cancel)
        if reduction_pass is not None:
            reduction_pass.cleanup(workspace.root, verdict.reproduces)
    except BaseException:
        workspace.restore(model.contents())
        raise

    if verdict.reproduces:
        model.commit(buffers)
        workspace.settle()
        return TrialResult(True, candidate, verdict, size_pre, buffers.size, logs=logs)

    if verdict.inconclusive:
        logs.append(f"oracle inconclusive: {verdict.reason}")
    else:
        logs.append(f"oracle exit code {verdict.exit_code}; rolling back.")
    workspace.restore(model.contents())
    return TrialResult(False, candidate, verdict, size_pre, size_pre, logs=logs)


__all__ = ["TrialResult", "txn_candidate"]
