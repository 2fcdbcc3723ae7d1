import json
import re
import shutil
import threading
from pathlib import Path
from typing import Dict, Optional

import pytest

from grammar_reduce import engine, passes, snapshots, types, workspace
from grammar_reduce.errors import (
    BaselineVerificationError,
    CandidateParseError,
    FilesystemWriteError,
    OracleAbortError,
    ResumeError,
)
from grammar_reduce.logging import RunLogger
from conftest import FakeOracle

RUST_SCENARIO = b'fn main() { let x = 1; let y = 2; println!("{}", x); }\n'

HAS_X = re.compile(rb"\bx\b")


def _has_token_x(files: Dict[str, bytes]) -> bool:
    return any(HAS_X.search(data) for data in files.values())


def _engine(
    tmp_path: Path,
    oracle: FakeOracle,
    *,
    catalog=None,
    cancel: Optional[threading.Event] = None,
    logger: Optional[RunLogger] = None,
    interval: float = 0.0,
) -> engine.ReductionEngine:
    return engine.ReductionEngine(
        "fake-driver",
        oracle=oracle,
        snapshots=snapshots.SnapshotManager(tmp_path / "snaps", interval=interval, retention=3),
        passes=catalog,
        cancel=cancel,
        logger=logger,
    )


def _write(root: Path, files: Dict[str, bytes]) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for rel, data in files.items():
        (root / rel).parent.mkdir(parents=True, exist_ok=True)
        (root / rel).write_bytes(data)
    return root


def _assert_no_single_edit_helps(model, predicate):
    """Every candidate any pass would propose from the final state must fail."""

    contents = model.contents()
    for index, reduction_pass in enumerate(passes.build_catalog()):
        targets = [None] if reduction_pass.scope == "project" else model.paths
        for path in targets:
            for candidate in reduction_pass.candidates(model, path, index):
                try:
                    buffers = model.apply(candidate)
                except CandidateParseError:
                    continue
                if buffers.size >= model.size():
                    continue
                trial = dict(contents)
                for rel, data in buffers.contents.items():
                    if data is None:
                        trial.pop(rel)
                    else:
                        trial[rel] = data
                assert not predicate(trial), candidate.description


def test_rust_scenario_removes_unused_binding(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    oracle = FakeOracle(_has_token_x)
    result = _engine(tmp_path, oracle).start(root)

    final = (root / "main.rs").read_bytes()
    assert result.status == "fixpoint"
    assert b"y" not in final
    assert HAS_X.search(final)
    assert result.final_size < result.initial_size == len(RUST_SCENARIO)
    assert result.final_size == len(final)
    assert final == b"fn main() { println!(x); }\n"
    assert result.counters.accepted >= 2
    _assert_no_single_edit_helps(result.model, _has_token_x)


def test_every_accepted_state_reproduces_and_shrinks(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    oracle = FakeOracle(_has_token_x)
    logger = RunLogger(tmp_path / "runs", run_id="shrink", stream=False)
    _engine(tmp_path, oracle, logger=logger).start(root)

    sizes = [event["data"]["size"] for event in logger.events("trial.accepted")]
    assert sizes == sorted(sizes, reverse=True)
    assert len(set(sizes)) == len(sizes)
    states = [event["data"]["state"] for event in logger.events("engine.state")]
    assert states[-1] == "fixpoint"


def test_multi_file_project_drops_irrelevant_file(tmp_path: Path):
    files = {
        "src/main.rs": RUST_SCENARIO,
        "src/util.rs": b"fn helper(a: i32) -> i32 { a + 1 }\nfn other() {}\n",
    }
    root = _write(tmp_path / "project", files)

    def relevant(contents: Dict[str, bytes]) -> bool:
        return "src/main.rs" in contents and bool(HAS_X.search(contents["src/main.rs"]))

    result = _engine(tmp_path, FakeOracle(relevant)).start(root)
    assert result.status == "fixpoint"
    assert not (root / "src" / "util.rs").exists()
    assert result.model.removed == ("src/util.rs",)
    assert (root / "src" / "main.rs").read_bytes() == b"fn main() { println!(x); }\n"


def test_multi_file_without_file_removal_empties_irrelevant_file(tmp_path: Path):
    files = {
        "src/main.rs": RUST_SCENARIO,
        "src/util.rs": b"fn helper(a: i32) -> i32 { a + 1 }\nfn other() {}\n",
    }
    root = _write(tmp_path / "project", files)

    def relevant(contents: Dict[str, bytes]) -> bool:
        return bool(HAS_X.search(contents.get("src/main.rs", b"")))

    catalog = passes.build_catalog(file_removal=False)
    result = _engine(tmp_path, FakeOracle(relevant), catalog=catalog).start(root)
    assert result.status == "fixpoint"
    assert (root / "src" / "util.rs").read_bytes() == b""
    assert (root / "src" / "main.rs").read_bytes() == b"fn main() { println!(x); }\n"


def test_python_project_reduces_to_failing_statement(tmp_path: Path):
    source = (
        b"import os\n"
        b"\n"
        b"def helper(value):\n"
        b"    total = value * 2\n"
        b"    return total\n"
        b"\n"
        b"def crash():\n"
        b"    data = {}\n"
        b"    return data['missing']\n"
    )
    root = _write(tmp_path / "project", {"mod.py": source})

    def keeps_lookup(contents: Dict[str, bytes]) -> bool:
        return b"['missing']" in contents.get("mod.py", b"")

    result = _engine(tmp_path, FakeOracle(keeps_lookup)).start(root)
    final = (root / "mod.py").read_bytes()
    assert result.status == "fixpoint"
    assert b"helper" not in final
    assert b"import" not in final
    assert b"['missing']" in final
    _assert_no_single_edit_helps(result.model, keeps_lookup)


def test_baseline_failure_leaves_files_untouched(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    oracle = FakeOracle(lambda contents: False)
    reducer = _engine(tmp_path, oracle)
    with pytest.raises(BaselineVerificationError):
        reducer.start(root)
    assert (root / "main.rs").read_bytes() == RUST_SCENARIO
    assert oracle.invocations == 1
    assert reducer.state is engine.EngineState.FAILED


def test_cancellation_stops_at_pass_boundary_with_accepted_state(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    cancel = threading.Event()
    oracle = FakeOracle(_has_token_x, cancel_after=3)
    result = _engine(tmp_path, oracle, cancel=cancel).start(root)
    assert result.status == "interrupted"
    on_disk = (root / "main.rs").read_bytes()
    assert on_disk == result.model.get("main.rs").data
    assert HAS_X.search(on_disk)


def test_resume_reaches_at_least_uninterrupted_result(tmp_path: Path):
    files = {
        "src/main.rs": RUST_SCENARIO,
        "src/util.rs": b"fn helper(a: i32) -> i32 { a + 1 }\n",
    }
    reference_root = _write(tmp_path / "reference", files)
    reference = engine.ReductionEngine(
        "fake-driver",
        oracle=FakeOracle(_has_token_x),
        snapshots=snapshots.SnapshotManager(tmp_path / "reference-snaps", interval=0.0),
    ).start(reference_root)

    root = _write(tmp_path / "project", files)
    cancel = threading.Event()
    first = _engine(tmp_path, FakeOracle(_has_token_x, cancel_after=6), cancel=cancel).start(root)
    assert first.status == "interrupted"
    assert first.snapshots

    resumed = _engine(tmp_path, FakeOracle(_has_token_x)).resume()
    assert resumed.status == "fixpoint"
    assert resumed.final_size <= reference.final_size
    assert len(snapshots.SnapshotManager(tmp_path / "snaps").existing_ids()) <= 3


def test_resume_fails_when_snapshot_no_longer_reproduces(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    _engine(tmp_path, FakeOracle(_has_token_x)).start(root)
    with pytest.raises(ResumeError):
        _engine(tmp_path, FakeOracle(lambda contents: False)).resume()


def test_resume_restores_files_into_recorded_root(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    _engine(tmp_path, FakeOracle(_has_token_x)).start(root)
    reduced = (root / "main.rs").read_bytes()
    shutil.rmtree(root)
    result = _engine(tmp_path, FakeOracle(_has_token_x)).resume()
    assert result.status == "fixpoint"
    assert (root / "main.rs").read_bytes() == reduced


def test_inconclusive_streak_aborts(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})

    class FlakyOracle(FakeOracle):
        def run(self, root, driver, cancel=None):
            if self.invocations == 0:
                return super().run(root, driver, cancel)
            self.invocations += 1
            self.consecutive_inconclusive += 1
            return types.OracleVerdict.inconclusive_because("timeout")

    oracle = FlakyOracle(_has_token_x, inconclusive_abort_threshold=2)
    with pytest.raises(OracleAbortError):
        _engine(tmp_path, oracle).start(root)
    assert (root / "main.rs").read_bytes() == RUST_SCENARIO
    assert oracle.consecutive_inconclusive == 3


def test_snapshot_failure_is_logged_and_skipped(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    (tmp_path / "snaps").write_text("not a directory")
    logger = RunLogger(tmp_path / "runs", run_id="snapfail", stream=False)
    result = _engine(tmp_path, FakeOracle(_has_token_x), logger=logger).start(root)
    assert result.status == "fixpoint"
    assert result.snapshots == []
    assert list(logger.events("snapshot.failed"))


class SteppingClock:
    """Monotonic clock that moves forward by *step* every time the manager asks."""

    def __init__(self, step: float):
        self.now = 0.0
        self.step = step

    def tick(self) -> float:
        self.now += self.step
        return self.now

    def read(self) -> float:
        return self.now


def test_snapshots_respect_interval_through_a_whole_run(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    clock = SteppingClock(6.0)
    manager = snapshots.SnapshotManager(
        tmp_path / "snaps", interval=10.0, retention=50, clock=clock.tick, wall_clock=clock.read
    )
    result = engine.ReductionEngine("fake-driver", oracle=FakeOracle(_has_token_x), snapshots=manager).start(root)

    assert result.status == "fixpoint"
    stamps = [
        json.loads((tmp_path / "snaps" / f"{snap_id:06d}" / "meta.json").read_text())["timestamp"]
        for snap_id in manager.existing_ids()
    ]
    assert len(stamps) >= 2
    gaps = [later - earlier for earlier, later in zip(stamps, stamps[1:])]
    assert all(gap >= 10.0 for gap in gaps), gaps


def test_fast_run_keeps_only_baseline_snapshot(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    result = _engine(tmp_path, FakeOracle(_has_token_x), interval=3600.0).start(root)
    assert result.status == "fixpoint"
    assert result.snapshots == [1]
    meta = json.loads((tmp_path / "snaps" / "000001" / "meta.json").read_text())
    assert meta["size"] == len(RUST_SCENARIO)


def test_write_failure_is_fatal_and_keeps_accepted_bytes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})

    class FillingDisk(workspace.Workspace):
        writes = 0

        def write(self, contents):
            super().write(contents)
            FillingDisk.writes += 1
            if FillingDisk.writes == 4:
                raise FilesystemWriteError("no space left on device")

    monkeypatch.setattr(engine, "Workspace", FillingDisk)
    reducer = _engine(tmp_path, FakeOracle(_has_token_x))
    with pytest.raises(FilesystemWriteError):
        reducer.start(root)

    assert reducer.state is engine.EngineState.FAILED
    accepted = reducer.current.model.get("main.rs").data
    assert reducer.current.counters.accepted >= 1
    assert len(accepted) < len(RUST_SCENARIO)
    assert (root / "main.rs").read_bytes() == accepted
    assert not reducer.workspace.dirty


def test_pass_hooks_bracket_every_oracle_run(tmp_path: Path):
    root = _write(tmp_path / "project", {"main.rs": RUST_SCENARIO})
    calls = []

    class RecordingDeleteSiblings(passes.DeleteSiblingsPass):
        def prepare(self, root):
            calls.append(("prepare", (root / "main.rs").read_bytes()))

        def cleanup(self, root, reproduced):
            calls.append(("cleanup", reproduced))

    oracle = FakeOracle(_has_token_x)
    result = _engine(tmp_path, oracle, catalog=[RecordingDeleteSiblings()]).start(root)

    assert result.status == "fixpoint"
    assert [kind for kind, _ in calls[0::2]] == ["prepare"] * (len(calls) // 2)
    assert [kind for kind, _ in calls[1::2]] == ["cleanup"] * (len(calls) // 2)
    # the baseline run is not a trial
    assert len(calls) == 2 * (oracle.invocations - 1)
    assert calls[0] == ("prepare", RUST_SCENARIO)
    assert sum(1 for kind, reproduced in calls if kind == "cleanup" and reproduced) == result.counters.accepted
