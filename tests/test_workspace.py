import os
from pathlib import Path

import pytest

from grammar_reduce import workspace
from grammar_reduce.errors import FilesystemWriteError, InvariantViolation


def test_write_then_restore_round_trips_accepted_bytes(tmp_path: Path):
    (tmp_path / "a.rs").write_bytes(b"accepted a")
    (tmp_path / "b.rs").write_bytes(b"accepted b")
    ws = workspace.Workspace(tmp_path)
    ws.write({"a.rs": b"candidate", "b.rs": None})
    assert ws.dirty
    assert ws.read("a.rs") == b"candidate"
    assert not (tmp_path / "b.rs").exists()
    ws.restore({"a.rs": b"accepted a", "b.rs": b"accepted b"})
    assert not ws.dirty
    assert ws.read("a.rs") == b"accepted a"
    assert ws.read("b.rs") == b"accepted b"


def test_write_preserves_file_mode_and_leaves_no_temp_files(tmp_path: Path):
    script = tmp_path / "run.sh"
    script.write_bytes(b"#!/bin/sh\nexit 0\n")
    os.chmod(script, 0o755)
    ws = workspace.Workspace(tmp_path)
    ws.write({"run.sh": b"#!/bin/sh\n"})
    ws.settle()
    assert os.stat(script).st_mode & 0o777 == 0o755
    assert sorted(p.name for p in tmp_path.iterdir()) == ["run.sh"]


def test_only_one_candidate_on_disk(tmp_path: Path):
    ws = workspace.Workspace(tmp_path)
    ws.write({"a.rs": b"one"})
    with pytest.raises(InvariantViolation):
        ws.write({"a.rs": b"two"})


def test_install_writes_contents_and_removes_files(tmp_path: Path):
    (tmp_path / "gone.rs").write_bytes(b"x")
    ws = workspace.Workspace(tmp_path)
    ws.install({"src/kept.rs": b"kept"}, ["gone.rs"])
    assert (tmp_path / "src" / "kept.rs").read_bytes() == b"kept"
    assert not (tmp_path / "gone.rs").exists()


def test_write_failure_is_fatal_error(tmp_path: Path):
    (tmp_path / "blocker").write_bytes(b"not a directory")
    ws = workspace.Workspace(tmp_path)
    with pytest.raises(FilesystemWriteError):
        ws.write({"blocker/a.rs": b"data"})
