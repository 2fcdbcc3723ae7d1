from pathlib import Path

import pytest

from grammar_reduce import config as config_module
from grammar_reduce.errors import ConfigError


def test_load_missing_file_returns_defaults(tmp_path: Path):
    cfg = config_module.Config.load(tmp_path / "absent.yaml")
    assert cfg == config_module.Config.default()
    assert cfg.snapshot.interval == 10.0
    assert cfg.snapshot.retention == 10
    assert cfg.oracle.timeout is None
    assert cfg.logging.dir == ".reduce_runs"


def test_load_yaml_sections_and_ignores_unknown_keys(tmp_path: Path):
    path = tmp_path / "reduce.yaml"
    path.write_text(
        "driver: ./check.sh\n"
        "root_path: project\n"
        "oracle:\n"
        "  timeout: 30\n"
        "  inconclusive_abort_threshold: 5\n"
        "snapshot:\n"
        "  directory: snaps\n"
        "  retention: 4\n"
        "  compression: zstd\n"
        "search:\n"
        "  passes: [delete-siblings, discard-whitespace]\n"
        "  exclude: ['vendor/*']\n"
        "logging:\n"
        "  stream: true\n"
    )
    cfg = config_module.Config.load(path)
    assert cfg.driver == "./check.sh"
    assert cfg.oracle.timeout == 30
    assert cfg.oracle.inconclusive_abort_threshold == 5
    assert cfg.snapshot.retention == 4
    assert cfg.search.passes == ("delete-siblings", "discard-whitespace")
    assert cfg.search.exclude == ("vendor/*",)
    assert cfg.logging.stream is True
    assert cfg.validate() is cfg


def test_load_rejects_non_mapping(tmp_path: Path):
    path = tmp_path / "reduce.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError):
        config_module.Config.load(path)


def test_with_overrides_skips_none_values():
    cfg = config_module.Config(driver="a", root_path="p", snapshot=config_module.SnapshotConfig(directory="s"))
    updated = cfg.with_overrides(
        driver=None,
        oracle={"timeout": 2.5, "inconclusive_abort_threshold": None},
        snapshot={"interval": 0.0, "directory": None},
    )
    assert updated.driver == "a"
    assert updated.oracle.timeout == 2.5
    assert updated.snapshot.interval == 0.0
    assert updated.snapshot.directory == "s"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"root_path": "p"},
        {"driver": "d", "snapshot": config_module.SnapshotConfig(directory="s")},
        {"driver": "d", "root_path": "p", "resume": True, "snapshot": config_module.SnapshotConfig(directory="s")},
        {"driver": "d", "root_path": "p"},
        {"driver": "d", "root_path": "p", "snapshot": config_module.SnapshotConfig(directory="s", retention=0)},
        {"driver": "d", "root_path": "p", "snapshot": config_module.SnapshotConfig(directory="s", interval=-1)},
        {
            "driver": "d",
            "root_path": "p",
            "snapshot": config_module.SnapshotConfig(directory="s"),
            "oracle": config_module.OracleConfig(timeout=0),
        },
        {
            "driver": "d",
            "root_path": "p",
            "snapshot": config_module.SnapshotConfig(directory="s"),
            "search": config_module.SearchConfig(passes=("shuffle",)),
        },
    ],
)
def test_validate_rejects_incomplete_or_contradictory_config(kwargs):
    with pytest.raises(ConfigError):
        config_module.Config(**kwargs).validate()


def test_validate_accepts_resume_without_root():
    cfg = config_module.Config(driver="d", resume=True, snapshot=config_module.SnapshotConfig(directory="s"))
    assert cfg.validate().resume
