from pathlib import Path

import pytest

from grammar_reduce import main

DRIVER = (
    "import re\n"
    "data = Path('main.rs').read_bytes() if Path('main.rs').exists() else b''\n"
    "sys.exit(0 if re.search(rb'\\bx\\b', data) else 1)"
)


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(main, "_install_signal_handlers", lambda cancel: None)


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "main.rs").write_bytes(b'fn main() { let x = 1; let y = 2; println!("{}", x); }\n')
    return root


def test_main_reduces_project_to_fixpoint(project: Path, tmp_path: Path, make_driver, capsys):
    driver = make_driver(DRIVER)
    code = main.main([
        str(driver),
        "--root-path",
        str(project),
        "--snapshot-directory",
        str(tmp_path / "snaps"),
        "--snapshot-interval",
        "0",
        "--oracle-timeout",
        "20",
    ])
    assert code == main.EXIT_OK
    assert (project / "main.rs").read_bytes() == b"fn main() { println!(x); }\n"
    assert "fixpoint" in capsys.readouterr().out
    assert (tmp_path / "snaps" / "000001" / "meta.json").exists()
    runs = list((tmp_path / ".reduce_runs").iterdir())
    assert runs and (runs[0] / "result.json").exists()
    assert "fixpoint" in (runs[0] / "summary.txt").read_text()


def test_main_resume_after_completed_run(project: Path, tmp_path: Path, make_driver):
    driver = make_driver(DRIVER)
    args = [str(driver), "--snapshot-directory", str(tmp_path / "snaps")]
    assert main.main(args + ["--root-path", str(project)]) == main.EXIT_OK
    assert main.main(args + ["--resume"]) == main.EXIT_OK
    assert (project / "main.rs").read_bytes() == b"fn main() { println!(x); }\n"


def test_main_reports_configuration_errors(project: Path, make_driver, capsys):
    driver = make_driver(DRIVER)
    code = main.main([str(driver), "--root-path", str(project)])
    assert code == main.EXIT_CONFIG
    assert "snapshot.directory" in capsys.readouterr().err


def test_main_reports_baseline_failure(project: Path, tmp_path: Path, make_driver, capsys):
    driver = make_driver("sys.exit(1)")
    code = main.main([str(driver), "--root-path", str(project), "--snapshot-directory", str(tmp_path / "snaps")])
    assert code == main.EXIT_FAILED
    assert "BaselineVerificationError" in capsys.readouterr().err
    assert b"let y = 2;" in (project / "main.rs").read_bytes()


def test_cli_flags_override_yaml(project: Path, tmp_path: Path, make_driver):
    driver = make_driver(DRIVER)
    config_path = tmp_path / "reduce.yaml"
    config_path.write_text(
        f"driver: {driver}\n"
        f"root_path: {tmp_path / 'elsewhere'}\n"
        "snapshot:\n"
        "  directory: from-yaml\n"
        "  retention: 2\n"
    )
    ns = main._parse_args(["--config", str(config_path), "--resume", "--snapshot-retention", "5"])
    cfg = main._build_config(ns)
    assert cfg.resume and not cfg.root_path
    assert cfg.driver == str(driver)
    assert cfg.snapshot.directory == "from-yaml"
    assert cfg.snapshot.retention == 5
