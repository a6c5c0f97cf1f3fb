import json
import signal
import sys

import pytest

from depthbench.config import BenchCfg, NormalsBenchCfg, NormalsMethod
from depthbench.main import build_cfg, run
from utils.config import CameraDefaults
from utils.error_tracker import ErrorTracker
from utils.logger import Logger


@pytest.fixture
def isolated_run(tmp_path, monkeypatch):
    """Run from tmp_path and undo the global hooks run() installs."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, "excepthook", sys.excepthook)
    sigint = signal.getsignal(signal.SIGINT)
    sigterm = signal.getsignal(signal.SIGTERM)
    yield tmp_path
    signal.signal(signal.SIGINT, sigint)
    signal.signal(signal.SIGTERM, sigterm)
    Logger.configure(level="DEBUG", file_sink=False)


def test_build_cfg_defaults():
    cfg = build_cfg([])
    assert cfg.camera.width == 640 and cfg.camera.height == 480
    assert cfg.camera.cx == 320.5 and cfg.camera.cy == 240.5
    assert cfg.normals.methods == (
        NormalsMethod.FALS,
        NormalsMethod.LINEMOD,
        NormalsMethod.CROSS,
    )
    assert cfg.planes.enabled
    assert cfg.seed is None and cfg.report_path is None


def test_build_cfg_flags():
    cfg = build_cfg(
        [
            "--width", "160",
            "--height", "120",
            "--focal", "130",
            "--methods", "pca",
            "--precisions", "float64",
            "--plane-counts", "2",
            "--trials", "3",
            "--window", "7",
            "--no-planes",
            "--seed", "11",
            "--report", "out/r.json",
            "--log-level", "WARNING",
        ]
    )
    assert cfg.camera.as_tuple() == (160, 120, 130.0, 130.0, 80.5, 60.5)
    assert cfg.normals.methods == (NormalsMethod.PCA,)
    assert cfg.normals.precisions == ("float64",)
    assert cfg.normals.plane_counts == (2,)
    assert cfg.normals.n_trials == 3
    assert cfg.normals.window_size == 7
    assert not cfg.planes.enabled
    assert cfg.seed == 11
    assert cfg.report_path == "out/r.json"
    assert cfg.log_level == "WARNING"


def test_build_cfg_rejects_unknown_method():
    with pytest.raises(SystemExit):
        build_cfg(["--methods", "sobel"])


def test_run_writes_report(isolated_run):
    cfg = build_cfg(
        [
            "--width", "80",
            "--height", "60",
            "--focal", "66",
            "--methods", "cross",
            "--precisions", "float64",
            "--plane-counts", "1",
            "--trials", "2",
            "--no-planes",
            "--seed", "5",
            "--report", "reports/run.json",
        ]
    )
    report = run(cfg)
    data = json.loads((isolated_run / "reports" / "run.json").read_text())
    assert data["passed"] == report.passed
    assert data["seed"] == 5
    assert data["camera"]["width"] == 80
    assert len(data["normals"]) == 1
    assert data["normals"][0]["method"] == "cross"
    assert len(data["normals"][0]["trials"]) == 2
    assert data["planes"] == []


@pytest.mark.parametrize("window", ["4", "1"])
def test_build_cfg_rejects_bad_window(window):
    with pytest.raises(SystemExit):
        build_cfg(["--window", window])


def test_failed_run_leaves_no_cleanup_behind(isolated_run, monkeypatch):
    monkeypatch.setattr(ErrorTracker, "_cleanups", [])
    cfg = BenchCfg(
        camera=CameraDefaults(80, 60, 66.0, 66.0, 40.5, 30.5),
        normals=NormalsBenchCfg(
            methods=(NormalsMethod.FALS,), precisions=("float64",), window_size=4
        ),
        report_path="stale.json",
    )
    with pytest.raises(ValueError):
        run(cfg)
    assert ErrorTracker._cleanups == []
    assert not (isolated_run / "stale.json").exists()


def test_failed_trials_still_give_a_strict_report(isolated_run):
    cfg = build_cfg(
        [
            "--width", "80",
            "--height", "60",
            "--focal", "66",
            "--methods", "linemod",
            "--precisions", "float64",
            "--plane-counts", "0",
            "--trials", "2",
            "--no-planes",
            "--report", "r.json",
        ]
    )
    report = run(cfg)
    assert not report.passed
    text = (isolated_run / "r.json").read_text()
    assert "NaN" not in text
    data = json.loads(text)
    assert data["passed"] is False
    assert data["normals"][0]["mean_error"] is None
