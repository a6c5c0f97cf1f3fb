from __future__ import annotations

import argparse
import sys
from dataclasses import asdict, replace
from pathlib import Path
from typing import List, Optional

from utils.config import PRECISIONS, CameraDefaults
from utils.error_tracker import ErrorTracker
from utils.io import save_report_json
from utils.logger import Logger

from .config import BenchCfg, NormalsMethod
from .harness import BenchReport, run_benchmark

LOG = Logger.get_logger("main")


def run(cfg: BenchCfg | None = None) -> BenchReport:
    """
    Entry point: configure logging, install ErrorTracker, run the benchmark.
    Writes the JSON report when ``cfg.report_path`` is set.
    """
    cfg = cfg or BenchCfg()
    Logger.configure(level=cfg.log_level)
    ErrorTracker.install_excepthook()
    ErrorTracker.install_signal_handlers()

    def _mark_interrupted() -> None:
        save_report_json({"passed": False, "interrupted": True}, Path(cfg.report_path))

    if cfg.report_path:
        # a killed run must not leave an older report looking current
        ErrorTracker.register_cleanup(_mark_interrupted)

    log_file = Logger.log_file()
    LOG.info(f"[START] seed={cfg.seed} log={log_file or 'console only'}")
    try:
        report = run_benchmark(cfg)
    finally:
        ErrorTracker.unregister_cleanup(_mark_interrupted)

    n_fail = sum(not r.passed for r in report.normals + report.planes)
    if report.passed:
        LOG.info("[DONE] all checks passed")
    else:
        LOG.warning(f"[DONE] {n_fail} report(s) failed")

    if cfg.report_path:
        payload = {"passed": report.passed, **asdict(report)}
        save_report_json(payload, Path(cfg.report_path))
    return report


def build_cfg(argv: Optional[List[str]] = None) -> BenchCfg:
    d = BenchCfg()
    cam = d.camera
    p = argparse.ArgumentParser(
        prog="depthbench",
        description="Synthetic planar scene benchmark for normal estimation and plane segmentation",
    )
    p.add_argument("--width", type=int, default=cam.width)
    p.add_argument("--height", type=int, default=cam.height)
    p.add_argument("--focal", type=float, default=cam.fx, help="Focal length in pixels")
    p.add_argument("--cx", type=float, default=None, help="Principal point x (default W/2+0.5)")
    p.add_argument("--cy", type=float, default=None, help="Principal point y (default H/2+0.5)")
    p.add_argument("--intrinsics", type=str, default=None, help="Intrinsics JSON (overrides camera flags)")
    p.add_argument(
        "--methods",
        nargs="+",
        choices=[m.value for m in NormalsMethod],
        default=[m.value for m in d.normals.methods],
    )
    p.add_argument("--precisions", nargs="+", choices=list(PRECISIONS), default=list(d.normals.precisions))
    p.add_argument("--plane-counts", nargs="+", type=int, default=list(d.normals.plane_counts))
    p.add_argument("--trials", type=int, default=d.normals.n_trials, help="Trials per normals configuration")
    p.add_argument("--window", type=int, default=d.normals.window_size)
    p.add_argument("--no-planes", action="store_true", help="Skip the plane segmentation benchmark")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--report", type=str, default=None, help="Write JSON report here")
    p.add_argument("--log-level", type=str, default=d.log_level)
    a = p.parse_args(argv)
    if a.window < 3 or a.window % 2 == 0:
        p.error(f"--window must be odd and >= 3, got {a.window}")

    camera = CameraDefaults(
        width=a.width,
        height=a.height,
        fx=a.focal,
        fy=a.focal,
        cx=a.width / 2.0 + 0.5 if a.cx is None else a.cx,
        cy=a.height / 2.0 + 0.5 if a.cy is None else a.cy,
    )
    normals = replace(
        d.normals,
        methods=tuple(NormalsMethod(m) for m in a.methods),
        precisions=tuple(a.precisions),
        plane_counts=tuple(a.plane_counts),
        n_trials=a.trials,
        window_size=a.window,
    )
    planes = replace(d.planes, enabled=not a.no_planes)
    return replace(
        d,
        camera=camera,
        intrinsics_json=a.intrinsics,
        normals=normals,
        planes=planes,
        seed=a.seed,
        report_path=a.report,
        log_level=a.log_level,
    )


def _main(argv: Optional[List[str]] = None) -> int:
    """Console runner for `depthbench` / `python -m depthbench.main`."""
    report = run(build_cfg(argv))
    return 0 if report.passed else 1


if __name__ == "__main__":
    sys.exit(_main())
