"""
Trial harness: generate scene -> run algorithm -> score.

Every trial is self-contained. A failed accuracy check or any exception
inside a trial marks that trial failed and the run moves on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Sequence

import numpy as np

from utils.config import Precision
from utils.error_tracker import AccuracyError, ErrorTracker
from utils.logger import Logger

from .algorithms import (
    NormalEstimator,
    Open3DPlaneSegmenter,
    PlaneSegmenter,
    make_normal_estimator,
)
from .config import BenchCfg, NormalsCfg, PlaneBenchCfg, error_budget
from .intrinsics import CameraIntrinsics, build_intrinsics
from .normals_eval import mean_angular_error
from .plane_eval import PlaneMatch, check_plane_matches, match_planes
from .scene import Scene, SceneSynthesizer
from .timing import TickMeter

LOG = Logger.get_logger("harness")


# ============================== REPORTS ======================================


@dataclass
class TrialResult:
    index: int
    n_planes: int
    passed: bool
    error: Optional[float] = None
    with_normals: Optional[bool] = None
    matches: List[PlaneMatch] = field(default_factory=list)
    message: str = ""


@dataclass
class NormalsReport:
    method: str
    precision: str
    n_planes: int
    budget: float
    mean_error: float
    elapsed_ms: float
    calls: int
    trials: List[TrialResult]
    passed: bool


@dataclass
class PlaneReport:
    segmenter: str
    n_planes: int
    normals_ms: float
    plane_ms: float
    trials: List[TrialResult]
    passed: bool


@dataclass
class BenchReport:
    camera: CameraIntrinsics
    seed: Optional[int]
    normals: List[NormalsReport] = field(default_factory=list)
    planes: List[PlaneReport] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(r.passed for r in self.normals) and all(
            r.passed for r in self.planes
        )


def _scene_source(
    synth: SceneSynthesizer,
    n_planes: int,
    n_trials: int,
    rng: np.random.Generator,
    precision: Optional[Precision],
    scenes: Optional[Sequence[Scene]],
) -> Iterator[Scene]:
    if scenes is not None:
        return iter(scenes)
    return synth.stream(n_planes, n_trials, rng, precision)


def _estimator_input(estimator: NormalEstimator, scene: Scene) -> np.ndarray:
    """Depth channel for depth-only estimators, the point map otherwise."""
    if getattr(estimator, "input_kind", "points") == "depth":
        return scene.depth
    return scene.points


def _failed(index: int, n_planes: int, exc: Exception, **kw) -> TrialResult:
    ErrorTracker.report(exc, context=f"trial {index}")
    return TrialResult(
        index=index,
        n_planes=n_planes,
        passed=False,
        message=f"{type(exc).__name__}: {exc}",
        **kw,
    )


# ============================== NORMALS ======================================


def run_normals_benchmark(
    estimator: NormalEstimator,
    synth: SceneSynthesizer,
    n_planes: int,
    n_trials: int,
    rng: np.random.Generator,
    precision: Optional[Precision] = None,
    budget: float = float("inf"),
    exclude_degenerate: bool = True,
    scenes: Optional[Sequence[Scene]] = None,
) -> NormalsReport:
    """Mean angular error of ``estimator`` over ``n_trials`` fresh scenes."""
    if scenes is not None:
        n_trials = len(scenes)
    precision = precision or synth.cfg.precision
    source = _scene_source(synth, n_planes, n_trials, rng, precision, scenes)
    tm = TickMeter()
    trials: List[TrialResult] = []
    desc = f"normals {estimator.name} {precision} {n_planes}pl"
    for i in Logger.progress(range(n_trials), desc=desc, total=n_trials):
        try:
            scene = next(source)
            tm.start()
            normals = estimator.estimate(_estimator_input(estimator, scene))
            tm.stop()
            mask = scene.valid if exclude_degenerate else None
            err = mean_angular_error(normals, scene.normals, mask)
            ok = bool(np.isfinite(err))
            trials.append(
                TrialResult(
                    i,
                    scene.n_planes,
                    ok,
                    error=err,
                    message="" if ok else "non-finite error",
                )
            )
            LOG.debug(f"[NORMALS] trial {i}: err={err:.6f}")
        except Exception as e:
            trials.append(_failed(i, n_planes, e))

    errors = [t.error for t in trials if t.passed and t.error is not None]
    mean_error = float(np.mean(errors)) if errors else float("nan")
    passed = bool(errors) and len(errors) == len(trials) and mean_error <= budget
    speed = tm.time_milli / max(1, tm.counter)
    LOG.info(
        f"[NORMALS] {estimator.name} {precision} {n_planes}pl: "
        f"mean={mean_error:.6f} budget={budget:g} speed={speed:.1f} ms "
        f"-> {'OK' if passed else 'FAIL'}"
    )
    return NormalsReport(
        method=estimator.name,
        precision=str(precision),
        n_planes=n_planes,
        budget=budget,
        mean_error=mean_error,
        elapsed_ms=tm.time_milli,
        calls=tm.counter,
        trials=trials,
        passed=passed,
    )


# ============================== PLANES =======================================


def _plane_trial(
    index: int,
    scene: Scene,
    segmenter: PlaneSegmenter,
    normals: Optional[np.ndarray],
    cfg: PlaneBenchCfg,
    tm: TickMeter,
) -> TrialResult:
    with_normals = normals is not None
    tm.start()
    seg = segmenter.segment(scene.points, normals)
    tm.stop()
    matches = match_planes(scene.planes, scene.labels, seg.labels, seg.coefficients)
    try:
        check_plane_matches(matches, cfg.match)
    except AccuracyError as e:
        LOG.warning(f"[PLANES] trial {index} (normals={with_normals}): {e}")
        return TrialResult(
            index,
            scene.n_planes,
            False,
            with_normals=with_normals,
            matches=matches,
            message=str(e),
        )
    return TrialResult(
        index, scene.n_planes, True, with_normals=with_normals, matches=matches
    )


def run_plane_benchmark(
    segmenter: PlaneSegmenter,
    synth: SceneSynthesizer,
    n_planes: int,
    n_trials: int,
    rng: np.random.Generator,
    cfg: PlaneBenchCfg = PlaneBenchCfg(),
    normal_estimator: Optional[NormalEstimator] = None,
    scenes: Optional[Sequence[Scene]] = None,
) -> PlaneReport:
    """
    Segment every scene twice when a normal estimator is available (with
    precomputed normals, then from points only), else once.
    """
    if scenes is not None:
        n_trials = len(scenes)
    source = _scene_source(synth, n_planes, n_trials, rng, cfg.precision, scenes)
    tm_n, tm_p = TickMeter(), TickMeter()
    modes = [True, False] if (normal_estimator and cfg.use_normals) else [False]
    trials: List[TrialResult] = []
    desc = f"planes {segmenter.name} {n_planes}pl"
    for i in Logger.progress(range(n_trials), desc=desc, total=n_trials):
        try:
            scene = next(source)
        except Exception as e:
            trials.append(_failed(i, n_planes, e))
            continue
        for with_normals in modes:
            try:
                normals = None
                if with_normals:
                    tm_n.start()
                    normals = normal_estimator.estimate(
                        _estimator_input(normal_estimator, scene)
                    )
                    tm_n.stop()
                trials.append(_plane_trial(i, scene, segmenter, normals, cfg, tm_p))
            except Exception as e:
                trials.append(_failed(i, n_planes, e, with_normals=with_normals))

    passed = bool(trials) and all(t.passed for t in trials)
    LOG.info(
        f"[PLANES] {segmenter.name} {n_planes}pl: "
        f"{sum(t.passed for t in trials)}/{len(trials)} ok, "
        f"normals {tm_n.time_milli:.1f} ms, plane {tm_p.time_milli:.1f} ms"
    )
    return PlaneReport(
        segmenter=segmenter.name,
        n_planes=n_planes,
        normals_ms=tm_n.time_milli,
        plane_ms=tm_p.time_milli,
        trials=trials,
        passed=passed,
    )


# ============================== FULL RUN =====================================


def run_benchmark(
    cfg: BenchCfg,
    segmenter: Optional[PlaneSegmenter] = None,
) -> BenchReport:
    """All configured normal methods x precisions x plane counts, then planes."""
    intr = build_intrinsics(cfg.camera, cfg.intrinsics_json)
    rng = np.random.default_rng(cfg.seed)
    synth = SceneSynthesizer(intr, cfg.scene)
    report = BenchReport(camera=intr, seed=cfg.seed)

    ncfg = cfg.normals
    for method in ncfg.methods:
        for precision in ncfg.precisions:
            estimator = make_normal_estimator(
                NormalsCfg(method, ncfg.window_size, precision), intr
            )
            for n_planes in ncfg.plane_counts:
                report.normals.append(
                    run_normals_benchmark(
                        estimator,
                        synth,
                        n_planes,
                        ncfg.n_trials,
                        rng,
                        precision=precision,
                        budget=error_budget(method, precision, n_planes),
                        exclude_degenerate=ncfg.exclude_degenerate,
                    )
                )

    pcfg = cfg.planes
    if pcfg.enabled:
        seg = segmenter or Open3DPlaneSegmenter(
            distance_threshold=pcfg.distance_threshold,
            ransac_n=pcfg.ransac_n,
            iters=pcfg.iters,
            max_planes=pcfg.max_planes,
            min_plane_frac=pcfg.min_plane_frac,
            normal_thr_deg=pcfg.normal_thr_deg,
        )
        estimator = None
        if pcfg.use_normals:
            estimator = make_normal_estimator(
                NormalsCfg(pcfg.normals_method, ncfg.window_size, pcfg.precision),
                intr,
            )
        for n_planes, n_trials in pcfg.schedule:
            report.planes.append(
                run_plane_benchmark(
                    seg, synth, n_planes, n_trials, rng, pcfg, estimator
                )
            )
    return report
