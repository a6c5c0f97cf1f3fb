import numpy as np
import pytest

from depthbench.algorithms import (
    CrossNormalEstimator,
    DepthGradientNormalEstimator,
    FixedNormalEstimator,
    FixedPlaneSegmenter,
    PlaneSegmentation,
)
from depthbench.config import (
    BenchCfg,
    NormalsBenchCfg,
    NormalsMethod,
    PlaneBenchCfg,
    error_budget,
)
from depthbench.harness import run_benchmark, run_normals_benchmark, run_plane_benchmark
from depthbench.plane_eval import PlaneCoefficients
from depthbench.scene import SceneSynthesizer
from utils.config import CameraDefaults


def _oracle_segmentation(scene):
    return PlaneSegmentation(
        labels=scene.labels.astype(np.int32),
        coefficients=[PlaneCoefficients.from_plane(p) for p in scene.planes],
    )


class _Boom:
    name = "boom"

    def __init__(self, fail_on):
        self.fail_on = fail_on
        self.calls = 0

    def estimate(self, points):
        self.calls += 1
        if self.calls == self.fail_on:
            raise RuntimeError("estimator crashed")
        return np.broadcast_to(np.array([0.0, 0.0, -1.0]), points.shape)


def test_perfect_estimator_single_plane_vga(vga, rng):
    synth = SceneSynthesizer(vga)
    scenes = list(synth.stream(1, 5, rng))
    est = FixedNormalEstimator([s.normals for s in scenes])
    report = run_normals_benchmark(est, synth, 1, 5, rng, budget=1e-4, scenes=scenes)
    assert est.calls == 5
    assert len(report.trials) == 5
    assert report.mean_error <= 1e-4
    assert report.passed
    assert report.calls == 5


def test_perfect_segmenter_three_planes_vga(vga, rng):
    synth = SceneSynthesizer(vga)
    scenes = list(synth.stream(3, 10, rng))
    seg = FixedPlaneSegmenter([_oracle_segmentation(s) for s in scenes])
    report = run_plane_benchmark(seg, synth, 3, 10, rng, PlaneBenchCfg(), scenes=scenes)
    assert seg.calls == 10
    assert len(report.trials) == 10
    assert report.passed
    for t in report.trials:
        assert t.passed
        assert [m.coverage for m in t.matches] == [1.0, 1.0, 1.0]
        assert all(m.normal_dot == pytest.approx(1.0) for m in t.matches)


def test_plane_benchmark_runs_with_and_without_normals(small_synth, rng):
    scenes = list(small_synth.stream(3, 2, rng))
    outputs = [_oracle_segmentation(s) for s in scenes for _ in range(2)]
    seg = FixedPlaneSegmenter(outputs)
    est = FixedNormalEstimator([s.normals for s in scenes])
    report = run_plane_benchmark(
        seg, small_synth, 3, 2, rng, PlaneBenchCfg(), normal_estimator=est, scenes=scenes
    )
    assert [t.with_normals for t in report.trials] == [True, False, True, False]
    assert est.calls == 2
    assert seg.calls == 4
    assert report.passed


def test_trial_exception_is_contained(small_synth, rng):
    est = _Boom(fail_on=2)
    report = run_normals_benchmark(est, small_synth, 1, 4, rng)
    assert len(report.trials) == 4
    assert [t.passed for t in report.trials] == [True, False, True, True]
    assert "estimator crashed" in report.trials[1].message
    assert not report.passed
    # timing only counts calls that returned
    assert report.calls == 3


def test_accuracy_failure_marks_trial_failed(small_synth, rng):
    scenes = list(small_synth.stream(2, 1, rng))
    bad = _oracle_segmentation(scenes[0])
    bad.coefficients = [
        PlaneCoefficients(normal=np.array([1.0, 0.0, 0.0]), offset=0.0)
        for _ in bad.coefficients
    ]
    report = run_plane_benchmark(
        FixedPlaneSegmenter([bad]), small_synth, 2, 1, rng, scenes=scenes
    )
    (t,) = report.trials
    assert not t.passed
    assert t.matches
    assert "plane match" in t.message
    assert not report.passed


def test_segmenter_exception_is_contained(small_synth, rng):
    class _Crash:
        name = "crash"

        def segment(self, points, normals=None):
            raise MemoryError("out of memory")

    report = run_plane_benchmark(_Crash(), small_synth, 1, 3, rng)
    assert len(report.trials) == 3
    assert not any(t.passed for t in report.trials)


def test_budget_exceeded_fails_report(small_synth, rng):
    est = CrossNormalEstimator(precision="float32")
    report = run_normals_benchmark(est, small_synth, 3, 2, rng, budget=0.0)
    assert all(t.passed for t in report.trials)
    assert report.mean_error > 0.0
    assert not report.passed


def test_error_budget_lookup():
    assert error_budget(NormalsMethod.FALS, "float32", 1) == 0.006
    assert error_budget(NormalsMethod.FALS, "float64", 3) == 0.02
    # unknown plane counts use the widest budget
    assert error_budget(NormalsMethod.CROSS, "float64", 5) == 0.02


def test_run_benchmark_small_camera():
    cfg = BenchCfg(
        camera=CameraDefaults(80, 60, 66.0, 66.0, 40.5, 30.5),
        normals=NormalsBenchCfg(
            methods=(NormalsMethod.CROSS,),
            precisions=("float64",),
            plane_counts=(1,),
            n_trials=2,
        ),
        planes=PlaneBenchCfg(schedule=((1, 1),)),
        seed=3,
    )
    report = run_benchmark(cfg)
    assert report.camera.width == 80
    (nr,) = report.normals
    assert nr.method == "cross" and nr.precision == "float64"
    assert len(nr.trials) == 2
    assert np.isfinite(nr.mean_error)
    (pr,) = report.planes
    assert pr.segmenter == "ransac"
    assert [t.with_normals for t in pr.trials] == [True, False]
    assert all(t.matches for t in pr.trials)


def test_depth_estimators_receive_the_depth_channel(small_synth, rng):
    scenes = list(small_synth.stream(1, 2, rng))
    est = FixedNormalEstimator([s.normals for s in scenes], input_kind="depth")
    report = run_normals_benchmark(est, small_synth, 1, 2, rng, scenes=scenes)
    assert report.passed
    for scene, seen in zip(scenes, est.inputs):
        assert seen.shape == scene.labels.shape
        np.testing.assert_array_equal(seen, scene.points[..., 2])


def test_point_estimators_receive_the_point_map(small_synth, rng):
    scenes = list(small_synth.stream(1, 1, rng))
    est = FixedNormalEstimator([scenes[0].normals])
    run_normals_benchmark(est, small_synth, 1, 1, rng, scenes=scenes)
    assert est.inputs[0] is scenes[0].points


def test_linemod_meets_its_budget_on_single_planes(small_cam, small_synth, rng):
    est = DepthGradientNormalEstimator(small_cam, precision="float64")
    budget = error_budget(NormalsMethod.LINEMOD, "float64", 1)
    report = run_normals_benchmark(
        est, small_synth, 1, 3, rng, precision="float64", budget=budget
    )
    assert report.method == "linemod"
    assert report.calls == 3
    assert report.passed
