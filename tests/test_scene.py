import numpy as np
import pytest

from depthbench.config import SceneCfg
from depthbench.intrinsics import CameraIntrinsics
from depthbench.normals_eval import mean_angular_error
from depthbench.plane import Plane
from depthbench.scene import SceneSynthesizer, band_index


def test_single_plane_scene_normals_are_exact(vga, rng):
    synth = SceneSynthesizer(vga)
    scene = synth.generate(1, rng)
    assert scene.points.shape == (480, 640, 3)
    assert scene.normals.shape == (480, 640, 3)
    assert scene.labels.shape == (480, 640)
    assert scene.labels.dtype == np.uint8
    expected = scene.planes[0].normal.astype(scene.normals.dtype)
    assert np.all(scene.normals == expected)
    assert np.all(scene.labels == 0)
    assert mean_angular_error(scene.normals, scene.normals) == pytest.approx(0.0, abs=1e-7)


def test_three_planes_make_vertical_bands(vga, rng):
    scene = SceneSynthesizer(vga).generate(3, rng)
    labels = scene.labels
    assert sorted(np.unique(labels).tolist()) == [0, 1, 2]
    # every row is identical: bands do not depend on v
    assert np.all(labels == labels[0])
    widths = []
    for j in range(3):
        cols = np.flatnonzero(labels[0] == j)
        assert np.all(np.diff(cols) == 1)
        widths.append(cols.size)
    assert sum(widths) == 640
    assert max(widths) - min(widths) <= 1
    # band j sits left of band j + 1
    assert np.all(np.diff(labels[0].astype(int)) >= 0)


def test_band_index_formula():
    idx = band_index(640, 3)
    u = np.arange(640)
    np.testing.assert_array_equal(idx, np.floor((u / 640) * 3).astype(int))
    assert idx[0] == 0 and idx[-1] == 2


def test_points_lie_on_their_band_plane(vga, rng):
    scene = SceneSynthesizer(vga).generate(3, rng, precision="float64")
    for j, plane in enumerate(scene.planes):
        m = (scene.labels == j) & scene.valid
        pts = scene.points[m]
        resid = np.abs(pts @ plane.normal - plane.offset)
        scale = np.maximum(1.0, np.linalg.norm(pts, axis=1))
        assert np.all(resid <= 1e-9 * scale)
        np.testing.assert_array_equal(scene.normals[m], np.tile(plane.normal, (m.sum(), 1)))


def test_plane_depths_drawn_from_configured_range(vga, rng):
    scene = SceneSynthesizer(vga).generate(5, rng)
    for p in scene.planes:
        # offset == depth parameter d
        assert -3.0 <= p.offset <= -0.5


@pytest.mark.parametrize("precision", ["float32", "float64"])
def test_precision_controls_map_dtype(small_synth, rng, precision):
    scene = small_synth.generate(2, rng, precision=precision)
    assert scene.points.dtype == np.dtype(precision)
    assert scene.normals.dtype == np.dtype(precision)


def test_default_precision_from_cfg(small_cam, rng):
    synth = SceneSynthesizer(small_cam, SceneCfg(precision="float64"))
    assert synth.generate(1, rng).points.dtype == np.float64


def test_seeded_generator_reproduces_scene(small_synth):
    a = small_synth.generate(3, np.random.default_rng(7))
    b = small_synth.generate(3, np.random.default_rng(7))
    np.testing.assert_array_equal(a.points, b.points)
    np.testing.assert_array_equal(a.labels, b.labels)


def test_shared_generator_advances_between_trials(small_synth, rng):
    scenes = list(small_synth.stream(1, 3, rng))
    assert len(scenes) == 3
    normals = [s.planes[0].normal for s in scenes]
    assert not np.allclose(normals[0], normals[1])
    assert scenes[0].points is not scenes[1].points


@pytest.mark.parametrize("n_planes", [0, -1, 256])
def test_invalid_plane_count(small_synth, rng, n_planes):
    with pytest.raises(ValueError):
        small_synth.generate(n_planes, rng)


def test_degenerate_pixels_are_flagged(small_cam):
    # plane containing the optical axis: the principal ray is parallel to it
    cam = CameraIntrinsics(small_cam.width, small_cam.height, 66.0, 66.0, 40.0, 30.0)
    plane = Plane(normal=np.array([1.0, 0.0, 0.0]), point=np.array([0.0, 0.0, 0.0]))
    scene = SceneSynthesizer(cam).render([plane], precision="float64")
    # column u = cx has rays with x = 0, all parallel to the plane x = 0
    assert scene.n_degenerate == small_cam.height
    assert not scene.valid[:, 40].any()
    assert scene.valid[:, :40].all() and scene.valid[:, 41:].all()
    np.testing.assert_allclose(scene.points[~scene.valid][:, 0], 0.0, atol=1e-12)
    np.testing.assert_allclose(np.linalg.norm(scene.points[~scene.valid], axis=1), 1.0)
