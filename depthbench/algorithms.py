"""
Algorithms under test, behind two small capability interfaces.

``NormalEstimator.estimate(points or depth) -> normals`` (the estimator's
``input_kind`` says which map it wants) and
``PlaneSegmenter.segment(points, normals=None) -> PlaneSegmentation``.
The harness only relies on these; anything conforming can be benchmarked,
including the fixed-output doubles at the bottom of this module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence

import cv2
import numpy as np
import open3d as o3d

from utils.config import Precision, dtype_of
from utils.helpers import normalize_rows, pixel_grid, quiet_native
from utils.logger import Logger

from .config import NormalsCfg, NormalsMethod
from .intrinsics import CameraIntrinsics
from .plane_eval import PlaneCoefficients

LOG = Logger.get_logger("algo")


# ============================== INTERFACES ===================================


@dataclass
class PlaneSegmentation:
    labels: np.ndarray  # (H, W) int32, -1 = no plane
    coefficients: List[PlaneCoefficients]


class NormalEstimator(Protocol):
    name: str
    input_kind: str  # "points" (H, W, 3) or "depth" (H, W)

    def estimate(self, points: np.ndarray) -> np.ndarray: ...


class PlaneSegmenter(Protocol):
    name: str

    def segment(
        self, points: np.ndarray, normals: Optional[np.ndarray] = None
    ) -> PlaneSegmentation: ...


def _check_point_map(points: np.ndarray, intr: Optional[CameraIntrinsics] = None) -> None:
    if points.ndim != 3 or points.shape[2] != 3:
        raise ValueError(f"expected an (H, W, 3) point map, got {points.shape}")
    if intr is not None and points.shape[:2] != intr.shape:
        raise ValueError(
            f"point map {points.shape[:2]} does not match camera {intr.shape}"
        )


def _face_camera(normals: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Flip normals so that n . p <= 0 (pointing back at the optical center)."""
    away = np.einsum("...k,...k->...", normals, points) > 0
    normals[away] *= -1
    return normals


# ============================== NORMALS ======================================


class FalsNormalEstimator:
    """
    Fast approximate least squares.

    For a plane n . p = c seen along unit rays L with signed range t,
    1/t = (L . n) / c, so sum(L / t) = (sum L L^T) n / c over a window.
    sum(L L^T) depends only on the camera and is inverted once here.
    """

    name = "fals"
    input_kind = "points"

    def __init__(
        self,
        intr: CameraIntrinsics,
        window_size: int = 5,
        precision: Precision = "float32",
    ):
        if window_size < 3 or window_size % 2 == 0:
            raise ValueError(f"window_size must be odd and >= 3, got {window_size}")
        self.intr = intr
        self.window_size = window_size
        self.dtype = dtype_of(precision)
        rays = normalize_rows(pixel_grid(intr.width, intr.height) @ intr.K_inv.T)
        self._rays = rays.astype(self.dtype)
        M = np.empty((intr.height, intr.width, 3, 3), self.dtype)
        for a in range(3):
            for b in range(a, 3):
                M[..., a, b] = M[..., b, a] = self._box(
                    self._rays[..., a] * self._rays[..., b]
                )
        self._M_inv = np.linalg.inv(M)
        LOG.debug(f"[FALS] init {intr.width}x{intr.height} w={window_size}")

    def _box(self, img: np.ndarray) -> np.ndarray:
        k = self.window_size
        return cv2.boxFilter(
            np.ascontiguousarray(img),
            -1,
            (k, k),
            normalize=False,
            borderType=cv2.BORDER_REPLICATE,
        )

    def estimate(self, points: np.ndarray) -> np.ndarray:
        _check_point_map(points, self.intr)
        P = points.astype(self.dtype, copy=False)
        t = np.einsum("...k,...k->...", P, self._rays)
        ok = np.isfinite(t) & (t != 0)
        inv_t = np.zeros_like(t)
        inv_t[ok] = 1.0 / t[ok]
        b = np.stack([self._box(self._rays[..., k] * inv_t) for k in range(3)], -1)
        n = np.einsum("...ij,...j->...i", self._M_inv, b)
        n = normalize_rows(n)
        return _face_camera(n, P).astype(self.dtype, copy=False)


class DepthGradientNormalEstimator:
    """
    LINEMOD-style normals from the depth channel alone.

    On a plane n . p = c the inverse depth w = 1/Z is affine in the pixel:
    w = (nx (u - cx) / fx + ny (v - cy) / fy + nz) / c. Sobel gradients of w
    therefore give n up to scale. Odd reflection keeps w affine at the border.
    """

    name = "linemod"
    input_kind = "depth"

    def __init__(
        self,
        intr: CameraIntrinsics,
        window_size: int = 5,
        precision: Precision = "float32",
    ):
        if window_size < 3 or window_size % 2 == 0:
            raise ValueError(f"window_size must be odd and >= 3, got {window_size}")
        self.intr = intr
        self.ksize = min(window_size, 7)  # largest Sobel aperture
        self.dtype = dtype_of(precision)
        kd, ks = cv2.getDerivKernels(1, 0, self.ksize, normalize=False)
        r = self.ksize // 2
        self._scale = 1.0 / (float(kd.ravel() @ np.arange(-r, r + 1)) * float(ks.sum()))
        du, dv = np.meshgrid(
            np.arange(intr.width) - intr.cx, np.arange(intr.height) - intr.cy
        )
        self._du = du.astype(self.dtype)
        self._dv = dv.astype(self.dtype)
        # rays with z == 1, so Z * ray is the back-projected point
        self._rays = (pixel_grid(intr.width, intr.height) @ intr.K_inv.T).astype(self.dtype)
        LOG.debug(f"[LINEMOD] init {intr.width}x{intr.height} k={self.ksize}")

    def _grad(self, w: np.ndarray, dx: int, dy: int) -> np.ndarray:
        r = self.ksize // 2
        wp = np.pad(w, r, mode="reflect", reflect_type="odd")
        g = cv2.Sobel(wp, -1, dx, dy, ksize=self.ksize, scale=self._scale)
        return g[r:-r, r:-r]

    def estimate(self, depth: np.ndarray) -> np.ndarray:
        Z = np.asarray(depth, dtype=self.dtype)
        if Z.shape != self.intr.shape:
            raise ValueError(f"depth map {Z.shape} does not match camera {self.intr.shape}")
        ok = np.isfinite(Z) & (Z != 0)
        w = np.full(Z.shape, np.nan, self.dtype)
        w[ok] = 1.0 / Z[ok]
        wu = self._grad(w, 1, 0)
        wv = self._grad(w, 0, 1)
        n = np.stack(
            [
                self.intr.fx * wu,
                self.intr.fy * wv,
                w - wu * self._du - wv * self._dv,
            ],
            axis=-1,
        )
        n = normalize_rows(n)
        P = Z[..., None] * self._rays
        return _face_camera(n, P).astype(self.dtype, copy=False)


class CrossNormalEstimator:
    """Cross product of horizontal and vertical point differences."""

    name = "cross"
    input_kind = "points"

    def __init__(self, window_size: int = 5, precision: Precision = "float32"):
        self.step = max(1, window_size // 2)
        self.dtype = dtype_of(precision)

    def estimate(self, points: np.ndarray) -> np.ndarray:
        _check_point_map(points)
        P = points.astype(self.dtype, copy=False)
        k = self.step
        pu = np.pad(P, ((0, 0), (k, k), (0, 0)), mode="edge")
        pv = np.pad(P, ((k, k), (0, 0), (0, 0)), mode="edge")
        dpdu = pu[:, 2 * k :] - pu[:, : -2 * k]
        dpdv = pv[2 * k :] - pv[: -2 * k]
        n = normalize_rows(np.cross(dpdu, dpdv))
        return _face_camera(n, P).astype(self.dtype, copy=False)


class Open3DNormalEstimator:
    """Open3D covariance normals over the window_size**2 nearest neighbours."""

    name = "pca"
    input_kind = "points"

    def __init__(self, window_size: int = 5, precision: Precision = "float32"):
        self.knn = max(3, window_size * window_size)
        self.dtype = dtype_of(precision)

    def estimate(self, points: np.ndarray) -> np.ndarray:
        _check_point_map(points)
        H, W = points.shape[:2]
        P = points.reshape(-1, 3).astype(np.float64)
        finite = np.isfinite(P).all(1)
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(P[finite])
        with quiet_native():
            pcd.estimate_normals(o3d.geometry.KDTreeSearchParamKNN(knn=self.knn))
            pcd.orient_normals_towards_camera_location(np.zeros(3))
        N = np.full_like(P, np.nan)
        N[finite] = np.asarray(pcd.normals)
        return N.reshape(H, W, 3).astype(self.dtype, copy=False)


def make_normal_estimator(
    cfg: NormalsCfg, intr: CameraIntrinsics
) -> NormalEstimator:
    method = NormalsMethod(cfg.method)
    if method is NormalsMethod.FALS:
        return FalsNormalEstimator(intr, cfg.window_size, cfg.precision)
    if method is NormalsMethod.LINEMOD:
        return DepthGradientNormalEstimator(intr, cfg.window_size, cfg.precision)
    if method is NormalsMethod.CROSS:
        return CrossNormalEstimator(cfg.window_size, cfg.precision)
    if method is NormalsMethod.PCA:
        return Open3DNormalEstimator(cfg.window_size, cfg.precision)
    raise ValueError(f"unknown normals method: {cfg.method!r}")


# ============================== PLANES =======================================


class Open3DPlaneSegmenter:
    """
    Iterative RANSAC: fit the best plane, label its inliers, remove them,
    repeat. With normals, inliers whose normal disagrees with the model by
    more than ``normal_thr_deg`` are left for later planes.
    """

    name = "ransac"

    def __init__(
        self,
        distance_threshold: float = 0.005,
        ransac_n: int = 3,
        iters: int = 1000,
        max_planes: int = 6,
        min_plane_frac: float = 0.02,
        normal_thr_deg: float = 20.0,
    ):
        self.distance_threshold = distance_threshold
        self.ransac_n = ransac_n
        self.iters = iters
        self.max_planes = max_planes
        self.min_plane_frac = min_plane_frac
        self.cos_thr = float(np.cos(np.radians(normal_thr_deg)))

    def _segment_once(self, P: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        pcd = o3d.geometry.PointCloud()
        pcd.points = o3d.utility.Vector3dVector(P)
        with quiet_native():
            model, inliers = pcd.segment_plane(
                distance_threshold=self.distance_threshold,
                ransac_n=self.ransac_n,
                num_iterations=self.iters,
            )
        return np.asarray(model, float), np.asarray(inliers, int)

    def segment(
        self, points: np.ndarray, normals: Optional[np.ndarray] = None
    ) -> PlaneSegmentation:
        _check_point_map(points)
        H, W = points.shape[:2]
        P = points.reshape(-1, 3).astype(np.float64)
        N = None
        if normals is not None:
            if normals.shape != points.shape:
                raise ValueError(
                    f"normals {normals.shape} do not match points {points.shape}"
                )
            N = normals.reshape(-1, 3).astype(np.float64)

        labels = np.full(H * W, -1, np.int32)
        coeffs: List[PlaneCoefficients] = []
        rest = np.flatnonzero(np.isfinite(P).all(1))
        min_pts = max(self.ransac_n, int(self.min_plane_frac * rest.size))
        for i in range(self.max_planes):
            if rest.size < min_pts:
                break
            model, inl = self._segment_once(P[rest])
            coef = PlaneCoefficients.from_model(model)
            sel = rest[inl]
            if N is not None:
                agree = np.abs(N[sel] @ coef.normal) >= self.cos_thr
                sel = sel[agree]
            if sel.size < min_pts:
                break
            labels[sel] = len(coeffs)
            coeffs.append(coef)
            rest = np.setdiff1d(rest, sel, assume_unique=True)
            LOG.info(f"[RANSAC] plane#{i}: {sel.size} inliers")
        return PlaneSegmentation(labels.reshape(H, W), coeffs)


# ============================== TEST DOUBLES =================================


class FixedNormalEstimator:
    """Returns predetermined normal maps, one per call, cycling."""

    name = "fixed"

    def __init__(self, outputs: Sequence[np.ndarray], input_kind: str = "points"):
        if not outputs:
            raise ValueError("FixedNormalEstimator needs at least one output")
        self._outputs = list(outputs)
        self.input_kind = input_kind
        self.inputs: List[np.ndarray] = []
        self.calls = 0

    def estimate(self, points: np.ndarray) -> np.ndarray:
        self.inputs.append(points)
        out = self._outputs[self.calls % len(self._outputs)]
        self.calls += 1
        return out


class FixedPlaneSegmenter:
    """Returns predetermined segmentations, one per call, cycling."""

    name = "fixed"

    def __init__(self, outputs: Sequence[PlaneSegmentation]):
        if not outputs:
            raise ValueError("FixedPlaneSegmenter needs at least one output")
        self._outputs = list(outputs)
        self.calls = 0

    def segment(
        self, points: np.ndarray, normals: Optional[np.ndarray] = None
    ) -> PlaneSegmentation:
        out = self._outputs[self.calls % len(self._outputs)]
        self.calls += 1
        return out
