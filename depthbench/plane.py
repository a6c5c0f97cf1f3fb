"""Infinite plane model and the camera ray / plane intersection primitive."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple, Union

import numpy as np

from utils import config as ucfg
from utils.helpers import fmt_array, normalize, normalize_rows
from utils.logger import Logger

from .intrinsics import CameraIntrinsics

LOG = Logger.get_logger("plane")


# ============================== INTERSECTION =================================


@dataclass(frozen=True)
class RayHit:
    point: np.ndarray


@dataclass(frozen=True)
class DegenerateRay:
    """Ray (nearly) parallel to the plane; ``point`` uses the fallback depth."""

    point: np.ndarray
    l_dot_n: float
    diagnostic: str


Intersection = Union[RayHit, DegenerateRay]


def intersect_rays(
    uv1: np.ndarray,
    offset: float,
    normal: np.ndarray,
    K_inv: np.ndarray,
    eps: float = ucfg.PARALLEL_EPS,
    fallback_depth: float = ucfg.FALLBACK_DEPTH,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Intersect camera rays through homogeneous pixels ``uv1`` (..., 3) with
    the plane ``normal . x = offset``.

    Returns (points (..., 3) float64, degenerate (...) bool). Rays with
    |L . n| <= eps are placed at ``fallback_depth`` along the ray and flagged.
    """
    uv1 = np.asarray(uv1, dtype=np.float64)
    L = normalize_rows(uv1 @ np.asarray(K_inv, dtype=np.float64).T)
    l_dot_n = L @ np.asarray(normal, dtype=np.float64)
    degenerate = np.abs(l_dot_n) <= eps
    safe = np.where(degenerate, 1.0, l_dot_n)
    d = np.where(degenerate, fallback_depth, offset / safe)
    return d[..., None] * L, degenerate


def ray_plane_intersection(
    uv1: np.ndarray,
    offset: float,
    normal: np.ndarray,
    K_inv: np.ndarray,
    eps: float = ucfg.PARALLEL_EPS,
    fallback_depth: float = ucfg.FALLBACK_DEPTH,
) -> Intersection:
    """Single-ray version of :func:`intersect_rays` with a typed result."""
    uv1 = np.asarray(uv1, dtype=np.float64).reshape(3)
    points, degenerate = intersect_rays(
        uv1, offset, normal, K_inv, eps=eps, fallback_depth=fallback_depth
    )
    if not bool(degenerate):
        return RayHit(point=points)
    L = normalize(np.asarray(K_inv, dtype=np.float64) @ uv1)
    l_dot_n = float(L @ np.asarray(normal, dtype=np.float64))
    msg = (
        f"L.n nearly 0 ({l_dot_n:.3e}); L={fmt_array(L)} n={fmt_array(normal)}"
    )
    LOG.warning(f"[RAY] {msg}")
    return DegenerateRay(point=points, l_dot_n=l_dot_n, diagnostic=msg)


# ============================== PLANE ========================================


@dataclass
class Plane:
    """
    Plane through ``point`` with unit ``normal``.
    ``offset`` (normal . point) is kept in sync by :meth:`set_depth`.
    """

    normal: np.ndarray
    point: np.ndarray = field(default_factory=lambda: np.zeros(3))
    offset: float = field(init=False)

    def __post_init__(self) -> None:
        self.normal = normalize(self.normal)
        self.point = np.asarray(self.point, dtype=np.float64).reshape(3)
        self.offset = float(self.normal @ self.point)

    @classmethod
    def random(
        cls,
        rng: np.random.Generator,
        normal_z: float = ucfg.PLANE_NORMAL_Z,
        xy_range: Tuple[float, float] = ucfg.PLANE_NORMAL_XY_RANGE,
    ) -> "Plane":
        """Normal (nx, ny, normal_z) with nx, ny ~ U(xy_range), normalized."""
        lo, hi = xy_range
        nx = rng.uniform(lo, hi)
        ny = rng.uniform(lo, hi)
        return cls(normal=np.array([nx, ny, normal_z], dtype=np.float64))

    def set_depth(self, d: float) -> None:
        """Move the plane so it passes through (0, 0, d / n.z)."""
        self.point = np.array([0.0, 0.0, d / self.normal[2]], dtype=np.float64)
        self.offset = float(self.normal @ self.point)

    def intersection(
        self, u: float, v: float, intr: CameraIntrinsics
    ) -> Intersection:
        return ray_plane_intersection(
            np.array([u, v, 1.0]), self.offset, self.normal, intr.K_inv
        )
