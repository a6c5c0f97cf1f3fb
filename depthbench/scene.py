"""Synthetic planar scenes: vertical bands, one random plane per band."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

import numpy as np

from utils.config import Precision, dtype_of
from utils.helpers import pixel_grid
from utils.logger import Logger

from .config import SceneCfg
from .intrinsics import CameraIntrinsics
from .plane import Plane, intersect_rays

LOG = Logger.get_logger("scene")

MAX_PLANES = 255  # labels are uint8


@dataclass
class Scene:
    """Ground truth of one trial. Maps are (H, W, ...) and co-indexed."""

    points: np.ndarray  # (H, W, 3)
    normals: np.ndarray  # (H, W, 3)
    labels: np.ndarray  # (H, W) uint8, index into ``planes``
    planes: List[Plane]
    valid: np.ndarray  # (H, W) bool, False where the ray was degenerate

    @property
    def n_planes(self) -> int:
        return len(self.planes)

    @property
    def n_degenerate(self) -> int:
        return int((~self.valid).sum())

    @property
    def depth(self) -> np.ndarray:
        """Z channel of the point map."""
        return self.points[..., 2]


def band_index(width: int, n_planes: int) -> np.ndarray:
    """Band per column: floor((u / W) * n_planes)."""
    u = np.arange(width, dtype=np.float64)
    idx = np.floor((u / width) * n_planes).astype(np.int64)
    return np.minimum(idx, n_planes - 1)


class SceneSynthesizer:
    """Rasterizes random planes into depth / normal / label maps."""

    def __init__(self, intr: CameraIntrinsics, cfg: SceneCfg = SceneCfg()):
        self.intr = intr
        self.cfg = cfg
        self._uv1 = pixel_grid(intr.width, intr.height)

    def random_planes(self, n_planes: int, rng: np.random.Generator) -> List[Plane]:
        lo, hi = self.cfg.depth_range
        planes: List[Plane] = []
        for _ in range(n_planes):
            p = Plane.random(
                rng, normal_z=self.cfg.normal_z, xy_range=self.cfg.normal_xy_range
            )
            p.set_depth(rng.uniform(lo, hi))
            planes.append(p)
        return planes

    def render(
        self, planes: List[Plane], precision: Optional[Precision] = None
    ) -> Scene:
        """Rasterize a given plane list into a scene."""
        n_planes = len(planes)
        W, H = self.intr.width, self.intr.height
        if not 1 <= n_planes <= min(MAX_PLANES, W):
            raise ValueError(
                f"n_planes must be in [1, {min(MAX_PLANES, W)}], got {n_planes}"
            )
        dtype = dtype_of(precision or self.cfg.precision)

        points = np.empty((H, W, 3), dtype)
        normals = np.empty((H, W, 3), dtype)
        labels = np.empty((H, W), np.uint8)
        valid = np.ones((H, W), bool)

        bands = band_index(W, n_planes)
        for j, plane in enumerate(planes):
            cols = np.flatnonzero(bands == j)
            if cols.size == 0:
                continue
            sl = slice(int(cols[0]), int(cols[-1]) + 1)
            pts, degenerate = intersect_rays(
                self._uv1[:, sl],
                plane.offset,
                plane.normal,
                self.intr.K_inv,
                eps=self.cfg.parallel_eps,
                fallback_depth=self.cfg.fallback_depth,
            )
            points[:, sl] = pts
            normals[:, sl] = plane.normal
            labels[:, sl] = j
            valid[:, sl] = ~degenerate
            n_bad = int(degenerate.sum())
            if n_bad:
                LOG.warning(
                    f"[SCENE] plane#{j}: {n_bad} rays nearly parallel, "
                    f"fallback depth {self.cfg.fallback_depth}"
                )
        LOG.debug(f"[SCENE] {n_planes} planes, {W}x{H} {dtype.name}")
        return Scene(points, normals, labels, list(planes), valid)

    def generate(
        self,
        n_planes: int,
        rng: np.random.Generator,
        precision: Optional[Precision] = None,
    ) -> Scene:
        """Fresh random scene with ``n_planes`` vertical bands."""
        if n_planes < 1:
            raise ValueError(f"n_planes must be >= 1, got {n_planes}")
        return self.render(self.random_planes(n_planes, rng), precision)

    def stream(
        self,
        n_planes: int,
        n_trials: int,
        rng: np.random.Generator,
        precision: Optional[Precision] = None,
    ) -> Iterator[Scene]:
        """One new scene per trial; nothing is reused between trials."""
        for _ in range(n_trials):
            yield self.generate(n_planes, rng, precision)
