from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Tuple

import numpy as np

Precision = Literal["float32", "float64"]

PRECISIONS: Tuple[Precision, ...] = ("float32", "float64")


# ============================== CORE DATATYPES ===============================


@dataclass(frozen=True)
class CameraDefaults:
    """Pinhole intrinsics used when no JSON override is given."""

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float

    def as_tuple(self) -> Tuple[int, int, float, float, float, float]:
        return (self.width, self.height, self.fx, self.fy, self.cx, self.cy)


def dtype_of(precision: Precision) -> np.dtype:
    """'float32' | 'float64' -> numpy dtype."""
    if precision not in PRECISIONS:
        raise ValueError(
            f"precision must be one of {PRECISIONS}, got {precision!r}"
        )
    return np.dtype(precision)


# ============================== PROJECT DEFAULTS =============================

# VGA depth camera, principal point half a pixel off the image center.
CAMERA_DEFAULT = CameraDefaults(
    width=640,
    height=480,
    fx=525.0,
    fy=525.0,
    cx=640 / 2.0 + 0.5,
    cy=480 / 2.0 + 0.5,
)

# Random plane parameters.
PLANE_NORMAL_Z: float = -0.3
PLANE_NORMAL_XY_RANGE: Tuple[float, float] = (-0.5, 0.5)
PLANE_DEPTH_RANGE: Tuple[float, float] = (-3.0, -0.5)

# Ray-plane intersection.
PARALLEL_EPS: float = 1e-9
FALLBACK_DEPTH: float = 1.0

# Plane matching thresholds.
COVERAGE_TOL: float = 0.001
MIN_NORMAL_DOT: float = 0.95

# Normal estimation window (pixels).
WINDOW_SIZE: int = 5
