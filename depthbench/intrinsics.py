from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Optional

import numpy as np

from utils.config import CameraDefaults
from utils.io import load_intrinsics_from_json
from utils.logger import Logger

LOG = Logger.get_logger("intrinsics")


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole camera; K and its inverse are derived once and shared read-only."""

    width: int
    height: int
    fx: float
    fy: float
    cx: float
    cy: float

    @classmethod
    def from_focal(
        cls,
        width: int,
        height: int,
        focal_length: float,
        cx: Optional[float] = None,
        cy: Optional[float] = None,
    ) -> "CameraIntrinsics":
        """Square pixels; principal point defaults to the center + 0.5 px."""
        cx = width / 2.0 + 0.5 if cx is None else cx
        cy = height / 2.0 + 0.5 if cy is None else cy
        return cls(width, height, focal_length, focal_length, cx, cy)

    @classmethod
    def from_defaults(cls, d: CameraDefaults) -> "CameraIntrinsics":
        return cls(*d.as_tuple())

    @cached_property
    def K(self) -> np.ndarray:
        K = np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )
        K.setflags(write=False)
        return K

    @cached_property
    def K_inv(self) -> np.ndarray:
        Kinv = np.linalg.inv(self.K)
        Kinv.setflags(write=False)
        return Kinv

    @property
    def shape(self) -> tuple[int, int]:
        """(rows, cols) of maps produced for this camera."""
        return (self.height, self.width)


def build_intrinsics(
    fallback: CameraDefaults, json_path: Optional[Path | str] = None
) -> CameraIntrinsics:
    """Prefer JSON intrinsics when a path is given; fallback to defaults."""
    if json_path is None:
        intr = CameraIntrinsics.from_defaults(fallback)
    else:
        intr = CameraIntrinsics(*load_intrinsics_from_json(Path(json_path), fallback))
    LOG.info(
        f"[INTR] w={intr.width} h={intr.height} fx={intr.fx:.3f} fy={intr.fy:.3f} "
        f"cx={intr.cx:.3f} cy={intr.cy:.3f}"
    )
    return intr
