# utils/helpers.py
from __future__ import annotations

import numpy as np

from .logger import QuietNativeOutput

# ============================================================================ #
# numpy
# ============================================================================ #
np.set_printoptions(suppress=True, precision=6, linewidth=180)


def fmt_array(v) -> str:
    """Pretty numpy one-liner for logs."""
    return np.array2string(np.asarray(v), separator=", ")


# ============================================================================ #
# Vector math
# ============================================================================ #
def normalize(v: np.ndarray) -> np.ndarray:
    """Unit vector along ``v`` (no epsilon: zero input gives nan)."""
    v = np.asarray(v, dtype=np.float64)
    return v / np.linalg.norm(v)


def normalize_rows(V: np.ndarray) -> np.ndarray:
    """
    Normalize the last axis of ``V`` (any leading shape).
    Zero-length rows become nan so callers can detect them.
    """
    n = np.linalg.norm(V, axis=-1, keepdims=True)
    with np.errstate(invalid="ignore", divide="ignore"):
        return V / n


def pixel_grid(width: int, height: int, dtype=np.float64) -> np.ndarray:
    """(H, W, 3) homogeneous pixel coordinates (u, v, 1)."""
    u = np.arange(width, dtype=dtype)
    v = np.arange(height, dtype=dtype)
    uu, vv = np.meshgrid(u, v)
    return np.stack([uu, vv, np.ones_like(uu)], axis=-1)


# ============================================================================ #
# Native library output
# ============================================================================ #
def quiet_native() -> QuietNativeOutput:
    """Context manager silencing Open3D's C++ prints around a call."""
    return QuietNativeOutput()
