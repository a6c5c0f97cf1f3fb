"""Per-pixel angular error between estimated and ground-truth normal maps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from utils.helpers import normalize_rows
from utils.logger import Logger

LOG = Logger.get_logger("n_eval")


@dataclass(frozen=True)
class NormalErrorStats:
    mean: float
    median: float
    p95: float
    max: float
    count: int
    non_finite: int


def _check_shapes(normals: np.ndarray, gt_normals: np.ndarray) -> None:
    if normals.shape != gt_normals.shape or normals.shape[-1:] != (3,):
        raise ValueError(
            f"normal maps must share an (..., 3) shape, got "
            f"{normals.shape} vs {gt_normals.shape}"
        )


def angular_errors(
    normals: np.ndarray, gt_normals: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-pixel error min(acos(dot), acos(-dot)) in radians, sign agnostic.

    Both maps are promoted to float64 and normalized first. Pixels with
    |dot| >= 1 (rounding at exact alignment) score 0; so do pixels whose
    dot is not finite (zero or nan vectors). Returns (errors, finite_mask).
    """
    _check_shapes(normals, gt_normals)
    v1 = normalize_rows(np.asarray(normals, dtype=np.float64))
    v2 = normalize_rows(np.asarray(gt_normals, dtype=np.float64))
    dot = np.einsum("...k,...k->...", v1, v2)
    finite = np.isfinite(dot)
    adot = np.abs(np.where(finite, dot, 1.0))
    use = adot < 1.0
    err = np.zeros(dot.shape, np.float64)
    # min(acos(x), acos(-x)) == acos(|x|)
    err[use] = np.arccos(adot[use])
    return err, finite


def mean_angular_error(
    normals: np.ndarray,
    gt_normals: np.ndarray,
    mask: Optional[np.ndarray] = None,
) -> float:
    """Mean per-pixel angular error (radians) over all pixels or ``mask``."""
    err, _ = angular_errors(normals, gt_normals)
    if mask is not None:
        err = err[np.asarray(mask, bool)]
    if err.size == 0:
        LOG.warning("[N-EVAL] empty pixel selection, error is nan")
        return float("nan")
    return float(err.mean())


def normal_error_stats(
    normals: np.ndarray,
    gt_normals: np.ndarray,
    mask: Optional[np.ndarray] = None,
) -> NormalErrorStats:
    err, finite = angular_errors(normals, gt_normals)
    if mask is not None:
        m = np.asarray(mask, bool)
        err, finite = err[m], finite[m]
    else:
        err, finite = err.ravel(), finite.ravel()
    non_finite = int((~finite).sum())
    if non_finite:
        LOG.warning(f"[N-EVAL] {non_finite} pixels with non-finite normals")
    if err.size == 0:
        nan = float("nan")
        return NormalErrorStats(nan, nan, nan, nan, 0, non_finite)
    return NormalErrorStats(
        mean=float(err.mean()),
        median=float(np.median(err)),
        p95=float(np.percentile(err, 95)),
        max=float(err.max()),
        count=int(err.size),
        non_finite=non_finite,
    )
