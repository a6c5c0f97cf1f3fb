"""Greedy ground-truth -> detected plane matching with orientation checks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from utils.error_tracker import AccuracyError
from utils.logger import Logger

from .config import PlaneMatchCfg
from .plane import Plane

LOG = Logger.get_logger("p_eval")


@dataclass(frozen=True)
class PlaneCoefficients:
    """Plane ``normal . x = offset``; ``normal`` is unit length."""

    normal: np.ndarray
    offset: float

    @classmethod
    def from_plane(cls, plane: Plane) -> "PlaneCoefficients":
        return cls(normal=plane.normal.copy(), offset=plane.offset)

    @classmethod
    def from_model(cls, model: Sequence[float]) -> "PlaneCoefficients":
        """From (a, b, c, d) with a*x + b*y + c*z + d = 0."""
        a, b, c, d = (float(x) for x in model)
        n = np.array([a, b, c], float)
        nn = float(np.linalg.norm(n))
        return cls(normal=n / nn, offset=-d / nn)


@dataclass(frozen=True)
class PlaneMatch:
    gt_index: int
    detected_index: Optional[int]
    n_gt: int
    n_overlap: int
    overshoot_ratio: float  # (n_overlap - n_gt) / n_gt
    coverage: float  # n_overlap / n_gt
    normal_dot: float  # |n_gt . n_detected|


def match_planes(
    gt_planes: Sequence[Plane],
    gt_labels: np.ndarray,
    labels: np.ndarray,
    coefficients: Sequence[PlaneCoefficients],
) -> List[PlaneMatch]:
    """
    For each ground-truth plane pick the detected plane with the largest
    pixel overlap. One-sided: unmatched detections are not penalized.
    """
    gt_labels = np.asarray(gt_labels)
    labels = np.asarray(labels)
    if gt_labels.shape != labels.shape:
        raise ValueError(
            f"label maps differ in shape: {gt_labels.shape} vs {labels.shape}"
        )

    matches: List[PlaneMatch] = []
    for j, gt_plane in enumerate(gt_planes):
        gt_mask = gt_labels == j
        n_gt = int(gt_mask.sum())
        if n_gt == 0:
            LOG.warning(f"[MATCH] gt plane#{j} has no pixels, skipped")
            continue
        n_max, i_max = 0, None
        for i in range(len(coefficients)):
            n = int(np.count_nonzero(gt_mask & (labels == i)))
            if n > n_max:
                n_max, i_max = n, i
        if i_max is None:
            dot = 0.0
        else:
            dot = float(abs(gt_plane.normal @ coefficients[i_max].normal))
        m = PlaneMatch(
            gt_index=j,
            detected_index=i_max,
            n_gt=n_gt,
            n_overlap=n_max,
            overshoot_ratio=(n_max - n_gt) / n_gt,
            coverage=n_max / n_gt,
            normal_dot=dot,
        )
        LOG.debug(
            f"[MATCH] gt#{j} -> det#{i_max} overlap={n_max}/{n_gt} |dot|={dot:.4f}"
        )
        matches.append(m)
    return matches


def check_plane_matches(
    matches: Sequence[PlaneMatch], cfg: PlaneMatchCfg = PlaneMatchCfg()
) -> None:
    """Raise AccuracyError listing every match outside the thresholds."""
    failures: List[str] = []
    for m in matches:
        if m.detected_index is None:
            failures.append(f"gt#{m.gt_index}: no overlapping detected plane")
            continue
        if m.overshoot_ratio > cfg.coverage_tol:
            failures.append(
                f"gt#{m.gt_index}: overlap ratio {m.overshoot_ratio:.4f} > {cfg.coverage_tol}"
            )
        if cfg.min_coverage is not None and m.coverage < cfg.min_coverage:
            failures.append(
                f"gt#{m.gt_index}: coverage {m.coverage:.4f} < {cfg.min_coverage}"
            )
        if m.normal_dot < cfg.min_normal_dot:
            failures.append(
                f"gt#{m.gt_index}: |n.n_gt| {m.normal_dot:.4f} < {cfg.min_normal_dot}"
            )
    if failures:
        raise AccuracyError(
            f"{len(failures)} plane match check(s) failed: " + "; ".join(failures),
            failures,
        )


def evaluate_planes(
    gt_planes: Sequence[Plane],
    gt_labels: np.ndarray,
    labels: np.ndarray,
    coefficients: Sequence[PlaneCoefficients],
    cfg: PlaneMatchCfg = PlaneMatchCfg(),
) -> List[PlaneMatch]:
    matches = match_planes(gt_planes, gt_labels, labels, coefficients)
    check_plane_matches(matches, cfg)
    return matches
