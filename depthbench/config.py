from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from utils import config as ucfg
from utils.config import CameraDefaults, Precision

# ============================== METHODS ======================================


class NormalsMethod(str, Enum):
    """Normal estimation methods shipped with the benchmark."""

    FALS = "fals"  # fast approximate least squares over camera rays
    LINEMOD = "linemod"  # inverse-depth gradients, depth channel only
    CROSS = "cross"  # cross product of point-map central differences
    PCA = "pca"  # Open3D KNN covariance


# Mean angular error budgets (radians) per method -> precision -> n_planes.
NORMALS_ERROR_BUDGET: Dict[NormalsMethod, Dict[str, Dict[int, float]]] = {
    NormalsMethod.FALS: {
        "float32": {1: 0.006, 3: 0.03},
        "float64": {1: 0.00008, 3: 0.02},
    },
    NormalsMethod.LINEMOD: {
        "float32": {1: 0.04, 3: 0.07},
        "float64": {1: 0.05, 3: 0.08},
    },
    NormalsMethod.CROSS: {
        "float32": {1: 0.002, 3: 0.02},
        "float64": {1: 0.0005, 3: 0.02},
    },
    NormalsMethod.PCA: {
        "float32": {1: 0.01, 3: 0.04},
        "float64": {1: 0.01, 3: 0.04},
    },
}


def error_budget(method: NormalsMethod, precision: Precision, n_planes: int) -> float:
    """Budget for (method, precision); plane counts above 1 use the widest entry."""
    table = NORMALS_ERROR_BUDGET[NormalsMethod(method)][precision]
    if n_planes in table:
        return table[n_planes]
    return max(table.values())


# ============================== CONFIG TYPES =================================


@dataclass(frozen=True)
class SceneCfg:
    """Random planar scene parameters."""

    normal_z: float = ucfg.PLANE_NORMAL_Z
    normal_xy_range: Tuple[float, float] = ucfg.PLANE_NORMAL_XY_RANGE
    depth_range: Tuple[float, float] = ucfg.PLANE_DEPTH_RANGE
    precision: Precision = "float32"
    parallel_eps: float = ucfg.PARALLEL_EPS
    fallback_depth: float = ucfg.FALLBACK_DEPTH


@dataclass(frozen=True)
class NormalsCfg:
    """Selection of one normal estimator."""

    method: NormalsMethod = NormalsMethod.FALS
    window_size: int = ucfg.WINDOW_SIZE
    precision: Precision = "float32"


@dataclass(frozen=True)
class NormalsBenchCfg:
    """Normal estimation benchmark: methods x precisions x plane counts."""

    methods: Tuple[NormalsMethod, ...] = (
        NormalsMethod.FALS,
        NormalsMethod.LINEMOD,
        NormalsMethod.CROSS,
    )
    precisions: Tuple[Precision, ...] = ucfg.PRECISIONS
    plane_counts: Tuple[int, ...] = (1, 3)
    n_trials: int = 5
    window_size: int = ucfg.WINDOW_SIZE
    exclude_degenerate: bool = True


@dataclass(frozen=True)
class PlaneMatchCfg:
    """Plane-to-ground-truth matching thresholds."""

    coverage_tol: float = ucfg.COVERAGE_TOL
    min_normal_dot: float = ucfg.MIN_NORMAL_DOT
    min_coverage: Optional[float] = None


@dataclass(frozen=True)
class PlaneBenchCfg:
    """Plane segmentation benchmark schedule: (n_planes, n_trials) pairs."""

    enabled: bool = True
    schedule: Tuple[Tuple[int, int], ...] = ((1, 1), (3, 10))
    precision: Precision = "float32"
    use_normals: bool = True
    normals_method: NormalsMethod = NormalsMethod.FALS
    match: PlaneMatchCfg = PlaneMatchCfg()
    # RANSAC segmenter knobs
    distance_threshold: float = 0.005
    ransac_n: int = 3
    iters: int = 1000
    max_planes: int = 6
    min_plane_frac: float = 0.02
    normal_thr_deg: float = 20.0


@dataclass(frozen=True)
class BenchCfg:
    """Top-level knobs for a benchmark run."""

    camera: CameraDefaults = ucfg.CAMERA_DEFAULT
    intrinsics_json: Optional[str] = None
    scene: SceneCfg = SceneCfg()
    normals: NormalsBenchCfg = NormalsBenchCfg()
    planes: PlaneBenchCfg = PlaneBenchCfg()
    seed: Optional[int] = None
    report_path: Optional[str] = None
    log_level: str = "INFO"
