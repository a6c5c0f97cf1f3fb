# utils/io.py
import json
import math
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Tuple

import numpy as np

from utils.config import CameraDefaults
from utils.logger import Logger

logger = Logger.get_logger("io")


# ============================================================================ #
# I/O: intrinsics in, reports out (no scene persistence)
# ============================================================================ #
def load_intrinsics_from_json(
    path: Path, fallback: CameraDefaults
) -> Tuple[int, int, float, float, float, float]:
    """
    Read pinhole intrinsics from JSON.
    Accepts a flat {"width","height","fx","fy","cx","cy"} object or the
    RealSense-style {"intrinsics": {"color": {..., "ppx", "ppy"}}} layout.
    Returns (w, h, fx, fy, cx, cy); falls back to defaults if missing/bad.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"[INTR JSON] not found: {path}; using defaults")
        return fallback.as_tuple()
    try:
        y = json.loads(path.read_text())
        block = y.get("intrinsics", {}).get("color", y)

        w = int(block.get("width", fallback.width))
        h = int(block.get("height", fallback.height))
        fx = float(block.get("fx", fallback.fx))
        fy = float(block.get("fy", fallback.fy))
        cx = float(block.get("cx", block.get("ppx", fallback.cx)))
        cy = float(block.get("cy", block.get("ppy", fallback.cy)))

        logger.info(
            f"[INTR JSON] {path.name}: w={w} h={h} fx={fx:.3f} fy={fy:.3f} "
            f"cx={cx:.3f} cy={cy:.3f}"
        )
        return (w, h, fx, fy, cx, cy)
    except (ValueError, TypeError, AttributeError) as e:
        logger.warning(f"[INTR JSON] parse failed: {e}; using defaults")
        return fallback.as_tuple()


def _jsonable(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        return _jsonable(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.ndarray):
        return _jsonable(obj.tolist())
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, float) and not math.isfinite(obj):
        # nan / inf are not JSON; failed trials leave nan means
        return None
    return obj


def save_report_json(report: Any, path: Path) -> Path:
    """Write a (dataclass) report as strict JSON (non-finite floats -> null)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(_jsonable(report), indent=2, allow_nan=False))
    logger.info(f"[REPORT] wrote {path}")
    return path
