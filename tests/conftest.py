"""Test configuration.

Ensure the project root is on sys.path so tests can import `depthbench.*`
and `utils.*` when executed from different working directories, and keep
log output on the console only.
"""

import os
import sys

import numpy as np
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from utils.logger import Logger  # noqa: E402

Logger.configure(level="DEBUG", file_sink=False)

from depthbench.intrinsics import CameraIntrinsics  # noqa: E402
from depthbench.scene import SceneSynthesizer  # noqa: E402


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def vga():
    """640x480, f=525, principal point (320.5, 240.5)."""
    return CameraIntrinsics.from_focal(640, 480, 525.0)


@pytest.fixture
def small_cam():
    return CameraIntrinsics.from_focal(80, 60, 66.0)


@pytest.fixture
def small_synth(small_cam):
    return SceneSynthesizer(small_cam)
