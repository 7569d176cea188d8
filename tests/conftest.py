"""
-------
conftest.py
-------
Shared pytest fixtures for the dehazing tests.
"""

import numpy as np
import pytest

from add_haze import add_haze, depth_transmission
from dehaze_params import DehazeParams
from dehaze_pipeline import get_backend

AIRLIGHT = (0.8, 0.85, 0.9)


# -----------------------------------------------------------------------------
# Backends
# -----------------------------------------------------------------------------
@pytest.fixture(params=["cpu", "gpu"])
def ops(request):
    """Every test using `ops` runs on the numpy/OpenCV and the torch backend."""
    return get_backend(request.param, device="cpu")


@pytest.fixture
def cpu_ops():
    return get_backend("cpu")


@pytest.fixture
def gpu_ops():
    return get_backend("gpu", device="cpu")


# -----------------------------------------------------------------------------
# Synthetic images (BGR)
# -----------------------------------------------------------------------------
@pytest.fixture
def gray_image():
    """256x256 uniform image, R = G = B = 0.5."""
    return np.full((256, 256, 3), 0.5, dtype=np.float32)


@pytest.fixture
def bright_corner_image():
    """128x128 dark (0.1) image with a 16x16 white top-left corner."""
    img = np.full((128, 128, 3), 0.1, dtype=np.float32)
    img[:16, :16] = 1.0
    return img


def make_clear_scene(h=96, w=128):
    """Smooth colored scene with a bright sky band, uint8."""
    y, x = np.mgrid[0:h, 0:w].astype(np.float64)
    b = 0.15 + 0.5 * (x / w)
    g = 0.2 + 0.4 * (0.5 + 0.5 * np.sin(x / 9.0) * np.cos(y / 7.0))
    r = 0.1 + 0.6 * (y / h)
    clear = np.stack([b, g, r], axis=2)
    clear[: h // 4] = (0.85, 0.9, 0.95)
    return np.round(clear * 255.0).astype(np.uint8)


@pytest.fixture
def clear_scene():
    return make_clear_scene()


@pytest.fixture
def hazy_scene(clear_scene):
    """clear_scene seen through depth-dependent haze with a known airlight."""
    t = depth_transmission(clear_scene.shape[:2], beta=1.2)
    return add_haze(clear_scene, t, AIRLIGHT)


@pytest.fixture
def scene_params():
    return DehazeParams(beta=0.5, patch_dark_channel=2, decomposition_size=8,
                        min_transmission=0.1, percen=0.01, refine_size=6, eps=1e-3)
