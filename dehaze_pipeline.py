"""
dehaze_pipeline.py - Single-image haze removal with the Dark Channel Prior.

Atmospheric light is sampled from the brightest quadtree region, and the
transmission map is refined with a 3-channel guided filter before the haze
model is inverted:
    I(x) = J(x) * t(x) + A * (1 - t(x))
    J(x) = (I(x) - A) / max(t(x), t_min) + A

The stages are written once against dehaze_ops.ImageOps and run unchanged on
either backend ('cpu': numpy/OpenCV, 'gpu': torch).

Usage:
    from dehaze_params import DehazeParams
    from dehaze_pipeline import remove_haze

    params = DehazeParams(beta=0.5, patch_dark_channel=2, decomposition_size=32,
                          min_transmission=0.1, percen=0.1, refine_size=8, eps=4e-4)
    dehazed = remove_haze(img_bgr, params, backend='gpu')   # float32, [0, 1]
"""

import logging
import time
from enum import Enum
from typing import NamedTuple

import numpy as np

from dehaze_covariance import Symmetric3
from dehaze_errors import InvalidDimensions, InvalidParameter
from dehaze_ops import clip, luma, patch_nans
from dehaze_params import DehazeParams

logger = logging.getLogger(__name__)


class Stage(Enum):
    LOADED = "loaded"
    DECOMPOSED = "decomposed"
    DARK_CHANNEL = "dark_channel"
    ATMOSPHERIC_LIGHT = "atmospheric_light"
    COLOR_CHANNEL = "color_channel"
    TRANSMISSION = "transmission"
    REFINED_TRANSMISSION = "refined_transmission"
    RECOVERED = "recovered"
    DONE = "done"


class AtmosphericLight(NamedTuple):
    """Airlight color in BGR order, each channel in [0, 1]."""
    b: float
    g: float
    r: float


class DehazeResult(NamedTuple):
    image: np.ndarray
    atmospheric_light: AtmosphericLight


# ==================== Input checks ====================

def to_float_image(image):
    """Validate an H x W x 3 image and return it as float32 in [0, 1]."""
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[2] != 3:
        raise InvalidDimensions(f"expected an H x W x 3 image, got shape {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidDimensions(f"image is empty: {image.shape}")

    if image.dtype == np.uint8:
        return image.astype(np.float32) / np.float32(255.0)
    if np.issubdtype(image.dtype, np.floating):
        if not np.all(np.isfinite(image)) or image.min() < 0.0 or image.max() > 1.0:
            raise InvalidParameter("floating point images must hold finite values in [0, 1]")
        return image.astype(np.float32)
    raise InvalidParameter(f"unsupported image dtype {image.dtype}; expected uint8 or float")


def check_dimensions(height, width, params):
    if height // 2 <= params.decomposition_size or width // 2 <= params.decomposition_size:
        raise InvalidDimensions(
            f"{width}x{height} image is too small for decomposition_size="
            f"{params.decomposition_size}; both sides must exceed {2 * params.decomposition_size + 1}")
    if params.refine_size >= min(height, width):
        raise InvalidDimensions(
            f"refine_size={params.refine_size} must be smaller than both sides of a "
            f"{width}x{height} image: reflect padding of the box filter needs the "
            f"window radius to fit inside the image (same limit on every backend)")


# ==================== Stages ====================

def quad_decompose(ops, image, window_size):
    """
    Narrow the image to its brightest quadrant until either half-side is no
    longer larger than window_size.

    Quadrants are visited top-left, top-right, bottom-right, bottom-left; the
    right/bottom ones run to the last column/row, so odd sides lose nothing.
    A quadrant only wins with a strictly higher mean luma, so ties go to the
    earlier one.
    """
    region = image
    height, width = ops.size(region)
    while width // 2 > window_size and height // 2 > window_size:
        hw, hh = width // 2, height // 2
        quadrants = (
            ops.crop(region, 0, hh, 0, hw),
            ops.crop(region, 0, hh, hw, width),
            ops.crop(region, hh, height, hw, width),
            ops.crop(region, hh, height, 0, hw),
        )
        means = [ops.mean(luma(ops, quadrant)) for quadrant in quadrants]
        best = 0
        for i in range(1, len(quadrants)):
            if means[i] > means[best]:
                best = i
        region = quadrants[best]
        height, width = ops.size(region)
    return region


def dark_channel(ops, image, patch):
    """Minimum across channels, then erosion with a (2*patch+1) square."""
    b, g, r = ops.split(image)
    return ops.erode(ops.minimum(ops.minimum(b, g), r), patch)


def color_channel(ops, image, patch):
    """Each channel eroded independently with a (2*patch+1) square."""
    return ops.erode(image, patch)


def estimate_atmospheric_light(ops, region, dark, percen):
    """
    Average the region's color at the top `percen` fraction of dark-channel
    pixels, ranked on the 8-bit scale. Equal ranks keep pixel order.
    """
    height, width = ops.size(dark)
    count = max(1, int(round(height * width * percen)))
    order = ops.rank_descending(ops.quantize(dark))
    return AtmosphericLight(*ops.mean_at(region, order[:count]))


def estimate_transmission(ops, colors, light, beta, floor):
    """t_c = clip(1 - exp(-beta * A_c / colors_c)); 0/0 is floored."""
    channels = [
        ops.exp(ops.divide(-beta * a, c))
        for c, a in zip(ops.split(colors), light)
    ]
    transmission = clip(ops, ops.merge(channels) * -1.0 + 1.0)
    return patch_nans(ops, transmission, floor, Stage.TRANSMISSION.value)


def guided_filter(ops, guide, target, radius, eps):
    """
    Guided filter with a 3-channel guide (He et al.), applied to each channel
    of `target`.

    Per pixel, the target is fitted as a . I + b over the (2r+1) window, with
    a = (Sigma + eps*U)^-1 cov(I, p). The 3x3 inverse is analytic
    (Symmetric3); a and b are then averaged over the window.
    """
    def box(x):
        return ops.box_filter(x, radius)

    guide_ch = ops.split(guide)
    mean_i = [box(c) for c in guide_ch]

    def covariance(i, j):
        return box(guide_ch[i] * guide_ch[j]) - mean_i[i] * mean_i[j]

    sigma = Symmetric3(
        a00=covariance(0, 0), a01=covariance(0, 1), a02=covariance(0, 2),
        a11=covariance(1, 1), a12=covariance(1, 2),
        a22=covariance(2, 2),
    ).add_diagonal(eps)
    inv_sigma = sigma.inverse(ops.divide)

    filtered = []
    for p in ops.split(target):
        mean_p = box(p)
        cov_ip = [box(c * p) - m * mean_p for c, m in zip(guide_ch, mean_i)]
        a = inv_sigma.dot(*cov_ip)
        b = mean_p - a[0] * mean_i[0] - a[1] * mean_i[1] - a[2] * mean_i[2]
        mean_a = [box(ak) for ak in a]
        q = mean_a[0] * guide_ch[0] + mean_a[1] * guide_ch[1] + mean_a[2] * guide_ch[2] + box(b)
        filtered.append(q)
    return ops.merge(filtered)


def refine_transmission(ops, guide, transmission, radius, eps, floor):
    refined = clip(ops, guided_filter(ops, guide, transmission, radius, eps))
    return patch_nans(ops, refined, floor, Stage.REFINED_TRANSMISSION.value)


def recover_image(ops, image, transmission, light, floor):
    """J_c = (I_c - A_c) / max(t_c, floor) + A_c, clipped to [0, 1]."""
    transmission = patch_nans(ops, transmission, floor, Stage.RECOVERED.value)
    transmission = ops.maximum(transmission, floor)
    channels = [
        ops.divide(c - a, t) + a
        for c, t, a in zip(ops.split(image), ops.split(transmission), light)
    ]
    return clip(ops, ops.merge(channels))


# ==================== Orchestration ====================

def get_backend(name, device=None):
    """'cpu' -> NumpyOps, 'gpu' -> TorchOps (CUDA when available)."""
    if name == 'cpu':
        from dehaze_cpu import NumpyOps
        return NumpyOps()
    if name == 'gpu':
        from dehaze_gpu import TorchOps
        return TorchOps(device)
    raise InvalidParameter(f"unknown backend {name!r}; use 'cpu' or 'gpu'")


class DehazePipeline:
    """
    Runs every stage for one image on one backend.

    hook: optional callable(stage_name, ndarray) receiving a host copy of each
    intermediate (decomposed region, dark channel, color channel, raw and
    refined transmission, recovered image). It never affects the result.
    Copies are taken as each stage finishes and handed to the hook after the
    backend session closes; hook exceptions propagate unchanged.
    """

    def __init__(self, ops, hook=None):
        self.ops = ops
        self.hook = hook
        self._snapshots = []

    def _advance(self, stage, buffer=None):
        logger.debug("[%s] %s", self.ops.name, stage.value)
        if self.hook is not None and buffer is not None:
            self._snapshots.append((stage.value, self.ops.to_host(buffer)))

    def _deliver_snapshots(self):
        snapshots, self._snapshots = self._snapshots, []
        for stage_name, image in snapshots:
            self.hook(stage_name, image)

    def run(self, image, params):
        if not isinstance(params, DehazeParams):
            raise InvalidParameter(f"params must be a DehazeParams, got {type(params).__name__}")
        host = to_float_image(image)
        height, width = host.shape[:2]
        check_dimensions(height, width, params)

        started = time.perf_counter()
        self._snapshots = []
        with self.ops.session() as ops:
            src = ops.from_host(host)
            self._advance(Stage.LOADED)

            region = quad_decompose(ops, src, params.decomposition_size)
            self._advance(Stage.DECOMPOSED, region)

            dark = dark_channel(ops, region, params.patch_dark_channel)
            self._advance(Stage.DARK_CHANNEL, dark)

            light = estimate_atmospheric_light(ops, region, dark, params.percen)
            self._advance(Stage.ATMOSPHERIC_LIGHT)

            colors = color_channel(ops, src, params.patch_dark_channel)
            self._advance(Stage.COLOR_CHANNEL, colors)

            transmission = estimate_transmission(ops, colors, light, params.beta,
                                                 params.min_transmission)
            self._advance(Stage.TRANSMISSION, transmission)

            refined = refine_transmission(ops, src, transmission, params.refine_size,
                                          params.eps, params.min_transmission)
            self._advance(Stage.REFINED_TRANSMISSION, refined)

            recovered = recover_image(ops, src, refined, light, params.min_transmission)
            self._advance(Stage.RECOVERED, recovered)

            result = ops.to_host(recovered)
        self._advance(Stage.DONE)
        self._deliver_snapshots()

        logger.info("[%s] %dx%d dehazed in %.3fs, A=(%.4f, %.4f, %.4f)",
                    self.ops.name, width, height, time.perf_counter() - started, *light)
        return DehazeResult(result, light)


def remove_haze(image, params, backend='cpu', hook=None):
    """Dehaze one image; returns H x W x 3 float32 in [0, 1]."""
    ops = get_backend(backend) if isinstance(backend, str) else backend
    return DehazePipeline(ops, hook=hook).run(image, params).image
