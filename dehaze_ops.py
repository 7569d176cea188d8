"""
dehaze_ops.py - Backend capability set used by the dehazing pipeline.

The pipeline is written once against ImageOps. Each backend implements the
primitives for its own buffer type:
    - dehaze_cpu.NumpyOps : numpy arrays, OpenCV filters (reference path)
    - dehaze_gpu.TorchOps : torch tensors on a CUDA/CPU device (accelerated path)

Buffers are H x W (single channel) or H x W x 3 (BGR) float32. Element-wise
+, -, * with scalars or same-shaped buffers use the native operators of the
buffer type; everything else goes through the methods below.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager

logger = logging.getLogger(__name__)

# BGR luma weights
LUMA_WEIGHTS = (0.114, 0.587, 0.299)


class ImageOps(ABC):
    name = "abstract"

    @contextmanager
    def session(self):
        """Scope for the buffers of one run."""
        yield self

    # ---- host transfer ----

    @abstractmethod
    def from_host(self, array):
        """Copy a float32 numpy array into a backend buffer."""

    @abstractmethod
    def to_host(self, buffer):
        """Copy a backend buffer into a new float32 numpy array."""

    # ---- geometry & channels ----

    @abstractmethod
    def size(self, buffer):
        """Return (height, width)."""

    @abstractmethod
    def crop(self, buffer, top, bottom, left, right):
        """Copy of rows [top, bottom) and cols [left, right)."""

    @abstractmethod
    def split(self, buffer):
        """List of single-channel buffers."""

    @abstractmethod
    def merge(self, channels):
        """Stack single-channel buffers into H x W x C."""

    # ---- element-wise ----

    @abstractmethod
    def divide(self, numerator, denominator):
        """Element-wise division; zero denominators give inf/NaN, never raise."""

    @abstractmethod
    def exp(self, buffer):
        pass

    @abstractmethod
    def minimum(self, buffer, other):
        """Element-wise minimum against a buffer or a constant."""

    @abstractmethod
    def maximum(self, buffer, other):
        """Element-wise maximum against a buffer or a constant."""

    @abstractmethod
    def patch_nans(self, buffer, value):
        """Replace NaN with value. Returns (buffer, replaced_count)."""

    # ---- reductions ----

    @abstractmethod
    def mean(self, buffer):
        """Mean of all elements as a python float."""

    @abstractmethod
    def quantize(self, buffer):
        """Scale [0, 1] to the 8-bit grid: round(x * 255) clamped to [0, 255]."""

    @abstractmethod
    def rank_descending(self, buffer):
        """Flat indices sorted by descending value; equal values keep index order."""

    @abstractmethod
    def mean_at(self, image, indices):
        """Per-channel mean of an H x W x 3 buffer at flat pixel indices."""

    # ---- filters ----

    @abstractmethod
    def box_filter(self, buffer, radius):
        """Mean over a (2r+1) square window, reflect-101 borders."""

    @abstractmethod
    def erode(self, buffer, radius):
        """Minimum over a (2r+1) square window per channel, replicated borders."""


def clip(ops, buffer):
    """
    Clamp to [0, 1] with two one-sided truncations:
        x = min(x, 1); x = -min(-x, 0)
    NaN passes through untouched and is left to patch_nans.
    """
    buffer = ops.minimum(buffer, 1.0)
    buffer = ops.minimum(buffer * -1.0, 0.0)
    return buffer * -1.0


def patch_nans(ops, buffer, floor, stage):
    buffer, count = ops.patch_nans(buffer, floor)
    if count:
        logger.warning("%s: %d NaN value(s) replaced by floor %.4f [%s]",
                       stage, count, floor, ops.name)
    return buffer


def luma(ops, image):
    b, g, r = ops.split(image)
    wb, wg, wr = LUMA_WEIGHTS
    return b * wb + g * wg + r * wr
