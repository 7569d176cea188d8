"""
dehaze_cpu.py - Reference backend: numpy arrays filtered with OpenCV.

Sequential, synchronous; OpenCV may vectorize inside each primitive.
"""

import cv2
import numpy as np

from dehaze_ops import ImageOps


class NumpyOps(ImageOps):
    name = "cpu"

    def from_host(self, array):
        return np.array(array, dtype=np.float32, copy=True, order="C")

    def to_host(self, buffer):
        return np.array(buffer, dtype=np.float32, copy=True)

    def size(self, buffer):
        return buffer.shape[0], buffer.shape[1]

    def crop(self, buffer, top, bottom, left, right):
        return buffer[top:bottom, left:right].copy()

    def split(self, buffer):
        return list(cv2.split(buffer))

    def merge(self, channels):
        return cv2.merge(list(channels))

    def divide(self, numerator, denominator):
        with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
            return np.divide(numerator, denominator, dtype=np.float32)

    def exp(self, buffer):
        with np.errstate(over='ignore', invalid='ignore'):
            return np.exp(buffer, dtype=np.float32)

    def minimum(self, buffer, other):
        return np.minimum(buffer, other).astype(np.float32, copy=False)

    def maximum(self, buffer, other):
        return np.maximum(buffer, other).astype(np.float32, copy=False)

    def patch_nans(self, buffer, value):
        mask = np.isnan(buffer)
        count = int(np.count_nonzero(mask))
        if count == 0:
            return buffer, 0
        return np.where(mask, np.float32(value), buffer).astype(np.float32), count

    def mean(self, buffer):
        return float(np.mean(buffer, dtype=np.float64))

    def quantize(self, buffer):
        return np.clip(np.rint(buffer * np.float32(255.0)), 0, 255).astype(np.float32)

    def rank_descending(self, buffer):
        # negating keeps the sort stable for equal values
        return np.argsort(-buffer.ravel(), kind='stable')

    def mean_at(self, image, indices):
        pixels = image.reshape(-1, image.shape[2])[indices]
        return tuple(float(v) for v in pixels.astype(np.float64).mean(axis=0))

    def box_filter(self, buffer, radius):
        size = 2 * radius + 1
        return cv2.boxFilter(buffer, -1, (size, size), normalize=True,
                             borderType=cv2.BORDER_REFLECT_101)

    def erode(self, buffer, radius):
        if radius == 0:
            return buffer.copy()
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (2 * radius + 1, 2 * radius + 1))
        return cv2.erode(buffer, kernel, borderType=cv2.BORDER_REPLICATE)
