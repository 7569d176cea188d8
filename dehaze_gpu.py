"""
dehaze_gpu.py - Accelerated backend: torch tensors on a CUDA device.

Each primitive is one or a few kernel launches issued in data-dependency order.
Reading a result back (.item(), .tolist(), .cpu()) blocks until the device has
finished, so there is no explicit synchronization. Falls back to the torch CPU
device when CUDA is not available, which keeps the path testable anywhere.
"""

import logging
from contextlib import contextmanager

import numpy as np
import torch
import torch.nn.functional as F

from dehaze_errors import DehazeError, DeviceFailure
from dehaze_ops import ImageOps

logger = logging.getLogger(__name__)


def default_device():
    return torch.device('cuda' if torch.cuda.is_available() else 'cpu')


class TorchOps(ImageOps):
    name = "gpu"

    def __init__(self, device=None):
        self.device = torch.device(device) if device is not None else default_device()
        logger.debug("TorchOps on %s", self.device)

    @contextmanager
    def session(self):
        """Maps torch runtime errors to DeviceFailure and releases cached device memory."""
        try:
            yield self
        except DehazeError:
            raise
        except RuntimeError as e:
            # torch.cuda.OutOfMemoryError is a RuntimeError too
            raise DeviceFailure(f"{self.device}: {e}") from e
        finally:
            if self.device.type == 'cuda':
                torch.cuda.empty_cache()

    # ---- host transfer ----

    def from_host(self, array):
        return torch.tensor(np.asarray(array, dtype=np.float32), dtype=torch.float32,
                            device=self.device)

    def to_host(self, buffer):
        return np.array(buffer.detach().cpu().numpy(), dtype=np.float32, copy=True)

    # ---- geometry & channels ----

    def size(self, buffer):
        return int(buffer.shape[0]), int(buffer.shape[1])

    def crop(self, buffer, top, bottom, left, right):
        return buffer[top:bottom, left:right].clone()

    def split(self, buffer):
        return list(buffer.unbind(dim=2))

    def merge(self, channels):
        return torch.stack(list(channels), dim=2)

    # ---- element-wise ----

    def divide(self, numerator, denominator):
        return numerator / denominator

    def exp(self, buffer):
        return torch.exp(buffer)

    def minimum(self, buffer, other):
        if torch.is_tensor(other):
            return torch.minimum(buffer, other)
        return torch.clamp(buffer, max=float(other))

    def maximum(self, buffer, other):
        if torch.is_tensor(other):
            return torch.maximum(buffer, other)
        return torch.clamp(buffer, min=float(other))

    def patch_nans(self, buffer, value):
        mask = torch.isnan(buffer)
        count = int(mask.sum().item())
        if count == 0:
            return buffer, 0
        return buffer.masked_fill(mask, float(value)), count

    # ---- reductions ----

    def mean(self, buffer):
        return float(buffer.double().mean().item())

    def quantize(self, buffer):
        # torch.round rounds half to even, like np.rint
        return torch.round(buffer * 255.0).clamp(0.0, 255.0)

    def rank_descending(self, buffer):
        return torch.sort(buffer.flatten(), descending=True, stable=True).indices

    def mean_at(self, image, indices):
        pixels = image.reshape(-1, image.shape[2])[indices]
        return tuple(float(v) for v in pixels.double().mean(dim=0).tolist())

    # ---- filters ----

    @staticmethod
    def _to_planes(buffer):
        # (H, W) -> (1, 1, H, W); (H, W, C) -> (C, 1, H, W)
        if buffer.dim() == 2:
            return buffer[None, None]
        return buffer.permute(2, 0, 1).unsqueeze(1)

    @staticmethod
    def _from_planes(planes, like):
        if like.dim() == 2:
            return planes[0, 0]
        return planes.squeeze(1).permute(1, 2, 0).contiguous()

    def box_filter(self, buffer, radius):
        size = 2 * radius + 1
        planes = F.pad(self._to_planes(buffer), (radius, radius, radius, radius), mode='reflect')
        return self._from_planes(F.avg_pool2d(planes, size, stride=1), buffer)

    def erode(self, buffer, radius):
        if radius == 0:
            return buffer.clone()
        size = 2 * radius + 1
        planes = F.pad(self._to_planes(buffer), (radius, radius, radius, radius), mode='replicate')
        return self._from_planes(-F.max_pool2d(-planes, size, stride=1), buffer)
