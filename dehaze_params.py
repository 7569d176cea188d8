"""
dehaze_params.py - Parameter bundle for one dehazing run.

Every run receives an explicit, fully populated DehazeParams; the pipeline has
no defaults of its own. Values are checked once, at construction.
"""

import math
from dataclasses import dataclass

from dehaze_errors import InvalidParameter


def _require_int(name, value, minimum):
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidParameter(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise InvalidParameter(f"{name} must be >= {minimum}, got {value}")


def _require_float(name, value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value):
        raise InvalidParameter(f"{name} must be finite, got {value}")


@dataclass(frozen=True)
class DehazeParams:
    """
    Args:
        beta: haze coefficient used in the transmission estimate (> 0)
        patch_dark_channel: erosion radius for the dark/color channels (>= 0)
        decomposition_size: quadtree floor; recursion stops below 2x this size (> 0)
        min_transmission: floor for transmission and NaN substitution, in (0, 1)
        percen: fraction of brightest dark-channel pixels averaged into A, in (0, 1]
        refine_size: guided-filter window radius (> 0)
        eps: guided-filter regularizer (> 0)
    """
    beta: float
    patch_dark_channel: int
    decomposition_size: int
    min_transmission: float
    percen: float
    refine_size: int
    eps: float

    def __post_init__(self):
        _require_float("beta", self.beta)
        if self.beta <= 0:
            raise InvalidParameter(f"beta must be > 0, got {self.beta}")

        _require_int("patch_dark_channel", self.patch_dark_channel, 0)
        _require_int("decomposition_size", self.decomposition_size, 1)
        _require_int("refine_size", self.refine_size, 1)

        _require_float("min_transmission", self.min_transmission)
        if not 0.0 < self.min_transmission < 1.0:
            raise InvalidParameter(
                f"min_transmission must be in (0, 1), got {self.min_transmission}")

        _require_float("percen", self.percen)
        if not 0.0 < self.percen <= 1.0:
            raise InvalidParameter(f"percen must be in (0, 1], got {self.percen}")

        _require_float("eps", self.eps)
        if self.eps <= 0:
            raise InvalidParameter(f"eps must be > 0, got {self.eps}")
