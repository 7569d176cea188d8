"""
dehaze_errors.py - Exceptions raised by the dehazing pipeline.

InvalidDimensions and InvalidParameter are raised before any filtering starts.
DeviceFailure is raised only by the accelerated (torch) path; callers may rerun
the image on the reference path.
"""


class DehazeError(Exception):
    """Base class for every dehazing failure."""


class InvalidDimensions(DehazeError, ValueError):
    """Image is empty, not H x W x 3, or too small for the configured windows."""


class InvalidParameter(DehazeError, ValueError):
    """A parameter or the input dtype/range is outside its domain."""


class DeviceFailure(DehazeError, RuntimeError):
    """Device allocation or kernel launch failed on the accelerated path."""
