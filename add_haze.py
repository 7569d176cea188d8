"""
add_haze.py - Synthesize hazy images with the Atmospheric Scattering Model.

    I(x) = J(x) * t(x) + A * (1 - t(x))

Where:
    I(x) = observed hazy image
    J(x) = clear scene radiance
    t(x) = transmission map, exp(-beta * d(x)) for scene depth d
    A    = global atmospheric light (BGR)

Used to build validation inputs with a known airlight and transmission, e.g.
for comparing the cpu and gpu dehazing paths.
"""

import numpy as np


def depth_transmission(shape, beta=1.0, t_min=0.05):
    """
    Transmission for a simulated outdoor depth map: the top rows are far
    (depth 1.0), the bottom rows near (depth 0.1), with a mild left/right tilt.

    Args:
        shape: (H, W)
        beta: scattering coefficient; higher = denser haze
        t_min: lower clamp for t
    Returns:
        float64 array (H, W) in [t_min, 1]
    """
    h, w = shape
    depth = np.linspace(1.0, 0.1, h).reshape(h, 1) * np.linspace(0.8, 1.2, w).reshape(1, w)
    return np.clip(np.exp(-beta * depth), t_min, 1.0)


def add_haze(clear_image, transmission, atmospheric_light=(0.8, 0.85, 0.9)):
    """
    Apply the scattering model to a clear image.

    Args:
        clear_image: (H, W, 3) BGR, uint8 or float in [0, 1]
        transmission: scalar or (H, W) map
        atmospheric_light: (B, G, R) in [0, 1]
    Returns:
        hazy image, same dtype convention as the input
    """
    is_byte = clear_image.dtype == np.uint8
    J = clear_image.astype(np.float64) / 255.0 if is_byte else clear_image.astype(np.float64)

    t = np.asarray(transmission, dtype=np.float64)
    if t.ndim == 2:
        t = t[:, :, np.newaxis]
    A = np.asarray(atmospheric_light, dtype=np.float64).reshape(1, 1, 3)

    I = np.clip(J * t + A * (1.0 - t), 0.0, 1.0)
    if is_byte:
        return np.round(I * 255.0).astype(np.uint8)
    return I.astype(clear_image.dtype)
