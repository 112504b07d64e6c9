from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt


ABSOLUTE_ZERO_CELSIUS = -273.15

def celsius_to_kelvin(celsius: float) -> float:
    """Convert Celsius to Kelvin."""
    return celsius - ABSOLUTE_ZERO_CELSIUS

def kelvin_to_celsius(kelvin: float) -> float:
    """Convert Kelvin to Celsius."""
    return kelvin + ABSOLUTE_ZERO_CELSIUS

def cylindrical_to_cartesian(
    r: float | npt.NDArray[np.float64],
    theta: float | npt.NDArray[np.float64],
    z: float | npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Convert cylindrical coordinates to Cartesian ones.

    Args:
        r: Radial coordinate(s) in meters.
        theta: Angular coordinate(s) in radians.
        z: Axial coordinate(s) in meters.

    Returns:
        Tuple (x, y, z) broadcast to a common shape.
    """
    r = np.asarray(r, dtype=np.float64)
    theta = np.asarray(theta, dtype=np.float64)
    z = np.asarray(z, dtype=np.float64)
    x = r * np.cos(theta)
    y = r * np.sin(theta)
    return np.broadcast_arrays(x, y, z)
