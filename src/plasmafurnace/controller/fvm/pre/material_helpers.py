# material_helpers.py
from __future__ import annotations

import numpy as np
import numpy.typing as npt
import numba as nb

# ---- JIT'd steel material kernels (scalar + batched) ----

@nb.njit(cache=True, fastmath=True)
def steel_k(T_C: float) -> float:
    """Carbon steel thermal conductivity k(T) in W/(m·K) (EN 1993-1-2)."""
    if T_C <= 800.0:
        return 54.0 - 0.0333 * T_C  # 3.33*(T/100) = 0.0333*T
    return 27.3

@nb.njit(cache=True, fastmath=True)
def steel_cp(T_C: float) -> float:
    """Carbon steel specific heat capacity c_p(T) in J/(kg·K) (EN 1993-1-2)."""
    if T_C <= 600.0:
        return 425.0 + 0.773 * T_C - 0.00169 * (T_C * T_C) + 2.22e-6 * (T_C * T_C * T_C)
    elif T_C <= 735.0:
        return 666.0 - (13002.0 / (T_C - 738.0))
    elif T_C <= 900.0:
        return 545.0 + (17820.0 / (T_C - 731.0))
    else:
        return 650.0

@nb.njit(cache=True, fastmath=True)
def steel_props_batch(
    T_K: npt.NDArray[np.float64],
    rho0: float
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Batched carbon steel properties.

    Args:
        T_K:  Temperatures in Kelvin, shape (n,).
        rho0: Density in kg/m³ (assumed constant).

    Returns:
        k:    Thermal conductivity per T (W/(m·K)), shape (n,).
        rhoc: Volumetric heat capacity ρc_p(T) (J/(m³·K)), shape (n,).
    """
    n = T_K.size
    k = np.empty(n, np.float64)
    rhoc = np.empty(n, np.float64)
    for i in range(n):
        T_C = T_K[i] - 273.15
        k[i] = steel_k(T_C)
        rhoc[i] = rho0 * steel_cp(T_C)
    return k, rhoc


@nb.njit(cache=True, fastmath=True)
def tabulated_props_batch(
    T_K: npt.NDArray[np.float64],
    rho0: float,
    xp: npt.NDArray[np.float64],
    k_fp: npt.NDArray[np.float64],
    cp_fp: npt.NDArray[np.float64]
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Batched properties for a tabulated material using linear interpolation.

    Values outside the table are clamped to the end points.

    Returns:
        k:    Thermal conductivity per T (W/(m·K)), shape (n,).
        rhoc: Volumetric heat capacity ρc_p(T) (J/(m³·K)), shape (n,).
    """
    k = np.interp(T_K, xp, k_fp)
    cp = np.interp(T_K, xp, cp_fp)
    rhoc = rho0 * cp
    return k, rhoc


# ---- Enthalpy table lookup ----

@nb.njit(cache=True)
def enthalpy_slope_batch(
    H: npt.NDArray[np.float64],
    H_table: npt.NDArray[np.float64],
    T_table: npt.NDArray[np.float64]
) -> npt.NDArray[np.float64]:
    """
    Slope dT/dH of the piecewise-linear T(H) table.

    The segment is found by binary search; a value on a knot takes the segment
    to its right. Plateau segments have zero slope. Values outside the table
    use the end segments.

    Args:
        H:       Volumetric enthalpies in J/m³, shape (n,).
        H_table: Strictly increasing enthalpy knots, shape (m,).
        T_table: Temperatures at the knots in K, shape (m,).

    Returns:
        beta: dT/dH in K·m³/J, shape (n,).
    """
    n = H.size
    m = H_table.size
    beta = np.empty(n, np.float64)
    for idx in range(n):
        h = H[idx]
        lo = 0
        hi = m - 1
        # Largest lo with H_table[lo] <= h, clamped to [0, m - 2]
        if h <= H_table[0]:
            lo = 0
        elif h >= H_table[m - 1]:
            lo = m - 2
        else:
            while hi - lo > 1:
                mid = (lo + hi) // 2
                if H_table[mid] <= h:
                    lo = mid
                else:
                    hi = mid
        beta[idx] = (T_table[lo + 1] - T_table[lo]) / (H_table[lo + 1] - H_table[lo])
    return beta
