# kernels.py
"""
JIT'd kernels for the finite-volume system A·H = b.

The operator is stored matrix-free on the (nr, ntheta, nz) grid:

    (A·H)_P = diag_P * H_P - Σ_nb G_f * w_nb * H_nb

where G_f is the conductance of the face between P and nb (stored on the
cell on the lower-index side of the face) and w = ½·dT/dH of the neighbour.
The angular direction is periodic; the radial and axial directions are not.

Kernels run without fastmath so that results do not depend on the thread count.
"""
from __future__ import annotations

import numpy as np
import numpy.typing as npt
import numba as nb


@nb.njit(cache=True, inline="always")
def neighbour_sum(
    H: npt.NDArray[np.float64],
    w: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
    i: int,
    j: int,
    k: int,
) -> float:
    """Σ_nb G_f * w_nb * H_nb for cell (i, j, k)."""
    nr, nt, nz = H.shape
    s = 0.0
    if i > 0:
        s += g_r[i - 1, j, k] * w[i - 1, j, k] * H[i - 1, j, k]
    if i < nr - 1:
        s += g_r[i, j, k] * w[i + 1, j, k] * H[i + 1, j, k]
    if nt > 1:
        jm = j - 1 if j > 0 else nt - 1
        jp = j + 1 if j < nt - 1 else 0
        s += g_t[i, jm, k] * w[i, jm, k] * H[i, jm, k]
        s += g_t[i, j, k] * w[i, jp, k] * H[i, jp, k]
    if k > 0:
        s += g_z[i, j, k - 1] * w[i, j, k - 1] * H[i, j, k - 1]
    if k < nz - 1:
        s += g_z[i, j, k] * w[i, j, k + 1] * H[i, j, k + 1]
    return s


@nb.njit(cache=True, parallel=True)
def sor_sweep_colour(
    H: npt.NDArray[np.float64],
    b: npt.NDArray[np.float64],
    diag: npt.NDArray[np.float64],
    w: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
    cells: npt.NDArray[np.int64],
    omega: float,
) -> None:
    """
    Over-relax all cells of one colour in parallel (in place).

    No two cells of a colour share a face, so every update only reads values
    of other colours and the result is independent of the scheduling.
    """
    _, nt, nz = H.shape
    plane = nt * nz
    for n in nb.prange(cells.size):
        c = cells[n]
        i = c // plane
        rem = c - i * plane
        j = rem // nz
        k = rem - j * nz
        gs = (b[i, j, k] + neighbour_sum(H, w, g_r, g_t, g_z, i, j, k)) / diag[i, j, k]
        H[i, j, k] += omega * (gs - H[i, j, k])


@nb.njit(cache=True)
def sor_sweep_lexicographic(
    H: npt.NDArray[np.float64],
    b: npt.NDArray[np.float64],
    diag: npt.NDArray[np.float64],
    w: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
    omega: float,
) -> None:
    """One serial SOR sweep in (i, j, k) order (in place)."""
    nr, nt, nz = H.shape
    for i in range(nr):
        for j in range(nt):
            for k in range(nz):
                gs = (b[i, j, k] + neighbour_sum(H, w, g_r, g_t, g_z, i, j, k)) / diag[i, j, k]
                H[i, j, k] += omega * (gs - H[i, j, k])


@nb.njit(cache=True, parallel=True)
def residual_field(
    H: npt.NDArray[np.float64],
    b: npt.NDArray[np.float64],
    diag: npt.NDArray[np.float64],
    w: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
    out: npt.NDArray[np.float64],
) -> None:
    """Per-cell |b - A·H| written into ``out``."""
    nr, nt, nz = H.shape
    for i in nb.prange(nr):
        for j in range(nt):
            for k in range(nz):
                ah = diag[i, j, k] * H[i, j, k] - neighbour_sum(H, w, g_r, g_t, g_z, i, j, k)
                out[i, j, k] = abs(b[i, j, k] - ah)


@nb.njit(cache=True, parallel=True)
def apply_operator(
    H: npt.NDArray[np.float64],
    diag: npt.NDArray[np.float64],
    w: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """Matrix-free product A·H."""
    nr, nt, nz = H.shape
    out = np.empty_like(H)
    for i in nb.prange(nr):
        for j in range(nt):
            for k in range(nz):
                out[i, j, k] = diag[i, j, k] * H[i, j, k] - neighbour_sum(H, w, g_r, g_t, g_z, i, j, k)
    return out
