from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Optional

import numpy as np
import scipy as sp
import scipy.sparse.linalg

from plasmafurnace.config import (
    DEFAULT_DIVERGENCE_THRESHOLD, DEFAULT_MAX_ITERATIONS, DEFAULT_RELAXATION_FACTOR, DEFAULT_TOLERANCE
)
from plasmafurnace.controller.fvm.solvers.kernels import (
    apply_operator, residual_field, sor_sweep_colour, sor_sweep_lexicographic
)
from plasmafurnace.errors import NumericalInstability, ValidationError

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh

logger = logging.getLogger(__name__)


class SweepOrdering(StrEnum):
    RED_BLACK = "red_black"
    LEXICOGRAPHIC = "lexicographic"


class LinearSolverKind(StrEnum):
    SOR = "sor"
    DIRECT = "direct"


@dataclass
class LinearSystem:
    """
    Matrix-free system A·H = b on the cell grid.

    (A·H)_P = diag_P*H_P - Σ_nb G_f*weights_nb*H_nb, all arrays of shape (nr, ntheta, nz).
    """
    diag: npt.NDArray[np.float64]
    weights: npt.NDArray[np.float64]
    g_r: npt.NDArray[np.float64]
    g_t: npt.NDArray[np.float64]
    g_z: npt.NDArray[np.float64]
    rhs: npt.NDArray[np.float64]

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.diag.shape

    def matvec(self, H: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        return apply_operator(H, self.diag, self.weights, self.g_r, self.g_t, self.g_z)

    def residual_norm(self, H: npt.NDArray[np.float64], out: Optional[npt.NDArray[np.float64]] = None) -> float:
        """|b - A·H|_inf, reduced from a per-cell field so it does not depend on the thread count."""
        if out is None:
            out = np.empty_like(H)
        residual_field(H, self.rhs, self.diag, self.weights, self.g_r, self.g_t, self.g_z, out)
        return float(out.max())

    def to_sparse(self) -> sp.sparse.csr_matrix:
        """Assemble the operator as a CSR matrix in C-order cell numbering."""
        nr, nt, nz = self.shape
        index = np.arange(nr * nt * nz, dtype=np.int64).reshape(nr, nt, nz)
        w = self.weights

        rows = [index.ravel()]
        cols = [index.ravel()]
        data = [self.diag.ravel()]

        def couple(face_g, lower, upper, w_lower, w_upper) -> None:
            # Face between `lower` and `upper`: row lower gets -G*w_upper, row upper gets -G*w_lower
            rows.extend((lower.ravel(), upper.ravel()))
            cols.extend((upper.ravel(), lower.ravel()))
            data.extend(((-face_g * w_upper).ravel(), (-face_g * w_lower).ravel()))

        if nr > 1:
            couple(self.g_r[:-1], index[:-1], index[1:], w[:-1], w[1:])
        if nt > 1:
            upper = np.roll(index, -1, axis=1)
            couple(self.g_t, index, upper, w, np.roll(w, -1, axis=1))
        if nz > 1:
            couple(self.g_z[:, :, :-1], index[:, :, :-1], index[:, :, 1:], w[:, :, :-1], w[:, :, 1:])

        n = nr * nt * nz
        return sp.sparse.coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
            shape=(n, n)
        ).tocsr()


@dataclass(frozen=True)
class SORResult:
    """Outcome of one linear solve."""
    iterations: int
    residual: float  # relative, |b - A·H|_inf / |b|_inf
    converged: bool


class SORSolver:
    """
    Successive over-relaxation for the finite-volume system.

    With red-black ordering each colour class is swept in parallel (numba
    prange) and the classes alternate in a fixed order. Lexicographic ordering
    runs the classic serial Gauss-Seidel order.
    """

    def __init__(
        self,
        mesh: CylindricalMesh,
        relaxation_factor: float = DEFAULT_RELAXATION_FACTOR,
        tolerance: float = DEFAULT_TOLERANCE,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        divergence_threshold: float = DEFAULT_DIVERGENCE_THRESHOLD,
        ordering: SweepOrdering = SweepOrdering.RED_BLACK,
    ) -> None:
        """
        Initialize the solver.

        Args:
            mesh: The mesh whose cell grid the systems live on.
            relaxation_factor: Over-relaxation factor omega in (1, 2).
            tolerance: Relative residual at which the iteration stops.
            max_iterations: Sweep limit; reaching it is not fatal.
            divergence_threshold: Relative residual above which the solve is
                considered divergent.
            ordering: Sweep ordering.
        """
        if not 1.0 < relaxation_factor < 2.0:
            raise ValidationError("relaxation_factor", relaxation_factor, "(1, 2)")
        if not tolerance > 0.0:
            raise ValidationError("tolerance", tolerance, "> 0")
        if max_iterations < 1:
            raise ValidationError("max_iterations", max_iterations, ">= 1")
        if not divergence_threshold > tolerance:
            raise ValidationError("divergence_threshold", divergence_threshold, f"> tolerance ({tolerance})")

        self.mesh = mesh
        self.omega = float(relaxation_factor)
        self.tolerance = float(tolerance)
        self.max_iterations = int(max_iterations)
        self.divergence_threshold = float(divergence_threshold)
        self.ordering = SweepOrdering(ordering)

        self._colours = mesh.colour_groups() if self.ordering == SweepOrdering.RED_BLACK else []
        self._work = np.empty(mesh.shape, dtype=np.float64)

    def _sweep(self, system: LinearSystem, H: npt.NDArray[np.float64]) -> None:
        args = (system.rhs, system.diag, system.weights, system.g_r, system.g_t, system.g_z)
        if self.ordering == SweepOrdering.RED_BLACK:
            for cells in self._colours:
                sor_sweep_colour(H, *args, cells, self.omega)
        else:
            sor_sweep_lexicographic(H, *args, self.omega)

    def solve(
        self,
        system: LinearSystem,
        H: npt.NDArray[np.float64],
        step: int = 0,
        time: float = 0.0,
    ) -> SORResult:
        """
        Iterate on H (in place) until the relative residual drops below the tolerance.

        The residual is checked before the first sweep, so an exact initial guess
        costs no iterations.

        Args:
            system: The assembled system.
            H: Initial guess, overwritten with the solution. C-contiguous float64.
            step: Index of the last committed step (error context).
            time: Time of the last committed step (error context).

        Returns:
            SORResult with the iteration count and final relative residual.

        Raises:
            NumericalInstability: If the residual becomes non-finite or exceeds
                the divergence threshold.
        """
        b_norm = float(np.max(np.abs(system.rhs)))
        scale = b_norm if b_norm > 0.0 else 1.0

        iteration = 0
        residual = system.residual_norm(H, self._work) / scale
        while True:
            if not math.isfinite(residual) or residual > self.divergence_threshold:
                raise NumericalInstability(
                    step=step,
                    time=time,
                    value=residual,
                    reason=f"SOR diverged after {iteration} iterations (relative residual)",
                )
            if residual <= self.tolerance:
                return SORResult(iterations=iteration, residual=residual, converged=True)
            if iteration >= self.max_iterations:
                return SORResult(iterations=iteration, residual=residual, converged=False)

            self._sweep(system, H)
            iteration += 1
            residual = system.residual_norm(H, self._work) / scale


def solve_direct(system: LinearSystem) -> tuple[npt.NDArray[np.float64], float]:
    """
    Solve the system with a sparse direct factorization.

    Returns:
        Solution of shape (nr, ntheta, nz) and its relative residual.
    """
    A = system.to_sparse()
    H = sp.sparse.linalg.spsolve(A.tocsc(), system.rhs.ravel()).reshape(system.shape)
    H = np.ascontiguousarray(H)
    b_norm = float(np.max(np.abs(system.rhs)))
    residual = system.residual_norm(H) / (b_norm if b_norm > 0.0 else 1.0)
    return H, residual
