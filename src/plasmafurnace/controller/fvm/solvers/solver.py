from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Callable, Optional

import numba as nb
import numpy as np

from plasmafurnace.config import DEFAULT_CFL_FACTOR, REFERENCE_TEMPERATURE
from plasmafurnace.controller.fvm.analysis.metrics import TemperatureStats
from plasmafurnace.controller.fvm.solvers.sor import (
    LinearSolverKind, LinearSystem, SORSolver, SORResult, solve_direct
)
from plasmafurnace.errors import ConvergenceWarning, NumericalInstability, SolverStateError, ValidationError
from plasmafurnace.model.parameters import SolverSettings
from plasmafurnace.model.results import ProgressEvent

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fvm.analysis.model import FurnaceModel
    from plasmafurnace.controller.fvm.analysis.state import SimulationState
    from plasmafurnace.controller.fvm.pre.material import Material
    from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh

logger = logging.getLogger(__name__)


class SolverStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SolverStatus.COMPLETED, SolverStatus.FAILED, SolverStatus.CANCELLED)


@dataclass(frozen=True)
class StepReport:
    """
    Outcome of one committed time step.

    Attributes:
        step_index: Index of the step (1 for the first step).
        time: Simulation time after the step in seconds.
        dt: Time step actually taken in seconds.
        sor_iterations: SOR sweeps summed over all Picard iterations.
        picard_iterations: Number of coefficient updates.
        residual: Final relative residual of the linear solve.
        energy_input: Energy deposited by the torches during the step in J.
        energy_loss: Energy lost through the boundary during the step in J.
        warning: Set when SOR stopped at its iteration limit.
        theta: Largest implicit weight used; 0.5 is plain Crank-Nicolson.
        substeps: Number of sub-steps the step was split into after a rejection.
    """
    step_index: int
    time: float
    dt: float
    sor_iterations: int
    picard_iterations: int
    residual: float
    energy_input: float
    energy_loss: float
    warning: Optional[ConvergenceWarning] = None
    theta: float = 0.5
    substeps: int = 1


@dataclass
class _Interval:
    """Outcome of a step, or of the half steps it was split into."""
    enthalpy: npt.NDArray[np.float64]
    temperature: npt.NDArray[np.float64]
    sor_iterations: int
    picard_iterations: int
    result: SORResult
    energy_input: float
    energy_loss: float
    theta: float
    substeps: int = 1

    def then(self, later: _Interval) -> _Interval:
        """Chain a following interval onto this one."""
        result = later.result
        if not self.result.converged and (later.result.converged or self.result.residual > later.result.residual):
            result = self.result
        return _Interval(
            enthalpy=later.enthalpy,
            temperature=later.temperature,
            sor_iterations=self.sor_iterations + later.sor_iterations,
            picard_iterations=self.picard_iterations + later.picard_iterations,
            result=result,
            energy_input=self.energy_input + later.energy_input,
            energy_loss=self.energy_loss + later.energy_loss,
            theta=max(self.theta, later.theta),
            substeps=self.substeps + later.substeps,
        )


# ---- Finite-volume assembly ----

def harmonic_mean(a: npt.NDArray[np.float64], b: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    """2ab/(a+b), zero where both values vanish."""
    s = a + b
    safe = np.where(s > 0.0, s, 1.0)
    return np.where(s > 0.0, 2.0 * a * b / safe, 0.0)


def face_conductances(
    mesh: CylindricalMesh,
    k: npt.NDArray[np.float64],
) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """
    Face conductances G = (area/distance) * harmonic mean of the cell conductivities.

    Each array holds, per cell, the face towards its (+) neighbour in that
    direction; the last radial and axial layers are zero.

    Returns:
        (g_r, g_t, g_z) in W/K, each of shape (nr, ntheta, nz).
    """
    g_r = np.zeros(mesh.shape, dtype=np.float64)
    g_z = np.zeros(mesh.shape, dtype=np.float64)
    if mesh.nr > 1:
        g_r[:-1] = mesh.radial_factors[:-1] * harmonic_mean(k[:-1], k[1:])
    if mesh.ntheta > 1:
        g_t = np.ascontiguousarray(mesh.angular_factors * harmonic_mean(k, np.roll(k, -1, axis=1)))
    else:
        g_t = np.zeros(mesh.shape, dtype=np.float64)
    if mesh.nz > 1:
        g_z[:, :, :-1] = mesh.axial_factors[:, :, :-1] * harmonic_mean(k[:, :, :-1], k[:, :, 1:])
    return g_r, g_t, g_z


def conductance_sum(
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """Σ G over all faces of each cell."""
    total = g_r + g_t + g_z
    total[1:] += g_r[:-1]
    total += np.roll(g_t, 1, axis=1)
    total[:, :, 1:] += g_z[:, :, :-1]
    return total


def diffusion_operator(
    x: npt.NDArray[np.float64],
    g_r: npt.NDArray[np.float64],
    g_t: npt.NDArray[np.float64],
    g_z: npt.NDArray[np.float64],
) -> npt.NDArray[np.float64]:
    """
    Net conductive inflow Σ_nb G_f*(x_nb - x_P) in W for a temperature-like field x.

    Every face flux enters one cell and leaves the other, so the field sums to zero.
    """
    out = np.zeros_like(x)
    flux_r = g_r[:-1] * (x[1:] - x[:-1])
    out[:-1] += flux_r
    out[1:] -= flux_r
    flux_t = g_t * (np.roll(x, -1, axis=1) - x)
    out += flux_t
    out -= np.roll(flux_t, 1, axis=1)
    flux_z = g_z[:, :, :-1] * (x[:, :, 1:] - x[:, :, :-1])
    out[:, :, :-1] += flux_z
    out[:, :, 1:] -= flux_z
    return out


def explicit_stable_time_step(
    mesh: CylindricalMesh,
    material: Material,
    cfl_factor: float = DEFAULT_CFL_FACTOR,
) -> float:
    """
    Forward-Euler stability limit C*min(dr², dz²)/(2*alpha).

    The diffusivity is taken at the 500 K reference temperature; the result is
    clamped to [1e-8, 10] s.
    """
    if not 0.0 < cfl_factor <= 1.0:
        raise ValidationError("cfl_factor", cfl_factor, "(0, 1]")
    alpha = material.thermal_diffusivity(REFERENCE_TEMPERATURE)
    dt = cfl_factor * min(mesh.dr ** 2, mesh.dz ** 2) / (2.0 * alpha)
    return float(min(max(dt, 1e-8), 10.0))


def implicit_weight(
    volumes: npt.NDArray[np.float64],
    total_conductance: npt.NDArray[np.float64],
    max_slope: float,
    dt: float,
) -> float:
    """
    Implicit weight theta of a time step.

    The explicit part of the step leaves a cell with the coefficient
    V/dt - (1 - theta)*beta*ΣG on its own old value. Crank-Nicolson keeps it
    non-negative while r = dt*beta_max*ΣG/V <= 2; longer steps get the
    smallest theta that still does, 1 - 1/r. With non-negative coefficients
    the step is monotone: it cannot push a cell past its neighbours, however
    large dt is.

    Args:
        volumes: Cell volumes in m³.
        total_conductance: Σ G over the faces of each cell in W/K.
        max_slope: Upper bound of dT/dH in K·m³/J.
        dt: Time step in seconds.

    Returns:
        theta in [0.5, 1).
    """
    ratio = float(np.max(dt * max_slope * total_conductance / volumes))
    if ratio <= 2.0:
        return 0.5
    return 1.0 - 1.0 / ratio


class Solver:
    """
    Theta-weighted time integration of the enthalpy equation.

    Per cell P the step solves

        V/dt*(H - H^n) = (1 - theta)*L(T^n) + theta*L(T) + Q*V - q_loss*A

    with L(x)_P = Σ G_f*(x_nb - x_P). theta is ½ (Crank-Nicolson) unless the
    step is long enough for the explicit part to overshoot; then it is raised
    just enough to keep the step monotone (see ``implicit_weight``). Both parts
    telescope over the faces, so energy is conserved for every theta.

    Sources and boundary losses are evaluated at T^n. The implicit part uses
    lagged coefficients: conductivities at the current iterate T* and
    T ≈ T* + beta*(H - H*) with beta = dT/dH. Picard iterations refresh the
    coefficients until T stops changing.
    """

    def __init__(
        self,
        model: FurnaceModel,
        total_time: float,
        settings: Optional[SolverSettings] = None,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> None:
        """
        Initialize the solver with a model.

        Args:
            model: The furnace model to be solved.
            total_time: End time of the run in seconds.
            settings: Linear and nonlinear solver settings.
            progress_callback: Called with a ProgressEvent after every committed step.
        """
        if not (math.isfinite(total_time) and total_time > 0.0):
            raise ValidationError("total_time", total_time, "> 0 s")

        self.model = model
        self.total_time = float(total_time)
        self.settings = settings or SolverSettings()
        self.settings.validate()
        self.progress_callback = progress_callback

        self.sor = SORSolver(
            mesh=model.mesh,
            relaxation_factor=self.settings.relaxation_factor,
            tolerance=self.settings.tolerance,
            max_iterations=self.settings.max_iterations,
            divergence_threshold=self.settings.divergence_threshold,
            ordering=self.settings.ordering,
        )

        self._status = SolverStatus.IDLE
        self._cancel_event = threading.Event()
        self._last_error: Optional[NumericalInstability] = None

    # ---- Control ----

    @property
    def status(self) -> SolverStatus:
        return self._status

    @property
    def last_error(self) -> Optional[NumericalInstability]:
        return self._last_error

    def cancel(self) -> None:
        """Request cancellation; honoured at the next step boundary."""
        self._cancel_event.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_event.is_set()

    # ---- Time stepping ----

    def advance(self, state: SimulationState, dt: float) -> Optional[StepReport]:
        """
        Advance the state by one time step.

        The step is clipped so the run ends exactly at ``total_time``. The state
        is only modified when the whole step succeeds.

        Args:
            state: The state to advance (mutated in place).
            dt: Requested time step in seconds.

        Returns:
            StepReport of the committed step, or None when a pending cancellation
            was honoured instead.

        Raises:
            SolverStateError: If the solver is already in a terminal state.
            ValidationError: On a non-positive dt or a state that does not match the mesh.
            NumericalInstability: If the step blows up; the solver becomes FAILED.
        """
        if self._status.is_terminal:
            raise SolverStateError(f"Cannot advance: solver is {self._status.value}.")

        if self._cancel_event.is_set():
            self._status = SolverStatus.CANCELLED
            logger.info(f"Simulation cancelled at t = {state.current_time:.3f} s (step {state.step_index}).")
            return None

        if not (math.isfinite(dt) and dt > 0.0):
            raise ValidationError("dt", dt, "> 0 s")
        if state.shape != self.model.mesh.shape:
            raise ValidationError("state", f"shape {state.shape}", f"shape {self.model.mesh.shape}")

        if self._status == SolverStatus.IDLE:
            logger.info(
                f"Starting run: {self.model.number_of_cells} cells, "
                f"t_end = {self.total_time} s, linear solver = {self.settings.linear_solver.value}"
            )
        self._status = SolverStatus.RUNNING

        if self.settings.num_threads is not None:
            nb.set_num_threads(self.settings.num_threads)

        dt = min(dt, self.total_time - state.current_time)
        try:
            report = self._step(state, dt)
        except NumericalInstability as e:
            self._status = SolverStatus.FAILED
            self._last_error = e
            logger.error(str(e))
            raise

        if state.current_time >= self.total_time:
            self._status = SolverStatus.COMPLETED
            logger.info(f"Simulation completed: t = {state.current_time:.3f} s after {state.step_index} steps.")

        if report.warning is not None:
            logger.warning(str(report.warning))

        if self.progress_callback is not None:
            self.progress_callback(self._progress_event(state, report))

        return report

    def assemble(
        self,
        H_n: npt.NDArray[np.float64],
        T_n: npt.NDArray[np.float64],
        T_star: npt.NDArray[np.float64],
        H_star: npt.NDArray[np.float64],
        source: npt.NDArray[np.float64],
        dt: float,
        theta: float = 0.5,
    ) -> LinearSystem:
        """
        Build the linear system for one Picard iteration.

        Args:
            H_n: Enthalpy at step n in J/m³.
            T_n: Temperature at step n in K.
            T_star: Temperature of the current iterate in K.
            H_star: Enthalpy of the current iterate in J/m³.
            source: Net source Q*V - loss in W per cell.
            dt: Time step in seconds.
            theta: Implicit weight in [½, 1]; ½ is Crank-Nicolson.
        """
        mesh = self.model.mesh
        material = self.model.material
        V_dt = mesh.volumes / dt

        k_n, _ = material.props_batch(T_n.ravel())
        explicit = diffusion_operator(T_n, *face_conductances(mesh, k_n.reshape(mesh.shape)))

        k_star, _ = material.props_batch(T_star.ravel())
        g_r, g_t, g_z = face_conductances(mesh, k_star.reshape(mesh.shape))
        beta = np.asarray(material.temperature_slope(H_star), dtype=np.float64)
        gamma = T_star - beta * H_star

        diag = V_dt + theta * beta * conductance_sum(g_r, g_t, g_z)
        rhs = V_dt * H_n + (1.0 - theta) * explicit + theta * diffusion_operator(gamma, g_r, g_t, g_z) + source

        return LinearSystem(
            diag=np.ascontiguousarray(diag),
            weights=np.ascontiguousarray(theta * beta),
            g_r=g_r,
            g_t=g_t,
            g_z=g_z,
            rhs=np.ascontiguousarray(rhs),
        )

    def _step(self, state: SimulationState, dt: float) -> StepReport:
        material = self.model.material
        interval = self._integrate(
            state, np.array(state.temperature), np.array(state.enthalpy), state.current_time, dt, depth=0
        )
        H = interval.enthalpy
        T_new = interval.temperature

        # 4. Phase bookkeeping
        phase = np.asarray(material.phase_fraction(H), dtype=np.float64)
        vapor = np.asarray(material.vapor_fraction(H), dtype=np.float64)

        new_time = state.current_time + dt
        if self.total_time - new_time <= 1e-9 * self.total_time:
            new_time = self.total_time
        state._commit(
            enthalpy=np.ascontiguousarray(H),
            temperature=T_new,
            phase_fraction=phase,
            vapor_fraction=vapor,
            time=new_time,
        )

        result = interval.result
        warning = None
        if not result.converged:
            warning = ConvergenceWarning(
                step=state.step_index,
                time=new_time,
                iterations=result.iterations,
                residual=result.residual,
                tolerance=self.sor.tolerance,
            )

        logger.debug(
            f"Step {state.step_index}: t = {new_time:.3f} s, dt = {dt:.4g} s, theta = {interval.theta:.3f}, "
            f"SOR iterations = {interval.sor_iterations}, Picard = {interval.picard_iterations}, "
            f"residual = {result.residual:.3e}, substeps = {interval.substeps}"
        )

        return StepReport(
            step_index=state.step_index,
            time=new_time,
            dt=dt,
            sor_iterations=interval.sor_iterations,
            picard_iterations=interval.picard_iterations,
            residual=result.residual,
            energy_input=interval.energy_input,
            energy_loss=interval.energy_loss,
            warning=warning,
            theta=interval.theta,
            substeps=interval.substeps,
        )

    def _integrate(
        self,
        state: SimulationState,
        T_n: npt.NDArray[np.float64],
        H_n: npt.NDArray[np.float64],
        time: float,
        dt: float,
        depth: int,
    ) -> _Interval:
        """
        Advance (T_n, H_n) from ``time`` by ``dt`` without touching the state.

        A result that fails the sanity check is retried as two half steps, at
        most ``max_step_halvings`` levels deep; past that the failure is raised.
        """
        mesh = self.model.mesh
        material = self.model.material
        sources = self.model.sources
        settings = self.settings

        # 1. Explicit sources at T^n
        Q = sources.heat_generation(mesh, time)
        loss = sources.boundary_heat_loss(T_n, mesh)
        source = Q * mesh.volumes - loss

        k_n, _ = material.props_batch(T_n.ravel())
        theta = implicit_weight(
            mesh.volumes,
            conductance_sum(*face_conductances(mesh, k_n.reshape(mesh.shape))),
            material.max_temperature_slope,
            dt,
        )

        # 2-3. Picard loop over the lagged coefficients
        H = H_n.copy()
        T_star, H_star = T_n, H_n
        sor_iterations = 0
        result = SORResult(iterations=0, residual=0.0, converged=True)
        picard = 0
        for picard in range(1, settings.max_picard_iterations + 1):
            system = self.assemble(H_n, T_n, T_star, H_star, source, dt, theta=theta)

            if settings.linear_solver == LinearSolverKind.DIRECT:
                H, residual = solve_direct(system)
                if not math.isfinite(residual):
                    raise NumericalInstability(
                        step=state.step_index, time=state.current_time, value=residual,
                        reason="direct solve produced a non-finite residual",
                    )
                result = SORResult(iterations=0, residual=residual, converged=True)
            else:
                result = self.sor.solve(system, H, step=state.step_index, time=time)
                sor_iterations += result.iterations

            T_new = np.asarray(material.temperature(H), dtype=np.float64)
            change = float(np.max(np.abs(T_new - T_star)))
            T_star, H_star = T_new, H.copy()
            if change <= settings.picard_tolerance:
                break
        else:
            logger.debug(
                f"Picard iterations stopped at the limit ({settings.max_picard_iterations}) "
                f"with max |dT| = {change:.3e} K at t = {time:.3f} s"
            )

        # Sanity check before anything is committed
        error = self._find_invalid(state, H, T_star)
        if error is not None:
            if depth >= settings.max_step_halvings:
                raise error
            half = 0.5 * dt
            logger.warning(
                f"Rejected step of {dt:.4g} s at t = {time:.3f} s ({error.reason} at cell {error.cell}), "
                f"retrying as two half steps of {half:.4g} s"
            )
            first = self._integrate(state, T_n, H_n, time, half, depth + 1)
            second = self._integrate(state, first.temperature, first.enthalpy, time + half, half, depth + 1)
            return first.then(second)

        return _Interval(
            enthalpy=H,
            temperature=T_star,
            sor_iterations=sor_iterations,
            picard_iterations=picard,
            result=result,
            energy_input=float(np.sum(Q * mesh.volumes) * dt),
            energy_loss=float(np.sum(loss) * dt),
            theta=theta,
        )

    def _find_invalid(
        self,
        state: SimulationState,
        H: npt.NDArray[np.float64],
        T: npt.NDArray[np.float64],
    ) -> Optional[NumericalInstability]:
        """Flag non-finite fields and temperatures outside [0, 2*T_vap]."""
        material = self.model.material
        bad = ~np.isfinite(H) | ~np.isfinite(T) | (H < 0.0) | (H > material.enthalpy_ceiling)
        bad |= (T < 0.0) | (T > material.temperature_ceiling)
        if not np.any(bad):
            return None
        flat = int(np.argmax(bad.ravel()))
        cell = tuple(int(c) for c in np.unravel_index(flat, H.shape))
        value = float(T.ravel()[flat])
        if not np.isfinite(H.ravel()[flat]):
            reason = "non-finite enthalpy"
            value = float(H.ravel()[flat])
        elif H.ravel()[flat] < 0.0:
            reason = "temperature below 0 K"
        else:
            reason = f"temperature outside [0, {material.temperature_ceiling:.1f}] K"
        return NumericalInstability(
            step=state.step_index,
            time=state.current_time,
            value=value,
            reason=reason,
            cell=cell,
        )

    def _progress_event(self, state: SimulationState, report: StepReport) -> ProgressEvent:
        return ProgressEvent(
            current_time=state.current_time,
            total_time=self.total_time,
            step_index=state.step_index,
            temperature_stats=TemperatureStats.from_field(state.temperature),
            sor_iterations=report.sor_iterations,
            residual=report.residual,
            status=self._status.value,
            warning=report.warning,
        )
