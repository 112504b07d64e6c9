"""
Simulation Control
==================
The entry points used by the orchestration layer to run a furnace simulation.

Why is this file needed?
------------------------
1. Ownership: The live SimulationState belongs to exactly one handle. Callers
   only ever receive copies (progress events, results), so nothing outside the
   engine can mutate the fields mid-run.
2. Bookkeeping: Stores frames at the output interval, tracks the energy
   balance and collects warnings so a finished run can be summarized.

Functions:
    start: Validate parameters and build a ready-to-run handle.
    advance_one_step, run_to_completion, run_in_background: Time stepping.
    cancel, get_progress, get_results: Control and read-out.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Callable, List, Optional

import numpy as np

from plasmafurnace.controller.fvm.analysis.metrics import EnergyMonitor
from plasmafurnace.controller.fvm.analysis.model import FurnaceModel
from plasmafurnace.controller.fvm.analysis.state import SimulationState
from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh
from plasmafurnace.controller.fvm.pre.sources import PlasmaSourceModel
from plasmafurnace.controller.fvm.solvers.solver import (
    Solver, SolverStatus, StepReport, explicit_stable_time_step
)
from plasmafurnace.controller.workers import SimulationWorker
from plasmafurnace.errors import NumericalInstability, SolverStateError
from plasmafurnace.model.materials import MaterialLibrary
from plasmafurnace.model.parameters import SimulationParameters
from plasmafurnace.model.results import FinalMetrics, ProgressEvent, SimulationResults

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def build_model(params: SimulationParameters, library: Optional[MaterialLibrary] = None) -> FurnaceModel:
    """
    Build mesh, material and sources from validated parameters.

    Raises:
        ValidationError: If the material is unknown or a parameter is invalid.
    """
    library = library or MaterialLibrary()
    material = library.resolve(params.material)
    mesh = CylindricalMesh(
        radius=params.geometry.radius,
        height=params.geometry.height,
        nr=params.mesh.nr,
        ntheta=params.mesh.ntheta,
        nz=params.mesh.nz,
    )
    boundary = params.boundary.to_config()
    sources = PlasmaSourceModel(
        torches=[t.to_torch() for t in params.torches],
        boundary=boundary,
        material=material,
    )
    logger.info(
        f"Model built: {mesh}, material '{material.name}', {len(sources.torches)} torch(es) "
        f"totalling {sources.total_power:.4g} W, "
        f"{'adiabatic' if boundary.is_adiabatic(material) else 'radiating/convecting'} boundary"
    )
    return FurnaceModel(mesh=mesh, material=material, sources=sources)


class SimulationHandle:
    """
    One simulation run: the model, its live state, the solver and the collected output.

    All stepping goes through ``_lock`` so a background worker and direct
    calls never interleave.
    """

    def __init__(self, params: SimulationParameters, model: FurnaceModel) -> None:
        self.params = params
        self.model = model
        self.state = SimulationState(model.mesh, model.material, params.initial_temperature)
        self.solver = Solver(
            model=model,
            total_time=params.time.total_time,
            settings=params.solver,
            progress_callback=self._on_progress,
        )
        self.monitor = EnergyMonitor(self.state.total_energy())
        self.listeners: List[ProgressCallback] = []
        self.worker: Optional[SimulationWorker] = None

        self.output_interval = params.time.effective_output_interval
        self._lock = threading.Lock()
        self._results = SimulationResults(mesh_info=model.mesh.info().to_dict(), status=SolverStatus.IDLE.value)
        self._next_output_time = 0.0
        self._total_sor_iterations = 0
        self._wall_time = 0.0
        self._last_event = ProgressEvent(
            current_time=0.0,
            total_time=self.solver.total_time,
            step_index=0,
            temperature_stats=self.state.temperature_stats(),
            status=SolverStatus.IDLE.value,
        )
        self._store_frame()

        dt_explicit = explicit_stable_time_step(model.mesh, model.material, params.solver.cfl_factor)
        logger.info(
            f"Time step {params.time.time_step} s is {params.time.time_step / dt_explicit:.1f}x "
            f"the explicit stability limit ({dt_explicit:.3e} s)."
        )

    @property
    def status(self) -> SolverStatus:
        return self.solver.status

    # ---- Stepping ----

    def advance_one_step(self) -> Optional[ProgressEvent]:
        """
        Advance by one time step.

        Returns:
            The progress event of the step, or None when a cancellation was honoured.

        Raises:
            SolverStateError: If the run already ended.
            NumericalInstability: If the step blew up; the run is marked failed.
        """
        with self._lock:
            return self._advance_locked()

    def run_to_completion(self) -> SimulationResults:
        """
        Step until the end time is reached or the run is cancelled.

        Raises:
            NumericalInstability: If a step blew up. Partial results stay
                available through ``results()``.
        """
        while True:
            with self._lock:
                if self.status.is_terminal:
                    break
                self._advance_locked()
        return self.results()

    def cancel(self) -> None:
        """
        Request cancellation.

        A running loop stops at its next step boundary. When nothing is
        stepping the cancellation is honoured right away.
        """
        self.solver.cancel()
        logger.info("Cancellation requested.")
        if self._lock.acquire(blocking=False):
            try:
                if not self.status.is_terminal:
                    self._advance_locked()
            finally:
                self._lock.release()

    def _advance_locked(self) -> Optional[ProgressEvent]:
        started = time.perf_counter()
        try:
            report = self.solver.advance(self.state, self.params.time.time_step)
        except NumericalInstability as e:
            self._wall_time += time.perf_counter() - started
            self._results.error = str(e)
            self._finalize()
            raise
        self._wall_time += time.perf_counter() - started

        if report is None:
            self._finalize()
            self._last_event = replace(self._last_event, status=self.status.value, warning=None)
            return None

        self._record(report)
        if self.status.is_terminal:
            self._finalize()
        return self._last_event

    def _record(self, report: StepReport) -> None:
        self._total_sor_iterations += report.sor_iterations
        self.monitor.update(self.state.total_energy(), report.energy_input, report.energy_loss)
        if report.warning is not None:
            self._results.warnings.append(report.warning)
        if self.state.current_time >= self._next_output_time - 1e-12:
            self._store_frame()

    def _store_frame(self) -> None:
        t = self.state.current_time
        self._results.time_steps.append(t)
        self._results.temperature_fields.append(np.array(self.state.temperature))
        self._results.phase_fraction_fields.append(np.array(self.state.phase_fraction))
        # Next frame on the output grid, skipping slots a large dt jumped over
        n = int(np.floor(t / self.output_interval + 1e-9)) + 1
        self._next_output_time = n * self.output_interval

    def _finalize(self) -> None:
        """Store the last frame and the summary once the run has ended."""
        if not self._results.time_steps or self._results.time_steps[-1] != self.state.current_time:
            self._store_frame()
        self._results.status = self.status.value
        self._results.final_metrics = FinalMetrics(
            final_time=self.state.current_time,
            steps=self.state.step_index,
            temperature_stats=self.state.temperature_stats(),
            molten_volume_fraction=self.state.molten_fraction(),
            total_energy=self.state.total_energy(),
            energy_input=self.monitor.energy_input,
            energy_loss=self.monitor.energy_loss,
            conservation_error=self.monitor.conservation_error,
            total_sor_iterations=self._total_sor_iterations,
            wall_time=self._wall_time,
        )
        logger.info(
            f"Run {self.status.value}: {self.state.step_index} steps, t = {self.state.current_time:.3f} s, "
            f"T_max = {self._results.final_metrics.temperature_stats.max:.1f} K, "
            f"molten = {self._results.final_metrics.molten_volume_fraction:.2%}, "
            f"wall time {self._wall_time:.2f} s"
        )

    def _on_progress(self, event: ProgressEvent) -> None:
        self._last_event = event
        for listener in list(self.listeners):
            listener(event)

    # ---- Read-out ----

    def progress(self) -> ProgressEvent:
        """Latest progress event (step 0 before the first step)."""
        return self._last_event

    def results(self) -> SimulationResults:
        """Copy of the output collected so far."""
        r = self._results
        return SimulationResults(
            time_steps=list(r.time_steps),
            temperature_fields=[f.copy() for f in r.temperature_fields],
            phase_fraction_fields=[f.copy() for f in r.phase_fraction_fields],
            final_metrics=r.final_metrics,
            warnings=list(r.warnings),
            mesh_info=dict(r.mesh_info),
            status=self.status.value,
            error=r.error,
        )

    def __repr__(self) -> str:
        return (
            f"SimulationHandle(status={self.status.value}, t={self.state.current_time:.3f}/"
            f"{self.solver.total_time} s, step={self.state.step_index})"
        )


# ---- Control interface ----

def start(
    params: SimulationParameters,
    progress_callback: Optional[ProgressCallback] = None,
) -> SimulationHandle:
    """
    Validate the parameters and prepare a run at t = 0.

    Args:
        params: Complete simulation input.
        progress_callback: Called with every ProgressEvent.

    Raises:
        ValidationError: If any parameter is invalid; nothing is built.
    """
    params.validate()
    model = build_model(params)
    handle = SimulationHandle(params, model)
    if progress_callback is not None:
        handle.listeners.append(progress_callback)
    logger.info(f"Simulation ready: {handle}")
    return handle


def advance_one_step(handle: SimulationHandle) -> Optional[ProgressEvent]:
    return handle.advance_one_step()


def run_to_completion(handle: SimulationHandle) -> SimulationResults:
    return handle.run_to_completion()


def run_in_background(
    handle: SimulationHandle,
    progress_callback: Optional[ProgressCallback] = None,
    finished_callback: Optional[Callable[[SimulationResults], None]] = None,
    error_callback: Optional[Callable[[Exception], None]] = None,
) -> SimulationWorker:
    """
    Run the simulation on a dedicated worker thread.

    Raises:
        SolverStateError: If the run already ended or a worker is still running.
    """
    if handle.status.is_terminal:
        raise SolverStateError(f"Cannot start a worker: simulation is {handle.status.value}.")
    if handle.worker is not None and handle.worker.is_alive():
        raise SolverStateError("A worker is already running this simulation.")
    worker = SimulationWorker(
        handle,
        progress_callback=progress_callback,
        finished_callback=finished_callback,
        error_callback=error_callback,
    )
    handle.worker = worker
    worker.start()
    return worker


def cancel(handle: SimulationHandle) -> None:
    handle.cancel()


def get_progress(handle: SimulationHandle) -> ProgressEvent:
    return handle.progress()


def get_results(handle: SimulationHandle) -> SimulationResults:
    return handle.results()
