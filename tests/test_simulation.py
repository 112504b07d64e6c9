"""
Tests for the simulation control interface.

Tests:
- start / advance_one_step / run_to_completion
- Frame storage and final metrics
- Cancellation and failure through the handle
- The background worker
- Results are copies
"""

import numpy as np
import pytest

from plasmafurnace.controller.simulation import (
    advance_one_step, cancel, get_progress, get_results, run_in_background, run_to_completion, start
)
from plasmafurnace.controller.fvm.solvers.solver import SolverStatus
from plasmafurnace.errors import NumericalInstability, SolverStateError, ValidationError
from plasmafurnace.model.parameters import MeshResolution, SolverSettings, TimeControl, TorchParameters

WORKER_TIMEOUT = 120.0


# =============================================================================
# Start & validation
# =============================================================================

class TestStart:
    """Tests for building a run from parameters."""

    def test_initial_progress(self, fast_params):
        handle = start(fast_params)
        event = get_progress(handle)
        assert event.step_index == 0
        assert event.status == SolverStatus.IDLE
        assert event.temperature_stats.min == pytest.approx(298.15)

    def test_initial_frame_is_stored(self, fast_params):
        results = get_results(start(fast_params))
        assert results.time_steps == [0.0]
        assert results.temperature_fields[0].shape == (6, 1, 12)
        assert results.mesh_info["total_cells"] == 72

    @pytest.mark.parametrize("mutate", [
        lambda p: setattr(p.mesh, "nr", 0),
        lambda p: setattr(p, "material", "unobtainium"),
        lambda p: setattr(p, "initial_temperature", 5000.0),
        lambda p: setattr(p, "torches", []),
        lambda p: p.torches.append(TorchParameters(r=2.0)),
        lambda p: setattr(p.time, "time_step", 0.0),
        lambda p: setattr(p.solver, "relaxation_factor", 2.5),
    ])
    def test_invalid_parameters_never_start(self, fast_params, mutate):
        mutate(fast_params)
        with pytest.raises(ValidationError):
            start(fast_params)


# =============================================================================
# Stepping
# =============================================================================

class TestStepping:
    """Tests for stepping through the handle."""

    def test_advance_one_step(self, fast_params):
        handle = start(fast_params)
        event = advance_one_step(handle)
        assert event.step_index == 1
        assert event.current_time == pytest.approx(0.5)
        assert event.status == SolverStatus.RUNNING
        assert get_progress(handle) is event

    def test_run_to_completion(self, fast_params):
        handle = start(fast_params)
        results = run_to_completion(handle)
        assert results.status == SolverStatus.COMPLETED
        assert results.time_steps == pytest.approx([0.0, 1.0, 2.0, 3.0, 4.0, 5.0])
        assert len(results.temperature_fields) == len(results.phase_fraction_fields) == 6
        assert results.warnings == []
        assert results.error is None

        metrics = results.final_metrics
        assert metrics.steps == 10
        assert metrics.final_time == 5.0
        assert metrics.energy_input > 0.0
        assert metrics.conservation_error < 1e-6
        assert metrics.molten_volume_fraction == 0.0
        assert metrics.temperature_stats.max > 298.15

    def test_default_output_interval_stores_every_step(self, fast_params):
        fast_params.time = TimeControl(total_time=5.0, time_step=0.5)
        results = run_to_completion(start(fast_params))
        assert results.frame_count == 11

    def test_frames_follow_the_heating(self, fast_params):
        results = run_to_completion(start(fast_params))
        peaks = results.max_temperature_history()
        assert np.all(np.diff(peaks) >= 0.0)
        history = results.temperature_history(0, 0, 5)
        assert history.shape == (6,)
        assert history[-1] > history[0]

    def test_advance_after_completion(self, fast_params):
        handle = start(fast_params)
        run_to_completion(handle)
        with pytest.raises(SolverStateError):
            advance_one_step(handle)

    def test_results_are_copies(self, fast_params):
        handle = start(fast_params)
        run_to_completion(handle)
        first = get_results(handle)
        first.temperature_fields[-1][:] = 0.0
        first.time_steps.clear()
        second = get_results(handle)
        assert second.temperature_fields[-1].max() > 0.0
        assert len(second.time_steps) == 6

    def test_results_to_dict(self, fast_params):
        results = run_to_completion(start(fast_params))
        data = results.to_dict()
        assert "temperature_fields" not in data
        assert data["final_metrics"]["steps"] == 10
        full = results.to_dict(include_fields=True)
        assert len(full["temperature_fields"]) == 6
        assert np.array(full["temperature_fields"][0]).shape == (6, 1, 12)


# =============================================================================
# Cancellation & failure
# =============================================================================

class TestCancellation:
    """Tests for cancelling through the handle."""

    def test_cancel_before_first_step(self, fast_params):
        handle = start(fast_params)
        cancel(handle)
        results = get_results(handle)
        assert results.status == SolverStatus.CANCELLED
        assert results.final_metrics.steps == 0
        assert results.time_steps == [0.0]
        with pytest.raises(SolverStateError):
            advance_one_step(handle)

    def test_cancel_from_progress_callback(self, fast_params):
        holder = {}

        def on_progress(event):
            if event.step_index == 3:
                cancel(holder["handle"])

        holder["handle"] = start(fast_params, progress_callback=on_progress)
        results = run_to_completion(holder["handle"])
        assert results.status == SolverStatus.CANCELLED
        assert results.final_metrics.steps == 3
        assert results.time_steps == pytest.approx([0.0, 1.0, 1.5])
        assert get_progress(holder["handle"]).status == SolverStatus.CANCELLED


class TestFailure:
    """Tests for a run that blows up."""

    def test_failure_is_raised_and_recorded(self, fast_params):
        fast_params.solver = SolverSettings(divergence_threshold=1e-6)
        handle = start(fast_params)
        with pytest.raises(NumericalInstability):
            run_to_completion(handle)
        results = get_results(handle)
        assert results.status == SolverStatus.FAILED
        assert "Numerical instability" in results.error
        assert results.final_metrics.steps == 0
        with pytest.raises(SolverStateError):
            advance_one_step(handle)

    def test_convergence_warnings_are_collected(self, fast_params):
        fast_params.solver = SolverSettings(max_iterations=1, tolerance=1e-14, max_picard_iterations=1)
        results = run_to_completion(start(fast_params))
        assert results.status == SolverStatus.COMPLETED
        assert len(results.warnings) == 10
        assert results.to_dict()["warnings"][0].startswith("SOR did not converge")


# =============================================================================
# Background worker
# =============================================================================

class TestBackgroundWorker:
    """Tests for run_in_background."""

    def test_runs_to_completion(self, fast_params):
        handle = start(fast_params)
        events, finished = [], []
        worker = run_in_background(handle, progress_callback=events.append, finished_callback=finished.append)
        worker.join(WORKER_TIMEOUT)
        assert not worker.is_alive()
        assert worker.error is None
        assert finished[0].status == SolverStatus.COMPLETED
        assert [e.step_index for e in events] == list(range(1, 11))
        assert handle.listeners == []
        with pytest.raises(SolverStateError):
            run_in_background(handle)

    def test_stop_after_finish_keeps_status(self, fast_params):
        handle = start(fast_params)
        worker = run_in_background(handle)
        worker.join(WORKER_TIMEOUT)
        worker.stop()
        assert handle.status == SolverStatus.COMPLETED
        assert get_results(handle).status == SolverStatus.COMPLETED

    def test_cancel_while_running(self, fast_params):
        fast_params.time = TimeControl(total_time=50.0, time_step=0.5, output_interval=1.0)
        handle = start(fast_params)
        worker = run_in_background(
            handle, progress_callback=lambda e: cancel(handle) if e.step_index == 2 else None
        )
        worker.join(WORKER_TIMEOUT)
        assert not worker.is_alive()
        assert worker.results.status == SolverStatus.CANCELLED
        assert worker.results.final_metrics.steps == 2

    def test_error_is_reported(self, fast_params):
        fast_params.solver = SolverSettings(divergence_threshold=1e-6)
        fast_params.mesh = MeshResolution(nr=4, ntheta=1, nz=8)
        handle = start(fast_params)
        errors = []
        worker = run_in_background(handle, error_callback=errors.append)
        worker.join(WORKER_TIMEOUT)
        assert isinstance(worker.error, NumericalInstability)
        assert errors == [worker.error]
        assert worker.results.status == SolverStatus.FAILED
