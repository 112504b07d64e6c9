"""
Simulation Output
=================
Plain data handed from the engine to its consumers.

Everything here is a copy: progress events and results never reference the
live simulation state.

Classes:
    ProgressEvent: Emitted after every committed time step.
    FinalMetrics: Scalar summary at the end of a run.
    SimulationResults: Stored frames, metrics and accumulated warnings.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import numpy as np

from plasmafurnace.controller.fvm.analysis.metrics import TemperatureStats

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.errors import ConvergenceWarning

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressEvent:
    """
    Snapshot of the run after one step.

    Attributes:
        current_time: Simulation time in seconds.
        total_time: End time of the run in seconds.
        step_index: Number of committed steps.
        temperature_stats: Min/max/mean temperature in K.
        sor_iterations: SOR sweeps spent on the step.
        residual: Final relative residual of the linear solve.
        status: Solver status value.
        warning: Convergence warning of the step, if any.
    """
    current_time: float
    total_time: float
    step_index: int
    temperature_stats: TemperatureStats
    sor_iterations: int = 0
    residual: float = 0.0
    status: str = "idle"
    warning: Optional[ConvergenceWarning] = None

    @property
    def progress(self) -> float:
        """Completed share of the run in [0, 1]."""
        if self.total_time <= 0.0:
            return 0.0
        return min(max(self.current_time / self.total_time, 0.0), 1.0)

    @property
    def percentage(self) -> int:
        return int(round(100.0 * self.progress))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_time": self.current_time,
            "total_time": self.total_time,
            "step_index": self.step_index,
            "temperature_stats": self.temperature_stats.to_dict(),
            "sor_iterations": self.sor_iterations,
            "residual": self.residual,
            "status": self.status,
            "warning": str(self.warning) if self.warning is not None else None,
        }


@dataclass(frozen=True)
class FinalMetrics:
    """
    Scalar summary of a finished (or stopped) run.

    Energies in J, volume fraction in [0, 1], temperatures in K.
    """
    final_time: float
    steps: int
    temperature_stats: TemperatureStats
    molten_volume_fraction: float
    total_energy: float
    energy_input: float
    energy_loss: float
    conservation_error: float
    total_sor_iterations: int
    wall_time: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_time": self.final_time,
            "steps": self.steps,
            "temperature_stats": self.temperature_stats.to_dict(),
            "molten_volume_fraction": self.molten_volume_fraction,
            "total_energy": self.total_energy,
            "energy_input": self.energy_input,
            "energy_loss": self.energy_loss,
            "conservation_error": self.conservation_error,
            "total_sor_iterations": self.total_sor_iterations,
            "wall_time": self.wall_time,
        }


@dataclass
class SimulationResults:
    """
    Output bundle of one run.

    ``temperature_fields[n]`` and ``phase_fraction_fields[n]`` belong to
    ``time_steps[n]``; each field has shape (nr, ntheta, nz).
    """
    time_steps: List[float] = field(default_factory=list)
    temperature_fields: List[npt.NDArray[np.float64]] = field(default_factory=list)
    phase_fraction_fields: List[npt.NDArray[np.float64]] = field(default_factory=list)
    final_metrics: Optional[FinalMetrics] = None
    warnings: List[ConvergenceWarning] = field(default_factory=list)
    mesh_info: Dict[str, Any] = field(default_factory=dict)
    status: str = "idle"
    error: Optional[str] = None

    @property
    def frame_count(self) -> int:
        return len(self.time_steps)

    def temperature_history(self, i: int, j: int, k: int) -> npt.NDArray[np.float64]:
        """Temperature of cell (i, j, k) over the stored frames in K."""
        return np.array([field_[i, j, k] for field_ in self.temperature_fields], dtype=np.float64)

    def max_temperature_history(self) -> npt.NDArray[np.float64]:
        """Peak temperature of every stored frame in K."""
        return np.array([float(np.max(field_)) for field_ in self.temperature_fields], dtype=np.float64)

    def to_dict(self, include_fields: bool = False) -> Dict[str, Any]:
        """
        Serialize to plain Python types.

        Args:
            include_fields: Also export the stored fields as nested lists.
        """
        data: Dict[str, Any] = {
            "time_steps": list(self.time_steps),
            "final_metrics": self.final_metrics.to_dict() if self.final_metrics else None,
            "warnings": [str(w) for w in self.warnings],
            "mesh_info": dict(self.mesh_info),
            "status": self.status,
            "error": self.error,
        }
        if include_fields:
            data["temperature_fields"] = [f.tolist() for f in self.temperature_fields]
            data["phase_fraction_fields"] = [f.tolist() for f in self.phase_fraction_fields]
        return data

    def plot_max_temperature(self, title: str = "") -> None:
        """Plot the peak temperature over time."""
        import matplotlib.pyplot as plt

        if not self.time_steps:
            logger.warning("No stored frames available to plot.")
            return

        plt.figure(figsize=(10, 5))
        plt.plot(self.time_steps, self.max_temperature_history(), marker='o')
        plt.title(title or "Peak furnace temperature")
        plt.xlabel('Time (s)')
        plt.ylabel('Temperature (K)')
        plt.grid(True)
        plt.show()
