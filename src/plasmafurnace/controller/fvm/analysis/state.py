"""
Simulation State
================
The live fields of one simulation run.

The state is owned by the Solver while a run is active: callers read through
read-only views and take copies with ``snapshot()``. New values are written
only by ``Solver.advance`` through ``_commit``.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Union

import numpy as np

from plasmafurnace.controller.fvm.analysis.metrics import (
    TemperatureStats, molten_volume_fraction, total_energy
)
from plasmafurnace.errors import ValidationError

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fvm.pre.material import Material
    from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh

logger = logging.getLogger(__name__)


def _read_only(array: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
    view = array.view()
    view.flags.writeable = False
    return view


class SimulationState:
    """
    Temperature, enthalpy and phase fields on the mesh plus the simulation clock.

    Attributes:
        mesh: The mesh the fields live on.
        material: The material used to derive T and phase from H.
    """

    def __init__(
        self,
        mesh: CylindricalMesh,
        material: Material,
        initial_temperature: Union[float, npt.NDArray[np.float64]],
    ) -> None:
        """
        Create the state at t = 0.

        Args:
            mesh: The furnace mesh.
            material: The furnace material.
            initial_temperature: Uniform temperature in K, or an array of shape
                (nr, ntheta, nz) with per-cell values.

        Raises:
            ValidationError: If the temperature has the wrong shape or lies
                outside [0, T_vap].
        """
        T0 = np.asarray(initial_temperature, dtype=np.float64)
        if T0.ndim != 0 and T0.shape != mesh.shape:
            raise ValidationError("initial_temperature", f"shape {T0.shape}", f"scalar or shape {mesh.shape}")
        T0 = np.array(np.broadcast_to(T0, mesh.shape), dtype=np.float64, order="C")
        if not np.all(np.isfinite(T0)) or T0.min() < 0.0 or T0.max() > material.vaporization_temperature:
            bad = T0.min() if not T0.min() >= 0.0 else T0.max()
            raise ValidationError("initial_temperature", bad, f"[0, {material.vaporization_temperature}] K")

        self.mesh = mesh
        self.material = material

        self._enthalpy = np.ascontiguousarray(material.enthalpy(T0), dtype=np.float64)
        self._temperature = T0
        self._phase_fraction = np.asarray(material.phase_fraction(self._enthalpy), dtype=np.float64)
        self._vapor_fraction = np.asarray(material.vapor_fraction(self._enthalpy), dtype=np.float64)
        self._current_time = 0.0
        self._step_index = 0

    # ---- Read-only accessors ----

    @property
    def temperature(self) -> npt.NDArray[np.float64]:
        return _read_only(self._temperature)

    @property
    def enthalpy(self) -> npt.NDArray[np.float64]:
        return _read_only(self._enthalpy)

    @property
    def phase_fraction(self) -> npt.NDArray[np.float64]:
        return _read_only(self._phase_fraction)

    @property
    def vapor_fraction(self) -> npt.NDArray[np.float64]:
        return _read_only(self._vapor_fraction)

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def step_index(self) -> int:
        return self._step_index

    @property
    def shape(self) -> tuple[int, int, int]:
        return self._temperature.shape

    # ---- Derived views ----

    def temperature_stats(self) -> TemperatureStats:
        return TemperatureStats.from_field(self._temperature)

    def total_energy(self) -> float:
        """Σ H*V in J, latent heat included."""
        return total_energy(self._enthalpy, self.mesh.volumes)

    def molten_fraction(self) -> float:
        return molten_volume_fraction(self._phase_fraction, self.mesh.volumes)

    # ---- Ownership ----

    def snapshot(self) -> SimulationState:
        """Independent deep copy of the fields and the clock."""
        clone = SimulationState.__new__(SimulationState)
        clone.mesh = self.mesh
        clone.material = self.material
        clone._temperature = self._temperature.copy()
        clone._enthalpy = self._enthalpy.copy()
        clone._phase_fraction = self._phase_fraction.copy()
        clone._vapor_fraction = self._vapor_fraction.copy()
        clone._current_time = self._current_time
        clone._step_index = self._step_index
        return clone

    def _commit(
        self,
        enthalpy: npt.NDArray[np.float64],
        temperature: npt.NDArray[np.float64],
        phase_fraction: npt.NDArray[np.float64],
        vapor_fraction: npt.NDArray[np.float64],
        time: float,
    ) -> None:
        """Replace the fields with a validated step result and advance the clock."""
        self._enthalpy = enthalpy
        self._temperature = temperature
        self._phase_fraction = phase_fraction
        self._vapor_fraction = vapor_fraction
        self._current_time = time
        self._step_index += 1

    def __repr__(self) -> str:
        return f"SimulationState(shape={self.shape}, time={self._current_time:.4g} s, step={self._step_index})"
