from __future__ import annotations

import logging
from dataclasses import dataclass, asdict
from typing import TYPE_CHECKING, Any, Dict

import numpy as np

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

CONSERVATION_WARNING_THRESHOLD = 0.10


@dataclass(frozen=True)
class TemperatureStats:
    """Minimum, maximum and mean cell temperature in K."""
    min: float
    max: float
    mean: float

    @classmethod
    def from_field(cls, temperature: npt.NDArray[np.float64]) -> TemperatureStats:
        return cls(
            min=float(np.min(temperature)),
            max=float(np.max(temperature)),
            mean=float(np.mean(temperature)),
        )

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> TemperatureStats:
        return TemperatureStats(min=data["min"], max=data["max"], mean=data["mean"])


def total_energy(enthalpy: npt.NDArray[np.float64], volumes: npt.NDArray[np.float64]) -> float:
    """Total enthalpy content Σ H*V in J."""
    return float(np.sum(enthalpy * volumes))


def molten_volume_fraction(phase_fraction: npt.NDArray[np.float64], volumes: npt.NDArray[np.float64]) -> float:
    """Volume-weighted share of molten material in [0, 1]."""
    return float(np.sum(phase_fraction * volumes) / np.sum(volumes))


class EnergyMonitor:
    """
    Tracks the global energy balance of a run.

    The expected energy is E0 + Σ input - Σ loss. The conservation error is
    |E - E_expected| / E0 and a warning is logged once it exceeds 10 %.
    """

    def __init__(self, initial_energy: float, warning_threshold: float = CONSERVATION_WARNING_THRESHOLD) -> None:
        self.initial_energy = float(initial_energy)
        self.current_energy = float(initial_energy)
        self.energy_input = 0.0
        self.energy_loss = 0.0
        self.conservation_error = 0.0
        self.warning_threshold = warning_threshold
        self._warned = False

    @property
    def expected_energy(self) -> float:
        return self.initial_energy + self.energy_input - self.energy_loss

    def update(self, current_energy: float, energy_input: float, energy_loss: float) -> None:
        """
        Record one step.

        Args:
            current_energy: Total energy after the step in J.
            energy_input: Energy deposited by the sources during the step in J.
            energy_loss: Energy lost through the boundary during the step in J.
        """
        self.current_energy = float(current_energy)
        self.energy_input += float(energy_input)
        self.energy_loss += float(energy_loss)

        if self.initial_energy > 0.0:
            self.conservation_error = abs(self.current_energy - self.expected_energy) / self.initial_energy

        if self.conservation_error > self.warning_threshold and not self._warned:
            logger.warning(
                f"Energy conservation error {self.conservation_error:.2%} exceeds "
                f"{self.warning_threshold:.0%} of the initial energy."
            )
            self._warned = True

    def to_dict(self) -> Dict[str, float]:
        return {
            "initial_energy": self.initial_energy,
            "current_energy": self.current_energy,
            "energy_input": self.energy_input,
            "energy_loss": self.energy_loss,
            "conservation_error": self.conservation_error,
        }
