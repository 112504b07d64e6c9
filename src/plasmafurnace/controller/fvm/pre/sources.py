from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from plasmafurnace.config import STEFAN_BOLTZMANN, DEFAULT_AMBIENT_TEMPERATURE, DEFAULT_CONVECTION_COEFFICIENT
from plasmafurnace.errors import ValidationError
from plasmafurnace.utils import cylindrical_to_cartesian

if TYPE_CHECKING:
    import numpy.typing as npt

    from plasmafurnace.controller.fvm.pre.material import Material
    from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlasmaTorch:
    """
    A plasma torch depositing a Gaussian heat distribution.

    Attributes:
        power: Electrical power P in W.
        efficiency: Thermal efficiency eta in (0, 1].
        r: Radial position in m.
        theta: Angular position in rad.
        z: Axial position in m.
        sigma: Gaussian spread in m.
    """
    power: float
    efficiency: float
    r: float
    theta: float
    z: float
    sigma: float

    def validate(self, radius: float, height: float, label: str = "torch") -> None:
        """
        Check the torch against the furnace dimensions.

        Raises:
            ValidationError: If a parameter is out of range.
        """
        if not (math.isfinite(self.power) and self.power >= 0.0):
            raise ValidationError(f"{label}.power", self.power, ">= 0 W")
        if not 0.0 < self.efficiency <= 1.0:
            raise ValidationError(f"{label}.efficiency", self.efficiency, "(0, 1]")
        if not 0.0 <= self.r <= radius:
            raise ValidationError(f"{label}.r", self.r, f"[0, {radius}] m")
        if not 0.0 <= self.z <= height:
            raise ValidationError(f"{label}.z", self.z, f"[0, {height}] m")
        if not math.isfinite(self.theta):
            raise ValidationError(f"{label}.theta", self.theta, "finite angle in rad")
        if not (math.isfinite(self.sigma) and self.sigma > 0.0):
            raise ValidationError(f"{label}.sigma", self.sigma, "> 0 m")

    @property
    def cartesian_position(self) -> tuple[float, float, float]:
        x, y, z = cylindrical_to_cartesian(self.r, self.theta, self.z)
        return float(x), float(y), float(z)

    @property
    def peak_heat_generation(self) -> float:
        """Heat generation at the torch position in W/m³."""
        return self.power * self.efficiency / (2.0 * math.pi * self.sigma ** 2)

    def heat_generation(
        self,
        x: npt.NDArray[np.float64],
        y: npt.NDArray[np.float64],
        z: npt.NDArray[np.float64],
    ) -> npt.NDArray[np.float64]:
        """
        Gaussian heat generation at Cartesian points.

        Q = P*eta / (2*pi*sigma²) * exp(-|x - x_t|² / (2*sigma²)) with the full
        3-D distance.

        Returns:
            Heat generation in W/m³, same shape as the inputs.
        """
        xt, yt, zt = self.cartesian_position
        d2 = (x - xt) ** 2 + (y - yt) ** 2 + (z - zt) ** 2
        return self.peak_heat_generation * np.exp(-d2 / (2.0 * self.sigma ** 2))


@dataclass(frozen=True)
class BoundaryConfig:
    """
    Thermal boundary at the wall (r = R), the bottom (z = 0) and the top (z = H).

    Attributes:
        ambient_temperature: T_amb in K.
        convection_coefficient: h in W/(m²·K).
        emissivity: Wall emissivity; None uses the material emissivity.
    """
    ambient_temperature: float = DEFAULT_AMBIENT_TEMPERATURE
    convection_coefficient: float = DEFAULT_CONVECTION_COEFFICIENT
    emissivity: Optional[float] = None

    @classmethod
    def adiabatic(cls, ambient_temperature: float = DEFAULT_AMBIENT_TEMPERATURE) -> BoundaryConfig:
        """No heat exchange with the surroundings."""
        return cls(ambient_temperature=ambient_temperature, convection_coefficient=0.0, emissivity=0.0)

    def validate(self) -> None:
        if not (math.isfinite(self.ambient_temperature) and self.ambient_temperature >= 0.0):
            raise ValidationError("boundary.ambient_temperature", self.ambient_temperature, ">= 0 K")
        if not (math.isfinite(self.convection_coefficient) and self.convection_coefficient >= 0.0):
            raise ValidationError("boundary.convection_coefficient", self.convection_coefficient, ">= 0 W/(m²·K)")
        if self.emissivity is not None and not 0.0 <= self.emissivity <= 1.0:
            raise ValidationError("boundary.emissivity", self.emissivity, "[0, 1]")

    def effective_emissivity(self, material: Material) -> float:
        return material.emissivity if self.emissivity is None else self.emissivity

    def is_adiabatic(self, material: Material) -> bool:
        return self.convection_coefficient == 0.0 and self.effective_emissivity(material) == 0.0


class SourceModel(ABC):
    """
    Abstract heat source/sink model.

    Implementations provide the volumetric heat generation and the heat lost
    through the boundary faces for a given temperature field.
    """

    @abstractmethod
    def heat_generation(self, mesh: CylindricalMesh, time: float) -> npt.NDArray[np.float64]:
        """
        Volumetric heat generation per cell.

        Args:
            mesh: The furnace mesh.
            time: Simulation time in seconds.

        Returns:
            Heat generation in W/m³, shape (nr, ntheta, nz).
        """
        pass

    @abstractmethod
    def boundary_heat_loss(
        self,
        temperature: npt.NDArray[np.float64],
        mesh: CylindricalMesh,
    ) -> npt.NDArray[np.float64]:
        """
        Heat leaving each cell through its boundary faces.

        Args:
            temperature: Cell temperatures in K, shape (nr, ntheta, nz).
            mesh: The furnace mesh.

        Returns:
            Heat loss in W per cell (positive = leaving), shape (nr, ntheta, nz).
        """
        pass


class PlasmaSourceModel(SourceModel):
    """
    Plasma torches with radiative and convective losses at the boundary.
    """

    def __init__(
        self,
        torches: Sequence[PlasmaTorch],
        boundary: BoundaryConfig,
        material: Material,
    ) -> None:
        self.torches: tuple[PlasmaTorch, ...] = tuple(torches)
        self.boundary = boundary
        self.material = material
        self.emissivity = boundary.effective_emissivity(material)

        self._cached_mesh: Optional[CylindricalMesh] = None
        self._cached_generation: Optional[npt.NDArray[np.float64]] = None

    @property
    def total_power(self) -> float:
        """Nominal thermal power P*eta of all torches in W."""
        return float(sum(t.power * t.efficiency for t in self.torches))

    def torch_contributions(self, mesh: CylindricalMesh) -> npt.NDArray[np.float64]:
        """
        Heat generation of each torch separately.

        Returns:
            Array of shape (n_torches, nr, ntheta, nz) in W/m³.
        """
        x, y, z = mesh.cartesian_centers()
        out = np.zeros((len(self.torches),) + mesh.shape, dtype=np.float64)
        for n, torch in enumerate(self.torches):
            out[n] = torch.heat_generation(x, y, z)
        return out

    def heat_generation(self, mesh: CylindricalMesh, time: float) -> npt.NDArray[np.float64]:
        # Torches are steady, so the field only depends on the mesh
        if self._cached_mesh is not mesh or self._cached_generation is None:
            Q = self.torch_contributions(mesh).sum(axis=0)
            Q.setflags(write=False)
            self._cached_generation = Q
            self._cached_mesh = mesh
            logger.debug(
                f"Torch heat generation: {len(self.torches)} torch(es), "
                f"peak {Q.max():.4e} W/m³, deposited {np.sum(Q * mesh.volumes):.4e} W"
            )
        return self._cached_generation

    def boundary_flux(self, temperature: npt.NDArray[np.float64]) -> npt.NDArray[np.float64]:
        """
        Heat flux leaving a surface at the given temperature in W/m².

        q = eps*sigma_SB*(T⁴ - T_amb⁴) + h*(T - T_amb)
        """
        T = np.asarray(temperature, dtype=np.float64)
        T_amb = self.boundary.ambient_temperature
        q_rad = self.emissivity * STEFAN_BOLTZMANN * (T ** 4 - T_amb ** 4)
        q_conv = self.boundary.convection_coefficient * (T - T_amb)
        return q_rad + q_conv

    def boundary_heat_loss(
        self,
        temperature: npt.NDArray[np.float64],
        mesh: CylindricalMesh,
    ) -> npt.NDArray[np.float64]:
        return self.boundary_flux(temperature) * mesh.boundary_areas
