from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod

from typing import TYPE_CHECKING, Union

import numpy as np
from scipy.integrate import cumulative_trapezoid

from plasmafurnace.config import ENTHALPY_TABLE_POINTS, REFERENCE_TEMPERATURE, SANITY_CEILING_FACTOR
from plasmafurnace.controller.fvm.pre.material_helpers import (
    enthalpy_slope_batch, steel_props_batch, tabulated_props_batch
)
from plasmafurnace.errors import ValidationError

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

ArrayLike = Union[float, "npt.NDArray[np.float64]"]


def _as_output(values: npt.NDArray[np.float64], like: ArrayLike) -> ArrayLike:
    """Return a Python float for scalar input, the array otherwise."""
    if np.ndim(like) == 0:
        return float(values)
    return values


class Material(ABC):
    """
    Abstract base class for furnace materials.

    Besides the temperature-dependent properties, a material owns the
    volumetric enthalpy H(T) in J/m³ (H(0 K) = 0) with two latent-heat
    plateaus: rho*L_fusion at T_melt and rho*L_vap at T_vap. The curve is
    tabulated once at construction over [0, 2*T_vap] and inverted by binary
    search, so T(H) returns the plateau temperature exactly inside a plateau.

    Subclasses set their own attributes first and call ``super().__init__``
    last, since the enthalpy table samples the subclass properties.
    """

    def __init__(
        self,
        name: str,
        density: float,
        emissivity: float,
        melting_temperature: float,
        latent_heat_fusion: float,
        vaporization_temperature: float,
        latent_heat_vaporization: float,
    ) -> None:
        """
        Initialize, validate and tabulate the material.

        Args:
            name: The name of the material.
            density: Density in kg/m³ (temperature independent).
            emissivity: Surface emissivity in [0, 1].
            melting_temperature: Melting temperature in K.
            latent_heat_fusion: Latent heat of fusion in J/kg.
            vaporization_temperature: Vaporization temperature in K.
            latent_heat_vaporization: Latent heat of vaporization in J/kg.

        Raises:
            ValidationError: If any property is out of its physical range.
        """
        self.name = name
        self.density = float(density)
        self.emissivity = float(emissivity)
        self.melting_temperature = float(melting_temperature)
        self.latent_heat_fusion = float(latent_heat_fusion)
        self.vaporization_temperature = float(vaporization_temperature)
        self.latent_heat_vaporization = float(latent_heat_vaporization)

        self._validate()
        self._build_enthalpy_table()

    # ---- Properties supplied by subclasses ----

    @abstractmethod
    def conductivity(self, temperature_K: ArrayLike) -> ArrayLike:
        """Calculate the thermal conductivity at the given temperature(s) in Kelvin.

        Args:
            temperature_K: Temperature(s) in Kelvin.

        Returns:
            Thermal conductivity in W/(m·K).
        """
        pass

    @abstractmethod
    def specific_heat(self, temperature_K: ArrayLike) -> ArrayLike:
        """Calculate the specific heat capacity at the given temperature(s) in Kelvin.

        Args:
            temperature_K: Temperature(s) in Kelvin.

        Returns:
            Specific heat capacity in J/(kg·K).
        """
        pass

    def props_batch(self, T_K: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """
        Vectorized material properties.

        Args:
            T_K: Temperatures in Kelvin, shape (n,).

        Returns:
            k:    Thermal conductivity per T (W/(m·K)), shape (n,).
            rhoc: Volumetric heat capacity ρc_p(T) (J/(m³·K)), shape (n,).
        """
        T_K = np.ascontiguousarray(T_K, dtype=np.float64).ravel()
        k = np.asarray(self.conductivity(T_K), dtype=np.float64) * np.ones_like(T_K)
        cp = np.asarray(self.specific_heat(T_K), dtype=np.float64) * np.ones_like(T_K)
        return k, self.density * cp

    def volumetric_heat_capacity(self, temperature_K: ArrayLike) -> ArrayLike:
        """Volumetric heat capacity ρc_p in J/(m³·K)."""
        _, rhoc = self.props_batch(np.atleast_1d(temperature_K))
        return _as_output(rhoc.reshape(np.shape(temperature_K)), temperature_K)

    def thermal_diffusivity(self, temperature_K: ArrayLike = REFERENCE_TEMPERATURE) -> ArrayLike:
        """Thermal diffusivity k/(ρc_p) in m²/s."""
        k = np.asarray(self.conductivity(temperature_K), dtype=np.float64)
        rhoc = np.asarray(self.volumetric_heat_capacity(temperature_K), dtype=np.float64)
        return _as_output(k / rhoc, temperature_K)

    # ---- Validation ----

    def _validate(self) -> None:
        if not (math.isfinite(self.density) and self.density > 0.0):
            raise ValidationError(f"{self.name}.density", self.density, "> 0")
        if not 0.0 <= self.emissivity <= 1.0:
            raise ValidationError(f"{self.name}.emissivity", self.emissivity, "[0, 1]")
        if not (math.isfinite(self.melting_temperature) and self.melting_temperature > 0.0):
            raise ValidationError(f"{self.name}.melting_temperature", self.melting_temperature, "> 0 K")
        if not (math.isfinite(self.vaporization_temperature) and self.vaporization_temperature > self.melting_temperature):
            raise ValidationError(
                f"{self.name}.vaporization_temperature", self.vaporization_temperature,
                f"> melting temperature ({self.melting_temperature} K)"
            )
        for label, value in (
            ("latent_heat_fusion", self.latent_heat_fusion),
            ("latent_heat_vaporization", self.latent_heat_vaporization),
        ):
            if not (math.isfinite(value) and value >= 0.0):
                raise ValidationError(f"{self.name}.{label}", value, ">= 0")

        # Properties must be finite and non-negative over the valid range [0, T_vap];
        # the heat capacity must be strictly positive for H(T) to be invertible.
        samples = np.linspace(0.0, self.vaporization_temperature, 512)
        k, rhoc = self.props_batch(samples)
        if not np.all(np.isfinite(k)) or np.any(k < 0.0):
            bad = samples[np.argmax(~np.isfinite(k) | (k < 0.0))]
            raise ValidationError(f"{self.name}.conductivity", f"invalid at {bad:.1f} K", "finite and >= 0")
        if not np.all(np.isfinite(rhoc)) or np.any(rhoc <= 0.0):
            bad = samples[np.argmax(~np.isfinite(rhoc) | (rhoc <= 0.0))]
            raise ValidationError(f"{self.name}.specific_heat", f"invalid at {bad:.1f} K", "finite and > 0")

    # ---- Enthalpy formulation ----

    def _build_enthalpy_table(self) -> None:
        """Tabulate sensible and total enthalpy over [0, 2*T_vap]."""
        T_m = self.melting_temperature
        T_v = self.vaporization_temperature
        self.temperature_ceiling = SANITY_CEILING_FACTOR * T_v

        T_grid = np.linspace(0.0, self.temperature_ceiling, ENTHALPY_TABLE_POINTS)
        T_grid = np.union1d(T_grid, [T_m, T_v])
        _, rhoc = self.props_batch(T_grid)
        H_sensible = cumulative_trapezoid(rhoc, T_grid, initial=0.0)

        self._T_grid = T_grid
        self._H_sensible = H_sensible
        # Upper bound of dT/dH: no table segment is steeper than 1/min(ρc_p)
        self.max_temperature_slope = 1.0 / float(np.min(rhoc))

        self.fusion_enthalpy = self.density * self.latent_heat_fusion  # J/m³
        self.vaporization_enthalpy = self.density * self.latent_heat_vaporization  # J/m³

        H_total = H_sensible.copy()
        H_total[T_grid > T_m] += self.fusion_enthalpy
        H_total[T_grid > T_v] += self.vaporization_enthalpy

        # Plateau bounds
        i_m = int(np.searchsorted(T_grid, T_m))
        i_v = int(np.searchsorted(T_grid, T_v))
        self.solidus_enthalpy = float(H_sensible[i_m])
        self.liquidus_enthalpy = self.solidus_enthalpy + self.fusion_enthalpy
        self.vapor_start_enthalpy = float(H_sensible[i_v]) + self.fusion_enthalpy
        self.vapor_end_enthalpy = self.vapor_start_enthalpy + self.vaporization_enthalpy

        # Duplicate the phase-change temperatures so T(H) is flat across each plateau
        T_table = T_grid
        H_table = H_total
        insert_at = []
        insert_H = []
        if self.fusion_enthalpy > 0.0:
            insert_at.append(i_m + 1)
            insert_H.append(self.liquidus_enthalpy)
        if self.vaporization_enthalpy > 0.0:
            insert_at.append(i_v + 1)
            insert_H.append(self.vapor_end_enthalpy)
        if insert_at:
            T_table = np.insert(T_grid, insert_at, T_grid[np.asarray(insert_at) - 1])
            H_table = np.insert(H_total, insert_at, insert_H)

        self._T_table = np.ascontiguousarray(T_table)
        self._H_table = np.ascontiguousarray(H_table)
        self.enthalpy_ceiling = float(H_table[-1])

        logger.debug(
            f"Enthalpy table for '{self.name}': {H_table.size} knots, "
            f"melt plateau [{self.solidus_enthalpy:.4e}, {self.liquidus_enthalpy:.4e}] J/m³, "
            f"vapor plateau [{self.vapor_start_enthalpy:.4e}, {self.vapor_end_enthalpy:.4e}] J/m³"
        )

    def enthalpy(self, temperature_K: ArrayLike) -> ArrayLike:
        """
        Volumetric enthalpy H(T) in J/m³.

        A temperature exactly at T_melt (or T_vap) maps to the start of its plateau.
        """
        T = np.asarray(temperature_K, dtype=np.float64)
        H = np.interp(T, self._T_grid, self._H_sensible)
        H = H + np.where(T > self.melting_temperature, self.fusion_enthalpy, 0.0)
        H = H + np.where(T > self.vaporization_temperature, self.vaporization_enthalpy, 0.0)
        return _as_output(H, temperature_K)

    def temperature(self, enthalpy: ArrayLike) -> ArrayLike:
        """
        Temperature T(H) in K.

        Inside a plateau the phase-change temperature is returned exactly.
        Enthalpies outside the table are clamped to [0, 2*T_vap].
        """
        H = np.asarray(enthalpy, dtype=np.float64)
        return _as_output(np.interp(H, self._H_table, self._T_table), enthalpy)

    def temperature_slope(self, enthalpy: ArrayLike) -> ArrayLike:
        """dT/dH in K·m³/J; zero inside a plateau."""
        H = np.asarray(enthalpy, dtype=np.float64)
        beta = enthalpy_slope_batch(np.ascontiguousarray(H.ravel()), self._H_table, self._T_table)
        return _as_output(beta.reshape(H.shape), enthalpy)

    def phase_fraction(self, enthalpy: ArrayLike) -> ArrayLike:
        """
        Progress through the melting plateau: 0 solid, 1 fully molten.

        Non-decreasing in H and always within [0, 1].
        """
        H = np.asarray(enthalpy, dtype=np.float64)
        if self.fusion_enthalpy > 0.0:
            f = np.clip((H - self.solidus_enthalpy) / self.fusion_enthalpy, 0.0, 1.0)
        else:
            f = np.where(H > self.solidus_enthalpy, 1.0, 0.0)
        return _as_output(f, enthalpy)

    def vapor_fraction(self, enthalpy: ArrayLike) -> ArrayLike:
        """Progress through the vaporization plateau, within [0, 1]."""
        H = np.asarray(enthalpy, dtype=np.float64)
        if self.vaporization_enthalpy > 0.0:
            f = np.clip((H - self.vapor_start_enthalpy) / self.vaporization_enthalpy, 0.0, 1.0)
        else:
            f = np.where(H > self.vapor_start_enthalpy, 1.0, 0.0)
        return _as_output(f, enthalpy)

    def plot(self, temperature_max: float | None = None, steps: int = 500) -> None:
        """
        Plot the enthalpy curve and the properties of the material.

        Requires the optional matplotlib dependency.
        """
        import matplotlib.pyplot as plt

        T_max = temperature_max or self.vaporization_temperature * 1.1
        T = np.linspace(1.0, T_max, steps)
        k, rhoc = self.props_batch(T)

        fig, axes = plt.subplots(1, 3, figsize=(14, 4))
        axes[0].plot(T, self.enthalpy(T))
        axes[0].set_xlabel("Temperature [K]")
        axes[0].set_ylabel("Enthalpy [J/m³]")
        axes[1].plot(T, k)
        axes[1].set_xlabel("Temperature [K]")
        axes[1].set_ylabel("Conductivity [W/(m·K)]")
        axes[2].plot(T, rhoc / self.density)
        axes[2].set_xlabel("Temperature [K]")
        axes[2].set_ylabel("Specific heat [J/(kg·K)]")
        fig.suptitle(self.name)
        for ax in axes:
            ax.grid(True)
        fig.tight_layout()
        plt.show()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class ConstantPropertyMaterial(Material):
    """
    Material with temperature-independent conductivity and specific heat.
    """
    def __init__(
        self,
        name: str,
        density: float,
        conductivity: float,
        specific_heat: float,
        emissivity: float,
        melting_temperature: float,
        latent_heat_fusion: float,
        vaporization_temperature: float,
        latent_heat_vaporization: float,
    ) -> None:
        self._k = float(conductivity)
        self._cp = float(specific_heat)
        super().__init__(
            name=name,
            density=density,
            emissivity=emissivity,
            melting_temperature=melting_temperature,
            latent_heat_fusion=latent_heat_fusion,
            vaporization_temperature=vaporization_temperature,
            latent_heat_vaporization=latent_heat_vaporization,
        )

    def conductivity(self, temperature_K: ArrayLike) -> ArrayLike:
        return _as_output(np.full(np.shape(temperature_K), self._k), temperature_K)

    def specific_heat(self, temperature_K: ArrayLike) -> ArrayLike:
        return _as_output(np.full(np.shape(temperature_K), self._cp), temperature_K)

    def props_batch(self, T_K: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        n = np.size(T_K)
        return np.full(n, self._k), np.full(n, self.density * self._cp)


class TabulatedMaterial(Material):
    """
    Material defined by piecewise-linear k(T) and c_p(T) tables.
    """
    def __init__(
        self,
        name: str,
        density: float,
        temperatures_K: npt.NDArray[np.float64],
        conductivities: npt.NDArray[np.float64],
        specific_heats: npt.NDArray[np.float64],
        emissivity: float,
        melting_temperature: float,
        latent_heat_fusion: float,
        vaporization_temperature: float,
        latent_heat_vaporization: float,
    ) -> None:
        temperatures_K = np.ascontiguousarray(temperatures_K, dtype=np.float64)
        conductivities = np.ascontiguousarray(conductivities, dtype=np.float64)
        specific_heats = np.ascontiguousarray(specific_heats, dtype=np.float64)

        if not (len(temperatures_K) == len(conductivities) == len(specific_heats)):
            raise ValidationError(f"{name}.tables", len(temperatures_K), "all input arrays of the same length")

        if len(temperatures_K) < 2:
            raise ValidationError(f"{name}.tables", len(temperatures_K), "at least two data points")

        if not np.all(np.diff(temperatures_K) > 0):
            raise ValidationError(f"{name}.temperatures", temperatures_K.tolist(), "strictly increasing")

        self.temperatures_K = temperatures_K
        self.conductivities = conductivities
        self.specific_heats = specific_heats
        super().__init__(
            name=name,
            density=density,
            emissivity=emissivity,
            melting_temperature=melting_temperature,
            latent_heat_fusion=latent_heat_fusion,
            vaporization_temperature=vaporization_temperature,
            latent_heat_vaporization=latent_heat_vaporization,
        )

    def conductivity(self, temperature_K: ArrayLike) -> ArrayLike:
        k = np.interp(temperature_K, self.temperatures_K, self.conductivities)
        return _as_output(k, temperature_K)

    def specific_heat(self, temperature_K: ArrayLike) -> ArrayLike:
        cp = np.interp(temperature_K, self.temperatures_K, self.specific_heats)
        return _as_output(cp, temperature_K)

    def props_batch(self, T_K: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        T_K = np.ascontiguousarray(T_K, dtype=np.float64).ravel()
        return tabulated_props_batch(T_K, self.density, self.temperatures_K, self.conductivities, self.specific_heats)


class CarbonSteel(Material):
    """
    Carbon steel with the EN 1993-1-2 conductivity and specific heat curves.
    """
    def __init__(
        self,
        name: str = "Carbon Steel",
        density: float = 7850.0,
        emissivity: float = 0.8,
        melting_temperature: float = 1811.0,
        latent_heat_fusion: float = 247_000.0,
        vaporization_temperature: float = 3134.0,
        latent_heat_vaporization: float = 6_090_000.0,
    ) -> None:
        super().__init__(
            name=name,
            density=density,
            emissivity=emissivity,
            melting_temperature=melting_temperature,
            latent_heat_fusion=latent_heat_fusion,
            vaporization_temperature=vaporization_temperature,
            latent_heat_vaporization=latent_heat_vaporization,
        )

    def conductivity(self, temperature_K: ArrayLike) -> ArrayLike:
        """Calculate the thermal conductivity of steel at the given temperature(s) in Kelvin.

        Args:
            temperature_K: Temperature(s) in Kelvin.

        Returns:
            Thermal conductivity in W/(m·K).
        """
        k, _ = self.props_batch(np.atleast_1d(temperature_K))
        return _as_output(k.reshape(np.shape(temperature_K)), temperature_K)

    def specific_heat(self, temperature_K: ArrayLike) -> ArrayLike:
        """Calculate the specific heat capacity of steel at the given temperature(s) in Kelvin.

        Args:
            temperature_K: Temperature(s) in Kelvin.

        Returns:
            Specific heat capacity in J/(kg·K).
        """
        _, rhoc = self.props_batch(np.atleast_1d(temperature_K))
        return _as_output((rhoc / self.density).reshape(np.shape(temperature_K)), temperature_K)

    def props_batch(self, T_K: npt.NDArray[np.float64]) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        T_K = np.ascontiguousarray(T_K, dtype=np.float64).ravel()
        return steel_props_batch(T_K, self.density)
