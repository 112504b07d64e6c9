"""
Material Library Management
===========================
Defines the configuration data structures for furnace materials.
These classes hold the PARAMETERS needed to initialize the FVM material classes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from abc import ABC, abstractmethod
from enum import StrEnum
from typing import List, Dict, Optional, Any
import logging

import numpy as np

from plasmafurnace.controller.fvm.pre.material import (
    CarbonSteel, ConstantPropertyMaterial, Material, TabulatedMaterial
)
from plasmafurnace.errors import ValidationError

logger = logging.getLogger(__name__)


class MaterialType(StrEnum):
    CONSTANT = "constant"
    TABULATED = "tabulated"
    CARBON_STEEL = "carbon_steel"


@dataclass(kw_only=True)
class MaterialConfig(ABC):
    """
    Abstract base class for material configurations.

    Temperatures in K, latent heats in J/kg.
    """
    name: str
    description: str = ""
    density: float
    emissivity: float
    melting_temperature: float
    latent_heat_fusion: float
    vaporization_temperature: float
    latent_heat_vaporization: float

    @property
    @abstractmethod
    def type(self) -> MaterialType:
        pass

    @abstractmethod
    def create(self) -> Material:
        """Build the FVM material (validates and tabulates the enthalpy)."""
        pass

    def _common(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "density": self.density,
            "emissivity": self.emissivity,
            "melting_temperature": self.melting_temperature,
            "latent_heat_fusion": self.latent_heat_fusion,
            "vaporization_temperature": self.vaporization_temperature,
            "latent_heat_vaporization": self.latent_heat_vaporization,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Base serialization method."""
        d = self._common()
        d.update({"description": self.description, "type": self.type.value})
        return d

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> MaterialConfig:
        """Factory method to deserialize into correct subclass."""
        data = dict(data)
        mat_type = MaterialType(data.pop("type", MaterialType.CONSTANT))
        if mat_type == MaterialType.CONSTANT:
            return ConstantMaterialConfig(**data)
        elif mat_type == MaterialType.TABULATED:
            return TabulatedMaterialConfig(**data)
        elif mat_type == MaterialType.CARBON_STEEL:
            return CarbonSteelConfig(**data)
        else:
            raise ValueError(f"Unknown material type: {mat_type}")


@dataclass(kw_only=True)
class ConstantMaterialConfig(MaterialConfig):
    conductivity: float  # W/(m·K)
    specific_heat: float  # J/(kg·K)

    @property
    def type(self) -> MaterialType:
        return MaterialType.CONSTANT

    def create(self) -> Material:
        return ConstantPropertyMaterial(
            conductivity=self.conductivity,
            specific_heat=self.specific_heat,
            **self._common(),
        )

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({"conductivity": self.conductivity, "specific_heat": self.specific_heat})
        return base


@dataclass(kw_only=True)
class TabulatedMaterialConfig(MaterialConfig):
    temperatures: List[float] = field(default_factory=list)  # K
    conductivities: List[float] = field(default_factory=list)
    specific_heats: List[float] = field(default_factory=list)

    @property
    def type(self) -> MaterialType:
        return MaterialType.TABULATED

    def create(self) -> Material:
        return TabulatedMaterial(
            temperatures_K=np.asarray(self.temperatures, dtype=np.float64),
            conductivities=np.asarray(self.conductivities, dtype=np.float64),
            specific_heats=np.asarray(self.specific_heats, dtype=np.float64),
            **self._common(),
        )

    def to_dict(self) -> Dict[str, Any]:
        base = super().to_dict()
        base.update({
            "temperatures": list(self.temperatures),
            "conductivities": list(self.conductivities),
            "specific_heats": list(self.specific_heats),
        })
        return base


@dataclass(kw_only=True)
class CarbonSteelConfig(MaterialConfig):
    """Carbon steel with the EN 1993-1-2 property curves."""
    name: str = "Carbon Steel"
    density: float = 7850.0
    emissivity: float = 0.8
    melting_temperature: float = 1811.0
    latent_heat_fusion: float = 247_000.0
    vaporization_temperature: float = 3134.0
    latent_heat_vaporization: float = 6_090_000.0

    @property
    def type(self) -> MaterialType:
        return MaterialType.CARBON_STEEL

    def create(self) -> Material:
        return CarbonSteel(**self._common())


def _normalize(identifier: str) -> str:
    return identifier.strip().lower().replace("-", "_").replace(" ", "_")


class MaterialLibrary:
    """
    Manages the built-in furnace materials and resolves them by name or alias.
    """
    ALIASES: Dict[str, str] = {
        "steel": "Carbon Steel",
        "carbon_steel": "Carbon Steel",
        "stainless": "Stainless Steel",
        "stainless_steel": "Stainless Steel",
        "aluminum": "Aluminum",
        "aluminium": "Aluminum",
    }

    def __init__(self) -> None:
        self.materials: Dict[str, MaterialConfig] = {}
        self._init_defaults()

    def _init_defaults(self) -> None:
        self.add_material(CarbonSteelConfig(description="Carbon steel, EN 1993-1-2 k(T) and c_p(T)"))
        self.add_material(ConstantMaterialConfig(
            name="Stainless Steel",
            description="Austenitic stainless steel, constant properties",
            density=8000.0,
            conductivity=16.0,
            specific_heat=500.0,
            emissivity=0.7,
            melting_temperature=1673.0,
            latent_heat_fusion=247_000.0,
            vaporization_temperature=3000.0,
            latent_heat_vaporization=6_100_000.0,
        ))
        self.add_material(ConstantMaterialConfig(
            name="Aluminum",
            description="Pure aluminum, constant properties",
            density=2700.0,
            conductivity=237.0,
            specific_heat=900.0,
            emissivity=0.9,
            melting_temperature=933.0,
            latent_heat_fusion=397_000.0,
            vaporization_temperature=2792.0,
            latent_heat_vaporization=10_500_000.0,
        ))

    def add_material(self, material: MaterialConfig) -> None:
        """Add or update a material in the library."""
        self.materials[material.name] = material

    def get_material(self, name: str) -> Optional[MaterialConfig]:
        """Retrieve a material configuration by name or alias, None if unknown."""
        if name in self.materials:
            return self.materials[name]
        key = _normalize(name)
        for material_name, material in self.materials.items():
            if _normalize(material_name) == key:
                return material
        alias = self.ALIASES.get(key)
        return self.materials.get(alias) if alias else None

    def resolve(self, name: str) -> Material:
        """
        Build the FVM material for a name or alias.

        Raises:
            ValidationError: If the material is unknown.
        """
        material = self.get_material(name)
        if material is None:
            raise ValidationError("material", name, f"one of {self.get_names()}")
        logger.debug(f"Resolved material '{name}' -> '{material.name}' ({material.type.value})")
        return material.create()

    def get_names(self) -> List[str]:
        """List all material names in the library."""
        return list(self.materials.keys())
