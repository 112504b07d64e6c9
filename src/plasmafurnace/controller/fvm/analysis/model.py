from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from plasmafurnace.controller.fvm.pre.material import Material
    from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh
    from plasmafurnace.controller.fvm.pre.sources import SourceModel


class FurnaceModel:
    """
    Class represents the entire furnace heat transfer model.

    This class bundles the mesh, the material filling it and the heat sources
    acting on it. It is immutable in use; the evolving fields live in
    SimulationState.
    """
    def __init__(
        self,
        mesh: CylindricalMesh,
        material: Material,
        sources: SourceModel,
    ) -> None:
        """Initialize the FurnaceModel object."""
        self.mesh = mesh
        self.material = material
        self.sources = sources

    @property
    def number_of_cells(self) -> int:
        """Return the number of cells (unknowns) in the model."""
        return self.mesh.number_of_cells

    @property
    def temperature_ceiling(self) -> float:
        """Highest temperature a valid solution may reach (2*T_vap)."""
        return self.material.temperature_ceiling

