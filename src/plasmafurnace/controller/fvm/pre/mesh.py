from __future__ import annotations

import logging
import math
from dataclasses import dataclass, asdict
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Dict, Optional

import numpy as np

from plasmafurnace.config import MAX_CELLS_PER_DIRECTION
from plasmafurnace.errors import ValidationError
from plasmafurnace.utils import cylindrical_to_cartesian

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * math.pi


class NeighbourKind(StrEnum):
    """What lies across a cell face."""
    AXIS = "axis"  # r = 0, zero-area face
    CELL = "cell"
    WALL = "wall"  # r = R
    BOTTOM = "bottom"  # z = 0
    TOP = "top"  # z = H


class Direction(StrEnum):
    RADIAL = "radial"
    ANGULAR = "angular"
    AXIAL = "axial"


@dataclass(frozen=True)
class Neighbour:
    """
    One face of a finite-volume cell.

    Attributes:
        kind: Type of the neighbour across the face.
        direction: Coordinate direction of the face normal.
        index: (i, j, k) of the neighbouring cell, None for non-CELL kinds.
        area: Face area in m² (0 for the axis).
        factor: Geometric conductance area/distance in m (0 for non-CELL kinds).
    """
    kind: NeighbourKind
    direction: Direction
    index: Optional[tuple[int, int, int]]
    area: float
    factor: float


class MeshPreset(StrEnum):
    """Resolution presets (nr x nz, axisymmetric)."""
    FAST = "fast"
    BALANCED = "balanced"
    HIGH = "high"

    @property
    def resolution(self) -> tuple[int, int]:
        return {
            MeshPreset.FAST: (50, 50),
            MeshPreset.BALANCED: (100, 100),
            MeshPreset.HIGH: (200, 200),
        }[self]


@dataclass(frozen=True)
class MeshInfo:
    """Summary statistics of a mesh."""
    nr: int
    ntheta: int
    nz: int
    radius: float
    height: float
    dr: float
    dtheta: float
    dz: float
    total_cells: int
    aspect_ratio: float
    min_cell_size: float
    max_cell_size: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CylindricalMesh:
    """
    Structured finite-volume mesh of a solid cylinder.

    Cell (i, j, k) spans r in [i*dr, (i+1)*dr], theta in [j*dtheta, (j+1)*dtheta]
    and z in [k*dz, (k+1)*dz]. The innermost ring touches the axis through a
    face of zero area, so the balance never evaluates 1/r at r = 0. The angular
    direction is periodic. ntheta == 1 gives the axisymmetric reduction.

    All geometric arrays have shape (nr, ntheta, nz) and are read-only.
    """

    def __init__(
        self,
        radius: float,
        height: float,
        nr: int,
        ntheta: int,
        nz: int,
    ) -> None:
        """
        Initialize the mesh and precompute its geometry.

        Args:
            radius: Furnace radius R in meters.
            height: Furnace height H in meters.
            nr: Number of radial cells.
            ntheta: Number of angular cells (1 = axisymmetric).
            nz: Number of axial cells.

        Raises:
            ValidationError: On non-positive dimensions or cell counts out of range.
        """
        for name, value in (("radius", radius), ("height", height)):
            if not (math.isfinite(value) and value > 0.0):
                raise ValidationError(name, value, "> 0")
        for name, value in (("nr", nr), ("ntheta", ntheta), ("nz", nz)):
            if int(value) != value or not 1 <= value <= MAX_CELLS_PER_DIRECTION:
                raise ValidationError(name, value, f"integer in [1, {MAX_CELLS_PER_DIRECTION}]")

        self.radius = float(radius)
        self.height = float(height)
        self.nr = int(nr)
        self.ntheta = int(ntheta)
        self.nz = int(nz)

        self.dr = self.radius / self.nr
        self.dtheta = TWO_PI / self.ntheta
        self.dz = self.height / self.nz

        self.r_centers = (np.arange(self.nr, dtype=np.float64) + 0.5) * self.dr
        self.theta_centers = (np.arange(self.ntheta, dtype=np.float64) + 0.5) * self.dtheta
        self.z_centers = (np.arange(self.nz, dtype=np.float64) + 0.5) * self.dz

        self._build_geometry()
        logger.debug(
            f"Mesh created: {self.nr}x{self.ntheta}x{self.nz} cells, "
            f"dr={self.dr:.4g} m, dtheta={self.dtheta:.4g} rad, dz={self.dz:.4g} m"
        )

    @classmethod
    def from_preset(
        cls,
        preset: MeshPreset,
        radius: float,
        height: float,
        ntheta: int = 1,
    ) -> CylindricalMesh:
        """Create a mesh from a resolution preset."""
        nr, nz = MeshPreset(preset).resolution
        return cls(radius=radius, height=height, nr=nr, ntheta=ntheta, nz=nz)

    def _build_geometry(self) -> None:
        """Precompute volumes, face conductance factors and boundary areas."""
        shape = self.shape
        r_c = self.r_centers[:, None, None]
        ones = np.ones(shape, dtype=np.float64)

        # V = r_c * dr * dtheta * dz (exact for an annular sector)
        self.volumes = ones * (r_c * self.dr * self.dtheta * self.dz)

        # Conductance factors towards the (+) neighbour in each direction
        r_outer_face = (np.arange(self.nr, dtype=np.float64) + 1.0) * self.dr
        radial = ones * (r_outer_face[:, None, None] * self.dtheta * self.dz / self.dr)
        radial[-1, :, :] = 0.0  # the wall is not a cell face
        self.radial_factors = radial

        if self.ntheta > 1:
            self.angular_factors = ones * (self.dr * self.dz / (r_c * self.dtheta))
        else:
            self.angular_factors = np.zeros(shape, dtype=np.float64)

        axial = ones * (r_c * self.dr * self.dtheta / self.dz)
        axial[:, :, -1] = 0.0
        self.axial_factors = axial

        # Exposed boundary area per cell (wall + bottom + top)
        cap_area = ones * (r_c * self.dr * self.dtheta)
        boundary = np.zeros(shape, dtype=np.float64)
        boundary[-1, :, :] += self.radius * self.dtheta * self.dz
        boundary[:, :, 0] += cap_area[:, :, 0]
        boundary[:, :, -1] += cap_area[:, :, -1]
        self.boundary_areas = boundary

        for arr in (self.volumes, self.radial_factors, self.angular_factors, self.axial_factors, self.boundary_areas):
            arr.setflags(write=False)

    # ---- Sizes ----

    @property
    def shape(self) -> tuple[int, int, int]:
        return self.nr, self.ntheta, self.nz

    @property
    def number_of_cells(self) -> int:
        return self.nr * self.ntheta * self.nz

    @property
    def is_axisymmetric(self) -> bool:
        return self.ntheta == 1

    @property
    def total_volume(self) -> float:
        return float(self.volumes.sum())

    # ---- Index / coordinate mapping ----

    def _check_index(self, i: int, j: int, k: int) -> None:
        if not (0 <= i < self.nr and 0 <= j < self.ntheta and 0 <= k < self.nz):
            raise IndexError(f"Cell index ({i}, {j}, {k}) out of range for mesh {self.shape}.")

    def flat_index(self, i: int, j: int, k: int) -> int:
        """Row-major (C-order) position of a cell in a flattened field."""
        self._check_index(i, j, k)
        return (i * self.ntheta + j) * self.nz + k

    def cell_center(self, i: int, j: int, k: int) -> tuple[float, float, float]:
        """
        Cylindrical coordinates of a cell center.

        Returns:
            (r, theta, z) in meters, radians, meters.
        """
        self._check_index(i, j, k)
        return float(self.r_centers[i]), float(self.theta_centers[j]), float(self.z_centers[k])

    def cell_index(self, r: float, theta: float, z: float) -> tuple[int, int, int]:
        """
        Index of the cell containing a point given in cylindrical coordinates.

        Theta is wrapped to [0, 2*pi). Points on the outer surface belong to the
        last cell in that direction.

        Raises:
            IndexError: If the point lies outside the furnace.
        """
        if not (0.0 <= r <= self.radius and 0.0 <= z <= self.height):
            raise IndexError(f"Point (r={r}, z={z}) lies outside the furnace.")
        i = min(int(r / self.dr), self.nr - 1)
        j = int((theta % TWO_PI) / self.dtheta) % self.ntheta
        k = min(int(z / self.dz), self.nz - 1)
        return i, j, k

    def cartesian_center(self, i: int, j: int, k: int) -> tuple[float, float, float]:
        """Cartesian (x, y, z) position of a cell center."""
        r, theta, z = self.cell_center(i, j, k)
        x, y, zz = cylindrical_to_cartesian(r, theta, z)
        return float(x), float(y), float(zz)

    def cartesian_centers(self) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64], npt.NDArray[np.float64]]:
        """Cartesian coordinates of all cell centers, each of shape (nr, ntheta, nz)."""
        r, theta, z = np.meshgrid(self.r_centers, self.theta_centers, self.z_centers, indexing="ij")
        return cylindrical_to_cartesian(r, theta, z)

    # ---- Topology ----

    def neighbours(self, i: int, j: int, k: int) -> list[Neighbour]:
        """
        Tagged list of the faces of cell (i, j, k).

        Radial faces are AXIS/CELL/WALL, axial faces are BOTTOM/CELL/TOP.
        Angular faces are periodic CELL entries and are omitted when ntheta == 1.
        """
        self._check_index(i, j, k)
        r_c = self.r_centers[i]
        out: list[Neighbour] = []

        # Radial
        if i == 0:
            out.append(Neighbour(NeighbourKind.AXIS, Direction.RADIAL, None, 0.0, 0.0))
        else:
            out.append(Neighbour(
                NeighbourKind.CELL, Direction.RADIAL, (i - 1, j, k),
                i * self.dr * self.dtheta * self.dz, float(self.radial_factors[i - 1, j, k]),
            ))
        if i == self.nr - 1:
            out.append(Neighbour(
                NeighbourKind.WALL, Direction.RADIAL, None, self.radius * self.dtheta * self.dz, 0.0
            ))
        else:
            out.append(Neighbour(
                NeighbourKind.CELL, Direction.RADIAL, (i + 1, j, k),
                (i + 1) * self.dr * self.dtheta * self.dz, float(self.radial_factors[i, j, k]),
            ))

        # Angular (periodic)
        if self.ntheta > 1:
            factor = float(self.angular_factors[i, j, k])
            area = self.dr * self.dz
            out.append(Neighbour(NeighbourKind.CELL, Direction.ANGULAR, (i, (j - 1) % self.ntheta, k), area, factor))
            out.append(Neighbour(NeighbourKind.CELL, Direction.ANGULAR, (i, (j + 1) % self.ntheta, k), area, factor))

        # Axial
        cap = r_c * self.dr * self.dtheta
        if k == 0:
            out.append(Neighbour(NeighbourKind.BOTTOM, Direction.AXIAL, None, cap, 0.0))
        else:
            out.append(Neighbour(NeighbourKind.CELL, Direction.AXIAL, (i, j, k - 1), cap, float(self.axial_factors[i, j, k - 1])))
        if k == self.nz - 1:
            out.append(Neighbour(NeighbourKind.TOP, Direction.AXIAL, None, cap, 0.0))
        else:
            out.append(Neighbour(NeighbourKind.CELL, Direction.AXIAL, (i, j, k + 1), cap, float(self.axial_factors[i, j, k])))

        return out

    def colour_groups(self) -> list[npt.NDArray[np.int64]]:
        """
        Partition the cells into classes with no two face-neighbours in the same class.

        Colour is the parity of i + j + k. With an odd periodic ring (ntheta >= 3)
        the seam j = ntheta - 1 touches j = 0 with equal parity, so the seam cells
        get two extra colours by the parity of i + k.

        Returns:
            List of flat (C-order) cell indices per colour, processed in order.
        """
        i, j, k = np.meshgrid(
            np.arange(self.nr), np.arange(self.ntheta), np.arange(self.nz), indexing="ij"
        )
        colour = (i + j + k) % 2
        if self.ntheta >= 3 and self.ntheta % 2 == 1:
            seam = j == self.ntheta - 1
            colour = np.where(seam, 2 + (i + k) % 2, colour)
        colour = colour.ravel()

        groups: list[npt.NDArray[np.int64]] = []
        for c in range(int(colour.max()) + 1):
            members = np.flatnonzero(colour == c).astype(np.int64)
            if members.size:
                groups.append(members)
        return groups

    def info(self) -> MeshInfo:
        """Summary statistics for logging and validation."""
        return MeshInfo(
            nr=self.nr,
            ntheta=self.ntheta,
            nz=self.nz,
            radius=self.radius,
            height=self.height,
            dr=self.dr,
            dtheta=self.dtheta,
            dz=self.dz,
            total_cells=self.number_of_cells,
            aspect_ratio=self.height / self.radius,
            min_cell_size=min(self.dr, self.dz),
            max_cell_size=max(self.dr, self.dz),
        )

    def __repr__(self) -> str:
        return (
            f"CylindricalMesh(radius={self.radius}, height={self.height}, "
            f"nr={self.nr}, ntheta={self.ntheta}, nz={self.nz})"
        )
