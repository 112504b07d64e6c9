"""
Simulation Parameters
=====================
Defines the configuration data structures for one furnace simulation.
These classes hold the PARAMETERS needed to build the FVM model and the solver.

Why is this file needed?
------------------------
1. Validation: Every range check happens here, before any heavy object is built,
   so an invalid run never starts.
2. Persistence: Each dataclass converts to and from plain dictionaries
   (``to_dict``/``from_dict``) for the orchestration layer.

Classes:
    FurnaceGeometry, MeshResolution, TorchParameters, BoundaryParameters,
    TimeControl, SolverSettings: Parameter groups.
    SimulationParameters: The complete bundle.
"""
from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

import numba as nb

from plasmafurnace import config
from plasmafurnace.controller.fvm.pre.mesh import MeshPreset
from plasmafurnace.controller.fvm.pre.sources import BoundaryConfig, PlasmaTorch
from plasmafurnace.controller.fvm.solvers.sor import LinearSolverKind, SweepOrdering
from plasmafurnace.errors import ValidationError

logger = logging.getLogger(__name__)


# ---- Validation helpers ----

def validate_positive(value: float, name: str) -> None:
    """Raise ValidationError unless value is finite and > 0."""
    if not (isinstance(value, numbers.Real) and math.isfinite(value) and value > 0):
        raise ValidationError(name, value, "> 0")


def validate_mesh_count(value: int, name: str) -> None:
    if not (isinstance(value, numbers.Integral) and 1 <= value <= config.MAX_CELLS_PER_DIRECTION):
        raise ValidationError(name, value, f"integer in [1, {config.MAX_CELLS_PER_DIRECTION}]")


# ---- Parameter groups ----

@dataclass
class FurnaceGeometry:
    radius: float = config.DEFAULT_RADIUS  # m
    height: float = config.DEFAULT_HEIGHT  # m

    def validate(self) -> None:
        validate_positive(self.radius, "geometry.radius")
        validate_positive(self.height, "geometry.height")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> FurnaceGeometry:
        return FurnaceGeometry(
            radius=data.get("radius", config.DEFAULT_RADIUS),
            height=data.get("height", config.DEFAULT_HEIGHT),
        )


@dataclass
class MeshResolution:
    nr: int = 20
    ntheta: int = 1
    nz: int = 40

    @classmethod
    def from_preset(cls, preset: MeshPreset, ntheta: int = 1) -> MeshResolution:
        nr, nz = MeshPreset(preset).resolution
        return cls(nr=nr, ntheta=ntheta, nz=nz)

    def validate(self) -> None:
        validate_mesh_count(self.nr, "mesh.nr")
        validate_mesh_count(self.ntheta, "mesh.ntheta")
        validate_mesh_count(self.nz, "mesh.nz")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> MeshResolution:
        if "preset" in data:
            return MeshResolution.from_preset(MeshPreset(data["preset"]), ntheta=data.get("ntheta", 1))
        return MeshResolution(nr=data.get("nr", 20), ntheta=data.get("ntheta", 1), nz=data.get("nz", 40))


@dataclass
class TorchParameters:
    """
    One plasma torch. Position in cylindrical coordinates (r, theta, z).
    """
    power: float = 150_000.0  # W
    efficiency: float = 0.8
    r: float = 0.0  # m
    theta: float = 0.0  # rad
    z: float = 1.0  # m
    sigma: float = 0.1  # m

    def to_torch(self) -> PlasmaTorch:
        return PlasmaTorch(
            power=self.power,
            efficiency=self.efficiency,
            r=self.r,
            theta=self.theta,
            z=self.z,
            sigma=self.sigma,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> TorchParameters:
        return TorchParameters(**data)


@dataclass
class BoundaryParameters:
    ambient_temperature: float = config.DEFAULT_AMBIENT_TEMPERATURE  # K
    convection_coefficient: float = config.DEFAULT_CONVECTION_COEFFICIENT  # W/(m²·K)
    emissivity: Optional[float] = None  # None = material emissivity

    @classmethod
    def adiabatic(cls, ambient_temperature: float = config.DEFAULT_AMBIENT_TEMPERATURE) -> BoundaryParameters:
        return cls(ambient_temperature=ambient_temperature, convection_coefficient=0.0, emissivity=0.0)

    def to_config(self) -> BoundaryConfig:
        return BoundaryConfig(
            ambient_temperature=self.ambient_temperature,
            convection_coefficient=self.convection_coefficient,
            emissivity=self.emissivity,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> BoundaryParameters:
        return BoundaryParameters(**data)


@dataclass
class TimeControl:
    total_time: float = config.DEFAULT_TOTAL_TIME  # s
    time_step: float = config.DEFAULT_TIME_STEP  # s
    output_interval: Optional[float] = None  # s, None = total_time / 100

    @property
    def effective_output_interval(self) -> float:
        """Interval between stored frames; at least 10 ms."""
        if self.output_interval is not None:
            return self.output_interval
        return max(self.total_time / config.DEFAULT_FRAME_COUNT, 0.01)

    def validate(self) -> None:
        validate_positive(self.total_time, "time.total_time")
        validate_positive(self.time_step, "time.time_step")
        if self.output_interval is not None:
            validate_positive(self.output_interval, "time.output_interval")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> TimeControl:
        return TimeControl(**data)


@dataclass
class SolverSettings:
    """
    Settings of the linear (SOR) and nonlinear (Picard) iterations.

    Attributes:
        relaxation_factor: SOR over-relaxation factor omega in (1, 2).
        tolerance: Relative residual |b - A·H|_inf / |b|_inf at which SOR stops.
        max_iterations: SOR sweep limit per linear solve.
        divergence_threshold: Relative residual treated as divergence.
        ordering: Red-black (parallel) or lexicographic (serial) sweeps.
        linear_solver: SOR, or a direct sparse solve for reference.
        max_picard_iterations: Coefficient updates per time step.
        picard_tolerance: Max temperature change in K ending the Picard loop.
        num_threads: numba thread count; None keeps numba's default.
        cfl_factor: Safety factor of the explicit stability estimate.
        max_step_halvings: How often a step rejected by the sanity check is
            retried as two half steps before the run fails.
    """
    relaxation_factor: float = config.DEFAULT_RELAXATION_FACTOR
    tolerance: float = config.DEFAULT_TOLERANCE
    max_iterations: int = config.DEFAULT_MAX_ITERATIONS
    divergence_threshold: float = config.DEFAULT_DIVERGENCE_THRESHOLD
    ordering: SweepOrdering = SweepOrdering.RED_BLACK
    linear_solver: LinearSolverKind = LinearSolverKind.SOR
    max_picard_iterations: int = config.DEFAULT_MAX_PICARD_ITERATIONS
    picard_tolerance: float = config.DEFAULT_PICARD_TOLERANCE
    num_threads: Optional[int] = None
    cfl_factor: float = config.DEFAULT_CFL_FACTOR
    max_step_halvings: int = config.DEFAULT_MAX_STEP_HALVINGS

    def validate(self) -> None:
        if not (math.isfinite(self.relaxation_factor) and 1.0 < self.relaxation_factor < 2.0):
            raise ValidationError("solver.relaxation_factor", self.relaxation_factor, "(1, 2)")
        validate_positive(self.tolerance, "solver.tolerance")
        if not (isinstance(self.max_iterations, numbers.Integral) and self.max_iterations >= 1):
            raise ValidationError("solver.max_iterations", self.max_iterations, "integer >= 1")
        if not (math.isfinite(self.divergence_threshold) and self.divergence_threshold > self.tolerance):
            raise ValidationError("solver.divergence_threshold", self.divergence_threshold, f"> tolerance ({self.tolerance})")
        if not (isinstance(self.max_picard_iterations, numbers.Integral) and self.max_picard_iterations >= 1):
            raise ValidationError("solver.max_picard_iterations", self.max_picard_iterations, "integer >= 1")
        validate_positive(self.picard_tolerance, "solver.picard_tolerance")
        if self.num_threads is not None and not (
            isinstance(self.num_threads, numbers.Integral) and 1 <= self.num_threads <= nb.config.NUMBA_NUM_THREADS
        ):
            raise ValidationError("solver.num_threads", self.num_threads, f"[1, {nb.config.NUMBA_NUM_THREADS}]")
        if not (math.isfinite(self.cfl_factor) and 0.0 < self.cfl_factor <= 1.0):
            raise ValidationError("solver.cfl_factor", self.cfl_factor, "(0, 1]")
        if not (isinstance(self.max_step_halvings, numbers.Integral) and self.max_step_halvings >= 0):
            raise ValidationError("solver.max_step_halvings", self.max_step_halvings, "integer >= 0")
        # Coerce enum values given as plain strings
        try:
            self.ordering = SweepOrdering(self.ordering)
        except ValueError:
            raise ValidationError("solver.ordering", self.ordering, str([o.value for o in SweepOrdering])) from None
        try:
            self.linear_solver = LinearSolverKind(self.linear_solver)
        except ValueError:
            raise ValidationError(
                "solver.linear_solver", self.linear_solver, str([s.value for s in LinearSolverKind])
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["ordering"] = SweepOrdering(self.ordering).value
        d["linear_solver"] = LinearSolverKind(self.linear_solver).value
        return d

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SolverSettings:
        data = dict(data)
        if "ordering" in data:
            data["ordering"] = SweepOrdering(data["ordering"])
        if "linear_solver" in data:
            data["linear_solver"] = LinearSolverKind(data["linear_solver"])
        return SolverSettings(**data)


@dataclass
class SimulationParameters:
    """
    The complete, validated input of one simulation run.
    """
    geometry: FurnaceGeometry = field(default_factory=FurnaceGeometry)
    mesh: MeshResolution = field(default_factory=MeshResolution)
    torches: List[TorchParameters] = field(default_factory=lambda: [TorchParameters()])
    material: str = "Carbon Steel"
    boundary: BoundaryParameters = field(default_factory=BoundaryParameters)
    time: TimeControl = field(default_factory=TimeControl)
    solver: SolverSettings = field(default_factory=SolverSettings)
    initial_temperature: float = config.DEFAULT_INITIAL_TEMPERATURE  # K

    def validate(self) -> None:
        """
        Check every parameter group.

        Material-dependent checks (initial temperature below T_vap, known
        material name) happen when the material is resolved.

        Raises:
            ValidationError: On the first invalid parameter.
        """
        self.geometry.validate()
        self.mesh.validate()
        if not self.torches:
            raise ValidationError("torches", 0, ">= 1 torch required")
        for i, torch in enumerate(self.torches):
            torch.to_torch().validate(self.geometry.radius, self.geometry.height, label=f"torch[{i}]")
        self.boundary.to_config().validate()
        self.time.validate()
        self.solver.validate()
        validate_positive(self.initial_temperature, "initial_temperature")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "geometry": self.geometry.to_dict(),
            "mesh": self.mesh.to_dict(),
            "torches": [t.to_dict() for t in self.torches],
            "material": self.material,
            "boundary": self.boundary.to_dict(),
            "time": self.time.to_dict(),
            "solver": self.solver.to_dict(),
            "initial_temperature": self.initial_temperature,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> SimulationParameters:
        return SimulationParameters(
            geometry=FurnaceGeometry.from_dict(data.get("geometry", {})),
            mesh=MeshResolution.from_dict(data.get("mesh", {})),
            torches=[TorchParameters.from_dict(t) for t in data.get("torches", [{}])],
            material=data.get("material", "Carbon Steel"),
            boundary=BoundaryParameters.from_dict(data.get("boundary", {})),
            time=TimeControl.from_dict(data.get("time", {})),
            solver=SolverSettings.from_dict(data.get("solver", {})),
            initial_temperature=data.get("initial_temperature", config.DEFAULT_INITIAL_TEMPERATURE),
        )
