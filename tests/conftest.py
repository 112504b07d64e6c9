"""
Shared test fixtures for the furnace engine tests.

This module provides:
- Small meshes and materials that keep the numba kernels fast
- A factory for solver + state pairs on the low-level API
- Parameter bundles for the control interface
"""

import math

import numpy as np
import pytest

from plasmafurnace.controller.fvm.analysis.model import FurnaceModel
from plasmafurnace.controller.fvm.analysis.state import SimulationState
from plasmafurnace.controller.fvm.pre.material import CarbonSteel, ConstantPropertyMaterial
from plasmafurnace.controller.fvm.pre.mesh import CylindricalMesh
from plasmafurnace.controller.fvm.pre.sources import BoundaryConfig, PlasmaSourceModel, PlasmaTorch
from plasmafurnace.controller.fvm.solvers.solver import Solver
from plasmafurnace.model.parameters import (
    BoundaryParameters, FurnaceGeometry, MeshResolution, SimulationParameters,
    SolverSettings, TimeControl, TorchParameters,
)


# =============================================================================
# Meshes & materials
# =============================================================================

@pytest.fixture
def small_mesh():
    """Axisymmetric 6 x 1 x 12 mesh of a 0.5 m x 1 m furnace."""
    return CylindricalMesh(radius=0.5, height=1.0, nr=6, ntheta=1, nz=12)


@pytest.fixture
def ring_mesh():
    """3-D mesh with eight angular sectors."""
    return CylindricalMesh(radius=0.5, height=1.0, nr=5, ntheta=8, nz=8)


@pytest.fixture
def steel():
    return CarbonSteel()


@pytest.fixture
def low_melt_material():
    """Constant-property material that melts quickly under a small torch."""
    return ConstantPropertyMaterial(
        name="Low Melt",
        density=1000.0,
        conductivity=1.0,
        specific_heat=100.0,
        emissivity=0.0,
        melting_temperature=400.0,
        latent_heat_fusion=1.0e4,
        vaporization_temperature=2000.0,
        latent_heat_vaporization=1.0e5,
    )


@pytest.fixture
def diffusive_material():
    """High-diffusivity material with a short explicit stability limit."""
    return ConstantPropertyMaterial(
        name="Diffusive",
        density=1000.0,
        conductivity=200.0,
        specific_heat=100.0,
        emissivity=0.5,
        melting_temperature=1500.0,
        latent_heat_fusion=2.0e5,
        vaporization_temperature=3000.0,
        latent_heat_vaporization=5.0e6,
    )


# =============================================================================
# Low-level solver factory
# =============================================================================

@pytest.fixture
def make_run():
    """
    Factory building (solver, state) for a mesh, material and torches.

    Usage: solver, state = make_run(mesh, material, torches, boundary=..., settings=...)
    """
    def _make(
        mesh,
        material,
        torches,
        boundary=None,
        settings=None,
        total_time=10.0,
        initial_temperature=300.0,
        progress_callback=None,
    ):
        boundary = boundary if boundary is not None else BoundaryConfig.adiabatic()
        sources = PlasmaSourceModel(torches=torches, boundary=boundary, material=material)
        model = FurnaceModel(mesh=mesh, material=material, sources=sources)
        solver = Solver(
            model=model,
            total_time=total_time,
            settings=settings or SolverSettings(tolerance=1e-11),
            progress_callback=progress_callback,
        )
        state = SimulationState(mesh, material, initial_temperature)
        return solver, state

    return _make


@pytest.fixture
def axis_torch():
    """Torch on the axis at mid-height of a 1 m tall furnace."""
    return PlasmaTorch(power=1.0e4, efficiency=1.0, r=0.0, theta=0.0, z=0.5, sigma=0.1)


# =============================================================================
# Control-interface parameters
# =============================================================================

@pytest.fixture
def fast_params():
    """A short, small run of the default steel furnace."""
    return SimulationParameters(
        geometry=FurnaceGeometry(radius=0.5, height=1.0),
        mesh=MeshResolution(nr=6, ntheta=1, nz=12),
        torches=[TorchParameters(power=5.0e4, efficiency=0.8, r=0.0, theta=0.0, z=0.5, sigma=0.1)],
        material="Carbon Steel",
        boundary=BoundaryParameters(),
        time=TimeControl(total_time=5.0, time_step=0.5, output_interval=1.0),
        solver=SolverSettings(),
        initial_temperature=298.15,
    )


@pytest.fixture
def cylinder_volume():
    def _volume(radius, height):
        return math.pi * radius ** 2 * height
    return _volume


@pytest.fixture
def rng():
    return np.random.default_rng(12345)
