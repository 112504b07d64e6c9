"""
Tests for the parameter dataclasses.

Tests:
- Defaults and validation of each parameter group
- to_dict / from_dict of the complete bundle
- Enum coercion and presets
"""

import math

import numba as nb
import pytest

from plasmafurnace.controller.fvm.pre.mesh import MeshPreset
from plasmafurnace.controller.fvm.solvers.sor import LinearSolverKind, SweepOrdering
from plasmafurnace.errors import ValidationError
from plasmafurnace.model.parameters import (
    BoundaryParameters, FurnaceGeometry, MeshResolution, SimulationParameters,
    SolverSettings, TimeControl, TorchParameters,
)


class TestDefaults:
    """Tests for the default parameter values."""

    def test_default_bundle_is_valid(self):
        SimulationParameters().validate()

    def test_default_torch(self):
        torch = TorchParameters()
        assert (torch.power, torch.efficiency, torch.sigma) == (150_000.0, 0.8, 0.1)

    def test_output_interval_defaults_to_hundred_frames(self):
        assert TimeControl(total_time=60.0).effective_output_interval == pytest.approx(0.6)

    def test_output_interval_has_a_floor(self):
        assert TimeControl(total_time=0.5, time_step=0.001).effective_output_interval == 0.01

    def test_adiabatic_boundary(self):
        config = BoundaryParameters.adiabatic().to_config()
        assert config.convection_coefficient == 0.0 and config.emissivity == 0.0

    def test_mesh_from_preset(self):
        resolution = MeshResolution.from_preset(MeshPreset.BALANCED)
        assert (resolution.nr, resolution.ntheta, resolution.nz) == (100, 1, 100)


class TestValidation:
    """Tests for parameter validation."""

    @pytest.mark.parametrize("geometry", [
        FurnaceGeometry(radius=0.0),
        FurnaceGeometry(height=-2.0),
        FurnaceGeometry(radius=math.nan),
    ])
    def test_geometry(self, geometry):
        with pytest.raises(ValidationError):
            geometry.validate()

    @pytest.mark.parametrize("mesh", [
        MeshResolution(nr=0),
        MeshResolution(ntheta=1001),
        MeshResolution(nz=2.5),
    ])
    def test_mesh(self, mesh):
        with pytest.raises(ValidationError):
            mesh.validate()

    @pytest.mark.parametrize("settings", [
        SolverSettings(relaxation_factor=0.0),
        SolverSettings(relaxation_factor=1.0),
        SolverSettings(relaxation_factor=0.8),
        SolverSettings(relaxation_factor=2.0),
        SolverSettings(tolerance=-1e-8),
        SolverSettings(max_iterations=0),
        SolverSettings(max_iterations=2.5),
        SolverSettings(divergence_threshold=1e-9),
        SolverSettings(max_picard_iterations=0),
        SolverSettings(picard_tolerance=0.0),
        SolverSettings(num_threads=0),
        SolverSettings(num_threads=nb.config.NUMBA_NUM_THREADS + 1),
        SolverSettings(cfl_factor=0.0),
        SolverSettings(max_step_halvings=-1),
        SolverSettings(max_step_halvings=1.5),
        SolverSettings(ordering="zigzag"),
        SolverSettings(linear_solver="cholesky"),
    ])
    def test_solver_settings(self, settings):
        with pytest.raises(ValidationError):
            settings.validate()

    def test_error_carries_context(self):
        with pytest.raises(ValidationError) as exc_info:
            SolverSettings(relaxation_factor=2.0).validate()
        error = exc_info.value
        assert error.parameter == "solver.relaxation_factor"
        assert error.value == 2.0
        assert error.expected == "(1, 2)"

    def test_torch_outside_furnace(self):
        params = SimulationParameters(
            geometry=FurnaceGeometry(radius=1.0, height=2.0),
            torches=[TorchParameters(), TorchParameters(z=2.5)],
        )
        with pytest.raises(ValidationError) as exc_info:
            params.validate()
        assert exc_info.value.parameter == "torch[1].z"

    def test_enum_strings_are_coerced(self):
        settings = SolverSettings(ordering="lexicographic", linear_solver="direct")
        settings.validate()
        assert settings.ordering is SweepOrdering.LEXICOGRAPHIC
        assert settings.linear_solver is LinearSolverKind.DIRECT


class TestSerialization:
    """Tests for to_dict / from_dict."""

    def test_round_trip(self):
        params = SimulationParameters(
            geometry=FurnaceGeometry(radius=1.5, height=3.0),
            mesh=MeshResolution(nr=12, ntheta=4, nz=24),
            torches=[TorchParameters(power=1.0e5, r=0.5, theta=1.0), TorchParameters(z=1.5)],
            material="Stainless Steel",
            boundary=BoundaryParameters(ambient_temperature=310.0, convection_coefficient=25.0, emissivity=0.4),
            time=TimeControl(total_time=120.0, time_step=1.0, output_interval=5.0),
            solver=SolverSettings(relaxation_factor=1.2, ordering=SweepOrdering.LEXICOGRAPHIC, num_threads=1),
            initial_temperature=350.0,
        )
        data = params.to_dict()
        assert data["solver"]["ordering"] == "lexicographic"
        assert SimulationParameters.from_dict(data) == params

    def test_from_empty_dict_gives_defaults(self):
        assert SimulationParameters.from_dict({}) == SimulationParameters()

    def test_mesh_preset_in_dict(self):
        mesh = MeshResolution.from_dict({"preset": "fast", "ntheta": 4})
        assert (mesh.nr, mesh.ntheta, mesh.nz) == (50, 4, 50)
