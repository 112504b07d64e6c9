"""
Tests for the plasma torch heat sources and the boundary losses.

Tests:
- Gaussian torch profile
- Superposition of several torches
- Radiative + convective boundary flux
- Torch and boundary validation
"""

import math

import numpy as np
import pytest

from plasmafurnace.config import STEFAN_BOLTZMANN
from plasmafurnace.controller.fvm.pre.sources import BoundaryConfig, PlasmaSourceModel, PlasmaTorch
from plasmafurnace.errors import ValidationError


# =============================================================================
# Torch profile
# =============================================================================

class TestPlasmaTorch:
    """Tests for a single Gaussian torch."""

    def test_peak_value(self):
        torch = PlasmaTorch(power=1.0e5, efficiency=0.8, r=0.0, theta=0.0, z=1.0, sigma=0.1)
        assert torch.peak_heat_generation == pytest.approx(1.0e5 * 0.8 / (2.0 * math.pi * 0.01))
        q = torch.heat_generation(np.array([0.0]), np.array([0.0]), np.array([1.0]))
        assert q[0] == pytest.approx(torch.peak_heat_generation)

    def test_decays_with_distance(self):
        torch = PlasmaTorch(power=1.0e5, efficiency=1.0, r=0.0, theta=0.0, z=0.0, sigma=0.2)
        z = np.array([0.0, 0.2, 0.4])
        q = torch.heat_generation(np.zeros(3), np.zeros(3), z)
        assert q[1] / q[0] == pytest.approx(math.exp(-0.5))
        assert q[2] < q[1] < q[0]

    def test_uses_full_3d_distance(self):
        """A torch off the axis heats its own side of the furnace."""
        torch = PlasmaTorch(power=1.0e5, efficiency=1.0, r=0.3, theta=math.pi / 2, z=0.5, sigma=0.1)
        near = torch.heat_generation(np.array([0.0]), np.array([0.3]), np.array([0.5]))
        far = torch.heat_generation(np.array([0.0]), np.array([-0.3]), np.array([0.5]))
        assert near[0] == pytest.approx(torch.peak_heat_generation)
        assert far[0] < 1e-6 * near[0]

    def test_cartesian_position(self):
        torch = PlasmaTorch(power=1.0, efficiency=1.0, r=0.5, theta=math.pi, z=0.2, sigma=0.1)
        assert torch.cartesian_position == pytest.approx((-0.5, 0.0, 0.2), abs=1e-12)

    @pytest.mark.parametrize("overrides, parameter", [
        ({"power": -1.0}, "torch.power"),
        ({"efficiency": 0.0}, "torch.efficiency"),
        ({"efficiency": 1.2}, "torch.efficiency"),
        ({"r": 1.5}, "torch.r"),
        ({"z": -0.1}, "torch.z"),
        ({"sigma": 0.0}, "torch.sigma"),
        ({"theta": math.inf}, "torch.theta"),
    ])
    def test_validation(self, overrides, parameter):
        args = dict(power=1.0e5, efficiency=0.8, r=0.0, theta=0.0, z=1.0, sigma=0.1)
        args.update(overrides)
        with pytest.raises(ValidationError) as exc_info:
            PlasmaTorch(**args).validate(radius=1.0, height=2.0)
        assert exc_info.value.parameter == parameter


# =============================================================================
# Source model
# =============================================================================

class TestPlasmaSourceModel:
    """Tests for the combined source model."""

    def test_superposition(self, ring_mesh, steel):
        """Heat generation of two torches is the sum of each alone."""
        a = PlasmaTorch(power=1.0e5, efficiency=0.9, r=0.2, theta=0.3, z=0.4, sigma=0.1)
        b = PlasmaTorch(power=5.0e4, efficiency=0.7, r=0.4, theta=2.5, z=0.7, sigma=0.15)
        boundary = BoundaryConfig()
        both = PlasmaSourceModel([a, b], boundary, steel).heat_generation(ring_mesh, 0.0)
        only_a = PlasmaSourceModel([a], boundary, steel).heat_generation(ring_mesh, 0.0)
        only_b = PlasmaSourceModel([b], boundary, steel).heat_generation(ring_mesh, 0.0)
        np.testing.assert_allclose(both, only_a + only_b, rtol=1e-14)

    def test_contributions_shape(self, ring_mesh, steel, axis_torch):
        model = PlasmaSourceModel([axis_torch, axis_torch], BoundaryConfig(), steel)
        assert model.torch_contributions(ring_mesh).shape == (2, 5, 8, 8)
        assert model.total_power == pytest.approx(2.0e4)

    def test_heat_generation_is_cached_and_read_only(self, small_mesh, steel, axis_torch):
        model = PlasmaSourceModel([axis_torch], BoundaryConfig(), steel)
        first = model.heat_generation(small_mesh, 0.0)
        assert model.heat_generation(small_mesh, 5.0) is first
        with pytest.raises(ValueError):
            first[0, 0, 0] = 0.0

    def test_axis_torch_is_axisymmetric(self, ring_mesh, steel, axis_torch):
        Q = PlasmaSourceModel([axis_torch], BoundaryConfig(), steel).heat_generation(ring_mesh, 0.0)
        np.testing.assert_allclose(Q, np.broadcast_to(Q[:, :1, :], Q.shape), rtol=1e-12)


# =============================================================================
# Boundary losses
# =============================================================================

class TestBoundary:
    """Tests for boundary heat losses."""

    def test_flux_formula(self, steel):
        boundary = BoundaryConfig(ambient_temperature=300.0, convection_coefficient=15.0, emissivity=0.6)
        model = PlasmaSourceModel([], boundary, steel)
        T = np.array([1000.0])
        expected = 0.6 * STEFAN_BOLTZMANN * (1000.0 ** 4 - 300.0 ** 4) + 15.0 * 700.0
        assert model.boundary_flux(T)[0] == pytest.approx(expected)

    def test_material_emissivity_is_default(self, steel):
        assert PlasmaSourceModel([], BoundaryConfig(), steel).emissivity == steel.emissivity

    def test_no_loss_at_ambient(self, small_mesh, steel):
        model = PlasmaSourceModel([], BoundaryConfig(ambient_temperature=400.0), steel)
        loss = model.boundary_heat_loss(np.full(small_mesh.shape, 400.0), small_mesh)
        assert np.all(loss == 0.0)

    def test_loss_only_on_boundary_cells(self, small_mesh, steel):
        model = PlasmaSourceModel([], BoundaryConfig(), steel)
        loss = model.boundary_heat_loss(np.full(small_mesh.shape, 800.0), small_mesh)
        assert np.all(loss[:-1, :, 1:-1] == 0.0)
        assert np.all(loss[-1] > 0.0)

    def test_adiabatic(self, small_mesh, steel):
        boundary = BoundaryConfig.adiabatic()
        assert boundary.is_adiabatic(steel)
        loss = PlasmaSourceModel([], boundary, steel).boundary_heat_loss(np.full(small_mesh.shape, 2000.0), small_mesh)
        assert np.all(loss == 0.0)

    @pytest.mark.parametrize("kwargs", [
        {"ambient_temperature": -1.0},
        {"convection_coefficient": -5.0},
        {"emissivity": 1.1},
    ])
    def test_validation(self, kwargs):
        with pytest.raises(ValidationError):
            BoundaryConfig(**kwargs).validate()
