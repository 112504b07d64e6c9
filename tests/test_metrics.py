"""
Tests for run metrics, progress events and logging setup.

Tests:
- TemperatureStats
- Energy and molten fraction helpers
- EnergyMonitor balance and the one-time warning
- ProgressEvent progress / to_dict
- setup_logging handlers
"""

import logging

import numpy as np
import pytest

from plasmafurnace.controller.fvm.analysis.metrics import (
    EnergyMonitor, TemperatureStats, molten_volume_fraction, total_energy
)
from plasmafurnace.errors import ConvergenceWarning
from plasmafurnace.logging_config import setup_logging
from plasmafurnace.model.results import ProgressEvent


# =============================================================================
# Field statistics
# =============================================================================

class TestTemperatureStats:
    """Tests for TemperatureStats."""

    def test_from_field(self):
        stats = TemperatureStats.from_field(np.array([[300.0, 500.0], [400.0, 600.0]]))
        assert (stats.min, stats.max, stats.mean) == (300.0, 600.0, 450.0)

    def test_dict_round_trip(self):
        stats = TemperatureStats(min=1.0, max=3.0, mean=2.0)
        assert TemperatureStats.from_dict(stats.to_dict()) == stats


class TestEnergyHelpers:
    """Tests for total_energy and molten_volume_fraction."""

    def test_total_energy(self):
        H = np.array([1.0e6, 2.0e6])
        V = np.array([0.5, 0.25])
        assert total_energy(H, V) == pytest.approx(1.0e6)

    def test_molten_fraction_is_volume_weighted(self):
        fraction = np.array([1.0, 0.0, 0.5])
        V = np.array([1.0, 2.0, 2.0])
        assert molten_volume_fraction(fraction, V) == pytest.approx(0.4)


# =============================================================================
# Energy monitor
# =============================================================================

class TestEnergyMonitor:
    """Tests for the global energy balance."""

    def test_balanced_steps(self):
        monitor = EnergyMonitor(1000.0)
        monitor.update(1050.0, energy_input=60.0, energy_loss=10.0)
        monitor.update(1100.0, energy_input=50.0, energy_loss=0.0)
        assert monitor.expected_energy == pytest.approx(1100.0)
        assert monitor.conservation_error == pytest.approx(0.0)
        assert monitor.to_dict()["energy_input"] == pytest.approx(110.0)

    def test_error_is_relative_to_initial_energy(self):
        monitor = EnergyMonitor(1000.0)
        monitor.update(1020.0, energy_input=0.0, energy_loss=0.0)
        assert monitor.conservation_error == pytest.approx(0.02)

    def test_warning_is_logged_once(self, caplog):
        monitor = EnergyMonitor(1000.0)
        with caplog.at_level(logging.WARNING, logger="plasmafurnace"):
            monitor.update(1200.0, energy_input=0.0, energy_loss=0.0)
            monitor.update(1300.0, energy_input=0.0, energy_loss=0.0)
        warnings = [r for r in caplog.records if "conservation error" in r.getMessage()]
        assert len(warnings) == 1
        assert monitor.conservation_error == pytest.approx(0.3)

    def test_zero_initial_energy(self):
        monitor = EnergyMonitor(0.0)
        monitor.update(10.0, energy_input=10.0, energy_loss=0.0)
        assert monitor.conservation_error == 0.0


# =============================================================================
# Progress events
# =============================================================================

class TestProgressEvent:
    """Tests for ProgressEvent."""

    @pytest.fixture
    def stats(self):
        return TemperatureStats(min=300.0, max=900.0, mean=400.0)

    def test_progress(self, stats):
        event = ProgressEvent(current_time=15.0, total_time=60.0, step_index=30, temperature_stats=stats)
        assert event.progress == pytest.approx(0.25)
        assert event.percentage == 25

    def test_progress_is_clamped(self, stats):
        event = ProgressEvent(current_time=61.0, total_time=60.0, step_index=1, temperature_stats=stats)
        assert event.progress == 1.0

    def test_to_dict(self, stats):
        warning = ConvergenceWarning(step=3, time=1.5, iterations=10, residual=1e-3, tolerance=1e-8)
        data = ProgressEvent(
            current_time=1.5, total_time=60.0, step_index=3, temperature_stats=stats,
            sor_iterations=10, residual=1e-3, status="running", warning=warning,
        ).to_dict()
        assert data["temperature_stats"] == {"min": 300.0, "max": 900.0, "mean": 400.0}
        assert data["status"] == "running"
        assert data["warning"].startswith("SOR did not converge at step 3")

    def test_is_frozen(self, stats):
        event = ProgressEvent(current_time=0.0, total_time=1.0, step_index=0, temperature_stats=stats)
        with pytest.raises(AttributeError):
            event.step_index = 5


# =============================================================================
# Logging
# =============================================================================

class TestLogging:
    """Tests for setup_logging."""

    @pytest.fixture
    def package_logger(self):
        logger = logging.getLogger("plasmafurnace")
        saved = (logger.level, list(logger.handlers))
        yield logger
        logger.setLevel(saved[0])
        logger.handlers[:] = saved[1]

    def test_console_handler(self, package_logger):
        logger = setup_logging(logging.DEBUG)
        assert logger is package_logger
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_repeated_setup_does_not_duplicate(self, package_logger):
        setup_logging()
        setup_logging()
        assert len(package_logger.handlers) == 1

    def test_file_handler(self, package_logger, tmp_path):
        log_file = tmp_path / "run.log"
        setup_logging(log_file=str(log_file))
        assert len(package_logger.handlers) == 2
        for handler in package_logger.handlers:
            handler.flush()
        package_logger.handlers[1].close()
        assert "Logging initialized." in log_file.read_text(encoding="utf-8")
