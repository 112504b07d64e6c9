"""
Configuration & Physical Constants
==================================
This module serves as the central registry for physical constants and the
default numerical settings of the furnace engine.

Why is this file needed?
------------------------
1. Abstraction: It prevents magic numbers (Stefan-Boltzmann constant, default
   relaxation factor, ...) scattered throughout the solver code.
2. Consistency: Parameter dataclasses in `plasmafurnace.model` take their
   defaults from here, so the engine and its callers agree on them.

Exports:
    STEFAN_BOLTZMANN (float): Stefan-Boltzmann constant in W/(m²·K⁴).
    DEFAULT_* : Default values for parameters and solver settings.
"""
from __future__ import annotations

from typing import Final

# Physical constants
STEFAN_BOLTZMANN: Final[float] = 5.670374419e-8  # W/(m²·K⁴)

# Reference temperature for property-based diagnostics (explicit stability limit)
REFERENCE_TEMPERATURE: Final[float] = 500.0  # K

# Temperatures above SANITY_CEILING_FACTOR * T_vap are treated as a blow-up
SANITY_CEILING_FACTOR: Final[float] = 2.0

# Furnace / environment defaults
DEFAULT_RADIUS: Final[float] = 1.0  # m
DEFAULT_HEIGHT: Final[float] = 2.0  # m
DEFAULT_INITIAL_TEMPERATURE: Final[float] = 298.15  # K
DEFAULT_AMBIENT_TEMPERATURE: Final[float] = 298.15  # K
DEFAULT_CONVECTION_COEFFICIENT: Final[float] = 10.0  # W/(m²·K)

# Time control defaults
DEFAULT_TOTAL_TIME: Final[float] = 60.0  # s
DEFAULT_TIME_STEP: Final[float] = 0.5  # s
DEFAULT_FRAME_COUNT: Final[int] = 100  # stored frames per run if no interval is given

# Solver defaults
DEFAULT_RELAXATION_FACTOR: Final[float] = 1.5
DEFAULT_TOLERANCE: Final[float] = 1e-8
DEFAULT_MAX_ITERATIONS: Final[int] = 2000
DEFAULT_DIVERGENCE_THRESHOLD: Final[float] = 1.0
DEFAULT_MAX_PICARD_ITERATIONS: Final[int] = 8
DEFAULT_PICARD_TOLERANCE: Final[float] = 1e-3  # K
DEFAULT_CFL_FACTOR: Final[float] = 0.5
DEFAULT_MAX_STEP_HALVINGS: Final[int] = 4  # retries of a rejected step as two half steps

# Enthalpy table resolution (samples over [0, 2 * T_vap])
ENTHALPY_TABLE_POINTS: Final[int] = 4001

# Mesh limits
MAX_CELLS_PER_DIRECTION: Final[int] = 1000
