"""
Error Taxonomy
==============
Exceptions and warnings raised by the furnace engine.

Classes:
    FurnaceSimulationError: Base class of all engine errors.
    ValidationError: A parameter violates its precondition; the run never starts.
    NumericalInstability: NaN/Inf or out-of-bound values; the run is failed.
    SolverStateError: An operation is not allowed in the solver's current state.
    ConvergenceWarning: SOR stopped at its iteration limit; the step was accepted.
"""
from __future__ import annotations

from typing import Any, Optional


class FurnaceSimulationError(Exception):
    """Base class for all errors raised by the furnace engine."""


class ValidationError(FurnaceSimulationError, ValueError):
    """
    Raised when an input parameter is outside of its valid range.

    Attributes:
        parameter: Name of the offending parameter.
        value: The value that was supplied.
        expected: Human-readable description of the valid range.
    """

    def __init__(self, parameter: str, value: Any, expected: str) -> None:
        self.parameter = parameter
        self.value = value
        self.expected = expected
        super().__init__(f"Invalid parameter: {parameter} = {value!r}, expected range: {expected}")


class NumericalInstability(FurnaceSimulationError, RuntimeError):
    """
    Raised when the solution blows up (NaN/Inf, divergence or out-of-bound temperature).

    Attributes:
        step: Index of the last step that was committed successfully.
        time: Simulation time of the last valid step in seconds.
        value: The offending value (temperature or residual norm).
        cell: (i, j, k) index of the offending cell, if known.
        reason: Short description of the failed check.
    """

    def __init__(
        self,
        step: int,
        time: float,
        value: float,
        reason: str,
        cell: Optional[tuple[int, int, int]] = None,
    ) -> None:
        self.step = step
        self.time = time
        self.value = value
        self.cell = cell
        self.reason = reason
        location = f" at cell {cell}" if cell is not None else ""
        super().__init__(
            f"Numerical instability after step {step} (t = {time:.3f} s): "
            f"{reason}{location}, value = {value!r}. "
            f"Consider a smaller time step or a coarser mesh."
        )


class SolverStateError(FurnaceSimulationError, RuntimeError):
    """Raised when the solver is asked to do something its current state forbids."""


class ConvergenceWarning(UserWarning):
    """
    SOR did not reach the requested tolerance within its iteration limit.

    The last iterate was accepted and the step proceeded.
    """

    def __init__(self, step: int, time: float, iterations: int, residual: float, tolerance: float) -> None:
        self.step = step
        self.time = time
        self.iterations = iterations
        self.residual = residual
        self.tolerance = tolerance
        super().__init__(
            f"SOR did not converge at step {step} (t = {time:.3f} s): "
            f"residual {residual:.3e} > tolerance {tolerance:.3e} after {iterations} iterations."
        )
