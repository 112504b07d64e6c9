"""
FVM Solver Engine
=================
The core implementation of the furnace heat transfer analysis.

Why is this file needed?
------------------------
1. Physics: It implements the enthalpy form of the heat equation with
   melting and vaporization plateaus.
2. Time-Stepping: It manages the theta-weighted (Crank-Nicolson) loop (t=0 to t=End).
3. Linear Algebra: It solves each step with red-black SOR (numba) or a
   direct sparse solve.

Note: This package is pure Python/NumPy/Numba and performs no I/O.
"""
