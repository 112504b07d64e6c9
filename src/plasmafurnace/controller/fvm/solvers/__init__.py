"""Time integration and the linear solvers."""
