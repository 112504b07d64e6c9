"""Model assembly, the live simulation state and derived metrics."""
