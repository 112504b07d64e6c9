"""
Plasma furnace thermal engine.

Computes the time-evolving 3-D temperature and phase field inside a
cylindrical furnace heated by plasma torches.
"""
