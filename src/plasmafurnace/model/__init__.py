"""
The MODEL layer contains pure data structures.
It has NO knowledge of the numerical engine's internals.
It deals with simulation input (parameters, materials) and output (results).
"""
