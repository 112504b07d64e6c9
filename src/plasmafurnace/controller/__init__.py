"""
The CONTROLLER layer runs simulations: it builds the numerical model from the
parameters, owns the live state and hands copies of the output back.
"""
