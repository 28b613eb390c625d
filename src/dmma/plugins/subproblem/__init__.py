"""Subproblem solver plugins.

Subproblem solvers compute the next design of the optimization from the
current design, the function values and gradients, and the move-limit box.
"""
