"""
Conversions from symcas expressions to other symbolic engines.

- casadi: SX expressions and casadi.Function objects
- sympy: SymPy expressions, for inspection and cross-checking
"""

from symcas.backends.casadi import casadi_function, to_casadi
from symcas.backends.sympy import matrix_to_sympy, to_sympy

__all__ = ["to_casadi", "casadi_function", "to_sympy", "matrix_to_sympy"]
