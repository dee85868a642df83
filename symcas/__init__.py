"""
Symcas - Symbolic Calculus for Differential-Equation Systems

A small compiler from symbolic equation systems to numeric callables:
exact differentiation, simplification, sparsity analysis, order lowering
and code generation.
"""

from beartype.claw import beartype_package

beartype_package(__name__)

__version__ = "0.1.0"

from symcas.errors import (
    NonTerminating,
    RegistryFrozen,
    ShapeMismatch,
    SingularSymbolicFactorization,
    SymcasError,
    UnknownLinearity,
    UnregisteredDerivative,
    UnsupportedMassMatrix,
)
from symcas.expr import (
    Equation,
    Expr,
    ExprKind,
    Role,
    Symbol,
    constant,
    equation,
    free_symbols,
    independent,
    parameter,
    state,
    substitute,
)
from symcas.registry import OperatorRegistry, builtin_registry
from symcas.differentiation import differentiate, expand_derivatives, gradient
from symcas.simplify import simplify
from symcas.sparsity import hessian_sparsity, jacobian_sparsity, is_linear
from symcas.system import DerivativeCache, EquationSystem
from symcas.calculators import (
    calculate_factorized_w,
    calculate_hessian,
    calculate_jacobian,
    calculate_massmatrix,
    calculate_tgrad,
    hessian,
    jacobian,
)
from symcas.lowering import ode_order_lowering
from symcas.codegen import build_function
from symcas.ode_function import ODEFunction, build_ode_function

__all__ = [
    "__version__",
    # Errors
    "SymcasError",
    "UnregisteredDerivative",
    "NonTerminating",
    "UnknownLinearity",
    "UnsupportedMassMatrix",
    "SingularSymbolicFactorization",
    "ShapeMismatch",
    "RegistryFrozen",
    # Expression model
    "Role",
    "Symbol",
    "Expr",
    "ExprKind",
    "Equation",
    "equation",
    "independent",
    "state",
    "parameter",
    "constant",
    "substitute",
    "free_symbols",
    # Operators
    "OperatorRegistry",
    "builtin_registry",
    # Passes
    "differentiate",
    "expand_derivatives",
    "gradient",
    "simplify",
    "jacobian_sparsity",
    "hessian_sparsity",
    "is_linear",
    # Systems
    "EquationSystem",
    "DerivativeCache",
    "jacobian",
    "hessian",
    "calculate_jacobian",
    "calculate_tgrad",
    "calculate_hessian",
    "calculate_massmatrix",
    "calculate_factorized_w",
    "ode_order_lowering",
    # Code generation
    "build_function",
    "ODEFunction",
    "build_ode_function",
]
