"""
Error taxonomy for symcas.

Every error is fatal and raised synchronously. All passes are pure and
deterministic, so retrying without changing the input reproduces the
same failure.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "SymcasError",
    "UnregisteredDerivative",
    "NonTerminating",
    "UnknownLinearity",
    "UnsupportedMassMatrix",
    "SingularSymbolicFactorization",
    "ShapeMismatch",
    "RegistryFrozen",
]


class SymcasError(Exception):
    """Base class for all symcas errors.

    Only `message` is positional. Any keyword arguments are kept as context
    (operator, expression, index, ...) and appended to the rendered message.
    """

    default_message = "symbolic computation failed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        message = self.message or self.default_message
        if not self.context:
            return message
        details = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
        return f"{message} ({details})"


class UnregisteredDerivative(SymcasError):
    """No derivative rule is registered for an operator."""

    default_message = "no derivative rule registered for operator"


class NonTerminating(SymcasError):
    """Derivative expansion did not reach a fixpoint within its budget."""

    default_message = "derivative expansion did not terminate"


class UnknownLinearity(SymcasError):
    """Hessian sparsity analysis met an operator of unknown linearity."""

    default_message = "function of unknown linearity used"


class UnsupportedMassMatrix(SymcasError):
    """A left-hand side is neither 0 nor the first derivative of one state."""

    default_message = "only semi-explicit mass matrices are supported"


class SingularSymbolicFactorization(SymcasError):
    """Symbolic LU met a structurally zero pivot."""

    default_message = "zero pivot in symbolic LU factorization"


class ShapeMismatch(SymcasError):
    """Argument or output shape is inconsistent with the declared variables."""

    default_message = "shape mismatch"


class RegistryFrozen(SymcasError):
    """Attempt to register an operator into a frozen registry."""

    default_message = "operator registry is frozen; register on a copy()"
