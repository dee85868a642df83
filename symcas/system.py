"""
Equation systems and the per-system derivative cache.
"""

from __future__ import annotations

import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional, Sequence, Tuple

from symcas.expr import Equation, Expr, Role, Symbol, ordered_symbols
from symcas.logging import logger


@dataclass(frozen=True, eq=False)
class EquationSystem:
    """
    Immutable system of equations in one independent variable.

    Systems compare and hash by identity: two structurally equal systems
    still own separate cache entries.
    """

    equations: Tuple[Equation, ...]
    iv: Symbol
    states: Tuple[Symbol, ...]
    parameters: Tuple[Symbol, ...] = ()
    name: str = "system"

    def __post_init__(self):
        for eq in self.equations:
            if not isinstance(eq, Equation):
                raise TypeError(f"Expected Equation, got {type(eq).__name__}")
        if len(set(self.states)) != len(self.states):
            raise ValueError(f"Duplicate states in system {self.name}: {self.states}")

    def __repr__(self) -> str:
        return f"EquationSystem({self.name}, {len(self.equations)} equations, states={list(self.states)})"

    @property
    def rhss(self) -> Tuple[Expr, ...]:
        return tuple(eq.rhs for eq in self.equations)

    @property
    def state_index(self) -> Dict[Symbol, int]:
        return {s: i for i, s in enumerate(self.states)}


def equation_system(
    equations: Sequence[Equation],
    iv: Symbol,
    states: Optional[Sequence[Symbol]] = None,
    parameters: Optional[Sequence[Symbol]] = None,
    name: str = "system",
) -> EquationSystem:
    """
    Build an EquationSystem from pre-constructed equations.

    States and parameters default to the STATE and PARAMETER symbols of the
    equations in order of first appearance.
    """
    equations = tuple(equations)
    if states is None or parameters is None:
        found = ordered_symbols(e for eq in equations for e in (eq.lhs, eq.rhs))
        if states is None:
            states = [s for s in found if s.role == Role.STATE]
        if parameters is None:
            parameters = [s for s in found if s.role == Role.PARAMETER]
    return EquationSystem(equations, iv, tuple(states), tuple(parameters), name)


class DerivativeCache:
    """
    Write-once cache of derived artifacts, keyed by system identity.

    Entries live as long as their system. Concurrent callers may both
    compute an entry; the first one stored wins and every caller gets it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._store: "weakref.WeakKeyDictionary[EquationSystem, Dict[Hashable, Any]]" = weakref.WeakKeyDictionary()

    def get_or_compute(self, system: EquationSystem, key: Hashable, compute: Callable[[], Any]) -> Any:
        with self._lock:
            entries = self._store.get(system)
            if entries is not None and key in entries:
                return entries[key]
        value = compute()
        with self._lock:
            stored = self._store.setdefault(system, {}).setdefault(key, value)
        if stored is value:
            logger.debug("cached %s for %s", key, system.name)
        return stored

    def contains(self, system: EquationSystem, key: Hashable) -> bool:
        with self._lock:
            entries = self._store.get(system)
            return entries is not None and key in entries

    def peek(self, system: EquationSystem, key: Hashable) -> Optional[Any]:
        with self._lock:
            entries = self._store.get(system)
            return None if entries is None else entries.get(key)


DEFAULT_CACHE = DerivativeCache()
