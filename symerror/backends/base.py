"""
Base backend implementation.

A backend is the solver capability the error solver talks to: it opens one
session per query, applies the shared timeout, decodes numerals and owns
the expression-construction cache.
"""
from fractions import Fraction
from typing import Any, Optional, Sequence, Tuple

from ..expr import Array, Expr
from ..smtlib import UINT_MAX


class SolverSession:
    """A solver instance used for exactly one query."""

    def add(self, constraint: Expr):
        raise NotImplementedError

    def add_negated(self, expr: Expr):
        raise NotImplementedError

    def check(self) -> str:
        """Returns 'sat', 'unsat' or 'unknown'"""
        raise NotImplementedError

    def reason_unknown(self) -> str:
        raise NotImplementedError

    def initial_value(self, array: Array) -> Any:
        """Model numeral of the initial read of ``array``"""
        raise NotImplementedError

    def maximize(self, name: str) -> int:
        """Add a real-valued objective; returns its index"""
        raise NotImplementedError

    def upper_bound(self, index: int) -> Tuple[Any, Any, Any]:
        """(infinity coefficient, bound, epsilon coefficient) of an objective"""
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class Backend:
    def __init__(self):
        self.timeout_ms = UINT_MAX

    def set_timeout(self, milliseconds: int):
        self.timeout_ms = milliseconds

    def Solver(self) -> SolverSession:
        raise NotImplementedError

    def Optimize(self) -> SolverSession:
        raise NotImplementedError

    def clear_construct_cache(self):
        pass

    def constraint_log(self, constraints: Sequence[Expr], expr: Expr) -> str:
        raise NotImplementedError

    def numeral_int(self, numeral) -> Optional[int]:
        """Exact integer value of a numeral, or None"""
        if isinstance(numeral, bool):
            return int(numeral)
        if isinstance(numeral, int):
            return numeral
        if isinstance(numeral, Fraction) and numeral.denominator == 1:
            return numeral.numerator
        return None

    def numeral_fraction(self, numeral) -> Optional[Tuple[int, int]]:
        """(numerator, denominator) of a rational numeral, or None"""
        if isinstance(numeral, (int, Fraction)):
            value = Fraction(numeral)
            return value.numerator, value.denominator
        return None
