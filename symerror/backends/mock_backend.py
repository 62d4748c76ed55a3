"""
Mock backend for scripting solver answers and collecting constraints.

Every session answers with the configured ``result`` and ``reason``, serves
model values from ``model`` (array name to numeral, missing names read as
zero) and objective bounds from ``upper_bounds``. Everything the error
solver asks for is recorded in ``operations``.
"""
from typing import Any, Dict, List, Optional, Sequence

from .base import Backend, SolverSession
from ..expr import Array, Expr
from ..smtlib import SmtLibPrinter, benchmark


class MockSession(SolverSession):
    def __init__(self, backend: 'MockBackend', kind: str):
        self.backend = backend
        self.kind = kind
        self.constraints: List[Expr] = []
        self.negated: List[Expr] = []
        self.objectives: List[str] = []
        self.closed = False

    def add(self, constraint: Expr):
        self.constraints.append(constraint)
        self.backend._record("assert", constraint)

    def add_negated(self, expr: Expr):
        self.negated.append(expr)
        self.backend._record("assert-not", expr)

    def check(self) -> str:
        self.backend._record("check", self.kind)
        return self.backend.result

    def reason_unknown(self) -> str:
        return self.backend.reason

    def initial_value(self, array: Array):
        self.backend._record("eval", array.name)
        return self.backend.model.get(array.name, 0)

    def maximize(self, name: str) -> int:
        self.objectives.append(name)
        self.backend._record("maximize", name)
        return len(self.objectives) - 1

    def upper_bound(self, index: int):
        bound = self.backend.upper_bounds[index]
        if isinstance(bound, tuple):
            return bound
        return 0, bound, 0

    def close(self):
        self.closed = True
        self.backend._record("close", self.kind)


class MockBackend(Backend):
    def __init__(self, result: str = 'sat', reason: str = 'unknown',
                 model: Optional[Dict[str, Any]] = None,
                 upper_bounds: Optional[Sequence[Any]] = None):
        super().__init__()
        self.result = result
        self.reason = reason
        self.model = dict(model or {})
        self.upper_bounds = list(upper_bounds or [])
        self.operations = []
        self.sessions: List[MockSession] = []
        self.cache_clears = 0
        self.printer = SmtLibPrinter()

    def _record(self, op: str, *args):
        """Record operation"""
        self.operations.append((op, args))

    def Solver(self) -> MockSession:
        session = MockSession(self, 'solver')
        self.sessions.append(session)
        return session

    def Optimize(self) -> MockSession:
        session = MockSession(self, 'optimize')
        self.sessions.append(session)
        return session

    def set_timeout(self, milliseconds: int):
        super().set_timeout(milliseconds)
        self._record("timeout", milliseconds)

    def clear_construct_cache(self):
        self.cache_clears += 1

    def constraint_log(self, constraints: Sequence[Expr], expr: Expr) -> str:
        return benchmark(self.printer, constraints, expr)
