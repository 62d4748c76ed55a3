"""
Bound and optimization queries over error expressions.

Every question is answered by refutation: the solver is asked whether the
path constraints together with the negated goal are satisfiable. A model,
when there is one, is a counterexample and is decoded into one 8-byte
little-endian buffer per requested array. Optimization queries maximize
one real-valued objective per array instead.
"""
import logging
import struct
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from .assignment import Assignment, find_symbolic_objects
from .backends import Backend, UINT_MAX, default_backend
from .errors import ContractViolation
from .expr import Array, ConstantExpr, EqExpr, Expr
from .solver_stats import SolverStats

logger = logging.getLogger(__name__)

MASK64 = (1 << 64) - 1


class SolverRunStatus(Enum):
    SUCCESS_SOLVABLE = "solvable"
    SUCCESS_UNSOLVABLE = "unsolvable"
    TIMEOUT = "timeout"
    FAILURE = "failure"


@dataclass(frozen=True)
class Query:
    constraints: Tuple[Expr, ...]
    expr: Expr

    def __post_init__(self):
        object.__setattr__(self, 'constraints', tuple(self.constraints))

    def with_expr(self, expr: Expr) -> 'Query':
        return replace(self, expr=expr)

    def with_false(self) -> 'Query':
        return self.with_expr(ConstantExpr.false())

    def negate_expr(self) -> 'Query':
        return self.with_expr(EqExpr.create(ConstantExpr.false(), self.expr))


@dataclass
class OptimalValues:
    """Upper bounds of the objectives, one entry per object.

    ``infinity`` and ``epsilon`` flag bounds the solver reported as
    unbounded or as a strict supremum; ``values`` holds the finite part.
    """
    values: List[float] = field(default_factory=list)
    infinity: List[bool] = field(default_factory=list)
    epsilon: List[bool] = field(default_factory=list)

    def __len__(self):
        return len(self.values)

    def is_bounded(self, i: int) -> bool:
        return not self.infinity[i]


def timeout_to_milliseconds(seconds: float) -> int:
    """Solver timeout in milliseconds; 0 means no timeout."""
    if seconds < 0:
        raise ValueError(f"timeout must be non-negative, got {seconds}")
    milliseconds = int(seconds * 1000 + 0.5)
    if milliseconds == 0:
        return UINT_MAX
    return milliseconds


def numeral_to_bytes(backend: Backend, numeral) -> bytes:
    """8 raw little-endian bytes of a model numeral.

    Integers are taken modulo 2**64; rationals become the IEEE double
    nearest to their value.
    """
    value = backend.numeral_int(numeral)
    if value is not None:
        return (value & MASK64).to_bytes(8, 'little')
    fraction = backend.numeral_fraction(numeral)
    if fraction is None:
        raise ContractViolation(f"cannot decode model value {numeral}")
    numerator, denominator = fraction
    return struct.pack('<d', numerator / denominator)


def decode_bound(backend: Backend, numeral) -> float:
    value = backend.numeral_int(numeral)
    if value is not None:
        return float(value)
    fraction = backend.numeral_fraction(numeral)
    if fraction is None:
        raise ContractViolation(f"cannot decode objective bound {numeral}")
    numerator, denominator = fraction
    return numerator / denominator


def _is_nonzero(backend: Backend, numeral) -> bool:
    value = backend.numeral_int(numeral)
    if value is not None:
        return value != 0
    fraction = backend.numeral_fraction(numeral)
    return fraction is not None and fraction[0] != 0


class ErrorSolver:
    """Answers truth, value and bound queries through a solver backend.

    A fresh backend session is opened for every query and closed when the
    query is done; the backend's construction cache is cleared afterwards.
    """

    def __init__(self, backend: Optional[Backend] = None, timeout: float = 0.0,
                 stats: Optional[SolverStats] = None):
        self.backend = backend if backend is not None else default_backend()
        self.stats = stats if stats is not None else SolverStats()
        self._run_status = SolverRunStatus.FAILURE
        self.set_core_solver_timeout(timeout)

    @property
    def run_status(self) -> SolverRunStatus:
        """Status of the most recent query."""
        return self._run_status

    def set_core_solver_timeout(self, seconds: float):
        self.backend.set_timeout(timeout_to_milliseconds(seconds))

    def get_constraint_log(self, query: Query) -> str:
        return self.backend.constraint_log(query.constraints, query.expr)

    def compute_truth(self, query: Query) -> Tuple[bool, Optional[bool]]:
        ok, _, has_solution = self._run(query, [], 'truth', with_objects=False)
        if not ok:
            return False, None
        return True, not has_solution

    def compute_value(self, query: Query) -> Tuple[bool, Optional[ConstantExpr]]:
        objects = find_symbolic_objects(query.expr)
        ok, values, has_solution = self.compute_initial_values(query.with_false(), objects)
        if not ok:
            return False, None
        if not has_solution:
            raise ContractViolation("state has invalid constraint set")
        return True, Assignment(objects, values).evaluate(query.expr)

    def compute_initial_values(self, query: Query, objects: Sequence[Array]
                               ) -> Tuple[bool, List[bytes], bool]:
        return self._run(query, objects, 'initial_values', with_objects=True)

    def compute_optimal_values(self, query: Query, objects: Sequence[Array]
                               ) -> Tuple[bool, OptimalValues, bool]:
        self.stats.record_query(with_objects=True)
        start_time = time.time()
        try:
            with self.backend.Optimize() as session:
                for constraint in query.constraints:
                    session.add(constraint)
                indices = [session.maximize(obj.name) for obj in objects]
                logger.debug(f"Optimizing {len(indices)} objectives under "
                             f"{len(query.constraints)} constraints")
                result = session.check()
                optimal = OptimalValues()
                has_solution = self._classify(session, result)
                if has_solution:
                    for index in indices:
                        infinity, bound, epsilon = session.upper_bound(index)
                        optimal.infinity.append(_is_nonzero(self.backend, infinity))
                        optimal.epsilon.append(_is_nonzero(self.backend, epsilon))
                        optimal.values.append(decode_bound(self.backend, bound))
        finally:
            self.backend.clear_construct_cache()
        return self._finish('optimal_values', start_time, optimal, has_solution)

    def _run(self, query: Query, objects: Sequence[Array], kind: str, with_objects: bool):
        self.stats.record_query(with_objects)
        start_time = time.time()
        try:
            with self.backend.Solver() as session:
                for constraint in query.constraints:
                    session.add(constraint)
                session.add_negated(query.expr)
                logger.debug(f"Checking {kind} query with {len(query.constraints)} "
                             f"constraints and {len(objects)} objects")
                result = session.check()
                values = []
                has_solution = self._classify(session, result)
                if has_solution:
                    values = [numeral_to_bytes(self.backend, session.initial_value(obj))
                              for obj in objects]
        finally:
            self.backend.clear_construct_cache()
        return self._finish(kind, start_time, values, has_solution)

    def _classify(self, session, result: str) -> bool:
        """Sets the run status; returns whether the query has a solution."""
        if result == 'sat':
            self._run_status = SolverRunStatus.SUCCESS_SOLVABLE
            return True
        if result == 'unsat':
            self._run_status = SolverRunStatus.SUCCESS_UNSOLVABLE
            return False
        reason = session.reason_unknown()
        if reason in ('timeout', 'canceled'):
            self._run_status = SolverRunStatus.TIMEOUT
        elif reason == 'unknown':
            self._run_status = SolverRunStatus.FAILURE
        else:
            logger.critical(f"Unexpected solver failure. Reason is \"{reason}\"")
            raise ContractViolation(f"unexpected solver failure: {reason}")
        return False

    def _finish(self, kind: str, start_time: float, payload, has_solution: bool):
        time_ms = (time.time() - start_time) * 1000
        status = self._run_status
        if status in (SolverRunStatus.SUCCESS_SOLVABLE, SolverRunStatus.SUCCESS_UNSOLVABLE):
            self.stats.record_success(has_solution)
            self.stats.add(kind, status.name, has_solution, time_ms)
            return True, payload, has_solution
        logger.info(f"{kind} query ended with {status.name} after {time_ms:.1f}ms")
        self.stats.add(kind, status.name, None, time_ms)
        return False, payload, False
