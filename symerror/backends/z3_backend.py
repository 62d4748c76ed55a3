"""
Z3 backend implementation.
"""
import logging
from typing import Any, Dict, Optional, Sequence, Tuple

from .base import Backend, SolverSession
from ..expr import (
    Array, Expr, ConstantExpr, ReadExpr, ConcatExpr, ExtractExpr, ZExtExpr,
    SExtExpr, ToRealExpr, NotExpr, SelectExpr, AddExpr, SubExpr, MulExpr,
    UDivExpr, SDivExpr, URemExpr, SRemExpr, AndExpr, OrExpr, XorExpr,
    ShlExpr, LShrExpr, AShrExpr, EqExpr, UltExpr, UleExpr, UgtExpr, UgeExpr,
    SltExpr, SleExpr, SgtExpr, SgeExpr,
)

try:
    import z3
    HAS_Z3 = True
except ImportError:
    HAS_Z3 = False

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 'pareto'

_BV_OPS = {
    AddExpr: lambda a, b: a + b,
    SubExpr: lambda a, b: a - b,
    MulExpr: lambda a, b: a * b,
    UDivExpr: lambda a, b: z3.UDiv(a, b),
    SDivExpr: lambda a, b: a / b,
    URemExpr: lambda a, b: z3.URem(a, b),
    SRemExpr: lambda a, b: z3.SRem(a, b),
    AndExpr: lambda a, b: a & b,
    OrExpr: lambda a, b: a | b,
    XorExpr: lambda a, b: a ^ b,
    ShlExpr: lambda a, b: a << b,
    LShrExpr: lambda a, b: z3.LShR(a, b),
    AShrExpr: lambda a, b: a >> b,
    EqExpr: lambda a, b: a == b,
    UltExpr: lambda a, b: z3.ULT(a, b),
    UleExpr: lambda a, b: z3.ULE(a, b),
    UgtExpr: lambda a, b: z3.UGT(a, b),
    UgeExpr: lambda a, b: z3.UGE(a, b),
    SltExpr: lambda a, b: a < b,
    SleExpr: lambda a, b: a <= b,
    SgtExpr: lambda a, b: a > b,
    SgeExpr: lambda a, b: a >= b,
}

_BOOL_OPS = {
    AndExpr: lambda a, b: z3.And(a, b),
    OrExpr: lambda a, b: z3.Or(a, b),
    XorExpr: lambda a, b: z3.Xor(a, b),
    EqExpr: lambda a, b: a == b,
}

_REAL_OPS = {
    AddExpr: lambda a, b: a + b,
    SubExpr: lambda a, b: a - b,
    MulExpr: lambda a, b: a * b,
    UDivExpr: lambda a, b: a / b,
    SDivExpr: lambda a, b: a / b,
    EqExpr: lambda a, b: a == b,
    UltExpr: lambda a, b: a < b,
    UleExpr: lambda a, b: a <= b,
    UgtExpr: lambda a, b: a > b,
    UgeExpr: lambda a, b: a >= b,
    SltExpr: lambda a, b: a < b,
    SleExpr: lambda a, b: a <= b,
    SgtExpr: lambda a, b: a > b,
    SgeExpr: lambda a, b: a >= b,
}


class Z3Builder:
    """Translates expressions into Z3 terms.

    Width-1 expressions become Z3 booleans. Constructed terms are cached
    until ``clear_construct_cache`` so that sub-expressions shared between
    the constraints and the goal of one query are built once.
    """

    def __init__(self, auto_clear_construct_cache: bool = False):
        self.auto_clear_construct_cache = auto_clear_construct_cache
        self._cache: Dict[Expr, Any] = {}
        self._arrays: Dict[Array, Any] = {}

    def clear_construct_cache(self):
        self._cache.clear()
        self._arrays.clear()

    def construct(self, expr: Expr):
        term = self._construct(expr)
        if self.auto_clear_construct_cache:
            self.clear_construct_cache()
        return term

    def build_real(self, name: str):
        return z3.Real(name)

    def initial_read(self, array: Array, offset: int = 0):
        """Little-endian value of the first (up to) eight elements of ``array``"""
        if array.is_real():
            return self.build_real(array.name)
        z3_array = self._array(array)
        count = max(1, min(array.size - offset, 64 // array.range))
        reads = [z3.Select(z3_array, z3.BitVecVal(offset + i, array.domain))
                 for i in range(count)]
        if len(reads) == 1:
            return reads[0]
        return z3.Concat(*reversed(reads))

    def _array(self, array: Array):
        z3_array = self._arrays.get(array)
        if z3_array is None:
            z3_array = z3.Array(array.name, z3.BitVecSort(array.domain),
                                z3.BitVecSort(array.range))
            self._arrays[array] = z3_array
        return z3_array

    def _bv(self, expr: Expr):
        term = self._construct(expr)
        if expr.width == Expr.BOOL:
            return z3.If(term, z3.BitVecVal(1, 1), z3.BitVecVal(0, 1))
        return term

    def _construct(self, expr: Expr):
        term = self._cache.get(expr)
        if term is None:
            term = self._construct_uncached(expr)
            self._cache[expr] = term
        return term

    def _construct_uncached(self, expr: Expr):
        if isinstance(expr, ConstantExpr):
            if expr.width == Expr.BOOL:
                return z3.BoolVal(bool(expr.value))
            if expr.width == Expr.REAL:
                return z3.RealVal(str(expr.value))
            return z3.BitVecVal(expr.value, expr.width)

        if isinstance(expr, ReadExpr):
            if expr.array.is_real():
                return self.build_real(expr.array.name)
            return z3.Select(self._array(expr.array), self._bv(expr.index))

        if isinstance(expr, ConcatExpr):
            return z3.Concat(self._bv(expr.left), self._bv(expr.right))

        if isinstance(expr, ExtractExpr):
            src = self._bv(expr.expr)
            term = z3.Extract(expr.offset + expr.width - 1, expr.offset, src)
            if expr.width == Expr.BOOL:
                return term == z3.BitVecVal(1, 1)
            return term

        if isinstance(expr, (ZExtExpr, SExtExpr)):
            src = expr.src
            if src.width == Expr.BOOL:
                ones = -1 if isinstance(expr, SExtExpr) else 1
                return z3.If(self._construct(src), z3.BitVecVal(ones, expr.width),
                             z3.BitVecVal(0, expr.width))
            extend = z3.SignExt if isinstance(expr, SExtExpr) else z3.ZeroExt
            return extend(expr.width - src.width, self._construct(src))

        if isinstance(expr, ToRealExpr):
            return z3.ToReal(z3.BV2Int(self._bv(expr.kids[0]), is_signed=False))

        if isinstance(expr, NotExpr):
            if expr.width == Expr.BOOL:
                return z3.Not(self._construct(expr.kids[0]))
            return ~self._construct(expr.kids[0])

        if isinstance(expr, SelectExpr):
            cond, true_expr, false_expr = expr.kids
            return z3.If(self._construct(cond), self._construct(true_expr),
                         self._construct(false_expr))

        op = type(expr)
        width = expr.left.width
        if width == Expr.REAL:
            table = _REAL_OPS
        elif width == Expr.BOOL and op in _BOOL_OPS:
            table = _BOOL_OPS
        else:
            table = _BV_OPS
        if op not in table:
            raise ValueError(f"Unsupported expression for Z3: {expr}")
        if table is _BV_OPS:
            return table[op](self._bv(expr.left), self._bv(expr.right))
        return table[op](self._construct(expr.left), self._construct(expr.right))


class Z3Session(SolverSession):
    def __init__(self, builder: Z3Builder, solver):
        self.builder = builder
        self.solver = solver
        self._model = None
        self._objectives = []

    def add(self, constraint: Expr):
        self.solver.add(self.builder.construct(constraint))

    def add_negated(self, expr: Expr):
        self.solver.add(z3.Not(self.builder.construct(expr)))

    def check(self) -> str:
        """Check satisfiability, returning string result for consistency with other backends"""
        return str(self.solver.check())

    def reason_unknown(self) -> str:
        return self.solver.reason_unknown()

    def model(self):
        if self._model is None:
            self._model = self.solver.model()
        return self._model

    def initial_value(self, array: Array):
        return self.model().eval(self.builder.initial_read(array), model_completion=True)

    def maximize(self, name: str) -> int:
        self._objectives.append(self.solver.maximize(self.builder.build_real(name)))
        return len(self._objectives) - 1

    def upper_bound(self, index: int):
        vector = self._objectives[index].upper_values()
        return vector[0], vector[1], vector[2]

    def close(self):
        self._model = None
        self._objectives = []
        self.solver = None


class Z3Backend(Backend):
    HAS_Z3 = HAS_Z3

    def __init__(self, priority: str = DEFAULT_PRIORITY):
        if not HAS_Z3:
            raise ImportError("Z3 is required for this backend")
        super().__init__()
        self.priority = priority
        self.builder = Z3Builder(auto_clear_construct_cache=False)

    @staticmethod
    def is_available() -> bool:
        """Check if Z3 is available"""
        return HAS_Z3

    def Solver(self) -> Z3Session:
        logger.debug(f"Opening z3 solver, timeout {self.timeout_ms}ms")
        solver = z3.SimpleSolver()
        solver.set(timeout=self.timeout_ms)
        return Z3Session(self.builder, solver)

    def Optimize(self) -> Z3Session:
        logger.debug(f"Opening z3 optimizer, timeout {self.timeout_ms}ms, priority {self.priority}")
        optimize = z3.Optimize()
        optimize.set(timeout=self.timeout_ms)
        optimize.set(priority=self.priority)
        return Z3Session(self.builder, optimize)

    def clear_construct_cache(self):
        self.builder.clear_construct_cache()

    def constraint_log(self, constraints: Sequence[Expr], expr: Expr) -> str:
        solver = z3.Solver()
        for constraint in constraints:
            solver.add(self.builder.construct(constraint))
        solver.add(z3.Not(self.builder.construct(expr)))
        self.builder.clear_construct_cache()
        return solver.to_smt2()

    def numeral_int(self, numeral) -> Optional[int]:
        if z3.is_bv_value(numeral) or z3.is_int_value(numeral):
            return numeral.as_long()
        if z3.is_rational_value(numeral) and numeral.denominator_as_long() == 1:
            return numeral.numerator_as_long()
        return super().numeral_int(numeral)

    def numeral_fraction(self, numeral) -> Optional[Tuple[int, int]]:
        if z3.is_rational_value(numeral):
            return numeral.numerator_as_long(), numeral.denominator_as_long()
        return super().numeral_fraction(numeral)
