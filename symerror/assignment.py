"""
Concrete evaluation of expressions under a byte-level assignment of
symbolic arrays.
"""
import struct
from fractions import Fraction
from typing import Dict, Iterable, List, Sequence

from .errors import ContractViolation
from .expr import (
    Array, Expr, ConstantExpr, ReadExpr, ConcatExpr, ExtractExpr, ZExtExpr,
    SExtExpr, ToRealExpr, NotExpr, SelectExpr, AddExpr, SubExpr, MulExpr,
    UDivExpr, SDivExpr, URemExpr, SRemExpr, AndExpr, OrExpr, XorExpr,
    ShlExpr, LShrExpr, AShrExpr, EqExpr, UltExpr, UleExpr, UgtExpr, UgeExpr,
    SltExpr, SleExpr, SgtExpr, SgeExpr, to_signed,
)


def find_symbolic_objects(exprs) -> List[Array]:
    """Arrays read by ``exprs``, in order of first occurrence."""
    if isinstance(exprs, Expr):
        exprs = [exprs]
    objects = []
    seen_arrays = set()
    visited = set()
    stack = list(reversed(list(exprs)))
    while stack:
        e = stack.pop()
        if e in visited:
            continue
        visited.add(e)
        if isinstance(e, ReadExpr) and e.array not in seen_arrays:
            seen_arrays.add(e.array)
            objects.append(e.array)
        stack.extend(reversed(e.kids))
    return objects


def _mask(width):
    return (1 << width) - 1


def _udiv(a, b, width):
    if b == 0:
        return _mask(width)
    return a // b


def _urem(a, b, width):
    if b == 0:
        return a
    return a % b


def _sdiv(a, b, width):
    sa, sb = to_signed(a, width), to_signed(b, width)
    if sb == 0:
        return 1 if sa < 0 else _mask(width)
    q = abs(sa) // abs(sb)
    return -q if (sa < 0) != (sb < 0) else q


def _srem(a, b, width):
    sa, sb = to_signed(a, width), to_signed(b, width)
    if sb == 0:
        return a
    r = abs(sa) % abs(sb)
    return -r if sa < 0 else r


def _shl(a, b, width):
    if b >= width:
        return 0
    return a << b


def _lshr(a, b, width):
    if b >= width:
        return 0
    return a >> b


def _ashr(a, b, width):
    sa = to_signed(a, width)
    if b >= width:
        return -1 if sa < 0 else 0
    return sa >> b


_BITVECTOR_OPS = {
    AddExpr: lambda a, b, w: a + b,
    SubExpr: lambda a, b, w: a - b,
    MulExpr: lambda a, b, w: a * b,
    UDivExpr: _udiv,
    SDivExpr: _sdiv,
    URemExpr: _urem,
    SRemExpr: _srem,
    AndExpr: lambda a, b, w: a & b,
    OrExpr: lambda a, b, w: a | b,
    XorExpr: lambda a, b, w: a ^ b,
    ShlExpr: _shl,
    LShrExpr: _lshr,
    AShrExpr: _ashr,
}

_REAL_OPS = {
    AddExpr: lambda a, b: a + b,
    SubExpr: lambda a, b: a - b,
    MulExpr: lambda a, b: a * b,
    UDivExpr: lambda a, b: a / b if b else Fraction(0),
    SDivExpr: lambda a, b: a / b if b else Fraction(0),
}

_COMPARISONS = {
    EqExpr: lambda a, b, w: a == b,
    UltExpr: lambda a, b, w: a < b,
    UleExpr: lambda a, b, w: a <= b,
    UgtExpr: lambda a, b, w: a > b,
    UgeExpr: lambda a, b, w: a >= b,
    SltExpr: lambda a, b, w: to_signed(a, w) < to_signed(b, w),
    SleExpr: lambda a, b, w: to_signed(a, w) <= to_signed(b, w),
    SgtExpr: lambda a, b, w: to_signed(a, w) > to_signed(b, w),
    SgeExpr: lambda a, b, w: to_signed(a, w) >= to_signed(b, w),
}

# reals have a single ordering, signed and unsigned comparisons coincide
_COMPARISONS_BY_ORDER = {
    EqExpr: '==',
    UltExpr: '<', SltExpr: '<',
    UleExpr: '<=', SleExpr: '<=',
    UgtExpr: '>', SgtExpr: '>',
    UgeExpr: '>=', SgeExpr: '>=',
}

_REAL_COMPARISONS = {
    '==': lambda a, b: a == b,
    '<': lambda a, b: a < b,
    '<=': lambda a, b: a <= b,
    '>': lambda a, b: a > b,
    '>=': lambda a, b: a >= b,
}


class Assignment:
    """Binds arrays to concrete byte buffers.

    Reads past the end of a bound buffer evaluate to zero. Reading an
    unbound array is an error unless ``allow_free_values`` is set, in which
    case it also evaluates to zero.
    """

    def __init__(self, objects: Sequence[Array], values: Sequence[bytes],
                 allow_free_values: bool = False):
        if len(objects) != len(values):
            raise ValueError("one value buffer per object is required")
        self.bindings: Dict[Array, bytes] = {
            array: bytes(value) for array, value in zip(objects, values)
        }
        self.allow_free_values = allow_free_values

    def evaluate(self, expr: Expr) -> ConstantExpr:
        return ConstantExpr.create(self._eval(expr, {}), expr.width)

    def satisfies(self, constraints: Iterable[Expr]) -> bool:
        return all(self.evaluate(c).is_true() for c in constraints)

    def _read(self, array: Array, index: int):
        buffer = self.bindings.get(array)
        if buffer is None:
            if not self.allow_free_values:
                raise ContractViolation(f"no binding for array {array.name}")
            return Fraction(0) if array.is_real() else 0
        if array.is_real():
            raw = buffer[:8].ljust(8, b'\0')
            return Fraction(struct.unpack('<d', raw)[0])
        if index < len(buffer):
            return buffer[index]
        return 0

    def _eval(self, e: Expr, cache):
        if e in cache:
            return cache[e]
        value = self._eval_uncached(e, cache)
        if not e.is_real():
            value = int(value) & _mask(e.width)
        cache[e] = value
        return value

    def _eval_uncached(self, e: Expr, cache):
        if isinstance(e, ConstantExpr):
            return e.value
        if isinstance(e, ReadExpr):
            return self._read(e.array, self._eval(e.index, cache))
        if isinstance(e, ConcatExpr):
            return (self._eval(e.left, cache) << e.right.width) | self._eval(e.right, cache)
        if isinstance(e, ExtractExpr):
            return self._eval(e.expr, cache) >> e.offset
        if isinstance(e, ZExtExpr):
            return self._eval(e.src, cache)
        if isinstance(e, SExtExpr):
            return to_signed(self._eval(e.src, cache), e.src.width)
        if isinstance(e, ToRealExpr):
            return Fraction(self._eval(e.kids[0], cache))
        if isinstance(e, NotExpr):
            return ~self._eval(e.kids[0], cache)
        if isinstance(e, SelectExpr):
            cond, true_expr, false_expr = e.kids
            chosen = true_expr if self._eval(cond, cache) else false_expr
            return self._eval(chosen, cache)
        op = type(e)
        left = self._eval(e.left, cache)
        right = self._eval(e.right, cache)
        if op in _COMPARISONS:
            if e.left.is_real():
                return int(_REAL_COMPARISONS[_COMPARISONS_BY_ORDER[op]](left, right))
            return int(_COMPARISONS[op](left, right, e.left.width))
        if e.is_real():
            if op not in _REAL_OPS:
                raise ValueError(f"{e.kind} is not defined on reals")
            return _REAL_OPS[op](left, right)
        return _BITVECTOR_OPS[op](left, right, e.width)
