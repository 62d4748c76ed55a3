"""
Symbolic expression substrate.

Expressions are immutable and hash-consed: building a structurally equal
expression twice returns the same object, so identity comparison is
structural comparison and expressions can be used directly as dictionary
keys. Widths are bit-vector widths, with ``Expr.BOOL`` for predicates and
``Expr.REAL`` for real-valued terms.
"""
import weakref
from fractions import Fraction
from typing import Dict, Optional, Tuple, Union

Number = Union[int, Fraction]

_interned = weakref.WeakValueDictionary()


def _make(cls, key, **fields):
    full_key = (cls,) + key
    node = _interned.get(full_key)
    if node is None:
        node = object.__new__(cls)
        for name, value in fields.items():
            object.__setattr__(node, name, value)
        _interned[full_key] = node
    return node


class Array:
    """A named symbolic input addressed by ``domain``-bit indices.

    ``range`` is the element width; an array whose range is ``Expr.REAL``
    stands for a single real-valued symbol of the same name.
    """
    __slots__ = ('name', 'size', 'domain', 'range', '__weakref__')

    def __init__(self, name: str, size: int, domain: int = 32, range: int = 8):
        self.name = name
        self.size = size
        self.domain = domain
        self.range = range

    def is_real(self) -> bool:
        return self.range == Expr.REAL

    def __repr__(self):
        return f"Array({self.name!r}, {self.size})"


class ArrayCache:
    """Hands out one ``Array`` object per name."""

    def __init__(self):
        self._arrays: Dict[str, Array] = {}

    def create_array(self, name: str, size: int, domain: int = 32, range: int = 8) -> Array:
        array = self._arrays.get(name)
        if array is None:
            array = Array(name, size, domain, range)
            self._arrays[name] = array
        return array


class Expr:
    BOOL = 1
    INT8 = 8
    INT16 = 16
    INT32 = 32
    INT64 = 64
    REAL = 0

    kind = 'Expr'
    __slots__ = ('width', 'kids', '__weakref__')

    def __setattr__(self, name, value):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __delattr__(self, name):
        raise AttributeError(f"{type(self).__name__} is immutable")

    def is_real(self) -> bool:
        return self.width == Expr.REAL

    def __str__(self):
        return pretty(self)

    def __repr__(self):
        return pretty(self)


class ConstantExpr(Expr):
    kind = 'Constant'
    __slots__ = ('value',)

    @classmethod
    def create(cls, value: Number, width: int) -> 'ConstantExpr':
        if width == Expr.REAL:
            value = Fraction(value)
        else:
            value = int(value) & ((1 << width) - 1)
        return _make(cls, (value, width), value=value, width=width, kids=())

    @classmethod
    def true(cls) -> 'ConstantExpr':
        return cls.create(1, Expr.BOOL)

    @classmethod
    def false(cls) -> 'ConstantExpr':
        return cls.create(0, Expr.BOOL)

    def sext_value(self) -> int:
        if self.width == Expr.REAL:
            raise ValueError("real constants have no signed bit-vector value")
        return to_signed(self.value, self.width)

    def is_true(self) -> bool:
        return self.width == Expr.BOOL and self.value == 1

    def is_false(self) -> bool:
        return self.width == Expr.BOOL and self.value == 0


class ReadExpr(Expr):
    kind = 'Read'
    __slots__ = ('array', 'index')

    @classmethod
    def create(cls, array: Array, index: Expr) -> 'ReadExpr':
        return _make(cls, (array, index), array=array, index=index,
                     width=array.range, kids=(index,))


class ConcatExpr(Expr):
    kind = 'Concat'
    __slots__ = ()

    @classmethod
    def create(cls, left: Expr, right: Expr) -> 'ConcatExpr':
        _require_bitvector(left, right)
        return _make(cls, (left, right), width=left.width + right.width,
                     kids=(left, right))

    @property
    def left(self):
        return self.kids[0]

    @property
    def right(self):
        return self.kids[1]


class ExtractExpr(Expr):
    kind = 'Extract'
    __slots__ = ('offset',)

    @classmethod
    def create(cls, expr: Expr, offset: int, width: int) -> Expr:
        _require_bitvector(expr)
        if offset < 0 or offset + width > expr.width:
            raise ValueError(f"cannot extract {width} bits at {offset} from w{expr.width}")
        if offset == 0 and width == expr.width:
            return expr
        return _make(cls, (expr, offset, width), offset=offset, width=width,
                     kids=(expr,))

    @property
    def expr(self):
        return self.kids[0]


class CastExpr(Expr):
    __slots__ = ()

    @classmethod
    def create(cls, expr: Expr, width: int) -> Expr:
        _require_bitvector(expr)
        if width == expr.width:
            return expr
        if width < expr.width:
            raise ValueError(f"{cls.kind} cannot narrow w{expr.width} to w{width}")
        return _make(cls, (expr, width), width=width, kids=(expr,))

    @property
    def src(self):
        return self.kids[0]


class ZExtExpr(CastExpr):
    kind = 'ZExt'
    __slots__ = ()


class SExtExpr(CastExpr):
    kind = 'SExt'
    __slots__ = ()


class ToRealExpr(Expr):
    """Unsigned bit-vector value as a real number."""
    kind = 'ToReal'
    __slots__ = ()

    @classmethod
    def create(cls, expr: Expr) -> 'ToRealExpr':
        _require_bitvector(expr)
        return _make(cls, (expr,), width=Expr.REAL, kids=(expr,))


class NotExpr(Expr):
    kind = 'Not'
    __slots__ = ()

    @classmethod
    def create(cls, expr: Expr) -> 'NotExpr':
        _require_bitvector(expr)
        return _make(cls, (expr,), width=expr.width, kids=(expr,))


class SelectExpr(Expr):
    kind = 'Select'
    __slots__ = ()

    @classmethod
    def create(cls, cond: Expr, true_expr: Expr, false_expr: Expr) -> 'SelectExpr':
        if cond.width != Expr.BOOL:
            raise ValueError("select condition must be boolean")
        if true_expr.width != false_expr.width:
            raise ValueError("select arms must have the same width")
        return _make(cls, (cond, true_expr, false_expr), width=true_expr.width,
                     kids=(cond, true_expr, false_expr))


class BinaryExpr(Expr):
    __slots__ = ()

    @classmethod
    def create(cls, left: Expr, right: Expr) -> Expr:
        if left.width != right.width:
            raise ValueError(f"{cls.kind}: width mismatch w{left.width} vs w{right.width}")
        return _make(cls, (left, right), width=cls._result_width(left),
                     kids=(left, right))

    @classmethod
    def _result_width(cls, left):
        return left.width

    @property
    def left(self):
        return self.kids[0]

    @property
    def right(self):
        return self.kids[1]


class AddExpr(BinaryExpr):
    kind = 'Add'
    __slots__ = ()


class SubExpr(BinaryExpr):
    kind = 'Sub'
    __slots__ = ()


class MulExpr(BinaryExpr):
    kind = 'Mul'
    __slots__ = ()


class UDivExpr(BinaryExpr):
    kind = 'UDiv'
    __slots__ = ()


class SDivExpr(BinaryExpr):
    kind = 'SDiv'
    __slots__ = ()


class URemExpr(BinaryExpr):
    kind = 'URem'
    __slots__ = ()


class SRemExpr(BinaryExpr):
    kind = 'SRem'
    __slots__ = ()


class AndExpr(BinaryExpr):
    kind = 'And'
    __slots__ = ()


class OrExpr(BinaryExpr):
    kind = 'Or'
    __slots__ = ()


class XorExpr(BinaryExpr):
    kind = 'Xor'
    __slots__ = ()


class ShlExpr(BinaryExpr):
    kind = 'Shl'
    __slots__ = ()


class LShrExpr(BinaryExpr):
    kind = 'LShr'
    __slots__ = ()


class AShrExpr(BinaryExpr):
    kind = 'AShr'
    __slots__ = ()


class CmpExpr(BinaryExpr):
    __slots__ = ()

    @classmethod
    def _result_width(cls, left):
        return Expr.BOOL


class EqExpr(CmpExpr):
    kind = 'Eq'
    __slots__ = ()


class UltExpr(CmpExpr):
    kind = 'Ult'
    __slots__ = ()


class UleExpr(CmpExpr):
    kind = 'Ule'
    __slots__ = ()


class UgtExpr(CmpExpr):
    kind = 'Ugt'
    __slots__ = ()


class UgeExpr(CmpExpr):
    kind = 'Uge'
    __slots__ = ()


class SltExpr(CmpExpr):
    kind = 'Slt'
    __slots__ = ()


class SleExpr(CmpExpr):
    kind = 'Sle'
    __slots__ = ()


class SgtExpr(CmpExpr):
    kind = 'Sgt'
    __slots__ = ()


class SgeExpr(CmpExpr):
    kind = 'Sge'
    __slots__ = ()


def _require_bitvector(*exprs):
    for e in exprs:
        if e.width == Expr.REAL:
            raise ValueError(f"expected a bit-vector expression, got {e}")


def to_signed(value: int, width: int) -> int:
    if value >> (width - 1) & 1:
        return value - (1 << width)
    return value


def read_lsb(array: Array, offset: int = 0, width: int = Expr.INT32) -> Expr:
    """Little-endian read of ``width`` bits starting at byte ``offset``."""
    if width == Expr.REAL or array.is_real():
        return ReadExpr.create(array, ConstantExpr.create(0, array.domain))
    num_bytes = (width + array.range - 1) // array.range
    result = None
    for i in range(num_bytes):
        byte = ReadExpr.create(array, ConstantExpr.create(offset + i, array.domain))
        result = byte if result is None else ConcatExpr.create(byte, result)
    return ExtractExpr.create(result, 0, width)


def zext_to(expr: Expr, width: int) -> Expr:
    """Zero-extend ``expr`` up to ``width``; wider expressions are returned as is."""
    if expr.width >= width:
        return expr
    return ZExtExpr.create(expr, width)


def match_widths(left: Expr, right: Expr) -> Tuple[Expr, Expr]:
    """Zero-extend the narrower of two expressions to the wider width."""
    width = max(left.width, right.width)
    return zext_to(left, width), zext_to(right, width)


def pretty(expr: Expr, _cache: Optional[Dict[Expr, str]] = None) -> str:
    if _cache is None:
        _cache = {}
    text = _cache.get(expr)
    if text is not None:
        return text
    if isinstance(expr, ConstantExpr):
        if expr.width == Expr.BOOL:
            text = 'true' if expr.value else 'false'
        elif expr.width == Expr.REAL:
            text = f"(real {expr.value})"
        else:
            text = f"(w{expr.width} {expr.value})"
    elif isinstance(expr, ReadExpr):
        index = expr.index
        index_text = str(index.value) if isinstance(index, ConstantExpr) else pretty(index, _cache)
        width = 'real' if expr.width == Expr.REAL else f"w{expr.width}"
        text = f"(Read {width} {index_text} {expr.array.name})"
    elif isinstance(expr, ExtractExpr):
        text = f"(Extract w{expr.width} {expr.offset} {pretty(expr.expr, _cache)})"
    else:
        width = 'real' if expr.width == Expr.REAL else f"w{expr.width}"
        kids = " ".join(pretty(k, _cache) for k in expr.kids)
        text = f"({expr.kind} {width} {kids})"
    _cache[expr] = text
    return text
