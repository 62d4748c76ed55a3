"""
SMT-LIB text layer: printing expressions as SMT-LIB2, running solver
executables on the result and parsing what they print back.
"""
import logging
import os
import re
import subprocess
import tempfile
from fractions import Fraction
from typing import Any, Dict, Optional, Sequence, Tuple

import sexpdata

from .expr import (
    Array, Expr, ConstantExpr, ReadExpr, ConcatExpr, ExtractExpr, ZExtExpr,
    SExtExpr, ToRealExpr, NotExpr, SelectExpr, AddExpr, SubExpr, MulExpr,
    UDivExpr, SDivExpr, URemExpr, SRemExpr, AndExpr, OrExpr, XorExpr,
    ShlExpr, LShrExpr, AShrExpr, EqExpr, UltExpr, UleExpr, UgtExpr, UgeExpr,
    SltExpr, SleExpr, SgtExpr, SgeExpr,
)

logger = logging.getLogger(__name__)

UINT_MAX = 4294967295

cmd_prefixes = {
    'z3': ['z3', '-smt2'],
    'cvc5': ['cvc5', '--lang=smt2', '--produce-models'],
}

timeout_flags = {
    'z3': '-t:{ms}',
    'cvc5': '--tlimit-per={ms}',
}

_BV_OPS = {
    AddExpr: 'bvadd', SubExpr: 'bvsub', MulExpr: 'bvmul',
    UDivExpr: 'bvudiv', SDivExpr: 'bvsdiv', URemExpr: 'bvurem', SRemExpr: 'bvsrem',
    AndExpr: 'bvand', OrExpr: 'bvor', XorExpr: 'bvxor',
    ShlExpr: 'bvshl', LShrExpr: 'bvlshr', AShrExpr: 'bvashr',
    EqExpr: '=', UltExpr: 'bvult', UleExpr: 'bvule', UgtExpr: 'bvugt',
    UgeExpr: 'bvuge', SltExpr: 'bvslt', SleExpr: 'bvsle', SgtExpr: 'bvsgt',
    SgeExpr: 'bvsge',
}

_BOOL_OPS = {AndExpr: 'and', OrExpr: 'or', XorExpr: 'xor', EqExpr: '='}

_REAL_OPS = {
    AddExpr: '+', SubExpr: '-', MulExpr: '*', UDivExpr: '/', SDivExpr: '/',
    EqExpr: '=', UltExpr: '<', UleExpr: '<=', UgtExpr: '>', UgeExpr: '>=',
    SltExpr: '<', SleExpr: '<=', SgtExpr: '>', SgeExpr: '>=',
}

_SIMPLE_SYMBOL = re.compile(r'[A-Za-z_][A-Za-z0-9_.\-]*')


def to_smtlib_symbol(name: str) -> str:
    if _SIMPLE_SYMBOL.fullmatch(name):
        return name
    return '|' + name.replace('|', '_').replace('\\', '_') + '|'


def to_smtlib_real(value: Fraction) -> str:
    value = Fraction(value)
    magnitude = abs(value)
    if magnitude.denominator == 1:
        text = f"{magnitude.numerator}.0"
    else:
        text = f"(/ {magnitude.numerator}.0 {magnitude.denominator}.0)"
    return f"(- {text})" if value < 0 else text


def bv_literal(value: int, width: int) -> str:
    return f"(_ bv{value} {width})"


class SmtLibPrinter:
    """Prints expressions as SMT-LIB2 terms and tracks the symbols they use.

    Printed terms are cached until ``clear_construct_cache``.
    """

    def __init__(self):
        self._cache: Dict[Expr, str] = {}
        self.arrays: Dict[Array, None] = {}
        self.reals: Dict[str, None] = {}

    def clear_construct_cache(self):
        self._cache.clear()

    def reset_declarations(self):
        # symbols are collected while printing, so cached terms must go too
        self._cache.clear()
        self.arrays = {}
        self.reals = {}

    def declare_real(self, name: str) -> str:
        self.reals[name] = None
        return to_smtlib_symbol(name)

    def declarations(self) -> str:
        lines = []
        for array in self.arrays:
            lines.append(f"(declare-fun {to_smtlib_symbol(array.name)} () "
                         f"(Array (_ BitVec {array.domain}) (_ BitVec {array.range})))")
        for name in self.reals:
            lines.append(f"(declare-fun {to_smtlib_symbol(name)} () Real)")
        return "\n".join(lines)

    def initial_read(self, array: Array, offset: int = 0) -> str:
        if array.is_real():
            return self.declare_real(array.name)
        self.arrays[array] = None
        symbol = to_smtlib_symbol(array.name)
        count = max(1, min(array.size - offset, 64 // array.range))
        reads = [f"(select {symbol} {bv_literal(offset + i, array.domain)})"
                 for i in range(count)]
        if len(reads) == 1:
            return reads[0]
        return "(concat " + " ".join(reversed(reads)) + ")"

    def bv_term(self, expr: Expr) -> str:
        text = self.term(expr)
        if expr.width == Expr.BOOL:
            return f"(ite {text} #b1 #b0)"
        return text

    def term(self, expr: Expr) -> str:
        text = self._cache.get(expr)
        if text is None:
            text = self._term(expr)
            self._cache[expr] = text
        return text

    def _term(self, expr: Expr) -> str:
        if isinstance(expr, ConstantExpr):
            if expr.width == Expr.BOOL:
                return 'true' if expr.value else 'false'
            if expr.width == Expr.REAL:
                return to_smtlib_real(expr.value)
            return bv_literal(expr.value, expr.width)

        if isinstance(expr, ReadExpr):
            if expr.array.is_real():
                return self.declare_real(expr.array.name)
            self.arrays[expr.array] = None
            return f"(select {to_smtlib_symbol(expr.array.name)} {self.bv_term(expr.index)})"

        if isinstance(expr, ConcatExpr):
            return f"(concat {self.bv_term(expr.left)} {self.bv_term(expr.right)})"

        if isinstance(expr, ExtractExpr):
            hi = expr.offset + expr.width - 1
            text = f"((_ extract {hi} {expr.offset}) {self.bv_term(expr.expr)})"
            if expr.width == Expr.BOOL:
                return f"(= {text} #b1)"
            return text

        if isinstance(expr, (ZExtExpr, SExtExpr)):
            src = expr.src
            if src.width == Expr.BOOL:
                ones = (1 << expr.width) - 1 if isinstance(expr, SExtExpr) else 1
                return (f"(ite {self.term(src)} {bv_literal(ones, expr.width)} "
                        f"{bv_literal(0, expr.width)})")
            extend = 'sign_extend' if isinstance(expr, SExtExpr) else 'zero_extend'
            return f"((_ {extend} {expr.width - src.width}) {self.term(src)})"

        if isinstance(expr, ToRealExpr):
            return f"(to_real (bv2nat {self.bv_term(expr.kids[0])}))"

        if isinstance(expr, NotExpr):
            op = 'not' if expr.width == Expr.BOOL else 'bvnot'
            return f"({op} {self.term(expr.kids[0])})"

        if isinstance(expr, SelectExpr):
            cond, true_expr, false_expr = expr.kids
            return f"(ite {self.term(cond)} {self.term(true_expr)} {self.term(false_expr)})"

        op = type(expr)
        width = expr.left.width
        if width == Expr.REAL:
            name = _REAL_OPS.get(op)
            args = (self.term(expr.left), self.term(expr.right))
        elif width == Expr.BOOL and op in _BOOL_OPS:
            name = _BOOL_OPS[op]
            args = (self.term(expr.left), self.term(expr.right))
        else:
            name = _BV_OPS.get(op)
            args = (self.bv_term(expr.left), self.bv_term(expr.right))
        if name is None:
            raise ValueError(f"Unsupported expression for SMT-LIB: {expr}")
        return f"({name} {args[0]} {args[1]})"


def benchmark(printer: SmtLibPrinter, constraints: Sequence[Expr], expr: Expr,
              name: str = "constraint log") -> str:
    """SMT-LIB benchmark asserting ``constraints`` and the negation of ``expr``."""
    printer.reset_declarations()
    asserts = [f"(assert {printer.term(c)})" for c in constraints]
    asserts.append(f"(assert (not {printer.term(expr)}))")
    lines = [f"; {name}", "(set-info :status unknown)"]
    declarations = printer.declarations()
    if declarations:
        lines.append(declarations)
    lines.extend(asserts)
    lines.append("(check-sat)")
    return "\n".join(lines) + "\n"


def smtlib_cmd(smt2_file, cmd=None, timeout_ms=UINT_MAX):
    cmd = cmd or next(iter(cmd_prefixes.keys()))
    logger.debug(f"running backend {cmd}")
    args = list(cmd_prefixes[cmd])
    if timeout_ms != UINT_MAX and cmd in timeout_flags:
        args.append(timeout_flags[cmd].format(ms=timeout_ms))
    return args + [smt2_file]


def print_smt(smt2):
    lines = smt2.split('\n')
    truncated_lines = [line if len(line) < 1005 else line[0:1000] + "..." for line in lines]
    r = '\n'.join(truncated_lines)
    logger.debug(r)
    return r


def run_smt(smt2, cmds=None, timeout_ms=UINT_MAX):
    """Run ``smt2`` through every solver in ``cmds``.

    Returns the parsed output of the first solver answering sat or unsat,
    otherwise the first answer received.
    """
    logger.debug('### smt2')
    print_smt(smt2)

    with tempfile.NamedTemporaryFile(mode='w', suffix='.smt2', delete=False) as f:
        f.write(smt2)
        smt2_file = f.name

    try:
        ps = []
        for cmd in cmds or [None]:
            ps.append((cmd,
                       subprocess.Popen(smtlib_cmd(smt2_file, cmd, timeout_ms),
                                        stdout=subprocess.PIPE,
                                        stderr=subprocess.PIPE,
                                        text=True)))
        outs = []
        for (cmd, p) in ps:
            output, error = p.communicate()
            outs.append((cmd, (output + error).strip()))

        parsed = []
        for (cmd, output) in outs:
            output = output.replace(smt2_file, "tmp.smt2")
            logger.debug('### output' + (' for ' + cmd if cmd is not None else ''))
            logger.debug(output)
            parsed.append((cmd, parse_output(output)))

        first = None
        for (cmd, result) in parsed:
            if result['status'] in ('sat', 'unsat'):
                return result
            if first is None:
                first = result
        return first
    finally:
        os.unlink(smt2_file)


def _symbol(sexp) -> Optional[str]:
    if isinstance(sexp, sexpdata.Symbol):
        return sexp.value()
    return None


def _text(sexp) -> str:
    value = getattr(sexp, 'value', None)
    if callable(value):
        return value()
    return str(sexp)


def parse_output(output: str) -> Dict[str, Any]:
    """Split solver output into status, reason, model values and objectives."""
    result = {'status': 'unknown', 'reason': None, 'values': [], 'objectives': []}
    lines = output.strip().split('\n')
    head = lines[0].strip() if lines else ''
    if head in ('sat', 'unsat', 'unknown'):
        result['status'] = head
    elif head == 'timeout':
        # z3 -T kills the query before it can report a reason
        result['reason'] = 'timeout'
        return result
    else:
        logger.warning(f"Unexpected solver output: {head!r}")
        result['reason'] = 'unknown'
        return result

    rest = '\n'.join(lines[1:]).strip()
    if not rest:
        return result
    for item in sexpdata.loads('(' + rest + ')', nil=None, true=None):
        if not isinstance(item, list) or not item:
            continue
        tag = _symbol(item[0])
        if tag == ':reason-unknown':
            result['reason'] = _text(item[1])
        elif tag == 'objectives':
            result['objectives'] = [upper_bound_triple(entry[1]) for entry in item[1:]]
        elif tag == 'error':
            logger.debug(f"solver reported: {item[1] if len(item) > 1 else item}")
        elif isinstance(item[0], list):
            result['values'] = [from_smtlib_numeral(pair[1]) for pair in item]
    return result


def from_smtlib_numeral(value):
    """Convert an SMT-LIB numeral (bit-vector, integer or real) to int or Fraction."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return Fraction(str(value))
    name = _symbol(value)
    if name is not None:
        if name.startswith('#x'):
            return int(name[2:], 16)
        if name.startswith('#b'):
            return int(name[2:], 2)
        if name in ('true', 'false'):
            return int(name == 'true')
        return Fraction(name)
    if isinstance(value, list) and value:
        op = _symbol(value[0])
        if op == '-' and len(value) == 2:
            return -from_smtlib_numeral(value[1])
        if op == '/' and len(value) == 3:
            return Fraction(from_smtlib_numeral(value[1])) / Fraction(from_smtlib_numeral(value[2]))
        literal = _symbol(value[1]) if len(value) == 3 else None
        if op == '_' and literal is not None and literal.startswith('bv'):
            return int(literal[2:])
    raise ValueError(f"Unparseable numeral in SMT output: {value}")


def upper_bound_triple(value) -> Tuple[Fraction, Fraction, Fraction]:
    """Decompose an objective value into (infinity, bound, epsilon) coefficients.

    Optimizing solvers report bounds such as ``oo``, ``(- 2 epsilon)`` or
    ``(+ (* 2 oo) 1)``; the result holds the coefficient of each part.
    """
    name = _symbol(value)
    if name == 'oo':
        return Fraction(1), Fraction(0), Fraction(0)
    if name == 'epsilon':
        return Fraction(0), Fraction(0), Fraction(1)
    if isinstance(value, list) and value:
        op = _symbol(value[0])
        if op == '+':
            terms = [upper_bound_triple(v) for v in value[1:]]
            return tuple(sum(parts, Fraction(0)) for parts in zip(*terms))
        if op == '-' and len(value) == 2:
            return tuple(-part for part in upper_bound_triple(value[1]))
        if op == '-':
            first = upper_bound_triple(value[1])
            rest = [upper_bound_triple(v) for v in value[2:]]
            return tuple(f - sum(parts, Fraction(0)) for f, parts in zip(first, zip(*rest)))
        if op == '*':
            scale = Fraction(1)
            symbolic = (Fraction(0), Fraction(1), Fraction(0))
            for v in value[1:]:
                inf, bound, eps = upper_bound_triple(v)
                if inf or eps:
                    symbolic = (inf, bound, eps)
                else:
                    scale *= bound
            return tuple(scale * part for part in symbolic)
    return Fraction(0), Fraction(from_smtlib_numeral(value)), Fraction(0)
