"""
Numerical error tracking.

A ``SymbolicError`` lives for one symbolic-execution run. For every program
value the host executes it keeps a shadow *error expression*, an upper
bound on the absolute numerical error of that value, built from the
operands' errors by per-opcode propagation rules. Symbolic inputs get a
companion "error array" whose bytes stand for the unknown input error, and
stores/loads through concrete addresses carry errors through memory.
"""
import logging
from typing import Dict, List, Optional, Sequence

from .errors import ContractViolation
from .expr import (
    Array, ArrayCache, Expr, ConstantExpr, ReadExpr, ConcatExpr, SExtExpr,
    AddExpr, MulExpr, UDivExpr, zext_to, match_widths,
)
from .ir import Instruction, Opcode, Value

logger = logging.getLogger(__name__)

ERROR_ARRAY_PREFIX = "_unspecified_error_"
ERROR_ARRAY_SIZE = Expr.INT8
REPORT_DIVIDER = "\n------------------------\n"


def zero_error() -> ConstantExpr:
    return ConstantExpr.create(0, Expr.INT8)


def _add(left: Expr, right: Expr) -> Expr:
    return AddExpr.create(*match_widths(left, right))


def _linearized_sum(errors: Sequence[Expr], arguments: Sequence[Expr]) -> Expr:
    # a*da + b*db, each error widened to its operand first
    products = []
    for error, argument in zip(errors, arguments):
        extended, value = match_widths(zext_to(error, argument.width), argument)
        products.append(MulExpr.create(extended, value))
    return _add(products[0], products[1])


def _add_rule(result: Expr, errors: Sequence[Expr], arguments: Sequence[Expr]) -> Expr:
    error = _linearized_sum(errors, arguments)
    if isinstance(result, ConstantExpr) and result.value:
        error = UDivExpr.create(*match_widths(error, result))
    return error


def _sub_rule(result: Expr, errors: Sequence[Expr], arguments: Sequence[Expr]) -> Expr:
    error = _linearized_sum(errors, arguments)
    return UDivExpr.create(*match_widths(error, result))


def _relative_rule(result: Expr, errors: Sequence[Expr], arguments: Sequence[Expr]) -> Expr:
    """Relative errors of products and quotients add up."""
    left = zext_to(errors[0], arguments[0].width)
    right = zext_to(errors[1], arguments[1].width)
    return _add(left, right)


PROPAGATION_RULES = {
    Opcode.ADD: _add_rule,
    Opcode.SUB: _sub_rule,
    Opcode.MUL: _relative_rule,
    Opcode.UDIV: _relative_rule,
    Opcode.SDIV: _relative_rule,
}


class SymbolicError:
    """Error store and propagator for one execution run."""

    def __init__(self, array_cache: Optional[ArrayCache] = None):
        self.error_array_cache = array_cache or ArrayCache()
        self.value_error_map: Dict[Value, Expr] = {}
        self.array_error_array_map: Dict[Array, Array] = {}
        self.stored_error: Dict[int, Expr] = {}
        self.output_string = ""

    @staticmethod
    def zero() -> ConstantExpr:
        return zero_error()

    def error_array_for(self, array: Array) -> Array:
        """The companion error array of ``array``, created on first use."""
        error_array = self.array_error_array_map.get(array)
        if error_array is None:
            error_array = self.error_array_cache.create_array(
                ERROR_ARRAY_PREFIX + array.name, ERROR_ARRAY_SIZE)
            self.array_error_array_map[array] = error_array
            logger.debug(f"Created error array {error_array.name} for {array.name}")
        return error_array

    def _error_read(self, array: Array) -> Expr:
        error_array = self.error_array_for(array)
        return ReadExpr.create(error_array, ConstantExpr.create(0, error_array.domain))

    def get_error(self, value_expr: Expr, value: Optional[Value] = None) -> Expr:
        """Error expression of ``value_expr``, memoized under ``value`` if given."""
        if value is not None:
            error = self.value_error_map.get(value)
            if error is not None:
                return error

        if isinstance(value_expr, ConcatExpr):
            left = value_expr.left
            if not isinstance(left, ReadExpr):
                raise ContractViolation(f"malformed expression: {value_expr}")
            error = self._error_read(left.array)
        elif isinstance(value_expr, ReadExpr):
            error = self._error_read(value_expr.array)
        elif isinstance(value_expr, SExtExpr):
            error = self.get_error(value_expr.src)
        elif isinstance(value_expr, AddExpr):
            # TODO: weight the operand errors as propagate_error does for ADD
            error = _add(self.get_error(value_expr.left),
                         self.get_error(value_expr.right))
        elif isinstance(value_expr, ConstantExpr):
            error = zero_error()
        else:
            raise ContractViolation(f"malformed expression: {value_expr}")

        if value is not None:
            self.value_error_map[value] = error
        return error

    def propagate_error(self, instruction: Instruction, result: Expr,
                        arguments: List[Expr]) -> Expr:
        """Compute and record the error of ``instruction`` producing ``result``."""
        rule = PROPAGATION_RULES.get(instruction.opcode)
        if rule is None:
            error = zero_error()
            for operand in instruction.operands[:len(arguments)]:
                if operand in self.value_error_map:
                    error = self.value_error_map[operand]
                    break
        else:
            errors = [self.get_error(arguments[i], instruction.get_operand(i))
                      for i in range(2)]
            error = rule(result, errors, arguments)
        self.value_error_map[instruction] = error
        return error

    def execute_store(self, address: Expr, error: Optional[Expr]):
        if error is None:
            return
        if not isinstance(address, ConstantExpr):
            raise ContractViolation(f"non-constant address: {address}")
        self.stored_error[address.value] = error

    def execute_load(self, value: Value, address: Expr) -> Expr:
        if not isinstance(address, ConstantExpr):
            raise ContractViolation(f"non-constant address: {address}")
        error = self.stored_error.get(address.value, zero_error())
        self.value_error_map[value] = error
        return error

    def output_error_bound(self, instruction: Instruction, bound: float):
        """Append an assertion bounding the error of the first operand."""
        error = self.value_error_map.get(instruction.get_operand(0))
        if error is None:
            error = zero_error()
        error_var = f"__error__{id(error)}"

        parts = []
        if self.output_string:
            parts.append(REPORT_DIVIDER)
        loc = instruction.debug_loc
        if loc is not None:
            parts.append(f"Line {loc.line} of {loc.directory}/{loc.filename}")
            if instruction.function is not None:
                parts.append(f" ({instruction.function.name})")
            parts.append(": ")
        elif instruction.function is not None:
            parts.append(f"{instruction.function.name}: ")

        parts.append(f"{error_var} == ({error}) && ")
        parts.append(f"({error_var} <= {bound:g}) && ")
        parts.append(f"({error_var} >= -{bound:g})\n")
        self.output_string += "".join(parts)

    def dump(self) -> str:
        lines = ["Value->Expression:"]
        for value, error in self.value_error_map.items():
            lines.append(f"[{value},{error}]")
        lines.append("Array->Error Array:")
        for array, error_array in self.array_error_array_map.items():
            lines.append(f"[{array.name},{error_array.name}]")
        lines.append("Store:")
        for address in sorted(self.stored_error):
            lines.append(f"{address}: {self.stored_error[address]}")
        lines.append("Output String:")
        return "\n".join(lines) + "\n" + self.output_string

    def __str__(self):
        return self.dump()
