"""
Minimal model of the host program representation.

Values are compared by identity; they only serve as keys into the error
store. Instructions carry their operands, an optional enclosing function
and optional debug location, which is all the error analysis looks at.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class Opcode(Enum):
    ADD = 'add'
    SUB = 'sub'
    MUL = 'mul'
    UDIV = 'udiv'
    SDIV = 'sdiv'
    UREM = 'urem'
    SREM = 'srem'
    SHL = 'shl'
    LSHR = 'lshr'
    ASHR = 'ashr'
    AND = 'and'
    OR = 'or'
    XOR = 'xor'
    TRUNC = 'trunc'
    ZEXT = 'zext'
    SEXT = 'sext'
    ICMP = 'icmp'
    SELECT = 'select'
    PHI = 'phi'
    LOAD = 'load'
    STORE = 'store'
    ALLOCA = 'alloca'
    GETELEMENTPTR = 'getelementptr'
    CALL = 'call'
    RET = 'ret'
    BR = 'br'


@dataclass(frozen=True)
class DebugLocation:
    line: int
    filename: str
    directory: str


@dataclass(eq=False)
class Function:
    name: str

    def __str__(self):
        return self.name


@dataclass(eq=False)
class Value:
    name: str = ''

    def __str__(self):
        return f"%{self.name}"


@dataclass(eq=False)
class Instruction(Value):
    opcode: Opcode = Opcode.CALL
    operands: List[Value] = field(default_factory=list)
    function: Optional[Function] = None
    debug_loc: Optional[DebugLocation] = None

    def get_operand(self, i: int) -> Value:
        return self.operands[i]

    def __str__(self):
        operands = ", ".join(str(op) for op in self.operands)
        return f"%{self.name} = {self.opcode.value} {operands}"
