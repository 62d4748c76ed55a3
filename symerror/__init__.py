from .expr import Array, ArrayCache, Expr, ConstantExpr, ReadExpr, read_lsb
from .assignment import Assignment, find_symbolic_objects
from .ir import DebugLocation, Function, Instruction, Opcode, Value
from .symbolic_error import SymbolicError
from .solver import ErrorSolver, OptimalValues, Query, SolverRunStatus
from .solver_stats import SolverStats
from .errors import ContractViolation
from .backends import Backend, default_backend

__version__ = "0.1.0"
