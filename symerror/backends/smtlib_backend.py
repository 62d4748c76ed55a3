"""
SMT-LIB backend: runs solver executables on generated SMT-LIB2 scripts.

Every model value the error solver may ask for (the initial read of each
array the query mentions) is requested with ``get-value`` in the same
script, so one solver run answers a whole query.
"""
from typing import List, Optional, Sequence

from .base import Backend, SolverSession
from ..errors import ContractViolation
from ..expr import Array, Expr
from ..smtlib import SmtLibPrinter, benchmark, run_smt


class SmtLibSession(SolverSession):
    def __init__(self, backend: 'SmtLibBackend'):
        self.backend = backend
        self.printer = backend.printer
        self.asserts: List[str] = []
        self.objectives: List[str] = []
        self.result = None
        self._value_index = {}
        self.printer.reset_declarations()

    def add(self, constraint: Expr):
        self.asserts.append(f"(assert {self.printer.term(constraint)})")

    def add_negated(self, expr: Expr):
        self.asserts.append(f"(assert (not {self.printer.term(expr)}))")

    def maximize(self, name: str) -> int:
        self.objectives.append(f"(maximize {self.printer.declare_real(name)})")
        return len(self.objectives) - 1

    def script(self) -> str:
        reads = []
        for array in list(self.printer.arrays):
            self._value_index[array.name] = len(reads)
            reads.append(self.printer.initial_read(array))
        for name in list(self.printer.reals):
            if name not in self._value_index:
                self._value_index[name] = len(reads)
                reads.append(self.printer.declare_real(name))

        lines = ["(set-option :produce-models true)", "(set-logic ALL)"]
        declarations = self.printer.declarations()
        if declarations:
            lines.append(declarations)
        lines.extend(self.asserts)
        lines.extend(self.objectives)
        lines.append("(check-sat)")
        if self.objectives:
            lines.append("(get-objectives)")
        elif reads:
            lines.append("(get-value (" + " ".join(reads) + "))")
        # some solvers refuse this after sat and stop reading the script
        lines.append("(get-info :reason-unknown)")
        return "\n".join(lines) + "\n"

    def check(self) -> str:
        self.result = run_smt(self.script(), self.backend.cmds, self.backend.timeout_ms)
        return self.result['status']

    def reason_unknown(self) -> str:
        return self.result['reason'] or 'unknown'

    def initial_value(self, array: Array):
        index = self._value_index.get(array.name)
        if index is None:
            # not mentioned by the query, any value is a model
            return 0
        values = self.result['values']
        if index >= len(values):
            raise ContractViolation(f"solver reported no model value for {array.name}")
        return values[index]

    def upper_bound(self, index: int):
        objectives = self.result['objectives']
        if index >= len(objectives):
            raise ContractViolation(f"solver reported no bound for objective {index}")
        return objectives[index]

    def close(self):
        self.result = None


class SmtLibBackend(Backend):
    """Backend driving solver executables (see ``smtlib.cmd_prefixes``).

    Decision and optimization sessions share one script format; optimization
    needs a solver that understands ``maximize`` (z3).
    """

    def __init__(self, cmds: Optional[Sequence[str]] = None):
        super().__init__()
        self.cmds = list(cmds) if cmds else ['z3']
        self.printer = SmtLibPrinter()

    def Solver(self) -> SmtLibSession:
        return SmtLibSession(self)

    def Optimize(self) -> SmtLibSession:
        return SmtLibSession(self)

    def clear_construct_cache(self):
        self.printer.clear_construct_cache()

    def constraint_log(self, constraints: Sequence[Expr], expr: Expr) -> str:
        log = benchmark(self.printer, constraints, expr)
        self.printer.clear_construct_cache()
        return log
