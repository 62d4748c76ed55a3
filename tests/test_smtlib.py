"""
Tests for the SMT-LIB printer, output parser and executable backend.
"""
import shutil
import pytest
from fractions import Fraction
import sexpdata
from symerror import Assignment, ErrorSolver, Query
from symerror.backends import SmtLibBackend, smtlib_backend
from symerror.errors import ContractViolation
from symerror.cli import main
from symerror.expr import (
    Array, Expr, ConstantExpr, ReadExpr, ZExtExpr, UgtExpr, UltExpr, UleExpr, EqExpr,
    SelectExpr, read_lsb,
)
from symerror.smtlib import (
    SmtLibPrinter, benchmark, from_smtlib_numeral, parse_output, smtlib_cmd,
    to_smtlib_real, to_smtlib_symbol, upper_bound_triple,
)

needs_z3 = pytest.mark.skipif(shutil.which('z3') is None, reason="z3 executable not found")


def const(value, width=32):
    return ConstantExpr.create(value, width)


def test_print_read_lsb():
    printer = SmtLibPrinter()
    x = Array('x', 2)
    text = printer.term(UltExpr.create(read_lsb(x, 0, 16), const(10, 16)))
    assert text == "(bvult (concat (select x (_ bv1 32)) (select x (_ bv0 32))) (_ bv10 16))"
    assert list(printer.arrays) == [x]
    assert printer.declarations() == "(declare-fun x () (Array (_ BitVec 32) (_ BitVec 8)))"


def test_print_bool_operands():
    printer = SmtLibPrinter()
    x = Array('x', 1)
    cond = UltExpr.create(ReadExpr.create(x, const(0)), const(3, 8))
    assert printer.term(ZExtExpr.create(cond, 8)) == f"(ite {printer.term(cond)} (_ bv1 8) (_ bv0 8))"
    select = SelectExpr.create(cond, const(1, 8), const(2, 8))
    assert printer.term(select).startswith("(ite (bvult")


def test_print_reals():
    printer = SmtLibPrinter()
    r = Array('err', 8, range=Expr.REAL)
    e = UleExpr.create(ReadExpr.create(r, const(0)), ConstantExpr.create(Fraction(-5, 2), Expr.REAL))
    assert printer.term(e) == "(<= err (- (/ 5.0 2.0)))"
    assert printer.declarations() == "(declare-fun err () Real)"
    assert to_smtlib_real(Fraction(3)) == "3.0"


def test_symbols_are_quoted_when_needed():
    assert to_smtlib_symbol('x') == 'x'
    assert to_smtlib_symbol('a b') == '|a b|'


def test_benchmark():
    printer = SmtLibPrinter()
    x = Array('x', 1)
    goal = EqExpr.create(ReadExpr.create(x, const(0)), const(1, 8))
    log = benchmark(printer, [], goal)
    assert log.splitlines() == [
        "; constraint log",
        "(set-info :status unknown)",
        "(declare-fun x () (Array (_ BitVec 32) (_ BitVec 8)))",
        "(assert (not (= (select x (_ bv0 32)) (_ bv1 8))))",
        "(check-sat)",
    ]


def test_smtlib_cmd_timeout_flags():
    assert smtlib_cmd('q.smt2', 'z3') == ['z3', '-smt2', 'q.smt2']
    assert smtlib_cmd('q.smt2', 'z3', 1500) == ['z3', '-smt2', '-t:1500', 'q.smt2']
    assert smtlib_cmd('q.smt2', 'cvc5', 10)[-2] == '--tlimit-per=10'


def test_parse_values():
    output = 'sat\n(:reason-unknown "")\n(((select x (_ bv0 32)) #x2a) (y (_ bv7 8)))'
    result = parse_output(output)
    assert result['status'] == 'sat'
    assert result['values'] == [42, 7]


def test_parse_unknown_reason():
    result = parse_output('unknown\n(:reason-unknown "canceled")')
    assert result['status'] == 'unknown'
    assert result['reason'] == 'canceled'
    result = parse_output('timeout')
    assert result['status'] == 'unknown'
    assert result['reason'] == 'timeout'


def test_parse_objectives():
    output = 'sat\n(:reason-unknown "")\n(objectives\n (a (/ 5.0 2.0))\n (b oo)\n)'
    result = parse_output(output)
    assert result['objectives'] == [
        (Fraction(0), Fraction(5, 2), Fraction(0)),
        (Fraction(1), Fraction(0), Fraction(0)),
    ]


def test_parse_ignores_errors():
    output = 'unsat\n(error "line 5 column 10: model is not available")'
    result = parse_output(output)
    assert result['status'] == 'unsat'
    assert result['values'] == []


def test_numerals():
    assert from_smtlib_numeral(sexpdata.Symbol('#xff')) == 255
    assert from_smtlib_numeral(sexpdata.Symbol('#b101')) == 5
    assert from_smtlib_numeral(sexpdata.loads('(_ bv7 8)')) == 7
    assert from_smtlib_numeral(sexpdata.loads('(- 3)')) == -3
    assert from_smtlib_numeral(sexpdata.loads('(/ 1.0 3.0)')) == Fraction(1, 3)
    with pytest.raises(ValueError):
        from_smtlib_numeral(sexpdata.loads('(foo 1)'))


def test_upper_bound_triples():
    assert upper_bound_triple(sexpdata.loads('(- 2 epsilon)')) == (0, 2, -1)
    assert upper_bound_triple(sexpdata.loads('(* 2 oo)')) == (2, 0, 0)
    assert upper_bound_triple(sexpdata.loads('(+ 1 (* 3 epsilon))')) == (0, 1, 3)
    assert upper_bound_triple(4) == (0, 4, 0)


def test_replay_missing_file(tmp_path):
    assert main(['replay', str(tmp_path / 'missing.smt2')]) == 1


@needs_z3
def test_smtlib_backend_truth_and_values():
    solver = ErrorSolver(SmtLibBackend(['z3']))
    x = Array('x', 4)
    v = read_lsb(x)
    constraints = [UltExpr.create(v, const(100))]
    assert solver.compute_truth(Query(constraints, UltExpr.create(v, const(200)))) == (True, True)

    goal = UltExpr.create(v, const(50))
    ok, values, has_solution = solver.compute_initial_values(Query(constraints, goal), [x])
    assert ok and has_solution
    assignment = Assignment([x], values)
    assert assignment.satisfies(constraints)
    assert assignment.evaluate(goal).is_false()


@needs_z3
def test_smtlib_backend_optimization():
    solver = ErrorSolver(SmtLibBackend(['z3']))
    r = Array('err', 8, range=Expr.REAL)
    e = ReadExpr.create(r, const(0))
    query = Query([UleExpr.create(e, ConstantExpr.create(Fraction(5, 2), Expr.REAL))],
                  ConstantExpr.false())
    ok, optimal, has_solution = solver.compute_optimal_values(query, [r])
    assert ok and has_solution
    assert optimal.values == [2.5]


@needs_z3
def test_replay(tmp_path, capsys):
    solver = ErrorSolver(SmtLibBackend(['z3']))
    x = Array('x', 4)
    v = read_lsb(x)
    path = tmp_path / 'query.smt2'
    path.write_text(solver.get_constraint_log(
        Query([UltExpr.create(v, const(100))], UltExpr.create(v, const(200)))))
    assert main(['replay', str(path)]) == 0
    assert capsys.readouterr().out.strip() == 'unsat'


def test_model_values_follow_check_sat():
    """reason-unknown is asked last, so a refusal cannot hide the model"""
    backend = SmtLibBackend(['z3'])
    x = Array('x', 4)
    session = backend.Solver()
    session.add(UltExpr.create(read_lsb(x), const(100)))
    lines = session.script().splitlines()
    assert lines[-3] == "(check-sat)"
    assert lines[-2].startswith("(get-value ((concat (select x (_ bv3 32))")
    assert lines[-1] == "(get-info :reason-unknown)"


def test_sat_without_model_values_is_fatal(monkeypatch):
    monkeypatch.setattr(smtlib_backend, 'run_smt', lambda smt2, cmds, timeout_ms: {
        'status': 'sat', 'reason': None, 'values': [], 'objectives': []})
    solver = ErrorSolver(SmtLibBackend(['z3']))
    x = Array('x', 4)
    v = read_lsb(x)
    query = Query([UgtExpr.create(v, const(10))], UltExpr.create(v, const(5)))
    with pytest.raises(ContractViolation):
        solver.compute_initial_values(query, [x])


def test_unmentioned_array_reads_zero(monkeypatch):
    monkeypatch.setattr(smtlib_backend, 'run_smt', lambda smt2, cmds, timeout_ms: {
        'status': 'sat', 'reason': None, 'values': [42], 'objectives': []})
    solver = ErrorSolver(SmtLibBackend(['z3']))
    x, other = Array('x', 4), Array('other', 4)
    query = Query([UltExpr.create(read_lsb(x), const(100))], ConstantExpr.false())
    ok, values, _ = solver.compute_initial_values(query, [x, other])
    assert ok
    assert values == [(42).to_bytes(8, 'little'), bytes(8)]
