"""
Tests for the error solver against the z3 backend.
"""
import pytest
from fractions import Fraction
from symerror import Assignment, ErrorSolver, Query, SolverRunStatus, SymbolicError
from symerror.backends import UINT_MAX, Z3Backend, Z3Builder
from symerror.errors import ContractViolation
from symerror.expr import (
    Array, Expr, ConstantExpr, ReadExpr, AddExpr, ShlExpr, EqExpr, UltExpr,
    UleExpr, UgeExpr, read_lsb,
)
from symerror.ir import Instruction, Opcode, Value
from symerror.solver import timeout_to_milliseconds


def const(value, width=32):
    return ConstantExpr.create(value, width)


def real(value):
    return ConstantExpr.create(value, Expr.REAL)


def real_symbol(name):
    array = Array(name, 8, range=Expr.REAL)
    return array, ReadExpr.create(array, const(0))


def test_counterexample_satisfies_refuted_query():
    """The returned buffer satisfies the constraints and falsifies the goal"""
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    constraints = [UltExpr.create(v, const(100))]
    goal = UltExpr.create(v, const(50))
    ok, values, has_solution = solver.compute_initial_values(Query(constraints, goal), [x])
    assert ok and has_solution
    assert solver.run_status == SolverRunStatus.SUCCESS_SOLVABLE
    assert len(values) == 1 and len(values[0]) == 8
    assignment = Assignment([x], values)
    assert assignment.satisfies(constraints)
    assert assignment.evaluate(goal).is_false()


def test_valid_goal_has_no_counterexample():
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    query = Query([UltExpr.create(v, const(100))], UltExpr.create(v, const(200)))
    assert solver.compute_truth(query) == (True, True)
    assert solver.run_status == SolverRunStatus.SUCCESS_UNSOLVABLE
    assert solver.compute_truth(query.with_expr(UltExpr.create(v, const(10)))) == (True, False)


def test_oversized_shift_is_valid():
    """With 32 <= shift, (2 << shift) == 0 holds on every path"""
    solver = ErrorSolver(Z3Backend())
    shift = Array('shift', 4)
    s = read_lsb(shift)
    constraints = [UleExpr.create(const(32), s)]
    goal = EqExpr.create(ShlExpr.create(const(2), s), const(0))
    assert solver.compute_truth(Query(constraints, goal)) == (True, True)

    ok, values, has_solution = solver.compute_initial_values(
        Query(constraints, goal).with_false(), [shift])
    assert ok and has_solution
    assert Assignment([shift], values).evaluate(goal).is_true()


def test_compute_value():
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    query = Query([EqExpr.create(v, const(7))], AddExpr.create(v, const(1)))
    ok, value = solver.compute_value(query)
    assert ok
    assert value is const(8)


def test_compute_value_without_solution_is_fatal():
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    query = Query([EqExpr.create(v, const(1)), EqExpr.create(v, const(2))], v)
    with pytest.raises(ContractViolation):
        solver.compute_value(query)


def test_optimal_value_of_real_objective():
    solver = ErrorSolver(Z3Backend())
    error, e = real_symbol('err')
    query = Query([UleExpr.create(e, real(Fraction(5, 2)))], ConstantExpr.false())
    ok, optimal, has_solution = solver.compute_optimal_values(query, [error])
    assert ok and has_solution
    assert optimal.values == [2.5]
    assert optimal.infinity == [False]
    assert optimal.epsilon == [False]


def test_optimal_value_rational():
    solver = ErrorSolver(Z3Backend())
    error, e = real_symbol('err')
    query = Query([UleExpr.create(e, real(Fraction(1, 3)))], ConstantExpr.false())
    ok, optimal, _ = solver.compute_optimal_values(query, [error])
    assert ok
    assert optimal.values[0] == pytest.approx(1 / 3)


def test_unbounded_objective_is_flagged():
    solver = ErrorSolver(Z3Backend())
    error, e = real_symbol('err')
    query = Query([UgeExpr.create(e, real(0))], ConstantExpr.false())
    ok, optimal, has_solution = solver.compute_optimal_values(query, [error])
    assert ok and has_solution
    assert optimal.infinity == [True]
    assert not optimal.is_bounded(0)


def test_infeasible_optimization():
    solver = ErrorSolver(Z3Backend())
    error, e = real_symbol('err')
    query = Query([UleExpr.create(e, real(1)), UgeExpr.create(e, real(2))],
                  ConstantExpr.false())
    ok, optimal, has_solution = solver.compute_optimal_values(query, [error])
    assert ok and not has_solution
    assert len(optimal) == 0


def test_error_bound_of_propagated_sum():
    """Errors built by propagation can be checked against a bound"""
    sym = SymbolicError()
    solver = ErrorSolver(Z3Backend())
    x, y = Array('x', 4), Array('y', 4)
    xa, yb = read_lsb(x), read_lsb(y)
    a, b = Value('a'), Value('b')
    add = Instruction('sum', Opcode.ADD, [a, b])
    error = sym.propagate_error(add, AddExpr.create(xa, yb), [xa, yb])

    error_x = read_lsb(sym.error_array_for(x), 0, 8)
    error_y = read_lsb(sym.error_array_for(y), 0, 8)
    constraints = [EqExpr.create(xa, const(2)), EqExpr.create(yb, const(3)),
                   UleExpr.create(error_x, const(1, 8)), UleExpr.create(error_y, const(1, 8))]
    # 2 * dx + 3 * dy <= 5
    assert solver.compute_truth(Query(constraints, UleExpr.create(error, const(5)))) == (True, True)
    assert solver.compute_truth(Query(constraints, UleExpr.create(error, const(4)))) == (True, False)


def test_constraint_log():
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    log = solver.get_constraint_log(Query([UltExpr.create(v, const(100))],
                                          UltExpr.create(v, const(50))))
    assert "(check-sat)" in log
    assert "(not" in log
    assert "bvult" in log


def test_counters():
    solver = ErrorSolver(Z3Backend())
    x = Array('x', 4)
    v = read_lsb(x)
    query = Query([UltExpr.create(v, const(100))], UltExpr.create(v, const(50)))
    solver.compute_truth(query)
    solver.compute_initial_values(query, [x])
    solver.compute_truth(query.with_expr(ConstantExpr.true()))
    stats = solver.stats
    assert stats.queries == 3
    assert stats.query_counterexamples == 1
    assert stats.queries_invalid == 2
    assert stats.queries_valid == 1
    assert stats.query_time >= 0
    assert len(stats.results) == 3
    assert "## Solver Statistics" in stats.summary_table()


def test_timeout_conversion():
    assert timeout_to_milliseconds(0) == UINT_MAX
    assert timeout_to_milliseconds(1.5) == 1500
    assert timeout_to_milliseconds(0.0001) == UINT_MAX
    assert timeout_to_milliseconds(0.002) == 2
    with pytest.raises(ValueError):
        timeout_to_milliseconds(-1)
    with pytest.raises(ValueError):
        ErrorSolver(Z3Backend()).set_core_solver_timeout(-0.5)


def test_query_helpers():
    x = Array('x', 4)
    goal = UltExpr.create(read_lsb(x), const(5))
    query = Query([goal], goal)
    assert isinstance(query.constraints, tuple)
    assert query.with_false().expr is ConstantExpr.false()
    assert query.negate_expr().expr is EqExpr.create(ConstantExpr.false(), goal)
    assert query.with_false().constraints == query.constraints


def test_z3_builder():
    assert Z3Backend.is_available()
    import z3
    builder = Z3Builder(auto_clear_construct_cache=True)
    x = Array('x', 2)
    cond = UltExpr.create(read_lsb(x, 0, 16), const(10, 16))
    term = builder.construct(cond)
    assert z3.is_bool(term)
    assert z3.is_bv(builder.construct(read_lsb(x, 0, 16)))
    assert z3.is_bv(builder.initial_read(x))
    error, e = real_symbol('err')
    assert z3.is_real(builder.construct(e))
    assert builder._cache == {}


def test_builder_forgets_arrays_between_queries():
    builder = Z3Builder()
    x = Array('x', 4)
    builder.construct(UltExpr.create(read_lsb(x), const(100)))
    assert x in builder._arrays
    builder.clear_construct_cache()
    assert builder._arrays == {}
    assert builder._cache == {}

    backend = Z3Backend()
    solver = ErrorSolver(backend)
    solver.compute_initial_values(Query([UltExpr.create(read_lsb(x), const(100))],
                                        ConstantExpr.false()), [x])
    assert backend.builder._arrays == {}
