"""
Backend implementations for the error solver.
"""
from .base import Backend, SolverSession, UINT_MAX
from .z3_backend import Z3Backend, Z3Builder
from .smtlib_backend import SmtLibBackend
from .mock_backend import MockBackend

default_backend = Z3Backend

__all__ = ['Backend', 'SolverSession', 'UINT_MAX', 'Z3Backend', 'Z3Builder',
           'SmtLibBackend', 'MockBackend', 'default_backend']
