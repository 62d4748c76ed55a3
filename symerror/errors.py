"""
Exceptions raised by symerror.
"""


class ContractViolation(AssertionError):
    """A caller or backend broke a precondition of the analysis.

    Raised for shapes and states that must never reach the core (malformed
    error expressions, symbolic addresses, unexpected solver answers). It is
    an ``AssertionError`` so it is never caught inside the package, but unlike
    a bare ``assert`` it survives ``python -O``.
    """
