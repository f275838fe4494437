"""
Exception Hierarchy

Only caller errors are exceptions. An infeasible constraint set or a goal
that could not be closed is an ordinary outcome and is reported through
the certificate, never raised.
"""

from typing import Optional


class ProverError(Exception):
    """Base class for all rademacher-prover exceptions."""
    pass


class MalformedCase(ProverError, ValueError):
    """Raised when a case file cannot be parsed."""

    def __init__(self, message: str, line_number: Optional[int] = None, line: Optional[str] = None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
            if line is not None:
                message = f"{message} ({line.strip()!r})"
        super().__init__(message)
        self.line_number = line_number
        self.line = line


class MalformedTable(ProverError, ValueError):
    """Raised when a persisted bound table is inconsistent with its header."""
    pass


class InvariantViolation(ProverError, ValueError):
    """
    Raised on a caller error that must abort the case immediately.

    Examples: a RangeSumBound with start >= end, an index outside the
    case dimension, two goal lines on one leaf, or a certificate whose
    status contradicts its children.
    """
    pass
