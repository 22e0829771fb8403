"""Exceptions raised by a balance run."""

from __future__ import annotations

from typing import Optional


class QueuerBalanceError(RuntimeError):
    """Base class for fatal errors raised by a balance run."""


class CredentialError(QueuerBalanceError):
    """Raised when fresh AWS credentials cannot be obtained."""


class SubmissionError(QueuerBalanceError):
    """Raised when the backend rejects a query or returns no query id."""


class QueryFailure(QueuerBalanceError):
    """Raised when a query reaches a terminal status other than Complete."""

    def __init__(self, query_id: str, status: str, message: Optional[str] = None):
        self.query_id = query_id
        self.status = status
        super().__init__(message or f"Query {query_id} ended with status {status}")


class EmptyResult(QueuerBalanceError):
    """Raised when a query completes without any rows.

    Not fatal: the CLI reports it and ends the run without a plan.
    """


class NoWorkersError(ZeroDivisionError):
    """Raised when a balance target is requested over zero queuers."""


class ParseWarning(UserWarning):
    """A result row that could not be parsed cleanly."""

    def __init__(self, row_index: int, field: str, raw_value: Optional[str], reason: str):
        self.row_index = row_index
        self.field = field
        self.raw_value = raw_value
        self.reason = reason
        super().__init__(f"row {row_index}: {field}={raw_value!r} {reason}")
