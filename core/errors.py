"""
Error taxonomy for generation and credit operations.

Every error raised by the core carries an ``ErrorKind``. Only ``TRANSIENT``
and ``BATCH_FAILURE`` are handed to the queue's retry policy; the other kinds
are terminal for the unit of work they belong to.
"""

from __future__ import annotations

from enum import Enum

from redis.exceptions import ConnectionError as RedisConnectionError, TimeoutError as RedisTimeoutError
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    MALFORMED_OUTPUT = "malformed_output"
    UNIT_FAILURE = "unit_failure"
    BATCH_FAILURE = "batch_failure"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    INVARIANT_VIOLATION = "invariant_violation"


RETRYABLE_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.BATCH_FAILURE})


class GenerationError(Exception):
    kind: ErrorKind = ErrorKind.UNIT_FAILURE

    def __init__(self, message: str, *, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class MalformedOutputError(GenerationError):
    kind = ErrorKind.MALFORMED_OUTPUT


class BatchFailureError(GenerationError):
    kind = ErrorKind.BATCH_FAILURE


class InvariantViolationError(GenerationError):
    kind = ErrorKind.INVARIANT_VIOLATION


class NotFoundError(InvariantViolationError):
    pass


class InsufficientCreditsError(GenerationError):
    kind = ErrorKind.INSUFFICIENT_CREDITS

    def __init__(self, needed: int, available: int) -> None:
        super().__init__(f"Insufficient credits. Need {needed}, have {available}")
        self.needed = needed
        self.available = available


def error_kind_of(exc: BaseException) -> ErrorKind:
    """Classify any exception raised while running a job."""
    if isinstance(exc, GenerationError):
        return exc.kind
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    if getattr(exc, "retryable", False):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (OperationalError, InterfaceError, RedisConnectionError, RedisTimeoutError)):
        return ErrorKind.TRANSIENT
    # integrity and data errors stay terminal; only a dropped connection is retried
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return ErrorKind.TRANSIENT
    return ErrorKind.UNIT_FAILURE
