from __future__ import annotations
from enum import Enum


class FailureKind(str, Enum):
    OPERATION = "operation"
    TXN_ROLLBACK = "txn_rollback"
    SAVEPOINT_ROLLBACK = "savepoint_rollback"


class RollbackError(Exception):
    """
    A unit of work failed and the rollback that followed failed too.

    `error` is what the operation raised, `rollback_error` is what the
    rollback raised. A dropped connection usually produces both.
    """

    kind = FailureKind.TXN_ROLLBACK

    def __init__(self, error: BaseException, rollback_error: BaseException):
        super().__init__(error, rollback_error)
        self.error = error
        self.rollback_error = rollback_error

    def __str__(self) -> str:
        return f"{self.error} (rollback failed: {self.rollback_error})"


class TxnRollbackError(RollbackError):
    kind = FailureKind.TXN_ROLLBACK


class SavepointRollbackError(RollbackError):
    kind = FailureKind.SAVEPOINT_ROLLBACK


def failure_kind(exc: BaseException) -> FailureKind:
    if isinstance(exc, RollbackError):
        return exc.kind
    return FailureKind.OPERATION


def root_error(exc: BaseException) -> BaseException:
    """Unwrap rollback failures down to the error the operation raised."""
    while isinstance(exc, RollbackError):
        exc = exc.error
    return exc
