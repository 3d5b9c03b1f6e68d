from __future__ import annotations
import logging
import random
import string
from typing import Any, Callable

from .errors import SavepointRollbackError, TxnRollbackError
from .types import ConnectionManager

logger = logging.getLogger(__name__)


def _sp_name(prefix: str = "dbop") -> str:
    return prefix + "_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=8))


class TransactionBoundary:
    """
    Turns an operation into a unit of work whose commit/rollback boundary
    matches one attempt.

    By the time a failure leaves a wrapped unit the transaction has already
    been rolled back, so the retry loop always restarts from a clean state.
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    def wrap(self, operation: Callable[[Any], Any], *, transactional: bool) -> Callable[[Any], Any]:
        if not transactional:
            return operation

        def unit(handle: Any) -> Any:
            return self.transaction(handle, operation)

        return unit

    def transaction(self, handle: Any, operation: Callable[[Any], Any]) -> Any:
        try:
            self.manager.begin(handle)
            result = operation(handle)
            self.manager.commit(handle)
        except BaseException as exc:
            try:
                self.manager.rollback(handle)
            except Exception as rb_exc:
                if isinstance(exc, Exception):
                    raise TxnRollbackError(exc, rb_exc) from exc
                logger.warning("rollback after %r failed: %r", exc, rb_exc)
            raise
        return result

    def savepoint(self, handle: Any, operation: Callable[[Any], Any]) -> Any:
        """Run inside an already open transaction; never retried."""
        name = _sp_name()
        self.manager.savepoint(handle, name)
        try:
            result = operation(handle)
            self.manager.release_savepoint(handle, name)
        except BaseException as exc:
            try:
                self.manager.rollback_to_savepoint(handle, name)
            except Exception as rb_exc:
                if isinstance(exc, Exception):
                    raise SavepointRollbackError(exc, rb_exc) from exc
                logger.warning("rollback to savepoint %s after %r failed: %r", name, exc, rb_exc)
            raise
        return result
