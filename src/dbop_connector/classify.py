from __future__ import annotations
import time
import weakref
from typing import Callable, Optional, Tuple, Type

from .errors import root_error
from .types import RetryPredicate

# PostgreSQL SQLSTATEs: serialization failure, deadlock, lock not available
_PG_TRANSIENT = {"40001", "40P01", "55P03"}
# class 08 is connection exceptions; 57P01..03 are admin/crash shutdowns
_PG_DISCONNECT_PREFIX = "08"
_PG_DISCONNECT = {"57P01", "57P02", "57P03"}

# MySQL: 1213 deadlock, 1205 lock wait, 3572 NOWAIT
_MYSQL_TRANSIENT = {1213, 1205, 3572}
# 2006 server has gone away, 2013 lost connection, 2055 lost connection at ...
_MYSQL_DISCONNECT = {2006, 2013, 2055}

_TRANSIENT_MESSAGES = (
    "deadlock",
    "lock wait timeout",
    "nowait is set",
    "canceling statement due to lock timeout",
    "canceling statement due to statement timeout",
    "could not serialize access",
    "database is locked",
)

_TIMEOUTISH_TYPES = {"OperationalError", "InterfaceError", "TimeoutError"}

_DISCONNECT_MESSAGES = (
    "gone away",
    "lost connection",
    "connection reset",
    "connection refused",
    "server closed the connection",
    "terminating connection",
    "connection already closed",
    "connection is closed",
    "broken pipe",
)


def _sqlstate(exc: BaseException) -> Optional[str]:
    orig = getattr(exc, "orig", None)
    return (
        getattr(exc, "pgcode", None)
        or getattr(exc, "sqlstate", None)
        or getattr(orig, "pgcode", None)
        or getattr(orig, "sqlstate", None)
    )


def _errno(exc: BaseException) -> Optional[int]:
    for candidate in (getattr(exc, "orig", None), exc):
        args = getattr(candidate, "args", None)
        if args:
            try:
                return int(args[0])
            except (TypeError, ValueError):
                continue
    return None


def is_disconnect(exc: BaseException) -> bool:
    """Best-effort check that an error means the connection itself is gone."""
    exc = root_error(exc)
    if getattr(exc, "connection_invalidated", False):  # SQLAlchemy DBAPIError
        return True
    state = _sqlstate(exc)
    if state and (state.startswith(_PG_DISCONNECT_PREFIX) or state in _PG_DISCONNECT):
        return True
    if _errno(exc) in _MYSQL_DISCONNECT:
        return True
    msg = str(exc).lower()
    return any(t in msg for t in _DISCONNECT_MESSAGES)


def is_transient(exc: BaseException) -> bool:
    """Deadlocks, lock timeouts, serialization failures and dropped connections."""
    exc = root_error(exc)
    if _sqlstate(exc) in _PG_TRANSIENT:
        return True
    if _errno(exc) in _MYSQL_TRANSIENT:
        return True
    msg = str(exc).lower()
    if any(t in msg for t in _TRANSIENT_MESSAGES):
        return True
    orig = getattr(exc, "orig", None)
    names = {type(exc).__name__, type(orig).__name__ if orig is not None else ""}
    if names & _TIMEOUTISH_TYPES and "timeout" in msg:
        return True
    return is_disconnect(exc)


# --- stock retry predicates ---------------------------------------------------


def transient_only(connector) -> bool:
    last = connector.last_exception
    return last is not None and is_transient(last)


def retry_on(*exc_types: Type[BaseException]) -> RetryPredicate:
    """Retry only while the last failure is one of `exc_types`."""
    types: Tuple[Type[BaseException], ...] = exc_types

    def predicate(connector) -> bool:
        last = connector.last_exception
        return last is not None and isinstance(root_error(last), types)

    return predicate


def give_up_after(seconds: float, *, clock: Callable[[], float] = time.monotonic) -> RetryPredicate:
    """
    Time-boxed retries. Each outer call gets its own deadline, started at
    the first check of that call; connectors sharing the predicate do not
    move each other's deadline.
    """
    deadlines: "weakref.WeakKeyDictionary[object, float]" = weakref.WeakKeyDictionary()

    def predicate(connector) -> bool:
        now = clock()
        return now < deadlines.setdefault(connector.retry_context, now + seconds)

    return predicate


def all_of(*predicates: RetryPredicate) -> RetryPredicate:
    def predicate(connector) -> bool:
        return all(p(connector) for p in predicates)

    return predicate
