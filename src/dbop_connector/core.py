from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional, Tuple

from .config import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MODE,
    ConnectorSettings,
    validate_max_attempts,
)
from .modes import ModeController
from .stack import ExceptionStack
from .transaction import TransactionBoundary
from .types import ConnectionManager, Mode, Operation, RetryPredicate

logger = logging.getLogger(__name__)


def always_retry(connector: "Connector") -> bool:
    return True


_default_retry_predicate: RetryPredicate = always_retry


def _check_predicate(fn: Any) -> RetryPredicate:
    if not callable(fn):
        raise TypeError(f"retry predicate must be callable, got {type(fn).__name__}")
    return fn


def set_default_retry_predicate(fn: RetryPredicate) -> None:
    """Replace the process-wide predicate used by connectors without their own."""
    global _default_retry_predicate
    _default_retry_predicate = _check_predicate(fn)


def reset_default_retry_predicate() -> None:
    global _default_retry_predicate
    _default_retry_predicate = always_retry


def get_default_retry_predicate() -> RetryPredicate:
    return _default_retry_predicate


@dataclass(eq=False)
class RetryContext:
    """
    State of one outer call: failures so far and what decides the next retry.

    Compared and hashed by identity, so predicates can key per-call state on it.
    """

    max_attempts: int
    retry_predicate: RetryPredicate
    attempt_count: int = 0
    stack: ExceptionStack = field(default_factory=ExceptionStack)

    def record(self, exc: BaseException) -> None:
        self.stack.push(exc)
        self.attempt_count += 1

    @property
    def exhausted(self) -> bool:
        return self.attempt_count >= self.max_attempts


class Connector:
    """
    Retry-governed executor for units of work against a reconnectable handle.

    Each outer call (execute/run/txn) gets a fresh RetryContext. A failed
    attempt is pushed onto the exception stack, then the ceiling is checked,
    then the retry predicate. Whichever stops the loop, the caller receives
    the exception the operation actually raised.

    Calls issued while another call is running, or while the manager reports
    an open transaction, are nested: they run exactly once and their failures
    go to the enclosing call.

    One instance is not safe to share between threads.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        mode: Mode | str = DEFAULT_MODE,
        retry_debug: bool = False,
        retry_predicate: Optional[RetryPredicate] = None,
    ):
        self.manager = manager
        self.max_attempts = max_attempts
        self.mode = Mode.parse(mode)
        self.retry_debug = retry_debug
        self._retry_predicate: Optional[RetryPredicate] = None
        if retry_predicate is not None:
            self.set_retry_predicate(retry_predicate)
        self._controller = ModeController(manager)
        self._boundary = TransactionBoundary(manager)
        self._context = RetryContext(max_attempts=max_attempts, retry_predicate=self.retry_predicate)
        self._in_call = False

    @classmethod
    def from_settings(
        cls, manager: ConnectionManager, settings: Optional[ConnectorSettings] = None, **kwargs: Any
    ) -> "Connector":
        settings = settings or ConnectorSettings.from_env()
        return cls(
            manager,
            max_attempts=settings.max_attempts,
            mode=settings.mode,
            retry_debug=settings.retry_debug,
            **kwargs,
        )

    # --- configuration --------------------------------------------------------

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @max_attempts.setter
    def max_attempts(self, value: int) -> None:
        self._max_attempts = validate_max_attempts(value)

    @property
    def retry_predicate(self) -> RetryPredicate:
        return self._retry_predicate or _default_retry_predicate

    def set_retry_predicate(self, fn: RetryPredicate) -> None:
        self._retry_predicate = _check_predicate(fn)

    def reset_retry_predicate(self) -> None:
        self._retry_predicate = None

    @contextmanager
    def with_mode(self, mode: Optional[Mode | str]) -> Iterator[Mode]:
        """Override the mode until the block exits, however it exits."""
        prior = self.mode
        if mode is not None:
            self.mode = Mode.parse(mode)
        try:
            yield self.mode
        finally:
            self.mode = prior

    # --- introspection --------------------------------------------------------

    @property
    def retry_context(self) -> RetryContext:
        """Context of the current (or most recent) outer call."""
        return self._context

    @property
    def attempt_count(self) -> int:
        return self._context.attempt_count

    @property
    def exception_stack(self) -> Tuple[BaseException, ...]:
        return self._context.stack.snapshot()

    @property
    def last_exception(self) -> Optional[BaseException]:
        return self._context.stack.last()

    def get_attempt_count(self) -> int:
        return self.attempt_count

    def get_exception_stack(self) -> Tuple[BaseException, ...]:
        return self.exception_stack

    # --- connection helpers ---------------------------------------------------

    def handle(self) -> Any:
        return self._controller.handle(self.mode)

    def connected(self) -> bool:
        return self.manager.probe()

    def in_txn(self) -> bool:
        return self.manager.in_transaction()

    def disconnect(self) -> None:
        self.manager.close()

    def __enter__(self) -> "Connector":
        return self

    def __exit__(self, *exc: Any) -> bool:
        self.disconnect()
        return False

    # --- execution ------------------------------------------------------------

    def execute(
        self,
        operation: Operation,
        *,
        mode: Optional[Mode | str] = None,
        transactional: bool = False,
        args: tuple = (),
        kwargs: Optional[Dict[str, Any]] = None,
        retry_predicate: Optional[RetryPredicate] = None,
    ) -> Any:
        """
        Run `operation(handle, *args, **kwargs)` until it succeeds, the
        attempt ceiling is reached or the retry predicate says stop.

        mode=None keeps the instance default; transactional=True wraps each
        attempt in begin/commit with rollback on failure.
        """
        kwargs = kwargs or {}
        if retry_predicate is not None:
            _check_predicate(retry_predicate)

        def bound(handle: Any) -> Any:
            return operation(handle, *args, **kwargs)

        with self.with_mode(mode):
            if self._in_call or self.manager.in_transaction():
                return self._execute_nested(bound, transactional)
            return self._retry_loop(bound, transactional, retry_predicate)

    def run(self, operation: Operation, *args: Any, mode: Optional[Mode | str] = None, **kwargs: Any) -> Any:
        return self.execute(operation, mode=mode, transactional=False, args=args, kwargs=kwargs)

    def txn(self, operation: Operation, *args: Any, mode: Optional[Mode | str] = None, **kwargs: Any) -> Any:
        return self.execute(operation, mode=mode, transactional=True, args=args, kwargs=kwargs)

    def svp(self, operation: Operation, *args: Any, mode: Optional[Mode | str] = None, **kwargs: Any) -> Any:
        """
        Savepoint inside an open transaction, run once and never retried.
        Outside a transaction this is the same as txn().
        """
        if not self.manager.in_transaction():
            return self.txn(operation, *args, mode=mode, **kwargs)

        def bound(handle: Any) -> Any:
            return operation(handle, *args, **kwargs)

        with self.with_mode(mode), self._nested():
            return self._boundary.savepoint(self.manager.acquire(), bound)

    @contextmanager
    def _nested(self) -> Iterator[None]:
        outer = self._in_call
        self._in_call = True
        try:
            yield
        finally:
            self._in_call = outer

    def _execute_nested(self, bound: Operation, transactional: bool) -> Any:
        with self._nested():
            handle = self.manager.acquire()
            if transactional and not self.manager.in_transaction():
                return self._boundary.transaction(handle, bound)
            return bound(handle)

    def _retry_loop(
        self, bound: Operation, transactional: bool, retry_predicate: Optional[RetryPredicate]
    ) -> Any:
        context = RetryContext(
            max_attempts=self.max_attempts,
            retry_predicate=retry_predicate or self.retry_predicate,
        )
        self._context = context
        unit = self._boundary.wrap(bound, transactional=transactional)

        with self._nested():
            while True:
                try:
                    return self._controller.invoke(self.mode, unit)
                except Exception as exc:
                    context.record(exc)
                    if context.exhausted:
                        raise
                    if not context.retry_predicate(self):
                        raise
                    if self.retry_debug:
                        logger.warning(
                            "retrying %s (attempt %d of %d failed): %r",
                            "txn" if transactional else "run",
                            context.attempt_count,
                            context.max_attempts,
                            exc,
                        )
