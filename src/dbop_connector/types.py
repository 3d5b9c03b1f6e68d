from __future__ import annotations
from enum import Enum
from typing import Any, Callable, Protocol, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .core import Connector


class Mode(str, Enum):
    """How connectivity is validated around an operation."""

    UNCHECKED = "unchecked"  # no validation at all
    CHECKED = "checked"  # probe before running
    FIXUP = "fixup"  # run, probe only after a failure, rerun once on disconnect

    @classmethod
    def parse(cls, value: "Mode | str") -> "Mode":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ValueError(f"unknown mode {value!r} (expected one of: {choices})") from None


class ConnectionManager(Protocol):
    """
    Owns the physical handle. The engine only talks to it through these calls.

    A probe that reports False must discard the dead handle so that the next
    acquire() opens a fresh one.
    """

    def probe(self) -> bool: ...

    def acquire(self) -> Any: ...

    def in_transaction(self) -> bool: ...

    def begin(self, handle: Any) -> None: ...

    def commit(self, handle: Any) -> None: ...

    def rollback(self, handle: Any) -> None: ...

    def savepoint(self, handle: Any, name: str) -> None: ...

    def release_savepoint(self, handle: Any, name: str) -> None: ...

    def rollback_to_savepoint(self, handle: Any, name: str) -> None: ...

    def close(self) -> None: ...


# Receives the handle first, then any forwarded args/kwargs
Operation = Callable[..., Any]

# Consulted after each failed attempt that is still under the ceiling
RetryPredicate = Callable[["Connector"], bool]
