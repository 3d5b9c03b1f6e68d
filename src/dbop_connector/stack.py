from __future__ import annotations
from typing import Iterator, List, Optional, Tuple


class ExceptionStack:
    """Failures recorded during one outer call, oldest first."""

    def __init__(self) -> None:
        self._entries: List[BaseException] = []

    def push(self, error: BaseException) -> None:
        self._entries.append(error)

    def last(self) -> Optional[BaseException]:
        return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        self._entries.clear()

    def snapshot(self) -> Tuple[BaseException, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[BaseException]:
        return iter(tuple(self._entries))

    def __repr__(self) -> str:
        return f"ExceptionStack({self._entries!r})"
