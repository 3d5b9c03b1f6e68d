from __future__ import annotations
import logging
import os
from contextlib import closing, suppress
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Works with any PEP 249 connection exposing .cursor(), .commit(), .rollback()
# and .close(). Transactions are opened with an explicit BEGIN, so drivers that
# open one implicitly should be put in autocommit mode by `connect`
# (e.g. sqlite3.connect(..., isolation_level=None)).


class DBAPIConnectionManager:
    """
    Connection manager over a `connect()` factory.

    The handle handed to operations is the raw DB-API connection. A probe
    runs `ping_sql`; if that fails the connection is closed (best effort) and
    forgotten, and the next acquire() calls `connect()` again.
    """

    def __init__(self, connect: Callable[[], Any], *, ping_sql: str = "SELECT 1"):
        self._connect = connect
        self.ping_sql = ping_sql
        self._conn: Optional[Any] = None
        self._pid: Optional[int] = None
        self._in_txn = False

    def _seems_connected(self) -> bool:
        if self._conn is None:
            return False
        if self._pid != os.getpid():
            # inherited across fork: the parent still owns the socket
            logger.debug("dropping connection inherited from pid %s", self._pid)
            self._forget()
            return False
        return True

    def _forget(self) -> None:
        self._conn = None
        self._pid = None
        self._in_txn = False

    def _discard(self) -> None:
        conn = self._conn
        self._forget()
        if conn is not None:
            with suppress(Exception):
                conn.close()

    def probe(self) -> bool:
        if not self._seems_connected():
            return False
        try:
            with closing(self._conn.cursor()) as cur:
                cur.execute(self.ping_sql)
        except Exception as exc:
            logger.debug("ping failed, discarding connection: %r", exc)
            self._discard()
            return False
        return True

    def acquire(self) -> Any:
        if not self._seems_connected():
            self._conn = self._connect()
            self._pid = os.getpid()
            self._in_txn = False
        return self._conn

    def in_transaction(self) -> bool:
        return self._seems_connected() and self._in_txn

    def begin(self, handle: Any) -> None:
        with closing(handle.cursor()) as cur:
            cur.execute("BEGIN")
        self._in_txn = True

    def commit(self, handle: Any) -> None:
        handle.commit()
        self._in_txn = False

    def rollback(self, handle: Any) -> None:
        self._in_txn = False
        handle.rollback()

    def savepoint(self, handle: Any, name: str) -> None:
        with closing(handle.cursor()) as cur:
            cur.execute(f"SAVEPOINT {name}")

    def release_savepoint(self, handle: Any, name: str) -> None:
        with closing(handle.cursor()) as cur:
            cur.execute(f"RELEASE SAVEPOINT {name}")

    def rollback_to_savepoint(self, handle: Any, name: str) -> None:
        with closing(handle.cursor()) as cur:
            cur.execute(f"ROLLBACK TO SAVEPOINT {name}")

    def close(self) -> None:
        self._discard()
