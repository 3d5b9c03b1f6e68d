from __future__ import annotations
import logging
import os
from contextlib import suppress
from typing import Any, Optional

# psycopg 3.x (top-level imports)
try:
    from psycopg import Connection
    from psycopg.pq import TransactionStatus
except ImportError as e:  # pragma: no cover
    raise RuntimeError("psycopg adapter requires psycopg>=3 installed") from e

logger = logging.getLogger(__name__)


class PsycopgConnectionManager:
    """
    psycopg 3 connection manager.

    Connections are opened in autocommit mode and transactions are driven
    with explicit BEGIN/COMMIT/ROLLBACK, so the server-side transaction
    status is the single source of truth for in_transaction().
    """

    def __init__(self, conninfo: str = "", *, ping_sql: str = "SELECT 1", **connect_kwargs: Any):
        connect_kwargs["autocommit"] = True
        self.conninfo = conninfo
        self.ping_sql = ping_sql
        self.connect_kwargs = connect_kwargs
        self._conn: Optional[Connection] = None
        self._pid: Optional[int] = None

    def _forget(self) -> None:
        self._conn = None
        self._pid = None

    def _discard(self) -> None:
        conn = self._conn
        self._forget()
        if conn is not None:
            with suppress(Exception):
                conn.close()

    def _seems_connected(self) -> bool:
        if self._conn is None:
            return False
        if self._pid != os.getpid():
            logger.debug("dropping connection inherited from pid %s", self._pid)
            self._forget()
            return False
        if self._conn.closed or self._conn.broken:
            self._discard()
            return False
        return True

    def probe(self) -> bool:
        if not self._seems_connected():
            return False
        try:
            self._conn.execute(self.ping_sql)
        except Exception as exc:
            logger.debug("ping failed, discarding connection: %r", exc)
            self._discard()
            return False
        return True

    def acquire(self) -> Connection:
        if not self._seems_connected():
            self._conn = Connection.connect(self.conninfo, **self.connect_kwargs)
            self._pid = os.getpid()
        return self._conn

    def in_transaction(self) -> bool:
        if not self._seems_connected():
            return False
        return self._conn.info.transaction_status != TransactionStatus.IDLE

    def begin(self, handle: Connection) -> None:
        handle.execute("BEGIN")

    def commit(self, handle: Connection) -> None:
        handle.execute("COMMIT")

    def rollback(self, handle: Connection) -> None:
        handle.execute("ROLLBACK")

    def savepoint(self, handle: Connection, name: str) -> None:
        handle.execute(f"SAVEPOINT {name}")

    def release_savepoint(self, handle: Connection, name: str) -> None:
        handle.execute(f"RELEASE SAVEPOINT {name}")

    def rollback_to_savepoint(self, handle: Connection, name: str) -> None:
        handle.execute(f"ROLLBACK TO SAVEPOINT {name}")

    def close(self) -> None:
        self._discard()
