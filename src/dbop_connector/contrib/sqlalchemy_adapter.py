from __future__ import annotations
import logging
import os
from contextlib import suppress
from typing import Dict, Optional

from sqlalchemy.engine import Connection, Engine, NestedTransaction, RootTransaction

logger = logging.getLogger(__name__)


class SQLAlchemyConnectionManager:
    """
    Connection manager on top of an Engine; operations receive a Connection.

    Only the transaction opened by begin() counts for in_transaction().
    Whatever SQLAlchemy autobegins outside it (plain conn.execute() inside
    run()) is committed when the next unit acquires the connection, before
    begin(), and on close(), the way an autocommit DB-API connection would
    have kept those writes.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._conn: Optional[Connection] = None
        self._pid: Optional[int] = None
        self._txn: Optional[RootTransaction] = None
        self._savepoints: Dict[str, NestedTransaction] = {}

    def _forget(self) -> None:
        self._conn = None
        self._pid = None
        self._txn = None
        self._savepoints.clear()

    def _discard(self) -> None:
        conn = self._conn
        self._forget()
        if conn is not None:
            with suppress(Exception):
                conn.invalidate()
            with suppress(Exception):
                conn.close()

    def _seems_connected(self) -> bool:
        if self._conn is None:
            return False
        if self._pid != os.getpid():
            logger.debug("dropping connection inherited from pid %s", self._pid)
            self._forget()
            return False
        if self._conn.closed or self._conn.invalidated:
            self._discard()
            return False
        return True

    def _settle(self, handle: Connection) -> None:
        # commit what autobegin left open outside our own transaction
        if self._txn is None and handle.in_transaction():
            handle.commit()

    def probe(self) -> bool:
        if not self._seems_connected():
            return False
        try:
            self.engine.dialect.do_ping(self._conn.connection.dbapi_connection)
        except Exception as exc:
            logger.debug("ping failed, invalidating connection: %r", exc)
            self._discard()
            return False
        return True

    def acquire(self) -> Connection:
        if not self._seems_connected():
            self._conn = self.engine.connect()
            self._pid = os.getpid()
        else:
            self._settle(self._conn)
        return self._conn

    def in_transaction(self) -> bool:
        return self._seems_connected() and self._txn is not None and self._txn.is_active

    def begin(self, handle: Connection) -> None:
        self._settle(handle)
        self._txn = handle.begin()

    def commit(self, handle: Connection) -> None:
        txn, self._txn = self._txn, None
        if txn is not None:
            txn.commit()
        else:
            handle.commit()

    def rollback(self, handle: Connection) -> None:
        txn, self._txn = self._txn, None
        self._savepoints.clear()
        if txn is not None:
            txn.rollback()
        else:
            handle.rollback()

    def savepoint(self, handle: Connection, name: str) -> None:
        self._savepoints[name] = handle.begin_nested()

    def release_savepoint(self, handle: Connection, name: str) -> None:
        self._savepoints.pop(name).commit()

    def rollback_to_savepoint(self, handle: Connection, name: str) -> None:
        self._savepoints.pop(name).rollback()

    def close(self) -> None:
        conn = self._conn
        in_own_txn = self._txn is not None
        self._forget()
        if conn is None:
            return
        try:
            if not in_own_txn and not conn.closed and not conn.invalidated and conn.in_transaction():
                conn.commit()
        finally:
            conn.close()
