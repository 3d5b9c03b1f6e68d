from __future__ import annotations
import pytest

from dbop_connector import core


class FakeHandle:
    def __init__(self, number: int):
        self.number = number
        self.alive = True


class FakeManager:
    """
    In-memory connection manager. Writes made inside a transaction only land
    in `committed` on commit; a rollback or a dropped handle discards them.
    """

    def __init__(self):
        self.handle = None
        self.connects = 0
        self.probes = 0
        self.log: list[str] = []
        self.txn_open = False
        self.pending: list = []
        self.committed: list = []
        self.rollback_error: BaseException | None = None
        self.savepoint_error: BaseException | None = None

    # --- ConnectionManager ---
    def probe(self) -> bool:
        self.probes += 1
        self.log.append("probe")
        if self.handle is None:
            return False
        if not self.handle.alive:
            self.handle = None
            return False
        return True

    def acquire(self):
        if self.handle is None:
            self.connects += 1
            self.handle = FakeHandle(self.connects)
            self.log.append(f"connect-{self.connects}")
        return self.handle

    def in_transaction(self) -> bool:
        return self.txn_open

    def begin(self, handle):
        self.log.append("begin")
        self.txn_open = True

    def commit(self, handle):
        if not handle.alive:
            raise ConnectionError("lost connection")
        self.log.append("commit")
        self.committed.extend(self.pending)
        self.pending.clear()
        self.txn_open = False

    def rollback(self, handle):
        self.log.append("rollback")
        self.txn_open = False
        self.pending.clear()
        if self.rollback_error is not None:
            raise self.rollback_error

    def savepoint(self, handle, name):
        self.log.append("savepoint")
        self._mark = len(self.pending)

    def release_savepoint(self, handle, name):
        self.log.append("release")

    def rollback_to_savepoint(self, handle, name):
        self.log.append("rollback-to")
        del self.pending[self._mark :]
        if self.savepoint_error is not None:
            raise self.savepoint_error

    def close(self):
        self.log.append("close")
        self.handle = None
        self.txn_open = False

    # --- test helpers ---
    def write(self, handle, value):
        (self.pending if self.txn_open else self.committed).append(value)

    def drop(self):
        """Simulate the server going away under the current handle."""
        if self.handle is not None:
            self.handle.alive = False
        self.txn_open = False
        self.pending.clear()


@pytest.fixture
def manager():
    return FakeManager()


@pytest.fixture(autouse=True)
def _restore_default_predicate():
    yield
    core.reset_default_retry_predicate()
