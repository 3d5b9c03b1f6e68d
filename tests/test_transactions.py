from __future__ import annotations
import pytest

from dbop_connector import (
    Connector,
    FailureKind,
    Mode,
    SavepointRollbackError,
    TxnRollbackError,
    failure_kind,
)


class Boom(RuntimeError):
    pass


def _raise(exc):
    raise exc


def test_txn_commits_on_success(manager):
    conn = Connector(manager)
    out = conn.txn(lambda h: manager.write(h, "a") or "done")
    assert out == "done"
    assert manager.committed == ["a"]
    assert manager.log[-2:] == ["begin", "commit"]
    assert not conn.in_txn()


def test_run_has_no_implicit_transaction(manager):
    conn = Connector(manager)
    conn.run(lambda h: manager.write(h, "a"))
    assert "begin" not in manager.log
    assert manager.committed == ["a"]


def test_failed_attempt_is_rolled_back_before_retry(manager):
    calls = {"n": 0}
    states = []

    def op(h):
        calls["n"] += 1
        manager.write(h, f"row-{calls['n']}")
        if calls["n"] == 1:
            raise Boom("deadlock")
        return calls["n"]

    def predicate(c):
        states.append((manager.txn_open, list(manager.pending)))
        return True

    conn = Connector(manager, retry_predicate=predicate)
    assert conn.txn(op) == 2
    assert states == [(False, [])]
    assert manager.committed == ["row-2"]
    assert [e for e in manager.log if e in ("begin", "commit", "rollback")] == [
        "begin",
        "rollback",
        "begin",
        "commit",
    ]


def test_commit_failure_rolls_back_and_retries(manager):
    conn = Connector(manager, max_attempts=3)

    def op(h):
        manager.write(h, h.number)
        if h.number == 1:
            manager.handle.alive = False  # commit will fail on this handle
        return h.number

    assert conn.txn(op) == 2
    assert manager.committed == [2]
    assert isinstance(conn.exception_stack[0], ConnectionError)


def test_rollback_failure_is_tagged(manager):
    manager.rollback_error = ConnectionError("rollback on dead socket")
    err = Boom("write failed")

    def op(h):
        raise err

    conn = Connector(manager, max_attempts=1)
    with pytest.raises(TxnRollbackError) as info:
        conn.txn(op)
    exc = info.value
    assert exc.error is err
    assert exc.__cause__ is err
    assert str(exc.rollback_error) == "rollback on dead socket"
    assert failure_kind(exc) is FailureKind.TXN_ROLLBACK
    assert failure_kind(err) is FailureKind.OPERATION
    assert conn.exception_stack == (exc,)


def test_predicate_can_branch_on_failure_kind(manager):
    manager.rollback_error = ConnectionError("rollback failed")
    conn = Connector(
        manager,
        retry_predicate=lambda c: failure_kind(c.last_exception) is not FailureKind.TXN_ROLLBACK,
    )
    with pytest.raises(TxnRollbackError):
        conn.txn(lambda h: _raise(Boom("x")))
    assert conn.attempt_count == 1


def test_fixup_txn_restarts_transaction_on_new_handle(manager):
    def op(h):
        manager.write(h, f"from-{h.number}")
        if h.number == 1:
            manager.drop()
            raise ConnectionError("server closed the connection")
        return h.number

    conn = Connector(manager, mode=Mode.FIXUP)
    assert conn.txn(op) == 2
    assert manager.committed == ["from-2"]
    assert conn.exception_stack == ()
    assert manager.log.count("begin") == 2


def test_nested_txn_inside_txn_runs_once_and_outer_retries(manager):
    inner_calls = []
    outer_calls = []
    conn = Connector(manager, max_attempts=3)

    def inner(h):
        inner_calls.append(h.number)
        manager.write(h, f"inner-{len(inner_calls)}")
        if len(inner_calls) == 1:
            raise Boom("inner failed")

    def outer(h):
        outer_calls.append(h.number)
        conn.txn(inner)
        return "outer ok"

    assert conn.txn(outer) == "outer ok"
    assert len(inner_calls) == 2
    assert len(outer_calls) == 2
    assert manager.log.count("begin") == 2  # no begin for the nested txn
    assert manager.committed == ["inner-2"]
    assert conn.attempt_count == 1


def test_nested_run_inside_txn_does_not_reset_outer_state(manager):
    conn = Connector(manager)
    calls = {"n": 0}
    observed = []

    def outer(h):
        calls["n"] += 1
        conn.run(lambda h2: observed.append(conn.attempt_count))
        if calls["n"] == 1:
            raise Boom("first")
        return "ok"

    assert conn.txn(outer) == "ok"
    assert observed == [0, 1]
    assert conn.attempt_count == 1


def test_nested_txn_inside_run_opens_a_transaction_once(manager):
    conn = Connector(manager)
    attempts = {"n": 0}

    def inner(h):
        manager.write(h, "inner")
        raise Boom("inner boom")

    def outer(h):
        attempts["n"] += 1
        with pytest.raises(Boom):
            conn.txn(inner)
        return "survived"

    assert conn.run(outer) == "survived"
    assert attempts["n"] == 1
    assert manager.log.count("begin") == 1
    assert manager.log.count("rollback") == 1
    assert manager.committed == []


def test_call_inside_caller_opened_transaction_is_not_retried(manager):
    conn = Connector(manager, max_attempts=5)
    manager.begin(manager.acquire())
    calls = {"n": 0}

    def op(h):
        calls["n"] += 1
        raise Boom("no retry here")

    with pytest.raises(Boom):
        conn.txn(op)
    assert calls["n"] == 1


def test_svp_inside_txn_releases_on_success(manager):
    conn = Connector(manager)

    def outer(h):
        manager.write(h, "outer")
        conn.svp(lambda h2: manager.write(h2, "inner"))

    conn.txn(outer)
    assert manager.committed == ["outer", "inner"]
    assert "savepoint" in manager.log and "release" in manager.log


def test_svp_failure_rolls_back_to_savepoint_only(manager):
    conn = Connector(manager)

    def outer(h):
        manager.write(h, "outer")
        with pytest.raises(Boom):
            conn.svp(lambda h2: manager.write(h2, "inner") or _raise(Boom("inner")))
        return "ok"

    assert conn.txn(outer) == "ok"
    assert manager.committed == ["outer"]
    assert "rollback-to" in manager.log
    assert conn.attempt_count == 0


def test_svp_failure_uncaught_retries_whole_transaction(manager):
    conn = Connector(manager)
    svp_calls = []

    def inner(h):
        svp_calls.append(1)
        if len(svp_calls) == 1:
            raise Boom("svp failed")

    def outer(h):
        manager.write(h, f"outer-{len(svp_calls)}")
        conn.svp(inner)

    conn.txn(outer)
    assert len(svp_calls) == 2
    assert manager.committed == ["outer-1"]
    assert conn.attempt_count == 1


def test_svp_rollback_failure_is_tagged(manager):
    manager.savepoint_error = RuntimeError("savepoint does not exist")
    conn = Connector(manager, max_attempts=1)
    err = Boom("inner")

    def outer(h):
        conn.svp(lambda h2: _raise(err))

    with pytest.raises(SavepointRollbackError) as info:
        conn.txn(outer)
    assert info.value.error is err
    assert failure_kind(info.value) is FailureKind.SAVEPOINT_ROLLBACK


def test_svp_outside_transaction_is_a_retried_txn(manager):
    conn = Connector(manager, max_attempts=3)
    calls = {"n": 0}

    def op(h):
        calls["n"] += 1
        manager.write(h, calls["n"])
        if calls["n"] < 3:
            raise Boom("retry me")
        return "ok"

    assert conn.svp(op) == "ok"
    assert manager.committed == [3]
    assert "savepoint" not in manager.log
    assert conn.attempt_count == 2


def test_interrupt_inside_txn_rolls_back_and_is_not_an_attempt(manager):
    conn = Connector(manager, max_attempts=3)

    def op(h):
        manager.write(h, "half")
        raise KeyboardInterrupt

    with pytest.raises(KeyboardInterrupt):
        conn.txn(op)
    assert manager.log[-2:] == ["begin", "rollback"]
    assert manager.pending == [] and manager.committed == []
    assert not conn.in_txn()
    assert conn.attempt_count == 0

    # the connector is not left thinking it is nested: later calls still retry
    with pytest.raises(Boom):
        conn.txn(lambda h: _raise(Boom("deadlock")))
    assert conn.attempt_count == 3


def test_interrupt_survives_a_failed_rollback(manager):
    manager.rollback_error = ConnectionError("gone")
    conn = Connector(manager)

    with pytest.raises(SystemExit):
        conn.txn(lambda h: _raise(SystemExit(2)))
    assert conn.attempt_count == 0
    assert not conn.in_txn()
