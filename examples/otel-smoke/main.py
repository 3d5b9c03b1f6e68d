import os
import random
import sqlite3
import time

from dbop_connector import Connector
from dbop_connector.contrib.dbapi_adapter import DBAPIConnectionManager
from dbop_connector.otel_runtime import execute_traced_optional
from dbop_connector.otel_setup import init_metrics, init_tracer, shutdown

# Enable tracing / metrics via env (can still be disabled by user)
os.environ.setdefault("DBOP_OTEL_ENABLED", "1")
os.environ.setdefault("DBOP_OTEL_METRICS_ENABLED", "1")

# Defaults for local collector
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "http://127.0.0.1:4318")


def flaky_insert(conn: sqlite3.Connection, i: int, fail_prob: float) -> str:
    """Insert a row, then fail randomly so that the unit is rolled back and retried."""
    conn.execute("INSERT INTO events(n) VALUES (?)", (i,))
    if random.random() < fail_prob:
        raise sqlite3.OperationalError("database is locked")
    time.sleep(random.uniform(0.01, 0.05))
    return "ok"


def main() -> None:
    # DBOP_OTEL_EXPORTER=http (default) or grpc
    exporter = os.getenv("DBOP_OTEL_EXPORTER", "http").lower()
    if exporter not in ("http", "grpc"):
        print(f"[dbop-connector] Unknown DBOP_OTEL_EXPORTER={exporter!r}, falling back to 'http'")
        exporter = "http"

    service_name = "dbop-connector-otel-smoke"
    init_tracer(service_name=service_name, exporter=exporter)
    init_metrics(service_name=service_name, exporter=exporter)

    n_ops = int(os.getenv("DBOP_SMOKE_OPS", "50"))
    fail_prob = float(os.getenv("DBOP_SMOKE_FAIL_PROB", "0.5"))
    print(f"[dbop-connector] running smoke: n_ops={n_ops}, fail_prob={fail_prob}, exporter={exporter}")

    manager = DBAPIConnectionManager(lambda: sqlite3.connect(":memory:", isolation_level=None))
    with Connector(manager, max_attempts=3) as conn:
        conn.run(lambda h: h.execute("CREATE TABLE events(n INTEGER)"))
        for i in range(n_ops):
            try:
                result = execute_traced_optional(
                    conn,
                    flaky_insert,
                    args=(i, fail_prob),
                    transactional=True,
                    span_name="dbop.smoke",
                    db_system="sqlite",
                    db_name="memory",
                    db_statement="INSERT INTO events(n) VALUES (?)",
                )
                print(f"[dbop-connector] op #{i} -> {result} after {conn.attempt_count} failed attempts")
            except sqlite3.OperationalError as exc:
                # all attempts failed; spans + metrics are still recorded
                print(f"[dbop-connector] op #{i} failed after retries: {exc!r}")

        stored = conn.run(lambda h: h.execute("SELECT COUNT(*) FROM events").fetchone()[0])
        print(f"[dbop-connector] rows committed: {stored}")

    shutdown()
    print("[dbop-connector] smoke run complete")


if __name__ == "__main__":
    main()
