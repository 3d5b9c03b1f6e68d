from __future__ import annotations
import logging
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection

from dbop_connector import Connector, Mode
from dbop_connector.classify import transient_only
from dbop_connector.contrib.sqlalchemy_adapter import SQLAlchemyConnectionManager

logging.basicConfig(level=logging.INFO)

engine = create_engine("sqlite+pysqlite:///example.db", echo=False, connect_args={"timeout": 1})


def setup(db: Connection) -> None:
    db.execute(text("CREATE TABLE IF NOT EXISTS items(id INTEGER PRIMARY KEY, name TEXT)"))
    db.execute(text("DELETE FROM items"))
    db.execute(text("INSERT INTO items(name) VALUES ('alpha'), ('beta')"))


def insert_one(db: Connection, name: str) -> None:
    db.execute(text("INSERT INTO items(name) VALUES (:n)"), {"n": name})


def select_all(db: Connection):
    return [tuple(r) for r in db.execute(text("SELECT id, name FROM items ORDER BY id")).all()]


def main() -> None:
    with Connector(
        SQLAlchemyConnectionManager(engine),
        max_attempts=5,
        mode=Mode.FIXUP,
        retry_debug=True,
        retry_predicate=transient_only,
    ) as conn:
        # 1) Prepare base data
        conn.txn(setup)

        # 2) Write step, retried as a whole on deadlocks / locked database
        conn.txn(insert_one, "gamma")

        # 3) Read step
        rows = conn.run(select_all)
        print("Rows:", rows)
        print("Failed attempts on last call:", conn.attempt_count)


if __name__ == "__main__":
    main()
