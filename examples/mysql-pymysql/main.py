from __future__ import annotations
import logging
import os
from dotenv import load_dotenv
import pymysql

from dbop_connector import Connector, Mode
from dbop_connector.classify import transient_only
from dbop_connector.contrib.dbapi_adapter import DBAPIConnectionManager

load_dotenv()

MYSQL_HOST = os.getenv("MYSQL_HOST", "localhost")
MYSQL_PORT = int(os.getenv("MYSQL_PORT", "3306"))
MYSQL_USER = os.getenv("MYSQL_USER", "dbop")
MYSQL_PASSWORD = os.getenv("MYSQL_PASSWORD", "dbop")
MYSQL_DB = os.getenv("MYSQL_DB", "dbop")

logging.basicConfig(level=logging.INFO)


def connect():
    # autocommit so that transactions start only at the manager's explicit BEGIN
    return pymysql.connect(
        host=MYSQL_HOST,
        port=MYSQL_PORT,
        user=MYSQL_USER,
        password=MYSQL_PASSWORD,
        database=MYSQL_DB,
        autocommit=True,
        charset="utf8mb4",
        connect_timeout=3,
        read_timeout=10,
        write_timeout=10,
    )


def create_schema(conn) -> None:
    with conn.cursor() as cur:
        cur.execute("""
            CREATE TABLE IF NOT EXISTS items (
                id   INT PRIMARY KEY AUTO_INCREMENT,
                name VARCHAR(255) UNIQUE
            )
        """)
        # idempotent seeds
        cur.execute("INSERT IGNORE INTO items(name) VALUES ('alpha'), ('beta')")


def insert_one(conn, name: str) -> None:
    with conn.cursor() as cur:
        cur.execute("SET SESSION innodb_lock_wait_timeout = 5")
        # idempotent insert so re-runs don't fail
        cur.execute("INSERT IGNORE INTO items(name) VALUES (%s)", (name,))


def count_items(conn) -> int:
    with conn.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM items")
        (n,) = cur.fetchone()
        return int(n)


def main():
    manager = DBAPIConnectionManager(connect)
    with Connector(manager, mode=Mode.FIXUP, retry_predicate=transient_only, retry_debug=True) as conn:
        conn.run(create_schema)

        # write: whole transaction retried on deadlock / lock wait timeout
        conn.txn(insert_one, "gamma")

        total = conn.run(count_items)
        print("Row count:", total)


if __name__ == "__main__":
    main()
