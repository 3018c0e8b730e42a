from __future__ import annotations

from flask_cors import CORS
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()
migrate = Migrate()
cors = CORS()


def install_sqlite_write_lock(engine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first DML and SQLite has no row locks,
    so two sessions can read the same wallet row before either writes.
    Taking the write lock up front serialises writers the way
    SELECT ... FOR UPDATE does on Postgres.
    """
    if (getattr(engine.dialect, "name", "") or "").lower() != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
