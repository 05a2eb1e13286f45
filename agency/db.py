import sqlite3
from typing import Iterable

from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            import psycopg2.extras

            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def is_postgres_url(db_path: str) -> bool:
    return str(db_path or "").lower().startswith("postgres")


def connect_database(db_path: str) -> Database:
    if is_postgres_url(db_path):
        try:
            import psycopg2
        except ImportError as exc:
            raise RuntimeError("psycopg2 nao instalado.") from exc
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


DOCUMENTS_DDL = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        collection TEXT NOT NULL,
        doc_id TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (collection, doc_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_documents_collection ON documents (collection)",
)


def init_db(db: Database | None = None):
    db = db or get_db()
    for statement in DOCUMENTS_DDL:
        db.execute(statement)
    db.commit()
