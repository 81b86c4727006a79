from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator

from .migrations import apply_migrations
from .migrations_pg import apply_migrations_pg

DEFAULT_DATA_DIR = "/data"
SKIP_LOCKED_CLAUSE = "FOR UPDATE SKIP LOCKED"

_PG_MIGRATED: set[str] = set()


def get_db_url() -> str | None:
    url = os.environ.get("EP_DB_URL", "").strip() or os.environ.get("DATABASE_URL", "").strip()
    return url or None


def is_postgres_url(url: str | None) -> bool:
    if not url:
        return False
    return url.startswith("postgres://") or url.startswith("postgresql://")


def get_state_db_path(data_dir: str | None = None) -> str:
    data_dir = data_dir or os.environ.get("EP_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "jobs.sqlite3")


class DBConn:
    def __init__(self, conn: Any, backend: str) -> None:
        self._conn = conn
        self.backend = backend

    def execute(self, sql: str, params: tuple | list | None = None):
        sql = _normalize_sql(sql, self.backend)
        params = params or ()
        cursor = self._conn.cursor()
        cursor.execute(sql, params)
        return cursor

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        if self.backend == "postgres":
            with self._conn.transaction():
                yield self
            return
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "DBConn":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str | None = None) -> DBConn:
    url = get_db_url()
    if url and is_postgres_url(url):
        return _connect_postgres(url)
    return _connect_sqlite(path or get_state_db_path())


def _connect_postgres(url: str) -> DBConn:
    try:
        import psycopg
    except ImportError as exc:  # pragma: no cover - depends on env
        raise RuntimeError("psycopg is required for PostgreSQL support") from exc
    # autocommit: each statement commits on its own unless inside transaction()
    raw = psycopg.connect(url, autocommit=True)
    conn = DBConn(raw, "postgres")
    if url not in _PG_MIGRATED:
        apply_migrations_pg(conn)
        _PG_MIGRATED.add(url)
    return conn


def _connect_sqlite(path: str) -> DBConn:
    if path != ":memory:":
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
    raw = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    # every connect; the file at this path may have been replaced since the last one
    apply_migrations(raw)
    return DBConn(raw, "sqlite")


def _normalize_sql(sql: str, backend: str) -> str:
    if backend != "postgres":
        return _strip_skip_locked(sql)
    return _convert_qmark_to_percent(sql)


def _strip_skip_locked(sql: str) -> str:
    # sqlite has no row locks; BEGIN IMMEDIATE already serializes writers
    idx = sql.upper().find(SKIP_LOCKED_CLAUSE)
    if idx == -1:
        return sql
    return sql[:idx] + sql[idx + len(SKIP_LOCKED_CLAUSE) :]


def _convert_qmark_to_percent(sql: str) -> str:
    out = []
    in_single = False
    in_double = False
    escape = False
    for ch in sql:
        if ch == "\\" and not escape:
            escape = True
            out.append(ch)
            continue
        if ch == "'" and not in_double and not escape:
            in_single = not in_single
        elif ch == '"' and not in_single and not escape:
            in_double = not in_double
        if ch == "?" and not in_single and not in_double:
            out.append("%s")
        else:
            out.append(ch)
        escape = False
    return "".join(out)
