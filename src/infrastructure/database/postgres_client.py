"""Direct PostgreSQL access for operational tasks.

Request handling goes through Supabase; this pool is only used where SQL is
needed verbatim: applying and rolling back schema migrations and reading
database size statistics. It is enabled when DATABASE_URL is set.
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Generator

from psycopg2 import pool
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)


class PostgresClient:
    """Pooled psycopg2 connections on DATABASE_URL."""

    def __init__(self, dsn: str | None = None, maxconn: int = 5) -> None:
        self.dsn = dsn or os.getenv("DATABASE_URL")
        self._pool: Any = None
        if self.dsn:
            try:
                self._pool = pool.SimpleConnectionPool(minconn=1, maxconn=maxconn, dsn=self.dsn)
            except Exception as exc:
                raise RuntimeError(f"Failed to initialize PostgreSQL connection pool: {exc}") from exc

    @property
    def enabled(self) -> bool:
        return self._pool is not None

    @contextmanager
    def get_connection(self) -> Generator[Any, None, None]:
        """Borrow a connection; commits on success, rolls back on error."""
        if self._pool is None:
            raise RuntimeError("DATABASE_URL is not configured")
        conn = self._pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def get_cursor(self, dict_cursor: bool = True) -> Generator[Any, None, None]:
        with self.get_connection() as conn:
            cursor = conn.cursor(cursor_factory=RealDictCursor if dict_cursor else None)
            try:
                yield cursor
            finally:
                cursor.close()

    def execute_one(self, query: str, params: tuple = ()) -> dict[str, Any] | None:
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            row = cursor.fetchone()
            return dict(row) if row else None

    def execute_many(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.get_cursor() as cursor:
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def execute_update(self, query: str, params: tuple = ()) -> int:
        """Run an UPDATE/DELETE/DDL statement and return the affected row count."""
        with self.get_cursor(dict_cursor=False) as cursor:
            cursor.execute(query, params)
            return cursor.rowcount

    def execute_script(self, sql: str) -> None:
        """Run a multi-statement SQL script in one transaction."""
        with self.get_cursor(dict_cursor=False) as cursor:
            cursor.execute(sql)

    def ping(self) -> bool:
        row = self.execute_one("SELECT 1 AS ok")
        return bool(row and row.get("ok") == 1)

    def close(self) -> None:
        if self._pool:
            self._pool.closeall()


_POSTGRES_CLIENT: PostgresClient | None = None


def get_postgres_client() -> PostgresClient | None:
    """Singleton client, or None when DATABASE_URL is unset."""
    global _POSTGRES_CLIENT
    if not os.getenv("DATABASE_URL"):
        return None
    if _POSTGRES_CLIENT is None:
        _POSTGRES_CLIENT = PostgresClient()
        logger.info("PostgreSQL connection pool initialized")
    return _POSTGRES_CLIENT
