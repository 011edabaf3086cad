"""Database connectors for Payout Ledger.

One connector is chosen from ``DATABASE_URL`` at startup and stays the only
store for the life of the process. Both connectors hand out a cursor inside
a transaction that commits on success and rolls back on any exception.
"""

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from ..config import settings

logger = logging.getLogger(__name__)


class PostgresConnector:
    """Pooled psycopg2 connections for PostgreSQL."""

    dialect = "postgres"
    placeholder = "%s"
    errors = (psycopg2.Error,)

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 10, ssl: bool = False):
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self.ssl = ssl
        self.pool: Optional[ThreadedConnectionPool] = None
        # getconn() raises instead of blocking when the pool is exhausted
        self._slots = threading.BoundedSemaphore(maxconn)

    def connect(self):
        """Open the connection pool."""
        kwargs = {"sslmode": "require"} if self.ssl else {}
        try:
            self.pool = ThreadedConnectionPool(
                self.minconn,
                self.maxconn,
                dsn=self.dsn,
                cursor_factory=RealDictCursor,
                **kwargs,
            )
            logger.info(f"Connected to PostgreSQL (pool {self.minconn}-{self.maxconn})")
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to database: {e}")
            raise

    def close(self):
        if self.pool:
            self.pool.closeall()
            self.pool = None

    @contextmanager
    def transaction(self) -> Iterator:
        if self.pool is None:
            raise psycopg2.InterfaceError("connection pool is not open")
        with self._slots:
            conn = self.pool.getconn()
            try:
                with conn.cursor() as cur:
                    yield cur
                conn.commit()
            except BaseException:
                if not conn.closed:
                    conn.rollback()
                raise
            finally:
                self.pool.putconn(conn, close=bool(conn.closed))


class SQLiteConnector:
    """File-backed SQLite, one connection per unit of work.

    Every transaction starts with BEGIN IMMEDIATE, so writers queue on the
    database lock (up to ``busy_timeout`` seconds) instead of interleaving.
    """

    dialect = "sqlite"
    placeholder = "?"
    errors = (sqlite3.Error,)

    def __init__(self, path: str, busy_timeout: float = 30.0):
        if not path or path == ":memory:":
            raise ValueError("SQLite ledger needs a file path; in-memory databases are per-connection")
        self.path = path
        self.busy_timeout = busy_timeout

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def connect(self):
        """Create the database file and switch it to WAL journaling."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        conn = self._open()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
        finally:
            conn.close()
        logger.info(f"Connected to SQLite database at {self.path}")

    def close(self):
        pass

    @contextmanager
    def transaction(self) -> Iterator:
        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.cursor()
            try:
                yield cur
                conn.execute("COMMIT")
            except BaseException:
                # SQLite may already have rolled back on its own (disk full, I/O error)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                cur.close()
        finally:
            conn.close()


def create_connector(database_url: Optional[str] = None):
    """Build the connector for a database URL (defaults to settings)."""
    url = database_url or settings.database_url
    if url.startswith("sqlite:"):
        path = url[len("sqlite:///"):] if url.startswith("sqlite:///") else ""
        return SQLiteConnector(path, busy_timeout=settings.sqlite_busy_timeout_seconds)
    if url.startswith(("postgres://", "postgresql://")):
        return PostgresConnector(
            url,
            minconn=settings.db_pool_min,
            maxconn=settings.db_pool_max,
            ssl=settings.db_ssl,
        )
    raise ValueError(f"Unsupported DATABASE_URL scheme: {url.split(':', 1)[0]}")
