"""PostgreSQL access for runtime settings records."""

import os
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.extensions import connection as Connection
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from runtime_settings.logger.logger import get_logger
from runtime_settings.logger.types import Category, param

DB_PASSWORD_SECRET = "/run/secrets/db_password"


class PostgresConfig:
    """Connection parameters, taken from arguments or DB_* environment variables."""

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_conn: int = 2,
        max_conn: int = 10,
        connect_timeout: int = 10,
        statement_timeout_ms: int | None = None,
    ) -> None:
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "runtime_settings")
        self.user = user or os.getenv("DB_USER", "runtime_settings")
        self.password = password or self._secret_or_env()
        self.min_conn = min_conn
        self.max_conn = max_conn
        self.connect_timeout = connect_timeout
        self.statement_timeout_ms = statement_timeout_ms or int(
            os.getenv("DB_STATEMENT_TIMEOUT_MS", "0")
        )

    @staticmethod
    def _secret_or_env() -> str:
        if os.path.exists(DB_PASSWORD_SECRET):
            with open(DB_PASSWORD_SECRET) as f:
                return f.read().strip()
        return os.getenv("DB_PASSWORD", "runtime_settings")

    @property
    def dsn(self) -> str:
        """libpq key=value connection string."""
        parts = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
            "user": self.user,
            "password": self.password,
            "connect_timeout": self.connect_timeout,
        }
        dsn = " ".join(f"{key}={value}" for key, value in parts.items())
        if self.statement_timeout_ms:
            dsn += f" options='-c statement_timeout={self.statement_timeout_ms}'"
        return dsn


class PostgresClient:
    """
    Pooled PostgreSQL client.

    Blocking: async callers run the query helpers through asyncio.to_thread.
    Each cursor() block is one transaction, committed on success and rolled
    back on error.
    """

    def __init__(self, config: PostgresConfig | dict[str, Any] | None = None) -> None:
        """
        Initialize PostgreSQL client.

        Args:
            config: PostgresConfig, keyword dict for it, or None for env defaults
        """
        if config is None:
            config = PostgresConfig()
        elif isinstance(config, dict):
            config = PostgresConfig(**config)

        self.config = config
        self.pool: ThreadedConnectionPool | None = None
        self.logger = get_logger().with_category(Category.DATABASE)

    async def connect(self) -> None:
        """
        Create the connection pool.

        Raises:
            ConnectionError: If the pool cannot be created
        """
        endpoint = (param("host", self.config.host), param("port", self.config.port))
        try:
            self.pool = ThreadedConnectionPool(
                minconn=self.config.min_conn,
                maxconn=self.config.max_conn,
                dsn=self.config.dsn,
            )
        except psycopg2.Error as e:
            self.logger.error("Failed to create PostgreSQL connection pool", e, *endpoint)
            raise ConnectionError(f"Failed to create connection pool: {e}") from e

        self.logger.info(
            "Connected to PostgreSQL", *endpoint, param("database", self.config.database)
        )

    async def close(self) -> None:
        if self.pool:
            self.pool.closeall()
            self.pool = None
            self.logger.info("PostgreSQL connection pool closed")

    def get_connection(self) -> Connection:
        if self.pool is None:
            raise RuntimeError("Connection pool not initialized. Call connect() first.")
        return self.pool.getconn()  # type: ignore[no-any-return]

    def put_connection(self, conn: Connection) -> None:
        if self.pool is not None:
            self.pool.putconn(conn)

    @contextmanager
    def cursor(self) -> Generator[RealDictCursor, None, None]:
        """Dict cursor inside one transaction."""
        conn = self.get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.put_connection(conn)

    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int:
        """Run a statement; returns the affected row count."""
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.rowcount

    def fetch_one(
        self, query: str, params: tuple[Any, ...] | None = None
    ) -> dict[str, Any] | None:
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchone()  # type: ignore[return-value]

    def fetch_all(
        self, query: str, params: tuple[Any, ...] | None = None
    ) -> list[dict[str, Any]]:
        with self.cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()  # type: ignore[return-value]

    def ping(self) -> bool:
        """Check that a pooled connection answers SELECT 1."""
        try:
            return self.fetch_one("SELECT 1 AS ok") is not None
        except (psycopg2.Error, RuntimeError):
            return False
