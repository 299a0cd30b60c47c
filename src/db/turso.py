"""Turso/libSQL database client wrapper.

The identity store and the audit event store share one client. Cloud
Turso is used when a libsql:// URL and token are configured; otherwise a
local SQLite file backs everything (tests use a temp file).
"""

import logging
from typing import Any

from libsql_client import Client, ResultSet, create_client

from src.config import settings

logger = logging.getLogger(__name__)

# Bare SQL, or SQL with positional parameters
SqlStatement = str | tuple[str, list[Any]]

LOCAL_DATABASE_URL = "file:recognition.db"


class TursoClient:
    """Async libSQL client shared by the repositories."""

    def __init__(
        self,
        url: str | None = None,
        auth_token: str | None = None,
    ):
        """Initialize client with connection parameters.

        Args:
            url: Database URL. Falls back to settings, then a local file.
            auth_token: Turso cloud token. Falls back to settings.
        """
        self.url = url or settings.turso_database_url or LOCAL_DATABASE_URL
        self.auth_token = auth_token or settings.turso_auth_token
        self._client: Client | None = None

    @property
    def is_remote(self) -> bool:
        return bool(self.auth_token) and self.url.startswith("libsql://")

    async def connect(self) -> None:
        """Open the connection. Calling it again is a no-op."""
        if self._client is not None:
            return
        if self.is_remote:
            self._client = create_client(url=self.url, auth_token=self.auth_token)
        else:
            self._client = create_client(url=self.url)
        logger.info(f"Connected to {'Turso' if self.is_remote else 'local'} database: {self.url}")

    def _require_client(self) -> Client:
        if self._client is None:
            msg = "Not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._client

    async def execute(
        self,
        sql: str,
        params: list[Any] | None = None,
    ) -> ResultSet:
        """Run one statement with ? placeholders."""
        return await self._require_client().execute(sql, params or [])

    async def execute_batch(self, statements: list[SqlStatement]) -> list[ResultSet]:
        """Run several statements in one transaction.

        libSQL wraps a batch in a transaction, so a failing statement
        rolls back the ones before it.

        Args:
            statements: SQL strings or (sql, params) tuples

        Returns:
            One ResultSet per statement
        """
        return await self._require_client().batch(statements)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
            logger.info("Database connection closed")

    async def is_healthy(self) -> bool:
        """True if a trivial query succeeds."""
        if self._client is None:
            return False
        try:
            result = await self._client.execute("SELECT 1")
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False
        return len(result.rows) == 1


def row_to_dict(result: ResultSet, index: int = 0) -> dict[str, Any]:
    """Map one result row to a column-name keyed dict."""
    row = result.rows[index]
    return {column: row[i] for i, column in enumerate(result.columns)}


def rows_to_dicts(result: ResultSet) -> list[dict[str, Any]]:
    return [row_to_dict(result, i) for i in range(len(result.rows))]
