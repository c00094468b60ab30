import logging
from typing import Dict, List, Optional, Protocol

import psycopg
from psycopg import sql

from registration.errors import DraftStoreError

logger = logging.getLogger(__name__)


class SessionStorage(Protocol):
    """Text key/value storage scoped to one browsing session."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self) -> List[str]: ...


class MemorySessionStorage:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._items)

    def __len__(self) -> int:
        return len(self._items)


class PostgresSessionStorage:
    """Session storage rows keyed by (session_id, key) in one Postgres table."""

    def __init__(
        self,
        conn: psycopg.Connection,
        session_id: str,
        table: str = "registration_session_storage",
    ):
        self.conn = conn
        self.session_id = session_id
        self.table = sql.Identifier(table)

    def setup(self) -> None:
        self._execute(
            sql.SQL(
                """
                CREATE TABLE IF NOT EXISTS {} (
                    session_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    PRIMARY KEY (session_id, key)
                )
                """
            ).format(self.table),
            (),
        )

    def _execute(self, query: sql.Composed, params: tuple, fetch: bool = False):
        try:
            with self.conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall() if fetch else None
        except psycopg.Error as e:
            logger.error("session storage query failed: %s", e)
            raise DraftStoreError() from e

    def get(self, key: str) -> Optional[str]:
        rows = self._execute(
            sql.SQL("SELECT value FROM {} WHERE session_id = %s AND key = %s").format(
                self.table
            ),
            (self.session_id, key),
            fetch=True,
        )
        return rows[0][0] if rows else None

    def set(self, key: str, value: str) -> None:
        self._execute(
            sql.SQL(
                """
                INSERT INTO {} (session_id, key, value)
                VALUES (%s, %s, %s)
                ON CONFLICT (session_id, key)
                DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """
            ).format(self.table),
            (self.session_id, key, value),
        )

    def delete(self, key: str) -> None:
        self._execute(
            sql.SQL("DELETE FROM {} WHERE session_id = %s AND key = %s").format(self.table),
            (self.session_id, key),
        )

    def keys(self) -> List[str]:
        rows = self._execute(
            sql.SQL("SELECT key FROM {} WHERE session_id = %s ORDER BY key").format(
                self.table
            ),
            (self.session_id,),
            fetch=True,
        )
        return [r[0] for r in rows]
