"""SQLite entity store adapter.

Implements EntityStorePort using SQLite with aiosqlite for async access.
Each entity kind gets one table holding the JSON document; unique fields
are enforced with unique expression indexes over ``json_extract``, and
every read-check-write runs inside ``BEGIN IMMEDIATE`` so it is atomic
with respect to other connections.
"""

import asyncio
import json
import logging
import re
import secrets
import sqlite3
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from outreach.core.documents import format_timestamp
from outreach.core.errors import DuplicateKeyError, UpstreamUnavailableError
from outreach.core.models import UNIQUE_FIELDS, EntityKind
from outreach.core.ports import EntityStorePort, Predicate
from outreach.core.query import DEFAULT_SORT, Query, apply_patch, get_path

logger = logging.getLogger(__name__)

_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_INDEX_PATTERN = re.compile(r"ux_\w+?__(\w+)")


def _json_path(path: str) -> str:
    """Translate a dotted path into a json_extract expression."""
    if not _PATH_PATTERN.match(path):
        raise ValueError(f"Invalid field path: {path!r}")
    return f"json_extract(document, '$.{path}')"


def _bind(value: Any) -> Any:
    """Python value -> SQLite parameter comparable with json_extract output."""
    if isinstance(value, bool):
        return int(value)
    return value


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _where(
    predicate: Predicate | None = None, query: Query | None = None
) -> tuple[str, list[Any]]:
    """Build a WHERE clause from exact-match conditions and an optional search."""
    clauses: list[str] = []
    params: list[Any] = []

    conditions: dict[str, Any] = dict(predicate or {})
    if query is not None:
        conditions.update(query.equals)
    for path, value in conditions.items():
        column = "id" if path == "id" else _json_path(path)
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(_bind(value))

    if query is not None and query.has_search:
        assert query.search is not None
        needle = f"%{_escape_like(query.search.lower())}%"
        alternatives = [
            f"LOWER(COALESCE({_json_path(path)}, '')) LIKE ? ESCAPE '\\'"
            for path in query.search_fields
        ]
        clauses.append("(" + " OR ".join(alternatives) + ")")
        params.extend([needle] * len(alternatives))

    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


class SQLiteEntityStore(EntityStorePort):
    """SQLite-backed entity store with connection pooling and async access."""

    def __init__(self, db_path: str, pool_size: int = 5, timeout: float = 5.0):
        """Initialize SQLite store with connection pooling.

        Args:
            db_path: Path to SQLite database file.
            pool_size: Number of connections to maintain in the pool.
            timeout: Seconds to wait for a database lock.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._pool: list[aiosqlite.Connection] = []
        self._pool_lock = asyncio.Lock()
        self._schema_lock = asyncio.Lock()
        self._pool_size = pool_size
        self._timeout = timeout
        self._schema_initialized = False

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a connection from the pool or create a new one."""
        async with self._pool_lock:
            if self._pool:
                return self._pool.pop()
        try:
            # Autocommit mode; transactions are opened explicitly.
            return await aiosqlite.connect(
                str(self.db_path), timeout=self._timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            raise UpstreamUnavailableError(f"Cannot open SQLite database: {e}") from e

    async def _return_connection(self, conn: aiosqlite.Connection) -> None:
        """Return a connection to the pool."""
        async with self._pool_lock:
            if len(self._pool) < self._pool_size:
                self._pool.append(conn)
                return
        await conn.close()

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        await self._init_schema()
        conn = await self._get_connection()
        try:
            yield conn
        except sqlite3.OperationalError as e:
            raise UpstreamUnavailableError(f"SQLite operation failed: {e}") from e
        finally:
            await self._return_connection(conn)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Connection inside BEGIN IMMEDIATE; committed on success."""
        async with self._connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def close(self) -> None:
        """Close all pooled connections."""
        async with self._pool_lock:
            for conn in self._pool:
                await conn.close()
            self._pool.clear()

    async def _init_schema(self) -> None:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        """
        if self._schema_initialized:
            return
        async with self._schema_lock:
            # Check again after acquiring lock to prevent race
            if self._schema_initialized:
                return

            conn = await self._get_connection()
            try:
                await conn.execute("PRAGMA journal_mode = WAL")
                for kind in EntityKind:
                    table = kind.value
                    await conn.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            id TEXT PRIMARY KEY,
                            document TEXT NOT NULL
                        )
                        """
                    )
                    for field in UNIQUE_FIELDS[kind]:
                        await conn.execute(
                            f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}__{field} "
                            f"ON {table}({_json_path(field)})"
                        )
                    await conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{table}__timestamp "
                        f"ON {table}({_json_path(DEFAULT_SORT)})"
                    )
                self._schema_initialized = True
            except sqlite3.Error as e:
                raise UpstreamUnavailableError(f"Cannot initialize SQLite schema: {e}") from e
            finally:
                await self._return_connection(conn)

    async def create(self, kind: EntityKind, document: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a new document, assigning id and timestamps."""
        now = format_timestamp(datetime.now(timezone.utc))
        stored = dict(document)
        stored.update(id=secrets.token_hex(12), created_at=now, updated_at=now)

        async with self._transaction() as conn:
            await self._check_unique(conn, kind, stored)
            try:
                await conn.execute(
                    f"INSERT INTO {kind.value} (id, document) VALUES (?, ?)",
                    (stored["id"], json.dumps(stored)),
                )
            except sqlite3.IntegrityError as e:
                raise self._duplicate_from(kind, e) from e
        return stored

    async def find_one(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        where, params = _where(predicate)
        async with self._connection() as conn:
            cursor = await conn.execute(
                f"SELECT document FROM {kind.value}{where} LIMIT 1", params
            )
            row = await cursor.fetchone()
        return None if row is None else json.loads(row[0])

    async def find(
        self,
        kind: EntityKind,
        query: Query | None = None,
        sort: str = DEFAULT_SORT,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        where, params = _where(query=query)
        direction = "DESC" if descending else "ASC"
        sql = (
            f"SELECT document FROM {kind.value}{where} "
            f"ORDER BY {_json_path(sort)} {direction}, rowid {direction} "
            f"LIMIT ? OFFSET ?"
        )
        params.extend([-1 if limit is None else limit, max(skip, 0)])
        async with self._connection() as conn:
            cursor = await conn.execute(sql, params)
            rows = await cursor.fetchall()
        return [json.loads(row[0]) for row in rows]

    async def count_documents(self, kind: EntityKind, query: Query | None = None) -> int:
        where, params = _where(query=query)
        async with self._connection() as conn:
            cursor = await conn.execute(f"SELECT COUNT(*) FROM {kind.value}{where}", params)
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def find_one_and_update(
        self, kind: EntityKind, predicate: Predicate, patch: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        where, params = _where(predicate)
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"SELECT document FROM {kind.value}{where} LIMIT 1", params
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            current = json.loads(row[0])
            protected = {"id": current["id"], "created_at": current.get("created_at")}
            updated = apply_patch(current, patch)
            updated.update(protected)
            updated["updated_at"] = format_timestamp(datetime.now(timezone.utc))

            await self._check_unique(conn, kind, updated, exclude_id=current["id"])
            try:
                await conn.execute(
                    f"UPDATE {kind.value} SET document = ? WHERE id = ?",
                    (json.dumps(updated), current["id"]),
                )
            except sqlite3.IntegrityError as e:
                raise self._duplicate_from(kind, e) from e
        return updated

    async def find_one_and_delete(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        where, params = _where(predicate)
        async with self._transaction() as conn:
            cursor = await conn.execute(
                f"SELECT id, document FROM {kind.value}{where} LIMIT 1", params
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            await conn.execute(f"DELETE FROM {kind.value} WHERE id = ?", (row[0],))
        return json.loads(row[1])

    async def aggregate(
        self, kind: EntityKind, group_by: str, query: Query | None = None
    ) -> dict[Any, int]:
        where, params = _where(query=query)
        column = _json_path(group_by)
        async with self._connection() as conn:
            cursor = await conn.execute(
                f"SELECT {column} AS grp, COUNT(*) FROM {kind.value}{where} GROUP BY grp",
                params,
            )
            rows = await cursor.fetchall()
        return {row[0]: int(row[1]) for row in rows}

    async def _check_unique(
        self,
        conn: aiosqlite.Connection,
        kind: EntityKind,
        document: Mapping[str, Any],
        exclude_id: str | None = None,
    ) -> None:
        """Raise DuplicateKeyError for the first unique field already taken.

        Fields are checked in UNIQUE_FIELDS order so the reported field is
        deterministic when several collide at once.
        """
        for field in UNIQUE_FIELDS[kind]:
            value = get_path(document, field)
            if value is None:
                continue
            sql = f"SELECT 1 FROM {kind.value} WHERE {_json_path(field)} = ?"
            params: list[Any] = [_bind(value)]
            if exclude_id is not None:
                sql += " AND id != ?"
                params.append(exclude_id)
            cursor = await conn.execute(sql + " LIMIT 1", params)
            if await cursor.fetchone() is not None:
                raise DuplicateKeyError(kind.value, field)

    @staticmethod
    def _duplicate_from(kind: EntityKind, error: sqlite3.IntegrityError) -> DuplicateKeyError:
        match = _INDEX_PATTERN.search(str(error))
        field = match.group(1) if match else "id"
        logger.warning(f"Unique constraint hit on {kind.value}.{field}: {error}")
        return DuplicateKeyError(kind.value, field)
