"""PostgreSQL entity store adapter.

Implements EntityStorePort using PostgreSQL with asyncpg for async access.
Documents live in JSONB columns, one table per entity kind, with unique
expression indexes over the unique fields. Conditional updates lock the
matched row with ``SELECT ... FOR UPDATE`` inside a transaction.
"""

import asyncio
import json
import logging
import re
import secrets
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import asyncpg

from outreach.core.documents import format_timestamp
from outreach.core.errors import DuplicateKeyError, UpstreamUnavailableError
from outreach.core.models import UNIQUE_FIELDS, EntityKind
from outreach.core.ports import EntityStorePort, Predicate
from outreach.core.query import DEFAULT_SORT, Query, apply_patch

logger = logging.getLogger(__name__)

_PATH_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_INDEX_PATTERN = re.compile(r"ux_\w+?__(\w+)")

_CONNECTION_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
)


def _text_path(path: str) -> str:
    """Translate a dotted path into a text-valued JSONB expression."""
    if not _PATH_PATTERN.match(path):
        raise ValueError(f"Invalid field path: {path!r}")
    return f"(document #>> '{{{','.join(path.split('.'))}}}')"


def _as_text(value: Any) -> str:
    """Render a value the way ``#>>`` renders the stored JSON scalar."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class _Params:
    """Accumulates positional parameters and hands out ``$n`` placeholders."""

    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def _where(
    params: _Params, predicate: Predicate | None = None, query: Query | None = None
) -> str:
    clauses: list[str] = []
    conditions: dict[str, Any] = dict(predicate or {})
    if query is not None:
        conditions.update(query.equals)

    for path, value in conditions.items():
        column = "id" if path == "id" else _text_path(path)
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = {params.add(_as_text(value))}")

    if query is not None and query.has_search:
        assert query.search is not None
        term = query.search.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        placeholder = params.add(f"%{term}%")
        alternatives = [
            f"LOWER(COALESCE({_text_path(path)}, '')) LIKE {placeholder} ESCAPE '\\'"
            for path in query.search_fields
        ]
        clauses.append("(" + " OR ".join(alternatives) + ")")

    return (" WHERE " + " AND ".join(clauses)) if clauses else ""


class PostgreSQLEntityStore(EntityStorePort):
    """PostgreSQL-backed entity store with connection pooling and async access."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "outreach",
        user: str = "outreach",
        password: str = "",
        pool_size: int = 10,
    ):
        """Initialize PostgreSQL store with connection pooling.

        Args:
            host: PostgreSQL server hostname.
            port: PostgreSQL server port.
            database: Database name.
            user: Database user.
            password: Database password.
            pool_size: Number of connections to maintain in the pool.
        """
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self._pool: asyncpg.Pool | None = None
        self._pool_size = pool_size
        self._schema_lock = asyncio.Lock()
        self._schema_initialized = False

    async def _init_pool(self) -> asyncpg.Pool:
        """Initialize the connection pool on first use."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    host=self.host,
                    port=self.port,
                    database=self.database,
                    user=self.user,
                    password=self.password,
                    min_size=1,
                    max_size=self._pool_size,
                )
            except _CONNECTION_ERRORS as e:
                raise UpstreamUnavailableError(f"Cannot connect to PostgreSQL: {e}") from e
        return self._pool

    async def close(self) -> None:
        """Close all pooled connections."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _init_schema(self) -> asyncpg.Pool:
        """Initialize database schema on first use.

        Only runs once per instance. Subsequent calls are no-ops.
        Uses dedicated _schema_lock to avoid contention with pool operations.
        """
        pool = await self._init_pool()
        if self._schema_initialized:
            return pool

        async with self._schema_lock:
            if self._schema_initialized:
                return pool
            async with pool.acquire() as conn:
                for kind in EntityKind:
                    table = kind.value
                    await conn.execute(
                        f"""
                        CREATE TABLE IF NOT EXISTS {table} (
                            id TEXT PRIMARY KEY,
                            seq BIGSERIAL,
                            document JSONB NOT NULL
                        )
                        """
                    )
                    for field in UNIQUE_FIELDS[kind]:
                        await conn.execute(
                            f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}__{field} "
                            f"ON {table} ({_text_path(field)})"
                        )
                    await conn.execute(
                        f"CREATE INDEX IF NOT EXISTS idx_{table}__timestamp "
                        f"ON {table} ({_text_path(DEFAULT_SORT)})"
                    )
            self._schema_initialized = True
        return pool

    async def _run(self, operation: str, coro: Any) -> Any:
        try:
            return await coro
        except asyncpg.UniqueViolationError:
            raise
        except _CONNECTION_ERRORS as e:
            raise UpstreamUnavailableError(f"PostgreSQL {operation} failed: {e}") from e

    async def create(self, kind: EntityKind, document: Mapping[str, Any]) -> dict[str, Any]:
        """Insert a new document, assigning id and timestamps."""
        pool = await self._init_schema()
        now = format_timestamp(datetime.now(timezone.utc))
        stored = dict(document)
        stored.update(id=secrets.token_hex(12), created_at=now, updated_at=now)
        try:
            await self._run(
                "insert",
                pool.execute(
                    f"INSERT INTO {kind.value} (id, document) VALUES ($1, $2::jsonb)",
                    stored["id"],
                    json.dumps(stored),
                ),
            )
        except asyncpg.UniqueViolationError as e:
            raise self._duplicate_from(kind, e) from e
        return stored

    async def find_one(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, predicate)
        value = await self._run(
            "read",
            pool.fetchval(
                f"SELECT document::text FROM {kind.value}{where} LIMIT 1", *params.values
            ),
        )
        return None if value is None else json.loads(value)

    async def find(
        self,
        kind: EntityKind,
        query: Query | None = None,
        sort: str = DEFAULT_SORT,
        descending: bool = True,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, query=query)
        direction = "DESC" if descending else "ASC"
        limit_placeholder = params.add(limit)
        offset_placeholder = params.add(max(skip, 0))
        rows = await self._run(
            "read",
            pool.fetch(
                f"SELECT document::text FROM {kind.value}{where} "
                f"ORDER BY {_text_path(sort)} {direction}, seq {direction} "
                f"LIMIT {limit_placeholder} OFFSET {offset_placeholder}",
                *params.values,
            ),
        )
        return [json.loads(row[0]) for row in rows]

    async def count_documents(self, kind: EntityKind, query: Query | None = None) -> int:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, query=query)
        count = await self._run(
            "count",
            pool.fetchval(f"SELECT COUNT(*) FROM {kind.value}{where}", *params.values),
        )
        return int(count or 0)

    async def find_one_and_update(
        self, kind: EntityKind, predicate: Predicate, patch: Mapping[str, Any]
    ) -> dict[str, Any] | None:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, predicate)
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"SELECT id, document::text FROM {kind.value}{where} "
                        f"LIMIT 1 FOR UPDATE",
                        *params.values,
                    )
                    if row is None:
                        return None

                    current = json.loads(row[1])
                    updated = apply_patch(current, patch)
                    updated["id"] = current["id"]
                    updated["created_at"] = current.get("created_at")
                    updated["updated_at"] = format_timestamp(datetime.now(timezone.utc))
                    await conn.execute(
                        f"UPDATE {kind.value} SET document = $1::jsonb WHERE id = $2",
                        json.dumps(updated),
                        row[0],
                    )
        except asyncpg.UniqueViolationError as e:
            raise self._duplicate_from(kind, e) from e
        except _CONNECTION_ERRORS as e:
            raise UpstreamUnavailableError(f"PostgreSQL update failed: {e}") from e
        return updated

    async def find_one_and_delete(
        self, kind: EntityKind, predicate: Predicate
    ) -> dict[str, Any] | None:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, predicate)
        value = await self._run(
            "delete",
            pool.fetchval(
                f"DELETE FROM {kind.value} WHERE id = "
                f"(SELECT id FROM {kind.value}{where} LIMIT 1 FOR UPDATE) "
                f"RETURNING document::text",
                *params.values,
            ),
        )
        return None if value is None else json.loads(value)

    async def aggregate(
        self, kind: EntityKind, group_by: str, query: Query | None = None
    ) -> dict[Any, int]:
        pool = await self._init_schema()
        params = _Params()
        where = _where(params, query=query)
        column = _text_path(group_by)
        rows = await self._run(
            "aggregate",
            pool.fetch(
                f"SELECT {column} AS grp, COUNT(*) FROM {kind.value}{where} GROUP BY grp",
                *params.values,
            ),
        )
        return {row[0]: int(row[1]) for row in rows}

    @staticmethod
    def _duplicate_from(
        kind: EntityKind, error: asyncpg.UniqueViolationError
    ) -> DuplicateKeyError:
        constraint = getattr(error, "constraint_name", None) or str(error)
        match = _INDEX_PATTERN.search(constraint)
        field = match.group(1) if match else "id"
        logger.warning(f"Unique constraint hit on {kind.value}.{field}: {error}")
        return DuplicateKeyError(kind.value, field)
