"""SQLite document store with named collections, field transforms and transactions."""

import asyncio
import copy
import json
import logging
import re
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import aiosqlite
from pydantic import BaseModel

from blueslash.core.config import settings
from blueslash.core.schema import COLLECTIONS, create_tables


logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMN_FIELDS = {"id", "created", "updated"}
_FIELD_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class DatabaseError(RuntimeError):
    """Raised when the underlying SQLite engine fails."""


class RecordNotFoundError(DatabaseError, KeyError):
    """Raised when a record id does not exist in a collection."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


# Field transforms for update_record


class ArrayUnion:
    """Append each value to an array field unless already present."""

    def __init__(self, *values: Any) -> None:
        self.values = [_normalize(v) for v in values]

    def apply(self, current: Any) -> list[Any]:
        items = list(current or [])
        for value in self.values:
            if value not in items:
                items.append(value)
        return items


class ArrayRemove:
    """Remove every occurrence of each value from an array field."""

    def __init__(self, *values: Any) -> None:
        self.values = [_normalize(v) for v in values]

    def apply(self, current: Any) -> list[Any]:
        return [item for item in (current or []) if item not in self.values]


class Increment:
    """Add a signed amount to a numeric field."""

    def __init__(self, amount: int) -> None:
        self.amount = amount

    def apply(self, current: Any) -> int:
        return (current or 0) + self.amount


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


def to_iso(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with fixed precision so string order is time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, set | frozenset | tuple):
        return list(value)
    if isinstance(value, BaseModel):
        return value.model_dump()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def _normalize(value: Any) -> Any:
    """Round-trip a value through JSON so stored and compared forms match."""
    return json.loads(json.dumps(value, default=_json_default))


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection is part of the schema."""
    if collection not in COLLECTIONS:
        msg = f"Invalid collection name: {collection}"
        raise ValueError(msg)


def _field_sql(field: str) -> str:
    """Return the SQL expression addressing a document field."""
    if not _FIELD_PATTERN.match(field):
        msg = f"Invalid field path: {field}"
        raise ValueError(msg)
    if field in _COLUMN_FIELDS:
        return field
    return f"json_extract(data, '$.{field}')"


_COMPARISON = re.compile(r"^([\w.]+)\s*(\?=|!=|>=|<=|=|>|<|~)\s*(.+)$", re.DOTALL)
_PLACEHOLDER = re.compile(r"^\{:(\w+)\}$")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_LITERALS = {"true": True, "false": False, "null": None}


def _parse_operand(token: str, filter_params: dict[str, Any]) -> Any:
    """Turn the right-hand side of a comparison into a bound value.

    ``{:name}`` binds ``filter_params[name]`` unchanged. Quoted text is always a
    string (double quotes take JSON escapes). ``true``, ``false``, ``null`` and
    numbers are typed only when written unquoted.
    """
    placeholder = _PLACEHOLDER.match(token)
    if placeholder:
        name = placeholder.group(1)
        if name not in filter_params:
            msg = f"Missing filter parameter: {name}"
            raise ValueError(msg)
        return _normalize(filter_params[name])

    if token.startswith('"'):
        try:
            value = json.loads(token)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, str):
            return value
    elif len(token) >= 2 and token[0] == token[-1] == "'" and "'" not in token[1:-1]:  # noqa: PLR2004
        return token[1:-1]
    elif token.lower() in _LITERALS:
        return _LITERALS[token.lower()]
    elif _NUMBER.match(token):
        return float(token) if "." in token else int(token)

    msg = f"Invalid filter value: {token}"
    raise ValueError(msg)


def _like_pattern(value: Any) -> str:
    escaped = str(value).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _parse_single_comparison(comparison: str, filter_params: dict[str, Any]) -> tuple[str, list[Any]]:
    """Parse a single comparison expression into a SQL condition and its parameters."""
    match = _COMPARISON.match(comparison.strip())
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field, op, raw_value = match.groups()
    try:
        value = _parse_operand(raw_value.strip(), filter_params)
    except ValueError as e:
        msg = f"Invalid filter syntax: {comparison} ({e})"
        raise ValueError(msg) from e

    if op == "?=":
        if not _FIELD_PATTERN.match(field):
            msg = f"Invalid field path: {field}"
            raise ValueError(msg)
        return f"EXISTS (SELECT 1 FROM json_each(data, '$.{field}') WHERE json_each.value = ?)", [value]

    column = _field_sql(field)
    if op == "~":
        return f"{column} LIKE ? ESCAPE '\\'", [_like_pattern(value)]

    if value is None:
        if op not in ("=", "!="):
            msg = f"null only supports = and !=: {comparison}"
            raise ValueError(msg)
        return (f"{column} IS NULL" if op == "=" else f"{column} IS NOT NULL"), []
    return f"{column} {op} ?", [value]


def _split_top_level(text: str, separator: str) -> list[str]:
    """Split on ``separator`` outside quotes and parentheses."""
    parts = []
    depth = 0
    quote = None
    start = 0
    index = 0

    while index < len(text):
        char = text[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif depth == 0 and text.startswith(separator, index):
            parts.append(text[start:index].strip())
            index += len(separator)
            start = index
            continue
        index += 1

    parts.append(text[start:].strip())
    return [part for part in parts if part]


def parse_filter(filter_query: str, filter_params: dict[str, Any] | None = None) -> tuple[str, list[Any]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Supports ``field = {:name}`` comparisons with ``= != > < >= <= ~`` and
    ``?=`` (array contains), joined by ``&&`` with parenthesized ``||`` groups.
    Caller-supplied values belong in ``filter_params``; they are bound as SQL
    parameters and never spliced into the expression.
    """
    if not filter_query:
        return "", []

    bound = filter_params or {}
    conditions = []
    params: list[Any] = []

    for part in _split_top_level(filter_query, "&&"):
        alternatives = [part]
        if part.startswith("(") and part.endswith(")"):
            alternatives = _split_top_level(part[1:-1], "||")

        group = []
        for alternative in alternatives:
            cond, values = _parse_single_comparison(alternative, bound)
            group.append(cond)
            params.extend(values)
        conditions.append(group[0] if len(group) == 1 else f"({' OR '.join(group)})")

    return " AND ".join(conditions), params


def _parse_sort(sort: str) -> str:
    """Translate ``field``, ``-field`` or ``field DESC`` (comma separated) into ORDER BY."""
    if not sort:
        return "created ASC, id ASC"

    clauses = []
    for raw in sort.split(","):
        term = raw.strip()
        direction = "ASC"
        match = re.match(r"^([\w.]+)\s+(ASC|DESC)$", term, re.IGNORECASE)
        if match:
            term, direction = match.group(1), match.group(2).upper()
        elif term.startswith("-"):
            term, direction = term[1:], "DESC"
        elif term.startswith("+"):
            term = term[1:]
        clauses.append(f"{_field_sql(term)} {direction}")

    return ", ".join(clauses)


def _get_path(doc: dict[str, Any], path: str) -> Any:
    node: Any = doc
    for key in path.split("."):
        if not isinstance(node, dict) or key not in node:
            return None
        node = node[key]
    return node


def _set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    keys = path.split(".")
    node = doc
    for key in keys[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[keys[-1]] = value


def _delete_path(doc: dict[str, Any], path: str) -> None:
    keys = path.split(".")
    node: Any = doc
    for key in keys[:-1]:
        node = node.get(key) if isinstance(node, dict) else None
        if node is None:
            return
    if isinstance(node, dict):
        node.pop(keys[-1], None)


def apply_update(document: dict[str, Any], data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``document`` with a partial update and field transforms applied.

    Keys may be dotted paths into nested maps.
    """
    updated = copy.deepcopy(document)
    for path, value in data.items():
        if value is DELETE_FIELD:
            _delete_path(updated, path)
        elif isinstance(value, ArrayUnion | ArrayRemove | Increment):
            _set_path(updated, path, value.apply(_get_path(updated, path)))
        else:
            _set_path(updated, path, _normalize(value))
    return updated


def _row_to_record(row: aiosqlite.Row | tuple[Any, ...]) -> dict[str, Any]:
    record_id, data, created, updated = row
    return {"id": record_id, **json.loads(data), "created": created, "updated": updated}


def _strip_meta(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in _COLUMN_FIELDS}


class Transaction:
    """Read and write calls bound to one open SQLite transaction.

    Obtained from ``DocumentStore.transaction()``; every statement commits or
    rolls back together.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def _execute(self, query: str, params: list[Any] | tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        try:
            return await self._conn.execute(query, params)
        except aiosqlite.OperationalError as e:
            if "no such table" in str(e):
                msg = f"Collection table missing: {e}. Call init_schema() first."
                raise DatabaseError(msg) from e
            raise DatabaseError(str(e)) from e
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e

    async def get_optional_record(self, *, collection: str, record_id: str) -> dict[str, Any] | None:
        """Fetch a single record by ID, or None."""
        _validate_collection_name(collection)
        query = f"SELECT id, data, created, updated FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await self._execute(query, (record_id,))
        row = await cursor.fetchone()
        return _row_to_record(row) if row is not None else None

    async def get_record(self, *, collection: str, record_id: str) -> dict[str, Any]:
        """Fetch a single record by ID, raising RecordNotFoundError if not found."""
        record = await self.get_optional_record(collection=collection, record_id=record_id)
        if record is None:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)
        return record

    async def create_record(
        self, *, collection: str, data: dict[str, Any], record_id: str | None = None
    ) -> dict[str, Any]:
        """Insert a new document and return it with its id and timestamps."""
        _validate_collection_name(collection)
        new_id = record_id or uuid.uuid4().hex
        now = to_iso(datetime.now(UTC))
        body = json.dumps(_strip_meta(data), default=_json_default)

        query = f"INSERT INTO {collection} (id, data, created, updated) VALUES (?, ?, ?, ?)"  # noqa: S608 - collection is validated
        try:
            await self._conn.execute(query, (new_id, body, now, now))
        except aiosqlite.IntegrityError as e:
            msg = f"Record already exists in {collection}: {new_id}"
            raise DatabaseError(msg) from e
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e

        logger.debug("Created record", extra={"collection": collection, "record_id": new_id})
        return {"id": new_id, **json.loads(body), "created": now, "updated": now}

    async def set_record(self, *, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create or fully replace a document, keeping its original creation time."""
        _validate_collection_name(collection)
        existing = await self.get_optional_record(collection=collection, record_id=record_id)
        now = to_iso(datetime.now(UTC))
        created = existing["created"] if existing else now
        body = json.dumps(_strip_meta(data), default=_json_default)

        query = f"INSERT OR REPLACE INTO {collection} (id, data, created, updated) VALUES (?, ?, ?, ?)"  # noqa: S608 - collection is validated
        await self._execute(query, (record_id, body, created, now))
        return {"id": record_id, **json.loads(body), "created": created, "updated": now}

    async def update_record(self, *, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Apply a partial update (with field transforms) and return the updated record."""
        if not data:
            msg = "Empty update payload"
            raise ValueError(msg)

        existing = await self.get_record(collection=collection, record_id=record_id)
        document = apply_update(_strip_meta(existing), data)
        now = to_iso(datetime.now(UTC))
        body = json.dumps(document, default=_json_default)

        query = f"UPDATE {collection} SET data = ?, updated = ? WHERE id = ?"  # noqa: S608 - collection is validated
        await self._execute(query, (body, now, record_id))

        logger.debug("Updated record", extra={"collection": collection, "record_id": record_id})
        return {"id": record_id, **document, "created": existing["created"], "updated": now}

    async def delete_record(self, *, collection: str, record_id: str) -> None:
        """Delete a record by ID, raising RecordNotFoundError if not found."""
        _validate_collection_name(collection)
        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await self._execute(query, (record_id,))
        if cursor.rowcount == 0:
            msg = f"Record not found in {collection}: {record_id}"
            raise RecordNotFoundError(msg)

    async def list_records(
        self,
        *,
        collection: str,
        filter_query: str = "",
        filter_params: dict[str, Any] | None = None,
        sort: str = "",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List records with optional filtering, sorting and paging.

        ``limit=None`` returns every match.
        """
        _validate_collection_name(collection)
        if (limit is not None and limit < 0) or offset < 0:
            msg = "limit and offset must not be negative"
            raise ValueError(msg)
        where_clause, params = parse_filter(filter_query, filter_params)
        where = f"WHERE {where_clause}" if where_clause else ""
        order = _parse_sort(sort)

        # SQLite treats a negative LIMIT as unbounded
        query = f"SELECT id, data, created, updated FROM {collection} {where} ORDER BY {order} LIMIT ? OFFSET ?"  # noqa: S608 - collection and fields are validated
        cursor = await self._execute(query, [*params, -1 if limit is None else limit, offset])
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def get_first_record(
        self, *, collection: str, filter_query: str, filter_params: dict[str, Any] | None = None, sort: str = ""
    ) -> dict[str, Any] | None:
        """Return the first record matching the filter, or None."""
        records = await self.list_records(
            collection=collection, filter_query=filter_query, filter_params=filter_params, sort=sort, limit=1
        )
        return records[0] if records else None


class DocumentStore:
    """Transactional JSON document store over a single aiosqlite connection.

    All calls are serialised behind one asyncio lock, so a transaction sees a
    consistent snapshot and concurrent writers in this process cannot
    interleave. ``BEGIN IMMEDIATE`` extends that to other processes sharing
    the file.

    Do not call store methods from inside ``transaction()``; use the yielded
    ``Transaction`` instead, otherwise the lock deadlocks.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self._path = Path(db_path or settings.sqlite_db_path).resolve()
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def connect(self) -> None:
        """Open the connection (idempotent)."""
        if self._conn is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit mode; transactions are opened explicitly below
        self._conn = await aiosqlite.connect(str(self._path), isolation_level=None)
        await self._conn.execute("PRAGMA journal_mode = WAL")
        await self._conn.execute("PRAGMA busy_timeout = 5000")
        logger.info("Opened document store", extra={"db_path": str(self._path)})

    async def close(self) -> None:
        """Close the connection if open."""
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("Closed document store", extra={"db_path": str(self._path)})

    async def init_schema(self) -> None:
        """Connect and create collection tables."""
        await self.connect()
        async with self._lock:
            await create_tables(self._require_connection())

    def _require_connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Document store is not connected. Call connect() first."
            raise DatabaseError(msg)
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Open an atomic read-write unit across any number of documents."""
        conn = self._require_connection()
        async with self._lock:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield Transaction(conn)
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``fn`` inside a transaction and return its result."""
        async with self.transaction() as tx:
            return await fn(tx)

    # Single-call helpers, each its own transaction

    async def get_record(self, *, collection: str, record_id: str) -> dict[str, Any]:
        async with self.transaction() as tx:
            return await tx.get_record(collection=collection, record_id=record_id)

    async def get_optional_record(self, *, collection: str, record_id: str) -> dict[str, Any] | None:
        async with self.transaction() as tx:
            return await tx.get_optional_record(collection=collection, record_id=record_id)

    async def create_record(
        self, *, collection: str, data: dict[str, Any], record_id: str | None = None
    ) -> dict[str, Any]:
        async with self.transaction() as tx:
            return await tx.create_record(collection=collection, data=data, record_id=record_id)

    async def set_record(self, *, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        async with self.transaction() as tx:
            return await tx.set_record(collection=collection, record_id=record_id, data=data)

    async def update_record(self, *, collection: str, record_id: str, data: dict[str, Any]) -> dict[str, Any]:
        async with self.transaction() as tx:
            return await tx.update_record(collection=collection, record_id=record_id, data=data)

    async def delete_record(self, *, collection: str, record_id: str) -> None:
        async with self.transaction() as tx:
            await tx.delete_record(collection=collection, record_id=record_id)

    async def list_records(
        self,
        *,
        collection: str,
        filter_query: str = "",
        filter_params: dict[str, Any] | None = None,
        sort: str = "",
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        async with self.transaction() as tx:
            return await tx.list_records(
                collection=collection,
                filter_query=filter_query,
                filter_params=filter_params,
                sort=sort,
                limit=limit,
                offset=offset,
            )

    async def get_first_record(
        self, *, collection: str, filter_query: str, filter_params: dict[str, Any] | None = None, sort: str = ""
    ) -> dict[str, Any] | None:
        async with self.transaction() as tx:
            return await tx.get_first_record(
                collection=collection, filter_query=filter_query, filter_params=filter_params, sort=sort
            )
