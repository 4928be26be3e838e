"""Database store for partitioned email records.

This module provides the DatabaseStore class that encapsulates all database
operations for the mail triage pipeline. It uses aiosqlite for async access
and converts between JSON values and the StoredRecord dataclass.

Usage:
    from mailtriage.db.store import DatabaseStore, StoredRecord

    store = DatabaseStore("data/mailtriage.db")
    await store.initialize()

    await store.put_record("raw", key, record)
    record = await store.get_record("raw", key)
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Literal, get_args

import aiosqlite

from mailtriage.core.errors import DatabaseError, MalformedRecordError
from mailtriage.core.logging import get_logger
from mailtriage.db.models import init_database

logger = get_logger(__name__)

# Type aliases
RecordStatus = Literal[
    "pending",
    "sorted",
    "triaged",
    "queued_low_complex",
    "closed",
    "completed",
    "rejected",
]

UNTRIAGED_STATUSES: frozenset[str] = frozenset({"pending", "sorted"})

_REQUIRED_FIELDS = ("sender", "subject", "date", "categories")
_OPTIONAL_TEXT_FIELDS = ("recipient", "message_id", "body")
_STATUSES: frozenset[str] = frozenset(get_args(RecordStatus))


@dataclass
class StoredRecord:
    """An email as persisted in a partition.

    `categories` is exactly the classifier output at store time and is
    identical in every partition copy of the same email.
    """

    sender: str
    recipient: str
    subject: str
    date: str
    message_id: str
    body: str = ""
    categories: list[str] = field(default_factory=list)
    fetch_id: str | None = None
    status: RecordStatus = "pending"
    stored_at: str | None = None

    # Priority pass
    priority: str | None = None
    relevance_score: int | None = None
    priority_category: str | None = None
    whitelist_matched: bool | None = None
    whitelist_rule: str | None = None
    action: str | None = None
    sorted_at: str | None = None

    # Triage
    triage_level: str | None = None
    triage_reason: str | None = None
    triage_suggested_action: str | None = None
    triaged_at: str | None = None
    closed_at: str | None = None
    queued_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any, key: str | None = None) -> StoredRecord:
        """Build a record from a decoded JSON value.

        Unknown keys are ignored so older values stay readable.

        Raises:
            MalformedRecordError: If the value is not a record-shaped object
        """
        if not isinstance(data, dict):
            raise MalformedRecordError(
                f"Stored value at '{key}' is a {type(data).__name__}, expected an object",
                key=key,
            )
        missing = [name for name in _REQUIRED_FIELDS if name not in data]
        if missing:
            raise MalformedRecordError(
                f"Stored value at '{key}' is missing fields: {', '.join(missing)}",
                key=key,
            )
        categories = data["categories"]
        if not isinstance(categories, list) or not all(isinstance(c, str) for c in categories):
            raise MalformedRecordError(
                f"Stored value at '{key}' has a non-list 'categories' field",
                key=key,
            )
        wrong_type = [
            name
            for name in _REQUIRED_FIELDS[:-1] + _OPTIONAL_TEXT_FIELDS
            if not isinstance(data.get(name, ""), str)
            and not (name in _OPTIONAL_TEXT_FIELDS and data[name] is None)
        ]
        if wrong_type:
            raise MalformedRecordError(
                f"Stored value at '{key}' has non-string fields: {', '.join(wrong_type)}",
                key=key,
            )
        status = data.get("status", "pending")
        if not isinstance(status, str) or status not in _STATUSES:
            raise MalformedRecordError(
                f"Stored value at '{key}' has unknown status {status!r}",
                key=key,
            )

        known = {f.name for f in fields(cls)}
        values = {name: value for name, value in data.items() if name in known}
        for name in _OPTIONAL_TEXT_FIELDS:
            if values.get(name) is None:
                values[name] = ""
        values["categories"] = list(categories)
        try:
            return cls(**values)
        except TypeError as e:
            raise MalformedRecordError(f"Stored value at '{key}' is invalid: {e}", key=key) from e

    @classmethod
    def from_json(cls, value: str, key: str | None = None) -> StoredRecord:
        """Parse a stored JSON string.

        Raises:
            MalformedRecordError: If the value is not valid JSON or not record-shaped
        """
        try:
            data = json.loads(value)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedRecordError(
                f"Stored value at '{key}' is not valid JSON: {e}", key=key
            ) from e
        return cls.from_dict(data, key=key)


@dataclass
class PipelineRunRecord:
    """Pipeline run summary row from the database."""

    run_id: str
    timestamp: datetime
    status: str
    partial: bool
    summary: dict[str, Any]


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DatabaseStore:
    """Database store for all partitioned mail data.

    This class provides async operations over the partition_records,
    agent_state and pipeline_runs tables. It handles connection management,
    JSON serialization, and type conversion.

    Attributes:
        db_path: Path to the SQLite database file
        _initialized: Whether the database has been initialized
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database, creating tables if needed.

        This must be called before any other operations.
        """
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Get a configured database connection.

        Sets all required PRAGMAs for reliability and performance:
        - busy_timeout: 10s to handle overlapping pipeline runs
        - synchronous: NORMAL (safe with WAL, faster writes)
        - cache_size: 64MB for better read performance
        - temp_store: MEMORY for faster temp operations
        """
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")

            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA cache_size = -64000")  # 64MB
            await db.execute("PRAGMA temp_store = MEMORY")

            db.row_factory = aiosqlite.Row
            yield db

    async def checkpoint_wal(self) -> None:
        """Run a WAL checkpoint to keep WAL file size bounded.

        Safe to call at the end of each pipeline run.
        """
        try:
            async with self._db() as db:
                await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            logger.debug("wal_checkpoint_complete")
        except aiosqlite.Error as e:
            logger.warning("wal_checkpoint_failed", error=str(e))

    # =========================================================================
    # Partition Records
    # =========================================================================

    async def put_value(
        self,
        partition: str,
        key: str,
        value: str,
        message_id: str | None = None,
        stored_at: str | None = None,
    ) -> None:
        """Write a raw string value, replacing any value at the same key.

        Raises:
            DatabaseError: If the operation fails
        """
        now = utc_now_iso()
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO partition_records (
                        partition, key, value, message_id, stored_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(partition, key) DO UPDATE SET
                        value = excluded.value,
                        message_id = excluded.message_id,
                        stored_at = excluded.stored_at,
                        updated_at = excluded.updated_at
                    """,
                    (partition, key, value, message_id or None, stored_at or now, now),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("partition_write_failed", partition=partition, key=key, error=str(e))
            raise DatabaseError(
                f"Failed to write '{key}' to partition '{partition}': {e}"
            ) from e

    async def put_record(self, partition: str, key: str, record: StoredRecord) -> None:
        """Upsert a StoredRecord (last write wins on the same key).

        Raises:
            DatabaseError: If the operation fails
        """
        await self.put_value(
            partition,
            key,
            record.to_json(),
            message_id=record.message_id,
            stored_at=record.stored_at,
        )

    async def get_value(self, partition: str, key: str) -> str | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT value FROM partition_records WHERE partition = ? AND key = ?",
                    (partition, key),
                )
                row = await cursor.fetchone()
                return row["value"] if row else None

        except aiosqlite.Error as e:
            logger.error("partition_read_failed", partition=partition, key=key, error=str(e))
            raise DatabaseError(f"Failed to read '{key}' from partition '{partition}': {e}") from e

    async def get_record(self, partition: str, key: str) -> StoredRecord | None:
        """Read a record back.

        Returns:
            The record, or None if the key is absent

        Raises:
            MalformedRecordError: If the stored value cannot be parsed
            DatabaseError: If the operation fails
        """
        value = await self.get_value(partition, key)
        if value is None:
            return None
        return StoredRecord.from_json(value, key=key)

    async def key_exists(self, partition: str, key: str) -> bool:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT 1 FROM partition_records WHERE partition = ? AND key = ?",
                    (partition, key),
                )
                return await cursor.fetchone() is not None

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to check key '{key}' in '{partition}': {e}") from e

    async def list_keys(self, partition: str, prefix: str | None = None) -> list[str]:
        """List keys in a partition in lexical order, optionally by prefix."""
        try:
            async with self._db() as db:
                if prefix:
                    # substr comparison avoids LIKE wildcards in keys ('_' is common)
                    cursor = await db.execute(
                        """
                        SELECT key FROM partition_records
                        WHERE partition = ? AND substr(key, 1, ?) = ?
                        ORDER BY key
                        """,
                        (partition, len(prefix), prefix),
                    )
                else:
                    cursor = await db.execute(
                        "SELECT key FROM partition_records WHERE partition = ? ORDER BY key",
                        (partition,),
                    )
                rows = await cursor.fetchall()
                return [row["key"] for row in rows]

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to list partition '{partition}': {e}") from e

    async def scan_records(
        self, partition: str, prefix: str | None = None
    ) -> tuple[list[tuple[str, StoredRecord]], list[str]]:
        """Read every record in a partition, skipping unparseable values.

        Returns:
            Tuple of ((key, record) pairs in key order, keys that were skipped)
        """
        try:
            async with self._db() as db:
                if prefix:
                    cursor = await db.execute(
                        """
                        SELECT key, value FROM partition_records
                        WHERE partition = ? AND substr(key, 1, ?) = ?
                        ORDER BY key
                        """,
                        (partition, len(prefix), prefix),
                    )
                else:
                    cursor = await db.execute(
                        "SELECT key, value FROM partition_records WHERE partition = ? ORDER BY key",
                        (partition,),
                    )
                rows = await cursor.fetchall()

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to scan partition '{partition}': {e}") from e

        records: list[tuple[str, StoredRecord]] = []
        skipped: list[str] = []
        for row in rows:
            try:
                records.append((row["key"], StoredRecord.from_json(row["value"], key=row["key"])))
            except MalformedRecordError as e:
                logger.warning(
                    "malformed_record_skipped",
                    partition=partition,
                    key=row["key"],
                    error=str(e),
                )
                skipped.append(row["key"])
        return records, skipped

    async def delete_record(self, partition: str, key: str) -> bool:
        """Delete a key. Returns True if a row was removed."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "DELETE FROM partition_records WHERE partition = ? AND key = ?",
                    (partition, key),
                )
                await db.commit()
                return cursor.rowcount > 0

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to delete '{key}' from '{partition}': {e}") from e

    async def count(self, partition: str) -> int:
        """Count keys in a partition (recomputed on every call)."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT COUNT(*) AS n FROM partition_records WHERE partition = ?",
                    (partition,),
                )
                row = await cursor.fetchone()
                return row["n"]

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to count partition '{partition}': {e}") from e

    async def partition_counts(self) -> dict[str, int]:
        """Count keys in every partition that holds at least one record."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT partition, COUNT(*) AS n FROM partition_records
                    GROUP BY partition ORDER BY partition
                    """
                )
                rows = await cursor.fetchall()
                return {row["partition"]: row["n"] for row in rows}

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to count partitions: {e}") from e

    async def find_by_message_id(self, message_id: str) -> list[tuple[str, str]]:
        """Find every (partition, key) holding a message id."""
        if not message_id:
            return []
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT partition, key FROM partition_records
                    WHERE message_id = ? ORDER BY partition, key
                    """,
                    (message_id,),
                )
                rows = await cursor.fetchall()
                return [(row["partition"], row["key"]) for row in rows]

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to look up message id: {e}") from e

    async def purge_before(self, partition: str, cutoff: datetime) -> int:
        """Delete records first stored before `cutoff`.

        Returns:
            Number of records deleted
        """
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "DELETE FROM partition_records WHERE partition = ? AND stored_at < ?",
                    (partition, cutoff.isoformat()),
                )
                await db.commit()
                deleted = cursor.rowcount

            logger.info("partition_purged", partition=partition, cutoff=cutoff.isoformat(), deleted=deleted)
            return deleted

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to purge partition '{partition}': {e}") from e

    # =========================================================================
    # Agent State
    # =========================================================================

    async def get_state(self, key: str) -> str | None:
        """Get a state value, or None if not set."""
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT value FROM agent_state WHERE key = ?", (key,))
                row = await cursor.fetchone()
                return row["value"] if row else None

        except aiosqlite.Error as e:
            logger.error("state_read_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to get state: {e}") from e

    async def set_state(self, key: str, value: str) -> None:
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO agent_state (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, value, utc_now_iso()),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("state_write_failed", key=key, error=str(e))
            raise DatabaseError(f"Failed to set state: {e}") from e

    # =========================================================================
    # Pipeline Runs
    # =========================================================================

    async def record_pipeline_run(
        self,
        run_id: str,
        timestamp: str,
        status: str,
        partial: bool,
        summary: dict[str, Any],
    ) -> None:
        """Persist one run summary row."""
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO pipeline_runs (run_id, timestamp, status, partial, summary_json)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(run_id) DO UPDATE SET
                        timestamp = excluded.timestamp,
                        status = excluded.status,
                        partial = excluded.partial,
                        summary_json = excluded.summary_json
                    """,
                    (run_id, timestamp, status, int(partial), json.dumps(summary)),
                )
                await db.commit()

        except aiosqlite.Error as e:
            logger.error("pipeline_run_record_failed", run_id=run_id, error=str(e))
            raise DatabaseError(f"Failed to record pipeline run {run_id}: {e}") from e

    async def get_recent_runs(self, limit: int = 10) -> list[PipelineRunRecord]:
        """Get the most recent pipeline runs, newest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT run_id, timestamp, status, partial, summary_json
                    FROM pipeline_runs ORDER BY timestamp DESC LIMIT ?
                    """,
                    (limit,),
                )
                rows = await cursor.fetchall()
                return [
                    PipelineRunRecord(
                        run_id=row["run_id"],
                        timestamp=datetime.fromisoformat(row["timestamp"]),
                        status=row["status"],
                        partial=bool(row["partial"]),
                        summary=json.loads(row["summary_json"]),
                    )
                    for row in rows
                ]

        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to get pipeline runs: {e}") from e
