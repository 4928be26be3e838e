"""SQLite database schema and initialization for the mail triage pipeline.

This module defines the database schema with 3 tables:
- partition_records: Every stored email value, keyed by (partition, key)
- agent_state: Key-value state persistence (e.g. pipeline_last_run)
- pipeline_runs: One summary row per pipeline run

Partitions (raw, filtered, one per category) are rows sharing a `partition`
value rather than separate tables, so adding a category never needs a
migration.

Usage:
    from mailtriage.db.models import init_database

    # Initialize database (creates tables if not exist)
    await init_database("data/mailtriage.db")
"""

import stat
from pathlib import Path

import aiosqlite

from mailtriage.core.errors import DatabaseError
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

# Schema version for migrations (increment when schema changes)
SCHEMA_VERSION = 1

# SQL schema definition
SCHEMA_SQL = """
-- MUST be set before creating tables. Persists across connections.
PRAGMA journal_mode=WAL;

-- Every stored email value, one row per (partition, key)
CREATE TABLE IF NOT EXISTS partition_records (
    partition TEXT NOT NULL,                -- 'raw', 'filtered' or a category id
    key TEXT NOT NULL,                      -- Sender+timestamp storage key
    value TEXT NOT NULL,                    -- StoredRecord JSON
    message_id TEXT,                        -- Transport message id, copied from value
    stored_at DATETIME,                     -- When the record was first written
    updated_at DATETIME,                    -- Last write (status transitions included)
    PRIMARY KEY (partition, key)
);

-- Index for message-id lookups across partitions
CREATE INDEX IF NOT EXISTS idx_partition_records_message_id
    ON partition_records(message_id);

-- Index for age-based purges of the raw partition
CREATE INDEX IF NOT EXISTS idx_partition_records_stored_at
    ON partition_records(partition, stored_at);

-- Key-value state (pipeline_last_run, ...)
CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- One summary row per pipeline run
CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id TEXT PRIMARY KEY,
    timestamp DATETIME NOT NULL,
    status TEXT NOT NULL,                   -- 'complete' or 'skipped'
    partial INTEGER DEFAULT 0,              -- 1 if any write failed
    summary_json TEXT NOT NULL              -- Full RunSummary
);

CREATE INDEX IF NOT EXISTS idx_pipeline_runs_timestamp ON pipeline_runs(timestamp);
"""

REQUIRED_TABLES = ("partition_records", "agent_state", "pipeline_runs")


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Creates the database file if it doesn't exist, enables WAL mode, and
    creates all tables and indexes.

    Args:
        db_path: Path to the SQLite database file

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)

    # Ensure parent directory exists
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            journal_mode = await db.execute("PRAGMA journal_mode")
            mode = await journal_mode.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning(
                    "wal_mode_not_enabled",
                    requested="wal",
                    actual=mode[0],
                    db_path=str(db_path),
                )

            await db.executescript(SCHEMA_SQL)
            await db.commit()

            cursor = await db.execute("SELECT COUNT(*) FROM sqlite_master WHERE type='table'")
            table_count = (await cursor.fetchone())[0]

        # Stored values contain full email bodies: owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        for suffix in ["-wal", "-shm"]:
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info(
            "database_initialized",
            db_path=str(db_path),
            schema_version=SCHEMA_VERSION,
            tables_created=table_count,
        )

    except aiosqlite.Error as e:
        logger.error(
            "database_initialization_failed",
            db_path=str(db_path),
            error=str(e),
        )
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Verify that the database has the expected schema.

    Returns:
        True if all tables exist, False otherwise
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing_tables = {row[0] for row in await cursor.fetchall()}

            missing = set(REQUIRED_TABLES) - existing_tables
            if missing:
                logger.warning(
                    "database_tables_missing",
                    missing=sorted(missing),
                    db_path=str(db_path),
                )
                return False

            return True

    except aiosqlite.Error as e:
        logger.error(
            "schema_verification_failed",
            db_path=str(db_path),
            error=str(e),
        )
        return False
