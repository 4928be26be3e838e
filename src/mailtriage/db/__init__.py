"""Database layer for the mail triage pipeline.

This module provides SQLite database access with async operations.

Usage:
    from mailtriage.db import DatabaseStore, PartitionRegistry

    store = DatabaseStore("data/mailtriage.db")
    await store.initialize()

    registry = PartitionRegistry(store, config.category_names())
    await registry.get("EMAIL_COMPLAINTS_ICO").put(key, record)
"""

from mailtriage.db.models import (
    SCHEMA_VERSION,
    init_database,
    verify_schema,
)
from mailtriage.db.partitions import (
    FILTERED_PARTITION,
    RAW_PARTITION,
    Partition,
    PartitionRegistry,
)
from mailtriage.db.store import (
    UNTRIAGED_STATUSES,
    DatabaseStore,
    PipelineRunRecord,
    RecordStatus,
    StoredRecord,
)

__all__ = [
    # Models
    "SCHEMA_VERSION",
    "init_database",
    "verify_schema",
    # Store
    "DatabaseStore",
    "StoredRecord",
    "PipelineRunRecord",
    "RecordStatus",
    "UNTRIAGED_STATUSES",
    # Partitions
    "Partition",
    "PartitionRegistry",
    "RAW_PARTITION",
    "FILTERED_PARTITION",
]
