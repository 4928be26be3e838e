"""Typed partition handles over the shared DatabaseStore.

A Partition is a named key-value collection (raw, filtered, or one category).
The PartitionRegistry is built once at startup from the configured category
set; asking it for a category that was never declared raises
UnknownPartitionError instead of returning nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from mailtriage.config_schema import normalize_category
from mailtriage.core.errors import DatabaseError, PartitionWriteError, UnknownPartitionError
from mailtriage.core.logging import get_logger
from mailtriage.db.store import DatabaseStore, StoredRecord

RAW_PARTITION = "raw"
FILTERED_PARTITION = "filtered"

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Partition:
    """Handle for one named partition."""

    name: str
    store: DatabaseStore

    async def put(self, key: str, record: StoredRecord) -> None:
        """Upsert a record.

        Raises:
            PartitionWriteError: If the underlying write fails
        """
        try:
            await self.store.put_record(self.name, key, record)
        except DatabaseError as e:
            raise PartitionWriteError(str(e), partition=self.name, key=key) from e

    async def get(self, key: str) -> StoredRecord | None:
        return await self.store.get_record(self.name, key)

    async def list(self, prefix: str | None = None) -> list[str]:
        return await self.store.list_keys(self.name, prefix)

    async def delete(self, key: str) -> bool:
        return await self.store.delete_record(self.name, key)

    async def count(self) -> int:
        return await self.store.count(self.name)

    async def exists(self, key: str) -> bool:
        return await self.store.key_exists(self.name, key)

    async def scan(
        self, prefix: str | None = None
    ) -> tuple[list[tuple[str, StoredRecord]], list[str]]:
        """Return (key, record) pairs and the keys of skipped malformed values."""
        return await self.store.scan_records(self.name, prefix)


class PartitionRegistry:
    """Mapping from category id to partition handle, plus raw and filtered."""

    def __init__(self, store: DatabaseStore, categories: Iterable[str]):
        self.store = store
        self.raw = Partition(RAW_PARTITION, store)
        self.filtered = Partition(FILTERED_PARTITION, store)
        self._categories: dict[str, Partition] = {}
        for category in categories:
            name = normalize_category(category)
            self._categories.setdefault(name, Partition(name, store))

    @property
    def category_names(self) -> list[str]:
        return list(self._categories)

    def get(self, category: str) -> Partition:
        """Return the partition for a category.

        Raises:
            UnknownPartitionError: If the category was not registered
        """
        name = normalize_category(category)
        try:
            return self._categories[name]
        except KeyError:
            raise UnknownPartitionError(category) from None

    def resolve(self, name: str) -> Partition:
        """Resolve any partition name, including 'raw' and 'filtered'."""
        if name.lower() == RAW_PARTITION:
            return self.raw
        if name.lower() == FILTERED_PARTITION:
            return self.filtered
        return self.get(name)

    def __contains__(self, category: str) -> bool:
        return normalize_category(category) in self._categories

    def __iter__(self) -> Iterator[Partition]:
        return iter(self._categories.values())

    def __len__(self) -> int:
        return len(self._categories)

    async def update_copies(self, key: str, record: StoredRecord) -> list[str]:
        """Write an updated record to filtered and to each of its category partitions.

        Returns:
            Error messages for copies that could not be written
        """
        errors: list[str] = []
        targets = [self.filtered]
        for category in record.categories:
            try:
                targets.append(self.get(category))
            except UnknownPartitionError as e:
                logger.warning("record_category_unregistered", key=key, category=category)
                errors.append(f"{category}/{key}: {e}")
        for partition in targets:
            try:
                await partition.put(key, record)
            except PartitionWriteError as e:
                logger.error("partition_write_failed", partition=e.partition, key=key, error=str(e))
                errors.append(f"{e.partition}/{key}: {e}")
        return errors

    async def counts(self) -> dict[str, int]:
        """Count every registered partition, including empty ones."""
        stored = await self.store.partition_counts()
        counts = {
            RAW_PARTITION: stored.get(RAW_PARTITION, 0),
            FILTERED_PARTITION: stored.get(FILTERED_PARTITION, 0),
        }
        for name in self._categories:
            counts[name] = stored.get(name, 0)
        return counts
