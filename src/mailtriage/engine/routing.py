"""Routing of fetched emails into raw, filtered and category partitions.

For every email:
1. Classify it
2. Write it to the raw partition (always)
3. If it matched, write it to the filtered partition and to each matched
   category partition

The same key and the same record (same categories list) are used for every
copy. A re-fetched message keeps its earlier key and first stored_at, and
copies in partitions it no longer routes to are deleted. An email whose date
cannot be parsed is keyed by fetch time. Writes are independent: a failed
category write is logged and recorded in the result, and earlier writes stay
in place. Route statistics are aggregated once after all writes, counting
only successful category writes.

Usage:
    from mailtriage.engine.routing import RoutingEngine

    router = RoutingEngine(classifier, registry, KeyFormatter("minute_unique"))
    result = await router.store_emails(fetch_result.emails)
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from mailtriage.core.errors import (
    DatabaseError,
    KeyFormatError,
    MalformedRecordError,
    PartitionWriteError,
    UnknownPartitionError,
)
from mailtriage.core.logging import get_logger
from mailtriage.db.store import StoredRecord

if TYPE_CHECKING:
    from mailtriage.classifier.classifier import Classifier
    from mailtriage.db.partitions import PartitionRegistry
    from mailtriage.engine.keys import KeyFormatter
    from mailtriage.fetch.models import Email

logger = get_logger(__name__)


@dataclass
class StoreResult:
    """Outcome of storing one batch of emails.

    Attributes:
        raw_stored: Emails written to the raw partition
        filtered_stored: Emails written to the filtered partition
        route_stats: Successful writes per category partition
        errors: One message per failed write or stale-copy delete
    """

    raw_stored: int = 0
    filtered_stored: int = 0
    route_stats: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


@dataclass
class _EmailOutcome:
    raw: bool = False
    filtered: bool = False
    categories: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class RoutingEngine:
    """Stores emails into partitions according to the classifier.

    Attributes:
        classifier: Category classifier
        registry: Partition registry (raw, filtered, categories)
        key_formatter: Key strategy shared by every copy of an email
        clock: Returns the current time (aware UTC)
    """

    def __init__(
        self,
        classifier: Classifier,
        registry: PartitionRegistry,
        key_formatter: KeyFormatter,
        clock: Callable[[], datetime] | None = None,
    ):
        self.classifier = classifier
        self.registry = registry
        self.key_formatter = key_formatter
        self.clock = clock or (lambda: datetime.now(UTC))

    def build_record(self, email: Email, categories: Sequence[str]) -> StoredRecord:
        return StoredRecord(
            sender=email.sender,
            recipient=email.recipient,
            subject=email.subject,
            date=email.date,
            message_id=email.message_id,
            body=email.body,
            categories=list(categories),
            fetch_id=email.fetch_id,
            status="pending",
            stored_at=self.clock().isoformat(),
        )

    async def _previous_locations(self, email: Email) -> list[tuple[str, str]]:
        """Every (partition, key) this message was stored under by an earlier run."""
        if not email.message_id:
            return []
        try:
            return await self.registry.store.find_by_message_id(email.message_id)
        except DatabaseError as e:
            logger.warning("message_id_lookup_failed", message_id=email.message_id, error=str(e))
            return []

    async def _first_stored_at(self, key: str) -> str | None:
        try:
            previous = await self.registry.raw.get(key)
        except (DatabaseError, MalformedRecordError) as e:
            logger.warning("previous_record_unreadable", key=key, error=str(e))
            return None
        return previous.stored_at if previous else None

    async def _new_key(self, email: Email) -> str:
        try:
            return await self.key_formatter.key_for(email.sender, email.date, self.registry.raw)
        except KeyFormatError as e:
            # The record keeps the original date string; only the key uses fetch time
            logger.warning(
                "email_date_unparseable",
                message_id=email.message_id,
                sender=email.sender,
                date=email.date,
                error=str(e),
            )
            return await self.key_formatter.key_for(
                email.sender, self.clock(), self.registry.raw
            )

    async def _drop_stale_copies(
        self,
        key: str,
        locations: list[tuple[str, str]],
        keep: set[str],
        outcome: _EmailOutcome,
    ) -> None:
        """Delete copies left in partitions the message no longer routes to."""
        for partition, stored_key in locations:
            if stored_key != key or partition in keep:
                continue
            try:
                await self.registry.store.delete_record(partition, key)
                logger.info("stale_copy_removed", partition=partition, key=key)
            except DatabaseError as e:
                logger.error("stale_copy_delete_failed", partition=partition, key=key, error=str(e))
                outcome.errors.append(f"{partition}/{key}: {e}")

    async def _store_one(self, email: Email) -> _EmailOutcome:
        outcome = _EmailOutcome()
        classification = self.classifier.classify(email)

        locations = await self._previous_locations(email)
        raw_keys = [k for partition, k in locations if partition == self.registry.raw.name]
        key = raw_keys[0] if raw_keys else None
        record = self.build_record(email, classification.categories)
        if key is None:
            key = await self._new_key(email)
        else:
            record.stored_at = await self._first_stored_at(key) or record.stored_at

        try:
            await self.registry.raw.put(key, record)
            outcome.raw = True
        except PartitionWriteError as e:
            logger.error("partition_write_failed", partition=e.partition, key=key, error=str(e))
            outcome.errors.append(f"{e.partition}/{key}: {e}")

        keep = {self.registry.raw.name}
        if classification.matched:
            keep.add(self.registry.filtered.name)
            keep.update(classification.categories)
        await self._drop_stale_copies(key, locations, keep, outcome)

        if not classification.matched:
            logger.debug("email_unmatched", key=key)
            return outcome

        try:
            await self.registry.filtered.put(key, record)
            outcome.filtered = True
        except PartitionWriteError as e:
            logger.error("partition_write_failed", partition=e.partition, key=key, error=str(e))
            outcome.errors.append(f"{e.partition}/{key}: {e}")

        for category in classification.categories:
            try:
                await self.registry.get(category).put(key, record)
                outcome.categories.append(category)
            except UnknownPartitionError as e:
                logger.error("partition_unknown", category=category, key=key)
                outcome.errors.append(f"{category}/{key}: {e}")
            except PartitionWriteError as e:
                logger.error("partition_write_failed", partition=e.partition, key=key, error=str(e))
                outcome.errors.append(f"{e.partition}/{key}: {e}")

        logger.info(
            "email_routed",
            key=key,
            categories=outcome.categories,
            failed=len(outcome.errors),
        )
        return outcome

    async def store_emails(self, emails: Sequence[Email]) -> StoreResult:
        """Store a batch of emails; never raises for per-write failures."""
        outcomes = [await self._store_one(email) for email in emails]

        # Single aggregation step after every write has completed
        route_stats = Counter(category for o in outcomes for category in o.categories)
        result = StoreResult(
            raw_stored=sum(1 for o in outcomes if o.raw),
            filtered_stored=sum(1 for o in outcomes if o.filtered),
            route_stats=dict(route_stats),
            errors=[error for o in outcomes for error in o.errors],
        )

        logger.info(
            "emails_stored",
            emails=len(emails),
            raw_stored=result.raw_stored,
            filtered_stored=result.filtered_stored,
            route_stats=result.route_stats,
            partial=result.partial,
        )
        return result

    async def purge_raw(self, retention_days: int) -> int:
        """Delete raw records stored more than `retention_days` ago."""
        cutoff = self.clock() - timedelta(days=retention_days)
        return await self.registry.store.purge_before(self.registry.raw.name, cutoff)
