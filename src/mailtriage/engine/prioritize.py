"""Prioritisation pass over the filtered partition.

Applies the whitelist/priority engine to every untriaged record and writes
the outcome back onto the record (priority, relevance score, scoring
category, whitelist rule, action). Pending records move to 'sorted'.
Records that were already triaged, queued or closed are left alone.

Usage:
    from mailtriage.engine.prioritize import PrioritizationPass

    sorter = PrioritizationPass(whitelist_engine, registry)
    result = await sorter.run()              # writes back
    preview = await sorter.run(apply=False)  # ranking only
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from mailtriage.config_schema import PRIORITY_ORDER
from mailtriage.core.logging import get_logger
from mailtriage.db.store import UNTRIAGED_STATUSES, StoredRecord

if TYPE_CHECKING:
    from mailtriage.classifier.whitelist import PriorityResult, WhitelistEngine
    from mailtriage.db.partitions import PartitionRegistry

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PrioritizedRecord:
    key: str
    record: StoredRecord
    result: PriorityResult


@dataclass
class PrioritizationResult:
    """Ranked records plus bookkeeping for one pass.

    Attributes:
        ranked: Records ordered by priority (urgent first), then score (desc)
        skipped: Keys of malformed records that could not be read
        errors: One message per failed write-back
        applied: False when the pass was a preview
    """

    ranked: list[PrioritizedRecord] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    applied: bool = True

    @property
    def by_priority(self) -> dict[str, int]:
        counts = {priority: 0 for priority in PRIORITY_ORDER}
        for item in self.ranked:
            counts[item.result.priority] += 1
        return counts


def rank_key(item: PrioritizedRecord) -> tuple[int, int]:
    return PRIORITY_ORDER.index(item.result.priority), -item.result.score


class PrioritizationPass:
    """Scores filtered records with the whitelist engine."""

    def __init__(
        self,
        engine: WhitelistEngine,
        registry: PartitionRegistry,
        clock: Callable[[], datetime] | None = None,
    ):
        self.engine = engine
        self.registry = registry
        self.clock = clock or (lambda: datetime.now(UTC))

    def prioritize(self, record: StoredRecord) -> tuple[StoredRecord, PriorityResult]:
        """Score one record and return the updated copy alongside the result."""
        result = self.engine.evaluate(
            sender=record.sender,
            subject=record.subject,
            body=record.body,
            date=record.date,
        )
        updated = replace(
            record,
            priority=result.priority,
            relevance_score=result.score,
            priority_category=result.category,
            whitelist_matched=result.matched,
            whitelist_rule=result.rule_id,
            action=result.action,
            sorted_at=self.clock().isoformat(),
            status="sorted",
        )
        return updated, result

    async def run(self, apply: bool = True) -> PrioritizationResult:
        """Score every untriaged filtered record.

        Args:
            apply: Write results back to filtered and category partitions.
                When False nothing is written.

        Returns:
            PrioritizationResult with records ranked by priority then score
        """
        outcome = PrioritizationResult(applied=apply)
        records, outcome.skipped = await self.registry.filtered.scan()

        for key, record in records:
            if record.status not in UNTRIAGED_STATUSES:
                continue
            updated, result = self.prioritize(record)
            outcome.ranked.append(PrioritizedRecord(key=key, record=updated, result=result))
            if apply:
                outcome.errors.extend(await self.registry.update_copies(key, updated))

        outcome.ranked.sort(key=rank_key)

        logger.info(
            "prioritization_complete",
            scored=len(outcome.ranked),
            by_priority=outcome.by_priority,
            skipped=len(outcome.skipped),
            failed_writes=len(outcome.errors),
            applied=apply,
        )
        return outcome
