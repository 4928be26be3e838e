"""Triage engine for filtered email records.

Assigns each record a handling tier. Decision order per record, first match
wins:
1. Auto-dismiss: subject or sender contains a no-action signal -> NO_ACTION
2. High-complexity: a matched category is procedural or a top-tier court
   -> HIGH_COMPLEX (action depends on which table matched)
3. Low-complexity: a matched category is mid-tier -> LOW_COMPLEX
4. Otherwise SIMPLE

Decisions are pure functions of the record and the configured tables, so
triaging an unchanged record twice yields the same decision. Only the
filtered partition is scanned; unmatched emails never reach this engine.

Usage:
    from mailtriage.engine.triage import TriageEngine

    engine = TriageEngine(registry, config.triage)
    decisions, skipped = await engine.triage_partition()
    await engine.apply(decisions)
    totals = engine.summarise(decisions)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from mailtriage.config_schema import TRIAGE_LEVELS, TriageConfig, TriageLevel
from mailtriage.core.logging import get_logger
from mailtriage.db.store import UNTRIAGED_STATUSES, StoredRecord
from mailtriage.rules.matching import MatchTarget, signal_rule_set

if TYPE_CHECKING:
    from mailtriage.db.partitions import PartitionRegistry

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TriageDecision:
    key: str
    level: TriageLevel
    reason: str
    suggested_action: str | None


@dataclass
class TransitionResult:
    """Outcome of moving records of one level to a follow-up status."""

    moved: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class TriageEngine:
    """Decides triage levels for filtered records and writes them back.

    Attributes:
        registry: Partition registry; only `filtered` is scanned
        config: Signal and category tables
        clock: Returns the current time (aware UTC)
    """

    def __init__(
        self,
        registry: PartitionRegistry,
        config: TriageConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.registry = registry
        self.config = config or TriageConfig()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.signals = signal_rule_set(
            "no_action_signals", self.config.no_action_signals, ("subject", "sender")
        )
        self._procedural = frozenset(self.config.procedural_categories)
        self._top_court = frozenset(self.config.top_court_categories)
        self._low_complex = frozenset(self.config.low_complex_categories)

    def decide(self, key: str, record: StoredRecord) -> TriageDecision:
        """Return the triage decision for one record."""
        hit = self.signals.first(MatchTarget.of(sender=record.sender, subject=record.subject))
        if hit is not None:
            return TriageDecision(
                key=key,
                level="NO_ACTION",
                reason=f'Auto-dismiss: matches signal "{hit.pattern}"',
                suggested_action=None,
            )

        for category in record.categories:
            if category in self._procedural:
                action = self.config.procedural_action
            elif category in self._top_court:
                action = self.config.top_court_action
            else:
                continue
            return TriageDecision(
                key=key,
                level="HIGH_COMPLEX",
                reason=f"Namespace {category} requires full pipeline processing",
                suggested_action=action,
            )

        for category in record.categories:
            if category in self._low_complex:
                return TriageDecision(
                    key=key,
                    level="LOW_COMPLEX",
                    reason=f"Namespace {category} requires letter or formal response",
                    suggested_action=self.config.low_complex_action,
                )

        return TriageDecision(
            key=key,
            level="SIMPLE",
            reason="Standard correspondence - acknowledge and file",
            suggested_action=self.config.simple_action,
        )

    async def triage_partition(
        self, include_triaged: bool = False
    ) -> tuple[list[TriageDecision], list[str]]:
        """Decide every eligible record in the filtered partition.

        Malformed records are skipped (and logged by the store); the scan
        continues past them.

        Args:
            include_triaged: Also re-decide records that already left the
                pending/sorted states

        Returns:
            Tuple of (decisions in key order, skipped keys)
        """
        records, skipped = await self.registry.filtered.scan()
        decisions = [
            self.decide(key, record)
            for key, record in records
            if include_triaged or record.status in UNTRIAGED_STATUSES
        ]
        logger.info(
            "triage_partition_complete",
            decided=len(decisions),
            skipped=len(skipped),
            include_triaged=include_triaged,
        )
        return decisions, skipped

    async def apply(self, decisions: Sequence[TriageDecision]) -> list[str]:
        """Write decisions onto their records in filtered and category partitions.

        Each application overwrites the previous triage fields entirely.

        Returns:
            Error messages for records or copies that could not be written
        """
        errors: list[str] = []
        triaged_at = self.clock().isoformat()
        for decision in decisions:
            record = await self.registry.filtered.get(decision.key)
            if record is None:
                logger.warning("triage_record_missing", key=decision.key)
                errors.append(f"{self.registry.filtered.name}/{decision.key}: record missing")
                continue
            updated = replace(
                record,
                status="triaged",
                triage_level=decision.level,
                triage_reason=decision.reason,
                triage_suggested_action=decision.suggested_action,
                triaged_at=triaged_at,
            )
            errors.extend(await self.registry.update_copies(decision.key, updated))

        logger.info("triage_applied", decisions=len(decisions), failed_writes=len(errors))
        return errors

    async def _transition(self, level: TriageLevel, **changes: Any) -> TransitionResult:
        result = TransitionResult()
        records, _ = await self.registry.filtered.scan()
        for key, record in records:
            if record.status != "triaged" or record.triage_level != level:
                continue
            errors = await self.registry.update_copies(key, replace(record, **changes))
            result.errors.extend(errors)
            if not errors:
                result.moved.append(key)
        return result

    async def close_no_action(self) -> TransitionResult:
        """Move triaged NO_ACTION records to 'closed'."""
        result = await self._transition(
            "NO_ACTION", status="closed", closed_at=self.clock().isoformat()
        )
        logger.info("no_action_closed", closed=len(result.moved), failed=len(result.errors))
        return result

    async def queue_low_complex(self) -> TransitionResult:
        """Move triaged LOW_COMPLEX records to 'queued_low_complex'."""
        result = await self._transition(
            "LOW_COMPLEX", status="queued_low_complex", queued_at=self.clock().isoformat()
        )
        logger.info("low_complex_queued", queued=len(result.moved), failed=len(result.errors))
        return result

    @staticmethod
    def summarise(decisions: Iterable[TriageDecision]) -> dict[str, Any]:
        by_level = {level: 0 for level in TRIAGE_LEVELS}
        total = 0
        for decision in decisions:
            by_level[decision.level] += 1
            total += 1
        return {"total": total, "by_level": by_level}
