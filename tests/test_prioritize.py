"""Tests for the prioritisation pass over the filtered partition."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from mailtriage.classifier import WhitelistEngine, build_whitelist
from mailtriage.config_schema import AppConfig
from mailtriage.db import PartitionRegistry, StoredRecord
from mailtriage.engine.prioritize import PrioritizationPass


def _record(
    sender: str,
    categories: list[str],
    date: str,
    subject: str = "Update",
    status: str = "pending",
) -> StoredRecord:
    return StoredRecord(
        sender=sender,
        recipient="me@example.ee",
        subject=subject,
        date=date,
        message_id=f"<{sender}>",
        categories=categories,
        status=status,
    )


@pytest.fixture
def sorter(
    sample_config: AppConfig, registry: PartitionRegistry, clock: Callable[[], datetime]
) -> PrioritizationPass:
    engine = WhitelistEngine(build_whitelist(sample_config), sample_config.scoring, clock=clock)
    return PrioritizationPass(engine, registry, clock=clock)


@pytest.fixture
async def seeded(registry: PartitionRegistry, now: datetime) -> PartitionRegistry:
    recent = (now - timedelta(hours=1)).isoformat()
    old = (now - timedelta(days=30)).isoformat()
    await registry.update_copies(
        "k-ico", _record("casework@ico.org.uk", ["EMAIL_COMPLAINTS_ICO"], recent)
    )
    await registry.update_copies(
        "k-court", _record("registry@supremecourt.uk", ["EMAIL_COURTS_SUPREME_COURT"], old)
    )
    await registry.update_copies(
        "k-rentify", _record("agent@rentify.com", ["EMAIL_CLAIMANT_RENTIFY"], recent)
    )
    return registry


class TestPrioritize:
    def test_prioritize_sets_fields_and_status(
        self, sorter: PrioritizationPass, now: datetime
    ) -> None:
        record = _record(
            "casework@ico.org.uk",
            ["EMAIL_COMPLAINTS_ICO"],
            (now - timedelta(hours=2)).isoformat(),
        )
        updated, result = sorter.prioritize(record)

        assert updated.status == "sorted"
        assert updated.priority == "high"
        assert updated.priority_category == "legal"
        assert updated.relevance_score == result.score == 70
        assert updated.whitelist_matched is True
        assert updated.whitelist_rule == "ico.org.uk"
        assert updated.action == "allow"
        assert updated.sorted_at == now.isoformat()
        assert record.status == "pending"

    def test_unmatched_sender_gets_defaults(
        self, sorter: PrioritizationPass, now: datetime
    ) -> None:
        record = _record("friend@example.com", [], now.isoformat())
        updated, _ = sorter.prioritize(record)
        assert updated.whitelist_matched is False
        assert updated.whitelist_rule is None
        assert updated.priority == "medium"


class TestPrioritizationPass:
    @pytest.mark.asyncio
    async def test_run_ranks_by_priority_then_score(
        self, sorter: PrioritizationPass, seeded: PartitionRegistry
    ) -> None:
        result = await sorter.run()

        assert result.applied
        assert result.errors == []
        keys = [item.key for item in result.ranked]
        # court and ico are both high; the older court email scores lower
        assert keys == ["k-ico", "k-court", "k-rentify"]
        assert result.by_priority == {"urgent": 0, "high": 2, "medium": 1, "low": 0}

    @pytest.mark.asyncio
    async def test_run_writes_back_to_every_copy(
        self, sorter: PrioritizationPass, seeded: PartitionRegistry
    ) -> None:
        await sorter.run()

        for partition in (seeded.filtered, seeded.get("EMAIL_COMPLAINTS_ICO")):
            record = await partition.get("k-ico")
            assert record is not None
            assert record.status == "sorted"
            assert record.priority == "high"

    @pytest.mark.asyncio
    async def test_preview_writes_nothing(
        self, sorter: PrioritizationPass, seeded: PartitionRegistry
    ) -> None:
        result = await sorter.run(apply=False)

        assert not result.applied
        assert len(result.ranked) == 3
        record = await seeded.filtered.get("k-ico")
        assert record is not None
        assert record.status == "pending"
        assert record.priority is None

    @pytest.mark.asyncio
    async def test_triaged_records_left_alone(
        self, sorter: PrioritizationPass, registry: PartitionRegistry, now: datetime
    ) -> None:
        await registry.update_copies(
            "k1",
            _record("casework@ico.org.uk", ["EMAIL_COMPLAINTS_ICO"], now.isoformat(), status="triaged"),
        )
        result = await sorter.run()
        assert result.ranked == []
        record = await registry.filtered.get("k1")
        assert record is not None
        assert record.status == "triaged"

    @pytest.mark.asyncio
    async def test_sorted_records_are_rescored(
        self, sorter: PrioritizationPass, seeded: PartitionRegistry
    ) -> None:
        first = await sorter.run()
        second = await sorter.run()
        assert [i.key for i in first.ranked] == [i.key for i in second.ranked]
        assert [i.result.score for i in first.ranked] == [i.result.score for i in second.ranked]

    @pytest.mark.asyncio
    async def test_malformed_records_skipped(
        self, sorter: PrioritizationPass, seeded: PartitionRegistry
    ) -> None:
        await seeded.store.put_value("filtered", "k-bad", "{not json")
        result = await sorter.run()
        assert result.skipped == ["k-bad"]
        assert len(result.ranked) == 3
