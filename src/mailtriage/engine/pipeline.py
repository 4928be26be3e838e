"""End-to-end pipeline run: check, fetch, store, prioritise, triage.

Each run generates a UUID4 run id and logs inside run_context(), so every log
line of a run carries the id together with the fetch source and key strategy.
Steps:

1. Connectivity checks, in hop order. The first failing hop short-circuits
   the run as 'skipped' before anything touches the store.
2. Fetch. A fetch failure also skips the run.
3. Store into raw / filtered / category partitions.
4. Prioritise filtered records (optional).
5. Triage filtered records, optionally writing decisions back.
6. Purge old raw records (optional).
7. Persist the run summary (pipeline_runs table and the pipeline_last_run
   state key).

Write failures never abort the run; they are collected into the summary's
`errors` and flip `partial`.

Usage:
    from mailtriage.engine.pipeline import PipelineOrchestrator

    orchestrator = PipelineOrchestrator.from_config(config, store, fetcher)
    summary = await orchestrator.run()
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

from mailtriage.classifier.classifier import Classifier
from mailtriage.classifier.whitelist import WhitelistEngine, build_whitelist
from mailtriage.config_schema import TRIAGE_LEVELS
from mailtriage.core.errors import DatabaseError, FetchError
from mailtriage.core.logging import get_logger, run_context
from mailtriage.db.partitions import PartitionRegistry
from mailtriage.engine.keys import KeyFormatter
from mailtriage.engine.prioritize import PrioritizationPass
from mailtriage.engine.routing import RoutingEngine
from mailtriage.engine.triage import TriageEngine

if TYPE_CHECKING:
    from mailtriage.config_schema import AppConfig
    from mailtriage.db.store import DatabaseStore
    from mailtriage.fetch.models import MailFetcher

logger = get_logger(__name__)

LAST_RUN_STATE_KEY = "pipeline_last_run"

RunStatus = Literal["complete", "skipped"]


def _empty_triage_totals() -> dict[str, Any]:
    return {"total": 0, "by_level": {level: 0 for level in TRIAGE_LEVELS}}


@dataclass
class RunSummary:
    """Per-run summary persisted for reporting."""

    run_id: str
    timestamp: str
    status: RunStatus = "complete"
    reason: str | None = None
    fetched: int = 0
    inbound: int = 0
    raw_stored: int = 0
    filtered_stored: int = 0
    route_stats: dict[str, int] = field(default_factory=dict)
    triage_totals: dict[str, Any] = field(default_factory=_empty_triage_totals)
    partial: bool = False
    errors: list[str] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PipelineOrchestrator:
    """Runs the pipeline once per call to `run()`.

    Attributes:
        config: Application configuration
        store: Database store (for run persistence and WAL checkpoint)
        fetcher: Mail-fetch collaborator
        router: Stores emails into partitions
        sorter: Prioritisation pass
        triage: Triage engine
        clock: Returns the current time (aware UTC)
    """

    def __init__(
        self,
        config: AppConfig,
        store: DatabaseStore,
        fetcher: MailFetcher,
        router: RoutingEngine,
        sorter: PrioritizationPass,
        triage: TriageEngine,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config
        self.store = store
        self.fetcher = fetcher
        self.router = router
        self.sorter = sorter
        self.triage = triage
        self.clock = clock or (lambda: datetime.now(UTC))

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: DatabaseStore,
        fetcher: MailFetcher,
        clock: Callable[[], datetime] | None = None,
    ) -> PipelineOrchestrator:
        """Wire every component from one configuration object."""
        registry = PartitionRegistry(store, config.category_names())
        classifier = Classifier(config.classification_rules)
        whitelist = WhitelistEngine(build_whitelist(config), config.scoring, clock=clock)
        return cls(
            config=config,
            store=store,
            fetcher=fetcher,
            router=RoutingEngine(
                classifier, registry, KeyFormatter(config.storage.key_strategy), clock=clock
            ),
            sorter=PrioritizationPass(whitelist, registry, clock=clock),
            triage=TriageEngine(registry, config.triage, clock=clock),
            clock=clock,
        )

    async def run(self) -> RunSummary:
        """Execute one pipeline run and return its persisted summary."""
        run_id = str(uuid.uuid4())
        with run_context(
            run_id,
            fetch_source=self.config.fetch.source,
            key_strategy=self.config.storage.key_strategy,
        ):
            return await self._run(run_id)

    async def _run(self, run_id: str) -> RunSummary:
        start_time = time.monotonic()
        summary = RunSummary(run_id=run_id, timestamp=self.clock().isoformat())

        logger.info("pipeline_run_start")

        try:
            if self._check_connectivity(summary):
                await self._fetch_and_process(summary)
        finally:
            summary.partial = summary.status == "complete" and bool(summary.errors)
            summary.duration_ms = int((time.monotonic() - start_time) * 1000)
            await self._persist(summary)

            logger.info(
                "pipeline_run_complete",
                status=summary.status,
                reason=summary.reason,
                fetched=summary.fetched,
                inbound=summary.inbound,
                raw_stored=summary.raw_stored,
                filtered_stored=summary.filtered_stored,
                route_stats=summary.route_stats,
                triage_totals=summary.triage_totals,
                partial=summary.partial,
                duration_ms=summary.duration_ms,
            )

        return summary

    def _check_connectivity(self, summary: RunSummary) -> bool:
        for hop in self.fetcher.check_connectivity():
            if not hop.ok:
                logger.warning("pipeline_hop_down", hop=hop.hop, url=hop.url, error=hop.error)
                summary.status = "skipped"
                summary.reason = f"{hop.hop} down"
                if hop.error:
                    summary.errors.append(f"{hop.hop}: {hop.error}")
                return False
        return True

    async def _fetch_and_process(self, summary: RunSummary) -> None:
        try:
            fetched = self.fetcher.fetch_emails()
        except FetchError as e:
            logger.warning("pipeline_fetch_failed", hop=e.hop, status_code=e.status_code, error=str(e))
            summary.status = "skipped"
            summary.reason = f"fetch failed: {e}"
            return

        summary.fetched = fetched.fetched
        summary.inbound = fetched.inbound

        try:
            stored = await self.router.store_emails(fetched.emails)
            summary.raw_stored = stored.raw_stored
            summary.filtered_stored = stored.filtered_stored
            summary.route_stats = stored.route_stats
            summary.errors.extend(stored.errors)

            if self.config.pipeline.prioritize:
                sorted_result = await self.sorter.run(apply=True)
                summary.errors.extend(sorted_result.errors)

            decisions, _ = await self.triage.triage_partition()
            summary.triage_totals = self.triage.summarise(decisions)
            if self.config.pipeline.apply_triage:
                summary.errors.extend(await self.triage.apply(decisions))

            retention = self.config.storage.raw_retention_days
            if self.config.pipeline.purge_raw and retention:
                purged = await self.router.purge_raw(retention)
                logger.info("raw_purged", purged=purged, retention_days=retention)

        except DatabaseError as e:
            logger.error("pipeline_run_error", error=str(e), error_type=type(e).__name__)
            summary.errors.append(str(e))

    async def _persist(self, summary: RunSummary) -> None:
        data = summary.to_dict()
        try:
            await self.store.record_pipeline_run(
                run_id=summary.run_id,
                timestamp=summary.timestamp,
                status=summary.status,
                partial=summary.partial,
                summary=data,
            )
            await self.store.set_state(LAST_RUN_STATE_KEY, json.dumps(data))
            await self.store.checkpoint_wal()
        except DatabaseError as e:
            logger.error("pipeline_run_persist_failed", run_id=summary.run_id, error=str(e))
