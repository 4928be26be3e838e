"""Email processing engines.

This package provides the pipeline stages:
- Key formatter for partition keys
- Routing engine storing emails into raw, filtered and category partitions
- Prioritisation pass applying the whitelist engine to filtered records
- Triage engine assigning handling tiers
- Pipeline orchestrator running every stage once per invocation
"""

from mailtriage.engine.keys import (
    KeyFormatter,
    format_key,
    format_minute_key,
    sanitize_sender,
    unique_key,
)
from mailtriage.engine.pipeline import PipelineOrchestrator, RunSummary
from mailtriage.engine.prioritize import (
    PrioritizationPass,
    PrioritizationResult,
    PrioritizedRecord,
)
from mailtriage.engine.routing import RoutingEngine, StoreResult
from mailtriage.engine.triage import TransitionResult, TriageDecision, TriageEngine

__all__ = [
    # Keys
    "KeyFormatter",
    "format_key",
    "format_minute_key",
    "sanitize_sender",
    "unique_key",
    # Pipeline
    "PipelineOrchestrator",
    "RunSummary",
    # Prioritisation
    "PrioritizationPass",
    "PrioritizationResult",
    "PrioritizedRecord",
    # Routing
    "RoutingEngine",
    "StoreResult",
    # Triage
    "TransitionResult",
    "TriageDecision",
    "TriageEngine",
]
