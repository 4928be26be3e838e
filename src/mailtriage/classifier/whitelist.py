"""Whitelist/priority engine: priority, scoring category and relevance score per email.

Entries come from two places: generated from the classification rules'
sender and recipient patterns, and a manual list in config.yaml. Duplicate
patterns are merged into one entry.

Evaluation scans priority groups urgent -> high -> medium -> low, list order
within a group, and stops at the first entry that matches. The score is
additive:

    base(priority) + bonus(category) + age lift, clamped at 0

Usage:
    from mailtriage.classifier.whitelist import WhitelistEngine, build_whitelist

    engine = WhitelistEngine(build_whitelist(config), config.scoring)
    result = engine.evaluate(sender, subject, body, date)
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from mailtriage.config_schema import (
    PRIORITY_ORDER,
    PriorityLevel,
    ScoringCategory,
    ScoringConfig,
    WhitelistAction,
    WhitelistEntry,
    WhitelistTags,
)
from mailtriage.core.dates import parse_email_date
from mailtriage.core.logging import get_logger
from mailtriage.rules.matching import Condition, MatchTarget, Rule, RuleSet

if TYPE_CHECKING:
    from mailtriage.config_schema import AppConfig, ClassificationRuleConfig

logger = get_logger(__name__)

UNCLASSIFIED = "UNCLASSIFIED"

# Category-name fragment -> (legal types, priority), applied cumulatively in this order
_LEGAL_TYPE_TAGS: tuple[tuple[str, tuple[str, ...], PriorityLevel], ...] = (
    ("complaints", ("complaints", "regulatory"), "high"),
    ("courts", ("litigation", "judicial"), "high"),
    ("government", ("administrative", "regulatory"), "high"),
    ("claimant", ("private-party", "litigation"), "medium"),
    ("defendants", ("defense", "litigation"), "medium"),
    ("expenses", ("financial", "administrative"), "low"),
    ("reconsideration", ("appeals", "judicial"), "high"),
)

# Pattern fragments -> jurisdiction
_JURISDICTION_TAGS: tuple[tuple[tuple[str, ...], str], ...] = (
    ((".uk",), "UK"),
    ((".gov",), "US"),
    ((".ee",), "Estonia"),
    (("ombudsman",), "UK"),
)

# Pattern fragments -> institution labels
_INSTITUTION_TAGS: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("ombudsman",), ("ombudsman",)),
    (("court", "judiciary"), ("court", "judicial")),
    (("government", "gov."), ("government", "executive")),
    (("parliament",), ("parliament", "legislative")),
    (("ombudsman",), ("ombudsman", "regulatory")),
    (("bar", "law"), ("legal-profession", "regulatory")),
)


def _unique(values: Iterable[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _priority_rank(priority: PriorityLevel) -> int:
    return PRIORITY_ORDER.index(priority)


# =============================================================================
# Generation
# =============================================================================


def derive_tags(category: str, pattern: str) -> WhitelistTags:
    """Derive a tag bundle from a category id and a sender/recipient pattern."""
    name = category.lower()
    pattern = pattern.lower()

    legal_type: list[str] = []
    priority: PriorityLevel = "medium"
    for fragment, labels, level in _LEGAL_TYPE_TAGS:
        if fragment in name:
            legal_type.extend(labels)
            priority = level

    jurisdiction = [
        label for fragments, label in _JURISDICTION_TAGS if any(f in pattern for f in fragments)
    ]
    institution: list[str] = []
    for fragments, labels in _INSTITUTION_TAGS:
        if any(f in pattern for f in fragments):
            institution.extend(labels)

    return WhitelistTags(
        legal_type=_unique(legal_type),
        jurisdiction=_unique(jurisdiction),
        institution=_unique(institution),
        priority=priority,
        partitions=[category],
    )


def scoring_category_for(category: str) -> ScoringCategory:
    """Map a category id onto the scoring category that selects its bonus."""
    name = category.lower()
    if "courts" in name or "reconsideration" in name:
        return "court"
    if any(f in name for f in ("complaints", "claimant", "defendants", "expenses")):
        return "legal"
    if "government" in name:
        return "government"
    return "notification"


def generate_entries(rules: Sequence[ClassificationRuleConfig]) -> list[WhitelistEntry]:
    """Generate whitelist entries from the rules' recipient and sender patterns.

    Recipient patterns: '@' -> exact, dotted -> domain (leading '.' dropped),
    otherwise a sender substring. Sender patterns: '@' -> exact, otherwise a
    sender substring.
    """
    entries: list[WhitelistEntry] = []
    for rule in rules:
        scoring = scoring_category_for(rule.category)
        for pattern in rule.to_includes:
            if "@" in pattern:
                match_type, value = "exact", pattern
            elif "." in pattern:
                match_type, value = "domain", pattern.lstrip(".")
            else:
                match_type, value = "pattern", pattern
            entries.append(
                WhitelistEntry(
                    pattern=value,
                    match_type=match_type,
                    categories=[rule.category],
                    category=scoring,
                    description=f"Generated from {rule.category} recipient pattern",
                    tags=derive_tags(rule.category, pattern),
                )
            )
        for pattern in rule.from_includes:
            entries.append(
                WhitelistEntry(
                    pattern=pattern,
                    match_type="exact" if "@" in pattern else "pattern",
                    categories=[rule.category],
                    category=scoring,
                    description=f"Generated from {rule.category} sender pattern",
                    tags=derive_tags(rule.category, pattern),
                )
            )
    return entries


def merge_entries(entries: Iterable[WhitelistEntry]) -> list[WhitelistEntry]:
    """Merge entries sharing a pattern, then sort by pattern.

    The first entry for a pattern keeps its match type, scoring category and
    action. Categories and tag lists are unioned and the highest priority kept.
    """
    merged: dict[str, WhitelistEntry] = {}
    for entry in entries:
        existing = merged.get(entry.pattern)
        if existing is None:
            merged[entry.pattern] = entry.model_copy(deep=True)
            continue

        priority = existing.tags.priority
        if _priority_rank(entry.tags.priority) < _priority_rank(priority):
            priority = entry.tags.priority
        tags = WhitelistTags(
            legal_type=_unique([*existing.tags.legal_type, *entry.tags.legal_type]),
            jurisdiction=_unique([*existing.tags.jurisdiction, *entry.tags.jurisdiction]),
            institution=_unique([*existing.tags.institution, *entry.tags.institution]),
            priority=priority,
            partitions=_unique([*existing.tags.partitions, *entry.tags.partitions]),
        )
        merged[entry.pattern] = existing.model_copy(
            update={
                "categories": _unique([*existing.categories, *entry.categories]),
                "tags": tags,
            }
        )
    return sorted(merged.values(), key=lambda e: e.pattern)


def build_whitelist(config: AppConfig) -> list[WhitelistEntry]:
    """Return the complete whitelist: generated entries merged with manual ones."""
    generated = generate_entries(config.classification_rules) if config.whitelist.generate_from_rules else []
    entries = merge_entries([*generated, *config.whitelist.entries])
    logger.debug(
        "whitelist_built",
        generated=len(generated),
        manual=len(config.whitelist.entries),
        total=len(entries),
    )
    return entries


# =============================================================================
# Evaluation
# =============================================================================


@dataclass(frozen=True, slots=True)
class PriorityResult:
    """Outcome of evaluating one email against the whitelist.

    Attributes:
        matched: True if a whitelist entry matched
        rule: The matching entry, or None
        priority: urgent | high | medium | low
        category: Scoring category
        action: allow | priority | block
        score: Relevance score, never negative
    """

    matched: bool
    rule: WhitelistEntry | None
    priority: PriorityLevel
    category: ScoringCategory
    action: WhitelistAction
    score: int

    @property
    def rule_id(self) -> str | None:
        return self.rule.entry_id if self.rule else None


@dataclass(frozen=True, slots=True)
class AddressLookup:
    """Whitelist membership of a bare address."""

    allowed: bool
    entry: WhitelistEntry | None
    categories: tuple[str, ...]
    partition: str

    @property
    def tags(self) -> WhitelistTags | None:
        return self.entry.tags if self.entry else None


def _condition_for(entry: WhitelistEntry) -> Condition:
    if entry.match_type == "exact":
        return Condition.build(("sender",), [entry.pattern], mode="exact")
    if entry.match_type == "domain":
        return Condition.build(("sender",), [entry.pattern], mode="domain")
    if entry.match_type == "subject":
        return Condition.build(("subject",), [entry.pattern])
    if entry.match_type == "keyword":
        return Condition.build(("subject", "body", "sender"), [entry.pattern])
    return Condition.build(("sender",), [entry.pattern])


def build_priority_rule_set(entries: Sequence[WhitelistEntry]) -> RuleSet:
    """Order entries by priority group (stable within a group) as a 'first' RuleSet."""
    ordered = sorted(entries, key=lambda e: _priority_rank(e.tags.priority))
    rules = tuple(
        Rule(name=entry.entry_id, conditions=(_condition_for(entry),), source=entry)
        for entry in ordered
    )
    return RuleSet(name="whitelist", rules=rules, strategy="first")


class WhitelistEngine:
    """Scores emails against whitelist entries.

    Attributes:
        entries: Whitelist entries as given
        scoring: Score weights
        clock: Returns the current time (aware UTC); injectable for tests
    """

    def __init__(
        self,
        entries: Sequence[WhitelistEntry],
        scoring: ScoringConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.entries = list(entries)
        self.scoring = scoring or ScoringConfig()
        self.clock = clock or (lambda: datetime.now(UTC))
        self.rule_set = build_priority_rule_set(self.entries)

    def age_lift(self, date: str | datetime | None) -> int:
        """Score adjustment for message age; 0 when the date is unparseable."""
        parsed = parse_email_date(date)
        if parsed is None:
            return 0
        hours = (self.clock() - parsed).total_seconds() / 3600
        if hours < self.scoring.fresh_hours:
            return self.scoring.fresh_bonus
        if hours < self.scoring.recent_hours:
            return self.scoring.recent_bonus
        if hours > self.scoring.stale_hours:
            return self.scoring.stale_penalty
        return 0

    def score(
        self,
        priority: PriorityLevel,
        category: ScoringCategory,
        date: str | datetime | None = None,
    ) -> int:
        total = (
            self.scoring.priority_base.get(priority, 0)
            + self.scoring.category_bonus.get(category, 0)
            + self.age_lift(date)
        )
        return max(0, total)

    def evaluate(
        self,
        sender: str,
        subject: str = "",
        body: str = "",
        date: str | datetime | None = None,
    ) -> PriorityResult:
        """Return the first matching entry's priority, category, action and score."""
        target = MatchTarget.of(sender=sender, subject=subject, body=body)
        hit = self.rule_set.first(target)
        if hit is None:
            return PriorityResult(
                matched=False,
                rule=None,
                priority="medium",
                category="notification",
                action="allow",
                score=max(0, self.scoring.unmatched_score),
            )

        entry: WhitelistEntry = hit.rule.source
        return PriorityResult(
            matched=True,
            rule=entry,
            priority=entry.tags.priority,
            category=entry.category,
            action=entry.action,
            score=self.score(entry.tags.priority, entry.category, date),
        )

    def lookup_address(self, address: str) -> AddressLookup:
        """Report whether a bare address is whitelisted and where it belongs.

        The partition is the entry's first tag partition, or UNCLASSIFIED.
        """
        hit = self.rule_set.first(MatchTarget.of(sender=address))
        if hit is None:
            return AddressLookup(allowed=False, entry=None, categories=(), partition=UNCLASSIFIED)
        entry: WhitelistEntry = hit.rule.source
        partition = entry.tags.partitions[0] if entry.tags.partitions else UNCLASSIFIED
        return AddressLookup(
            allowed=entry.action != "block",
            entry=entry,
            categories=tuple(entry.categories),
            partition=partition,
        )
