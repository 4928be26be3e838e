"""Rule evaluation shared by every matcher in the pipeline.

The classifier, the whitelist/priority engine, the triage auto-dismiss check
and the business pre-classifier all answer the same question: does this email
satisfy any of these pattern conditions? Each one is a RuleSet configuration
evaluated here, rather than its own matching loop.

Matching is case-folded and pattern-literal. Substring mode has no anchoring
and no word boundaries, so a condition of "ico" matches a subject containing
"icoach". No regex is used, so there is no ReDoS risk.

Usage:
    from mailtriage.rules.matching import Condition, MatchTarget, Rule, RuleSet

    rule = Rule(
        name="EMAIL_COMPLAINTS_ICO",
        conditions=(Condition.build(("sender",), ["ico.org.uk"]),),
    )
    rule_set = RuleSet(name="classification", rules=(rule,), strategy="all")
    hits = rule_set.evaluate(MatchTarget.of(sender="casework@ico.org.uk"))
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

MatchField = Literal["sender", "recipient", "subject", "body"]
MatchMode = Literal["substring", "exact", "domain"]
Strategy = Literal["all", "first"]


@dataclass(frozen=True, slots=True)
class MatchTarget:
    """Lower-cased email fields a rule can be evaluated against."""

    sender: str = ""
    recipient: str = ""
    subject: str = ""
    body: str = ""

    @classmethod
    def of(
        cls,
        sender: str | None = "",
        recipient: str | None = "",
        subject: str | None = "",
        body: str | None = "",
    ) -> MatchTarget:
        """Build a target, case-folding every field and treating None as empty."""
        return cls(
            sender=(sender or "").lower(),
            recipient=(recipient or "").lower(),
            subject=(subject or "").lower(),
            body=(body or "").lower(),
        )

    def get(self, field_name: MatchField) -> str:
        return getattr(self, field_name)


@dataclass(frozen=True, slots=True)
class Condition:
    """One pattern list checked against one or more email fields.

    Attributes:
        fields: Fields to test, in order
        patterns: Lower-cased patterns, in order
        mode: 'substring' (contains), 'exact' (equals) or 'domain'
              (address domain equals the pattern or ends with '.pattern')
    """

    fields: tuple[MatchField, ...]
    patterns: tuple[str, ...]
    mode: MatchMode = "substring"

    @classmethod
    def build(
        cls,
        fields: Iterable[MatchField],
        patterns: Iterable[str],
        mode: MatchMode = "substring",
    ) -> Condition:
        """Create a condition, lower-casing patterns and dropping blanks."""
        return cls(
            fields=tuple(fields),
            patterns=tuple(p.lower() for p in patterns if p and p.strip()),
            mode=mode,
        )

    def match(self, target: MatchTarget) -> tuple[MatchField, str] | None:
        """Return the (field, pattern) of the first hit, or None.

        Patterns are the outer loop so that the reported pattern is the first
        one in list order that hits any field.
        """
        for pattern in self.patterns:
            for field_name in self.fields:
                if _matches(target.get(field_name), pattern, self.mode):
                    return field_name, pattern
        return None


@dataclass(frozen=True, slots=True)
class RuleHit:
    """A rule that fired, with the field and pattern that triggered it."""

    rule: Rule
    field: MatchField
    pattern: str


@dataclass(frozen=True, slots=True)
class Rule:
    """A named set of OR-combined conditions.

    A rule fires when any of its conditions has at least one hit. Conditions
    are tried in order and evaluation of the rule stops at the first hit.

    Attributes:
        name: Rule name (category, whitelist entry id, signal set name)
        conditions: Conditions, tried in order
        source: The configuration object this rule was built from
    """

    name: str
    conditions: tuple[Condition, ...]
    source: Any = None

    @property
    def is_empty(self) -> bool:
        return not any(c.patterns for c in self.conditions)

    def match(self, target: MatchTarget) -> RuleHit | None:
        for condition in self.conditions:
            hit = condition.match(target)
            if hit is not None:
                return RuleHit(rule=self, field=hit[0], pattern=hit[1])
        return None


@dataclass(frozen=True, slots=True)
class RuleSet:
    """An ordered collection of rules plus an evaluation strategy.

    Strategy 'all' evaluates every rule and returns every hit, so one email
    can produce several labels. Strategy 'first' stops at the first rule that
    fires.
    """

    name: str
    rules: tuple[Rule, ...]
    strategy: Strategy = "all"

    def evaluate(self, target: MatchTarget) -> list[RuleHit]:
        hits: list[RuleHit] = []
        for rule in self.rules:
            hit = rule.match(target)
            if hit is None:
                continue
            hits.append(hit)
            if self.strategy == "first":
                break
        return hits

    def first(self, target: MatchTarget) -> RuleHit | None:
        """Return the first hit in rule order regardless of strategy."""
        for rule in self.rules:
            hit = rule.match(target)
            if hit is not None:
                return hit
        return None

    def any(self, target: MatchTarget) -> bool:
        return self.first(target) is not None

    def __len__(self) -> int:
        return len(self.rules)


def signal_rule_set(
    name: str,
    patterns: Iterable[str],
    fields: Iterable[MatchField],
) -> RuleSet:
    """Build a single-rule set that fires when any pattern appears in any field.

    Used for keyword signal lists (auto-dismiss signals, urgency keywords).
    """
    rule = Rule(name=name, conditions=(Condition.build(fields, patterns),))
    return RuleSet(name=name, rules=(rule,), strategy="first")


def address_domain(address: str) -> str:
    """Return the domain part of an address (text after the last '@')."""
    return address.rsplit("@", 1)[-1] if "@" in address else address


def _matches(value: str, pattern: str, mode: MatchMode) -> bool:
    if not value:
        return False
    if mode == "substring":
        return pattern in value
    if mode == "exact":
        return value == pattern
    domain = address_domain(value)
    return domain == pattern or domain.endswith("." + pattern)
