"""Category classifier: which classification rules does an email satisfy?

Each rule checks the sender, then the recipient, then the subject against its
pattern lists and stops at the first hit. Every rule is evaluated, so one email
can land in several categories. Categories are returned deduplicated in the
order their rules appear in config.yaml.

Usage:
    from mailtriage.classifier.classifier import Classifier

    classifier = Classifier(config.classification_rules)
    result = classifier.classify(email)
    if result.matched:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mailtriage.core.logging import get_logger
from mailtriage.rules.matching import Condition, MatchTarget, Rule, RuleSet

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mailtriage.config_schema import ClassificationRuleConfig
    from mailtriage.fetch.models import Email

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Categories an email matched.

    Attributes:
        matched: True if at least one rule fired
        categories: Matched categories, deduplicated, in rule order
    """

    categories: tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return bool(self.categories)


def build_classification_rule_set(rules: Sequence[ClassificationRuleConfig]) -> RuleSet:
    """Express classification rules as an 'all' strategy RuleSet."""
    compiled = []
    for rule in rules:
        conditions = tuple(
            Condition.build((field_name,), patterns)
            for field_name, patterns in (
                ("sender", rule.from_includes),
                ("recipient", rule.to_includes),
                ("subject", rule.subject_includes),
            )
            if patterns
        )
        compiled.append(Rule(name=rule.category, conditions=conditions, source=rule))
    return RuleSet(name="classification", rules=tuple(compiled), strategy="all")


class Classifier:
    """Matches emails against the ordered classification rules."""

    def __init__(self, rules: Sequence[ClassificationRuleConfig]):
        self.rule_set = build_classification_rule_set(rules)

    @property
    def category_names(self) -> list[str]:
        names: list[str] = []
        for rule in self.rule_set.rules:
            if rule.name not in names:
                names.append(rule.name)
        return names

    def classify_fields(self, sender: str, recipient: str, subject: str) -> ClassificationResult:
        target = MatchTarget.of(sender=sender, recipient=recipient, subject=subject)
        categories: list[str] = []
        for hit in self.rule_set.evaluate(target):
            if hit.rule.name not in categories:
                categories.append(hit.rule.name)
        return ClassificationResult(categories=tuple(categories))

    def classify(self, email: Email) -> ClassificationResult:
        result = self.classify_fields(email.sender, email.recipient, email.subject)
        if result.matched:
            logger.debug(
                "email_classified",
                message_id=email.message_id,
                categories=list(result.categories),
            )
        return result
