"""Rule evaluation primitives shared by the classifier and priority engines."""

from mailtriage.rules.matching import (
    Condition,
    MatchTarget,
    Rule,
    RuleHit,
    RuleSet,
    address_domain,
    signal_rule_set,
)

__all__ = [
    "Condition",
    "MatchTarget",
    "Rule",
    "RuleHit",
    "RuleSet",
    "address_domain",
    "signal_rule_set",
]
