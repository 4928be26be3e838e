"""Email classification components.

This package provides the three rule-driven matchers:
- Category classifier over the classification rules
- Whitelist/priority engine producing priority, category and relevance score
- Business pre-classifier for the supplier mailbox triage path
"""

from mailtriage.classifier.business import (
    BusinessClassification,
    BusinessClassifier,
    BusinessContext,
    subject_similarity,
)
from mailtriage.classifier.classifier import (
    ClassificationResult,
    Classifier,
    build_classification_rule_set,
)
from mailtriage.classifier.whitelist import (
    UNCLASSIFIED,
    AddressLookup,
    PriorityResult,
    WhitelistEngine,
    build_whitelist,
    derive_tags,
    generate_entries,
    merge_entries,
    scoring_category_for,
)

__all__ = [
    # Business pre-classifier
    "BusinessClassification",
    "BusinessClassifier",
    "BusinessContext",
    "subject_similarity",
    # Category classifier
    "ClassificationResult",
    "Classifier",
    "build_classification_rule_set",
    # Whitelist/priority engine
    "UNCLASSIFIED",
    "AddressLookup",
    "PriorityResult",
    "WhitelistEngine",
    "build_whitelist",
    "derive_tags",
    "generate_entries",
    "merge_entries",
    "scoring_category_for",
]
