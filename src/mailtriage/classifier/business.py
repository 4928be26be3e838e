"""Business/supplier pre-classifier.

A separately tuned triage path for a business mailbox. It extracts a
business context (keywords, currency amounts, supplier and order identifiers,
addresses, related emails, keyword priority) and short-circuits to a level
when the signals are strong enough:

1. No-action pattern in subject or body -> NO_ACTION (confidence 0.95)
2. Urgency pattern, a high-value currency amount, or a complexity score
   above the threshold -> HIGH_COMPLEX (confidence 0.85)
3. Otherwise LOW_COMPLEX (confidence 0.5)

complexity score = keywords + supplier ids + order numbers + priority weight
(urgent 3, high 2, else 0).

Keyword lists are RuleSets over the shared evaluator; identifier extraction
uses the regex library with a timeout.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

import regex

from mailtriage.config_schema import PRIORITY_ORDER, BusinessConfig, TriageLevel
from mailtriage.core.dates import parse_email_date
from mailtriage.core.logging import get_logger
from mailtriage.fetch.models import Email
from mailtriage.rules.matching import Condition, MatchTarget, Rule, RuleSet, signal_rule_set

logger = get_logger(__name__)

BusinessPriority = Literal["urgent", "high", "medium", "low"]
BusinessCategory = Literal["financial", "supplier", "customer", "compliance", "internal"]

REGEX_TIMEOUT = 1  # seconds

CURRENCY_PATTERN = regex.compile(r"[€$£¥]\s*[\d,]+(?:\.\d{2})?")

SUPPLIER_ID_PATTERNS = tuple(
    regex.compile(p, regex.IGNORECASE)
    for p in (
        r"supplier\s*(?:id|number|code)\s*:?\s*([a-z0-9\-\.]+)",
        r"vendor\s*(?:id|number|code)\s*:?\s*([a-z0-9\-\.]+)",
        r"(?:company|corp|ltd)\s*(?:id|number|reg)\s*:?\s*([a-z0-9\-\.]+)",
        r"(?:vat|tax)\s*(?:id|number)\s*:?\s*([a-z0-9\-\.]+)",
    )
)

ORDER_NUMBER_PATTERNS = tuple(
    regex.compile(p, regex.IGNORECASE)
    for p in (
        r"(?:order|po|purchase)\s*(?:number|no\.?|#)\s*:?\s*([a-z0-9\-\.]+)",
        r"invoice\s*(?:number|no\.?|#)\s*:?\s*([a-z0-9\-\.]+)",
        r"(?:ref|reference|tracking)\s*(?:number|no\.?|#)\s*:?\s*([a-z0-9\-\.]+)",
        r"quote\s*(?:number|no\.?|#)\s*:?\s*([a-z0-9\-\.]+)",
        r"contract\s*(?:number|no\.?|#)\s*:?\s*([a-z0-9\-\.]+)",
    )
)

ADDRESS_PATTERN = regex.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

WORD_SPLIT = regex.compile(r"\W+")

_PRIORITY_WEIGHT: dict[str, int] = {"urgent": 3, "high": 2}


@dataclass(frozen=True, slots=True)
class BusinessContext:
    """Signals extracted from one business email.

    Attributes:
        keywords: Business terms found in the body, then currency amounts
        amounts: Currency amounts found in the body
        addresses: Sender plus addresses mentioned in the body
        supplier_ids: Supplier, company registration and VAT/tax identifiers
        order_numbers: Order, invoice, reference, quote and contract numbers
        related: Other emails with a similar subject or the same parties
        priority: Keyword priority of the email
    """

    keywords: tuple[str, ...]
    amounts: tuple[str, ...]
    addresses: tuple[str, ...]
    supplier_ids: tuple[str, ...]
    order_numbers: tuple[str, ...]
    related: tuple[Email, ...]
    priority: BusinessPriority


@dataclass(frozen=True, slots=True)
class BusinessClassification:
    level: TriageLevel
    category: BusinessCategory
    reasoning: str
    confidence: float


def _unique(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


def _find_all(patterns: Sequence[regex.Pattern], text: str) -> tuple[str, ...]:
    found: list[str] = []
    for pattern in patterns:
        found.extend(m.group(0).strip() for m in pattern.finditer(text, timeout=REGEX_TIMEOUT))
    return _unique(found)


def subject_similarity(first: str, second: str) -> float:
    """Share of words (longer than 2 chars) in `first` that also appear in `second`."""
    words1 = WORD_SPLIT.split(first.lower(), timeout=REGEX_TIMEOUT)
    words2 = WORD_SPLIT.split(second.lower(), timeout=REGEX_TIMEOUT)
    shared = [w for w in words1 if len(w) > 2 and w in words2]
    return len(shared) / max(len(words1), len(words2))


class BusinessClassifier:
    """Pre-classifies business emails into triage levels and business categories."""

    def __init__(self, config: BusinessConfig | None = None):
        self.config = config or BusinessConfig()
        self.no_action = signal_rule_set(
            "business_no_action", self.config.no_action_patterns, ("subject", "body")
        )
        self.urgency = signal_rule_set(
            "business_urgency", self.config.urgent_patterns, ("subject", "body")
        )
        self.priority_tiers = RuleSet(
            name="business_priority",
            rules=tuple(
                Rule(
                    name=tier,
                    conditions=(Condition.build(("subject", "body"), self.config.priority_keywords[tier]),),
                )
                for tier in ("urgent", "high", "medium")
                if self.config.priority_keywords.get(tier)
            ),
            strategy="first",
        )
        self.categories = RuleSet(
            name="business_category",
            rules=tuple(
                Rule(name=name, conditions=(Condition.build(("subject", "body"), keywords),))
                for name, keywords in self.config.category_keywords.items()
                if keywords
            ),
            strategy="first",
        )

    @staticmethod
    def _target(email: Email) -> MatchTarget:
        return MatchTarget.of(sender=email.sender, subject=email.subject, body=email.body)

    def keyword_priority(self, email: Email) -> BusinessPriority:
        hit = self.priority_tiers.first(self._target(email))
        return hit.rule.name if hit else "low"

    def extract_context(self, email: Email, all_emails: Sequence[Email] = ()) -> BusinessContext:
        body = email.body or ""
        body_lower = body.lower()
        terms = [t for t in self.config.business_terms if t in body_lower]
        amounts = tuple(m.group(0) for m in CURRENCY_PATTERN.finditer(body, timeout=REGEX_TIMEOUT))
        mentioned = [m.group(0) for m in ADDRESS_PATTERN.finditer(body, timeout=REGEX_TIMEOUT)]

        return BusinessContext(
            keywords=(*terms, *amounts),
            amounts=amounts,
            addresses=_unique([email.sender, *mentioned]),
            supplier_ids=_find_all(SUPPLIER_ID_PATTERNS, body),
            order_numbers=_find_all(ORDER_NUMBER_PATTERNS, body),
            related=tuple(self.find_related(email, all_emails)),
            priority=self.keyword_priority(email),
        )

    def find_related(self, email: Email, all_emails: Sequence[Email]) -> list[Email]:
        related = []
        for other in all_emails:
            if other is email or other.fetch_id == email.fetch_id:
                continue
            same_parties = other.sender == email.sender or other.recipient == email.sender
            similar = subject_similarity(email.subject, other.subject) > self.config.related_similarity
            if similar or same_parties:
                related.append(other)
        return related

    def detect_category(self, email: Email, context: BusinessContext) -> BusinessCategory:
        """First category whose keywords appear; supplier ids also mark 'supplier'."""
        target = self._target(email)
        for rule in self.categories.rules:
            if rule.match(target) is not None:
                return rule.name
            if rule.name == "supplier" and context.supplier_ids:
                return "supplier"
        return "internal"

    def complexity_score(self, context: BusinessContext) -> int:
        return (
            len(context.keywords)
            + len(context.supplier_ids)
            + len(context.order_numbers)
            + _PRIORITY_WEIGHT.get(context.priority, 0)
        )

    def pre_classify(self, email: Email, context: BusinessContext) -> BusinessClassification | None:
        """Return a classification when the signals are decisive, else None."""
        target = self._target(email)
        if self.no_action.any(target):
            return BusinessClassification(
                level="NO_ACTION",
                category="internal",
                reasoning="Automated or promotional email detected",
                confidence=0.95,
            )

        has_urgency = self.urgency.any(target)
        has_high_value = any(
            symbol in keyword for keyword in context.keywords for symbol in self.config.high_value_symbols
        )
        score = self.complexity_score(context)
        if has_urgency or has_high_value or score > self.config.complexity_threshold:
            return BusinessClassification(
                level="HIGH_COMPLEX",
                category=self.detect_category(email, context),
                reasoning=(
                    f"High complexity indicators: urgency={str(has_urgency).lower()}, "
                    f"complexity_score={score}, high_value={str(has_high_value).lower()}"
                ),
                confidence=0.85,
            )
        return None

    def classify(self, email: Email, all_emails: Sequence[Email] = ()) -> BusinessClassification:
        context = self.extract_context(email, all_emails)
        result = self.pre_classify(email, context)
        if result is None:
            result = BusinessClassification(
                level="LOW_COMPLEX",
                category=self.detect_category(email, context),
                reasoning="No decisive indicators; routine business correspondence",
                confidence=0.5,
            )
        logger.debug(
            "business_email_classified",
            message_id=email.message_id,
            level=result.level,
            category=result.category,
        )
        return result

    def select_by_priority(self, emails: Sequence[Email]) -> Email | None:
        """Pick the most urgent email, newest first within a priority."""
        if not emails:
            return None
        oldest = datetime.min.replace(tzinfo=UTC)

        def sort_key(email: Email) -> tuple[int, float]:
            parsed = parse_email_date(email.date) or oldest
            return PRIORITY_ORDER.index(self.keyword_priority(email)), -parsed.timestamp()

        return sorted(emails, key=sort_key)[0]
