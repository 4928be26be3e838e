"""Tests for the business/supplier pre-classifier."""

from collections.abc import Callable

import pytest

from mailtriage.classifier import BusinessClassifier, subject_similarity
from mailtriage.config_schema import BusinessConfig
from mailtriage.fetch.models import Email


@pytest.fixture
def classifier() -> BusinessClassifier:
    return BusinessClassifier()


class TestContextExtraction:
    def test_identifiers_and_amounts(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        email = make_email(
            sender="ap@supplier.example",
            body=(
                "Supplier ID: SUP-123, VAT number GB123; "
                "Order #A-77 and invoice no. 991 total €5,000.00"
            ),
        )
        context = classifier.extract_context(email)

        assert context.supplier_ids == ("Supplier ID: SUP-123", "VAT number GB123")
        assert context.order_numbers == ("Order #A-77", "invoice no. 991")
        assert context.amounts == ("€5,000.00",)
        assert context.keywords[-1] == "€5,000.00"
        assert "invoice" in context.keywords
        assert context.addresses == ("ap@supplier.example",)

    def test_addresses_in_body(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        email = make_email(sender="a@x.com", body="Copying b@y.com and a@x.com")
        assert classifier.extract_context(email).addresses == ("a@x.com", "b@y.com")

    @pytest.mark.parametrize(
        ("subject", "expected"),
        [
            ("URGENT: pallets", "urgent"),
            ("Payment reminder", "high"),
            ("Meeting next week", "medium"),
            ("Hello", "low"),
        ],
    )
    def test_keyword_priority(
        self,
        classifier: BusinessClassifier,
        make_email: Callable[..., Email],
        subject: str,
        expected: str,
    ) -> None:
        assert classifier.keyword_priority(make_email(subject=subject)) == expected


class TestRelated:
    def test_subject_similarity(self) -> None:
        assert subject_similarity("Invoice 123 overdue", "Re: Invoice 123 overdue") == 0.75
        assert subject_similarity("Lunch", "Invoice 123") == 0.0

    def test_related_by_subject_or_parties(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        email = make_email(sender="a@x.com", subject="Invoice 123 overdue")
        similar = make_email(sender="b@y.com", subject="Re: Invoice 123 overdue")
        same_sender = make_email(sender="a@x.com", subject="Lunch")
        reply_to = make_email(sender="c@z.com", recipient="a@x.com", subject="Photos")
        unrelated = make_email(sender="d@w.com", subject="Lunch")

        related = classifier.find_related(
            email, [email, similar, same_sender, reply_to, unrelated]
        )
        assert related == [similar, same_sender, reply_to]


class TestClassify:
    def test_no_action_pattern(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        result = classifier.classify(make_email(subject="Out of office until Monday"))
        assert result.level == "NO_ACTION"
        assert result.category == "internal"
        assert result.confidence == 0.95

    def test_high_value_amount_is_high_complex(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        email = make_email(subject="Statement", body="Invoice total €5,000.00 attached")
        result = classifier.classify(email)

        assert result.level == "HIGH_COMPLEX"
        assert result.category == "financial"
        assert result.confidence == 0.85
        assert result.reasoning == (
            "High complexity indicators: urgency=false, complexity_score=4, high_value=true"
        )

    def test_urgency_pattern_is_high_complex(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        result = classifier.classify(make_email(subject="Emergency", body="Call me"))
        assert result.level == "HIGH_COMPLEX"
        assert "urgency=true" in result.reasoning

    def test_routine_email_falls_back_to_low_complex(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        result = classifier.classify(make_email(subject="Hello there", body="Thanks for the note."))
        assert result.level == "LOW_COMPLEX"
        assert result.category == "internal"
        assert result.confidence == 0.5

    def test_supplier_id_marks_supplier_category(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        email = make_email(subject="Hello", body="Vendor code: V-9")
        context = classifier.extract_context(email)
        assert classifier.detect_category(email, context) == "supplier"

    def test_threshold_is_configurable(self, make_email: Callable[..., Email]) -> None:
        email = make_email(subject="Hello", body="Thanks for the note.")
        strict = BusinessClassifier(BusinessConfig(complexity_threshold=0, urgent_patterns=[]))
        assert strict.classify(email).level == "LOW_COMPLEX"
        email = make_email(subject="Hello", body="See the schedule.")
        assert strict.classify(email).level == "HIGH_COMPLEX"


class TestSelectByPriority:
    def test_most_urgent_first_then_newest(
        self, classifier: BusinessClassifier, make_email: Callable[..., Email]
    ) -> None:
        newer_low = make_email(subject="Hello", date="2024-01-05T11:00:00Z")
        older_urgent = make_email(subject="URGENT pallets", date="2024-01-04T09:00:00Z")
        newer_urgent = make_email(subject="ASAP pallets", date="2024-01-05T09:00:00Z")

        assert classifier.select_by_priority([newer_low, older_urgent, newer_urgent]) is newer_urgent

    def test_empty(self, classifier: BusinessClassifier) -> None:
        assert classifier.select_by_priority([]) is None
