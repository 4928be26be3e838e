"""Tests for whitelist generation and the priority engine."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pytest

from mailtriage.classifier import (
    UNCLASSIFIED,
    WhitelistEngine,
    build_whitelist,
    derive_tags,
    generate_entries,
    merge_entries,
    scoring_category_for,
)
from mailtriage.config_schema import (
    PRIORITY_ORDER,
    AppConfig,
    ClassificationRuleConfig,
    WhitelistEntry,
)


def _ago(now: datetime, delta: timedelta) -> str:
    return (now - delta).isoformat()


@pytest.fixture
def engine(sample_config: AppConfig, clock: Callable[[], datetime]) -> WhitelistEngine:
    return WhitelistEngine(build_whitelist(sample_config), sample_config.scoring, clock=clock)


class TestTagDerivation:
    def test_complaints_category(self) -> None:
        tags = derive_tags("EMAIL_COMPLAINTS_PHSO", "ombudsman.org.uk")
        assert tags.legal_type == ["complaints", "regulatory"]
        assert tags.priority == "high"
        assert tags.jurisdiction == ["UK"]
        assert tags.institution == ["ombudsman", "regulatory"]
        assert tags.partitions == ["EMAIL_COMPLAINTS_PHSO"]

    def test_claimant_category_is_medium(self) -> None:
        assert derive_tags("EMAIL_CLAIMANT_RENTIFY", "rentify").priority == "medium"

    def test_expenses_category_is_low(self) -> None:
        assert derive_tags("EMAIL_EXPENSES_REPAIRS", "builder").priority == "low"

    def test_jurisdiction_and_institution_from_pattern(self) -> None:
        tags = derive_tags("EMAIL_GOVERNMENT_US_STATE_DEPARTMENT", "state.gov")
        assert tags.jurisdiction == ["US"]
        assert tags.legal_type == ["administrative", "regulatory"]

    def test_court_institution(self) -> None:
        tags = derive_tags("EMAIL_COURTS_SUPREME_COURT", "supremecourt.uk")
        assert tags.institution == ["court", "judicial"]
        assert tags.legal_type == ["litigation", "judicial"]

    @pytest.mark.parametrize(
        ("category", "expected"),
        [
            ("EMAIL_COURTS_SUPREME_COURT", "court"),
            ("EMAIL_RECONSIDERATION_PD52B", "court"),
            ("EMAIL_COMPLAINTS_ICO", "legal"),
            ("EMAIL_CLAIMANT_LIU", "legal"),
            ("EMAIL_GOVERNMENT_ESTONIA", "government"),
            ("EMAIL_MISC", "notification"),
        ],
    )
    def test_scoring_category_for(self, category: str, expected: str) -> None:
        assert scoring_category_for(category) == expected


class TestGeneration:
    def test_pattern_shapes(self) -> None:
        rule = ClassificationRuleConfig(
            category="email-complaints-ico",
            to_includes=["casework@ico.org.uk", ".ico.org.uk", "informationcommissioner"],
            from_includes=["foi@ico.org.uk", "ico"],
        )
        entries = {e.pattern: e for e in generate_entries([rule])}
        assert entries["casework@ico.org.uk"].match_type == "exact"
        assert entries["ico.org.uk"].match_type == "domain"
        assert entries["informationcommissioner"].match_type == "pattern"
        assert entries["foi@ico.org.uk"].match_type == "exact"
        assert entries["ico"].match_type == "pattern"
        assert all(e.categories == ["EMAIL_COMPLAINTS_ICO"] for e in entries.values())
        assert all(e.category == "legal" for e in entries.values())

    def test_subject_patterns_do_not_generate_entries(self) -> None:
        rule = ClassificationRuleConfig(category="email-x", subject_includes=["hello"])
        assert generate_entries([rule]) == []

    def test_merge_unions_and_keeps_highest_priority(self) -> None:
        first = WhitelistEntry(
            pattern="gov.uk",
            match_type="domain",
            categories=["EMAIL_CLAIMANT_X"],
            tags={"priority": "medium", "partitions": ["EMAIL_CLAIMANT_X"], "jurisdiction": ["UK"]},
        )
        second = WhitelistEntry(
            pattern="gov.uk",
            match_type="pattern",
            categories=["EMAIL_COURTS_Y"],
            tags={"priority": "urgent", "partitions": ["EMAIL_COURTS_Y"], "jurisdiction": ["UK"]},
        )
        (merged,) = merge_entries([first, second])
        assert merged.match_type == "domain"
        assert merged.categories == ["EMAIL_CLAIMANT_X", "EMAIL_COURTS_Y"]
        assert merged.tags.partitions == ["EMAIL_CLAIMANT_X", "EMAIL_COURTS_Y"]
        assert merged.tags.jurisdiction == ["UK"]
        assert merged.priority == "urgent"

    def test_merge_sorts_by_pattern(self) -> None:
        entries = merge_entries([WhitelistEntry(pattern="zeta"), WhitelistEntry(pattern="alpha")])
        assert [e.pattern for e in entries] == ["alpha", "zeta"]

    def test_build_whitelist_includes_manual_entries(self, sample_config: AppConfig) -> None:
        patterns = {e.pattern for e in build_whitelist(sample_config)}
        assert {"ico.org.uk", "supremecourt.uk", "hmcts.gov.uk", "rentify", "unsubscribe"} <= patterns

    def test_generation_can_be_disabled(self, sample_config_dict: dict) -> None:
        sample_config_dict["whitelist"]["generate_from_rules"] = False
        entries = build_whitelist(AppConfig(**sample_config_dict))
        assert [e.pattern for e in entries] == ["unsubscribe"]


class TestScoring:
    def test_ico_sender_is_high_legal(self, engine: WhitelistEngine, now: datetime) -> None:
        result = engine.evaluate(
            "casework@ico.org.uk", "Data Protection Complaint", date=_ago(now, timedelta(hours=2))
        )
        assert result.matched
        assert result.priority == "high"
        assert result.category == "legal"
        assert result.rule_id == "ico.org.uk"
        assert result.score == 30 + 20 + 20

    def test_age_lift_windows(self, engine: WhitelistEngine, now: datetime) -> None:
        assert engine.age_lift(_ago(now, timedelta(hours=1))) == 20
        assert engine.age_lift(_ago(now, timedelta(hours=48))) == 10
        assert engine.age_lift(_ago(now, timedelta(hours=100))) == 0
        assert engine.age_lift(_ago(now, timedelta(days=30))) == -5
        assert engine.age_lift("not a date") == 0
        assert engine.age_lift(None) == 0

    def test_score_is_clamped_at_zero(self, engine: WhitelistEngine, now: datetime) -> None:
        assert engine.score("low", "spam", _ago(now, timedelta(days=30))) == 0

    def test_unmatched_defaults(self, engine: WhitelistEngine) -> None:
        result = engine.evaluate("friend@example.com", "Lunch?")
        assert not result.matched
        assert result.rule is None
        assert (result.priority, result.category, result.action, result.score) == (
            "medium",
            "notification",
            "allow",
            10,
        )

    def test_priority_groups_scanned_before_list_order(self, clock: Callable[[], datetime]) -> None:
        entries = [
            WhitelistEntry(pattern="example", tags={"priority": "low"}),
            WhitelistEntry(pattern="example.com", tags={"priority": "urgent"}, category="court"),
        ]
        result = WhitelistEngine(entries, clock=clock).evaluate("a@example.com")
        assert result.rule_id == "example.com"
        assert result.priority == "urgent"

    def test_keyword_entry_checks_body(self, engine: WhitelistEngine) -> None:
        result = engine.evaluate("news@shop.com", "Deals", body="Click to unsubscribe")
        assert result.action == "block"
        assert result.category == "spam"

    def test_score_non_negative_and_priority_valid(
        self, engine: WhitelistEngine, now: datetime
    ) -> None:
        senders = ["casework@ico.org.uk", "x@rentify.com", "a@b.c", "news@unsubscribe.com", ""]
        for sender in senders:
            for age in (timedelta(0), timedelta(days=365)):
                result = engine.evaluate(sender, date=_ago(now, age))
                assert result.score >= 0
                assert result.priority in PRIORITY_ORDER


class TestAddressLookup:
    def test_whitelisted_address(self, engine: WhitelistEngine) -> None:
        lookup = engine.lookup_address("registry@supremecourt.uk")
        assert lookup.allowed
        assert lookup.partition == "EMAIL_COURTS_SUPREME_COURT"
        assert lookup.categories == ("EMAIL_COURTS_SUPREME_COURT",)
        assert lookup.tags is not None

    def test_unknown_address(self, engine: WhitelistEngine) -> None:
        lookup = engine.lookup_address("friend@example.com")
        assert not lookup.allowed
        assert lookup.entry is None
        assert lookup.partition == UNCLASSIFIED

    def test_blocked_address(self, engine: WhitelistEngine) -> None:
        lookup = engine.lookup_address("unsubscribe@list.example")
        assert lookup.entry is not None
        assert not lookup.allowed
        assert lookup.partition == UNCLASSIFIED
