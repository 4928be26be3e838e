"""Pydantic configuration schema for the mail triage pipeline.

This module defines the configuration schema that mirrors config.yaml structure.
All configuration is validated against these models once at startup; an invalid
file stops the process before any email is classified.

Usage:
    from mailtriage.config_schema import AppConfig

    # Validate a config dict
    config = AppConfig(**yaml_data)
"""

from typing import Literal

import regex
from pydantic import BaseModel, Field, field_validator, model_validator

# Current schema version - increment when adding new required fields
CURRENT_SCHEMA_VERSION = 1

PriorityLevel = Literal["urgent", "high", "medium", "low"]
ScoringCategory = Literal["court", "legal", "government", "notification", "spam"]
WhitelistAction = Literal["allow", "priority", "block"]
WhitelistMatchType = Literal["exact", "domain", "pattern", "subject", "keyword"]
KeyStrategy = Literal["seconds", "minute_unique"]
TriageLevel = Literal["NO_ACTION", "SIMPLE", "LOW_COMPLEX", "HIGH_COMPLEX"]

PRIORITY_ORDER: tuple[PriorityLevel, ...] = ("urgent", "high", "medium", "low")
TRIAGE_LEVELS: tuple[TriageLevel, ...] = ("NO_ACTION", "SIMPLE", "LOW_COMPLEX", "HIGH_COMPLEX")


def normalize_category(name: str) -> str:
    """Canonicalise a category name to its partition identifier.

    'email-courts-supreme-court' and 'EMAIL_COURTS_SUPREME_COURT' both
    become 'EMAIL_COURTS_SUPREME_COURT'.
    """
    canonical = regex.sub(r"[^A-Z0-9]+", "_", name.strip().upper(), timeout=1)
    return canonical.strip("_")


def _normalize_categories(values: list[str]) -> list[str]:
    seen: list[str] = []
    for value in values:
        canonical = normalize_category(value)
        if not canonical:
            raise ValueError(f"Category name '{value}' is empty after normalisation")
        if canonical not in seen:
            seen.append(canonical)
    return seen


def _validate_relative_path(v: str, label: str) -> str:
    if not v or not v.strip():
        raise ValueError(f"{label} cannot be empty")
    if ".." in v:
        raise ValueError(f"{label} cannot contain '..' (path traversal)")
    return v


class StorageConfig(BaseModel):
    """SQLite storage and key scheme configuration."""

    db_path: str = Field(
        default="data/mailtriage.db",
        description="Path to the SQLite database holding every partition",
    )
    key_strategy: KeyStrategy = Field(
        default="minute_unique",
        description=(
            "'seconds': YYYY.MM.DD_sender_HH-MM-SS, last write wins on collision; "
            "'minute_unique': YYYY.MM.DD_sender_HH:MM with ':SS' appended when taken"
        ),
    )
    raw_retention_days: int | None = Field(
        default=None,
        ge=1,
        description="Purge raw records older than N days (None keeps them forever)",
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Ensure database path doesn't contain path traversal."""
        return _validate_relative_path(v, "Database path")


class LoggingConfig(BaseModel):
    """Log output settings. `--debug` on the command line overrides the level."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    format: Literal["console", "json"] = Field(
        default="console",
        description="'json' writes one object per line for scheduled runs",
    )
    quiet_loggers: list[str] = Field(
        default=["aiosqlite", "urllib3"],
        description="Library loggers held at WARNING regardless of level",
    )

    @field_validator("level", mode="before")
    @classmethod
    def uppercase_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class FetchConfig(BaseModel):
    """Mail-fetch collaborator configuration."""

    source: Literal["backend", "file"] = Field(
        default="backend",
        description="'backend' fetches over HTTP, 'file' reads a JSON export",
    )
    backend_url: str = Field(
        default="http://localhost:4000",
        description="Base URL of the mail backend (reached through the tunnel)",
    )
    file_path: str = Field(
        default="data/emails.json",
        description="JSON file of emails when source is 'file'",
    )
    check_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for each connectivity check",
    )
    fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Timeout for the fetch request",
    )
    folder: str = Field(default="All Mail", description="Mailbox folder to fetch")
    include_body: bool = Field(default=True, description="Request message bodies")
    exclude_folders: list[str] = Field(
        default=["Spam", "Junk", "Trash", "Deleted Items"],
        description="Folders the backend should skip",
    )
    exclude_senders: list[str] = Field(
        default_factory=list,
        description="Own addresses; mail from these is not counted as inbound",
    )

    @field_validator("backend_url")
    @classmethod
    def validate_backend_url(cls, v: str) -> str:
        """Require an http(s) URL without a trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("Backend URL must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("exclude_senders")
    @classmethod
    def lowercase_senders(cls, v: list[str]) -> list[str]:
        return [s.strip().lower() for s in v if s.strip()]


class PipelineConfig(BaseModel):
    """Stage toggles for one pipeline run."""

    prioritize: bool = Field(
        default=True,
        description="Run the whitelist/priority pass over filtered records",
    )
    apply_triage: bool = Field(
        default=True,
        description="Write triage decisions back onto records (False = report only)",
    )
    purge_raw: bool = Field(
        default=False,
        description="Purge raw records past storage.raw_retention_days after each run",
    )


class ClassificationRuleConfig(BaseModel):
    """One classification rule: a destination category and its conditions.

    The rule fires when any pattern in any non-empty list is contained in the
    corresponding field (case-insensitive).
    """

    category: str = Field(description="Destination category (canonicalised)")
    from_includes: list[str] = Field(
        default_factory=list,
        description="Substrings matched against the sender address",
    )
    to_includes: list[str] = Field(
        default_factory=list,
        description="Substrings matched against the recipient address",
    )
    subject_includes: list[str] = Field(
        default_factory=list,
        description="Substrings matched against the subject",
    )

    @field_validator("category")
    @classmethod
    def validate_category(cls, v: str) -> str:
        canonical = normalize_category(v)
        if not canonical:
            raise ValueError("Rule category cannot be empty")
        return canonical

    @field_validator("from_includes", "to_includes", "subject_includes")
    @classmethod
    def clean_patterns(cls, v: list[str]) -> list[str]:
        """Lower-case patterns and drop blank entries."""
        return [p.strip().lower() for p in v if p and p.strip()]

    @model_validator(mode="after")
    def require_condition(self) -> "ClassificationRuleConfig":
        if not (self.from_includes or self.to_includes or self.subject_includes):
            raise ValueError(
                f"Rule '{self.category}' has no conditions. Add at least one of "
                "from_includes, to_includes or subject_includes"
            )
        return self


class WhitelistTags(BaseModel):
    """Tag bundle attached to a whitelist entry."""

    legal_type: list[str] = Field(default_factory=list)
    jurisdiction: list[str] = Field(default_factory=list)
    institution: list[str] = Field(default_factory=list)
    priority: PriorityLevel = Field(default="medium")
    partitions: list[str] = Field(
        default_factory=list,
        description="Destination partition(s), canonicalised",
    )

    @field_validator("partitions")
    @classmethod
    def normalize_partitions(cls, v: list[str]) -> list[str]:
        return _normalize_categories(v)


class WhitelistEntry(BaseModel):
    """A priority- and tag-annotated sender/subject pattern.

    Match types:
        exact:   sender equals the pattern
        domain:  sender's domain equals the pattern or ends with '.pattern'
        pattern: sender contains the pattern
        subject: subject contains the pattern
        keyword: subject, body or sender contains the pattern
    """

    id: str | None = Field(default=None, description="Stable identifier (defaults to pattern)")
    pattern: str = Field(description="Pattern to match (case-insensitive)")
    match_type: WhitelistMatchType = Field(default="pattern")
    categories: list[str] = Field(
        default_factory=list,
        description="Category ids the pattern belongs to",
    )
    category: ScoringCategory = Field(
        default="notification",
        description="Scoring category that selects the score bonus",
    )
    action: WhitelistAction = Field(default="allow")
    description: str = Field(default="")
    tags: WhitelistTags = Field(default_factory=WhitelistTags)

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        cleaned = v.strip().lower()
        if not cleaned:
            raise ValueError("Whitelist pattern cannot be empty")
        return cleaned

    @property
    def entry_id(self) -> str:
        return self.id or self.pattern

    @property
    def priority(self) -> PriorityLevel:
        return self.tags.priority


class WhitelistConfig(BaseModel):
    """Whitelist/priority engine configuration."""

    generate_from_rules: bool = Field(
        default=True,
        description="Derive entries from classification_rules sender/recipient patterns",
    )
    entries: list[WhitelistEntry] = Field(
        default_factory=list,
        description="Manual entries, merged with generated ones",
    )


class ScoringConfig(BaseModel):
    """Relevance score weights for the priority engine."""

    priority_base: dict[PriorityLevel, int] = Field(
        default={"urgent": 50, "high": 30, "medium": 20, "low": 5},
    )
    category_bonus: dict[ScoringCategory, int] = Field(
        default={"court": 25, "legal": 20, "government": 15, "notification": 5, "spam": -10},
    )
    fresh_hours: int = Field(default=24, ge=1, description="Age below which fresh_bonus applies")
    fresh_bonus: int = Field(default=20)
    recent_hours: int = Field(default=72, ge=1, description="Age below which recent_bonus applies")
    recent_bonus: int = Field(default=10)
    stale_hours: int = Field(default=168, ge=1, description="Age above which stale_penalty applies")
    stale_penalty: int = Field(default=-5)
    unmatched_score: int = Field(default=10, ge=0, description="Score for unmatched emails")

    @model_validator(mode="after")
    def validate_windows(self) -> "ScoringConfig":
        if not self.fresh_hours < self.recent_hours <= self.stale_hours:
            raise ValueError("Age windows must satisfy fresh_hours < recent_hours <= stale_hours")
        return self


class TriageConfig(BaseModel):
    """Triage decision tables, checked in order: signals, high, low, default."""

    no_action_signals: list[str] = Field(
        default=[
            "delivery notification",
            "read receipt",
            "out of office",
            "automatic reply",
            "undeliverable",
            "noreply",
            "no-reply",
        ],
        description="Subject/sender substrings that auto-dismiss an email",
    )
    procedural_categories: list[str] = Field(
        default=[
            "EMAIL_RECONSIDERATION_CPR52_24_5",
            "EMAIL_RECONSIDERATION_CPR52_24_6",
            "EMAIL_RECONSIDERATION_CPR52_30",
            "EMAIL_RECONSIDERATION_PD52B",
        ],
        description="High-complexity procedural categories (document generation)",
    )
    top_court_categories: list[str] = Field(
        default=["EMAIL_COURTS_SUPREME_COURT"],
        description="High-complexity court categories (application drafting)",
    )
    low_complex_categories: list[str] = Field(
        default=[
            "EMAIL_COURTS_COURT_OF_APPEALS_CIVIL_DIVISION",
            "EMAIL_COURTS_KINGS_BENCH_APPEALS_DIVISION",
            "EMAIL_COURTS_CHANCERY_DIVISION",
            "EMAIL_COURTS_CENTRAL_LONDON_COUNTY_COURT",
            "EMAIL_COURTS_CLERKENWELL_COUNTY_COURT",
            "EMAIL_COURTS_ADMINISTRATIVE_COURT",
            "EMAIL_COMPLAINTS_ICO",
            "EMAIL_COMPLAINTS_PHSO",
            "EMAIL_COMPLAINTS_HMCTS",
            "EMAIL_COMPLAINTS_PARLIAMENT",
            "EMAIL_COMPLAINTS_BAR_STANDARDS_BOARD",
        ],
        description="Mid-tier categories answered with a formal letter",
    )
    procedural_action: str = Field(default="Generate response document + CE-File submission")
    top_court_action: str = Field(default="Draft application with attachments for court filing")
    low_complex_action: str = Field(default="Draft formal letter")
    simple_action: str = Field(default="Draft acknowledgement email")

    @field_validator("no_action_signals")
    @classmethod
    def lowercase_signals(cls, v: list[str]) -> list[str]:
        return [s.strip().lower() for s in v if s.strip()]

    @field_validator("procedural_categories", "top_court_categories", "low_complex_categories")
    @classmethod
    def normalize_tables(cls, v: list[str]) -> list[str]:
        return _normalize_categories(v)


class BusinessConfig(BaseModel):
    """Tuning for the business/supplier pre-classifier."""

    no_action_patterns: list[str] = Field(
        default=[
            "out of office",
            "vacation",
            "auto-reply",
            "automated",
            "delivery failure",
            "newsletter",
            "marketing",
            "promotion",
            "advertisement",
            "unsubscribe",
        ],
    )
    urgent_patterns: list[str] = Field(
        default=[
            "urgent",
            "emergency",
            "immediate",
            "asap",
            "critical",
            "deadline",
            "dispute",
            "complaint",
            "issue",
            "problem",
            "cancel",
            "refund",
            "return",
            "delay",
            "late",
        ],
    )
    priority_keywords: dict[Literal["urgent", "high", "medium"], list[str]] = Field(
        default={
            "urgent": ["urgent", "asap", "emergency", "critical", "deadline today"],
            "high": ["invoice", "payment", "contract", "deadline", "complaint"],
            "medium": ["order", "delivery", "quote", "proposal", "meeting"],
        },
        description="Keyword priority tiers, checked urgent first; otherwise low",
    )
    business_terms: list[str] = Field(
        default=[
            # Financial
            "invoice", "payment", "billing", "cost", "price", "discount",
            "credit", "debit", "account", "receivable", "payable", "budget",
            # Supply chain
            "order", "delivery", "shipment", "logistics", "transport",
            "warehouse", "inventory", "stock", "supply", "procurement",
            "sourcing", "fulfillment", "distribution",
            # Business relations
            "supplier", "vendor", "customer", "client", "partner",
            "contractor", "manufacturer", "distributor", "wholesaler",
            # Documents and processes
            "quote", "proposal", "contract", "agreement", "terms",
            "conditions", "specification", "requirement", "compliance",
            "quality", "inspection", "certification",
            # Customer service
            "service", "support", "complaint", "feedback", "issue",
            "refund", "return", "exchange", "warranty", "maintenance",
            # Project management
            "project", "deadline", "milestone", "timeline", "schedule",
            "meeting", "conference", "presentation", "review",
        ],
        description="Business keywords extracted as context",
    )
    category_keywords: dict[Literal["financial", "supplier", "customer", "compliance"], list[str]] = Field(
        default={
            "financial": ["invoice", "payment", "billing", "cost", "price", "account"],
            "supplier": ["supplier", "vendor", "procurement", "sourcing", "delivery"],
            "customer": ["customer", "client", "order", "quote", "inquiry"],
            "compliance": ["compliance", "regulation", "audit", "certification", "quality"],
        },
        description="Category keyword lists, checked in this order; otherwise internal",
    )
    high_value_symbols: list[str] = Field(
        default=["$", "€", "£"],
        description="Currency symbols that mark an amount as high value",
    )
    complexity_threshold: int = Field(
        default=4,
        ge=0,
        description="Complexity score above which an email is HIGH_COMPLEX",
    )
    related_similarity: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Subject similarity above which two emails are related",
    )

    @field_validator("no_action_patterns", "urgent_patterns", "business_terms", "high_value_symbols")
    @classmethod
    def lowercase_terms(cls, v: list[str]) -> list[str]:
        return [s.strip().lower() for s in v if s.strip()]


class AppConfig(BaseModel):
    """Root configuration schema for the mail triage pipeline.

    This model validates the entire config.yaml structure. If validation
    fails, the pipeline exits with a clear error before touching storage.

    When `categories` is declared, every rule category and every whitelist
    partition must be listed in it. When it is omitted, the category set is
    derived from the classification rules.
    """

    schema_version: int = Field(
        default=CURRENT_SCHEMA_VERSION,
        ge=1,
        description="Config schema version for migration tracking",
    )

    # Core configuration sections
    storage: StorageConfig = Field(default_factory=StorageConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Classification taxonomy
    categories: list[str] = Field(
        default_factory=list,
        description="Declared category partitions (canonicalised)",
    )
    classification_rules: list[ClassificationRuleConfig] = Field(
        default_factory=list,
        description="Ordered classification rules",
    )
    whitelist: WhitelistConfig = Field(default_factory=WhitelistConfig)

    # Scoring and triage
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    triage: TriageConfig = Field(default_factory=TriageConfig)
    business: BusinessConfig = Field(default_factory=BusinessConfig)

    @field_validator("categories")
    @classmethod
    def normalize_declared(cls, v: list[str]) -> list[str]:
        return _normalize_categories(v)

    @model_validator(mode="after")
    def validate_category_references(self) -> "AppConfig":
        if not self.categories:
            return self
        declared = set(self.categories)
        for index, rule in enumerate(self.classification_rules):
            if rule.category not in declared:
                raise ValueError(
                    f"classification_rules[{index}] targets undeclared category "
                    f"'{rule.category}'. Add it to 'categories'"
                )
        for entry in self.whitelist.entries:
            for partition in entry.tags.partitions:
                if partition not in declared:
                    raise ValueError(
                        f"Whitelist entry '{entry.entry_id}' references undeclared "
                        f"partition '{partition}'. Add it to 'categories'"
                    )
        # Built-in defaults may name categories a deployment does not declare
        for table in ("procedural_categories", "top_court_categories", "low_complex_categories"):
            if table not in self.triage.model_fields_set:
                continue
            for category in getattr(self.triage, table):
                if category not in declared:
                    raise ValueError(
                        f"triage.{table} references undeclared category "
                        f"'{category}'. Add it to 'categories'"
                    )
        return self

    def category_names(self) -> list[str]:
        """Return every category partition, declared or derived, in order."""
        if self.categories:
            return list(self.categories)
        names: list[str] = []
        for rule in self.classification_rules:
            if rule.category not in names:
                names.append(rule.category)
        for entry in self.whitelist.entries:
            for partition in entry.tags.partitions:
                if partition not in names:
                    names.append(partition)
        return names
