"""Pytest fixtures and configuration for mail-triage tests.

Provides common fixtures for configuration, database, partitions and emails.
"""

import os
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

import pytest

from mailtriage.config import reset_config
from mailtriage.config_schema import AppConfig
from mailtriage.db import DatabaseStore, PartitionRegistry
from mailtriage.fetch.models import Email

# Fixed "now" for every injectable clock in the tests
NOW = datetime(2024, 1, 5, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    return lambda: now


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a small valid config.yaml content."""
    return """
schema_version: 1

storage:
  db_path: data/test.db
  key_strategy: minute_unique

classification_rules:
  - category: email-complaints-ico
    from_includes: [ico.org.uk]
    subject_includes: [data protection, information commissioner]
  - category: email-courts-supreme-court
    from_includes: [supremecourt.uk]
    subject_includes: [supreme court]
  - category: email-reconsideration-cpr52-30
    subject_includes: [cpr 52.30]
  - category: email-complaints-hmcts
    to_includes: [hmcts.gov.uk]
    subject_includes: [tribunal]
  - category: email-claimant-rentify
    from_includes: [rentify]

whitelist:
  entries:
    - pattern: unsubscribe
      match_type: keyword
      category: spam
      action: block
      tags:
        priority: low

triage:
  low_complex_categories:
    - email-complaints-ico
    - email-complaints-hmcts
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return the same config as a dictionary."""
    return {
        "schema_version": 1,
        "storage": {"db_path": "data/test.db", "key_strategy": "minute_unique"},
        "classification_rules": [
            {
                "category": "email-complaints-ico",
                "from_includes": ["ico.org.uk"],
                "subject_includes": ["data protection", "information commissioner"],
            },
            {
                "category": "email-courts-supreme-court",
                "from_includes": ["supremecourt.uk"],
                "subject_includes": ["supreme court"],
            },
            {
                "category": "email-reconsideration-cpr52-30",
                "subject_includes": ["cpr 52.30"],
            },
            {
                "category": "email-complaints-hmcts",
                "to_includes": ["hmcts.gov.uk"],
                "subject_includes": ["tribunal"],
            },
            {
                "category": "email-claimant-rentify",
                "from_includes": ["rentify"],
            },
        ],
        "whitelist": {
            "entries": [
                {
                    "pattern": "unsubscribe",
                    "match_type": "keyword",
                    "category": "spam",
                    "action": "block",
                    "tags": {"priority": "low"},
                }
            ]
        },
        "triage": {
            "low_complex_categories": ["email-complaints-ico", "email-complaints-hmcts"],
        },
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILTRIAGE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILTRIAGE_CONFIG_PATH")
    os.environ["MAILTRIAGE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILTRIAGE_CONFIG_PATH"]
    else:
        os.environ["MAILTRIAGE_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> DatabaseStore:
    """Create and initialize a DatabaseStore."""
    store = DatabaseStore(db_path)
    await store.initialize()
    return store


@pytest.fixture
def registry(store: DatabaseStore, sample_config: AppConfig) -> PartitionRegistry:
    return PartitionRegistry(store, sample_config.category_names())


@pytest.fixture
def make_email() -> Callable[..., Email]:
    """Factory for Email objects with sensible defaults."""
    counter = iter(range(1, 10_000))

    def _make(
        sender: str = "someone@example.com",
        subject: str = "Hello",
        recipient: str = "me@example.ee",
        body: str = "",
        date: str = "2024-01-05T10:00:00Z",
        message_id: str | None = None,
    ) -> Email:
        return Email(
            sender=sender,
            recipient=recipient,
            subject=subject,
            body=body,
            date=date,
            message_id=message_id if message_id is not None else f"<msg-{next(counter)}@test>",
        )

    return _make
