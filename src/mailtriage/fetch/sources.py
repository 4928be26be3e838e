"""Offline email sources and fetcher construction from config."""

import json
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from mailtriage.config_schema import FetchConfig
from mailtriage.core.errors import FetchError
from mailtriage.core.logging import get_logger
from mailtriage.fetch.backend import BackendFetcher
from mailtriage.fetch.models import Email, FetchResult, HopResult, MailFetcher, build_fetch_result

logger = get_logger(__name__)


class JsonFileFetcher:
    """Reads emails from a JSON file: a list of email objects, or {"emails": [...]}."""

    def __init__(self, path: str | Path, exclude_senders: Iterable[str] = ()):
        self.path = Path(path)
        self.exclude_senders = list(exclude_senders)

    def check_connectivity(self) -> list[HopResult]:
        ok = self.path.is_file()
        return [
            HopResult(
                hop="file",
                ok=ok,
                url=str(self.path),
                error=None if ok else "file not found",
            )
        ]

    def fetch_emails(self) -> FetchResult:
        """Load the file.

        Raises:
            FetchError: If the file is missing or not a JSON list of objects
        """
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise FetchError(f"Email file not found: {self.path}", hop="file") from None
        except json.JSONDecodeError as e:
            raise FetchError(f"Email file {self.path} is not valid JSON: {e}", hop="file") from e

        if isinstance(data, dict):
            data = data.get("emails", [])
        if not isinstance(data, list):
            raise FetchError(
                f"Email file {self.path} must hold a list of email objects",
                hop="file",
            )

        fetched_at = datetime.now(UTC)
        emails = [Email.from_payload(item, fetched_at) for item in data if isinstance(item, dict)]
        result = build_fetch_result(emails, self.exclude_senders)
        logger.info("emails_loaded", path=str(self.path), fetched=result.fetched, inbound=result.inbound)
        return result


def create_fetcher(config: FetchConfig) -> MailFetcher:
    """Build the fetcher selected by `fetch.source`."""
    if config.source == "file":
        return JsonFileFetcher(config.file_path, exclude_senders=config.exclude_senders)
    return BackendFetcher(
        config.backend_url,
        check_timeout=config.check_timeout_seconds,
        fetch_timeout=config.fetch_timeout_seconds,
        folder=config.folder,
        include_body=config.include_body,
        exclude_folders=config.exclude_folders,
        exclude_senders=config.exclude_senders,
    )
