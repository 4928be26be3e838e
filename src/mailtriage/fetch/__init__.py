"""Mail-fetch collaborators: HTTP backend and JSON file sources."""

from mailtriage.fetch.backend import BackendFetcher
from mailtriage.fetch.models import (
    Email,
    FetchResult,
    HopResult,
    MailFetcher,
    build_fetch_result,
    dedupe_by_message_id,
)
from mailtriage.fetch.sources import JsonFileFetcher, create_fetcher

__all__ = [
    "BackendFetcher",
    "Email",
    "FetchResult",
    "HopResult",
    "JsonFileFetcher",
    "MailFetcher",
    "build_fetch_result",
    "create_fetcher",
    "dedupe_by_message_id",
]
