"""Value objects handed over by the mail-fetch collaborator."""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

HopName = Literal["tunnel", "backend", "bridge", "file"]


@dataclass(frozen=True, slots=True)
class Email:
    """An email as fetched. Immutable; two emails with equal message ids are the same message."""

    sender: str
    recipient: str
    subject: str
    body: str
    date: str
    message_id: str
    fetch_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], fetched_at: datetime | None = None) -> Email:
        """Build an Email from a backend/JSON payload.

        Accepts both `from`/`to`/`messageId` and `sender`/`recipient`/`message_id`
        spellings. Missing fields become empty strings; a missing date becomes
        the fetch time.
        """

        def pick(*names: str) -> str:
            for name in names:
                value = payload.get(name)
                if value:
                    return str(value)
            return ""

        date = pick("date") or (fetched_at or datetime.now(UTC)).isoformat()
        return cls(
            sender=pick("from", "sender"),
            recipient=pick("to", "recipient"),
            subject=pick("subject"),
            body=pick("body"),
            date=date,
            message_id=pick("messageId", "message_id"),
        )


@dataclass(frozen=True, slots=True)
class HopResult:
    """Outcome of one connectivity check."""

    hop: HopName
    ok: bool
    url: str
    error: str | None = None
    detail: dict[str, Any] | None = None


@dataclass
class FetchResult:
    """Emails plus fetch-level counts.

    Attributes:
        fetched: Emails returned by the backend
        inbound: Emails kept after dedupe and own-address exclusion
        filtered: Emails dropped at fetch stage by content filters (always 0)
        emails: The inbound emails
    """

    fetched: int
    inbound: int
    filtered: int = 0
    emails: list[Email] = field(default_factory=list)


class MailFetcher(Protocol):
    """What the pipeline needs from a fetch collaborator."""

    def check_connectivity(self) -> list[HopResult]: ...

    def fetch_emails(self) -> FetchResult: ...


def dedupe_by_message_id(emails: Iterable[Email]) -> list[Email]:
    """Keep the first occurrence of each message id.

    Emails without a message id are never collapsed into each other.
    """
    seen: set[str] = set()
    unique: list[Email] = []
    for email in emails:
        if email.message_id:
            if email.message_id in seen:
                continue
            seen.add(email.message_id)
        unique.append(email)
    return unique


def build_fetch_result(emails: list[Email], exclude_senders: Iterable[str] = ()) -> FetchResult:
    """Dedupe and drop own-address mail, counting what was fetched and kept."""
    excluded = {s.lower() for s in exclude_senders}
    inbound = [e for e in dedupe_by_message_id(emails) if e.sender.lower() not in excluded]
    return FetchResult(fetched=len(emails), inbound=len(inbound), filtered=0, emails=inbound)
