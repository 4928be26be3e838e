"""Storage key derivation from sender address and timestamp.

Two key shapes exist:

    seconds:        2024.01.05_clerk_court_gov_uk_10-00-00
    minute_unique:  2024.01.05_clerk_court_gov_uk_10:00
                    2024.01.05_clerk_court_gov_uk_10:00:30  (minute key taken)

The seconds shape is a pure function of its inputs; two emails from the same
sender in the same second share a key and the later write wins. The
minute_unique shape checks the partition first, so it depends on partition
state at call time. The check and the write are not atomic.

All components are zero-padded UTC, so keys for one year sort lexically in
time order.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from mailtriage.config_schema import KeyStrategy
from mailtriage.core.dates import parse_email_date
from mailtriage.core.errors import KeyFormatError

if TYPE_CHECKING:
    from mailtriage.db.partitions import Partition


def sanitize_sender(sender: str) -> str:
    """Lower-case the sender and replace '@' and '.' with '_'."""
    return sender.strip().lower().replace("@", "_").replace(".", "_")


def _parse(date: str | datetime) -> datetime:
    parsed = parse_email_date(date)
    if parsed is None:
        raise KeyFormatError(
            f"Cannot derive a storage key from date {date!r}. "
            "Expected an RFC 2822 or ISO 8601 timestamp."
        )
    return parsed


def format_key(sender: str, date: str | datetime) -> str:
    """Return YYYY.MM.DD_sender_HH-MM-SS.

    Raises:
        KeyFormatError: If the date cannot be parsed
    """
    ts = _parse(date)
    return f"{ts:%Y.%m.%d}_{sanitize_sender(sender)}_{ts:%H-%M-%S}"


def format_minute_key(sender: str, date: str | datetime) -> str:
    """Return YYYY.MM.DD_sender_HH:MM.

    Raises:
        KeyFormatError: If the date cannot be parsed
    """
    ts = _parse(date)
    return f"{ts:%Y.%m.%d}_{sanitize_sender(sender)}_{ts:%H:%M}"


async def unique_key(sender: str, date: str | datetime, partition: Partition) -> str:
    """Return the minute key, with ':SS' appended if the partition already has it.

    Raises:
        KeyFormatError: If the date cannot be parsed
    """
    base = format_minute_key(sender, date)
    if not await partition.exists(base):
        return base
    return f"{base}:{_parse(date):%S}"


class KeyFormatter:
    """Derives keys with the configured strategy."""

    def __init__(self, strategy: KeyStrategy = "minute_unique"):
        self.strategy = strategy

    async def key_for(self, sender: str, date: str | datetime, partition: Partition) -> str:
        if self.strategy == "seconds":
            return format_key(sender, date)
        return await unique_key(sender, date, partition)
