"""Email date parsing.

Backends hand over dates either as RFC 2822 header values
('Fri, 05 Jan 2024 10:00:00 +0000') or as ISO 8601 strings
('2024-01-05T10:00:00.000Z'). Both are normalised to aware UTC datetimes;
naive values are taken to be UTC already.
"""

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime


def parse_email_date(value: str | datetime | None) -> datetime | None:
    """Parse an email date to an aware UTC datetime, or None if unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if not text:
            return None
        parsed = _parse_iso(text)
        if parsed is None:
            try:
                parsed = parsedate_to_datetime(text)
            except (TypeError, ValueError, IndexError):
                return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_iso(text: str) -> datetime | None:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        return None
