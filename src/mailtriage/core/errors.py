"""Custom exception types for the mail triage pipeline.

Error messages follow one convention:
- What failed (specific operation or component)
- Where it failed (partition, key, hop, config field)
- How to fix it (actionable guidance, where there is any)
"""


class MailTriageError(Exception):
    """Base exception for all mail triage errors."""

    pass


class ConfigValidationError(MailTriageError):
    """Raised when config.yaml fails Pydantic validation.

    Includes specific field errors with actionable messages.
    """

    pass


class ConfigLoadError(MailTriageError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class DatabaseError(MailTriageError):
    """Raised when SQLite operations fail."""

    pass


class PartitionWriteError(DatabaseError):
    """Raised when a record cannot be written to a partition.

    Attributes:
        partition: Name of the partition that rejected the write
        key: Storage key of the record
    """

    def __init__(self, message: str, partition: str, key: str):
        super().__init__(message)
        self.partition = partition
        self.key = key


class MalformedRecordError(MailTriageError):
    """Raised when a stored value cannot be parsed back into a StoredRecord.

    Scans skip the record and continue; a single bad value never aborts
    the rest of a partition.

    Attributes:
        key: Storage key of the unreadable value
    """

    def __init__(self, message: str, key: str | None = None):
        super().__init__(message)
        self.key = key


class UnknownPartitionError(MailTriageError):
    """Raised when a category name has no registered partition."""

    def __init__(self, name: str):
        super().__init__(
            f"Unknown partition '{name}'. Declare it under 'categories' in config.yaml "
            "or fix the category name in the rule that references it."
        )
        self.name = name


class KeyFormatError(MailTriageError):
    """Raised when a storage key cannot be derived (unparseable date)."""

    pass


class FetchError(MailTriageError):
    """Raised when the mail-fetch collaborator cannot deliver emails.

    Attributes:
        hop: Which hop failed ('tunnel', 'backend', 'bridge', 'fetch', 'file')
        status_code: HTTP status code, when there was a response
    """

    def __init__(self, message: str, hop: str = "fetch", status_code: int | None = None):
        super().__init__(message)
        self.hop = hop
        self.status_code = status_code
