"""Error taxonomy shared by the fetch, parse, storage and download stages."""
from __future__ import annotations

from enum import Enum

from .models import FailReason


class ErrorKind(Enum):
    RATE_LIMITED = "rate limited"
    NOT_A_TWEET = "not a tweet"
    LOGIN_FAILED = "login failed"
    NOT_EXISTS = "tweet does not exist"
    ACCOUNT_SUSPENDED = "account suspended"
    ACCOUNT_NOT_EXISTED = "account not existed"
    ADULT_CONTENT = "adult content, login required"
    RESTRICTED = "restricted by author"
    ILLEGAL_BAN = "banned for illegal content"
    UNKNOWN_TOMBSTONE = "unknown tombstone"
    SCHEMA_INVALID = "json schema invalid"
    JSON_MALFORMED = "json malformed"
    UNIMPLEMENTED = "unimplemented"
    DUPLICATE_KEY = "duplicate key"
    NOT_FOUND = "not found"
    STORAGE = "storage error"
    RESOURCE_NOT_FOUND = "resource not found"
    DOWNLOAD_FAILED = "download failed"
    OTHER = "other"


_FAIL_REASONS = {
    ErrorKind.RESTRICTED: FailReason.RESTRICTED,
    ErrorKind.NOT_EXISTS: FailReason.DELETED,
    ErrorKind.ILLEGAL_BAN: FailReason.DELETED,
    ErrorKind.ACCOUNT_SUSPENDED: FailReason.ACCOUNT_SUSPENDED,
    ErrorKind.ACCOUNT_NOT_EXISTED: FailReason.ACCOUNT_NOT_EXISTED,
}


class TweetError(Exception):
    """The single error type raised by this package.

    ``kind`` says what went wrong; ``message`` carries whatever detail the
    raising site had (raw tombstone text, upstream message, SQL error...).
    """

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message
        text = kind.value if not message else f"{kind.value}: {message}"
        super().__init__(text)

    def fail_reason(self) -> FailReason | None:
        """Terminal reason for this error, or None when it is worth retrying."""
        return _FAIL_REASONS.get(self.kind)

    @property
    def is_fatal(self) -> bool:
        return self.kind is ErrorKind.STORAGE

    @property
    def is_retryable(self) -> bool:
        return self.fail_reason() is None and not self.is_fatal


__all__ = ["ErrorKind", "TweetError"]
