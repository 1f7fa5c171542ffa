from __future__ import annotations

from scrapi_tweets.errors import ErrorKind, TweetError
from scrapi_tweets.models import FailReason


def test_terminal_kinds_map_to_fail_reasons() -> None:
    assert TweetError(ErrorKind.RESTRICTED).fail_reason() is FailReason.RESTRICTED
    assert TweetError(ErrorKind.NOT_EXISTS).fail_reason() is FailReason.DELETED
    assert TweetError(ErrorKind.ILLEGAL_BAN).fail_reason() is FailReason.DELETED
    assert TweetError(ErrorKind.ACCOUNT_SUSPENDED).fail_reason() is FailReason.ACCOUNT_SUSPENDED
    assert TweetError(ErrorKind.ACCOUNT_NOT_EXISTED).fail_reason() is FailReason.ACCOUNT_NOT_EXISTED


def test_other_kinds_are_retryable() -> None:
    for kind in (ErrorKind.ADULT_CONTENT, ErrorKind.SCHEMA_INVALID, ErrorKind.UNKNOWN_TOMBSTONE, ErrorKind.OTHER):
        error = TweetError(kind)
        assert error.fail_reason() is None
        assert error.is_retryable


def test_storage_is_fatal_not_retryable() -> None:
    error = TweetError(ErrorKind.STORAGE, "disk full")

    assert error.is_fatal
    assert not error.is_retryable
    assert str(error) == "storage error: disk full"
