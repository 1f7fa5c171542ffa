"""Plain records passed between the parser, the stores and the downloader."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class FailReason(Enum):
    """Terminal outcomes persisted in the ``fail`` table."""

    RESTRICTED = "restricted"
    DELETED = "deleted"
    ACCOUNT_SUSPENDED = "account suspended"
    ACCOUNT_NOT_EXISTED = "account not existed"


@dataclass(slots=True, frozen=True)
class Tweet:
    id: int
    author: str
    content: str
    create_time: int


@dataclass(slots=True, frozen=True)
class Media:
    id: str
    tweet_id: int
    url: str
    width: int
    height: int
    no: int
    type: str


@dataclass(slots=True, frozen=True)
class ThreadEdge:
    tweet_id: int
    thread_id: int
    reply_to: int


@dataclass(slots=True, frozen=True)
class TerminalFailure:
    tweet_id: int
    url: str
    reason: FailReason


@dataclass(slots=True)
class DownloadTask:
    """One media file to fetch into ``<root>/<dest_dir>/<filename>``."""

    url: str
    dest_dir: str
    filename: str

    def relative_path(self) -> str:
        return f"{self.dest_dir}/{self.filename}"


__all__ = [
    "DownloadTask",
    "FailReason",
    "Media",
    "TerminalFailure",
    "ThreadEdge",
    "Tweet",
]
