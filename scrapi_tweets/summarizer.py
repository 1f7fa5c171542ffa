"""Reports how far a URL list has made it through the cache and the tweet store."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

from .cache import RawCache
from .models import FailReason, Tweet
from .orchestrator import SEPARATOR
from .store import TweetStore
from .urls import TweetUrlMatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Summary:
    list_total: int = 0
    not_in_cache: int = 0
    not_in_store: int = 0
    success: int = 0
    failures: dict[FailReason, int] = field(default_factory=lambda: {reason: 0 for reason in FailReason})
    media_total: int = 0
    without_media: list[tuple[str, str]] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.success + sum(self.failures.values())


def summarize(
    urls: Sequence[str],
    cache: RawCache,
    store: TweetStore,
    matcher: TweetUrlMatcher,
    *,
    workers: int = 4,
) -> Summary:
    summary = Summary(list_total=len(urls))
    lock = threading.Lock()

    def inspect(url: str) -> None:
        tweet_id = matcher.extract_id(url)
        cached = cache.exists(tweet_id)
        found = store.lookup(tweet_id)
        medias = store.get_media(tweet_id) if isinstance(found, Tweet) else []
        with lock:
            if not cached:
                summary.not_in_cache += 1
            if isinstance(found, Tweet):
                summary.success += 1
                if medias:
                    summary.media_total += len(medias)
                else:
                    summary.without_media.append((url, found.content))
            elif isinstance(found, FailReason):
                summary.failures[found] += 1
            else:
                summary.not_in_store += 1
                summary.missing.append(url)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        list(pool.map(inspect, urls))

    summary.without_media.sort()
    summary.missing.sort()
    if summary.not_in_cache:
        logger.warning("Count of tweets in url list but not in the download db is %d.", summary.not_in_cache)
    else:
        logger.info("Good, every tweet in url list is inside the download db.")
    if summary.not_in_store:
        logger.warning("Count of tweets in url list but not in the tweet db is %d.", summary.not_in_store)
    else:
        logger.info("Good, every tweet in url list is inside the tweet db.")
    return summary


def log_summary(summary: Summary) -> None:
    logger.info(SEPARATOR)
    logger.info("List Total: %d", summary.list_total)
    logger.info("Success: %d", summary.success)
    logger.info("Account suspended: %d", summary.failures[FailReason.ACCOUNT_SUSPENDED])
    logger.info("Account not existed: %d", summary.failures[FailReason.ACCOUNT_NOT_EXISTED])
    logger.info("Deleted: %d", summary.failures[FailReason.DELETED])
    logger.info("Restricted: %d", summary.failures[FailReason.RESTRICTED])
    logger.info("Total: %d", summary.processed)
    logger.info("Medias total count: %d", summary.media_total)
    logger.info("Tweets without media: %d ; their content:", len(summary.without_media))
    for url, content in summary.without_media:
        logger.info("%s: %s", url, content)
    logger.info("Tweets not processed yet: %d", len(summary.missing))
    for url in summary.missing:
        logger.info("%s", url)
    logger.info(SEPARATOR)


__all__ = ["Summary", "log_summary", "summarize"]
