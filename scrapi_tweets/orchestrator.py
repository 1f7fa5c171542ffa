"""Two-tier crawl: fetch payloads into the raw cache, then parse and persist them."""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .cache import RawCache
from .errors import ErrorKind, TweetError
from .fetcher import FetchCapability
from .models import FailReason, TerminalFailure
from .parser import TweetParser, build_records
from .store import TweetStore
from .urls import TweetUrlMatcher

logger = logging.getLogger(__name__)

FIRST_RATE_LIMIT_WAIT = 60
REPEATED_RATE_LIMIT_WAIT = 600
REPEATED_RATE_LIMIT_STEP = 120
SEPARATOR = "-*-" * 20


@dataclass(slots=True)
class CrawlOptions:
    """Pacing and retry policy shared by both crawl tiers."""

    pacing_delay: float = 1.0
    batch_pause: float = 10.0
    batch_size: int = 100
    max_auth_rounds: int = 5
    workers: int = 4

    def __post_init__(self) -> None:
        self.pacing_delay = max(float(self.pacing_delay), 0.0)
        self.batch_pause = max(float(self.batch_pause), 0.0)
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.max_auth_rounds <= 0:
            raise ValueError("max_auth_rounds must be positive")
        self.workers = max(1, int(self.workers))


def rate_limit_wait(occurrence: int) -> int:
    """Seconds to sleep for the n-th consecutive rate limit on one tweet."""
    if occurrence <= 1:
        return FIRST_RATE_LIMIT_WAIT
    return REPEATED_RATE_LIMIT_WAIT + REPEATED_RATE_LIMIT_STEP * (occurrence - 1)


class RunStats:
    """Outcome totals updated from worker threads; every mutation holds one lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.success = 0
        self.failures: dict[FailReason, int] = {reason: 0 for reason in FailReason}
        self.remaining: list[str] = []
        self.no_media: list[str] = []

    def record_success(self, url: str, has_media: bool) -> None:
        with self._lock:
            self.success += 1
            if not has_media:
                self.no_media.append(url)

    def record_failure(self, reason: FailReason) -> None:
        with self._lock:
            self.failures[reason] += 1

    def add_remaining(self, urls: Iterable[str]) -> None:
        with self._lock:
            self.remaining.extend(urls)

    def take_remaining(self) -> list[str]:
        with self._lock:
            pending, self.remaining = self.remaining, []
        return pending

    def has_remaining(self) -> bool:
        with self._lock:
            return bool(self.remaining)

    def log_status(self) -> None:
        with self._lock:
            logger.info(SEPARATOR)
            logger.info("Success: %d", self.success)
            logger.info("Remaining: %d", len(self.remaining))
            logger.info("Account suspended: %d", self.failures[FailReason.ACCOUNT_SUSPENDED])
            logger.info("Account not existed: %d", self.failures[FailReason.ACCOUNT_NOT_EXISTED])
            logger.info("Deleted: %d", self.failures[FailReason.DELETED])
            logger.info("Restricted: %d", self.failures[FailReason.RESTRICTED])
            logger.info(SEPARATOR)


@dataclass(slots=True)
class CrawlReport:
    total: int
    success: int
    failures: dict[FailReason, int]
    remaining: list[str] = field(default_factory=list)
    no_media: list[str] = field(default_factory=list)
    auth_rounds: int = 0


def fetch_urls_to_cache(
    fetcher: FetchCapability,
    urls: Sequence[str],
    cache: RawCache,
    matcher: TweetUrlMatcher,
    options: CrawlOptions,
) -> tuple[list[str], list[str]]:
    """Fetch every url not yet cached; returns ``(succeeded, failed)`` urls.

    Runs sequentially: the fetcher drives a single browser page.
    """
    succeeded: list[str] = []
    failed: list[str] = []
    total = len(urls)

    for counter, url in enumerate(urls, start=1):
        tweet_id = matcher.extract_id(url)
        if cache.exists(tweet_id):
            logger.info("[%d/%d] Existed: %s", counter, total, url)
            succeeded.append(url)
            continue

        if counter % options.batch_size == 0:
            logger.debug("Every %d tweets sleep %.0f secs...", options.batch_size, options.batch_pause)
            time.sleep(options.batch_pause)

        body: str | None = None
        error: TweetError | None = None
        occurrence = 0
        while True:
            try:
                body = fetcher.fetch_tweet(url)
                break
            except TweetError as exc:
                if exc.kind is not ErrorKind.RATE_LIMITED:
                    error = exc
                    break
                occurrence += 1
                wait = rate_limit_wait(occurrence)
                logger.warning("%d times rate limit exceeded. Sleep %d secs...", occurrence, wait)
                time.sleep(wait)
                logger.info("Continue...")

        if body is not None:
            try:
                cache.insert(tweet_id, url, body)
            except TweetError as exc:
                if exc.is_fatal:
                    raise
                logger.error("[%d/%d] DB Failed: %s for %s", counter, total, exc, url)
                failed.append(url)
            else:
                logger.info("[%d/%d] Done: %s", counter, total, url)
                succeeded.append(url)
        else:
            logger.error("[%d/%d] Failed: %s for %s", counter, total, error, url)
            failed.append(url)

        time.sleep(options.pacing_delay)

    return succeeded, failed


class TweetPipeline:
    """Parses cached payloads and moves the results into the tweet store."""

    def __init__(
        self,
        cache: RawCache,
        store: TweetStore,
        *,
        matcher: TweetUrlMatcher,
        parser: TweetParser,
        stats: RunStats | None = None,
        workers: int = 4,
    ) -> None:
        self.cache = cache
        self.store = store
        self.matcher = matcher
        self.parser = parser
        self.stats = stats or RunStats()
        self.workers = max(1, workers)

    def filter_pending(self, urls: Sequence[str]) -> list[str]:
        """Drop urls whose tweet is already stored or terminally classified."""

        def is_pending(url: str) -> bool:
            return not self.store.exists(self.matcher.extract_id(url))

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            flags = list(pool.map(is_pending, urls))
        return [url for url, pending in zip(urls, flags) if pending]

    def process(self, url: str, *, retry_restricted: bool) -> None:
        tweet_id = self.matcher.extract_id(url)
        try:
            payload = self.cache.get(tweet_id)
            items = self.parser.parse(tweet_id, payload)
            records = build_records(tweet_id, items)
        except TweetError as exc:
            if exc.is_fatal:
                raise
            self._handle_failure(url, tweet_id, exc, retry_restricted)
            return

        self.store.store_all(records.tweets, records.medias, records.edges)
        self.stats.record_success(url, bool(records.medias))
        logger.debug("Tweet process OK for url: %s", url)

    def _handle_failure(self, url: str, tweet_id: int, exc: TweetError, retry_restricted: bool) -> None:
        logger.debug("Tweet process FAILED for url: %s. Error: %s", url, exc)
        reason = exc.fail_reason()
        if reason is None or (reason is FailReason.RESTRICTED and retry_restricted):
            self.stats.add_remaining([url])
            return
        self.stats.record_failure(reason)
        self.store.insert_fail(TerminalFailure(tweet_id=tweet_id, url=url, reason=reason))

    def process_all(self, urls: Sequence[str], *, retry_restricted: bool) -> None:
        total = len(urls)
        progress = 0
        progress_lock = threading.Lock()

        def work(url: str) -> None:
            nonlocal progress
            with progress_lock:
                progress += 1
                current = progress
            logger.info("[%d/%d] Processing %s", current, total, url)
            self.process(url, retry_restricted=retry_restricted)

        logger.info("Try parse and move succeed items to TweetDB.")
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            # consuming the results re-raises storage errors from the workers
            list(pool.map(work, urls))
        logger.info("Total: %d", total)


def run_crawl(
    urls: Sequence[str],
    pipeline: TweetPipeline,
    *,
    anonymous: FetchCapability | None,
    authenticated: FetchCapability | None,
    options: CrawlOptions | None = None,
) -> CrawlReport:
    """Anonymous pass over everything, then bounded authenticated retry rounds."""
    if anonymous is None and authenticated is None:
        raise ValueError("At least one fetcher is required")
    options = options or CrawlOptions()
    stats = pipeline.stats
    cache = pipeline.cache
    matcher = pipeline.matcher

    pending = pipeline.filter_pending(urls)
    total = len(pending)
    logger.info("%d to be downloaded.", total)

    evict = False
    if anonymous is not None:
        logger.info("Using non-login fetcher for the first round.")
        succeeded, failed = fetch_urls_to_cache(anonymous, pending, cache, matcher, options)
        logger.info(
            "Non-login succeed: %d, failed: %d, expected total: %d.",
            len(succeeded),
            len(failed),
            total,
        )
        pipeline.process_all(succeeded, retry_restricted=authenticated is not None)
        stats.add_remaining(failed)
        stats.log_status()
        evict = True
    else:
        stats.add_remaining(pending)

    rounds = 0
    if authenticated is not None:
        while stats.has_remaining() and rounds < options.max_auth_rounds:
            batch = stats.take_remaining()
            rounds += 1
            logger.info("Remaining tweets: %d", len(batch))
            logger.info("Using logged in fetcher, round %d/%d.", rounds, options.max_auth_rounds)
            if evict:
                logger.info("Clear old download db entries.")
                for url in batch:
                    cache.remove(matcher.extract_id(url))
            succeeded, failed = fetch_urls_to_cache(authenticated, batch, cache, matcher, options)
            logger.info(
                "Logged-in succeed: %d, failed: %d, expected total: %d.",
                len(succeeded),
                len(failed),
                len(batch),
            )
            stats.add_remaining(failed)
            pipeline.process_all(succeeded, retry_restricted=False)
            stats.log_status()
            evict = True

    report = CrawlReport(
        total=total,
        success=stats.success,
        failures=dict(stats.failures),
        remaining=sorted(stats.remaining),
        no_media=sorted(stats.no_media),
        auth_rounds=rounds,
    )
    log_report(report)
    return report


def log_report(report: CrawlReport) -> None:
    logger.info(SEPARATOR)
    logger.info("Total: %d", report.total)
    logger.info("Success: %d", report.success)
    for reason, count in report.failures.items():
        logger.info("%s: %d", reason.value.capitalize(), count)
    logger.info("Still failed: %d", len(report.remaining))
    logger.info(SEPARATOR)
    for url in report.no_media:
        logger.info("No media tweet: %s", url)
    for url in report.remaining:
        logger.warning("Failed tweet: %s", url)


__all__ = [
    "CrawlOptions",
    "CrawlReport",
    "RunStats",
    "TweetPipeline",
    "fetch_urls_to_cache",
    "log_report",
    "rate_limit_wait",
    "run_crawl",
]
