"""Reading and normalizing the input list of tweet URLs."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

TWEET_URL_PATTERN = r"https://(?:(?:www|mobile)\.)?(?:twitter|x)\.com/([A-Za-z0-9_]+)/status/(\d+)\b"
# ids are stored in signed 64-bit SQLite INTEGER columns
MAX_TWEET_ID = 2**63 - 1


class TweetUrlMatcher:
    """Compiled URL patterns, built once and handed to whoever needs them."""

    def __init__(self, pattern: str = TWEET_URL_PATTERN) -> None:
        self._pattern = re.compile(pattern)

    def search(self, text: str) -> str | None:
        """Return the canonical form of the tweet URL contained in ``text``, if any."""
        parts = self.extract(text)
        if parts is None:
            return None
        return canonical_url(*parts)

    def extract(self, url: str) -> tuple[str, int] | None:
        """Split a tweet URL into ``(author, tweet_id)``."""
        match = self._pattern.search(url)
        if match is None:
            return None
        tweet_id = _parse_id(match.group(2))
        if tweet_id is None:
            return None
        return match.group(1), tweet_id

    def extract_id(self, url: str) -> int:
        parts = self.extract(url)
        if parts is None:
            raise ValueError(f"Not a tweet URL: {url!r}")
        return parts[1]


def _parse_id(raw: str) -> int | None:
    try:
        value = int(raw)
    except ValueError:
        return None
    if value > MAX_TWEET_ID:
        return None
    return value


def canonical_url(author: str, tweet_id: int) -> str:
    return f"https://twitter.com/{author}/status/{tweet_id}"


class UrlRegistry:
    """Turns URL-bearing text into a sorted, de-duplicated list of tweet URLs."""

    def __init__(self, matcher: TweetUrlMatcher) -> None:
        self.matcher = matcher

    def parse_lines(self, lines: Iterable[str]) -> list[str]:
        found = [url for url in (self.matcher.search(line) for line in lines) if url]
        logger.info("Raw has %d entries.", len(found))
        # one url per tweet id, the smallest spelling wins so reruns agree
        by_id: dict[int, str] = {}
        for url in sorted(found):
            by_id.setdefault(self.matcher.extract_id(url), url)
        urls = sorted(by_id.values())
        logger.info("Sorted and deduped has %d entries.", len(urls))
        return urls

    def read(self, path: Path) -> list[str]:
        logger.info("Reading url list from %s", path)
        text = Path(path).read_text(encoding="utf-8")
        return self.parse_lines(text.splitlines())


__all__ = [
    "MAX_TWEET_ID",
    "TWEET_URL_PATTERN",
    "TweetUrlMatcher",
    "UrlRegistry",
    "canonical_url",
]
