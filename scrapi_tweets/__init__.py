"""Public package surface for Scrapi Tweets."""
from .cache import RawCache
from .downloader import (
    DownloadOptions,
    DownloadQueue,
    DownloadSummary,
    build_download_tasks,
    build_session,
)
from .errors import ErrorKind, TweetError
from .fetcher import BrowserFetcher, Credentials, FetchCapability
from .models import DownloadTask, FailReason, Media, TerminalFailure, ThreadEdge, Tweet
from .orchestrator import (
    CrawlOptions,
    CrawlReport,
    TweetPipeline,
    fetch_urls_to_cache,
    rate_limit_wait,
    run_crawl,
)
from .parser import TombstonePhrases, TweetParser, build_records, get_thread
from .store import TweetStore
from .summarizer import Summary, summarize
from .urls import TweetUrlMatcher, UrlRegistry, canonical_url

__version__ = "0.1.0"

__all__ = [
    "BrowserFetcher",
    "CrawlOptions",
    "CrawlReport",
    "Credentials",
    "DownloadOptions",
    "DownloadQueue",
    "DownloadSummary",
    "DownloadTask",
    "ErrorKind",
    "FailReason",
    "FetchCapability",
    "Media",
    "RawCache",
    "Summary",
    "TerminalFailure",
    "ThreadEdge",
    "TombstonePhrases",
    "Tweet",
    "TweetError",
    "TweetParser",
    "TweetPipeline",
    "TweetStore",
    "TweetUrlMatcher",
    "UrlRegistry",
    "build_download_tasks",
    "build_records",
    "build_session",
    "canonical_url",
    "fetch_urls_to_cache",
    "get_thread",
    "rate_limit_wait",
    "run_crawl",
    "summarize",
    "__version__",
]
