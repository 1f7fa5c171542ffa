"""Command line entry point for the Scrapi Tweets archiver."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import ExitStack
from pathlib import Path
from typing import Sequence

from .cache import RawCache
from .downloader import DownloadOptions, DownloadQueue, build_download_tasks
from .errors import TweetError
from .fetcher import BrowserFetcher, Credentials
from .orchestrator import CrawlOptions, TweetPipeline, run_crawl
from .parser import TweetParser
from .store import TweetStore
from .summarizer import log_summary, summarize
from .urls import TweetUrlMatcher, UrlRegistry

logger = logging.getLogger(__name__)


def _default_data_dir() -> Path:
    env_override = os.environ.get("SCRAPI_TWEETS_DATA_DIR")
    if env_override:
        return Path(env_override).expanduser().resolve()
    return Path.cwd()


def _require_file(path: Path, label: str) -> Path:
    path = Path(path).expanduser()
    if not path.is_file():
        raise SystemExit(f"{label} `{path}` does not exist.")
    return path


def _resolve_credentials(args: argparse.Namespace) -> Credentials | None:
    if args.manual_login:
        return None
    username = args.username or os.environ.get("SCRAPI_TWEETS_USERNAME")
    password = args.password or os.environ.get("SCRAPI_TWEETS_PASSWORD")
    verification = args.verification_username or os.environ.get("SCRAPI_TWEETS_VERIFICATION")
    if not username:
        return None
    if not password:
        raise SystemExit("A password is required when a username is given (or use --manual-login).")
    return Credentials(username=username, password=password, verification=verification)


def _add_db_arguments(parser: argparse.ArgumentParser, *, download_db: bool = True) -> None:
    data_dir = _default_data_dir()
    if download_db:
        parser.add_argument(
            "-d",
            "--download-db",
            type=Path,
            default=data_dir / "dl.sqlite",
            help="Raw response cache (default: dl.sqlite, override the directory with SCRAPI_TWEETS_DATA_DIR).",
        )
    parser.add_argument(
        "-t",
        "--tweet-db",
        type=Path,
        default=data_dir / "tw.sqlite",
        help="Parsed tweet store (default: tw.sqlite).",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Archive tweets from a URL list into SQLite and download their media."
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging verbosity (default: INFO).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch", help="Fetch, parse and store every tweet in a URL list.")
    fetch.add_argument("url_list", nargs="?", type=Path, default=Path("todo.txt"), help="URL list (default: todo.txt).")
    _add_db_arguments(fetch)
    fetch.add_argument("-u", "--username", help="Account used by the logged-in fetcher.")
    fetch.add_argument("-p", "--password", help="Password for --username.")
    fetch.add_argument("--verification-username", help="Handle typed when login asks for verification.")
    fetch.add_argument("--no-login", action="store_true", help="Skip the logged-in retry rounds.")
    fetch.add_argument("--manual-login", action="store_true", help="Log in by hand inside the browser window.")
    fetch.add_argument("--must-login", action="store_true", help="Skip the anonymous pass and fetch logged in only.")
    fetch.add_argument("--no-headless", action="store_true", help="Show the browser windows.")
    fetch.add_argument("--chrome-data-dir", type=Path, default=Path("chrome-data"), help="Profile for the anonymous browser.")
    fetch.add_argument(
        "--chrome-data-dir-login",
        type=Path,
        default=Path("chrome-data-login"),
        help="Profile for the logged-in browser.",
    )
    fetch.add_argument("--delay", type=float, default=1.0, help="Pause in seconds after every fetch (default: 1).")
    fetch.add_argument("--rounds", type=int, default=5, help="Logged-in retry rounds (default: 5).")
    fetch.add_argument("--workers", type=int, default=4, help="Threads used for parsing and store lookups.")

    download = commands.add_parser("download", help="Download media referenced by the tweet store.")
    _add_db_arguments(download, download_db=False)
    download.add_argument("dest_dir", nargs="?", type=Path, default=Path("TweetMedias"), help="Destination root.")
    download.add_argument("--workers", type=int, default=8, help="Concurrent downloads (default: 8).")
    download.add_argument("--timeout", type=float, default=60.0, help="Per-request timeout in seconds.")
    download.add_argument("--max-rounds", type=int, default=0, help="Stop retrying after this many rounds (0: never).")
    download.add_argument("--round-delay", type=float, default=5.0, help="Pause between retry rounds.")

    summary = commands.add_parser("summarize", help="Report progress of a URL list against both databases.")
    summary.add_argument("url_list", nargs="?", type=Path, default=Path("todo.txt"))
    _add_db_arguments(summary)
    summary.add_argument("--workers", type=int, default=4)

    remove = commands.add_parser("remove", help="Delete tweets named in a URL list from the tweet store.")
    remove.add_argument("url_list", type=Path, help="File with tweet URLs, '-' for stdin.")
    _add_db_arguments(remove, download_db=False)

    return parser.parse_args(argv)


def run_fetch(args: argparse.Namespace) -> int:
    url_list = _require_file(args.url_list, "Url list file")
    if args.no_login and args.must_login:
        raise SystemExit("--no-login and --must-login cannot be combined.")
    try:
        options = CrawlOptions(pacing_delay=args.delay, max_auth_rounds=args.rounds, workers=args.workers)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    credentials = None if args.no_login else _resolve_credentials(args)

    matcher = TweetUrlMatcher()
    urls = UrlRegistry(matcher).read(url_list)

    with ExitStack() as stack:
        cache = RawCache(args.download_db)
        stack.callback(cache.close)
        store = TweetStore(args.tweet_db)
        stack.callback(store.close)

        anonymous = None
        if not args.must_login:
            logger.info("Setup un-login fetcher.")
            anonymous = stack.enter_context(
                BrowserFetcher(args.chrome_data_dir, headless=not args.no_headless)
            )
        authenticated = None
        if not args.no_login:
            logger.info("Setup logged in fetcher.")
            authenticated = stack.enter_context(
                BrowserFetcher(args.chrome_data_dir_login, headless=not args.no_headless)
            )
            username = authenticated.current_username()
            if username:
                logger.info("Already logged in as user `%s`", username)
            else:
                logger.info("Not logged in, process login procedure.")
                authenticated.login(credentials)

        pipeline = TweetPipeline(
            cache,
            store,
            matcher=matcher,
            parser=TweetParser(),
            workers=options.workers,
        )
        report = run_crawl(urls, pipeline, anonymous=anonymous, authenticated=authenticated, options=options)
    return 0 if not report.remaining else 1


def run_download(args: argparse.Namespace) -> int:
    tweet_db = _require_file(args.tweet_db, "TweetDB file")
    try:
        options = DownloadOptions(
            dest_root=args.dest_dir,
            workers=args.workers,
            timeout=args.timeout,
            max_rounds=args.max_rounds,
            round_delay=args.round_delay,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    options.dest_root.mkdir(parents=True, exist_ok=True)

    store = TweetStore(tweet_db)
    try:
        tasks = build_download_tasks(store.media_pairs(), options.dest_root)
    finally:
        store.close()
    summary = DownloadQueue(options).run(tasks)
    logger.info(
        "Downloaded %d media in %d round(s); %d unrecoverable.",
        len(summary.downloaded),
        summary.rounds,
        len(summary.unrecoverable),
    )
    return 0 if not summary.unfinished else 1


def run_summarize(args: argparse.Namespace) -> int:
    url_list = _require_file(args.url_list, "Url list file")
    matcher = TweetUrlMatcher()
    urls = UrlRegistry(matcher).read(url_list)
    cache = RawCache(args.download_db)
    store = TweetStore(args.tweet_db)
    try:
        log_summary(summarize(urls, cache, store, matcher, workers=args.workers))
    finally:
        cache.close()
        store.close()
    return 0


def run_remove(args: argparse.Namespace) -> int:
    tweet_db = _require_file(args.tweet_db, "TweetDB file")
    if str(args.url_list) == "-":
        lines = sys.stdin.read().splitlines()
    else:
        lines = _require_file(args.url_list, "Url list file").read_text(encoding="utf-8").splitlines()
    matcher = TweetUrlMatcher()
    store = TweetStore(tweet_db)
    try:
        for url in UrlRegistry(matcher).parse_lines(lines):
            removed = store.remove_tweet(matcher.extract_id(url))
            if removed is not None:
                print(f"{removed.author}/{removed.id}: {removed.content}")
    finally:
        store.close()
    return 0


COMMANDS = {
    "fetch": run_fetch,
    "download": run_download,
    "summarize": run_summarize,
    "remove": run_remove,
}


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        code = COMMANDS[args.command](args)
    except TweetError as exc:
        logger.error("Aborted: %s", exc)
        raise SystemExit(2) from exc
    raise SystemExit(code)


if __name__ == "__main__":
    main()
