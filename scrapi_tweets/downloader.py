"""Concurrent media downloader with round-based retry and quarantine."""
from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable
from urllib.parse import urlsplit

import requests
from tqdm import tqdm

from .errors import ErrorKind, TweetError
from .models import DownloadTask

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
VIDEO_EXTENSIONS = {".mp4"}
ORIGINAL_QUALITY_QUERY = "?name=orig"
PERMANENT_STATUS_CODES = {404, 410}
MANIFEST_SUFFIX = "TweetDownloadFailures.txt"
CHUNK_SIZE = 64 * 1024


def extract_filename(url: str) -> str:
    """Last path segment of ``url`` without its query string."""
    return urlsplit(url).path.rsplit("/", 1)[-1]


def needs_original(url: str) -> bool:
    """Best-effort guess whether ``?name=orig`` selects a larger variant.

    Only urls without a meaningful query that are not videos qualify.
    """
    parts = urlsplit(url)
    filename = parts.path.rsplit("/", 1)[-1]
    if not filename or Path(filename).suffix.lower() in VIDEO_EXTENSIONS:
        return False
    return not parts.query


def build_download_tasks(pairs: Iterable[tuple[str, str]], dest_root: Path) -> list[DownloadTask]:
    """Tasks for every ``(author, url)`` pair not already on disk.

    Only the first url mapping to a given ``author/filename`` is kept.
    """
    dest_root = Path(dest_root)
    tasks: list[DownloadTask] = []
    seen: set[tuple[str, str]] = set()
    for author, url in pairs:
        if needs_original(url):
            url = url.split("?", 1)[0] + ORIGINAL_QUALITY_QUERY
        filename = extract_filename(url)
        if not filename or (author, filename) in seen:
            continue
        seen.add((author, filename))
        if (dest_root / author / filename).exists():
            continue
        tasks.append(DownloadTask(url=url, dest_dir=author, filename=filename))
    return tasks


def build_session(user_agent: str = DEFAULT_USER_AGENT) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": "*/*"})
    return session


@dataclass(slots=True)
class DownloadOptions:
    dest_root: Path
    workers: int = 8
    timeout: float = 60.0
    max_rounds: int | None = None
    round_delay: float = 5.0
    manifest_dir: Path = field(default_factory=Path.cwd)

    def __post_init__(self) -> None:
        self.dest_root = Path(self.dest_root)
        self.manifest_dir = Path(self.manifest_dir)
        self.workers = max(1, int(self.workers))
        if self.max_rounds is not None and self.max_rounds <= 0:
            self.max_rounds = None
        self.round_delay = max(float(self.round_delay), 0.0)
        if self.dest_root.exists() and not self.dest_root.is_dir():
            raise ValueError(f"Download destination {self.dest_root} exists but is not a directory")


@dataclass(slots=True)
class DownloadSummary:
    downloaded: list[DownloadTask] = field(default_factory=list)
    unrecoverable: list[DownloadTask] = field(default_factory=list)
    unfinished: list[DownloadTask] = field(default_factory=list)
    rounds: int = 0
    manifest_path: Path | None = None


class DownloadQueue:
    """Runs download tasks through a bounded worker pool, round after round.

    Tasks whose resource is permanently gone are quarantined and written to a
    timestamped manifest; every other failure is retried next round.
    """

    def __init__(self, options: DownloadOptions, session: requests.Session | None = None) -> None:
        self.options = options
        self.session = session or build_session()

    def download_one(self, task: DownloadTask) -> Path:
        dest_dir = self.options.dest_root / task.dest_dir
        dest_path = dest_dir / task.filename
        partial = dest_dir / f"{task.filename}.part"
        try:
            with closing(self.session.get(task.url, stream=True, timeout=self.options.timeout)) as response:
                if response.status_code in PERMANENT_STATUS_CODES:
                    raise TweetError(ErrorKind.RESOURCE_NOT_FOUND, f"HTTP {response.status_code}")
                response.raise_for_status()
                dest_dir.mkdir(parents=True, exist_ok=True)
                with partial.open("wb") as fh:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            fh.write(chunk)
            partial.replace(dest_path)
        except requests.exceptions.RequestException as exc:
            partial.unlink(missing_ok=True)
            raise TweetError(ErrorKind.DOWNLOAD_FAILED, str(exc)) from exc
        except OSError as exc:
            partial.unlink(missing_ok=True)
            raise TweetError(ErrorKind.DOWNLOAD_FAILED, str(exc)) from exc
        return dest_path

    def _run_round(self, tasks: list[DownloadTask]) -> tuple[list[DownloadTask], list[tuple[DownloadTask, TweetError]]]:
        messages: queue.Queue[str | None] = queue.Queue()
        done: list[DownloadTask] = []
        failed: list[tuple[DownloadTask, TweetError]] = []
        results_lock = threading.Lock()

        def display() -> None:
            with tqdm(total=len(tasks), unit="file") as bar:
                while True:
                    message = messages.get()
                    if message is None:
                        break
                    bar.write(message)
                    bar.update(1)

        def work(task: DownloadTask) -> None:
            try:
                self.download_one(task)
            except TweetError as exc:
                with results_lock:
                    failed.append((task, exc))
                messages.put(f"[Failed] {task.url} [{exc}]")
            else:
                with results_lock:
                    done.append(task)
                messages.put(f"[ Done ] {task.url}")

        display_thread = threading.Thread(target=display, daemon=True)
        display_thread.start()
        try:
            with ThreadPoolExecutor(max_workers=self.options.workers) as pool:
                list(pool.map(work, tasks))
        finally:
            messages.put(None)
            display_thread.join()
        return done, failed

    def run(self, tasks: Iterable[DownloadTask]) -> DownloadSummary:
        pending = list(tasks)
        summary = DownloadSummary()
        logger.info("%d media to download into %s", len(pending), self.options.dest_root)

        while pending:
            if self.options.max_rounds is not None and summary.rounds >= self.options.max_rounds:
                logger.warning("Giving up on %d media after %d rounds", len(pending), summary.rounds)
                summary.unfinished = pending
                break
            if summary.rounds and self.options.round_delay:
                time.sleep(self.options.round_delay)
            summary.rounds += 1
            done, failed = self._run_round(pending)
            summary.downloaded.extend(done)
            pending = []
            for task, exc in failed:
                if exc.kind is ErrorKind.RESOURCE_NOT_FOUND:
                    summary.unrecoverable.append(task)
                else:
                    pending.append(task)
            logger.info(
                "Round %d: downloaded=%d retry=%d unrecoverable=%d",
                summary.rounds,
                len(done),
                len(pending),
                len(summary.unrecoverable),
            )

        if summary.unrecoverable:
            summary.manifest_path = write_failure_manifest(summary.unrecoverable, self.options.manifest_dir)
            logger.warning(
                "There are %d items that cannot be downloaded. Saved to file %s.",
                len(summary.unrecoverable),
                summary.manifest_path,
            )
        return summary


def write_failure_manifest(tasks: Iterable[DownloadTask], directory: Path, *, now: datetime | None = None) -> Path:
    stamp = (now or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
    path = Path(directory) / f"{stamp} {MANIFEST_SUFFIX}"
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(f"{task.url} ==> {task.relative_path()}\n" for task in tasks)
    path.write_text(content, encoding="utf-8")
    return path


__all__ = [
    "DownloadOptions",
    "DownloadQueue",
    "DownloadSummary",
    "build_download_tasks",
    "build_session",
    "extract_filename",
    "needs_original",
    "write_failure_manifest",
]
