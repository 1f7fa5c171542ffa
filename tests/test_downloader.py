from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
import requests

import scrapi_tweets.downloader as downloader
from scrapi_tweets.downloader import (
    DownloadOptions,
    DownloadQueue,
    build_download_tasks,
    needs_original,
    write_failure_manifest,
)
from scrapi_tweets.models import DownloadTask


class FakeResponse:
    def __init__(self, *, payload: bytes = b"", status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(str(self.status_code))

    def iter_content(self, chunk_size: int = 8192):  # noqa: D401 - generator helper
        yield self._payload

    def close(self) -> None:
        self.closed = True


class FakeSession:
    """A succeeds, B is gone for good, C fails once before succeeding."""

    def __init__(self, flaky_failures: int = 1) -> None:
        self.calls: list[str] = []
        self.flaky_failures = flaky_failures

    def get(self, url: str, *, stream: bool, timeout: float):  # noqa: D401 - signature matches requests
        self.calls.append(url)
        if url.endswith("b.jpg?name=orig"):
            return FakeResponse(status_code=404)
        if url.endswith("c.mp4") and self.flaky_failures:
            self.flaky_failures -= 1
            raise requests.exceptions.ConnectionError("connection reset")
        return FakeResponse(payload=url.encode())


def _tasks() -> list[DownloadTask]:
    return [
        DownloadTask(url="https://pbs.twimg.com/media/a.jpg?name=orig", dest_dir="alice", filename="a.jpg"),
        DownloadTask(url="https://pbs.twimg.com/media/b.jpg?name=orig", dest_dir="alice", filename="b.jpg"),
        DownloadTask(url="https://video.twimg.com/vid/c.mp4", dest_dir="bob", filename="c.mp4"),
    ]


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    recorded: list[float] = []
    monkeypatch.setattr(downloader.time, "sleep", lambda seconds: recorded.append(seconds))
    return recorded


def test_queue_retries_and_quarantines(tmp_path: Path, no_sleep) -> None:
    options = DownloadOptions(dest_root=tmp_path / "media", workers=2, round_delay=0, manifest_dir=tmp_path)
    session = FakeSession()

    summary = DownloadQueue(options, session=session).run(_tasks())

    assert summary.rounds == 2
    assert sorted(t.filename for t in summary.downloaded) == ["a.jpg", "c.mp4"]
    assert [t.filename for t in summary.unrecoverable] == ["b.jpg"]
    assert summary.unfinished == []
    assert (tmp_path / "media" / "alice" / "a.jpg").read_bytes() == b"https://pbs.twimg.com/media/a.jpg?name=orig"
    assert (tmp_path / "media" / "bob" / "c.mp4").exists()
    assert not (tmp_path / "media" / "alice" / "b.jpg").exists()
    assert not list((tmp_path / "media").rglob("*.part"))
    assert session.calls.count("https://video.twimg.com/vid/c.mp4") == 2
    assert session.calls.count("https://pbs.twimg.com/media/b.jpg?name=orig") == 1

    manifest = summary.manifest_path
    assert manifest is not None and manifest.name.endswith("TweetDownloadFailures.txt")
    assert manifest.read_text(encoding="utf-8") == "https://pbs.twimg.com/media/b.jpg?name=orig ==> alice/b.jpg\n"
    assert no_sleep == []


def test_queue_stops_after_max_rounds(tmp_path: Path, no_sleep) -> None:
    options = DownloadOptions(dest_root=tmp_path, max_rounds=2, round_delay=3.0, manifest_dir=tmp_path)
    session = FakeSession(flaky_failures=10)
    task = _tasks()[2]

    summary = DownloadQueue(options, session=session).run([task])

    assert summary.rounds == 2
    assert summary.unfinished == [task]
    assert summary.manifest_path is None
    assert no_sleep == [3.0]


def test_build_tasks_requests_originals_and_skips_existing(tmp_path: Path) -> None:
    (tmp_path / "alice").mkdir()
    (tmp_path / "alice" / "old.png").write_bytes(b"x")
    pairs = [
        ("alice", "https://pbs.twimg.com/media/new.jpg"),
        ("alice", "https://pbs.twimg.com/media/new.jpg"),
        ("alice", "https://pbs.twimg.com/media/old.png"),
        ("bob", "https://video.twimg.com/ext_tw_video/1/pu/vid/720x1280/clip.mp4?tag=12"),
    ]

    tasks = build_download_tasks(pairs, tmp_path)

    assert tasks == [
        DownloadTask(url="https://pbs.twimg.com/media/new.jpg?name=orig", dest_dir="alice", filename="new.jpg"),
        DownloadTask(
            url="https://video.twimg.com/ext_tw_video/1/pu/vid/720x1280/clip.mp4?tag=12",
            dest_dir="bob",
            filename="clip.mp4",
        ),
    ]


def test_needs_original_heuristic() -> None:
    assert needs_original("https://pbs.twimg.com/media/x.jpg")
    assert not needs_original("https://pbs.twimg.com/media/x.jpg?format=jpg&name=small")
    assert not needs_original("https://video.twimg.com/vid/x.mp4")


def test_manifest_file_name_uses_timestamp(tmp_path: Path) -> None:
    task = DownloadTask(url="https://pbs.twimg.com/media/z.jpg", dest_dir="amy", filename="z.jpg")

    path = write_failure_manifest([task], tmp_path, now=datetime(2024, 1, 2, 3, 4, 5))

    assert path.name == "2024-01-02 03:04:05 TweetDownloadFailures.txt"
    assert path.read_text(encoding="utf-8") == "https://pbs.twimg.com/media/z.jpg ==> amy/z.jpg\n"


def test_download_options_rejects_file_destination(tmp_path: Path) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x", encoding="utf-8")

    with pytest.raises(ValueError):
        DownloadOptions(dest_root=target)


def test_failed_rename_is_retried_not_fatal(tmp_path: Path, no_sleep, monkeypatch) -> None:
    original_replace = Path.replace
    attempts: list[Path] = []

    def flaky_replace(self, target):
        attempts.append(self)
        if len(attempts) == 1:
            raise PermissionError("file is locked")
        return original_replace(self, target)

    monkeypatch.setattr(Path, "replace", flaky_replace)
    options = DownloadOptions(dest_root=tmp_path / "media", round_delay=0, manifest_dir=tmp_path)
    task = _tasks()[0]

    summary = DownloadQueue(options, session=FakeSession()).run([task])

    assert summary.rounds == 2
    assert summary.downloaded == [task]
    assert (tmp_path / "media" / "alice" / "a.jpg").exists()
    assert not (tmp_path / "media" / "alice" / "a.jpg.part").exists()


def test_build_tasks_dedupes_on_destination(tmp_path: Path) -> None:
    pairs = [
        ("bob", "https://video.twimg.com/vid/clip.mp4?tag=12"),
        ("bob", "https://video.twimg.com/vid/clip.mp4?tag=14"),
        ("amy", "https://video.twimg.com/vid/clip.mp4?tag=14"),
    ]

    tasks = build_download_tasks(pairs, tmp_path)

    assert [(t.dest_dir, t.url) for t in tasks] == [
        ("bob", "https://video.twimg.com/vid/clip.mp4?tag=12"),
        ("amy", "https://video.twimg.com/vid/clip.mp4?tag=14"),
    ]
