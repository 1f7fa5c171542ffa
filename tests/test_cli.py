from __future__ import annotations

from pathlib import Path

import pytest

from scrapi_tweets import cli
from scrapi_tweets.models import Tweet
from scrapi_tweets.store import TweetStore


def test_default_paths_follow_data_dir_override(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SCRAPI_TWEETS_DATA_DIR", str(tmp_path))

    args = cli.parse_args(["summarize"])

    assert args.tweet_db == tmp_path.resolve() / "tw.sqlite"
    assert args.download_db == tmp_path.resolve() / "dl.sqlite"
    assert args.url_list == Path("todo.txt")


def test_fetch_requires_existing_url_list(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["fetch", str(tmp_path / "missing.txt")])

    assert "does not exist" in str(excinfo.value.code)


def test_fetch_rejects_conflicting_login_flags(tmp_path: Path) -> None:
    url_list = tmp_path / "todo.txt"
    url_list.write_text("https://twitter.com/a/status/1\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["fetch", str(url_list), "--no-login", "--must-login"])

    assert "cannot be combined" in str(excinfo.value.code)


def test_password_required_with_username(monkeypatch) -> None:
    monkeypatch.delenv("SCRAPI_TWEETS_PASSWORD", raising=False)
    args = cli.parse_args(["fetch", "-u", "someone"])

    with pytest.raises(SystemExit):
        cli._resolve_credentials(args)


def test_remove_deletes_listed_tweets(tmp_path: Path, capsys) -> None:
    db = tmp_path / "tw.sqlite"
    store = TweetStore(db)
    store.insert_tweet(Tweet(id=1, author="alice", content="bye", create_time=0))
    store.insert_tweet(Tweet(id=2, author="alice", content="stay", create_time=0))
    store.close()
    url_list = tmp_path / "remove.txt"
    url_list.write_text("https://x.com/alice/status/1\nhttps://x.com/alice/status/3\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["remove", str(url_list), "-t", str(db)])

    assert excinfo.value.code == 0
    assert capsys.readouterr().out == "alice/1: bye\n"
    store = TweetStore(db)
    assert store.get_tweet(1) is None
    assert store.get_tweet(2) is not None
    store.close()
