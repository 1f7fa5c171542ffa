from __future__ import annotations

from pathlib import Path

from scrapi_tweets.cache import RawCache
from scrapi_tweets.models import FailReason, Media, TerminalFailure, Tweet
from scrapi_tweets.store import TweetStore
from scrapi_tweets.summarizer import summarize
from scrapi_tweets.urls import TweetUrlMatcher


def test_summary_counts_every_outcome(tmp_path: Path) -> None:
    urls = [f"https://twitter.com/alice/status/{i}" for i in (1, 2, 3, 4)]
    cache = RawCache(tmp_path / "dl.sqlite")
    store = TweetStore(tmp_path / "tw.sqlite")
    for tweet_id, url in zip((1, 2, 4), (urls[0], urls[1], urls[3])):
        cache.insert(tweet_id, url, "{}")
    store.insert_tweet(Tweet(id=1, author="alice", content="with media", create_time=0))
    store.insert_media(
        Media(id="m1", tweet_id=1, url="https://pbs.twimg.com/media/m1.jpg", width=1, height=1, no=1, type="photo")
    )
    store.insert_tweet(Tweet(id=4, author="alice", content="just words", create_time=0))
    store.insert_fail(TerminalFailure(tweet_id=2, url=urls[1], reason=FailReason.DELETED))

    summary = summarize(urls, cache, store, TweetUrlMatcher(), workers=2)

    assert summary.list_total == 4
    assert summary.not_in_cache == 1
    assert summary.not_in_store == 1
    assert summary.success == 2
    assert summary.failures[FailReason.DELETED] == 1
    assert summary.processed == 3
    assert summary.media_total == 1
    assert summary.without_media == [(urls[3], "just words")]
    assert summary.missing == [urls[2]]
    cache.close()
    store.close()
