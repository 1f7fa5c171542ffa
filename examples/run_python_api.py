from __future__ import annotations

from pathlib import Path

from scrapi_tweets import (
    BrowserFetcher,
    CrawlOptions,
    DownloadOptions,
    DownloadQueue,
    RawCache,
    TweetParser,
    TweetPipeline,
    TweetStore,
    TweetUrlMatcher,
    UrlRegistry,
    build_download_tasks,
    run_crawl,
)


def main() -> None:
    """Demonstrate the Python API: an anonymous crawl followed by a media download."""
    matcher = TweetUrlMatcher()
    urls = UrlRegistry(matcher).parse_lines(
        [
            "https://twitter.com/jack/status/20",
            "see https://x.com/jack/status/20 again",
        ]
    )

    root = Path("./example_runs")
    root.mkdir(parents=True, exist_ok=True)
    cache = RawCache(root / "dl.sqlite")
    store = TweetStore(root / "tw.sqlite")
    pipeline = TweetPipeline(cache, store, matcher=matcher, parser=TweetParser())

    with BrowserFetcher(root / "chrome-data") as anonymous:
        run_crawl(
            urls,
            pipeline,
            anonymous=anonymous,
            authenticated=None,
            options=CrawlOptions(pacing_delay=1.5),
        )

    options = DownloadOptions(dest_root=root / "TweetMedias", max_rounds=3)
    DownloadQueue(options).run(build_download_tasks(store.media_pairs(), options.dest_root))

    cache.close()
    store.close()


if __name__ == "__main__":
    main()
