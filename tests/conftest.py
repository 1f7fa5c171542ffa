from __future__ import annotations

import json
from typing import Any

import pytest

CREATED_AT = "Wed Oct 10 20:19:24 +0000 2018"


class PayloadBuilder:
    """Builds TweetDetail responses shaped like the web client's."""

    def tweet(
        self,
        tweet_id: int,
        *,
        author: str = "alice",
        text: str = "hello",
        thread_id: int | None = None,
        reply_to: int | None = None,
        media: list[dict[str, Any]] | None = None,
        legacy_user: bool = False,
    ) -> dict[str, Any]:
        legacy: dict[str, Any] = {"full_text": text, "created_at": CREATED_AT}
        if thread_id is not None:
            legacy["self_thread"] = {"id_str": str(thread_id)}
        if reply_to is not None:
            legacy["in_reply_to_status_id_str"] = str(reply_to)
        if media:
            legacy["extended_entities"] = {"media": media}
            legacy["entities"] = {"media": media[:1]}
        user_key = "legacy" if legacy_user else "core"
        return {
            "__typename": "Tweet",
            "rest_id": str(tweet_id),
            "core": {"user_results": {"result": {user_key: {"screen_name": author}}}},
            "legacy": legacy,
        }

    def photo(self, media_id: str, url: str) -> dict[str, Any]:
        return {
            "id_str": media_id,
            "type": "photo",
            "media_url_https": url,
            "original_info": {"width": 1200, "height": 800},
        }

    def video(self, media_id: str, bitrates: list[int | None]) -> dict[str, Any]:
        variants = []
        for bitrate in bitrates:
            variant = {"url": f"https://video.twimg.com/{media_id}/{bitrate}.mp4", "content_type": "video/mp4"}
            if bitrate is not None:
                variant["bitrate"] = bitrate
            variants.append(variant)
        return {
            "id_str": media_id,
            "type": "video",
            "media_url_https": f"https://pbs.twimg.com/{media_id}.jpg",
            "original_info": {"width": 720, "height": 1280},
            "video_info": {"variants": variants},
        }

    def tombstone(self, text: str) -> dict[str, Any]:
        return {
            "__typename": "TweetTombstone",
            "tombstone": {"__typename": "TextTombstone", "text": {"text": text}},
        }

    def entry(self, tweet_id: int, result: dict[str, Any]) -> dict[str, Any]:
        return {
            "entryId": f"tweet-{tweet_id}",
            "content": {
                "entryType": "TimelineTimelineItem",
                "itemContent": {"tweet_results": {"result": result}},
            },
        }

    def module(self, name: str, items: list[tuple[int, dict[str, Any]]]) -> dict[str, Any]:
        return {
            "entryId": name,
            "content": {
                "entryType": "TimelineTimelineModule",
                "items": [
                    {
                        "entryId": f"{name}-tweet-{tweet_id}",
                        "item": {"itemContent": {"tweet_results": {"result": result}}},
                    }
                    for tweet_id, result in items
                ],
            },
        }

    def payload(self, *entries: dict[str, Any]) -> dict[str, Any]:
        return {
            "data": {
                "threaded_conversation_with_injections_v2": {
                    "instructions": [
                        {"type": "TimelineClearCache"},
                        {"type": "TimelineAddEntries", "entries": list(entries)},
                    ]
                }
            }
        }

    def single(self, tweet_id: int, **kwargs: Any) -> str:
        return json.dumps(self.payload(self.entry(tweet_id, self.tweet(tweet_id, **kwargs))))

    def thread(self, ids: list[int], *, author: str = "alice", with_media: bool = True) -> str:
        head = ids[0]
        entries = []
        previous = None
        for tweet_id in ids:
            media = [self.photo(f"m{tweet_id}", f"https://pbs.twimg.com/media/p{tweet_id}.jpg")] if with_media else None
            result = self.tweet(
                tweet_id,
                author=author,
                text=f"part {tweet_id}",
                thread_id=head,
                reply_to=previous,
                media=media,
            )
            entries.append(self.entry(tweet_id, result))
            previous = tweet_id
        return json.dumps(self.payload(*entries))


@pytest.fixture
def payloads() -> PayloadBuilder:
    return PayloadBuilder()
