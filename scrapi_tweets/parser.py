"""TweetDetail parser: turns a captured GraphQL payload into typed tweet items.

The upstream format is undocumented and drifts, so every shape this module
does not recognise is reported as a ``TweetError`` instead of being guessed
at. Only the fields the stores persist are read.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .errors import ErrorKind, TweetError
from .models import Media, ThreadEdge, Tweet

logger = logging.getLogger(__name__)

CREATED_AT_FORMAT = "%a %b %d %H:%M:%S %z %Y"
ERROR_MESSAGE_DELETED = "_Missing: No status found with that ID."
VIDEO_MEDIA_TYPES = {"video", "animated_gif"}


@dataclass(slots=True, frozen=True)
class TombstonePhrases:
    """Localized tombstone fragments, checked in declaration order."""

    account_suspended: tuple[str, ...] = (
        "这条推文来自一个已冻结的账号",
        "from a suspended account",
    )
    adult_content: tuple[str, ...] = (
        "受年龄限制的成人内容。这些内容可能不适合 18 岁以下的用户。",
        "Age-restricted adult content",
    )
    user_restricted: tuple[str, ...] = (
        "该账号所有者限制了可以查看其推文的用户。",
        "account owner limits who can view their",
    )
    account_not_existed: tuple[str, ...] = (
        "这条推文来自一个已不存在的账号。",
        "from an account that no longer exists",
    )
    illegal_content: tuple[str, ...] = (
        "这条推文违反了",
        "violated the X Rules",
        "violated the Twitter Rules",
    )
    not_available: tuple[str, ...] = (
        "这条推文不可用",
        "is unavailable",
        "was deleted by the",
    )

    def classify(self, text: str) -> ErrorKind:
        table = (
            (self.account_suspended, ErrorKind.ACCOUNT_SUSPENDED),
            (self.adult_content, ErrorKind.ADULT_CONTENT),
            (self.user_restricted, ErrorKind.RESTRICTED),
            (self.account_not_existed, ErrorKind.ACCOUNT_NOT_EXISTED),
            (self.illegal_content, ErrorKind.ILLEGAL_BAN),
            (self.not_available, ErrorKind.NOT_EXISTS),
        )
        for phrases, kind in table:
            if any(phrase in text for phrase in phrases):
                return kind
        return ErrorKind.UNKNOWN_TOMBSTONE


def _require(obj: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(obj, dict) or key not in obj:
            raise TweetError(ErrorKind.SCHEMA_INVALID, "missing " + ".".join(path))
        obj = obj[key]
    return obj


def _as_int(raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise TweetError(ErrorKind.SCHEMA_INVALID, f"not a numeric id: {raw!r}") from exc


class TweetItem:
    """A single ``Tweet`` result object from the timeline."""

    __slots__ = ("id", "screen_name", "legacy")

    def __init__(self, result: dict[str, Any]) -> None:
        self.id = _as_int(_require(result, "rest_id"))
        self.legacy = _require(result, "legacy")
        _require(self.legacy, "full_text")
        self.screen_name = _screen_name(result)

    def __repr__(self) -> str:
        urls = [m.get("media_url_https", "") for m in self._raw_media()]
        if urls:
            return f"TweetItem<{self.id}>[{', '.join(urls)}]"
        return f"TweetItem<{self.id}>"

    @property
    def self_thread_id(self) -> int | None:
        self_thread = self.legacy.get("self_thread")
        if not isinstance(self_thread, dict) or not self_thread.get("id_str"):
            return None
        return _as_int(self_thread["id_str"])

    @property
    def in_reply_to_id(self) -> int | None:
        raw = self.legacy.get("in_reply_to_status_id_str")
        return _as_int(raw) if raw else None

    def as_tweet(self) -> Tweet:
        return Tweet(
            id=self.id,
            author=self.screen_name,
            content=self.legacy["full_text"],
            create_time=parse_created_at(self.legacy.get("created_at")),
        )

    def as_thread(self) -> ThreadEdge | None:
        thread_id = self.self_thread_id
        reply_to = self.in_reply_to_id
        if thread_id is None or reply_to is None:
            return None
        return ThreadEdge(tweet_id=self.id, thread_id=thread_id, reply_to=reply_to)

    def _raw_media(self) -> list[dict[str, Any]]:
        # extended_entities is a superset of entities and carries video_info
        entities = self.legacy.get("extended_entities") or self.legacy.get("entities") or {}
        return entities.get("media") or []

    def media_list(self) -> list[Media]:
        medias: list[Media] = []
        for no, raw in enumerate(self._raw_media(), start=1):
            media_type = raw.get("type", "photo")
            if media_type in VIDEO_MEDIA_TYPES:
                variants = _require(raw, "video_info", "variants")
                if not variants:
                    raise TweetError(ErrorKind.SCHEMA_INVALID, f"no video variants for media {raw.get('id_str')}")
                url = max(variants, key=lambda v: v.get("bitrate") or 0).get("url", "")
            else:
                url = raw.get("media_url_https", "")
            if not url:
                raise TweetError(ErrorKind.SCHEMA_INVALID, f"media {raw.get('id_str')} without url")
            original = raw.get("original_info") or {}
            medias.append(
                Media(
                    id=str(_require(raw, "id_str")),
                    tweet_id=self.id,
                    url=url,
                    width=int(original.get("width") or 0),
                    height=int(original.get("height") or 0),
                    no=no,
                    type=media_type,
                )
            )
        return medias


def _screen_name(result: dict[str, Any]) -> str:
    user = _require(result, "core", "user_results", "result")
    # newer payloads moved screen_name from user.legacy to user.core
    name = (user.get("core") or {}).get("screen_name") or (user.get("legacy") or {}).get("screen_name")
    if not name:
        raise TweetError(ErrorKind.SCHEMA_INVALID, "missing user screen_name")
    return name


def parse_created_at(raw: Any) -> int:
    try:
        return int(datetime.strptime(str(raw), CREATED_AT_FORMAT).timestamp())
    except (TypeError, ValueError):
        return 0


class TweetParser:
    """Extracts every tweet in a TweetDetail payload.

    ``parse`` returns ``{tweet_id: TweetItem}`` and guarantees the requested
    id is present. Tombstones for the requested id become the matching
    terminal ``TweetError``; tombstones for other tweets in the conversation
    are ignored.
    """

    def __init__(self, phrases: TombstonePhrases | None = None) -> None:
        self.phrases = phrases or TombstonePhrases()

    def parse(self, tweet_id: int, payload: str | bytes | dict[str, Any]) -> dict[int, TweetItem]:
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except ValueError as exc:
                raise TweetError(ErrorKind.JSON_MALFORMED, str(exc)) from exc
        if not isinstance(payload, dict):
            raise TweetError(ErrorKind.SCHEMA_INVALID, "payload is not an object")

        errors = payload.get("errors")
        if errors is not None:
            if not isinstance(errors, list):
                raise TweetError(ErrorKind.SCHEMA_INVALID, "errors is not a list")
            for error in errors:
                message = error.get("message", "") if isinstance(error, dict) else ""
                if ERROR_MESSAGE_DELETED in message:
                    raise TweetError(ErrorKind.NOT_EXISTS, message)

        instructions = _require(payload, "data", "threaded_conversation_with_injections_v2", "instructions")
        if not isinstance(instructions, list):
            raise TweetError(ErrorKind.SCHEMA_INVALID, "instructions is not a list")
        add_entries = [
            i for i in instructions if isinstance(i, dict) and i.get("type") == "TimelineAddEntries"
        ]
        if not add_entries:
            raise TweetError(ErrorKind.SCHEMA_INVALID, "no TimelineAddEntries instruction")
        if len(add_entries) > 1:
            raise TweetError(ErrorKind.UNIMPLEMENTED, "TimelineAddEntries more than once")
        entries = add_entries[0].get("entries")
        if not isinstance(entries, list):
            raise TweetError(ErrorKind.SCHEMA_INVALID, "entries is not a list")

        tweets: dict[int, TweetItem] = {}
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("content"), dict):
                raise TweetError(ErrorKind.SCHEMA_INVALID, "timeline entry without content")
            content = entry["content"]
            entry_type = content.get("entryType")
            if entry_type == "TimelineTimelineItem":
                result = ((content.get("itemContent") or {}).get("tweet_results") or {}).get("result")
                self._collect(tweet_id, entry.get("entryId", ""), result, tweets)
            elif entry_type == "TimelineTimelineModule":
                items = content.get("items")
                if not isinstance(items, list):
                    logger.warning("Entry %s has no items.", entry.get("entryId"))
                    continue
                for item in items:
                    inner = (item or {}).get("item") or {}
                    result = ((inner.get("itemContent") or {}).get("tweet_results") or {}).get("result")
                    self._collect(tweet_id, (item or {}).get("entryId", ""), result, tweets)
            else:
                raise TweetError(ErrorKind.UNIMPLEMENTED, f"entry type handler for {entry_type}")

        if tweet_id not in tweets:
            raise TweetError(ErrorKind.SCHEMA_INVALID, f"requested tweet {tweet_id} missing from payload")
        return tweets

    def _collect(
        self,
        tweet_id: int,
        entry_id: str,
        result: Any,
        tweets: dict[int, TweetItem],
    ) -> None:
        result = result if isinstance(result, dict) else {}
        nested = False
        if result.get("__typename") == "TweetWithVisibilityResults":
            result = result.get("tweet") or {}
            nested = True
        # items without __typename are plain tweets in older payloads
        type_name = result.get("__typename", "Tweet" if "rest_id" in result else None)
        if type_name != "Tweet":
            if type_name == "TweetTombstone":
                self._check_tombstone(tweet_id, entry_id, result)
            if not nested:
                logger.debug("Entry %s is not a tweet, but %s.", entry_id, type_name)
                return
            raise TweetError(ErrorKind.SCHEMA_INVALID, f"visibility wrapped {type_name} in {entry_id}")
        item = TweetItem(result)
        tweets[item.id] = item

    def _check_tombstone(self, tweet_id: int, entry_id: str, result: dict[str, Any]) -> None:
        if not str(entry_id).lower().endswith(f"tweet-{tweet_id}"):
            return
        tombstone = result.get("tombstone") or {}
        if tombstone.get("__typename") != "TextTombstone":
            raise TweetError(ErrorKind.UNKNOWN_TOMBSTONE, f"tombstone type {tombstone.get('__typename')}")
        text = (tombstone.get("text") or {}).get("text") or ""
        logger.debug("TextTombstone: %s: %s", entry_id, text)
        kind = self.phrases.classify(text)
        raise TweetError(kind, text)


def get_thread(tweet_id: int, tweets: dict[int, TweetItem]) -> list[int] | None:
    """Ids sharing the requested tweet's self-thread, or None for a single post."""
    item = tweets.get(tweet_id)
    if item is None or item.self_thread_id is None:
        return None
    thread_id = item.self_thread_id
    members = sorted(tid for tid, other in tweets.items() if other.self_thread_id == thread_id)
    if len(members) == 1:
        return None
    return members


@dataclass(slots=True)
class ParsedTweet:
    """Everything one fetch contributes to the tweet store."""

    tweets: list[Tweet]
    medias: list[Media]
    edges: list[ThreadEdge]


def build_records(tweet_id: int, tweets: dict[int, TweetItem]) -> ParsedTweet:
    thread_ids = get_thread(tweet_id, tweets)
    if thread_ids is None:
        item = tweets[tweet_id]
        return ParsedTweet(tweets=[item.as_tweet()], medias=item.media_list(), edges=[])
    members = [tweets[tid] for tid in thread_ids]
    return ParsedTweet(
        tweets=[m.as_tweet() for m in members],
        medias=[media for m in members for media in m.media_list()],
        edges=[edge for edge in (m.as_thread() for m in members) if edge is not None],
    )


__all__ = [
    "ParsedTweet",
    "TombstonePhrases",
    "TweetItem",
    "TweetParser",
    "build_records",
    "get_thread",
    "parse_created_at",
]
