"""Tweet store: parsed tweets, their media, thread edges and terminal failures.

Inserts are idempotent. A unique-constraint collision means another run (or
another worker) already stored the row, so it is logged and ignored. Any
other database error is raised as ``TweetError(STORAGE)`` and is expected to
abort the run.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    Table,
    Text,
    delete,
    exists,
    or_,
    select,
    text,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .cache import build_engine
from .errors import ErrorKind, TweetError
from .models import FailReason, Media, TerminalFailure, ThreadEdge, Tweet

logger = logging.getLogger(__name__)

metadata = MetaData()

tweet = Table(
    "tweet",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("author", Text, nullable=False),
    Column("content", Text, nullable=False),
    Column("create_time", Integer, nullable=False),
    Column("index_time", Integer, nullable=False, server_default=text("(strftime('%s', 'now'))")),
    Column("fetch_time", Integer, nullable=False, server_default=text("(strftime('%s', 'now'))")),
)

media = Table(
    "media",
    metadata,
    Column("id", Text, primary_key=True),
    Column("tweet_id", Integer, nullable=False),
    Column("url", Text, nullable=False, unique=True),
    Column("width", Integer),
    Column("height", Integer),
    Column("no", Integer),
    Column("type", Text),
)

thread = Table(
    "thread",
    metadata,
    Column("tweet_id", Integer, ForeignKey("tweet.id"), primary_key=True, autoincrement=False),
    Column("thread_master_id", Integer, nullable=False),
    Column("in_reply_to", Integer),
)

fail = Table(
    "fail",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("tweet_id", Integer, nullable=False, unique=True),
    Column("url", Text, nullable=False),
    Column("type", Text, nullable=False),
    CheckConstraint(
        "type IN ({})".format(", ".join(f"'{reason.value}'" for reason in FailReason)),
        name="fail_type",
    ),
)


class TweetStore:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        if self.db_path.exists() and not self.db_path.is_file():
            raise TweetError(ErrorKind.STORAGE, f"{self.db_path} is not a file")
        self.engine = build_engine(self.db_path)
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc

    def close(self) -> None:
        self.engine.dispose()

    def _insert(self, label: str, statement) -> bool:
        try:
            with self.engine.begin() as conn:
                conn.execute(statement)
        except IntegrityError:
            logger.debug("%s already stored, skipping", label)
            return False
        except SQLAlchemyError as exc:
            logger.error("Error when inserting %s: %s", label, exc)
            raise TweetError(ErrorKind.STORAGE, f"{label}: {exc}") from exc
        return True

    def insert_tweet(self, item: Tweet) -> bool:
        """Store a tweet, dropping any earlier terminal failure recorded for it."""
        label = f"tweet {item.author}/{item.id}"
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    tweet.insert().values(
                        id=item.id,
                        author=item.author,
                        content=item.content,
                        create_time=item.create_time,
                    )
                )
                cleared = conn.execute(delete(fail).where(fail.c.tweet_id == item.id)).rowcount
        except IntegrityError:
            logger.debug("%s already stored, skipping", label)
            return False
        except SQLAlchemyError as exc:
            logger.error("Error when inserting %s: %s", label, exc)
            raise TweetError(ErrorKind.STORAGE, f"{label}: {exc}") from exc
        if cleared:
            logger.info("%s is visible now, cleared its fail record", label)
        return True

    def insert_media(self, item: Media) -> bool:
        return self._insert(
            f"media {item.tweet_id}/{item.id}",
            media.insert().values(
                id=item.id,
                tweet_id=item.tweet_id,
                url=item.url,
                width=item.width,
                height=item.height,
                no=item.no,
                type=item.type,
            ),
        )

    def insert_thread(self, edge: ThreadEdge) -> bool:
        return self._insert(
            f"thread {edge.tweet_id}",
            thread.insert().values(
                tweet_id=edge.tweet_id,
                thread_master_id=edge.thread_id,
                in_reply_to=edge.reply_to,
            ),
        )

    def insert_fail(self, failure: TerminalFailure) -> bool:
        """Record a terminal outcome unless the tweet itself is already stored."""
        label = f"fail {failure.url}"
        try:
            with self.engine.begin() as conn:
                if _tweet_exists(conn, failure.tweet_id):
                    logger.debug("%s skipped, tweet row exists", label)
                    return False
                conn.execute(
                    fail.insert().values(
                        tweet_id=failure.tweet_id,
                        url=failure.url,
                        type=failure.reason.value,
                    )
                )
        except IntegrityError:
            logger.debug("%s already stored, skipping", label)
            return False
        except SQLAlchemyError as exc:
            logger.error("Error when inserting %s: %s", label, exc)
            raise TweetError(ErrorKind.STORAGE, f"{label}: {exc}") from exc
        return True

    def store_all(
        self,
        tweets: Iterable[Tweet],
        medias: Iterable[Media],
        edges: Iterable[ThreadEdge],
    ) -> None:
        for item in tweets:
            self.insert_tweet(item)
        for item in medias:
            self.insert_media(item)
        for edge in edges:
            self.insert_thread(edge)

    def exists(self, tweet_id: int) -> bool:
        """True when the tweet was either stored or terminally classified."""
        query = select(
            or_(
                exists().where(tweet.c.id == tweet_id),
                exists().where(fail.c.tweet_id == tweet_id),
            )
        )
        try:
            with self.engine.connect() as conn:
                return bool(conn.execute(query).scalar())
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc

    def get_tweet(self, tweet_id: int) -> Tweet | None:
        query = select(tweet.c.id, tweet.c.author, tweet.c.content, tweet.c.create_time).where(
            tweet.c.id == tweet_id
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        if row is None:
            return None
        return Tweet(id=row.id, author=row.author, content=row.content, create_time=row.create_time)

    def get_media(self, tweet_id: int) -> list[Media]:
        query = select(media).where(media.c.tweet_id == tweet_id).order_by(media.c.no)
        with self.engine.connect() as conn:
            rows = conn.execute(query).all()
        return [
            Media(
                id=row.id,
                tweet_id=row.tweet_id,
                url=row.url,
                width=row.width,
                height=row.height,
                no=row.no,
                type=row.type,
            )
            for row in rows
        ]

    def get_fail(self, tweet_id: int) -> FailReason | None:
        with self.engine.connect() as conn:
            value = conn.execute(select(fail.c.type).where(fail.c.tweet_id == tweet_id)).scalar()
        return FailReason(value) if value is not None else None

    def lookup(self, tweet_id: int) -> Tweet | FailReason | None:
        stored = self.get_tweet(tweet_id)
        if stored is not None:
            return stored
        return self.get_fail(tweet_id)

    def get_thread_edges(self) -> list[ThreadEdge]:
        with self.engine.connect() as conn:
            rows = conn.execute(select(thread).order_by(thread.c.tweet_id)).all()
        return [
            ThreadEdge(tweet_id=row.tweet_id, thread_id=row.thread_master_id, reply_to=row.in_reply_to)
            for row in rows
        ]

    def media_pairs(self) -> list[tuple[str, str]]:
        """``(author, media url)`` for every stored media row."""
        query = (
            select(tweet.c.author, media.c.url)
            .select_from(tweet.join(media, tweet.c.id == media.c.tweet_id))
            .order_by(tweet.c.author, media.c.tweet_id, media.c.no)
        )
        with self.engine.connect() as conn:
            return [(row.author, row.url) for row in conn.execute(query)]

    def remove_tweet(self, tweet_id: int) -> Tweet | None:
        """Delete a stored tweet with its media and thread rows."""
        stored = self.get_tweet(tweet_id)
        if stored is None:
            return None
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(thread).where(thread.c.tweet_id == tweet_id))
                conn.execute(delete(media).where(media.c.tweet_id == tweet_id))
                conn.execute(delete(tweet).where(tweet.c.id == tweet_id))
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc
        return stored


def _tweet_exists(conn: Connection, tweet_id: int) -> bool:
    return bool(conn.execute(select(exists().where(tweet.c.id == tweet_id))).scalar())


__all__ = ["TweetStore"]
