"""Raw response cache: the crawl checkpoint, one row of unparsed JSON per tweet."""
from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    exists,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .errors import ErrorKind, TweetError

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT = 2 * 60 * 60

metadata = MetaData()

raw_tweet = Table(
    "tweet",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("url", Text, nullable=False, unique=True),
    Column("json", Text, nullable=False),
    Column("fetch_time", Integer, nullable=False, server_default=text("(strftime('%s', 'now'))")),
)


def build_engine(db_path: Path) -> Engine:
    """Pooled SQLite engine that worker threads can share."""
    return create_engine(
        f"sqlite:///{Path(db_path)}",
        connect_args={"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT},
    )


class RawCache:
    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.engine = build_engine(self.db_path)
        metadata.create_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    def exists(self, tweet_id: int) -> bool:
        query = select(exists().where(raw_tweet.c.id == tweet_id))
        try:
            with self.engine.connect() as conn:
                return bool(conn.execute(query).scalar())
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc

    def insert(self, tweet_id: int, url: str, json_text: str) -> None:
        """Store a payload; raises ``DUPLICATE_KEY`` if the id or url is taken."""
        try:
            with self.engine.begin() as conn:
                conn.execute(raw_tweet.insert().values(id=tweet_id, url=url, json=json_text))
        except IntegrityError as exc:
            raise TweetError(ErrorKind.DUPLICATE_KEY, f"{tweet_id} ({url})") from exc
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc

    def get(self, tweet_id: int) -> str:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(raw_tweet.c.json).where(raw_tweet.c.id == tweet_id)).first()
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc
        if row is None:
            raise TweetError(ErrorKind.NOT_FOUND, f"no cached payload for {tweet_id}")
        return row[0]

    def remove(self, tweet_id: int) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(raw_tweet).where(raw_tweet.c.id == tweet_id))
        except SQLAlchemyError as exc:
            raise TweetError(ErrorKind.STORAGE, str(exc)) from exc


__all__ = ["RawCache", "build_engine"]
