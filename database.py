#!/usr/bin/env python3
"""
Database models and persistence handle for QuestLog.
Holds the Game catalog, per-user collections, tags and ordered queues.

The engine and session factory are owned by an explicitly constructed
:class:`Database` object that the composition root creates once at start-up
and hands to the services.  Nothing in this module opens a connection at
import time.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import (
    Column, Date, DateTime, Float, ForeignKey, Integer, String, Text,
    Boolean, UniqueConstraint, create_engine,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger('questlog.database')

DEFAULT_DATABASE_URL = 'sqlite:///questlog.db'

Base = declarative_base()


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime (the stored form)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


class Game(Base):
    """Catalog entry shared read-only by every user who adds it."""
    __tablename__ = "games"

    id = Column(Integer, primary_key=True)
    title = Column(String(500), nullable=False, index=True)
    api_id = Column(String(100), nullable=False)
    api_source = Column(String(50), nullable=False)  # e.g. 'RAWG', 'IGDB'
    cover_image_url = Column(String(1000), nullable=True)
    release_date = Column(Date, nullable=True)
    publisher = Column(String(255), nullable=True)
    developer = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    main_time = Column(Integer, nullable=True)  # minutes
    completion_time = Column(Integer, nullable=True)  # minutes
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('api_source', 'api_id', name='uq_games_source_api_id'),
    )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'title': self.title,
            'api_id': self.api_id,
            'api_source': self.api_source,
            'cover_image_url': self.cover_image_url,
            'release_date': _iso(self.release_date),
            'publisher': self.publisher,
            'developer': self.developer,
            'description': self.description,
            'main_time': self.main_time,
            'completion_time': self.completion_time,
        }


class GameQueue(Base):
    """Named, per-user ordered list of games."""
    __tablename__ = "game_queues"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, default='')
    is_default = Column(Boolean, default=False, nullable=False)
    filter_tags = Column(Text, nullable=True)  # JSON array of normalised tags
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    games = relationship(
        "UserGame", back_populates="queue",
        order_by="UserGame.queue_position",
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'name', name='uq_game_queues_user_name'),
    )

    def get_filter_tags(self) -> List[str]:
        if not self.filter_tags:
            return []
        try:
            return list(json.loads(self.filter_tags))
        except (TypeError, ValueError):
            logger.warning("Queue %s has unreadable filter_tags: %r", self.id, self.filter_tags)
            return []

    def set_filter_tags(self, tags: List[str]) -> None:
        self.filter_tags = json.dumps(list(tags)) if tags else None

    def to_dict(self, games: Optional[List['UserGame']] = None) -> Dict:
        """Serialise the queue; *games* (already ordered) are embedded when given."""
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'name': self.name,
            'description': self.description or '',
            'is_default': bool(self.is_default),
            'filter_tags': self.get_filter_tags(),
            'created_at': _iso(self.created_at),
        }
        if games is not None:
            data['games'] = [ug.to_dict() for ug in games]
        return data


class UserGame(Base):
    """A user's relationship to one Game."""
    __tablename__ = "user_games"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    game_id = Column(Integer, ForeignKey("games.id"), nullable=False, index=True)
    status = Column(String(32), nullable=False, default='BACKLOG')
    progress_percent = Column(Float, nullable=False, default=0.0)
    custom_main_time = Column(Integer, nullable=True)  # minutes
    custom_completion_time = Column(Integer, nullable=True)  # minutes
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    queue_id = Column(Integer, ForeignKey("game_queues.id"), nullable=True, index=True)
    queue_position = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    game = relationship("Game")
    queue = relationship("GameQueue", back_populates="games")
    tags = relationship(
        "UserGameTag", back_populates="user_game",
        cascade="all, delete-orphan", order_by="UserGameTag.tag",
    )

    __table_args__ = (
        UniqueConstraint('user_id', 'game_id', name='uq_user_games_user_game'),
    )

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'game_id': self.game_id,
            'game': self.game.to_dict() if self.game is not None else None,
            'status': self.status,
            'progress_percent': self.progress_percent,
            'custom_main_time': self.custom_main_time,
            'custom_completion_time': self.custom_completion_time,
            'started_at': _iso(self.started_at),
            'completed_at': _iso(self.completed_at),
            'queue_id': self.queue_id,
            'queue_position': self.queue_position,
            'tags': sorted(t.tag for t in self.tags),
            'updated_at': _iso(self.updated_at),
        }


class UserGameTag(Base):
    """Normalised free-text label attached to one UserGame."""
    __tablename__ = "user_game_tags"

    id = Column(Integer, primary_key=True)
    user_game_id = Column(Integer, ForeignKey("user_games.id"), nullable=False, index=True)
    tag = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

    user_game = relationship("UserGame", back_populates="tags")

    __table_args__ = (
        UniqueConstraint('user_game_id', 'tag', name='uq_user_game_tags_tag'),
    )


class Database:
    """Owns the SQLAlchemy engine and session factory for one process.

    Created once by the composition root and injected into the services;
    there is no module-level engine.

    Args:
        url:  SQLAlchemy database URL.
        echo: Log every SQL statement (debugging aid).
    """

    def __init__(self, url: str = DEFAULT_DATABASE_URL, echo: bool = False) -> None:
        self.url = url
        kwargs = {'echo': echo}
        if url.startswith('sqlite'):
            kwargs['connect_args'] = {'check_same_thread': False}
            if url in ('sqlite://', 'sqlite:///:memory:'):
                # One shared connection, otherwise every session sees an empty DB
                kwargs['poolclass'] = StaticPool
        self.engine = create_engine(url, **kwargs)
        self.SessionLocal = sessionmaker(
            bind=self.engine, autocommit=False, autoflush=False, expire_on_commit=False,
        )

    def init_db(self) -> bool:
        """Create all tables that do not exist yet."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables initialized successfully")
            return True
        except Exception as e:
            logger.error("Failed to initialize database: %s", e)
            return False

    def session(self):
        """Return a new, caller-managed session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations.

        Commits when the block exits cleanly, rolls back and re-raises on any
        exception, and always closes the session.
        """
        db = self.SessionLocal()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()
