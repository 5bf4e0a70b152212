"""Repository for UserGame rows (a user's copy of a catalog game)."""
from typing import Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import joinedload

from database import UserGame, UserGameTag
from .base import BaseRepository


class UserGameRepository(BaseRepository):
    """Queries over ``user_games``.

    Lookups that precede a write accept ``for_update=True`` which issues
    ``SELECT ... FOR UPDATE`` so concurrent writers on the same row serialise
    (ignored by SQLite, which locks the whole database on write anyway).
    """

    def find(self, user_game_id: int, user_id: Optional[str] = None,
             for_update: bool = False) -> Optional[UserGame]:
        """Return the UserGame, or ``None`` if missing or owned by someone else."""
        query = self._db.query(UserGame).filter(UserGame.id == user_game_id)
        if user_id is not None:
            query = query.filter(UserGame.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_by_user_and_game(self, user_id: str, game_id: int,
                              for_update: bool = False) -> Optional[UserGame]:
        query = self._db.query(UserGame).filter(
            UserGame.user_id == user_id,
            UserGame.game_id == game_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def list_for_user(self, user_id: str, status: Optional[str] = None) -> List[UserGame]:
        """Return the user's games, most recently updated first."""
        query = (self._db.query(UserGame)
                 .options(joinedload(UserGame.game))
                 .filter(UserGame.user_id == user_id))
        if status:
            query = query.filter(UserGame.status == status)
        return query.order_by(UserGame.updated_at.desc(), UserGame.id.desc()).all()

    def find_by_tags(self, user_id: str, tags: Iterable[str],
                     exclude_queue_id: Optional[int] = None) -> List[UserGame]:
        """Return the user's games carrying *every* tag in *tags*.

        Args:
            user_id:          Owner of the games.
            tags:             Already-normalised tags (AND semantics).
            exclude_queue_id: When given, games already in this queue are
                              left out; unqueued games and games in other
                              queues are kept.
        """
        query = self._db.query(UserGame).filter(UserGame.user_id == user_id)
        for tag in tags:
            query = query.filter(UserGame.tags.any(UserGameTag.tag == tag))
        if exclude_queue_id is not None:
            query = query.filter(or_(
                UserGame.queue_id.is_(None),
                UserGame.queue_id != exclude_queue_id,
            ))
        return query.order_by(UserGame.id).all()

    def in_queue(self, queue_id: int) -> List[UserGame]:
        """Return the members of *queue_id* in position order."""
        return (self._db.query(UserGame)
                .filter(UserGame.queue_id == queue_id)
                .order_by(UserGame.queue_position, UserGame.id)
                .all())

    def max_position(self, queue_id: int) -> Optional[int]:
        return (self._db.query(func.max(UserGame.queue_position))
                .filter(UserGame.queue_id == queue_id)
                .scalar())

    def detach_queue(self, queue_id: int) -> int:
        """Clear queue membership for every member of *queue_id*.

        Returns:
            Number of UserGames released.
        """
        count = (self._db.query(UserGame)
                 .filter(UserGame.queue_id == queue_id)
                 .update({UserGame.queue_id: None, UserGame.queue_position: None},
                         synchronize_session='fetch'))
        self._db.flush()
        return count
