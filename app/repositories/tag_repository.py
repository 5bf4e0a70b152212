"""Repository for UserGame tags."""
from typing import List, Optional

from database import UserGame, UserGameTag
from .base import BaseRepository


class TagRepository(BaseRepository):
    """Queries over ``user_game_tags``.  Tags are stored already normalised."""

    def find(self, user_game_id: int, tag: str) -> Optional[UserGameTag]:
        return (self._db.query(UserGameTag)
                .filter(UserGameTag.user_game_id == user_game_id,
                        UserGameTag.tag == tag)
                .first())

    def list_for_user_game(self, user_game_id: int) -> List[str]:
        """Return the tag strings on *user_game_id*, ascending."""
        rows = (self._db.query(UserGameTag.tag)
                .filter(UserGameTag.user_game_id == user_game_id)
                .order_by(UserGameTag.tag)
                .all())
        return [r.tag for r in rows]

    def distinct_for_user(self, user_id: str) -> List[str]:
        """Return every distinct tag used across *user_id*'s games, ascending."""
        rows = (self._db.query(UserGameTag.tag)
                .join(UserGame, UserGame.id == UserGameTag.user_game_id)
                .filter(UserGame.user_id == user_id)
                .distinct()
                .order_by(UserGameTag.tag)
                .all())
        return [r.tag for r in rows]

    def create(self, user_game_id: int, tag: str) -> UserGameTag:
        return self.add(UserGameTag(user_game_id=user_game_id, tag=tag))
