"""Repository for shared catalog Game rows."""
from typing import List, Optional

from database import Game
from .base import BaseRepository


class GameRepository(BaseRepository):
    """Queries over ``games``.  Games are created once per external title."""

    def find(self, game_id: int) -> Optional[Game]:
        return self._db.query(Game).filter(Game.id == game_id).first()

    def find_by_api_id(self, api_source: str, api_id: str) -> Optional[Game]:
        return (self._db.query(Game)
                .filter(Game.api_source == api_source, Game.api_id == str(api_id))
                .first())

    def search_by_title(self, query: str, limit: int = 10) -> List[Game]:
        """Case-insensitive substring match on the title; ``%`` and ``_`` match literally."""
        return (self._db.query(Game)
                .filter(Game.title.icontains(query, autoescape=True))
                .order_by(Game.title)
                .limit(limit)
                .all())

    def create(self, **fields) -> Game:
        return self.add(Game(**fields))
