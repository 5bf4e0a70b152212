"""Repository for named game queues."""
from typing import List, Optional

from database import GameQueue
from .base import BaseRepository


class QueueRepository(BaseRepository):
    """Queries over ``game_queues``.

    Queue names are compared exactly (case-sensitive), matching the
    ``(user_id, name)`` unique constraint.
    """

    def find(self, queue_id: int, user_id: Optional[str] = None,
             for_update: bool = False) -> Optional[GameQueue]:
        """Return the queue, or ``None`` if missing or owned by someone else."""
        query = self._db.query(GameQueue).filter(GameQueue.id == queue_id)
        if user_id is not None:
            query = query.filter(GameQueue.user_id == user_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def find_by_name(self, user_id: str, name: str) -> Optional[GameQueue]:
        return (self._db.query(GameQueue)
                .filter(GameQueue.user_id == user_id, GameQueue.name == name)
                .first())

    def count_for_user(self, user_id: str) -> int:
        return self._db.query(GameQueue).filter(GameQueue.user_id == user_id).count()

    def list_for_user(self, user_id: str) -> List[GameQueue]:
        """Return the user's queues, default first, then by creation order."""
        return (self._db.query(GameQueue)
                .filter(GameQueue.user_id == user_id)
                .order_by(GameQueue.is_default.desc(), GameQueue.id)
                .all())
