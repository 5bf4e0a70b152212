"""Business logic for ordered game queues."""
import logging
import numbers
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError

from database import GameQueue, UserGame
from ..errors import DuplicateName, Forbidden, NotFound, ValidationError
from ..repositories.queue_repository import QueueRepository
from ..repositories.user_game_repository import UserGameRepository
from .play_time import get_effective_completion_time, get_effective_main_time
from .tag_service import TagService, normalize_tag_list


class QueueService:
    """Creates, orders and deletes per-user game queues.

    Rules
    -----
    * Queue names are unique per user and compared case-sensitively.
    * A user's first queue becomes the default queue and can never be deleted.
    * Positions inside a queue are zero-based and dense after every operation
      this service performs; a game belongs to at most one queue.
    * Filter tags only select games when the queue is created.  Later matches
      are surfaced by :meth:`find_new_matches` and never moved automatically.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers control the session lifecycle.  Mutations lock the queue row
    first so that concurrent writers on one queue serialise.
    """

    def __init__(self, tag_service: Optional[TagService] = None) -> None:
        self._tags = tag_service or TagService()
        self._log = logging.getLogger('questlog.queue')

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_queue(self, db, user_id: str, name: str, description: str = '') -> GameQueue:
        """Create a queue; the user's first queue is marked default.

        Raises:
            ValidationError: *name* is empty.
            DuplicateName:   The user already has a queue called *name*.
        """
        if not name or not str(name).strip():
            raise ValidationError('name', 'Queue name is required')
        repo = QueueRepository(db)
        if repo.find_by_name(user_id, name) is not None:
            raise DuplicateName(name)
        is_default = repo.count_for_user(user_id) == 0
        try:
            queue = repo.add(GameQueue(
                user_id=user_id,
                name=name,
                description=description or '',
                is_default=is_default,
            ))
        except IntegrityError as e:
            raise DuplicateName(name) from e
        self._log.info("Created queue %r for user %s (default=%s)", name, user_id, is_default)
        return queue

    def create_queue_with_filters(self, db, user_id: str, name: str,
                                  description: str = '',
                                  filter_tags: Optional[Iterable[str]] = None) -> GameQueue:
        """Create a queue and fill it with every game matching all *filter_tags*.

        Tags are normalised, de-duplicated and sorted before being stored.
        Matches are placed at positions ``0..n-1`` in match order; games taken
        from other queues leave those queues compacted.
        """
        tags = normalize_tag_list(filter_tags)
        queue = self.create_queue(db, user_id, name, description)
        queue.set_filter_tags(tags)
        db.flush()
        if not tags:
            return queue

        matches = self._tags.find_user_games_by_tags(db, user_id, tags)
        source_queues = {ug.queue_id for ug in matches if ug.queue_id is not None}
        for position, user_game in enumerate(matches):
            user_game.queue_id = queue.id
            user_game.queue_position = position
        db.flush()
        for source_id in sorted(source_queues):
            self.compact_queue(db, source_id)
        self._log.info("Queue %r auto-populated with %d game(s) for tags %s",
                       name, len(matches), tags)
        return queue

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_queue(self, db, queue_id: int, user_id: Optional[str] = None,
                  for_update: bool = False) -> GameQueue:
        queue = QueueRepository(db).find(queue_id, user_id=user_id, for_update=for_update)
        if queue is None:
            raise NotFound(f"Queue {queue_id} not found")
        return queue

    def get_members(self, db, queue_id: int) -> List[UserGame]:
        return UserGameRepository(db).in_queue(queue_id)

    def list_queues(self, db, user_id: str) -> List[Tuple[GameQueue, List[UserGame]]]:
        """Return ``[(queue, members), ...]`` with members in position order."""
        users = UserGameRepository(db)
        return [(q, users.in_queue(q.id)) for q in QueueRepository(db).list_for_user(user_id)]

    def find_new_matches(self, db, queue_id: int,
                         user_id: Optional[str] = None) -> List[UserGame]:
        """Return games matching the queue's filter tags that are not in it yet.

        Advisory only: membership is never changed.  Returns ``[]`` when the
        queue does not exist or has no filter tags.
        """
        queue = QueueRepository(db).find(queue_id, user_id=user_id)
        if queue is None:
            return []
        tags = queue.get_filter_tags()
        if not tags:
            return []
        return self._tags.find_user_games_by_tags(
            db, queue.user_id, tags, exclude_queue_id=queue.id)

    def next_position(self, db, queue_id: int) -> int:
        """Return ``max(position) + 1`` for *queue_id*, or 0 when empty."""
        current = UserGameRepository(db).max_position(queue_id)
        return 0 if current is None else current + 1

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_queue(self, db, queue_id: int, name: Optional[str] = None,
                     description: Optional[str] = None,
                     user_id: Optional[str] = None) -> GameQueue:
        """Rename and/or re-describe a queue.

        Raises:
            NotFound:      Unknown queue.
            DuplicateName: Another queue of the same user already has *name*.
        """
        queue = self.get_queue(db, queue_id, user_id=user_id, for_update=True)
        if name and name != queue.name:
            if QueueRepository(db).find_by_name(queue.user_id, name) is not None:
                raise DuplicateName(name)
            queue.name = name
        if description is not None:
            queue.description = description
        try:
            db.flush()
        except IntegrityError as e:
            raise DuplicateName(name) from e
        return queue

    def reorder_queue(self, db, queue_id: int,
                      assignments: Sequence,
                      user_id: Optional[str] = None) -> List[UserGame]:
        """Apply ``(user_game_id, position)`` pairs to *queue_id*.

        Each assignment is applied independently: the caller is responsible
        for supplying a complete, dense ordering.  Every pair is checked
        before any is applied.  Dicts with ``id`` and ``position`` keys are
        accepted as well as tuples.

        Raises:
            NotFound:        Unknown queue, or a UserGame that is not a member.
            ValidationError: A position is not a non-negative integer.

        Returns:
            The queue members in their new order.
        """
        queue = self.get_queue(db, queue_id, user_id=user_id, for_update=True)
        pairs = [self._parse_assignment(a) for a in assignments]
        members: Dict[int, UserGame] = {ug.id: ug for ug in self.get_members(db, queue.id)}
        for user_game_id, _ in pairs:
            if user_game_id not in members:
                raise NotFound(f"Game {user_game_id} is not in queue {queue.id}")
        for user_game_id, position in pairs:
            members[user_game_id].queue_position = position
        db.flush()
        self._log.debug("Reordered %d game(s) in queue %s", len(pairs), queue.id)
        return self.get_members(db, queue.id)

    def delete_queue(self, db, queue_id: int, user_id: Optional[str] = None) -> int:
        """Delete a non-default queue, releasing its games.

        Member games keep their status and tags; only ``queue_id`` and
        ``queue_position`` are cleared.

        Raises:
            NotFound:  Unknown queue.
            Forbidden: The queue is the user's default queue.

        Returns:
            Number of games released.
        """
        queue = self.get_queue(db, queue_id, user_id=user_id, for_update=True)
        if queue.is_default:
            raise Forbidden('Cannot delete default queue')
        released = UserGameRepository(db).detach_queue(queue.id)
        QueueRepository(db).delete(queue)
        self._log.info("Deleted queue %s, released %d game(s)", queue_id, released)
        return released

    def add_game(self, db, queue_id: int, user_game_id: int,
                 user_id: Optional[str] = None) -> UserGame:
        """Append *user_game_id* to the end of *queue_id*.

        A game already in the queue is left where it is.  A game in another
        queue is moved and the source queue is compacted.
        """
        queue = self.get_queue(db, queue_id, user_id=user_id, for_update=True)
        user_game = UserGameRepository(db).find(
            user_game_id, user_id=queue.user_id, for_update=True)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return self.move_to_queue(db, user_game, queue)

    def move_to_queue(self, db, user_game: UserGame, queue: GameQueue) -> UserGame:
        if user_game.queue_id == queue.id:
            return user_game
        source_id = user_game.queue_id
        user_game.queue_position = self.next_position(db, queue.id)
        user_game.queue_id = queue.id
        db.flush()
        if source_id is not None:
            self.compact_queue(db, source_id)
        return user_game

    def remove_game(self, db, user_game_id: int, user_id: Optional[str] = None) -> UserGame:
        """Take *user_game_id* out of its queue and close the gap it leaves."""
        user_game = UserGameRepository(db).find(user_game_id, user_id=user_id, for_update=True)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return self.detach(db, user_game)

    def detach(self, db, user_game: UserGame) -> UserGame:
        source_id = user_game.queue_id
        if source_id is None:
            return user_game
        user_game.queue_id = None
        user_game.queue_position = None
        db.flush()
        self.compact_queue(db, source_id)
        return user_game

    def compact_queue(self, db, queue_id: int) -> List[UserGame]:
        """Renumber *queue_id*'s members ``0..n-1`` keeping their current order."""
        QueueRepository(db).find(queue_id, for_update=True)  # lock
        members = self.get_members(db, queue_id)
        for position, user_game in enumerate(members):
            if user_game.queue_position != position:
                user_game.queue_position = position
        db.flush()
        return members

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    @staticmethod
    def compute_queue_stats(queue_or_games) -> Dict:
        """Aggregate play time over a queue's member games.

        Accepts a :class:`~database.GameQueue` (its ``games`` relationship is
        used) or an iterable of UserGames.  Games without time data
        contribute zero instead of raising.

        Returns:
            Dict with ``total_main_time``, ``total_completion_time``,
            ``completed_time``, ``remaining_time`` (all minutes) and
            ``total_games``.
        """
        games = queue_or_games.games if isinstance(queue_or_games, GameQueue) else queue_or_games
        total_main = 0
        total_completion = 0
        completed = 0.0
        count = 0
        for user_game in games:
            count += 1
            main = get_effective_main_time(user_game)
            if main:
                total_main += main
                completed += main * (user_game.progress_percent or 0) / 100
            completion = get_effective_completion_time(user_game)
            if completion:
                total_completion += completion
        return {
            'total_main_time': total_main,
            'total_completion_time': total_completion,
            'completed_time': completed,
            'remaining_time': total_main - completed,
            'total_games': count,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_assignment(assignment) -> Tuple[int, int]:
        if isinstance(assignment, dict):
            user_game_id = assignment.get('id')
            position = assignment.get('position')
        else:
            try:
                user_game_id, position = assignment
            except (TypeError, ValueError):
                raise ValidationError('game_orders', 'expected (id, position) pairs')
        if isinstance(position, bool) or not isinstance(position, numbers.Integral) or position < 0:
            raise ValidationError('game_orders', f'invalid position {position!r}')
        if isinstance(user_game_id, bool):
            raise ValidationError('game_orders', f'invalid game id {user_game_id!r}')
        try:
            user_game_id = int(user_game_id)
        except (TypeError, ValueError):
            raise ValidationError('game_orders', f'invalid game id {user_game_id!r}')
        return user_game_id, int(position)
