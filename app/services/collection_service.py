"""Orchestrating façade used by the request layer and the CLI.

:class:`CollectionService` owns the transaction boundary: every public method
opens one :meth:`database.Database.session_scope`, delegates to the component
services, serialises the result to plain dicts while the session is still
open, and commits.  Any exception rolls the whole call back, so validation
failures never leave partial writes behind.
"""
import logging
import math
import numbers
from dataclasses import dataclass, fields
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from catalog_clients import CatalogClient, CatalogError, CompletionTimeClient, NullCompletionTimeClient
from database import Database, Game, UserGame
from ..errors import ExternalLookupFailure, NotFound, ValidationError
from ..repositories.game_repository import GameRepository
from ..repositories.user_game_repository import UserGameRepository
from .play_time import get_effective_completion_time, get_effective_main_time
from .progress_service import ProgressService, validate_progress
from .queue_service import QueueService
from .state_machine import BACKLOG, StateMachine, STATUSES, is_valid_status, stamp_lifecycle_dates
from .tag_service import TagService

# Local-first search: only ask the catalog when fewer local hits than this.
LOCAL_SEARCH_LIMIT = 10
MAX_SEARCH_RESULTS = 20


class _Missing:
    def __repr__(self) -> str:
        return 'MISSING'

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


@dataclass
class UserGamePatch:
    """Partial update of a UserGame.

    A field left at :data:`MISSING` is not touched.  ``None`` is a real value
    for the custom times (it clears the override).  :meth:`validate` checks
    every provided field before any of them is applied.
    """

    status: Any = MISSING
    progress_percent: Any = MISSING
    custom_main_time: Any = MISSING
    custom_completion_time: Any = MISSING

    @classmethod
    def from_dict(cls, payload: Optional[Dict]) -> 'UserGamePatch':
        payload = payload or {}
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in names})

    def is_set(self, name: str) -> bool:
        return getattr(self, name) is not MISSING

    def validate(self) -> None:
        """Raise :class:`ValidationError` for the first invalid field."""
        if self.is_set('status') and not is_valid_status(self.status):
            raise ValidationError('status', f'must be one of {list(STATUSES)}')
        if self.is_set('progress_percent'):
            validate_progress(self.progress_percent)
        for name in ('custom_main_time', 'custom_completion_time'):
            value = getattr(self, name)
            if value is MISSING or value is None:
                continue
            if (isinstance(value, bool) or not isinstance(value, numbers.Real)
                    or not math.isfinite(value) or value < 0):
                raise ValidationError(name, 'must be a non-negative number of minutes or null')


class CollectionService:
    """Business façade over the collection, tags, queues and catalog.

    Args:
        database:          Explicitly constructed persistence handle.
        catalog_client:    External catalog (optional; search degrades to
                           local results and catalog adds fail without it).
        completion_client: Completion-time source (defaults to one that
                           knows nothing).
    """

    def __init__(self, database: Database,
                 catalog_client: Optional[CatalogClient] = None,
                 completion_client: Optional[CompletionTimeClient] = None) -> None:
        self._database = database
        self._catalog = catalog_client
        self._completion = completion_client or NullCompletionTimeClient()
        self.state_machine = StateMachine()
        self.progress = ProgressService()
        self.tags = TagService()
        self.queues = QueueService(self.tags)
        self._log = logging.getLogger('questlog.collection')

    get_effective_main_time = staticmethod(get_effective_main_time)
    get_effective_completion_time = staticmethod(get_effective_completion_time)

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def search_games(self, query: str) -> List[Dict]:
        """Search locally first, then the catalog when local hits are few.

        Local games come first; catalog entries already stored locally are
        skipped and the merged list is capped at :data:`MAX_SEARCH_RESULTS`.
        A failing catalog yields the local results only.
        """
        with self._database.session_scope() as db:
            local = [self._game_dict(g)
                     for g in GameRepository(db).search_by_title(query, limit=LOCAL_SEARCH_LIMIT)]
        self._log.debug("Search %r: %d local result(s)", query, len(local))
        if len(local) >= LOCAL_SEARCH_LIMIT or self._catalog is None:
            return local

        try:
            external = self._catalog.search(query)
        except CatalogError as e:
            self._log.warning("Catalog search failed, returning local results only: %s", e)
            return local

        source = self._catalog.get_source_name()
        known = {(g['api_source'], g['api_id']) for g in local}
        merged = list(local)
        for entry in external:
            if (source, str(entry.get('external_id'))) in known:
                continue
            merged.append(self._catalog_entry_dict(entry, source))
        return merged[:MAX_SEARCH_RESULTS]

    def add_game_from_catalog(self, external_id: str) -> Dict:
        """Return the stored Game for *external_id*, creating it on first use.

        Missing duration estimates on an existing Game are backfilled.

        Raises:
            ExternalLookupFailure: The catalog could not provide the game.
        """
        if self._catalog is None:
            raise ExternalLookupFailure("Failed to add game: no catalog configured")
        source = self._catalog.get_source_name()
        external_id = str(external_id)

        with self._database.session_scope() as db:
            existing = GameRepository(db).find_by_api_id(source, external_id)
            if existing is not None and existing.main_time and existing.completion_time:
                return self._game_dict(existing)
            title = existing.title if existing is not None else None

        if title is not None:
            return self._backfill_times(source, external_id, title)

        try:
            details = self._catalog.get_details(external_id)
        except CatalogError as e:
            raise ExternalLookupFailure(f"Failed to add game: {e}") from e
        times = self._lookup_completion_times(details.get('title') or '')

        with self._database.session_scope() as db:
            repo = GameRepository(db)
            game = repo.find_by_api_id(source, external_id)
            if game is None:
                game = repo.create(
                    title=details.get('title') or '',
                    api_id=external_id,
                    api_source=source,
                    cover_image_url=details.get('cover_url'),
                    release_date=details.get('release_date'),
                    publisher=details.get('publisher'),
                    developer=details.get('developer'),
                    description=details.get('description') or '',
                    main_time=times.get('main_time'),
                    completion_time=times.get('completion_time'),
                )
                self._log.info("Added %s game %s (%s)", source, external_id, game.title)
            return self._game_dict(game)

    def get_game(self, game_id: int) -> Dict:
        with self._database.session_scope() as db:
            game = GameRepository(db).find(game_id)
            if game is None:
                raise NotFound(f"Game {game_id} not found")
            return self._game_dict(game)

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def add_game_to_collection(self, user_id: str, game_id: int,
                               queue_id: Optional[int] = None,
                               status: Optional[str] = None) -> Dict:
        """Add *game_id* to *user_id*'s collection, or update the existing entry.

        New entries default to ``BACKLOG`` and are appended to *queue_id* at
        ``max(position) + 1`` (0 for an empty queue).  Re-adding sets the
        given status and moves the game to the end of the given queue.
        Re-adding without a status keeps the entry's current status instead
        of resetting it to ``BACKLOG``.

        Raises:
            ValidationError: *status* is not a known state.
            NotFound:        Unknown game, or a queue the user does not own.
        """
        if status is not None and not is_valid_status(status):
            raise ValidationError('status', f'must be one of {list(STATUSES)}')
        with self._database.session_scope() as db:
            if GameRepository(db).find(game_id) is None:
                raise NotFound(f"Game {game_id} not found")
            queue = None
            if queue_id is not None:
                queue = self.queues.get_queue(db, queue_id, user_id=user_id, for_update=True)

            users = UserGameRepository(db)
            user_game = users.find_by_user_and_game(user_id, game_id, for_update=True)
            if user_game is not None:
                return self._readd(db, user_game, queue, status)

            user_game = UserGame(user_id=user_id, game_id=game_id, status=status or BACKLOG,
                                 progress_percent=0.0)
            stamp_lifecycle_dates(user_game, user_game.status)
            if queue is not None:
                user_game.queue_id = queue.id
                user_game.queue_position = self.queues.next_position(db, queue.id)
            try:
                with db.begin_nested():
                    users.add(user_game)
            except IntegrityError:
                # A concurrent add of the same game committed first
                self._log.debug("User %s already has game %s, updating instead", user_id, game_id)
                existing = users.find_by_user_and_game(user_id, game_id, for_update=True)
                if existing is None:
                    raise
                return self._readd(db, existing, queue, status)
            self._log.info("User %s added game %s (%s)", user_id, game_id, user_game.status)
            return self._user_game_dict(user_game)

    def _readd(self, db, user_game: UserGame, queue, status: Optional[str]) -> Dict:
        if status and status != user_game.status:
            user_game.status = status
            stamp_lifecycle_dates(user_game, status)
        if queue is not None:
            self.queues.move_to_queue(db, user_game, queue)
        db.flush()
        self._log.debug("Updated existing UserGame %s for user %s", user_game.id, user_game.user_id)
        return self._user_game_dict(user_game)

    def list_user_games(self, user_id: str, status: Optional[str] = None) -> List[Dict]:
        if status is not None and not is_valid_status(status):
            raise ValidationError('status', f'must be one of {list(STATUSES)}')
        with self._database.session_scope() as db:
            return [self._user_game_dict(ug)
                    for ug in UserGameRepository(db).list_for_user(user_id, status)]

    def get_user_game(self, user_id: str, user_game_id: int) -> Dict:
        with self._database.session_scope() as db:
            return self._user_game_dict(self._require_user_game(db, user_id, user_game_id))

    def update_user_game(self, user_id: str, user_game_id: int, patch) -> Dict:
        """Apply a :class:`UserGamePatch` (or a dict of its fields).

        Every field is validated before anything is written.  A status equal
        to the current one is ignored; a different one goes through the state
        machine.
        """
        if not isinstance(patch, UserGamePatch):
            patch = UserGamePatch.from_dict(patch)
        patch.validate()
        with self._database.session_scope() as db:
            user_game = self._require_user_game(db, user_id, user_game_id, for_update=True)
            if patch.is_set('status') and patch.status != user_game.status:
                self.state_machine.transition(db, user_game, patch.status)
            if patch.is_set('progress_percent'):
                self.progress.apply(db, user_game, patch.progress_percent)
            if patch.is_set('custom_main_time'):
                user_game.custom_main_time = _minutes(patch.custom_main_time)
            if patch.is_set('custom_completion_time'):
                user_game.custom_completion_time = _minutes(patch.custom_completion_time)
            db.flush()
            return self._user_game_dict(user_game)

    def remove_game_from_collection(self, user_id: str, user_game_id: int) -> None:
        """Delete the UserGame with its tags; its queue is compacted."""
        with self._database.session_scope() as db:
            user_game = self._require_user_game(db, user_id, user_game_id, for_update=True)
            source_queue = user_game.queue_id
            UserGameRepository(db).delete(user_game)
            if source_queue is not None:
                self.queues.compact_queue(db, source_queue)
            self._log.info("User %s removed UserGame %s", user_id, user_game_id)

    # ------------------------------------------------------------------
    # Status and progress
    # ------------------------------------------------------------------

    def transition(self, user_id: str, user_game_id: int, to_status: str) -> Dict:
        with self._database.session_scope() as db:
            user_game = self.state_machine.apply_transition(
                db, user_game_id, to_status, user_id=user_id)
            return self._user_game_dict(user_game)

    def set_progress(self, user_id: str, user_game_id: int, percent) -> Dict:
        with self._database.session_scope() as db:
            user_game = self.progress.set_progress(db, user_game_id, percent, user_id=user_id)
            return self._user_game_dict(user_game)

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    def add_tag(self, user_id: str, user_game_id: int, tag: str) -> str:
        with self._database.session_scope() as db:
            return self.tags.add_tag(db, user_game_id, tag, user_id=user_id)

    def remove_tag(self, user_id: str, user_game_id: int, tag: str) -> str:
        with self._database.session_scope() as db:
            return self.tags.remove_tag(db, user_game_id, tag, user_id=user_id)

    def list_tags(self, user_id: str, user_game_id: int) -> List[str]:
        with self._database.session_scope() as db:
            return self.tags.list_tags(db, user_game_id, user_id=user_id)

    def list_all_tags(self, user_id: str) -> List[str]:
        with self._database.session_scope() as db:
            return self.tags.list_all_tags_for_user(db, user_id)

    def find_user_games_by_tags(self, user_id: str, tags: Optional[Iterable[str]]) -> List[Dict]:
        if not tags:
            return []
        with self._database.session_scope() as db:
            return [self._user_game_dict(ug)
                    for ug in self.tags.find_user_games_by_tags(db, user_id, tags)]

    # ------------------------------------------------------------------
    # Queues
    # ------------------------------------------------------------------

    def create_queue(self, user_id: str, name: str, description: str = '',
                     filter_tags: Optional[Iterable[str]] = None) -> Dict:
        """Create a queue, auto-populated when *filter_tags* is non-empty."""
        with self._database.session_scope() as db:
            if filter_tags:
                queue = self.queues.create_queue_with_filters(
                    db, user_id, name, description, filter_tags)
            else:
                queue = self.queues.create_queue(db, user_id, name, description)
            return self._queue_dict(db, queue)

    def list_queues(self, user_id: str) -> List[Dict]:
        """Return the user's queues with ordered games and derived stats."""
        with self._database.session_scope() as db:
            result = []
            for queue, members in self.queues.list_queues(db, user_id):
                data = queue.to_dict()
                data['games'] = [self._user_game_dict(ug) for ug in members]
                data['stats'] = self.queues.compute_queue_stats(members)
                result.append(data)
            return result

    def get_queue(self, user_id: str, queue_id: int) -> Dict:
        with self._database.session_scope() as db:
            return self._queue_dict(db, self.queues.get_queue(db, queue_id, user_id=user_id))

    def update_queue(self, user_id: str, queue_id: int, name: Optional[str] = None,
                     description: Optional[str] = None,
                     game_orders: Optional[Iterable] = None) -> Dict:
        """Rename / re-describe a queue and optionally reorder its games."""
        with self._database.session_scope() as db:
            queue = self.queues.update_queue(
                db, queue_id, name=name, description=description, user_id=user_id)
            if game_orders:
                self.queues.reorder_queue(db, queue.id, list(game_orders), user_id=user_id)
            return self._queue_dict(db, queue)

    def reorder_queue(self, user_id: str, queue_id: int, assignments: Iterable) -> Dict:
        with self._database.session_scope() as db:
            self.queues.reorder_queue(db, queue_id, list(assignments), user_id=user_id)
            return self._queue_dict(db, self.queues.get_queue(db, queue_id))

    def delete_queue(self, user_id: str, queue_id: int) -> int:
        with self._database.session_scope() as db:
            return self.queues.delete_queue(db, queue_id, user_id=user_id)

    def find_new_matches(self, user_id: str, queue_id: int) -> List[Dict]:
        """Suggest games for a filtered queue.

        Raises:
            NotFound: The queue does not exist or belongs to someone else.
        """
        with self._database.session_scope() as db:
            self.queues.get_queue(db, queue_id, user_id=user_id)
            return [self._user_game_dict(ug)
                    for ug in self.queues.find_new_matches(db, queue_id, user_id=user_id)]

    def add_to_queue(self, user_id: str, queue_id: int, user_game_id: int) -> Dict:
        with self._database.session_scope() as db:
            user_game = self.queues.add_game(db, queue_id, user_game_id, user_id=user_id)
            return self._user_game_dict(user_game)

    def remove_from_queue(self, user_id: str, user_game_id: int) -> Dict:
        with self._database.session_scope() as db:
            user_game = self.queues.remove_game(db, user_game_id, user_id=user_id)
            return self._user_game_dict(user_game)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _backfill_times(self, source: str, external_id: str, title: str) -> Dict:
        times = self._lookup_completion_times(title)
        with self._database.session_scope() as db:
            game = GameRepository(db).find_by_api_id(source, external_id)
            if game.main_time is None and times.get('main_time'):
                game.main_time = times['main_time']
            if game.completion_time is None and times.get('completion_time'):
                game.completion_time = times['completion_time']
            db.flush()
            return self._game_dict(game)

    def _lookup_completion_times(self, title: str) -> Dict[str, Optional[int]]:
        try:
            return self._completion.get_completion_times(title) or {}
        except CatalogError as e:
            self._log.warning("Completion times unavailable for %r: %s", title, e)
            return {'main_time': None, 'completion_time': None}

    def _require_user_game(self, db, user_id: str, user_game_id: int,
                           for_update: bool = False) -> UserGame:
        user_game = UserGameRepository(db).find(user_game_id, user_id=user_id, for_update=for_update)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return user_game

    def _queue_dict(self, db, queue) -> Dict:
        members = self.queues.get_members(db, queue.id)
        data = queue.to_dict()
        data['games'] = [self._user_game_dict(ug) for ug in members]
        data['stats'] = self.queues.compute_queue_stats(members)
        return data

    @staticmethod
    def _user_game_dict(user_game: UserGame) -> Dict:
        data = user_game.to_dict()
        data['effective_main_time'] = get_effective_main_time(user_game)
        data['effective_completion_time'] = get_effective_completion_time(user_game)
        return data

    @staticmethod
    def _game_dict(game: Game) -> Dict:
        data = game.to_dict()
        data['source'] = 'local'
        return data

    @staticmethod
    def _catalog_entry_dict(entry: Dict, source: str) -> Dict:
        release = entry.get('release_date')
        return {
            'id': None,
            'title': entry.get('title'),
            'api_id': str(entry.get('external_id')),
            'api_source': source,
            'cover_image_url': entry.get('cover_url'),
            'release_date': release.isoformat() if hasattr(release, 'isoformat') else release,
            'publisher': entry.get('publisher'),
            'developer': entry.get('developer'),
            'description': entry.get('description') or '',
            'main_time': None,
            'completion_time': None,
            'source': 'external',
        }


def _minutes(value) -> Optional[int]:
    return None if value is None else int(round(value))
