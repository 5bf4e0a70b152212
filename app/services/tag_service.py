"""Business logic for custom game tags."""
import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from database import UserGame
from ..errors import DuplicateTag, EmptyTag, NotFound
from ..repositories.tag_repository import TagRepository
from ..repositories.user_game_repository import UserGameRepository


def normalize_tag(raw) -> str:
    """Trim and lower-case *raw* (``None`` normalises to ``''``)."""
    return (raw or '').strip().lower()


def normalize_tag_list(tags: Optional[Iterable[str]]) -> List[str]:
    """Normalise, drop blanks, de-duplicate and sort *tags*.

    A bare string is one tag, not a sequence of one-letter tags.
    """
    if isinstance(tags, str):
        tags = [tags]
    return sorted({normalize_tag(t) for t in (tags or ())} - {''})


class TagService:
    """Manages per-UserGame tag labels.

    Rules
    -----
    * Tags are stored trimmed and lower-cased; blank tags are rejected.
    * Adding a tag that is already present is an error (:class:`DuplicateTag`),
      not a silent no-op.
    * Tag filters use AND semantics, and an empty filter matches nothing.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers control the session lifecycle.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger('questlog.tags')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_tag(self, db, user_game_id: int, raw_tag: str,
                user_id: Optional[str] = None) -> str:
        """Attach *raw_tag* to *user_game_id*.

        Returns:
            The normalised tag.

        Raises:
            EmptyTag:     Nothing is left after trimming.
            NotFound:     The UserGame does not exist (or is not owned).
            DuplicateTag: The normalised tag is already attached.
        """
        tag = normalize_tag(raw_tag)
        if not tag:
            raise EmptyTag()
        self._require_user_game(db, user_game_id, user_id)
        repo = TagRepository(db)
        if repo.find(user_game_id, tag) is not None:
            raise DuplicateTag(tag)
        try:
            repo.create(user_game_id, tag)
        except IntegrityError as e:
            # Lost a race with a concurrent insert of the same tag
            raise DuplicateTag(tag) from e
        self._log.debug("Tagged UserGame %s with %r", user_game_id, tag)
        return tag

    def remove_tag(self, db, user_game_id: int, raw_tag: str,
                   user_id: Optional[str] = None) -> str:
        """Detach *raw_tag* (normalised before lookup) from *user_game_id*.

        Raises:
            NotFound: The UserGame or the tag does not exist.
        """
        tag = normalize_tag(raw_tag)
        self._require_user_game(db, user_game_id, user_id)
        repo = TagRepository(db)
        row = repo.find(user_game_id, tag)
        if row is None:
            raise NotFound(f'Tag "{tag}" not found on this game')
        repo.delete(row)
        return tag

    def list_tags(self, db, user_game_id: int, user_id: Optional[str] = None) -> List[str]:
        """Return the tags on *user_game_id*, sorted ascending."""
        if user_id is not None:
            self._require_user_game(db, user_game_id, user_id, for_update=False)
        return TagRepository(db).list_for_user_game(user_game_id)

    def list_all_tags_for_user(self, db, user_id: str) -> List[str]:
        """Return every distinct tag across *user_id*'s collection, sorted."""
        return TagRepository(db).distinct_for_user(user_id)

    def find_user_games_by_tags(self, db, user_id: str,
                                tags: Optional[Iterable[str]],
                                exclude_queue_id: Optional[int] = None) -> List[UserGame]:
        """Return *user_id*'s games carrying **every** tag in *tags*.

        An empty or ``None`` filter returns ``[]`` without querying storage.
        """
        if not tags:
            return []
        normalized = normalize_tag_list(tags)
        if not normalized:
            return []
        return UserGameRepository(db).find_by_tags(
            user_id, normalized, exclude_queue_id=exclude_queue_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_user_game(db, user_game_id: int, user_id: Optional[str],
                           for_update: bool = True) -> UserGame:
        user_game = UserGameRepository(db).find(
            user_game_id, user_id=user_id, for_update=for_update)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return user_game
