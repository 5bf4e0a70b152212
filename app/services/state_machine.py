"""Status lifecycle for a user's game."""
import logging
from typing import Dict, List, Optional

from database import UserGame, utcnow
from ..errors import InvalidTransition, NotFound
from ..repositories.user_game_repository import UserGameRepository

WISHLIST = 'WISHLIST'
BACKLOG = 'BACKLOG'
CURRENTLY_PLAYING = 'CURRENTLY_PLAYING'
COMPLETED = 'COMPLETED'
ABANDONED = 'ABANDONED'

STATUSES = (WISHLIST, BACKLOG, CURRENTLY_PLAYING, COMPLETED, ABANDONED)

# Finished or dropped games must go back through active play before they can
# return to WISHLIST.
STATE_TRANSITIONS: Dict[str, List[str]] = {
    WISHLIST: [BACKLOG, CURRENTLY_PLAYING],
    BACKLOG: [WISHLIST, CURRENTLY_PLAYING],
    CURRENTLY_PLAYING: [BACKLOG, COMPLETED, ABANDONED],
    COMPLETED: [CURRENTLY_PLAYING],
    ABANDONED: [BACKLOG, CURRENTLY_PLAYING],
}


def is_valid_status(status) -> bool:
    return status in STATE_TRANSITIONS


def is_valid_transition(from_status, to_status) -> bool:
    """Return ``True`` if the table allows *from_status* → *to_status*.

    Self-transitions and unknown labels are always rejected.
    """
    return to_status in STATE_TRANSITIONS.get(from_status, ())


def get_valid_transitions(from_status) -> List[str]:
    """Return the allowed targets for *from_status* (``[]`` when unknown)."""
    return list(STATE_TRANSITIONS.get(from_status, ()))


def stamp_lifecycle_dates(user_game: UserGame, status: str) -> None:
    """Set ``started_at``/``completed_at`` on first entry into the state."""
    if status == CURRENTLY_PLAYING and user_game.started_at is None:
        user_game.started_at = utcnow()
    elif status == COMPLETED and user_game.completed_at is None:
        user_game.completed_at = utcnow()


class StateMachine:
    """Applies validated status changes to UserGame rows.

    All methods accept a *db* SQLAlchemy session as the first argument so
    that callers control the session lifecycle; nothing here commits.
    """

    def __init__(self) -> None:
        self._log = logging.getLogger('questlog.state')

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    is_valid_transition = staticmethod(is_valid_transition)
    get_valid_transitions = staticmethod(get_valid_transitions)

    def apply_transition(self, db, user_game_id: int, to_status: str,
                         user_id: Optional[str] = None) -> UserGame:
        """Move *user_game_id* to *to_status*.

        Args:
            db:           SQLAlchemy session.
            user_game_id: Target UserGame id.
            to_status:    Requested status label.
            user_id:      When given, the UserGame must belong to this user.

        Returns:
            The updated UserGame.

        Raises:
            NotFound:          The UserGame does not exist (or is not owned).
            InvalidTransition: The table does not allow the move; carries the
                               current status and the allowed targets.
        """
        user_game = UserGameRepository(db).find(user_game_id, user_id=user_id, for_update=True)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return self.transition(db, user_game, to_status)

    def transition(self, db, user_game: UserGame, to_status: str) -> UserGame:
        """Same as :meth:`apply_transition` for an already-loaded row."""
        current = user_game.status
        if not is_valid_transition(current, to_status):
            raise InvalidTransition(current, to_status, get_valid_transitions(current))
        user_game.status = to_status
        stamp_lifecycle_dates(user_game, to_status)
        db.flush()
        self._log.debug("UserGame %s: %s -> %s", user_game.id, current, to_status)
        return user_game
