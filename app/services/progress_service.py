"""Completion-percentage tracking for a user's game."""
import numbers
from typing import Optional

from database import UserGame
from ..errors import NotFound, ValidationError
from ..repositories.user_game_repository import UserGameRepository

MIN_PROGRESS = 0
MAX_PROGRESS = 100


def validate_progress(percent) -> None:
    """Raise :class:`ValidationError` unless *percent* is a real number."""
    if isinstance(percent, bool) or not isinstance(percent, numbers.Real):
        raise ValidationError('progress_percent', 'must be a number')
    if percent != percent:  # NaN
        raise ValidationError('progress_percent', 'must be a number')


def clamp_progress(percent):
    """Clamp *percent* into ``[0, 100]``; out-of-range values are never an error."""
    return max(MIN_PROGRESS, min(MAX_PROGRESS, percent))


class ProgressService:
    """Bounds a game's completion percentage.

    Progress is independent of status: reaching 100% does not complete the
    game, that decision belongs to the caller.
    """

    def set_progress(self, db, user_game_id: int, percent,
                     user_id: Optional[str] = None) -> UserGame:
        """Store the clamped *percent* on *user_game_id*.

        Raises:
            ValidationError: *percent* is not numeric.
            NotFound:        The UserGame does not exist (or is not owned).
        """
        validate_progress(percent)
        user_game = UserGameRepository(db).find(user_game_id, user_id=user_id, for_update=True)
        if user_game is None:
            raise NotFound(f"Game {user_game_id} not found")
        return self.apply(db, user_game, percent)

    def apply(self, db, user_game: UserGame, percent) -> UserGame:
        user_game.progress_percent = clamp_progress(percent)
        db.flush()
        return user_game
