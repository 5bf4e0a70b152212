"""Effective play-time helpers (custom override or catalog estimate)."""
from typing import Optional

from database import UserGame


def get_effective_main_time(user_game: Optional[UserGame]) -> Optional[int]:
    """Return the main-story time in minutes used for display and stats.

    The user's ``custom_main_time`` wins when it is truthy; ``None`` *and* ``0``
    both fall back to the Game's ``main_time``.  Returns ``None`` when neither
    source has data.
    """
    if user_game is None:
        return None
    game = user_game.game
    return user_game.custom_main_time or (game.main_time if game is not None else None) or None


def get_effective_completion_time(user_game: Optional[UserGame]) -> Optional[int]:
    """Completionist counterpart of :func:`get_effective_main_time`."""
    if user_game is None:
        return None
    game = user_game.game
    return (user_game.custom_completion_time
            or (game.completion_time if game is not None else None)
            or None)


def format_hours(minutes) -> str:
    """Format *minutes* as whole hours, halves rounding up, e.g. ``'12h'`` (``'0h'`` when empty)."""
    if not minutes:
        return '0h'
    return f'{int(minutes / 60 + 0.5)}h'


def format_time(minutes) -> str:
    """Format *minutes* as ``'H hours, M minutes'`` (``'Unknown'`` when empty)."""
    if not minutes:
        return 'Unknown'
    hours = int(minutes // 60)
    mins = round(minutes % 60)
    if hours == 0:
        return f'{mins} minutes'
    if mins == 0:
        return f'{hours} hours'
    return f'{hours} hours, {mins} minutes'
