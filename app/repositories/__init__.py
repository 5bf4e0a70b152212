"""Repository package — expose all concrete repositories from one import."""
from .game_repository import GameRepository
from .user_game_repository import UserGameRepository
from .tag_repository import TagRepository
from .queue_repository import QueueRepository

__all__ = [
    'GameRepository',
    'UserGameRepository',
    'TagRepository',
    'QueueRepository',
]
