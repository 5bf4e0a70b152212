"""Services package — expose all concrete services from one import."""
from .state_machine import StateMachine
from .progress_service import ProgressService
from .tag_service import TagService
from .queue_service import QueueService
from .collection_service import CollectionService, UserGamePatch

__all__ = [
    'StateMachine',
    'ProgressService',
    'TagService',
    'QueueService',
    'CollectionService',
    'UserGamePatch',
]
