"""Error kinds raised by the QuestLog services.

Every error carries an ``http_status`` so the request layer can translate it
without a lookup table, and :meth:`QuestLogError.to_dict` renders the JSON
error body.
"""
from typing import Dict, List, Optional


class QuestLogError(Exception):
    """Base class for all domain errors."""

    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {'error': self.message}


class NotFound(QuestLogError):
    """Referenced record does not exist or does not belong to the caller."""

    http_status = 404


class InvalidTransition(QuestLogError):
    """The state machine rejected a status change."""

    http_status = 400

    def __init__(self, current: Optional[str], target: str, allowed: List[str]) -> None:
        super().__init__(f"Invalid transition from {current} to {target}")
        self.current = current
        self.target = target
        self.allowed = list(allowed)

    def to_dict(self) -> Dict:
        return {
            'error': self.message,
            'current_status': self.current,
            'allowed_transitions': self.allowed,
        }


class DuplicateName(QuestLogError):
    """A queue with the same name already exists for the user."""

    http_status = 409

    def __init__(self, name: str) -> None:
        super().__init__(f'Queue with name "{name}" already exists')
        self.name = name


class DuplicateTag(QuestLogError):
    """The normalised tag is already attached to the UserGame."""

    http_status = 409

    def __init__(self, tag: str) -> None:
        super().__init__(f'Tag "{tag}" already exists on this game')
        self.tag = tag


class EmptyTag(QuestLogError):
    http_status = 400

    def __init__(self) -> None:
        super().__init__('Tag cannot be empty')


class Forbidden(QuestLogError):
    """Operation is not allowed on this record (e.g. deleting the default queue)."""

    http_status = 403


class ValidationError(QuestLogError):
    """A request field failed validation; nothing was written."""

    http_status = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field

    def to_dict(self) -> Dict:
        return {'error': self.message, 'field': self.field}


class ExternalLookupFailure(QuestLogError):
    """A catalog collaborator failed where no local fallback exists."""

    http_status = 502
