"""Repository base class used by all concrete repositories."""
import logging


class BaseRepository:
    """Wraps a single SQLAlchemy session for one unit of work.

    Repositories never commit: the caller that opened the session owns the
    transaction (see :meth:`database.Database.session_scope`).  Mutating
    helpers only ``flush`` so that constraint violations surface at the point
    of the write and generated ids become available.
    """

    def __init__(self, db) -> None:
        self._db = db
        self._log = logging.getLogger(f'questlog.repository.{type(self).__name__}')

    def add(self, obj):
        self._db.add(obj)
        self._db.flush()
        return obj

    def delete(self, obj) -> None:
        self._db.delete(obj)
        self._db.flush()

    def flush(self) -> None:
        self._db.flush()
