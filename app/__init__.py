"""
QuestLog application package.

Layered architecture:

  app/repositories/  — pure I/O: SQLAlchemy queries over one session.
  app/services/      — business logic: validation, state rules, ordering.
  app/errors.py      — domain error kinds, each carrying its HTTP status.

``QuestLog`` (in ``questlog.py``) is the integration point: it builds the
:class:`database.Database` and the catalog clients once and hands them to
:class:`app.services.CollectionService`.  Route handlers in
``questlog_api.py`` and the CLI only talk to that façade.
"""
