"""
catalog_clients.py
==================
Collaborators that QuestLog uses to look up games it does not store yet:

* **Catalog lookup** — :class:`CatalogClient` (``search`` / ``get_details``);
  :class:`RawgCatalogClient` talks to the RAWG Video Games Database.
* **Completion times** — :class:`CompletionTimeClient`
  (``get_completion_times``); :class:`NullCompletionTimeClient` is used when
  no completion-time source is configured.

Every catalog entry is a plain dict::

    {
      "external_id":  "3498",
      "title":        "Grand Theft Auto V",
      "cover_url":    "https://...",
      "release_date": datetime.date(2013, 9, 17),   # or None
      "publisher":    "Rockstar Games",             # or None
      "developer":    "Rockstar North",             # or None
      "description":  "..."
    }

Transport and HTTP failures are raised as :class:`CatalogError`; deciding
whether that is fatal is up to the caller.

Configuration keys (``config.json``)
-------------------------------------
::

    "rawg_api_key": "YOUR_RAWG_API_KEY",
    "api_timeout_seconds": 10
"""
from __future__ import annotations

import datetime
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger('questlog.catalog')

_DEFAULT_TIMEOUT = 10  # seconds


class CatalogError(Exception):
    """Raised when an external catalog cannot be reached or answers badly."""


def _parse_date(value: Any) -> Optional[datetime.date]:
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class CatalogClient(ABC):
    """Abstract base class for game catalog clients."""

    @abstractmethod
    def search(self, query: str) -> List[Dict[str, Any]]:
        """Return catalog entries whose title matches *query*."""

    @abstractmethod
    def get_details(self, external_id: str) -> Dict[str, Any]:
        """Return the catalog entry for *external_id*.

        Raises:
            CatalogError: Unknown id or transport failure.
        """

    @abstractmethod
    def get_source_name(self) -> str:
        """Return the provenance tag stored on created games (e.g. ``'RAWG'``)."""


class CompletionTimeClient(ABC):
    """Abstract base class for completion-time estimate sources."""

    @abstractmethod
    def get_completion_times(self, title: str) -> Dict[str, Optional[int]]:
        """Return ``{'main_time': minutes|None, 'completion_time': minutes|None}``."""


class NullCompletionTimeClient(CompletionTimeClient):
    """Completion-time source that knows nothing."""

    def get_completion_times(self, title: str) -> Dict[str, Optional[int]]:
        return {'main_time': None, 'completion_time': None}


# ---------------------------------------------------------------------------
# RAWG
# ---------------------------------------------------------------------------

class RawgCatalogClient(CatalogClient):
    """Catalog client for https://rawg.io/apidocs.

    Args:
        api_key: RAWG API key (sent as the ``key`` query parameter).
        timeout: HTTP request timeout in seconds.
    """

    BASE_URL = "https://api.rawg.io/api"

    def __init__(self, api_key: str, timeout: int = _DEFAULT_TIMEOUT) -> None:
        if not api_key:
            raise ValueError("api_key must not be empty")
        self._api_key = api_key
        self._timeout = timeout
        self._session = requests.Session()

    def get_source_name(self) -> str:
        return "RAWG"

    def search(self, query: str, page_size: int = 20) -> List[Dict[str, Any]]:
        data = self._get('/games', {'search': query, 'page_size': page_size})
        results = data.get('results') or []
        logger.debug("RAWG search %r returned %d result(s)", query, len(results))
        return [self.map_game(raw) for raw in results]

    def get_details(self, external_id: str) -> Dict[str, Any]:
        return self.map_game(self._get(f'/games/{external_id}', {}))

    @staticmethod
    def map_game(raw: Dict[str, Any]) -> Dict[str, Any]:
        """Map a RAWG game payload to a catalog entry dict."""
        publishers = raw.get('publishers') or []
        developers = raw.get('developers') or []
        return {
            'external_id':  str(raw.get('id', '')),
            'title':        raw.get('name', ''),
            'cover_url':    raw.get('background_image'),
            'release_date': _parse_date(raw.get('released')),
            'publisher':    publishers[0].get('name') if publishers else None,
            'developer':    developers[0].get('name') if developers else None,
            'description':  raw.get('description_raw') or '',
        }

    # ------------------------------------------------------------------
    # HTTP helper
    # ------------------------------------------------------------------

    def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = dict(params, key=self._api_key)
        try:
            resp = self._session.get(f"{self.BASE_URL}{path}", params=params,
                                     timeout=self._timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            logger.warning("RAWG request %s failed: %s", path, e)
            raise CatalogError(f"RAWG request failed: {e}") from e
        except ValueError as e:
            raise CatalogError(f"RAWG returned invalid JSON for {path}") from e
