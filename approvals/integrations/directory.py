"""
Directory Adapter — read-only user → designation / manager lookups.

The user, department and designation directories live in the HR side of
the ERP. The approval engine never owns that data; it reads it through the
small port defined here so it can be swapped for a fake in tests.

Implementations:
    StaticDirectory — in-memory mapping (tests, seeding, single-node setups).
    HttpDirectory   — `requests`-based client of the directory service at
                      DIRECTORY_URL, with a bounded per-user TTL cache.

All outbound HTTP calls to the directory go through HttpDirectory; direct
`requests` calls in services or blueprints are not allowed.

Wire format expected from the directory service:
    GET {DIRECTORY_URL}/users/<id>  →  {"id": 7, "designation_id": 2, "parent_id": 3}
"""

from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 5
_DEFAULT_CACHE_TTL = 60
MAX_CACHE_ENTRIES = 5000


class DirectoryUnavailableError(Exception):
    """Raised when the directory service cannot be reached or answers garbage.

    Surfaced by blueprints as 503; the engine never guesses a designation.
    """


class DirectoryAdapter(Protocol):
    """Port consumed by the Step Resolver."""

    def designation_of(self, user_id: int) -> int | None:
        """Return the user's current designation id, or None if unknown."""

    def manager_of(self, user_id: int) -> int | None:
        """Return the user's direct manager (parent) id, or None at the top."""


class StaticDirectory:
    """In-memory directory.

    Usage:
        directory = StaticDirectory(
            designations={7: 1, 8: 2},
            managers={8: 7},
        )
    """

    def __init__(
        self,
        designations: dict[int, int] | None = None,
        managers: dict[int, int] | None = None,
    ) -> None:
        self._designations: dict[int, int] = dict(designations or {})
        self._managers: dict[int, int] = dict(managers or {})

    def designation_of(self, user_id: int) -> int | None:
        return self._designations.get(user_id)

    def manager_of(self, user_id: int) -> int | None:
        return self._managers.get(user_id)

    def assign(self, user_id: int, designation_id: int | None, manager_id: int | None = None) -> None:
        """Set (or clear) a user's designation and optionally their manager."""
        if designation_id is None:
            self._designations.pop(user_id, None)
        else:
            self._designations[user_id] = designation_id
        if manager_id is not None:
            self._managers[user_id] = manager_id


class HttpDirectory:
    """Directory service client.

    Pass a custom `session` in tests to intercept HTTP calls without making
    real network requests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = _DEFAULT_TIMEOUT,
        cache_ttl: int = _DEFAULT_CACHE_TTL,
        max_entries: int = MAX_CACHE_ENTRIES,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.max_entries = max_entries
        self._session = session
        # user_id → (fetched_at_monotonic, record | None)
        self._cache: dict[int, tuple[float, dict | None]] = {}
        self._lock = Lock()

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _fetch_user(self, user_id: int) -> dict | None:
        now = time.monotonic()
        with self._lock:
            cached = self._cache.get(user_id)
        if cached and now - cached[0] < self.cache_ttl:
            return cached[1]

        url = f"{self.base_url}/users/{user_id}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Directory lookup failed user_id=%s error=%s", user_id, exc)
            raise DirectoryUnavailableError(f"Directory service unreachable: {exc}") from exc

        if resp.status_code == 404:
            record = None
        elif resp.ok:
            try:
                record = resp.json()
            except ValueError as exc:
                raise DirectoryUnavailableError("Directory service returned invalid JSON") from exc
            if not isinstance(record, dict):
                raise DirectoryUnavailableError("Directory service returned an unexpected payload")
        else:
            logger.error("Directory lookup HTTP %s user_id=%s", resp.status_code, user_id)
            raise DirectoryUnavailableError(f"Directory service answered HTTP {resp.status_code}")

        with self._lock:
            self._cache[user_id] = (now, record)
            self._enforce_cache_limit()
        return record

    def _enforce_cache_limit(self) -> None:
        """Evict the oldest lookups beyond max_entries. Must hold lock."""
        overflow = len(self._cache) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._cache, key=lambda uid: self._cache[uid][0])
            for uid in oldest[:overflow]:
                del self._cache[uid]

    @staticmethod
    def _int_or_none(value) -> int | None:
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def designation_of(self, user_id: int) -> int | None:
        record = self._fetch_user(user_id)
        return self._int_or_none(record.get("designation_id")) if record else None

    def manager_of(self, user_id: int) -> int | None:
        record = self._fetch_user(user_id)
        return self._int_or_none(record.get("parent_id")) if record else None

    def invalidate(self, user_id: int | None = None) -> None:
        """Evict one user (or everyone) from the cache."""
        with self._lock:
            if user_id is None:
                self._cache.clear()
            else:
                self._cache.pop(user_id, None)


def build_directory(config: dict) -> DirectoryAdapter:
    """Create the directory adapter configured for the app.

    DIRECTORY_URL set → HttpDirectory; otherwise an empty StaticDirectory
    (every designation lookup answers None, so only user-bound steps can
    be decided).
    """
    url = config.get("DIRECTORY_URL") or ""
    if url:
        logger.info("Using HTTP directory at %s", url)
        return HttpDirectory(
            url,
            timeout=config.get("DIRECTORY_TIMEOUT", _DEFAULT_TIMEOUT),
            cache_ttl=config.get("DIRECTORY_CACHE_TTL", _DEFAULT_CACHE_TTL),
            max_entries=config.get("DIRECTORY_CACHE_MAX_ENTRIES", MAX_CACHE_ENTRIES),
        )
    logger.warning("DIRECTORY_URL not configured — designation steps cannot be resolved")
    return StaticDirectory()
