"""Endpoint registry — the relay's routing state.

Owns the collection of forwarding targets. Every mutation is applied in
memory under the write side of a reader/writer lock and then persisted
before the lock is released, so the file always reflects a state the
registry actually passed through.

Security contract:
- Endpoint ids are generated here, never taken from the client
- Validation happens before the lock is taken: a rejected request has no
  memory, disk or network side effects
- Persistence failures are logged and never roll back the in-memory change
- Callers only ever receive copies; nothing outside this module can mutate
  a live Endpoint
"""

from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Iterator

import httpx

from webhook_relay.errors import (
    EndpointNotFoundError,
    EndpointValidationError,
    PersistenceError,
)
from webhook_relay.models import Endpoint
from webhook_relay.routes import STATIC_ROUTES
from webhook_relay.storage import EndpointStore

logger = logging.getLogger(__name__)

_ALLOWED_SCHEMES = {"http", "https"}

# id -> display name for the built-in staging set
_DEFAULT_NAMES = {
    "fincra": "Fincra Staging",
    "splice": "Splice Staging",
    "useorange": "UseOrange Staging",
    "galoy": "Galoy Staging",
}


def default_endpoints() -> list[Endpoint]:
    """Return the built-in staging endpoints used when nothing is persisted."""
    return [
        Endpoint(id=key, url=STATIC_ROUTES[key].url, name=name, active=True)
        for key, name in _DEFAULT_NAMES.items()
    ]


def validate_url(url: str) -> str:
    """Check that *url* is an absolute http(s) URL with a host.

    Returns the URL with surrounding whitespace removed.

    Raises:
        EndpointValidationError: The URL does not parse or has no host.
    """
    candidate = url.strip()
    try:
        parsed = httpx.URL(candidate)
    except httpx.InvalidURL as e:
        raise EndpointValidationError("Invalid URL format", str(e)) from e

    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise EndpointValidationError(
            "Invalid URL format",
            f"expected an absolute http(s) URL, got {candidate!r}",
        )
    if not parsed.host:
        raise EndpointValidationError("Invalid URL format", "URL has no host")
    return candidate


def validate_name(name: str) -> str:
    if not name.strip():
        raise EndpointValidationError("Name cannot be empty")
    return name


class ReadWriteLock:
    """Many concurrent readers or one writer.

    Waiting writers block new readers, so a steady stream of list calls
    cannot starve a mutation.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class EndpointRegistry:
    """In-memory endpoint collection backed by an :class:`EndpointStore`."""

    def __init__(self, store: EndpointStore, endpoints: list[Endpoint] | None = None):
        self._store = store
        self._endpoints: list[Endpoint] = [e.model_copy() for e in endpoints or []]
        self._lock = ReadWriteLock()

    @classmethod
    def load(cls, store: EndpointStore) -> EndpointRegistry:
        """Build a registry from persisted state.

        A missing or malformed file is not fatal: the default staging set is
        used instead and written back immediately so file and memory agree.
        """
        endpoints: list[Endpoint] | None = None
        if store.exists():
            try:
                endpoints = store.load()
            except PersistenceError as e:
                logger.error("Error loading endpoints, using defaults: %s", e)
            else:
                logger.info("Loaded %d endpoints from %s", len(endpoints), store.path)
        else:
            logger.info("No endpoints file at %s, using defaults", store.path)

        if endpoints is None:
            registry = cls(store, default_endpoints())
            registry._persist()
            return registry

        cleaned, changed = _normalize_ids(endpoints)
        registry = cls(store, cleaned)
        if changed:
            registry._persist()
        return registry

    # ── Queries ───────────────────────────────────────────────────────────

    def list_endpoints(self) -> list[Endpoint]:
        """Return a snapshot copy of every endpoint."""
        with self._lock.read_locked():
            return [e.model_copy() for e in self._endpoints]

    def active_endpoints(self) -> list[Endpoint]:
        """Return a snapshot copy of the endpoints eligible for fan-out."""
        with self._lock.read_locked():
            return [e.model_copy() for e in self._endpoints if e.active]

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._endpoints)

    # ── Mutations ─────────────────────────────────────────────────────────

    def register(self, url: str, name: str, active: bool = False) -> list[Endpoint]:
        """Add a new endpoint and return the updated collection.

        Raises:
            EndpointValidationError: Invalid URL or blank name.
        """
        url = validate_url(url)
        name = validate_name(name)

        with self._lock.write_locked():
            endpoint = Endpoint(id=self._new_id(), url=url, name=name, active=active)
            self._endpoints.append(endpoint)
            self._persist()
            logger.info("Registered endpoint %s (%s) -> %s", endpoint.id, name, url)
            return [e.model_copy() for e in self._endpoints]

    def set_active(self, endpoint_id: str, active: bool) -> Endpoint:
        """Flip an endpoint's ``active`` flag and return the updated endpoint.

        Raises:
            EndpointNotFoundError: No endpoint has that id.
        """
        with self._lock.write_locked():
            endpoint = self._find(endpoint_id)
            endpoint.active = active
            self._persist()
            logger.info("Endpoint %s set active=%s", endpoint_id, active)
            return endpoint.model_copy()

    def delete(self, endpoint_id: str) -> list[Endpoint]:
        """Remove an endpoint and return the remaining collection.

        Raises:
            EndpointNotFoundError: No endpoint has that id.
        """
        with self._lock.write_locked():
            endpoint = self._find(endpoint_id)
            self._endpoints.remove(endpoint)
            self._persist()
            logger.info("Deleted endpoint %s (%s)", endpoint_id, endpoint.name)
            return [e.model_copy() for e in self._endpoints]

    # ── Internals (callers hold the write lock) ───────────────────────────

    def _find(self, endpoint_id: str) -> Endpoint:
        for endpoint in self._endpoints:
            if endpoint.id == endpoint_id:
                return endpoint
        raise EndpointNotFoundError(endpoint_id)

    def _new_id(self) -> str:
        taken = {e.id for e in self._endpoints}
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in taken:
                return candidate

    def _persist(self) -> None:
        try:
            self._store.save(self._endpoints)
        except PersistenceError as e:
            logger.error("Error saving endpoints: %s", e)


def _normalize_ids(endpoints: list[Endpoint]) -> tuple[list[Endpoint], bool]:
    """Give id-less records a fresh id and drop later duplicates of an id."""
    seen: set[str] = set()
    cleaned: list[Endpoint] = []
    changed = False
    for endpoint in endpoints:
        if not endpoint.id:
            endpoint = endpoint.model_copy(update={"id": str(uuid.uuid4())})
            changed = True
        if endpoint.id in seen:
            logger.warning("Dropping duplicate endpoint id %s (%s)", endpoint.id, endpoint.name)
            changed = True
            continue
        seen.add(endpoint.id)
        cleaned.append(endpoint)
    return cleaned, changed
