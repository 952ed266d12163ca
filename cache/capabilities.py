"""
cache/capabilities.py -- TTL cache of optional database features.

The search engine uses two PostgreSQL extensions when they are installed:
pg_trgm (similarity() for fuzzy matching) and unaccent (accent folding).
Whether they exist is probed once per TTL window and cached here, so a
search request costs no extra round trip in the common case.

Probe failures never reach the caller: the feature is recorded as
unsupported for the TTL window and search falls back to plain substring
matching.

Usage:
    cache = CapabilityCache(ttl=3600)
    probe = CapabilityProbe(store.engine, cache)
    if probe.is_supported(Feature.fuzzy): ...
    probe.mark_unsupported(Feature.fuzzy, "similarity() failed")   # after a runtime error
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.errors import DependencyDegraded

logger = logging.getLogger("farmvet.capabilities")

_DEFAULT_TTL = 60 * 60  # 1 hour in seconds


class Feature(str, Enum):
    fuzzy = "fuzzy"
    accent_folding = "accent_folding"


# Feature -> PostgreSQL extension that provides it.
EXTENSIONS: dict[Feature, str] = {
    Feature.fuzzy: "pg_trgm",
    Feature.accent_folding: "unaccent",
}

_PROBE_SQL = text("SELECT 1 FROM pg_extension WHERE extname = :name")


class CapabilityCache:
    """In-process feature -> bool map with per-entry expiry.

    The clock is injectable so tests can move time without sleeping.
    """

    def __init__(self, ttl: int = _DEFAULT_TTL, clock: Callable[[], float] = time.time) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[Feature, tuple[bool, float]] = {}
        self._lock = threading.Lock()

    def get(self, feature: Feature) -> bool | None:
        """Return the cached value, or None if absent or expired."""
        with self._lock:
            entry = self._entries.get(feature)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._entries[feature]
                return None
            return value

    def set(self, feature: Feature, value: bool, ttl: int | None = None) -> None:
        ttl = self.ttl if ttl is None else ttl
        with self._lock:
            self._entries[feature] = (bool(value), self._clock() + ttl)

    def invalidate(self, feature: Feature | None = None) -> None:
        """Drop one entry, or every entry when feature is None."""
        with self._lock:
            if feature is None:
                self._entries.clear()
            else:
                self._entries.pop(feature, None)


class CapabilityProbe:
    """Answers "is this feature available?" from the cache or the database."""

    def __init__(self, engine: Engine, cache: CapabilityCache) -> None:
        self._engine = engine
        self.cache = cache

    def is_supported(self, feature: Feature) -> bool:
        cached = self.cache.get(feature)
        if cached is not None:
            return cached
        try:
            value = self._probe(feature)
        except DependencyDegraded as exc:
            logger.warning("Capability %s unavailable: %s", exc.feature, exc)
            value = False
        self.cache.set(feature, value)
        return value

    def mark_unsupported(self, feature: Feature, reason: str = "") -> None:
        """Record a runtime failure of a feature the probe reported as present."""
        logger.warning("Disabling capability %s for %ss: %s", feature.value, self.cache.ttl, reason)
        self.cache.set(feature, False)

    def _probe(self, feature: Feature) -> bool:
        # The extensions are PostgreSQL-only; other dialects never have them.
        if self._engine.dialect.name != "postgresql":
            return False
        extension = EXTENSIONS[feature]
        try:
            with self._engine.connect() as conn:
                row = conn.execute(_PROBE_SQL, {"name": extension}).first()
        except SQLAlchemyError as exc:
            raise DependencyDegraded(feature.value, str(exc)) from exc
        supported = row is not None
        logger.info("Capability %s (%s): %s", feature.value, extension, "available" if supported else "missing")
        return supported
