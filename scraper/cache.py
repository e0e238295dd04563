"""In-memory caches owned by the scanner.

Nothing here is persisted: the identity cache lives as long as the
process, the season cache as long as one scan.
"""
from __future__ import annotations

import threading

from .models import EpisodeRecord, SeriesIdentity


class SeriesIdentityCache:
    """Confirmed catalog identities keyed by series name."""

    def __init__(self):
        self._lock = threading.Lock()
        self._identities: dict[str, SeriesIdentity] = {}

    @staticmethod
    def _normalize_key(key: str) -> str:
        """Normalize a string for use as cache key."""
        return " ".join(key.lower().split())

    def get(self, name: str) -> SeriesIdentity | None:
        with self._lock:
            return self._identities.get(self._normalize_key(name))

    def set(self, identity: SeriesIdentity, *names: str) -> None:
        """Cache *identity* under every non-empty name given."""
        with self._lock:
            for name in names:
                if name and name.strip():
                    self._identities[self._normalize_key(name)] = identity

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._identities)

    def clear(self) -> None:
        """Clear all cached identities."""
        with self._lock:
            self._identities.clear()


class SeasonCache:
    """Season episode listings for the current scan."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seasons: dict[tuple[str, int], list[EpisodeRecord]] = {}

    def get(self, catalog_id: str, season: int) -> list[EpisodeRecord] | None:
        with self._lock:
            episodes = self._seasons.get((catalog_id, season))
            return list(episodes) if episodes is not None else None

    def set(self, catalog_id: str, season: int, episodes: list[EpisodeRecord]) -> None:
        with self._lock:
            self._seasons[(catalog_id, season)] = list(episodes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seasons)
