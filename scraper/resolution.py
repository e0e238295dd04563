"""Series resolution state machine.

Pure Python -- no Qt imports.  :class:`SeriesResolver` drives one
:class:`SeriesResolution` from a matcher-derived name to a confirmed
catalog identity, suspending on the decision broker whenever a human
has to pick a search result.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from .cache import SeriesIdentityCache
from .confirmation import SERIES, DecisionBroker
from .models import SeriesDecision, SeriesIdentity, SeriesSearchResult

log = logging.getLogger(__name__)


class ResolutionState(Enum):
    SEARCHING = "searching"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


TERMINAL_STATES = (ResolutionState.RESOLVED, ResolutionState.CANCELLED)


@dataclass
class SeriesResolution:
    """All mutable state for one series traversing the state machine."""
    original_name: str
    query: str
    files: list[str] = field(default_factory=list)
    state: ResolutionState = ResolutionState.SEARCHING
    candidates: list[SeriesSearchResult] = field(default_factory=list)
    identity: SeriesIdentity | None = None
    searches: int = 0

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def request_payload(self) -> dict:
        """Build the payload sent with the confirmation request."""
        return {
            "detected_name": self.original_name,
            "query": self.query,
            "results": list(self.candidates),
            "files": list(self.files),
            "attempt": self.searches,
        }


class SeriesResolver:
    """Resolves series names to catalog identities.

    Constructor args:
        catalog: provides ``search_series(query)``.
        broker:  DecisionBroker used to suspend for a human decision.
        cache:   process-lifetime SeriesIdentityCache.
    """

    def __init__(self, catalog, broker: DecisionBroker, cache: SeriesIdentityCache):
        self._catalog = catalog
        self._broker = broker
        self._cache = cache

    def resolve(
        self,
        series_name: str,
        files: list[str] | None = None,
        force_confirmation: bool = False,
    ) -> SeriesIdentity | None:
        """
        Resolve *series_name*, blocking until confirmed or cancelled.

        Args:
            series_name: Normalized name from the matchers
            files: File names shown alongside the request
            force_confirmation: Ignore a cache hit and always ask

        Returns:
            The confirmed identity, or None if the user cancelled
        """
        if not force_confirmation:
            cached = self._cache.get(series_name)
            if cached:
                log.info("Using cached identity for '%s': %s", series_name, cached.catalog_id)
                return cached

        resolution = SeriesResolution(
            original_name=series_name,
            query=series_name,
            files=list(files or []),
        )
        while not resolution.done:
            self.step(resolution)
        return resolution.identity

    def step(self, resolution: SeriesResolution) -> None:
        """Advance the state machine one step."""
        if resolution.state == ResolutionState.SEARCHING:
            self._search(resolution)
        elif resolution.state == ResolutionState.AWAITING_CONFIRMATION:
            decision = self._broker.request(SERIES, resolution.request_payload())
            self.apply_decision(resolution, decision)

    def apply_decision(
        self,
        resolution: SeriesResolution,
        decision: SeriesDecision | None,
    ) -> None:
        """Transition on the external decision for the current candidates."""
        if decision is None or decision.cancelled:
            log.info("Series '%s' cancelled", resolution.original_name)
            resolution.state = ResolutionState.CANCELLED
            return

        if decision.identity is not None:
            identity = decision.identity
            if not identity.name:
                identity = SeriesIdentity(
                    catalog_id=identity.catalog_id,
                    name=resolution.query,
                    poster_url=identity.poster_url,
                )
            # Confirmed name, the corrected query and the matcher name all
            # map to this identity so later groups skip the search.
            self._cache.set(identity, identity.name, resolution.query, resolution.original_name)
            resolution.identity = identity
            resolution.state = ResolutionState.RESOLVED
            log.info("Series '%s' confirmed as '%s' (%s)",
                     resolution.original_name, identity.name, identity.catalog_id)
            return

        query = decision.search_query.strip()
        log.info("Searching again for '%s' as '%s'", resolution.original_name, query)
        resolution.query = query
        resolution.state = ResolutionState.SEARCHING

    def _search(self, resolution: SeriesResolution) -> None:
        resolution.searches += 1
        try:
            results = self._catalog.search_series(resolution.query)
        except Exception as e:
            log.warning("Catalog search for '%s' failed: %s", resolution.query, e)
            results = []
        log.info("Found %d catalog result(s) for '%s'", len(results), resolution.query)
        resolution.candidates = list(results)
        resolution.state = ResolutionState.AWAITING_CONFIRMATION
