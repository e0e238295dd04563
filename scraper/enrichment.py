"""Metadata enrichment for a confirmed series group."""
from __future__ import annotations

import logging
from dataclasses import replace

from .cache import SeasonCache
from .models import (
    CandidateItem,
    EpisodeRecord,
    MANUAL_CONFIDENCE,
    MatchOrigin,
    SeriesGroup,
    SeriesIdentity,
)

log = logging.getLogger(__name__)


def find_episode(episodes: list[EpisodeRecord], number: int | None) -> EpisodeRecord | None:
    if number is None:
        return None
    for ep in episodes:
        if ep.episode == number:
            return ep
    return None


class MetadataEnricher:
    """Resolves each item of a series group to a catalog episode.

    Constructor args:
        catalog:          provides ``list_season_episodes`` and ``get_episode``.
        semantic_matcher: provides ``resolve_episode_against_list``.
    """

    def __init__(self, catalog, semantic_matcher):
        self._catalog = catalog
        self._semantic = semantic_matcher

    def season_episodes(
        self,
        catalog_id: str,
        season: int,
        season_cache: SeasonCache,
    ) -> list[EpisodeRecord]:
        """Episode listing for one season, fetched at most once per scan."""
        cached = season_cache.get(catalog_id, season)
        if cached is not None:
            return cached

        log.info("Fetching metadata for season %d of %s", season, catalog_id)
        try:
            episodes = list(self._catalog.list_season_episodes(catalog_id, season))
        except Exception as e:
            log.warning("Season %d listing for %s failed: %s", season, catalog_id, e)
            episodes = []
        season_cache.set(catalog_id, season, episodes)
        return episodes

    def enrich(
        self,
        group: SeriesGroup,
        identity: SeriesIdentity,
        season_cache: SeasonCache,
        skip_metadata: bool = False,
    ) -> list[CandidateItem]:
        """
        Build candidate items for *group*.

        Args:
            group: The series group to enrich
            identity: Confirmed catalog identity of the group
            season_cache: Scan-scoped season listings
            skip_metadata: Only fetch season sizes, no per-episode lookup

        Returns:
            One CandidateItem per group item, in group order
        """
        listings = {
            season: self.season_episodes(identity.catalog_id, season, season_cache)
            for season in group.seasons
        }

        candidates = []
        for item in group.items:
            match = item.match
            episodes = listings.get(match.season_or_default, [])
            if match.season is None:
                match = replace(match, season=match.season_or_default)

            record = None
            if not skip_metadata:
                record = find_episode(episodes, match.episode)
                if record is None and episodes:
                    number = self._semantic.resolve_episode_against_list(item.file.name, episodes)
                    record = find_episode(episodes, number)
                    if record is not None:
                        log.info("Fuzzy matched %s to episode %d", item.file.name, number)
                        match = replace(match, episode=number)
                if record is None:
                    log.info("No catalog episode for %s (S%sE%s)",
                             item.file.name, match.season, match.episode)

            candidates.append(CandidateItem(
                file=item.file,
                match=match,
                series_catalog_id=identity.catalog_id,
                season_episode_count=len(episodes),
                metadata=record,
            ))
        return candidates

    def refresh_item(
        self,
        candidate: CandidateItem,
        season: int,
        episode: int,
        season_cache: SeasonCache,
    ) -> CandidateItem:
        """Apply a manual season/episode correction and re-fetch its metadata."""
        if not candidate.series_catalog_id:
            return candidate

        episodes = self.season_episodes(candidate.series_catalog_id, season, season_cache)
        record = find_episode(episodes, episode)
        if record is None:
            try:
                record = self._catalog.get_episode(candidate.series_catalog_id, season, episode)
            except Exception as e:
                log.warning("Episode lookup S%dE%d failed: %s", season, episode, e)
                record = None

        match = replace(
            candidate.match,
            matched=True,
            season=season,
            episode=episode,
            confidence=MANUAL_CONFIDENCE,
            origin=MatchOrigin.MANUAL,
        )
        return replace(
            candidate,
            match=match,
            season_episode_count=len(episodes),
            metadata=record,
        )
