from conftest import FakeCatalog, FakeService, episode

from scraper.cache import SeasonCache
from scraper.enrichment import MetadataEnricher
from scraper.models import (
    FileEntry,
    MatchOrigin,
    MatchResult,
    SeriesGroup,
    SeriesIdentity,
    SeriesItem,
)
from scraper.semantic import SemanticMatcher

IDENTITY = SeriesIdentity("100", "Foo")


def group(*specs):
    items = []
    for name, season, number in specs:
        items.append(SeriesItem(
            FileEntry(name, f"/Foo/{name}"),
            MatchResult(True, "Foo", season, number),
        ))
    return SeriesGroup("Foo", tuple(items))


def enricher(catalog, reply=None):
    return MetadataEnricher(catalog, SemanticMatcher(FakeService(reply)))


def test_exact_episode_match():
    catalog = FakeCatalog(seasons={("100", 1): [episode(1, "Pilot"), episode(2)]})
    candidates = enricher(catalog).enrich(group(("a.mkv", 1, 1)), IDENTITY, SeasonCache())

    assert candidates[0].metadata.title == "Pilot"
    assert candidates[0].season_episode_count == 2
    assert candidates[0].series_catalog_id == "100"


def test_fuzzy_match_adopts_episode_number():
    catalog = FakeCatalog(seasons={("100", 1): [episode(1), episode(2), episode(3, "Finale")]})
    candidates = enricher(catalog, {"episodeNumber": 3}).enrich(
        group(("foo finale.mkv", 1, None)), IDENTITY, SeasonCache(),
    )

    assert candidates[0].match.episode == 3
    assert candidates[0].metadata.title == "Finale"


def test_unresolvable_item_keeps_no_metadata():
    catalog = FakeCatalog(seasons={("100", 1): [episode(1)]})
    candidates = enricher(catalog, {"episodeNumber": None}).enrich(
        group(("a.mkv", 1, 9)), IDENTITY, SeasonCache(),
    )
    assert candidates[0].metadata is None
    assert candidates[0].match.episode == 9


def test_missing_season_defaults_to_one():
    catalog = FakeCatalog(seasons={("100", 1): [episode(4)]})
    candidates = enricher(catalog).enrich(group(("a.mkv", None, 4)), IDENTITY, SeasonCache())
    assert candidates[0].match.season == 1
    assert candidates[0].metadata.episode == 4


def test_season_listing_is_fetched_once_per_scan():
    catalog = FakeCatalog(seasons={("100", 1): [episode(1), episode(2)]})
    season_cache = SeasonCache()
    service = enricher(catalog)

    service.enrich(group(("a.mkv", 1, 1)), IDENTITY, season_cache)
    service.enrich(group(("b.mkv", 1, 2), ("c.mkv", 2, 1)), IDENTITY, season_cache)

    assert catalog.season_calls == [("100", 1), ("100", 2)]


def test_season_failure_yields_empty_listing():
    class BrokenCatalog(FakeCatalog):
        def list_season_episodes(self, series_id, season):
            raise ConnectionError("offline")

    candidates = enricher(BrokenCatalog()).enrich(group(("a.mkv", 1, 1)), IDENTITY, SeasonCache())
    assert candidates[0].metadata is None
    assert candidates[0].season_episode_count == 0


def test_skip_metadata_only_counts_episodes():
    catalog = FakeCatalog(seasons={("100", 1): [episode(1), episode(2)]})
    service = MetadataEnricher(catalog, SemanticMatcher(FakeService()))
    candidates = service.enrich(group(("a.mkv", 1, 1)), IDENTITY, SeasonCache(), skip_metadata=True)
    assert candidates[0].metadata is None
    assert candidates[0].season_episode_count == 2


def test_refresh_item_applies_manual_correction():
    catalog = FakeCatalog(
        seasons={("100", 1): [episode(1)]},
        episodes={("100", 2, 5): episode(5, "Late", season=2)},
    )
    service = enricher(catalog)
    season_cache = SeasonCache()
    candidate = service.enrich(group(("a.mkv", 1, 1)), IDENTITY, season_cache)[0]

    updated = service.refresh_item(candidate, 2, 5, season_cache)

    assert updated.match.origin is MatchOrigin.MANUAL
    assert updated.match.confidence == 1.0
    assert (updated.match.season, updated.match.episode) == (2, 5)
    assert updated.metadata.title == "Late"
