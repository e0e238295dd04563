import queue
import threading

from conftest import AutoResponder, FakeCatalog

from scraper.cache import SeriesIdentityCache
from scraper.models import SeriesDecision, SeriesIdentity, SeriesSearchResult
from scraper.resolution import ResolutionState, SeriesResolution, SeriesResolver


def test_select_caches_identity(broker, foo_result):
    catalog = FakeCatalog(series={"Foo": [foo_result]})
    cache = SeriesIdentityCache()
    responder = AutoResponder(broker)

    identity = SeriesResolver(catalog, broker, cache).resolve("Foo", files=["Foo.S01E01.mkv"])

    assert identity == SeriesIdentity("100", "Foo", "http://img/foo.jpg")
    assert cache.get("foo") == identity
    payload = responder.requests[0].payload
    assert payload["detected_name"] == "Foo"
    assert payload["results"] == [foo_result]
    assert payload["files"] == ["Foo.S01E01.mkv"]


def test_cache_hit_skips_search_and_confirmation(broker, foo_result):
    catalog = FakeCatalog(series={"Foo": [foo_result]})
    cache = SeriesIdentityCache()
    cached = SeriesIdentity("7", "Foo")
    cache.set(cached, "Foo")
    responder = AutoResponder(broker)

    assert SeriesResolver(catalog, broker, cache).resolve("Foo") == cached
    assert catalog.queries == []
    assert responder.requests == []


def test_force_confirmation_ignores_cache(broker, foo_result):
    catalog = FakeCatalog(series={"Foo": [foo_result]})
    cache = SeriesIdentityCache()
    cache.set(SeriesIdentity("7", "Foo"), "Foo")
    AutoResponder(broker)

    identity = SeriesResolver(catalog, broker, cache).resolve("Foo", force_confirmation=True)
    assert identity.catalog_id == "100"
    assert catalog.queries == ["Foo"]


def test_search_again_loops_until_selected(broker):
    corrected = SeriesSearchResult(id="200", title="Foo Bar")
    catalog = FakeCatalog(series={"Foo Bar": [corrected]})
    cache = SeriesIdentityCache()

    def decide(payload):
        if payload["query"] == "Foo":
            assert payload["results"] == []
            return SeriesDecision.search_again("Foo Bar")
        return SeriesDecision.select(payload["results"][0].to_identity())

    responder = AutoResponder(broker, series=decide)
    identity = SeriesResolver(catalog, broker, cache).resolve("Foo")

    assert identity.catalog_id == "200"
    assert catalog.queries == ["Foo", "Foo Bar"]
    assert [r.payload["attempt"] for r in responder.requests] == [1, 2]
    assert "Foo" in cache and "Foo Bar" in cache


def test_cancel_returns_none(broker, foo_result):
    catalog = FakeCatalog(series={"Foo": [foo_result]})
    cache = SeriesIdentityCache()
    AutoResponder(broker, series=lambda payload: SeriesDecision.cancel())

    assert SeriesResolver(catalog, broker, cache).resolve("Foo") is None
    assert len(cache) == 0


def test_unnamed_identity_falls_back_to_query(broker):
    cache = SeriesIdentityCache()
    resolver = SeriesResolver(FakeCatalog(), broker, cache)
    resolution = SeriesResolution(original_name="foo", query="Foo Show")
    resolution.state = ResolutionState.AWAITING_CONFIRMATION

    resolver.apply_decision(resolution, SeriesDecision.select(SeriesIdentity("9")))

    assert resolution.state is ResolutionState.RESOLVED
    assert resolution.identity.name == "Foo Show"
    assert cache.get("foo").catalog_id == "9"


def test_catalog_failure_still_asks(broker):
    class BrokenCatalog:
        def search_series(self, query):
            raise ConnectionError("offline")

    responder = AutoResponder(broker)
    assert SeriesResolver(BrokenCatalog(), broker, SeriesIdentityCache()).resolve("Foo") is None
    assert responder.requests[0].payload["results"] == []


def test_concurrent_series_are_independent(broker):
    catalog = FakeCatalog(series={
        "Foo": [SeriesSearchResult(id="1", title="Foo")],
        "Bar": [SeriesSearchResult(id="2", title="Bar")],
    })
    resolver = SeriesResolver(catalog, broker, SeriesIdentityCache())
    requests = queue.Queue()
    broker.set_listener(requests.put)
    results = {}

    def run(name):
        results[name] = resolver.resolve(name)

    threads = [threading.Thread(target=run, args=(name,)) for name in ("Foo", "Bar")]
    for t in threads:
        t.start()
    pending = {}
    for _ in range(2):
        request = requests.get(timeout=5)
        pending[request.payload["detected_name"]] = request

    broker.respond(pending["Foo"].token, SeriesDecision.cancel())
    bar = pending["Bar"]
    broker.respond(bar.token, SeriesDecision.select(bar.payload["results"][0].to_identity()))
    for t in threads:
        t.join(timeout=5)

    assert results["Foo"] is None
    assert results["Bar"].catalog_id == "2"
