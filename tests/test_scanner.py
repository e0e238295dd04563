from conftest import AutoResponder, FakeCatalog, FakeService, FakeSource, episode

from scraper.config import ScanSettings
from scraper.confirmation import EPISODES, SERIES
from scraper.executor import BatchExecutor
from scraper.models import (
    BatchOptions,
    EpisodesDecision,
    FileEntry,
    MatchResult,
    SeriesDecision,
    SeriesItem,
    SeriesSearchResult,
)
from scraper.patterns import PatternMatcher
from scraper.scanner import (
    ScanListener,
    ScannerService,
    filter_video_files,
    group_by_series,
    normalize_series_name,
)
from scraper.semantic import SemanticMatcher


class RecordingListener(ScanListener):
    def __init__(self):
        self.unidentified_files = []
        self.progress = []
        self.reports = []
        self.finished_count = 0

    def unidentified(self, files):
        self.unidentified_files.extend(files)

    def operation_progress(self, percent, message, finished):
        self.progress.append((percent, finished))

    def series_finished(self, report):
        self.reports.append(report)

    def finished(self):
        self.finished_count += 1


def directory_reply(prompt):
    if "Directory Path" in prompt:
        return {
            "seriesName": "Foo",
            "season": 1,
            "matches": [{"filename": "Foo_ep2.mkv", "episode": 2}],
        }
    return {"error": "unknown"}


def foo_catalog(foo_result):
    return FakeCatalog(
        series={"Foo": [foo_result]},
        seasons={("100", 1): [episode(1, "Pilot"), episode(2, "Second")]},
    )


def make_scanner(catalog, broker, reply=directory_reply, listener=None, **settings):
    return ScannerService(
        PatternMatcher(),
        SemanticMatcher(FakeService(reply)),
        catalog,
        broker,
        settings=ScanSettings(**settings),
        executor=BatchExecutor(sleep=lambda s: None),
        listener=listener or RecordingListener(),
    )


def test_normalize_series_name():
    assert normalize_series_name("Foo - ") == "Foo"
    assert normalize_series_name("Foo._") == "Foo"
    assert normalize_series_name("Foo-Bar") == "Foo-Bar"
    assert {normalize_series_name(n) for n in ("Show -", "Show.", "Show")} == {"Show"}


def test_filter_video_files():
    entries = [
        FileEntry("a.MKV", "/a.MKV"),
        FileEntry("b.txt", "/b.txt"),
        FileEntry("dir.mkv", "/dir.mkv", is_dir=True),
        FileEntry("c.mp4", "/c.mp4"),
    ]
    kept = filter_video_files(entries, "mkv, .mp4")
    assert [e.name for e in kept] == ["a.MKV", "c.mp4"]


def test_group_by_series_merges_normalized_names():
    items = [
        SeriesItem(FileEntry("1.mkv", "/a/1.mkv"), MatchResult(True, "Foo -", 1, 1)),
        SeriesItem(FileEntry("2.mkv", "/b/2.mkv"), MatchResult(True, "Foo", 1, 2)),
        SeriesItem(FileEntry("3.mkv", "/b/3.mkv"), MatchResult.unresolved()),
    ]
    groups, unidentified = group_by_series(items)

    assert [(g.series_name, len(g.items)) for g in groups] == [("Foo", 2)]
    assert [f.name for f in unidentified] == ["3.mkv"]


def test_scan_renames_pattern_and_semantic_matches(broker, foo_result):
    source = FakeSource({"/": ["Foo/"], "/Foo": ["Foo.S01E01.mkv", "Foo_ep2.mkv", "notes.txt"]})
    listener = RecordingListener()
    responder = AutoResponder(broker)
    scanner = make_scanner(foo_catalog(foo_result), broker, listener=listener)

    assert scanner.scan_source(source, "/")

    assert responder.kinds() == [SERIES, EPISODES]
    assert [(d, [(o.src_name, o.new_name) for o in renames])
            for d, renames in source.rename_calls] == [("/Foo", [
        ("Foo.S01E01.mkv", "Foo - S01E01 - Pilot.mkv"),
        ("Foo_ep2.mkv", "Foo - S01E02 - Second.mkv"),
    ])]
    assert listener.reports[0].renamed == 2
    assert listener.progress[-1] == (100, True)
    assert listener.finished_count == 1
    assert not scanner.is_scanning


def test_episode_payload_carries_enriched_items(broker, foo_result):
    source = FakeSource({"/": ["Foo.S01E01.mkv"]})
    responder = AutoResponder(broker, episodes=lambda payload: EpisodesDecision.cancel())
    make_scanner(foo_catalog(foo_result), broker).scan_source(source)

    payload = responder.requests[1].payload
    assert payload["series_name"] == "Foo"
    assert payload["catalog_id"] == "100"
    assert payload["items"][0].metadata.title == "Pilot"
    assert source.rename_calls == []


def test_partial_selection(broker, foo_result):
    source = FakeSource({"/": ["Foo.S01E01.mkv", "Foo.S01E02.mkv"]})
    AutoResponder(broker, episodes=lambda payload: EpisodesDecision(
        True, BatchOptions(rename=True), (1,),
    ))
    make_scanner(foo_catalog(foo_result), broker).scan_source(source)

    assert len(source.rename_calls) == 1
    assert [o.src_name for o in source.rename_calls[0][1]] == ["Foo.S01E02.mkv"]


def test_series_cancel_drops_group(broker, foo_result):
    source = FakeSource({"/": ["Foo.S01E01.mkv"]})
    responder = AutoResponder(broker, series=lambda payload: SeriesDecision.cancel())
    make_scanner(foo_catalog(foo_result), broker).scan_source(source)

    assert responder.kinds() == [SERIES]
    assert source.rename_calls == []


def test_directory_failure_falls_back_to_filename_classification(broker, foo_result):
    def reply(prompt):
        if "Directory Path" in prompt:
            return {"error": "unknown"}
        return {"seriesName": "Foo", "season": 1, "episode": 2}

    source = FakeSource({"/": ["Foo_ep2.mkv"]})
    AutoResponder(broker)
    scanner = make_scanner(foo_catalog(foo_result), broker, reply=reply)
    scanner.scan_source(source)

    assert [o.new_name for o in source.rename_calls[0][1]] == ["Foo - S01E02 - Second.mkv"]


def test_unidentified_files_are_reported(broker, foo_result):
    source = FakeSource({"/": ["random.mkv"]})
    listener = RecordingListener()
    responder = AutoResponder(broker)
    make_scanner(foo_catalog(foo_result), broker, reply={"error": "unknown"},
                 listener=listener).scan_source(source)

    assert [f.name for f in listener.unidentified_files] == ["random.mkv"]
    assert responder.requests == []


def test_second_scan_is_rejected_while_running(broker, foo_result):
    source = FakeSource({"/": ["Foo.S01E01.mkv"]})
    nested = []
    scanner = make_scanner(foo_catalog(foo_result), broker)

    def decide(payload):
        nested.append(scanner.scan_source(source))
        return SeriesDecision.cancel()

    AutoResponder(broker, series=decide)
    assert scanner.scan_source(source) is True
    assert nested == [False]
    assert not scanner.is_scanning


def test_identity_cache_survives_scans_but_seasons_do_not(broker, foo_result):
    catalog = foo_catalog(foo_result)
    source = FakeSource({"/": ["Foo.S01E01.mkv"]})
    responder = AutoResponder(broker)
    scanner = make_scanner(catalog, broker)

    scanner.scan_source(source)
    scanner.scan_source(source)

    assert responder.kinds() == [SERIES, EPISODES, EPISODES]
    assert catalog.queries == ["Foo"]
    assert catalog.season_calls == [("100", 1), ("100", 1)]


def test_unlistable_directory_is_skipped(broker, foo_result):
    source = FakeSource(
        {"/": ["bad/", "Foo.S01E01.mkv"]},
        broken_dirs={"/bad"},
    )
    AutoResponder(broker)
    scanner = make_scanner(foo_catalog(foo_result), broker)

    entries = scanner.recursive_list(source, "/")
    assert [e.path for e in entries] == ["/bad", "/Foo.S01E01.mkv"]


def test_scan_selected_files(broker, foo_result):
    source = FakeSource({"/Foo": ["Foo.S01E01.mkv", "Foo.S01E02.mkv"]})
    AutoResponder(broker)
    scanner = make_scanner(foo_catalog(foo_result), broker)

    assert scanner.scan_selected_files(source, ["/Foo/Foo.S01E02.mkv"])
    assert source.listed == ["/Foo"]
    assert [o.src_name for o in source.rename_calls[0][1]] == ["Foo.S01E02.mkv"]


def test_identify_single_file_always_confirms(broker, foo_result):
    def reply(prompt):
        return {
            "seriesName": "Foo",
            "season": 1,
            "matches": [
                {"filename": "a.mkv", "episode": 1},
                {"filename": "b.mkv", "episode": 2},
            ],
        }

    source = FakeSource({"/Foo": ["a.mkv", "b.mkv"]})
    responder = AutoResponder(broker)
    scanner = make_scanner(foo_catalog(foo_result), broker, reply=reply)
    scanner.identity_cache.set(foo_result.to_identity(), "Foo")

    assert scanner.identify_single_file(source, "/Foo/b.mkv")

    assert responder.kinds() == [SERIES, EPISODES]
    assert [(o.src_name, o.new_name) for o in source.rename_calls[0][1]] == [
        ("b.mkv", "Foo - S01E02 - Second.mkv"),
    ]


def test_groups_run_concurrently(broker, foo_result):
    catalog = FakeCatalog(
        series={
            "Foo": [foo_result],
            "Bar": [SeriesSearchResult(id="200", title="Bar")],
        },
        seasons={("100", 1): [episode(1)], ("200", 1): [episode(1)]},
    )
    source = FakeSource({"/": ["Foo.S01E01.mkv", "Bar.S01E01.mkv"]})
    listener = RecordingListener()
    AutoResponder(broker)
    scanner = make_scanner(catalog, broker, listener=listener, max_workers=2)

    scanner.scan_source(source)

    assert sorted(r.series_name for r in listener.reports) == ["Bar", "Foo"]


def test_malformed_directory_reply_keeps_pattern_matches(broker, foo_result):
    def reply(prompt):
        if "Directory Path" in prompt:
            return {"seriesName": "Foo", "matches": [{"filename": {"a": 1}, "episode": 2}]}
        return {"error": "unknown"}

    source = FakeSource({"/": ["Foo/"], "/Foo": ["Foo.S01E01.mkv", "Foo_ep2.mkv"]})
    responder = AutoResponder(broker)
    make_scanner(foo_catalog(foo_result), broker, reply=reply).scan_source(source)

    assert responder.kinds() == [SERIES, EPISODES]
    renames = [o.src_name for _, batch in source.rename_calls for o in batch]
    assert renames == ["Foo.S01E01.mkv"]
