"""Shared fakes for the scraper tests."""
import posixpath
import threading

import pytest

from scraper.confirmation import EPISODES, SERIES, DecisionBroker
from scraper.models import (
    BatchOptions,
    EpisodeRecord,
    EpisodesDecision,
    FileEntry,
    SeriesDecision,
    SeriesSearchResult,
)
from scraper.sources import MediaSource, SourceError


class FakeSource(MediaSource):
    """In-memory storage backend.

    ``tree`` maps a directory path to the names it contains; a name ending
    in ``/`` is a subdirectory.
    """

    type = "fake"

    def __init__(self, tree=None, max_batch_size=None, fail_calls=(), broken_dirs=()):
        super().__init__("fake")
        self.tree = {d: list(names) for d, names in (tree or {}).items()}
        self.max_batch_size = max_batch_size
        self.fail_calls = set(fail_calls)
        self.broken_dirs = set(broken_dirs)
        self.rename_calls = []
        self.written = {}
        self.listed = []
        self._lock = threading.Lock()

    def list_dir(self, path):
        self.listed.append(path)
        if path in self.broken_dirs:
            raise SourceError(f"Cannot list {path}")
        entries = []
        for name in self.tree.get(path, []):
            is_dir = name.endswith("/")
            name = name.rstrip("/")
            entries.append(FileEntry(name, posixpath.join(path, name), is_dir=is_dir))
        return entries

    def batch_rename(self, src_dir, renames):
        with self._lock:
            self.rename_calls.append((src_dir, list(renames)))
            if len(self.rename_calls) in self.fail_calls:
                return False
        return True

    def write_file(self, path, content):
        with self._lock:
            self.written[path] = content
        return True


class FakeCatalog:
    def __init__(self, series=None, seasons=None, episodes=None):
        # query (lowercase) -> list[SeriesSearchResult]
        self.series = {k.lower(): v for k, v in (series or {}).items()}
        # (catalog_id, season) -> list[EpisodeRecord]
        self.seasons = dict(seasons or {})
        # (catalog_id, season, episode) -> EpisodeRecord
        self.episodes = dict(episodes or {})
        self.queries = []
        self.season_calls = []
        self._lock = threading.Lock()

    def search_series(self, query):
        with self._lock:
            self.queries.append(query)
        return list(self.series.get(query.lower(), []))

    def list_season_episodes(self, series_id, season):
        with self._lock:
            self.season_calls.append((series_id, season))
        return list(self.seasons.get((series_id, season), []))

    def get_episode(self, series_id, season, episode):
        return self.episodes.get((series_id, season, episode))


class FakeService:
    """Classification service; *reply* is a dict or ``prompt -> dict``."""

    def __init__(self, reply=None):
        self.reply = reply if reply is not None else {"error": "unknown"}
        self.prompts = []

    def generate_json(self, prompt):
        self.prompts.append(prompt)
        if isinstance(self.reply, Exception):
            raise self.reply
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply


class AutoResponder:
    """Answers broker requests synchronously from inside the listener call.

    By default the first search result is chosen and every episode is
    confirmed with a rename-only batch.
    """

    def __init__(self, broker, series=None, episodes=None, options=None):
        self.broker = broker
        self.series = series
        self.episodes = episodes
        self.options = options or BatchOptions(rename=True)
        self.requests = []
        broker.set_listener(self)

    def __call__(self, request):
        self.requests.append(request)
        if request.kind == SERIES:
            if self.series is not None:
                decision = self.series(request.payload)
            elif request.payload["results"]:
                decision = SeriesDecision.select(request.payload["results"][0].to_identity())
            else:
                decision = SeriesDecision.cancel()
        elif request.kind == EPISODES:
            if self.episodes is not None:
                decision = self.episodes(request.payload)
            else:
                count = len(request.payload["items"])
                decision = EpisodesDecision(True, self.options, tuple(range(count)))
        else:
            decision = None
        self.broker.respond(request.token, decision)

    def kinds(self):
        return [r.kind for r in self.requests]


def episode(number, title=None, season=1, still_url=None):
    return EpisodeRecord(
        catalog_episode_id=f"e{season}-{number}",
        season=season,
        episode=number,
        title=title or f"Episode {number}",
        overview=f"Overview {number}",
        air_date="2020-01-01",
        still_url=still_url,
        runtime=24,
    )


@pytest.fixture
def broker():
    return DecisionBroker()


@pytest.fixture
def foo_result():
    return SeriesSearchResult(id="100", title="Foo", year="2020",
                              poster_url="http://img/foo.jpg")
