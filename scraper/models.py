"""Data models for the scraper package.

Every stage of the pipeline produces new values instead of mutating the
previous stage's output, so the models are frozen and updated with
``dataclasses.replace``.
"""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

# Confidence is fixed per origin, not computed.
PATTERN_CONFIDENCE = 1.0
SEMANTIC_CONFIDENCE = 0.8
MANUAL_CONFIDENCE = 1.0


class MatchOrigin(Enum):
    PATTERN = "pattern"
    SEMANTIC = "semantic"
    MANUAL = "manual"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True)
class FileEntry:
    """A file or directory as listed by a storage backend."""
    name: str
    path: str  # backend-relative, POSIX style
    is_dir: bool = False
    size: int | None = None
    modified_at: datetime | None = None

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path) or "/"

    @property
    def stem(self) -> str:
        return posixpath.splitext(self.name)[0]

    @property
    def extension(self) -> str:
        return posixpath.splitext(self.name)[1]


@dataclass(frozen=True)
class MatchResult:
    """Identification guess for a single filename."""
    matched: bool
    series_name: str | None = None
    season: int | None = None
    episode: int | None = None
    year: str | None = None
    confidence: float = 0.0
    origin: MatchOrigin = MatchOrigin.UNRESOLVED

    @classmethod
    def unresolved(cls) -> MatchResult:
        return cls(matched=False)

    @property
    def season_or_default(self) -> int:
        return self.season if self.season is not None else 1


@dataclass(frozen=True)
class SeriesItem:
    file: FileEntry
    match: MatchResult


@dataclass(frozen=True)
class SeriesGroup:
    """Matched items sharing a normalized series name."""
    series_name: str
    items: tuple[SeriesItem, ...] = ()

    @property
    def seasons(self) -> list[int]:
        return sorted({item.match.season_or_default for item in self.items})


@dataclass(frozen=True)
class SeriesSearchResult:
    """One catalog hit for a series search."""
    id: str
    title: str
    original_title: str | None = None
    year: str | None = None
    poster_url: str | None = None
    overview: str | None = None
    provider: str = "tmdb"

    def to_identity(self) -> SeriesIdentity:
        return SeriesIdentity(
            catalog_id=self.id,
            name=self.title,
            poster_url=self.poster_url,
        )


@dataclass(frozen=True)
class SeriesIdentity:
    """A confirmed catalog identity for a series."""
    catalog_id: str
    name: str = ""
    poster_url: str | None = None


@dataclass(frozen=True)
class EpisodeRecord:
    """Represents an episode from the catalog."""
    catalog_episode_id: str
    season: int
    episode: int
    title: str
    overview: str | None = None
    air_date: str | None = None
    still_url: str | None = None
    runtime: int | None = None


@dataclass(frozen=True)
class CandidateItem:
    """An enriched item awaiting episode-set confirmation."""
    file: FileEntry
    match: MatchResult
    series_catalog_id: str | None
    season_episode_count: int = 0
    metadata: EpisodeRecord | None = None


@dataclass(frozen=True)
class BatchOptions:
    rename: bool = True
    write_nfo: bool = False
    write_poster: bool = False
    write_still: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> BatchOptions:
        data = data or {}
        return cls(
            rename=bool(data.get("rename", False)),
            write_nfo=bool(data.get("writeNfo", data.get("write_nfo", False))),
            write_poster=bool(data.get("writePoster", data.get("write_poster", False))),
            write_still=bool(data.get("writeStill", data.get("write_still", False))),
        )


@dataclass(frozen=True)
class RenameObject:
    """One entry of a batch rename request."""
    src_name: str
    new_name: str


@dataclass(frozen=True)
class DirectoryClassification:
    """Series/season assignment for a whole directory of files."""
    series_name: str | None = None
    season: int | None = None
    file_to_episode: Mapping[str, int] = field(default_factory=dict)

    def match_for(self, filename: str) -> MatchResult:
        if not self.series_name:
            return MatchResult.unresolved()
        return MatchResult(
            matched=True,
            series_name=self.series_name,
            season=self.season if self.season is not None else 1,
            episode=self.file_to_episode.get(filename),
            confidence=SEMANTIC_CONFIDENCE,
            origin=MatchOrigin.SEMANTIC,
        )


@dataclass(frozen=True)
class SeriesDecision:
    """Response to a series confirmation request.

    Exactly one of: a chosen identity, a corrected search string, or
    neither (cancellation).
    """
    identity: SeriesIdentity | None = None
    search_query: str | None = None

    @classmethod
    def select(cls, identity: SeriesIdentity) -> SeriesDecision:
        return cls(identity=identity)

    @classmethod
    def search_again(cls, query: str) -> SeriesDecision:
        return cls(search_query=query)

    @classmethod
    def cancel(cls) -> SeriesDecision:
        return cls()

    @property
    def cancelled(self) -> bool:
        return self.identity is None and not self.search_query


@dataclass(frozen=True)
class EpisodesDecision:
    """Response to an episode-set confirmation request."""
    confirmed: bool
    options: BatchOptions = field(default_factory=BatchOptions)
    selected_indices: tuple[int, ...] = ()
    updated_items: tuple[CandidateItem, ...] | None = None

    @classmethod
    def cancel(cls) -> EpisodesDecision:
        return cls(confirmed=False)


@dataclass
class BatchReport:
    """Outcome of one batch execution."""
    series_name: str
    items: list[CandidateItem] = field(default_factory=list)
    renamed: int = 0
    rename_failed: int = 0
    nfo_written: int = 0
    stills_written: int = 0
    posters_written: int = 0
    dropped: int = 0
    success: bool = True
