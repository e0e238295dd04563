"""Scanner service: traversal, grouping and per-series orchestration.

Architecture (strict phase separation):

  Phase 1 -- List the source and keep video files.
  Phase 2 -- Per directory: pattern matcher, then one directory-level
             semantic call for the leftovers, then per-file semantic
             calls if the directory call found no series.
  Phase 3 -- Group by normalized series name across directories.
  Phase 4 -- Per series group: resolve identity (suspends), enrich,
             confirm episode set (suspends), execute the batch.

Only one scan runs at a time per ScannerService; a second request while
one is active is logged and ignored.
"""
from __future__ import annotations

import logging
import posixpath
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from .cache import SeasonCache, SeriesIdentityCache
from .config import ScanSettings, parse_extensions
from .confirmation import EPISODES, DecisionBroker
from .enrichment import MetadataEnricher
from .executor import BatchExecutor
from .models import (
    BatchReport,
    EpisodesDecision,
    FileEntry,
    MatchOrigin,
    MatchResult,
    SEMANTIC_CONFIDENCE,
    SeriesGroup,
    SeriesItem,
)
from .resolution import SeriesResolver

log = logging.getLogger(__name__)


def normalize_series_name(name: str) -> str:
    """Strip trailing runs of hyphens, whitespace, underscores and dots."""
    return re.sub(r'[-\s._]+$', '', name).strip()


def filter_video_files(entries: Iterable[FileEntry], video_extensions: str) -> list[FileEntry]:
    """Keep non-directory entries whose extension is configured (case-insensitive)."""
    extensions = parse_extensions(video_extensions)
    return [
        entry for entry in entries
        if not entry.is_dir and entry.extension.lstrip(".").lower() in extensions
    ]


def group_by_directory(files: Iterable[FileEntry]) -> dict[str, list[FileEntry]]:
    groups: dict[str, list[FileEntry]] = {}
    for entry in files:
        groups.setdefault(entry.directory, []).append(entry)
    return groups


def group_by_series(items: Iterable[SeriesItem]) -> tuple[list[SeriesGroup], list[FileEntry]]:
    """
    Partition matched items by normalized series name.

    Returns:
        (series groups in first-seen order, files with no identification)
    """
    groups: dict[str, list[SeriesItem]] = {}
    unidentified: list[FileEntry] = []
    for item in items:
        key = normalize_series_name(item.match.series_name or "") if item.match.matched else ""
        if not key:
            unidentified.append(item.file)
            continue
        groups.setdefault(key, []).append(item)
    return [SeriesGroup(name, tuple(members)) for name, members in groups.items()], unidentified


class ScanListener:
    """Receives scan events.  The default implementation ignores them."""

    def unidentified(self, files: list[FileEntry]) -> None:
        pass

    def operation_progress(self, percent: int, message: str, finished: bool) -> None:
        pass

    def series_finished(self, report: BatchReport) -> None:
        pass

    def finished(self) -> None:
        pass


class ScannerService:
    """Identification and scraping pipeline.

    Constructor args:
        pattern_matcher:  PatternMatcher.
        semantic_matcher: SemanticMatcher.
        catalog:          catalog client (search, seasons, episodes).
        broker:           DecisionBroker for both confirmation stages.
        settings:         ScanSettings.
        identity_cache:   shared SeriesIdentityCache (process lifetime).
        executor:         BatchExecutor; built from settings if omitted.
        listener:         ScanListener for progress and completion events.
    """

    def __init__(
        self,
        pattern_matcher,
        semantic_matcher,
        catalog,
        broker: DecisionBroker,
        settings: ScanSettings | None = None,
        identity_cache: SeriesIdentityCache | None = None,
        executor: BatchExecutor | None = None,
        listener: ScanListener | None = None,
    ):
        self.settings = settings or ScanSettings()
        self.pattern_matcher = pattern_matcher
        self.semantic_matcher = semantic_matcher
        self.catalog = catalog
        self.broker = broker
        self.identity_cache = identity_cache or SeriesIdentityCache()
        self.resolver = SeriesResolver(catalog, broker, self.identity_cache)
        self.enricher = MetadataEnricher(catalog, semantic_matcher)
        self.executor = executor or BatchExecutor(
            rename_batch_size=self.settings.rename_batch_size,
            chunk_delay=self.settings.chunk_delay,
        )
        self.listener = listener or ScanListener()

        self._lock = threading.Lock()
        self._scanning = False
        self._season_cache = SeasonCache()

    @property
    def is_scanning(self) -> bool:
        with self._lock:
            return self._scanning

    # ------------------------------------------------------------------
    # Scan lifecycle
    # ------------------------------------------------------------------

    def _begin(self, mode: str) -> bool:
        with self._lock:
            if self._scanning:
                log.warning("Rejected %s: a scan is already running", mode)
                return False
            self._scanning = True
            self._season_cache = SeasonCache()
        return True

    def _end(self) -> None:
        with self._lock:
            self._scanning = False
        log.info("Scan finished")
        self.listener.finished()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def scan_source(self, source, start_path: str = "/") -> bool:
        """
        Recursively scan *start_path* on *source*.

        Returns:
            False if rejected because another scan is running
        """
        if not self._begin("scan"):
            return False
        try:
            log.info("Scanning source %s at %s", source.name, start_path)
            entries = self.recursive_list(source, start_path)
            self.process_file_list(source, entries)
        except Exception:
            log.exception("Scan failed")
        finally:
            self._end()
        return True

    def scan_selected_files(self, source, paths: list[str]) -> bool:
        """Scan an explicit list of file paths."""
        if not self._begin("selected-files scan"):
            return False
        try:
            log.info("Scanning %d selected file(s)", len(paths))
            wanted: dict[str, set[str]] = {}
            for path in paths:
                wanted.setdefault(posixpath.dirname(path) or "/", set()).add(posixpath.basename(path))

            entries: list[FileEntry] = []
            for directory, names in wanted.items():
                try:
                    listing = source.list_dir(directory)
                except Exception as e:
                    log.warning("Cannot access directory %s: %s", directory, e)
                    continue
                entries.extend(f for f in listing if not f.is_dir and f.name in names)

            if not entries:
                log.error("None of the selected files could be found")
                return True
            self.process_file_list(source, entries)
        except Exception:
            log.exception("Selected-files scan failed")
        finally:
            self._end()
        return True

    def identify_single_file(self, source, target_path: str) -> bool:
        """Identify one file using its whole directory as context."""
        if not self._begin("single-file identification"):
            return False
        try:
            directory = posixpath.dirname(target_path) or "/"
            target_name = posixpath.basename(target_path)
            log.info("Identifying %s using its directory as context", target_path)

            videos = filter_video_files(source.list_dir(directory), self.settings.video_extensions)
            log.info("Context: %d sibling video file(s)", len(videos))

            target = next((f for f in videos if f.name == target_name), None)
            if target is None:
                log.error("%s is not a video file in %s", target_name, directory)
                return True

            classification = self.semantic_matcher.classify_directory(
                directory, [f.name for f in videos]
            )
            if not classification.series_name:
                log.error("Could not identify the series of %s", target_name)
                return True

            series_name = normalize_series_name(classification.series_name)
            log.info("Identified '%s' (season %s)", series_name, classification.season)
            match = MatchResult(
                matched=True,
                series_name=series_name,
                season=classification.season if classification.season is not None else 1,
                # unknown numbers start at 1; the episode-set confirmation can fix it
                episode=classification.file_to_episode.get(target_name, 1),
                confidence=SEMANTIC_CONFIDENCE,
                origin=MatchOrigin.SEMANTIC,
            )
            group = SeriesGroup(series_name, (SeriesItem(target, match),))
            self.process_series_group(source, group, force_confirmation=True)
        except Exception:
            log.exception("Identification of %s failed", target_path)
        finally:
            self._end()
        return True

    # ------------------------------------------------------------------
    # Phase 1 -- Traversal
    # ------------------------------------------------------------------

    def recursive_list(self, source, path: str) -> list[FileEntry]:
        """List *path* and everything below it; unlistable subtrees are skipped."""
        results: list[FileEntry] = []
        pending = [path]
        while pending:
            current = pending.pop()
            try:
                entries = source.list_dir(current)
            except Exception as e:
                log.error("Error listing dir %s: %s", current, e)
                continue
            results.extend(entries)
            pending.extend(reversed([e.path for e in entries if e.is_dir]))
        return results

    # ------------------------------------------------------------------
    # Phases 2 and 3 -- Matching and grouping
    # ------------------------------------------------------------------

    def match_directory(self, directory: str, files: list[FileEntry]) -> list[SeriesItem]:
        """Identify every file of one directory."""
        matches: dict[str, MatchResult] = {}
        unmatched: list[FileEntry] = []
        for entry in files:
            match = self.pattern_matcher.match(entry.name)
            if match.matched:
                matches[entry.path] = match
            else:
                unmatched.append(entry)

        if unmatched:
            log.info("Trying directory-level identification for %s (%d file(s))",
                     directory, len(unmatched))
            classification = self.semantic_matcher.classify_directory(
                directory, [f.name for f in unmatched]
            )
            if classification.series_name:
                for entry in unmatched:
                    matches[entry.path] = classification.match_for(entry.name)
            else:
                for entry in unmatched:
                    log.info("Pattern match failed for %s, asking the semantic matcher", entry.name)
                    matches[entry.path] = self.semantic_matcher.classify_filename(entry.name)

        return [SeriesItem(entry, matches[entry.path]) for entry in files]

    def build_series_groups(
        self,
        videos: list[FileEntry],
    ) -> tuple[list[SeriesGroup], list[FileEntry]]:
        items: list[SeriesItem] = []
        for directory, files in group_by_directory(videos).items():
            items.extend(self.match_directory(directory, files))
        return group_by_series(items)

    def process_file_list(self, source, entries: list[FileEntry]) -> list[BatchReport]:
        videos = filter_video_files(entries, self.settings.video_extensions)
        log.info("Found %d video file(s)", len(videos))

        groups, unidentified = self.build_series_groups(videos)
        for group in groups:
            log.info("Series group '%s': %d file(s)", group.series_name, len(group.items))
        if unidentified:
            log.warning("%d file(s) could not be identified", len(unidentified))
            self.listener.unidentified(unidentified)

        return self.run_series_groups(source, groups)

    # ------------------------------------------------------------------
    # Phase 4 -- Per-series processing
    # ------------------------------------------------------------------

    def run_series_groups(self, source, groups: list[SeriesGroup]) -> list[BatchReport]:
        """Process groups, concurrently when ``max_workers`` allows."""
        workers = max(1, self.settings.max_workers)
        if workers == 1 or len(groups) <= 1:
            results = [self._process_group_safely(source, group) for group in groups]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="series") as pool:
                results = list(pool.map(lambda g: self._process_group_safely(source, g), groups))
        return [report for report in results if report is not None]

    def _process_group_safely(self, source, group: SeriesGroup) -> BatchReport | None:
        try:
            return self.process_series_group(source, group)
        except Exception:
            log.exception("Processing series '%s' failed", group.series_name)
            return None

    def process_series_group(
        self,
        source,
        group: SeriesGroup,
        force_confirmation: bool = False,
    ) -> BatchReport | None:
        """
        Resolve, enrich, confirm and execute one series group.

        Returns:
            BatchReport, or None if the group was cancelled at either
            confirmation stage or nothing was selected
        """
        identity = self.resolver.resolve(
            group.series_name,
            files=[item.file.name for item in group.items],
            force_confirmation=force_confirmation,
        )
        if identity is None:
            log.info("Dropping series group '%s'", group.series_name)
            return None

        candidates = self.enricher.enrich(
            group, identity, self._season_cache, skip_metadata=self.settings.skip_metadata,
        )
        series_name = identity.name or group.series_name

        decision: EpisodesDecision | None = self.broker.request(EPISODES, {
            "series_name": series_name,
            "catalog_id": identity.catalog_id,
            "items": list(candidates),
        })
        if decision is None or not decision.confirmed or not decision.selected_indices:
            log.info("Episode set for '%s' not confirmed", series_name)
            return None

        items = list(decision.updated_items) if decision.updated_items is not None else candidates
        selected = [items[i] for i in decision.selected_indices if 0 <= i < len(items)]
        if not selected:
            log.info("No valid items selected for '%s'", series_name)
            return None

        report = self.executor.execute(
            source,
            series_name,
            selected,
            decision.options,
            identity,
            progress=self.listener.operation_progress,
        )
        self.listener.series_finished(report)
        return report

    def refresh_candidate(self, candidate, season: int, episode: int):
        """Manual season/episode correction for the external layer."""
        return self.enricher.refresh_item(candidate, season, episode, self._season_cache)
