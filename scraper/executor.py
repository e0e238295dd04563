"""Batch execution: rename, NFO sidecars and artwork."""
from __future__ import annotations

import logging
import posixpath
import time
from dataclasses import replace
from typing import Callable

import requests

from .formatter import build_nfo, nfo_path, poster_path, target_name, thumb_path
from .models import BatchOptions, BatchReport, CandidateItem, RenameObject, SeriesIdentity

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_CHUNK_DELAY = 0.5

# (percent, message, finished)
ProgressCallback = Callable[[int, str, bool], None]


def download_image(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes | None:
    """Fetch raw image bytes; None on any failure."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
        return response.content
    except requests.exceptions.RequestException as e:
        log.warning("Download %s failed: %s", url, e)
        return None


class _ProgressTracker:
    """Step counter that reports percent complete."""

    def __init__(self, total_steps: int, callback: ProgressCallback | None):
        self.total = total_steps
        self.current = 0
        self._callback = callback

    def report(self, message: str, fraction: float = 0.0) -> None:
        if not self._callback:
            return
        if self.total <= 0:
            percent = 100
        else:
            percent = min(100, round((self.current + fraction) / self.total * 100))
        self._callback(percent, message, False)

    def advance(self) -> None:
        self.current += 1

    def finish(self, message: str) -> None:
        if self._callback:
            self._callback(100, message, True)


class BatchExecutor:
    """Runs the confirmed operations for one series.

    Constructor args:
        rename_batch_size: Max renames per backend call; 0 uses the
                           source's own ``max_batch_size``.
        chunk_delay:       Seconds to pause between rename chunks.
        downloader:        ``url -> bytes | None``; defaults to download_image.
        sleep:             Pause function (injected by tests).
    """

    def __init__(
        self,
        rename_batch_size: int = 0,
        chunk_delay: float = DEFAULT_CHUNK_DELAY,
        downloader: Callable[[str], bytes | None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.rename_batch_size = rename_batch_size
        self.chunk_delay = chunk_delay
        self._download = downloader or download_image
        self._sleep = sleep

    @staticmethod
    def count_steps(item_count: int, options: BatchOptions) -> int:
        per_item = (1 if options.write_nfo else 0) + (1 if options.write_still else 0)
        return (
            item_count * per_item
            + (1 if options.write_poster else 0)
            + (1 if options.rename else 0)
        )

    def _batch_limit(self, source) -> int | None:
        if self.rename_batch_size and self.rename_batch_size > 0:
            return self.rename_batch_size
        return getattr(source, "max_batch_size", None) or None

    def execute(
        self,
        source,
        series_name: str,
        items: list[CandidateItem],
        options: BatchOptions,
        identity: SeriesIdentity,
        progress: ProgressCallback | None = None,
        rename_progress: Callable[[int, int], None] | None = None,
    ) -> BatchReport:
        """
        Execute the confirmed operations in order: rename, NFO, still, poster.

        Args:
            source: Storage backend the files came from
            series_name: Name used in new file names
            items: Confirmed candidate items
            options: Which operations to run
            identity: Catalog identity (poster URL)
            progress: Receives (percent, message, finished)
            rename_progress: Receives (processed, total) after every chunk

        Returns:
            BatchReport with per-step counters and updated item paths
        """
        report = BatchReport(series_name=series_name)
        runnable = [item for item in items if item.series_catalog_id]
        report.dropped = len(items) - len(runnable)
        if report.dropped:
            log.warning("Dropping %d item(s) without a catalog identity", report.dropped)

        tracker = _ProgressTracker(self.count_steps(len(runnable), options), progress)

        if options.rename:
            tracker.report("Renaming files...")
            runnable = self._rename(source, series_name, runnable, report, tracker, rename_progress)
            tracker.advance()

        poster_bytes: bytes | None = None
        poster_counted = False
        written_posters: set[str] = set()

        for item in runnable:
            directory = item.file.directory

            if options.write_nfo and item.metadata:
                tracker.report(f"Writing NFO: episode {item.match.episode}")
                if self._write(source, nfo_path(item.file.path), build_nfo(item)):
                    report.nfo_written += 1
                else:
                    report.success = False
            if options.write_nfo:
                tracker.advance()

            if options.write_still and item.metadata and item.metadata.still_url:
                tracker.report(f"Downloading still: episode {item.match.episode}")
                data = self._download(item.metadata.still_url)
                if data:
                    if self._write(source, thumb_path(item.file.path), data):
                        report.stills_written += 1
                    else:
                        report.success = False
            if options.write_still:
                tracker.advance()

            if options.write_poster and identity.poster_url and directory not in written_posters:
                written_posters.add(directory)
                tracker.report("Downloading poster")
                if poster_bytes is None:
                    poster_bytes = self._download(identity.poster_url) or b""
                if poster_bytes:
                    if self._write(source, poster_path(directory), poster_bytes):
                        report.posters_written += 1
                    else:
                        report.success = False
            if options.write_poster and not poster_counted:
                poster_counted = True
                tracker.advance()

        report.items = runnable
        tracker.finish("Done!")
        log.info("Operations finished for %s: %d renamed, %d NFO, %d stills, %d posters",
                 series_name, report.renamed, report.nfo_written,
                 report.stills_written, report.posters_written)
        return report

    def _write(self, source, path: str, content: bytes) -> bool:
        try:
            ok = source.write_file(path, content)
        except Exception as e:
            log.error("Writing %s failed: %s", path, e)
            return False
        if not ok:
            log.error("Writing %s failed", path)
        return bool(ok)

    def _rename(
        self,
        source,
        series_name: str,
        items: list[CandidateItem],
        report: BatchReport,
        tracker: _ProgressTracker,
        rename_progress: Callable[[int, int], None] | None,
    ) -> list[CandidateItem]:
        """Submit renames in directory-scoped chunks; returns updated items."""
        plans: dict[str, list[tuple[int, RenameObject]]] = {}
        for index, item in enumerate(items):
            new_name = target_name(series_name, item)
            if new_name is None:
                log.info("Not renaming %s: episode number unknown", item.file.name)
                continue
            if new_name == item.file.name:
                continue
            plans.setdefault(item.file.directory, []).append(
                (index, RenameObject(item.file.name, new_name))
            )

        total = sum(len(plan) for plan in plans.values())
        if total == 0:
            log.info("Nothing to rename for %s", series_name)
            return items

        limit = self._batch_limit(source)
        chunks: list[tuple[str, list[tuple[int, RenameObject]]]] = []
        for directory, plan in plans.items():
            size = limit or len(plan)
            for start in range(0, len(plan), size):
                chunks.append((directory, plan[start:start + size]))

        renamed: dict[int, RenameObject] = {}
        processed = 0
        for number, (directory, chunk) in enumerate(chunks, 1):
            if number > 1 and self.chunk_delay > 0:
                self._sleep(self.chunk_delay)

            objects = [obj for _, obj in chunk]
            try:
                ok = source.batch_rename(directory, objects)
            except Exception as e:
                log.error("Rename chunk %d/%d in %s failed: %s", number, len(chunks), directory, e)
                ok = False

            if ok:
                renamed.update(chunk)
                report.renamed += len(chunk)
            else:
                log.warning("Rename chunk %d/%d in %s failed", number, len(chunks), directory)
                report.rename_failed += len(chunk)
                report.success = False

            processed += len(chunk)
            tracker.report(f"Renamed {processed}/{total} files", processed / total)
            if rename_progress:
                rename_progress(processed, total)

        updated = []
        for index, item in enumerate(items):
            obj = renamed.get(index)
            if obj is None:
                updated.append(item)
                continue
            new_file = replace(
                item.file,
                name=obj.new_name,
                path=posixpath.join(item.file.directory, obj.new_name),
            )
            updated.append(replace(item, file=new_file))
        return updated
