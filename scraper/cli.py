#!/usr/bin/env python3
"""
OpenList Scraper - TV episode identification and scraping

A CLI tool that identifies episode files, confirms them against TMDB and
renames them, optionally writing NFO files, stills and posters.
"""
import argparse
import logging
import sys
import threading
from pathlib import Path

from .config import SettingsManager
from .confirmation import EPISODES, SERIES, ConfirmationRequest, DecisionBroker
from .formatter import target_name
from .llm import LLMClient
from .models import BatchOptions, BatchReport, EpisodesDecision, SeriesDecision
from .patterns import PatternMatcher
from .scanner import ScanListener, ScannerService
from .semantic import SemanticMatcher
from .sources import SourceError, create_source
from .tmdb import TMDBClient, TMDBError

log = logging.getLogger(__name__)

MAX_CHOICES = 10


def choose_series(payload: dict) -> SeriesDecision:
    """
    Interactive selection for a series confirmation request.

    Args:
        payload: Request payload (detected_name, query, results, files)

    Returns:
        The user's decision: a result, a new search or cancellation
    """
    results = payload.get("results", [])[:MAX_CHOICES]
    files = payload.get("files", [])
    print(f"\nSeries detected: '{payload.get('detected_name')}' ({len(files)} file(s))")
    print(f"Search: '{payload.get('query')}'")
    print("-" * 50)

    if not results:
        print("  No matches found.")
    for i, result in enumerate(results, 1):
        year = result.year or "????"
        if result.original_title and result.original_title != result.title:
            print(f"  {i}. {result.title} ({year}) - Original: {result.original_title}")
        else:
            print(f"  {i}. {result.title} ({year})")
    print("  s. Search again")
    print("  0. Skip this series")
    print()

    while True:
        default = "1" if results else "s"
        choice = input(f"Select [{default}]: ").strip().lower() or default
        if choice == "0":
            return SeriesDecision.cancel()
        if choice == "s":
            query = input("New search: ").strip()
            if query:
                return SeriesDecision.search_again(query)
            return SeriesDecision.cancel()
        try:
            index = int(choice)
        except ValueError:
            index = -1
        if 1 <= index <= len(results):
            return SeriesDecision.select(results[index - 1].to_identity())
        print("Invalid choice. Try again.")


def parse_selection(text: str, count: int) -> tuple[int, ...] | None:
    """'1,3-5' -> (0, 2, 3, 4); None if malformed or out of range."""
    indices: list[int] = []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = (int(v) for v in part.split("-", 1))
                numbers = range(start, end + 1)
            else:
                numbers = [int(part)]
        except ValueError:
            return None
        for number in numbers:
            if not 1 <= number <= count:
                return None
            if number - 1 not in indices:
                indices.append(number - 1)
    return tuple(indices) or None


def confirm_episodes(payload: dict, options: BatchOptions) -> EpisodesDecision:
    """
    Show the planned renames for one series and ask for confirmation.

    Returns:
        EpisodesDecision selecting all, some or none of the items
    """
    series_name = payload.get("series_name", "")
    items = payload.get("items", [])
    print(f"\nEpisodes of '{series_name}':")
    print("-" * 50)
    for i, item in enumerate(items, 1):
        new_name = target_name(series_name, item)
        title = item.metadata.title if item.metadata else "no metadata"
        print(f"  {i}. {item.file.name}")
        if new_name and new_name != item.file.name:
            print(f"     -> {new_name}  [{title}]")
        else:
            print(f"     (unchanged)  [{title}]")

    if not items:
        return EpisodesDecision.cancel()

    while True:
        response = input(
            f"\nProceed with {len(items)} file(s)? (y/n or numbers like 1,3-5): "
        ).strip().lower()
        if response in ('y', 'yes'):
            return EpisodesDecision(True, options, tuple(range(len(items))))
        if response in ('n', 'no'):
            return EpisodesDecision.cancel()
        selection = parse_selection(response, len(items))
        if selection:
            return EpisodesDecision(True, options, selection)
        print("Please enter 'y', 'n' or a selection.")


class ConsoleConfirmer:
    """Answers broker requests from the terminal.

    With ``assume_yes`` the first search result is taken and every
    episode is confirmed without prompting.
    """

    def __init__(self, broker: DecisionBroker, options: BatchOptions, assume_yes: bool = False):
        self.broker = broker
        self.options = options
        self.assume_yes = assume_yes
        # Series groups may run on several threads; keep prompts apart.
        self._prompt_lock = threading.Lock()

    def __call__(self, request: ConfirmationRequest) -> None:
        with self._prompt_lock:
            if request.kind == SERIES:
                decision = self._series(request.payload)
            elif request.kind == EPISODES:
                decision = self._episodes(request.payload)
            else:
                log.warning("Unknown request kind %s", request.kind)
                decision = None
        self.broker.respond(request.token, decision)

    def _series(self, payload: dict) -> SeriesDecision:
        if self.assume_yes:
            results = payload.get("results", [])
            if not results:
                print(f"No match for '{payload.get('query')}', skipping")
                return SeriesDecision.cancel()
            return SeriesDecision.select(results[0].to_identity())
        return choose_series(payload)

    def _episodes(self, payload: dict) -> EpisodesDecision:
        if self.assume_yes:
            count = len(payload.get("items", []))
            return EpisodesDecision(True, self.options, tuple(range(count)))
        return confirm_episodes(payload, self.options)


class ConsoleListener(ScanListener):
    """Prints scan events."""

    def __init__(self):
        self.reports: list[BatchReport] = []
        self.unidentified_count = 0

    def unidentified(self, files) -> None:
        self.unidentified_count += len(files)
        print(f"\nCould not identify {len(files)} file(s):")
        for entry in files:
            print(f"  [SKIP] {entry.path}")

    def operation_progress(self, percent: int, message: str, finished: bool) -> None:
        print(f"  [{percent:3d}%] {message}")

    def series_finished(self, report: BatchReport) -> None:
        self.reports.append(report)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="openlist-scraper",
        description="Identify TV episodes, rename them and write NFO files and artwork."
    )
    parser.add_argument(
        "path",
        help="Local directory to scan, or the start path on an OpenList server"
    )
    parser.add_argument(
        "--source",
        choices=("local", "openlist"),
        default=None,
        help="Storage backend (default: source_type setting, else local)"
    )
    parser.add_argument("--url", default=None, help="OpenList server URL")
    parser.add_argument("--token", default=None, help="OpenList API token")
    parser.add_argument(
        "--selected",
        nargs="+",
        metavar="FILE",
        help="Only scan these files (paths relative to the source)"
    )
    parser.add_argument(
        "--identify",
        metavar="FILE",
        help="Identify a single file using its directory as context"
    )
    parser.add_argument(
        "--no-rename",
        action="store_true",
        help="Don't rename files"
    )
    parser.add_argument("--nfo", action="store_true", help="Write NFO files")
    parser.add_argument("--poster", action="store_true", help="Download the series poster")
    parser.add_argument("--still", action="store_true", help="Download episode stills")
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Take the first search result and confirm every episode"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings file (default: platform settings directory)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show detailed debug information"
    )
    return parser


def source_config(parsed_args, settings: SettingsManager) -> dict:
    source_type = parsed_args.source or settings.get("source_type") or "local"
    if source_type == "openlist":
        return {
            "type": "openlist",
            "url": parsed_args.url or settings.get("openlist_url"),
            "token": parsed_args.token or settings.get("openlist_token"),
        }
    return {"type": "local", "path": parsed_args.path}


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parsed_args = build_parser().parse_args(args)
    settings = SettingsManager(parsed_args.config)

    level = logging.DEBUG if parsed_args.verbose else settings.get("log_level", "INFO")
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = source_config(parsed_args, settings)
    if config["type"] == "openlist" and not config["url"]:
        print("Error: an OpenList URL is required (--url or the openlist_url setting)")
        return 1
    if config["type"] == "local" and not Path(parsed_args.path).is_dir():
        print(f"Error: Path does not exist: {parsed_args.path}")
        return 1

    try:
        source = create_source(config)
    except (SourceError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    try:
        catalog = TMDBClient(
            api_key=settings.get("tmdb_api_key") or None,
            access_token=settings.get("tmdb_access_token") or None,
            language=settings.get("tmdb_language"),
        )
    except TMDBError as e:
        print(f"Error: {e}")
        return 1

    llm = LLMClient(
        api_key=settings.get("llm_api_key") or None,
        base_url=settings.get("llm_base_url"),
        model=settings.get("llm_model"),
    )
    if not llm.configured:
        log.warning("No LLM API key configured; only filename patterns will be used")

    scan_settings = settings.scan_settings()
    options = BatchOptions(
        rename=not parsed_args.no_rename,
        write_nfo=parsed_args.nfo,
        write_poster=parsed_args.poster,
        write_still=parsed_args.still,
    )
    broker = DecisionBroker(timeout=scan_settings.confirmation_timeout or None)
    broker.set_listener(ConsoleConfirmer(broker, options, assume_yes=parsed_args.yes))
    listener = ConsoleListener()

    scanner = ScannerService(
        PatternMatcher.from_settings(scan_settings.custom_rules_path or None),
        SemanticMatcher(llm),
        catalog,
        broker,
        settings=scan_settings,
        listener=listener,
    )

    start = "/" if config["type"] == "local" else parsed_args.path
    if parsed_args.identify:
        scanner.identify_single_file(source, parsed_args.identify)
    elif parsed_args.selected:
        scanner.scan_selected_files(source, parsed_args.selected)
    else:
        scanner.scan_source(source, start)

    # Summary
    renamed = sum(r.renamed for r in listener.reports)
    failed = sum(r.rename_failed for r in listener.reports)
    nfo = sum(r.nfo_written for r in listener.reports)
    print()
    print("-" * 50)
    print(f"Series: {len(listener.reports)} | Renamed: {renamed} | Failed: {failed} | "
          f"NFO: {nfo} | Unidentified: {listener.unidentified_count}")

    return 0 if all(r.success for r in listener.reports) else 1


if __name__ == "__main__":
    sys.exit(main())
