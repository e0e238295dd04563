"""Semantic matcher backed by a text-classification service.

The service is anything with a ``generate_json(prompt) -> dict`` method
(see :class:`scraper.llm.LLMClient`).  Every call here is best-effort:
transport errors and malformed replies are logged and turned into a
"no match" result instead of being raised.
"""
from __future__ import annotations

import logging
import posixpath
from typing import Any

from .models import (
    DirectoryClassification,
    EpisodeRecord,
    MatchOrigin,
    MatchResult,
    SEMANTIC_CONFIDENCE,
)

log = logging.getLogger(__name__)


FILENAME_PROMPT = """
Analyze the following filename and extract metadata.
Filename: "{filename}"

Return a JSON object with these keys:
- seriesName: string (The title of the show)
- season: number (The season number. If it is a "Special", "OVA", "SP" or "特别篇", set season to 0. Default to 1 if you find an episode but no season.)
- episode: number (The episode number. For specials, the episode number within the specials season if possible.)
- year: string (The release year if found)

If you cannot determine the series name, return {{"error": "unknown"}}.
"""

DIRECTORY_PROMPT = """
Analyze the following directory path and its video files to identify the TV series and match each file to an episode number.

Directory Path: "{directory}"
Files:
{files}

Return a JSON object with this exact structure:
{{
  "seriesName": "Name of the show",
  "season": number (Season number. If specials, use 0. If unknown, use 1.),
  "matches": [
    {{ "filename": "example.mp4", "episode": number }}
  ]
}}
"""

EPISODE_LIST_PROMPT = """
Match the following filename to the most likely episode from the provided list.
Filename: "{filename}"

Episode List:
{episodes}

Return a JSON object with:
- episodeNumber: number (The number of the matching episode, or null if no confident match)
- reason: string (Briefly why it matches)
"""


def _as_int(value: Any) -> int | None:
    """Coerce a JSON scalar to int, rejecting anything non-numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        value = value.strip()
        if value.isdigit():
            return int(value)
    return None


def _as_name(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class SemanticMatcher:
    """Fallback classifier used when no pattern rule matches."""

    def __init__(self, service):
        self._service = service

    def _ask(self, prompt: str, purpose: str) -> dict | None:
        try:
            result = self._service.generate_json(prompt)
        except Exception as e:
            log.warning("Semantic %s call failed: %s", purpose, e)
            return None
        if not isinstance(result, dict):
            log.warning("Semantic %s returned %s, expected an object",
                        purpose, type(result).__name__)
            return None
        log.debug("Semantic %s result: %r", purpose, result)
        return result

    def classify_filename(self, filename: str) -> MatchResult:
        """Ask the service for series/season/episode/year of one file."""
        prompt = FILENAME_PROMPT.format(filename=posixpath.basename(filename))
        result = self._ask(prompt, "filename")
        if result is None or result.get("error"):
            return MatchResult.unresolved()

        series_name = _as_name(result.get("seriesName"))
        if not series_name:
            return MatchResult.unresolved()

        season = _as_int(result.get("season"))
        year = result.get("year")
        return MatchResult(
            matched=True,
            series_name=series_name,
            season=season if season is not None else 1,
            episode=_as_int(result.get("episode")),
            year=str(year) if year not in (None, "") else None,
            confidence=SEMANTIC_CONFIDENCE,
            origin=MatchOrigin.SEMANTIC,
        )

    def classify_directory(
        self,
        directory_path: str,
        filenames: list[str],
    ) -> DirectoryClassification:
        """Classify a whole directory of files in a single call."""
        if not filenames:
            return DirectoryClassification()

        prompt = DIRECTORY_PROMPT.format(
            directory=directory_path,
            files="\n".join(f"- {name}" for name in filenames),
        )
        result = self._ask(prompt, "directory")
        if result is None:
            return DirectoryClassification()

        series_name = _as_name(result.get("seriesName"))
        if not series_name:
            return DirectoryClassification()

        known = set(filenames)
        file_to_episode: dict[str, int] = {}
        matches = result.get("matches")
        if isinstance(matches, list):
            for entry in matches:
                if not isinstance(entry, dict):
                    continue
                name = entry.get("filename")
                if not isinstance(name, str):
                    continue
                episode = _as_int(entry.get("episode"))
                if name in known and episode is not None:
                    file_to_episode[name] = episode

        season = _as_int(result.get("season"))
        return DirectoryClassification(
            series_name=series_name,
            season=season if season is not None else 1,
            file_to_episode=file_to_episode,
        )

    def resolve_episode_against_list(
        self,
        filename: str,
        episodes: list[EpisodeRecord],
    ) -> int | None:
        """Pick the episode number in *episodes* that best fits *filename*."""
        if not episodes:
            return None

        lines = []
        for ep in episodes:
            overview = (ep.overview or "")[:50]
            lines.append(f"E{ep.episode}: {ep.title} ({overview}...)")
        prompt = EPISODE_LIST_PROMPT.format(
            filename=posixpath.basename(filename),
            episodes="\n".join(lines),
        )
        result = self._ask(prompt, "episode list")
        if result is None:
            return None

        number = _as_int(result.get("episodeNumber"))
        if number is None:
            return None
        if number not in {ep.episode for ep in episodes}:
            log.info("Semantic episode %s for %s is not in the season list",
                     number, filename)
            return None
        return number
