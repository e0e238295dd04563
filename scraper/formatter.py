"""Formatter module for generating final file names and sidecars."""
from __future__ import annotations

import posixpath
import re

from lxml import etree

from .models import CandidateItem

POSTER_NAME = "poster.jpg"
THUMB_SUFFIX = "-thumb.jpg"
NFO_SUFFIX = ".nfo"


def sanitize_filename(name: str) -> str:
    """
    Remove or replace characters that are invalid in file names.

    Args:
        name: The name to sanitize

    Returns:
        Sanitized name safe for use as a filename
    """
    # Characters not allowed in Windows filenames: / \ : * ? " < > |
    sanitized = re.sub(r'[<>:"/\\|?*]', '', name)
    sanitized = sanitized.strip('. ')
    sanitized = re.sub(r'\s+', ' ', sanitized)
    return sanitized


def episode_width(total_episodes: int) -> int:
    """Digits used for episode numbers in a season of *total_episodes*."""
    return max(2, len(str(total_episodes))) if total_episodes > 0 else 2


def format_episode_code(season: int, episode: int, total_episodes: int = 0) -> str:
    """
    Format season and episode numbers.

    Returns:
        Episode code such as 'S01E04', or 'S01E004' in a 100+ episode season
    """
    width = episode_width(total_episodes)
    return f"S{season:02d}E{episode:0{width}d}"


def format_episode_name(
    series_name: str,
    season: int,
    episode: int,
    episode_title: str | None,
    extension: str = "",
    total_episodes: int = 0,
) -> str:
    """
    Format an episode filename.

    Format: {Series} - S{season:02}E{episode:0N} - {Episode Title}.ext

    The title segment is dropped when no episode title is known.
    """
    parts = [sanitize_filename(series_name), format_episode_code(season, episode, total_episodes)]
    if episode_title:
        title = sanitize_filename(episode_title)
        if title:
            parts.append(title)
    return " - ".join(parts) + extension


def target_name(series_name: str, item: CandidateItem) -> str | None:
    """New file name for *item*, or None when its episode is unknown."""
    if item.match.episode is None:
        return None
    return format_episode_name(
        series_name,
        item.match.season_or_default,
        item.match.episode,
        item.metadata.title if item.metadata else None,
        item.file.extension,
        item.season_episode_count,
    )


def nfo_path(file_path: str) -> str:
    return posixpath.splitext(file_path)[0] + NFO_SUFFIX


def thumb_path(file_path: str) -> str:
    return posixpath.splitext(file_path)[0] + THUMB_SUFFIX


def poster_path(directory: str) -> str:
    return posixpath.join(directory, POSTER_NAME)


def build_nfo(item: CandidateItem) -> bytes:
    """Kodi-style ``episodedetails`` document for one item."""
    metadata = item.metadata
    root = etree.Element("episodedetails")
    etree.SubElement(root, "title").text = metadata.title if metadata else ""
    etree.SubElement(root, "season").text = str(item.match.season_or_default)
    etree.SubElement(root, "episode").text = (
        str(item.match.episode) if item.match.episode is not None else ""
    )
    etree.SubElement(root, "plot").text = (metadata.overview if metadata else None) or ""
    etree.SubElement(root, "aired").text = (metadata.air_date if metadata else None) or ""
    runtime = metadata.runtime if metadata else None
    etree.SubElement(root, "runtime").text = str(runtime) if runtime else ""
    return etree.tostring(
        root,
        xml_declaration=True,
        encoding="UTF-8",
        standalone=True,
        pretty_print=True,
    )
