"""TMDB API client module (catalog capability)."""
from __future__ import annotations

import logging
import os
import re
import time
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from .models import EpisodeRecord, SeriesSearchResult

log = logging.getLogger(__name__)


TMDB_BASE_URL = "https://api.themoviedb.org/3"
IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
DEFAULT_TIMEOUT = 10
RATE_LIMIT_DELAY = 0.25  # 250ms between requests to avoid rate limiting
DEFAULT_LANGUAGE = "en-US"


def load_credentials() -> tuple[str | None, str | None]:
    """
    Load TMDB credentials from the environment or a .env file.

    Priority:
    1. TMDB_API_KEY / TMDB_TOKEN environment variables
    2. .env file in current directory
    3. .env file in user home directory

    Returns:
        (api_key, access_token); either may be None
    """
    for env_path in (None, Path.cwd() / ".env", Path.home() / ".env"):
        if env_path is not None:
            if not env_path.exists():
                continue
            load_dotenv(env_path)
        api_key = os.environ.get("TMDB_API_KEY")
        token = os.environ.get("TMDB_TOKEN")
        if api_key or token:
            return api_key, token
    return None, None


def normalize_for_comparison(text: str) -> str:
    """Normalize a string for comparison."""
    text = text.lower()
    text = re.sub(r'[^\w\s]', '', text)
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def similarity_score(s1: str, s2: str) -> float:
    """Calculate similarity between two strings."""
    s1_norm = normalize_for_comparison(s1)
    s2_norm = normalize_for_comparison(s2)
    return SequenceMatcher(None, s1_norm, s2_norm).ratio()


def clean_query(query: str) -> str:
    """Remove trailing hyphens and extra spaces from a search query."""
    return re.sub(r'[-\s]+$', '', query).strip()


class TMDBError(Exception):
    """Exception raised for TMDB API errors."""
    pass


class TMDBClient:
    """Client for the TMDB TV endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        access_token: str | None = None,
        language: str | None = None,
        image_base_url: str = IMAGE_BASE_URL,
    ):
        """
        Initialize TMDB client.

        Args:
            api_key: TMDB v3 API key.
            access_token: TMDB read access token (sent as a Bearer header).
            language: TMDB API language tag (e.g. "en-US").
            image_base_url: Prefix for poster and still paths.

        Raises:
            TMDBError: If no credential is found
        """
        if not api_key and not access_token:
            api_key, access_token = load_credentials()
        if not api_key and not access_token:
            raise TMDBError(
                "TMDB credentials not found.\n"
                "Set TMDB_API_KEY or TMDB_TOKEN in the environment or a .env file.\n"
                "Get your free API key at: https://www.themoviedb.org/settings/api"
            )
        self.api_key = api_key
        self.access_token = access_token
        self.language = language or DEFAULT_LANGUAGE
        self.image_base_url = image_base_url.rstrip("/")
        self._last_request_time = 0.0
        log.debug("Using TMDB language: %s", self.language)

    def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        elapsed = time.time() - self._last_request_time
        if elapsed < RATE_LIMIT_DELAY:
            time.sleep(RATE_LIMIT_DELAY - elapsed)
        self._last_request_time = time.time()

    def _image_url(self, path: str | None) -> str | None:
        return f"{self.image_base_url}{path}" if path else None

    def _request(self, endpoint: str, params: dict | None = None) -> dict | None:
        """
        Make a request to the TMDB API.

        Args:
            endpoint: API endpoint (e.g., '/search/tv')
            params: Query parameters

        Returns:
            JSON response or None on error (404 included)
        """
        self._rate_limit()

        url = f"{TMDB_BASE_URL}{endpoint}"
        all_params: dict[str, Any] = {"language": self.language, **(params or {})}
        headers = {"Accept": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        else:
            all_params["api_key"] = self.api_key

        # Log the request (hide API key)
        log_params = {k: v for k, v in all_params.items() if k != "api_key"}
        log.debug("GET %s params=%s", endpoint, log_params)

        try:
            response = requests.get(
                url, params=all_params, headers=headers, timeout=DEFAULT_TIMEOUT
            )
            if response.status_code == 404:
                log.debug("Not found: %s", endpoint)
                return None
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            log.warning("TMDB request %s failed: %s", endpoint, e)
            return None
        except ValueError as e:
            log.warning("TMDB response for %s is not JSON: %s", endpoint, e)
            return None

    def _score(self, result: dict, title: str) -> float:
        """Rank score: title similarity, exact-title bonus, popularity tiebreak."""
        name = result.get("name", "")
        original = result.get("original_name", "")
        title_sim = max(similarity_score(title, name), similarity_score(title, original))

        title_norm = normalize_for_comparison(title)
        exact_match = title_norm in (
            normalize_for_comparison(name),
            normalize_for_comparison(original),
        )
        exact_bonus = 0.3 if exact_match else 0.0

        popularity = result.get("popularity", 0) or 0
        pop_bonus = min(popularity / 1000, 1.0) * 0.05
        return title_sim + exact_bonus + pop_bonus

    def _to_episode(self, data: dict, series_id: str, season: int) -> EpisodeRecord:
        return EpisodeRecord(
            catalog_episode_id=str(data.get("id", "")),
            season=data.get("season_number", season),
            episode=data.get("episode_number", 0),
            title=data.get("name", ""),
            overview=data.get("overview") or None,
            air_date=data.get("air_date") or None,
            still_url=self._image_url(data.get("still_path")),
            runtime=data.get("runtime"),
        )

    def search_series(self, query: str) -> list[SeriesSearchResult]:
        """
        Search TMDB for a TV series.

        Args:
            query: Series title to search for

        Returns:
            Results ranked best first; empty on error or no hits
        """
        query = clean_query(query)
        if not query:
            return []

        data = self._request("/search/tv", {"query": query})
        if not data or not data.get("results"):
            return []

        ranked = sorted(data["results"], key=lambda r: self._score(r, query), reverse=True)
        results = []
        for item in ranked:
            first_air = item.get("first_air_date") or ""
            results.append(SeriesSearchResult(
                id=str(item["id"]),
                title=item.get("name", ""),
                original_title=item.get("original_name") or None,
                year=first_air[:4] if len(first_air) >= 4 else None,
                poster_url=self._image_url(item.get("poster_path")),
                overview=item.get("overview") or None,
                provider="tmdb",
            ))
        return results

    def list_season_episodes(self, series_id: str, season: int) -> list[EpisodeRecord]:
        """
        Get every episode of one season.

        Returns:
            Episode records in catalog order; empty on error
        """
        data = self._request(f"/tv/{series_id}/season/{season}")
        if not data:
            return []
        return [
            self._to_episode(ep, series_id, season)
            for ep in data.get("episodes") or []
        ]

    def get_episode(
        self,
        series_id: str,
        season: int,
        episode: int,
    ) -> EpisodeRecord | None:
        """
        Get episode details from TMDB.

        Returns:
            EpisodeRecord if found, None otherwise
        """
        data = self._request(f"/tv/{series_id}/season/{season}/episode/{episode}")
        if not data:
            return None
        return self._to_episode(data, series_id, season)
