"""
OpenList Scraper - TV episode identification and scraping

Identifies episode files on local disk or an OpenList server, confirms
the series against TMDB and renames the files, writing NFO files and
artwork alongside.
"""
from .models import (
    FileEntry,
    MatchResult,
    SeriesGroup,
    SeriesIdentity,
    EpisodeRecord,
    CandidateItem,
    BatchOptions,
    BatchReport,
    SeriesDecision,
    EpisodesDecision,
)
from .patterns import PatternMatcher, PatternRule
from .semantic import SemanticMatcher
from .llm import LLMClient, LLMError
from .tmdb import TMDBClient, TMDBError
from .sources import LocalSource, OpenListSource, SourceError, create_source
from .confirmation import DecisionBroker, ConfirmationRequest
from .scanner import ScannerService, ScanListener
from .config import SettingsManager, ScanSettings

__version__ = "0.1.0"
__all__ = [
    "FileEntry",
    "MatchResult",
    "SeriesGroup",
    "SeriesIdentity",
    "EpisodeRecord",
    "CandidateItem",
    "BatchOptions",
    "BatchReport",
    "SeriesDecision",
    "EpisodesDecision",
    "PatternMatcher",
    "PatternRule",
    "SemanticMatcher",
    "LLMClient",
    "LLMError",
    "TMDBClient",
    "TMDBError",
    "LocalSource",
    "OpenListSource",
    "SourceError",
    "create_source",
    "DecisionBroker",
    "ConfirmationRequest",
    "ScannerService",
    "ScanListener",
    "SettingsManager",
    "ScanSettings",
]
