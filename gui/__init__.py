"""OpenList Scraper GUI Package."""
from .worker import ScanWorker, QtLogHandler

__all__ = [
    "ScanWorker",
    "QtLogHandler",
]
