"""Storage backends the scanner reads from and writes to.

Paths handed to and returned by a source are backend-relative POSIX
paths rooted at ``/``.
"""
from __future__ import annotations

import logging
import posixpath
from datetime import datetime
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests

from .models import FileEntry, RenameObject

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class SourceError(Exception):
    """Exception raised when a source cannot be listed."""
    pass


def normalize_path(path: str) -> str:
    """Return an absolute, normalized POSIX path."""
    return posixpath.normpath("/" + (path or "").strip().lstrip("/"))


class MediaSource:
    """Base class for storage backends.

    ``max_batch_size`` is the largest rename list a single
    :meth:`batch_rename` call accepts (``None`` = unlimited).
    """

    type = "base"
    max_batch_size: int | None = None

    def __init__(self, name: str = ""):
        self.name = name or self.type

    def list_dir(self, path: str) -> list[FileEntry]:
        raise NotImplementedError

    def batch_rename(self, src_dir: str, renames: list[RenameObject]) -> bool:
        raise NotImplementedError

    def write_file(self, path: str, content: bytes | str) -> bool:
        raise NotImplementedError


class LocalSource(MediaSource):
    """A directory tree on local disk."""

    type = "local"

    def __init__(self, root: str | Path, name: str = ""):
        super().__init__(name or str(root))
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        full = (self.root / normalize_path(path).lstrip("/")).resolve()
        if full != self.root and self.root not in full.parents:
            raise SourceError(f"Access denied: {path} is outside the source root")
        return full

    def _relative(self, full: Path) -> str:
        return "/" + full.relative_to(self.root).as_posix()

    def list_dir(self, path: str) -> list[FileEntry]:
        directory = self._resolve(path)
        try:
            children = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise SourceError(f"Cannot list {path}: {e}") from e

        entries = []
        for child in children:
            is_dir = child.is_dir()
            size = None
            modified = None
            if not is_dir:
                try:
                    stat = child.stat()
                    size = stat.st_size
                    modified = datetime.fromtimestamp(stat.st_mtime)
                except OSError:
                    pass
            entries.append(FileEntry(
                name=child.name,
                path=self._relative(child),
                is_dir=is_dir,
                size=size,
                modified_at=modified,
            ))
        return entries

    def batch_rename(self, src_dir: str, renames: list[RenameObject]) -> bool:
        try:
            directory = self._resolve(src_dir)
        except SourceError as e:
            log.error("%s", e)
            return False

        success = True
        for obj in renames:
            source = directory / obj.src_name
            dest = directory / obj.new_name
            if dest.exists() and source.resolve() != dest.resolve():
                log.error("Cannot rename %s: destination %s exists", obj.src_name, obj.new_name)
                success = False
                continue
            try:
                source.rename(dest)
            except OSError as e:
                log.error("Rename %s failed: %s", obj.src_name, e)
                success = False
        return success

    def write_file(self, path: str, content: bytes | str) -> bool:
        try:
            target = self._resolve(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            data = content.encode("utf-8") if isinstance(content, str) else content
            target.write_bytes(data)
            return True
        except (SourceError, OSError) as e:
            log.error("Write %s failed: %s", path, e)
            return False


class OpenListSource(MediaSource):
    """An OpenList / AList server reached over its HTTP API."""

    type = "openlist"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        name: str = "",
        max_batch_size: int | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(name or base_url)
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_batch_size = max_batch_size or None
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self.token} if self.token else {}

    def _post(self, endpoint: str, payload: dict[str, Any]) -> dict:
        response = requests.post(
            f"{self.base_url}{endpoint}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def list_dir(self, path: str) -> list[FileEntry]:
        req_path = normalize_path(path)
        try:
            data = self._post("/api/fs/list", {
                "path": req_path,
                "password": "",
                "page": 1,
                "per_page": 0,
                "refresh": True,
            })
        except (requests.exceptions.RequestException, ValueError) as e:
            raise SourceError(f"Cannot list {req_path}: {e}") from e

        if data.get("code") != 200:
            raise SourceError(data.get("message") or f"Failed to list {req_path}")

        entries = []
        for item in (data.get("data") or {}).get("content") or []:
            modified = None
            if item.get("modified"):
                try:
                    modified = datetime.fromisoformat(item["modified"].replace("Z", "+00:00"))
                except ValueError:
                    pass
            entries.append(FileEntry(
                name=item["name"],
                path=posixpath.join(req_path, item["name"]),
                is_dir=bool(item.get("is_dir")),
                size=item.get("size"),
                modified_at=modified,
            ))
        return entries

    def batch_rename(self, src_dir: str, renames: list[RenameObject]) -> bool:
        payload = {
            "src_dir": normalize_path(src_dir),
            "rename_objects": [
                {"src_name": obj.src_name, "new_name": obj.new_name} for obj in renames
            ],
        }
        try:
            data = self._post("/api/fs/batch_rename", payload)
        except (requests.exceptions.RequestException, ValueError) as e:
            log.error("OpenList batch rename in %s failed: %s", src_dir, e)
            return False
        if data.get("code") != 200:
            log.error("OpenList batch rename failed: %s", data.get("message"))
            return False
        return True

    def write_file(self, path: str, content: bytes | str) -> bool:
        target = normalize_path(path)
        data = content.encode("utf-8") if isinstance(content, str) else content
        headers = {
            **self._headers(),
            "Content-Type": "application/octet-stream",
            "File-Path": quote(target),
        }
        log.debug("PUT %s/api/fs/put -> %s", self.base_url, target)
        try:
            response = requests.put(
                f"{self.base_url}/api/fs/put",
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            log.error("OpenList write %s failed: %s", target, e)
            return False
        if result.get("code") != 200:
            log.error("OpenList write failed: %s %s", result.get("code"), result.get("message"))
            return False
        return True


def create_source(config: dict[str, Any]) -> MediaSource:
    """Build a source from a ``{"type": ...}`` configuration mapping."""
    source_type = config.get("type", "local")
    if source_type == "local":
        return LocalSource(config["path"], name=config.get("name", ""))
    if source_type == "openlist":
        return OpenListSource(
            config["url"],
            token=config.get("token", ""),
            name=config.get("name", ""),
            max_batch_size=config.get("max_batch_size") or None,
        )
    raise ValueError(f"Unknown source type: {source_type}")
