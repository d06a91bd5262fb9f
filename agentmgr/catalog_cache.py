"""
Catalog cache store.

The catalog manager reads and writes the last fetched catalog through the
CacheStore contract. FileCacheStore keeps it on disk next to a small metadata
file; MemoryCacheStore keeps it in process.
"""

from __future__ import annotations

import datetime
import json
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from .errors import NotFoundError

CATALOG_FILE = "catalog.json"
META_FILE = "catalog.meta.json"

# Cache staleness threshold (1 hour)
DEFAULT_MAX_AGE_SECONDS = 3600


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(microsecond=0)


@dataclass(frozen=True)
class CacheEntry:
    """
    Cached catalog bytes with metadata.

    Attributes:
        data: Raw catalog document
        etag: Catalog version the data was saved under
        updated_at: When the data was saved (UTC)
    """
    data: bytes
    etag: str
    updated_at: datetime.datetime


class CacheStore(ABC):
    """Read/write contract for the catalog cache."""

    @abstractmethod
    def get_cache(self) -> CacheEntry:
        """
        Return the cached catalog.

        Raises:
            NotFoundError: If nothing is cached
        """

    @abstractmethod
    def save_cache(self, data: bytes, version: str) -> None:
        """Store catalog bytes under the given version."""


class MemoryCacheStore(CacheStore):
    """In-process cache store."""

    def __init__(self) -> None:
        self._entry: CacheEntry | None = None
        self._lock = threading.Lock()

    def get_cache(self) -> CacheEntry:
        with self._lock:
            if self._entry is None:
                raise NotFoundError("no cached catalog")
            return self._entry

    def save_cache(self, data: bytes, version: str) -> None:
        with self._lock:
            self._entry = CacheEntry(data=bytes(data), etag=version, updated_at=_utcnow())


class FileCacheStore(CacheStore):
    """Cache store backed by files in a directory."""

    def __init__(self, cache_dir: str | Path):
        self.cache_dir = Path(cache_dir)

    @property
    def data_path(self) -> Path:
        return self.cache_dir / CATALOG_FILE

    @property
    def meta_path(self) -> Path:
        return self.cache_dir / META_FILE

    def get_cache(self) -> CacheEntry:
        try:
            data = self.data_path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"no cached catalog at {self.data_path}") from e

        etag = ""
        updated_at = datetime.datetime.fromtimestamp(
            self.data_path.stat().st_mtime, datetime.timezone.utc
        )
        try:
            with open(self.meta_path, "r", encoding="utf-8") as f:
                meta = json.load(f)
            etag = meta.get("etag", "")
            if meta.get("updated_at"):
                updated_at = datetime.datetime.fromisoformat(meta["updated_at"].replace("Z", "+00:00"))
        except (OSError, ValueError, AttributeError):
            # Missing or damaged metadata falls back to the data file's mtime
            pass

        return CacheEntry(data=data, etag=etag, updated_at=updated_at)

    def save_cache(self, data: bytes, version: str) -> None:
        """
        Write the catalog and its metadata.

        Raises:
            OSError: If the cache directory or files cannot be written
        """
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        meta = {
            "etag": version,
            "updated_at": _utcnow().isoformat().replace("+00:00", "Z"),
        }

        # Atomic write: write to temp file then rename
        _atomic_write(self.data_path, data)
        _atomic_write(self.meta_path, json.dumps(meta, indent=2, sort_keys=True).encode("utf-8"))


def _atomic_write(path: Path, data: bytes) -> None:
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with open(temp_path, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    temp_path.replace(path)


def is_cache_stale(entry: CacheEntry | None, max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS) -> bool:
    """
    Check if a cache entry is older than max_age_seconds.

    Returns:
        True if the entry is missing or stale
    """
    if entry is None:
        return True

    updated_at = entry.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=datetime.timezone.utc)
    age = datetime.datetime.now(datetime.timezone.utc) - updated_at
    return age.total_seconds() > max_age_seconds
