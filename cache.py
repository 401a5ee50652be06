"""
cache.py — Content-addressed, directory-based cache for summaries.

Each record lives in its own JSON file named after the digest of its key,
so a corrupt or missing record never affects any other. There is no shared
index: listing the cache means walking the record files. Writes go to a
temporary file and are moved into place with os.replace, so a reader sees
either the previous record or the complete new one.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Iterator, Optional


logger = logging.getLogger(__name__)

RECORD_VERSION = 1


@dataclass(frozen=True)
class CacheKey:
    scope: str  # "file" or "directory"
    path: str
    fingerprint: str
    query: str
    language: str
    length_tier: str

    def digest(self) -> str:
        canonical = json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheRecord:
    key: CacheKey
    summary: str
    created_at: str
    fingerprint: str

    @classmethod
    def new(cls, key: CacheKey, summary: str) -> "CacheRecord":
        return cls(key=key, summary=summary, created_at=now_iso_utc(), fingerprint=key.fingerprint)

    def to_dict(self) -> dict:
        return {
            "version": RECORD_VERSION,
            "key": asdict(self.key),
            "summary": self.summary,
            "created_at": self.created_at,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "CacheRecord":
        return cls(
            key=CacheKey(**raw["key"]),
            summary=str(raw["summary"]),
            created_at=str(raw["created_at"]),
            fingerprint=str(raw["fingerprint"]),
        )


KeyPredicate = Callable[[CacheKey], bool]


class CacheStore:
    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir).expanduser()
        self._bypass: list[KeyPredicate] = []
        self._refreshed: set[str] = set()
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Cache directory %s is not usable, caching disabled: %s", self.cache_dir, e)

    def record_path(self, key: CacheKey) -> Path:
        digest = key.digest()
        return self.cache_dir / digest[:2] / f"{digest}.json"

    def _bypassed(self, key: CacheKey) -> bool:
        if not self._bypass or key.digest() in self._refreshed:
            return False
        return any(pred(key) for pred in self._bypass)

    @staticmethod
    def _read(path: Path) -> Optional[CacheRecord]:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheRecord.from_dict(raw)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            logger.warning("Ignoring unreadable cache record %s: %s", path, e)
            return None

    def lookup(self, key: CacheKey) -> Optional[CacheRecord]:
        if self._bypassed(key):
            return None
        record = self._read(self.record_path(key))
        if record is None:
            return None
        # A record under this name but for another key or content is stale.
        if record.key != key or record.fingerprint != key.fingerprint:
            return None
        return record

    def store(self, record: CacheRecord) -> bool:
        """Write a record atomically. Returns False (and logs) on I/O failure."""
        path = self.record_path(record.key)
        payload = json.dumps(record.to_dict(), indent=2)
        tmp_name: Optional[str] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            logger.warning("Could not write cache record %s: %s", path, e)
            return False
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        self._refreshed.add(record.key.digest())
        return True

    def invalidate(self, predicate: KeyPredicate) -> int:
        """Bypass lookups of matching keys until they are rewritten by this store.

        Nothing is deleted. Returns how many records on disk currently match.
        """
        self._bypass.append(predicate)
        return sum(1 for _, record in self._walk() if predicate(record.key))

    def purge(self, predicate: Optional[KeyPredicate] = None) -> int:
        """Delete matching record files (every record when predicate is None)."""
        removed = 0
        if predicate is None:
            # Unreadable records go too, so no parsing here.
            for path in list(self._record_files()):
                try:
                    path.unlink()
                    removed += 1
                except OSError as e:
                    logger.warning("Could not delete cache record %s: %s", path, e)
            for shard in self.cache_dir.glob("*/"):
                try:
                    shard.rmdir()
                except OSError:
                    pass
            self._refreshed.clear()
            return removed

        for path, record in self._walk():
            if not predicate(record.key):
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning("Could not delete cache record %s: %s", path, e)
            self._refreshed.discard(record.key.digest())
        return removed

    def records(self) -> Iterator[CacheRecord]:
        for _, record in self._walk():
            yield record

    def _record_files(self) -> Iterator[Path]:
        if not self.cache_dir.is_dir():
            return
        yield from sorted(self.cache_dir.glob("*/*.json"))

    def _walk(self) -> Iterator[tuple[Path, CacheRecord]]:
        for path in self._record_files():
            record = self._read(path)
            if record is not None:
                yield path, record

    def stats(self) -> dict:
        files = list(self._record_files())
        size = 0
        for f in files:
            try:
                size += f.stat().st_size
            except OSError:
                pass
        return {"cached_entries": len(files), "cache_bytes": size, "cache_dir": str(self.cache_dir)}


def now_iso_utc() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
