"""File-backed response cache keyed by task fingerprint.

One JSON file per (agent, fingerprint). Writes go through a temp file and an
atomic rename, so concurrent writers never leave a torn entry: the last
writer wins. ``lookup`` treats expired entries as absent but leaves them on
disk; ``sweep`` evicts them.
"""

import hashlib
import json
import logging
import os
import re
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from consultants.errors import CacheUnavailable
from consultants.models import AgentResponse, Task

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _normalize_query(query: str) -> str:
    return _WHITESPACE.sub(" ", query.lower()).strip()


def fingerprint(task: Task) -> str:
    """Stable SHA-256 over (normalized prompt, category, context hash)."""
    parts = [_normalize_query(task.prompt), task.category]
    if task.context:
        parts.append(hashlib.sha256(task.context.encode("utf-8")).hexdigest())
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    fingerprint: str
    agent: str
    response: AgentResponse
    created_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl


@dataclass(frozen=True)
class CacheStats:
    total_entries: int
    expired_entries: int
    total_size_kb: int
    cache_dir: Path
    ttl_hours: float


class ResponseCache:
    """Per-agent response cache on the local filesystem."""

    def __init__(
        self,
        cache_dir: Path,
        ttl_sec: float = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._dir = Path(cache_dir)
        self._ttl = ttl_sec
        self._clock = clock

    @property
    def ttl_sec(self) -> float:
        return self._ttl

    def _ensure_dir(self) -> None:
        try:
            if not self._dir.is_dir():
                self._dir.mkdir(parents=True, exist_ok=True)
                self._dir.chmod(0o700)
        except OSError as exc:
            raise CacheUnavailable(f"Cannot create cache dir {self._dir}: {exc}") from exc

    def _path(self, fp: str, agent: str) -> Path:
        return self._dir / f"{_UNSAFE_CHARS.sub('_', agent)}_{fp}.json"

    def _read(self, path: Path) -> CacheEntry | None:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return CacheEntry(
                fingerprint=raw["fingerprint"],
                agent=raw["agent"],
                response=AgentResponse.from_dict(raw["response"]),
                created_at=float(raw["created_at"]),
                ttl=float(raw["ttl"]),
            )
        except FileNotFoundError:
            return None
        except (ValueError, KeyError, TypeError, AttributeError, OverflowError) as exc:
            logger.warning("Ignoring corrupt cache entry %s: %s", path.name, exc)
            return None
        except OSError as exc:
            raise CacheUnavailable(f"Cannot read {path}: {exc}") from exc

    def lookup(self, fp: str, agent: str) -> AgentResponse | None:
        """Return the cached response, or None if absent or expired."""
        self._ensure_dir()
        entry = self._read(self._path(fp, agent))
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            logger.debug("Cache expired for %s (%s)", agent, fp[:12])
            return None
        logger.info("Cache hit for %s (%s)", agent, fp[:12])
        return entry.response

    def store(self, fp: str, response: AgentResponse, ttl: float | None = None) -> None:
        self._ensure_dir()
        payload = {
            "fingerprint": fp,
            "agent": response.agent,
            "created_at": self._clock(),
            "ttl": self._ttl if ttl is None else ttl,
            "response": response.to_dict(),
        }
        path = self._path(fp, response.agent)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".tmp_", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, path)
        except OSError as exc:
            raise CacheUnavailable(f"Cannot write {path}: {exc}") from exc
        logger.debug("Cached %s (%s)", response.agent, fp[:12])

    def invalidate(self, fp: str, agent: str | None = None) -> int:
        """Remove entries for a fingerprint (one agent, or all). Returns the count removed."""
        self._ensure_dir()
        paths = [self._path(fp, agent)] if agent else list(self._dir.glob(f"*_{fp}.json"))
        removed = 0
        for path in paths:
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        return removed

    def _entries(self) -> list[Path]:
        self._ensure_dir()
        return [p for p in self._dir.glob("*.json") if not p.name.startswith(".tmp_")]

    def sweep(self) -> int:
        """Evict expired or unreadable entries. Returns the count removed."""
        now = self._clock()
        removed = 0
        for path in self._entries():
            entry = self._read(path)
            if entry is None or not entry.is_fresh(now):
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Swept %d expired cache entries", removed)
        return removed

    def clear(self) -> int:
        paths = self._entries()
        for path in paths:
            path.unlink(missing_ok=True)
        return len(paths)

    def stats(self) -> CacheStats:
        now = self._clock()
        paths = self._entries()
        expired = 0
        size = 0
        for path in paths:
            size += path.stat().st_size
            entry = self._read(path)
            if entry is None or not entry.is_fresh(now):
                expired += 1
        return CacheStats(
            total_entries=len(paths),
            expired_entries=expired,
            total_size_kb=size // 1024,
            cache_dir=self._dir,
            ttl_hours=self._ttl / 3600,
        )
