"""Persistent per-file analysis cache for incremental runs.

The cache answers one question per file: is the result of the previous run
still valid? Checks run cheapest first (presence, size/mtime, configuration
fingerprint, content digest). The store is a single JSON document.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from codewarden.domain.violations import CacheError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

CURRENT_VERSION = 1


def _now() -> int:
    return int(time.time())


@dataclass
class CacheEntry:
    """Cached facts about one analysed file."""

    content_hash: str
    size: int
    modified_at: int
    violation_count: int
    analyzed_at: int
    config_fingerprint: str


@dataclass
class CacheMetadata:
    created_at: int = field(default_factory=_now)
    updated_at: int = field(default_factory=_now)
    hits: int = 0
    misses: int = 0


@dataclass
class CacheStore:
    """In-memory form of the cache document."""

    version: int = CURRENT_VERSION
    config_fingerprint: str | None = None
    files: dict[str, CacheEntry] = field(default_factory=dict)
    metadata: CacheMetadata = field(default_factory=CacheMetadata)


@dataclass(frozen=True)
class CacheStatistics:
    total_files: int
    cache_hits: int
    cache_misses: int
    hit_rate: float
    created_at: int
    updated_at: int

    def format_display(self) -> str:
        return (
            f"Cache: {self.total_files} files, {self.hit_rate * 100:.1f}% hit rate "
            f"({self.cache_hits} hits, {self.cache_misses} misses)"
        )


# ---------------------------------------------------------------------------
# Migration
# ---------------------------------------------------------------------------


def _migrate_v0(doc: dict[str, Any]) -> dict[str, Any]:
    # Version 0 documents predate metadata counters and the fingerprint.
    doc.setdefault("config_fingerprint", None)
    doc.setdefault("files", {})
    now = _now()
    meta = doc.setdefault("metadata", {})
    meta.setdefault("created_at", now)
    meta.setdefault("updated_at", now)
    meta.setdefault("hits", 0)
    meta.setdefault("misses", 0)
    doc["version"] = 1
    return doc


# source version -> step producing the next version
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _migrate_v0,
}


def migrate(doc: dict[str, Any]) -> dict[str, Any]:
    """Apply migration steps until *doc* reaches :data:`CURRENT_VERSION`."""
    version = doc.get("version", 0)
    while version != CURRENT_VERSION:
        step = MIGRATIONS.get(version) if isinstance(version, int) else None
        if step is None:
            msg = (
                f"Unsupported cache version: {version}. "
                "Please delete the cache file."
            )
            raise CacheError(msg)
        logger.info("Migrating cache from version %s to %s", version, version + 1)
        doc = step(doc)
        version = doc["version"]
    return doc


def _store_from_doc(doc: dict[str, Any]) -> CacheStore:
    try:
        files = {
            cache_key(path): CacheEntry(**entry)
            for path, entry in doc.get("files", {}).items()
        }
        return CacheStore(
            version=doc["version"],
            config_fingerprint=doc.get("config_fingerprint"),
            files=files,
            metadata=CacheMetadata(**doc["metadata"]),
        )
    except (KeyError, TypeError, AttributeError) as exc:
        msg = f"malformed cache document: {exc}"
        raise CacheError(msg) from exc


def cache_key(path: Path | str) -> str:
    """Entry key for *path*: resolved, POSIX, relative to the cwd when beneath it.

    Every alias of one file (``a.rs``, ``./a.rs``, an absolute path) maps to
    the same key.
    """
    absolute = Path(os.path.realpath(path))
    try:
        return absolute.relative_to(Path.cwd()).as_posix()
    except ValueError:
        return absolute.as_posix()


def content_digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: Path) -> str:
    """SHA-256 hex digest of the file content."""
    digest = hashlib.sha256()
    try:
        with path.open("rb") as fh:
            for chunk in iter(lambda: fh.read(65536), b""):
                digest.update(chunk)
    except OSError as exc:
        msg = f"cannot read {path}: {exc}"
        raise CacheError(msg) from exc
    return digest.hexdigest()


def _stat(path: Path) -> tuple[int, int]:
    try:
        st = path.stat()
    except OSError as exc:
        msg = f"cannot stat {path}: {exc}"
        raise CacheError(msg) from exc
    return st.st_size, int(st.st_mtime)


# ---------------------------------------------------------------------------
# FileCache
# ---------------------------------------------------------------------------


class FileCache:
    """JSON-backed file cache. Not thread-safe; confine to one thread."""

    def __init__(self, cache_path: Path) -> None:
        self.cache_path = Path(cache_path)
        self._store = CacheStore()
        self._dirty = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def config_fingerprint(self) -> str | None:
        return self._store.config_fingerprint

    def load(self) -> None:
        """Load the cache file, migrating old formats. A missing file starts fresh."""
        if not self.cache_path.exists():
            self._store = CacheStore()
            self._dirty = True
            return
        try:
            doc = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            msg = f"cannot load cache {self.cache_path}: {exc}"
            raise CacheError(msg) from exc
        if not isinstance(doc, dict):
            msg = f"malformed cache document in {self.cache_path}"
            raise CacheError(msg)

        migrated = doc.get("version", 0) != CURRENT_VERSION
        self._store = _store_from_doc(migrate(doc))
        self._dirty = migrated
        logger.debug(
            "Loaded cache %s with %d entries", self.cache_path, len(self._store.files)
        )

    def save(self) -> None:
        """Write the cache if it changed since the last load/save."""
        if not self._dirty:
            return
        self._store.metadata.updated_at = max(_now(), self._store.metadata.created_at)
        doc = {
            "version": self._store.version,
            "config_fingerprint": self._store.config_fingerprint,
            "files": {p: asdict(e) for p, e in self._store.files.items()},
            "metadata": asdict(self._store.metadata),
        }
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        except OSError as exc:
            msg = f"cannot write cache {self.cache_path}: {exc}"
            raise CacheError(msg) from exc
        self._dirty = False

    def needs_analysis(self, path: Path, config_fingerprint: str) -> bool:
        """Return ``True`` (miss) if *path* must be analysed again."""
        path = Path(path)
        self._dirty = True
        entry = self._store.files.get(cache_key(path))
        if entry is None:
            return self._miss()

        size, mtime = _stat(path)
        if entry.size != size or entry.modified_at != mtime:
            return self._miss()
        if entry.config_fingerprint != config_fingerprint:
            return self._miss()
        if entry.content_hash != compute_file_hash(path):
            return self._miss()

        self._store.metadata.hits += 1
        return False

    def update_entry(
        self,
        path: Path,
        violation_count: int,
        config_fingerprint: str,
        content_hash: str | None = None,
    ) -> None:
        """Record a fresh analysis result for *path*.

        Pass *content_hash* when the caller already holds the digest of the
        bytes it analysed; an edit made after that read then shows up as a
        digest mismatch on the next check instead of being trusted.
        """
        path = Path(path)
        size, mtime = _stat(path)
        if content_hash is None:
            content_hash = compute_file_hash(path)
        self._store.files[cache_key(path)] = CacheEntry(
            content_hash=content_hash,
            size=size,
            modified_at=mtime,
            violation_count=violation_count,
            analyzed_at=_now(),
            config_fingerprint=config_fingerprint,
        )
        self._dirty = True

    def get_entry(self, path: Path) -> CacheEntry | None:
        return self._store.files.get(cache_key(path))

    def cleanup(self) -> int:
        """Drop entries whose file no longer exists; return how many."""
        stale = [p for p in self._store.files if not Path(p).exists()]
        for p in stale:
            del self._store.files[p]
        if stale:
            self._dirty = True
            logger.info("Removed %d stale cache entries", len(stale))
        return len(stale)

    def clear(self) -> None:
        """Empty the cache, reset counters and delete the cache file."""
        self._store = CacheStore()
        try:
            self.cache_path.unlink(missing_ok=True)
        except OSError as exc:
            msg = f"cannot remove cache {self.cache_path}: {exc}"
            raise CacheError(msg) from exc
        self._dirty = False

    def set_config_fingerprint(self, fingerprint: str) -> None:
        if self._store.config_fingerprint != fingerprint:
            self._store.config_fingerprint = fingerprint
            self._dirty = True

    def statistics(self) -> CacheStatistics:
        meta = self._store.metadata
        checks = meta.hits + meta.misses
        return CacheStatistics(
            total_files=len(self._store.files),
            cache_hits=meta.hits,
            cache_misses=meta.misses,
            hit_rate=meta.hits / checks if checks else 0.0,
            created_at=meta.created_at,
            updated_at=meta.updated_at,
        )

    def validate_coherence(self) -> None:
        """Check store invariants, raising :class:`CacheError` on violation.

        Size drift of still-existing files is only logged.
        """
        meta = self._store.metadata
        if meta.hits < 0 or meta.misses < 0:
            msg = "cache counters are negative"
            raise CacheError(msg)
        if meta.created_at > meta.updated_at:
            msg = "cache created_at is later than updated_at"
            raise CacheError(msg)
        if self._store.version != CURRENT_VERSION:
            msg = f"cache version {self._store.version} is not current"
            raise CacheError(msg)
        for raw, entry in self._store.files.items():
            path = Path(raw)
            if path.is_file() and path.stat().st_size != entry.size:
                logger.warning(
                    "File size mismatch for %s: cached %d vs actual %d",
                    raw,
                    entry.size,
                    path.stat().st_size,
                )

    def _miss(self) -> bool:
        self._store.metadata.misses += 1
        return True
