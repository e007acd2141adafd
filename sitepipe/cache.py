"""Per-category content cache and remembered accumulation for incremental steps.

A step looks each source up with `is_fresh`; stale or unseen sources are
reprocessed and stored, and `results()` hands back every remembered result in
the order it was first seen. Entries are evicted only by `forget`, which the
watch dispatcher reaches through `invalidate` when a source is deleted, or
through `forget_missing` when dropped events force a resync.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from .errors import SourceIOError

CACHED_STEPS = ("styles", "scripts", "icons")


def file_digest(path: Path) -> str | None:
    """md5 of a file's bytes, or None when it no longer exists."""
    try:
        return hashlib.md5(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise SourceIOError(path, exc) from exc


@dataclass
class CacheEntry:
    digest: str
    result: Any
    deps: dict[Path, str | None] = field(default_factory=dict)
    output: Path | None = None


class TransformCache:
    """Content cache plus ordered accumulation set for one pipeline step."""

    def __init__(self, name: str):
        self.name = name
        self.lock = threading.RLock()
        self._entries: dict[Path, CacheEntry] = {}
        self._remembered: dict[Path, Any] = {}
        self.emitted: set[Path] = set()
        self.dirty = False

    def __contains__(self, path: Path) -> bool:
        return Path(path) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def paths(self) -> list[Path]:
        return list(self._remembered)

    def get(self, path: Path) -> CacheEntry | None:
        return self._entries.get(Path(path))

    def entries(self) -> Iterator[tuple[Path, CacheEntry]]:
        for path in self._remembered:
            yield path, self._entries[path]

    def results(self) -> list[Any]:
        return list(self._remembered.values())

    def is_fresh(self, path: Path, digest: str | None = None) -> bool:
        """True when path and every recorded dependency are unchanged."""
        entry = self._entries.get(Path(path))
        if entry is None:
            return False
        current = digest if digest is not None else file_digest(path)
        if current != entry.digest:
            return False
        return all(file_digest(dep) == dep_digest for dep, dep_digest in entry.deps.items())

    def store(self, path: Path, entry: CacheEntry):
        path = Path(path)
        self._entries[path] = entry
        self._remembered[path] = entry.result
        self.dirty = True

    def forget(self, path: Path) -> list[CacheEntry]:
        """Evict path, or every path beneath it when it names a directory."""
        path = Path(path)
        evicted = []
        for key in list(self._entries):
            if key == path or path in key.parents:
                evicted.append(self._entries.pop(key))
                self._remembered.pop(key, None)
        if evicted:
            self.dirty = True
        return evicted

    def forget_missing(self) -> list[Path]:
        """Evict every remembered source that is no longer on disk."""
        missing = [path for path in self._entries if not path.exists()]
        for path in missing:
            self.forget(path)
        return missing

    def clear(self):
        self._entries.clear()
        self._remembered.clear()
        self.emitted.clear()
        self.dirty = True


class Caches:
    """The cached steps' caches, owned by the orchestrator and passed to each step."""

    def __init__(self, names: Iterable[str] = CACHED_STEPS):
        self._caches = {name: TransformCache(name) for name in names}

    def __getitem__(self, name: str) -> TransformCache:
        return self._caches[name]

    def __contains__(self, name: str) -> bool:
        return name in self._caches

    def __iter__(self):
        return iter(self._caches.values())


def refresh(
    cache: TransformCache,
    sources: Iterable[Path],
    transform: Callable[[Path, str], CacheEntry],
) -> list[Path]:
    """Reprocess the stale sources into cache; return the paths that were redone."""
    redone = []
    for path in sources:
        digest = file_digest(path)
        if digest is None:
            continue
        if cache.is_fresh(path, digest):
            continue
        cache.store(path, transform(path, digest))
        redone.append(path)
    return redone


def invalidate(event, cache: TransformCache) -> bool:
    """Evict a deleted file from cache and accumulation; other events are no-ops."""
    if event.kind != "deleted":
        return False
    with cache.lock:
        return bool(cache.forget(event.path))
