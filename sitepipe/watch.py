"""Source watching: watchdog events -> bounded queue -> one dispatcher thread.

The dispatcher is the only place watch-mode steps run, so re-runs of a
category are serialized. Events that arrive within the debounce window are
coalesced: each category runs once per batch, after every deleted path in it
has been evicted from that category's cache. When the queue overflows the
handler raises a resync flag instead; the dispatcher then evicts every cached
source that vanished and re-runs all steps.
"""

from __future__ import annotations

import os
import queue
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import STEP_NAMES, run_step
from .cache import Caches, invalidate
from .config import SiteConfig
from .errors import PipelineError
from .logging import get_logger
from .markup import MARKDOWN_SUFFIXES, TEMPLATE_SUFFIXES
from .static import StepResult

ADDED = "added"
CHANGED = "changed"
DELETED = "deleted"

MARKUP_SUFFIXES = (*TEMPLATE_SUFFIXES, *MARKDOWN_SUFFIXES)
SCRIPT_SUFFIXES = (".js", ".mjs")

log = get_logger("watch")


@dataclass(frozen=True)
class WatchEvent:
    path: Path
    kind: str
    is_directory: bool = False


def is_within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


def classify(path: Path, config: SiteConfig, is_directory: bool = False) -> str | None:
    """Map a changed path to the step that owns it, or None to ignore it."""
    path = Path(path)
    if is_within(path, config.output_dir):
        return None
    if is_within(path, config.static_dir):
        return "static"

    if is_directory:
        roots = (
            ("styles", config.styles_dir),
            ("scripts", config.scripts_dir),
            ("icons", config.icons_dir),
            ("markup", config.pages_dir),
            ("markup", config.components_dir),
        )
        for name, root in roots:
            if is_within(path, root):
                return name
        return None

    suffix = path.suffix.lower()
    if suffix in MARKUP_SUFFIXES and (
        is_within(path, config.pages_dir) or is_within(path, config.components_dir)
    ):
        return "markup"
    if suffix == ".css" and is_within(path, config.source_dir):
        return "styles"
    if suffix in SCRIPT_SUFFIXES and is_within(path, config.source_dir):
        return "scripts"
    if suffix == ".svg" and is_within(path, config.icons_dir):
        return "icons"
    return None


class QueueingHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into WatchEvents on a bounded queue."""

    def __init__(self, events: queue.Queue, overflowed: threading.Event | None = None):
        super().__init__()
        self.events = events
        self.overflowed = overflowed if overflowed is not None else threading.Event()

    def _put(self, path, kind: str, is_directory: bool = False):
        event = WatchEvent(Path(os.fsdecode(path)).resolve(), kind, is_directory)
        try:
            self.events.put_nowait(event)
        except queue.Full:
            log.warning("Watch queue full, dropping %s event for %s", kind, event.path)
            self.overflowed.set()

    def on_created(self, event):
        if not event.is_directory:
            self._put(event.src_path, ADDED)

    def on_modified(self, event):
        if not event.is_directory:
            self._put(event.src_path, CHANGED)

    def on_deleted(self, event):
        self._put(event.src_path, DELETED, event.is_directory)

    def on_moved(self, event):
        self._put(event.src_path, DELETED, event.is_directory)
        self._put(event.dest_path, ADDED, event.is_directory)


class Dispatcher:
    """Single consumer that invalidates caches and re-runs steps per batch."""

    def __init__(
        self,
        config: SiteConfig,
        caches: Caches,
        events: queue.Queue,
        runner: Callable[[str, SiteConfig, Caches], StepResult] = run_step,
    ):
        self.config = config
        self.caches = caches
        self.events = events
        self.runner = runner
        self.overflowed = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def collect(self, first: WatchEvent) -> list[WatchEvent]:
        """Drain events arriving within the debounce window after first."""
        batch = [first]
        deadline = time.monotonic() + self.config.watch.debounce
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                batch.append(self.events.get(timeout=remaining))
            except queue.Empty:
                break
        return batch

    def plan(self, batch: list[WatchEvent]) -> dict[str, dict[Path, WatchEvent]]:
        """Group a batch by category; one event per path, deletions win."""
        grouped: dict[str, dict[Path, WatchEvent]] = {}
        for event in batch:
            category = classify(event.path, self.config, event.is_directory)
            if category is None:
                continue
            per_path = grouped.setdefault(category, {})
            previous = per_path.get(event.path)
            if previous is not None and previous.kind == DELETED:
                continue
            per_path[event.path] = event
        return grouped

    def _run(self, category: str, results: list[StepResult]):
        try:
            results.append(self.runner(category, self.config, self.caches))
        except PipelineError as exc:
            log.error("%s failed: %s", category, exc)
        except Exception:
            log.exception("%s crashed", category)

    def resync(self) -> list[StepResult]:
        """Evict vanished sources from every cache and re-run every step."""
        log.warning("Watch events were dropped, rebuilding every step")
        for cache in self.caches:
            with cache.lock:
                for path in cache.forget_missing():
                    log.debug("Evicted %s from %s cache", path, cache.name)
        results: list[StepResult] = []
        for category in STEP_NAMES:
            self._run(category, results)
        return results

    def dispatch(self, batch: list[WatchEvent]) -> list[StepResult]:
        if self.overflowed.is_set():
            self.overflowed.clear()
            return self.resync()
        results: list[StepResult] = []
        for category, events in self.plan(batch).items():
            if category in self.caches:
                for event in events.values():
                    if invalidate(event, self.caches[category]):
                        log.debug("Evicted %s from %s cache", event.path, category)
            self._run(category, results)
        return results

    def run_forever(self):
        while not self._stop.is_set():
            try:
                first = self.events.get(timeout=0.2)
            except queue.Empty:
                if self.overflowed.is_set():
                    self.dispatch([])
                continue
            self.dispatch(self.collect(first))

    def start(self):
        self._thread = threading.Thread(
            target=self.run_forever, name="sitepipe-dispatch", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join()


def watched_roots(config: SiteConfig) -> list[Path]:
    """Existing source roots, without any root nested inside another."""
    candidates = [
        config.source_dir,
        config.static_dir,
        config.pages_dir,
        config.components_dir,
        config.styles_dir,
        config.scripts_dir,
        config.icons_dir,
    ]
    roots: list[Path] = []
    for path in sorted({p for p in candidates if p.is_dir()}, key=lambda p: len(p.parts)):
        if not any(is_within(path, root) for root in roots):
            roots.append(path)
    return roots


class Watcher:
    """Owns the watchdog observer and the dispatcher thread."""

    def __init__(self, config: SiteConfig, caches: Caches):
        self.config = config
        self.events: queue.Queue = queue.Queue(maxsize=config.watch.queue_size)
        self.dispatcher = Dispatcher(config, caches, self.events)
        self.handler = QueueingHandler(self.events, self.dispatcher.overflowed)
        self.observer = Observer()

    def start(self):
        for root in watched_roots(self.config):
            self.observer.schedule(self.handler, str(root), recursive=True)
            log.info("Watching %s", root)
        self.observer.start()
        self.dispatcher.start()

    def stop(self):
        self.observer.stop()
        self.observer.join()
        self.dispatcher.stop()
