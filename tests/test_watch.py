"""Tests for event classification, the queueing handler and the dispatcher."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import replace
from pathlib import Path

import pytest
from watchdog.events import (
    DirDeletedEvent,
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from sitepipe.cache import CacheEntry, Caches, file_digest
from sitepipe.errors import StyleError
from sitepipe.static import StepResult
from sitepipe.build import STEP_NAMES
from sitepipe.watch import (
    ADDED,
    CHANGED,
    DELETED,
    Dispatcher,
    QueueingHandler,
    WatchEvent,
    Watcher,
    classify,
    watched_roots,
)


class RecordingRunner:
    def __init__(self, fail: dict[str, Exception] | None = None):
        self.calls: list[str] = []
        self.fail = fail or {}

    def __call__(self, name, config, caches):
        self.calls.append(name)
        if name in self.fail:
            raise self.fail[name]
        return StepResult(name)


@pytest.mark.parametrize(
    ("relative", "expected"),
    [
        ("source/static/img/logo.png", "static"),
        ("source/static/site.css", "static"),
        ("source/pages/index.njk", "markup"),
        ("source/pages/notes/post.md", "markup"),
        ("source/components/header.html", "markup"),
        ("source/styles/a.css", "styles"),
        ("source/vendor/reset.css", "styles"),
        ("source/scripts/app.js", "scripts"),
        ("source/scripts/lib/util.mjs", "scripts"),
        ("source/icons/nav/arrow.svg", "icons"),
        ("source/styles/img/check.svg", None),
        ("source/pages/readme.txt", None),
        ("dist/styles/a.css", None),
        ("notes.md", None),
    ],
)
def test_classify(site, relative: str, expected: str | None) -> None:
    assert classify(site.path(relative), site.config()) == expected


def test_classify_directories_by_root(site) -> None:
    config = site.config()

    assert classify(site.path("source/icons/nav"), config, is_directory=True) == "icons"
    assert classify(site.path("source/styles/parts"), config, is_directory=True) == "styles"
    assert classify(site.path("source/unknown"), config, is_directory=True) is None


def test_plan_coalesces_events_per_category(site) -> None:
    dispatcher = Dispatcher(site.config(), Caches(), queue.Queue())
    a = site.path("source/styles/a.css")
    b = site.path("source/styles/b.css")
    app = site.path("source/scripts/app.js")

    plan = dispatcher.plan([
        WatchEvent(a, CHANGED),
        WatchEvent(app, CHANGED),
        WatchEvent(a, DELETED),
        WatchEvent(a, ADDED),
        WatchEvent(b, CHANGED),
        WatchEvent(site.path("dist/styles/a.css"), CHANGED),
    ])

    assert list(plan) == ["styles", "scripts"]
    assert plan["styles"] == {a: WatchEvent(a, DELETED), b: WatchEvent(b, CHANGED)}
    assert list(plan["scripts"]) == [app]


def test_dispatch_invalidates_once_then_runs_each_step_once(site) -> None:
    site.write({
        "source/styles/a.css": ".a{}",
        "source/styles/b.css": ".b{}",
    })
    caches = Caches()
    styles = caches["styles"]
    for name in ("a.css", "b.css"):
        path = site.path(f"source/styles/{name}")
        styles.store(path, CacheEntry(file_digest(path), name))
    runner = RecordingRunner()
    dispatcher = Dispatcher(site.config(), caches, queue.Queue(), runner=runner)

    deleted = site.remove("source/styles/a.css")
    results = dispatcher.dispatch([
        WatchEvent(deleted, DELETED),
        WatchEvent(site.path("source/styles/b.css"), CHANGED),
        WatchEvent(deleted, DELETED),
        WatchEvent(site.path("source/pages/index.njk"), CHANGED),
    ])

    assert runner.calls == ["styles", "markup"]
    assert [result.step for result in results] == ["styles", "markup"]
    assert styles.paths() == [site.path("source/styles/b.css")]


def test_failing_step_is_logged_and_others_still_run(
    site, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    caplog.set_level(logging.ERROR, logger="sitepipe")
    monkeypatch.setattr(logging.getLogger("sitepipe"), "propagate", True)
    runner = RecordingRunner({
        "styles": StyleError(Path("a.css"), "boom"),
        "scripts": ValueError("unexpected"),
    })
    dispatcher = Dispatcher(site.config(), Caches(), queue.Queue(), runner=runner)

    results = dispatcher.dispatch([
        WatchEvent(site.path("source/styles/a.css"), CHANGED),
        WatchEvent(site.path("source/scripts/app.js"), CHANGED),
        WatchEvent(site.path("source/static/robots.txt"), CHANGED),
    ])

    assert runner.calls == ["styles", "scripts", "static"]
    assert [result.step for result in results] == ["static"]
    assert "styles failed: a.css: boom" in caplog.text
    assert "scripts crashed" in caplog.text


def test_collect_drains_events_within_debounce(site) -> None:
    events: queue.Queue = queue.Queue()
    dispatcher = Dispatcher(site.config(), Caches(), events)
    first = WatchEvent(site.path("source/styles/a.css"), CHANGED)
    second = WatchEvent(site.path("source/styles/b.css"), CHANGED)
    events.put(second)

    assert dispatcher.collect(first) == [first, second]


def test_dispatcher_thread_processes_queued_events(site) -> None:
    events: queue.Queue = queue.Queue()
    ran = threading.Event()

    def runner(name, config, caches):
        ran.set()
        return StepResult(name)

    dispatcher = Dispatcher(site.config(), Caches(), events, runner=runner)
    dispatcher.start()
    try:
        events.put(WatchEvent(site.path("source/scripts/app.js"), CHANGED))
        assert ran.wait(timeout=5)
    finally:
        dispatcher.stop()


def test_handler_translates_watchdog_events(site) -> None:
    events: queue.Queue = queue.Queue()
    handler = QueueingHandler(events)
    a = site.path("source/styles/a.css")
    b = site.path("source/styles/b.css")

    handler.dispatch(FileCreatedEvent(str(a)))
    handler.dispatch(FileModifiedEvent(str(a)))
    handler.dispatch(DirModifiedEvent(str(a.parent)))
    handler.dispatch(FileMovedEvent(str(a), str(b)))
    handler.dispatch(FileDeletedEvent(str(b)))
    handler.dispatch(DirDeletedEvent(str(a.parent)))

    received = [events.get_nowait() for _ in range(events.qsize())]
    assert received == [
        WatchEvent(a, ADDED),
        WatchEvent(a, CHANGED),
        WatchEvent(a, DELETED),
        WatchEvent(b, ADDED),
        WatchEvent(b, DELETED),
        WatchEvent(a.parent, DELETED, is_directory=True),
    ]


def test_handler_drops_events_when_queue_is_full(
    site, caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    caplog.set_level(logging.WARNING, logger="sitepipe")
    monkeypatch.setattr(logging.getLogger("sitepipe"), "propagate", True)
    events: queue.Queue = queue.Queue(maxsize=1)
    handler = QueueingHandler(events)
    a = site.path("source/styles/a.css")

    handler.dispatch(FileModifiedEvent(str(a)))
    handler.dispatch(FileModifiedEvent(str(a)))

    assert events.qsize() == 1
    assert "Watch queue full" in caplog.text


def test_watched_roots_skip_nested_and_missing(site) -> None:
    site.write({"source/styles/a.css": ".a{}"})

    assert watched_roots(site.config()) == [site.path("source")]


def test_watched_roots_keep_roots_outside_source(site) -> None:
    site.write({
        "source/styles/a.css": ".a{}",
        "assets/static/logo.png": b"\x89PNG",
    })
    config = site.config()
    config = replace(config, static_dir=site.path("assets/static"))

    assert watched_roots(config) == [site.path("source"), site.path("assets/static")]


def test_full_queue_flags_a_resync(site) -> None:
    events: queue.Queue = queue.Queue(maxsize=1)
    overflowed = threading.Event()
    handler = QueueingHandler(events, overflowed)
    a = site.path("source/styles/a.css")

    handler.dispatch(FileModifiedEvent(str(a)))
    assert not overflowed.is_set()
    handler.dispatch(FileDeletedEvent(str(a)))

    assert overflowed.is_set()


def test_resync_evicts_vanished_sources_and_runs_every_step(site) -> None:
    site.write({
        "source/styles/a.css": ".a{}",
        "source/styles/b.css": ".b{}",
    })
    caches = Caches()
    styles = caches["styles"]
    for name in ("a.css", "b.css"):
        path = site.path(f"source/styles/{name}")
        styles.store(path, CacheEntry(file_digest(path), name))
    runner = RecordingRunner()
    dispatcher = Dispatcher(site.config(), caches, queue.Queue(), runner=runner)
    site.remove("source/styles/a.css")
    dispatcher.overflowed.set()

    dispatcher.dispatch([WatchEvent(site.path("source/styles/b.css"), CHANGED)])

    assert runner.calls == list(STEP_NAMES)
    assert styles.paths() == [site.path("source/styles/b.css")]
    assert not dispatcher.overflowed.is_set()


def test_watcher_handler_shares_dispatcher_flag(site) -> None:
    watcher = Watcher(site.config(), Caches())

    assert watcher.handler.overflowed is watcher.dispatcher.overflowed
    assert watcher.events.maxsize == 1000
