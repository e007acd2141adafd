"""Tests for the dependency-ordered task executor."""

from __future__ import annotations

import threading

import pytest

from sitepipe.errors import GraphError, TaskFailedError
from sitepipe.graph import Task, TaskGraph


def _recorder():
    calls: list[str] = []
    lock = threading.Lock()

    def make(name: str, value=None):
        def run():
            with lock:
                calls.append(name)
            return value if value is not None else name

        return run

    return calls, make


def test_dependencies_finish_before_dependents() -> None:
    calls, make = _recorder()
    graph = TaskGraph([
        Task("clean", make("clean")),
        Task("styles", make("styles"), deps=("clean",)),
        Task("scripts", make("scripts"), deps=("clean",)),
        Task("report", make("report"), deps=("styles", "scripts")),
    ])

    results = graph.run()

    assert calls[0] == "clean"
    assert calls[-1] == "report"
    assert sorted(calls[1:3]) == ["scripts", "styles"]
    assert results == {"clean": "clean", "styles": "styles", "scripts": "scripts", "report": "report"}
    assert set(graph.timings) == set(results)


def test_independent_tasks_run_concurrently() -> None:
    barrier = threading.Barrier(2, timeout=5)

    def wait_for_sibling():
        barrier.wait()
        return True

    graph = TaskGraph([Task("a", wait_for_sibling), Task("b", wait_for_sibling)])

    assert graph.run() == {"a": True, "b": True}


def test_failure_stops_dependents_and_reports_task() -> None:
    calls, make = _recorder()

    def explode():
        raise ValueError("boom")

    graph = TaskGraph([
        Task("clean", explode),
        Task("styles", make("styles"), deps=("clean",)),
    ])

    with pytest.raises(TaskFailedError) as excinfo:
        graph.run()

    assert excinfo.value.task == "clean"
    assert isinstance(excinfo.value.cause, ValueError)
    assert excinfo.value.__cause__ is excinfo.value.cause
    assert calls == []


def test_running_siblings_finish_after_a_failure() -> None:
    started = threading.Event()
    finished = threading.Event()

    def slow():
        started.set()
        finished.wait(timeout=5)
        return "slow"

    def fail():
        started.wait(timeout=5)
        finished.set()
        raise RuntimeError("nope")

    calls, make = _recorder()
    graph = TaskGraph([
        Task("slow", slow),
        Task("fail", fail),
        Task("after", make("after"), deps=("slow",)),
    ])

    with pytest.raises(TaskFailedError) as excinfo:
        graph.run()

    assert excinfo.value.task == "fail"
    assert "slow" in graph.timings
    assert calls == []


def test_unknown_dependency_is_rejected() -> None:
    graph = TaskGraph([Task("styles", lambda: None, deps=("clean",))])

    with pytest.raises(GraphError, match="unknown task 'clean'"):
        graph.validate()


def test_cycles_are_rejected_before_running() -> None:
    calls, make = _recorder()
    graph = TaskGraph([
        Task("a", make("a"), deps=("b",)),
        Task("b", make("b"), deps=("a",)),
    ])

    with pytest.raises(GraphError, match="cycle"):
        graph.run()
    assert calls == []


def test_duplicate_names_are_rejected() -> None:
    graph = TaskGraph([Task("clean", lambda: None)])

    with pytest.raises(GraphError, match="duplicate"):
        graph.add(Task("clean", lambda: None))


def test_order_is_a_valid_topological_order() -> None:
    graph = TaskGraph([
        Task("icons", lambda: None, deps=("clean",)),
        Task("clean", lambda: None),
    ])

    assert graph.order() == ["clean", "icons"]
    assert "icons" in graph
    assert graph["icons"].deps == ("clean",)
    assert graph.names == ["icons", "clean"]
