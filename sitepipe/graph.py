"""Directed acyclic task graph with a small concurrent executor.

Nodes become ready once all their dependencies have finished; every ready
node is submitted to a thread pool at once. After the first failure no new
node is started, nodes already running are allowed to finish, and the run
raises `TaskFailedError` for the first failed node.
"""

from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Any, Callable, Iterable

from .errors import GraphError, TaskFailedError
from .logging import get_logger

log = get_logger("graph")


@dataclass(frozen=True)
class Task:
    name: str
    func: Callable[[], Any]
    deps: tuple[str, ...] = ()


class TaskGraph:
    def __init__(self, tasks: Iterable[Task] = ()):
        self._tasks: dict[str, Task] = {}
        self.timings: dict[str, float] = {}
        for task in tasks:
            self.add(task)

    def add(self, task: Task) -> Task:
        if task.name in self._tasks:
            raise GraphError(f"duplicate task {task.name!r}")
        self._tasks[task.name] = task
        return task

    @property
    def names(self) -> list[str]:
        return list(self._tasks)

    def __contains__(self, name: str) -> bool:
        return name in self._tasks

    def __getitem__(self, name: str) -> Task:
        return self._tasks[name]

    def _sorter(self) -> TopologicalSorter:
        sorter: TopologicalSorter = TopologicalSorter()
        for task in self._tasks.values():
            for dep in task.deps:
                if dep not in self._tasks:
                    raise GraphError(f"task {task.name!r} depends on unknown task {dep!r}")
            sorter.add(task.name, *task.deps)
        try:
            sorter.prepare()
        except CycleError as exc:
            cycle = " -> ".join(exc.args[1])
            raise GraphError(f"task graph has a cycle: {cycle}") from exc
        return sorter

    def validate(self):
        self._sorter()

    def order(self) -> list[str]:
        """A valid sequential order, for dry runs and logs."""
        return list(self._sorter().static_order())

    def _timed(self, task: Task) -> Any:
        started = time.perf_counter()
        try:
            return task.func()
        finally:
            self.timings[task.name] = time.perf_counter() - started

    def run(self, max_workers: int | None = None) -> dict[str, Any]:
        """Run every task respecting dependencies; return results by name."""
        sorter = self._sorter()
        results: dict[str, Any] = {}
        failure: TaskFailedError | None = None
        workers = max_workers or max(len(self._tasks), 1)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sitepipe") as pool:
            running: dict[Future, str] = {}
            while True:
                if failure is None:
                    for name in sorter.get_ready():
                        log.debug("Starting %s", name)
                        running[pool.submit(self._timed, self._tasks[name])] = name
                if not running:
                    break
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    name = running.pop(future)
                    exc = future.exception()
                    if exc is not None:
                        log.debug("Task %s failed: %s", name, exc)
                        if failure is None:
                            failure = TaskFailedError(name, exc)
                        continue
                    results[name] = future.result()
                    sorter.done(name)

        if failure is not None:
            raise failure from failure.cause
        return results


__all__ = ["Task", "TaskGraph"]
