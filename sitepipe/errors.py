"""Exception hierarchy for pipeline steps and orchestration."""

from __future__ import annotations

from pathlib import Path


class PipelineError(RuntimeError):
    """Base class for every failure surfaced by sitepipe."""


class ConfigError(PipelineError):
    """Raised when sitepipe.toml cannot be parsed or holds invalid values."""


class SourceIOError(PipelineError):
    """A source could not be read or a destination could not be written."""

    def __init__(self, path: Path, cause: BaseException | str):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"{self.path}: {cause}")


class TransformError(PipelineError):
    """A delegated transformation rejected a source file."""

    def __init__(self, path: Path, cause: BaseException | str):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"{self.path}: {cause}")


class MarkupError(TransformError):
    pass


class StyleError(TransformError):
    pass


class ImportCycleError(StyleError):
    """Raised when stylesheets import each other in a loop."""

    def __init__(self, chain: list[Path]):
        self.chain = list(chain)
        names = " -> ".join(path.name for path in self.chain)
        super().__init__(self.chain[0], f"circular @import: {names}")


class ScriptError(TransformError):
    pass


class IconError(TransformError):
    pass


class IconCollisionError(IconError):
    """Two icon files map to the same symbol id."""

    def __init__(self, symbol_id: str, first: Path, second: Path):
        self.symbol_id = symbol_id
        self.first = Path(first)
        self.second = Path(second)
        super().__init__(
            self.second,
            f"icon id {symbol_id!r} already used by {self.first}",
        )


class CleanError(PipelineError):
    """The output root could not be removed; nothing is built on top of it."""

    def __init__(self, path: Path, cause: BaseException):
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"cannot remove {self.path}: {cause}")


class GraphError(PipelineError):
    """The task graph is malformed (unknown dependency or cycle)."""


class TaskFailedError(PipelineError):
    """A task in the graph raised; carries the task name and original error."""

    def __init__(self, task: str, cause: BaseException):
        self.task = task
        self.cause = cause
        super().__init__(f"task {task!r} failed: {cause}")


__all__ = [
    "CleanError",
    "ConfigError",
    "GraphError",
    "IconCollisionError",
    "IconError",
    "ImportCycleError",
    "MarkupError",
    "PipelineError",
    "ScriptError",
    "SourceIOError",
    "StyleError",
    "TaskFailedError",
    "TransformError",
]
