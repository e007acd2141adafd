"""Task wiring: clean, then fan out every category step."""

from __future__ import annotations

import shutil
from functools import partial
from typing import Callable

from .cache import Caches
from .config import SiteConfig
from .errors import CleanError, PipelineError
from .graph import Task, TaskGraph
from .icons import build_icons
from .logging import get_logger
from .markup import compile_markup
from .scripts import process_scripts
from .static import StepResult, copy_static
from .styles import process_styles

STEP_NAMES = ("static", "markup", "styles", "scripts", "icons")

log = get_logger("build")


def clean(config: SiteConfig) -> StepResult:
    """Remove the output root; refuse to delete the project or its sources."""
    output = config.output_dir
    result = StepResult("clean")
    if output == config.root or output in config.source_dir.parents or output == config.source_dir:
        raise CleanError(output, "output directory contains the project sources")
    if not output.exists():
        return result
    try:
        shutil.rmtree(output)
    except OSError as exc:
        raise CleanError(output, exc) from exc
    result.removed.append(output)
    log.info("Cleaned %s", output)
    return result


def step_functions(config: SiteConfig, caches: Caches) -> dict[str, Callable[[], StepResult]]:
    """Bind each category step to the config and its cache."""
    steps: dict[str, Callable[[], StepResult]] = {
        "static": partial(copy_static, config),
        "markup": partial(compile_markup, config),
        "styles": partial(process_styles, config, caches["styles"]),
        "scripts": partial(process_scripts, config, caches["scripts"]),
    }
    if config.icons_enabled:
        steps["icons"] = partial(build_icons, config, caches["icons"])
    return steps


def build_graph(config: SiteConfig, caches: Caches) -> TaskGraph:
    graph = TaskGraph([Task("clean", partial(clean, config))])
    for name, func in step_functions(config, caches).items():
        graph.add(Task(name, func, deps=("clean",)))
    return graph


def run_build(config: SiteConfig, caches: Caches | None = None) -> dict[str, StepResult]:
    """Clean the output root, then run every step concurrently."""
    graph = build_graph(config, caches if caches is not None else Caches())
    return graph.run()


def run_step(name: str, config: SiteConfig, caches: Caches | None = None) -> StepResult:
    """Run a single category step without cleaning."""
    if name not in STEP_NAMES:
        raise PipelineError(f"unknown step {name!r}")
    steps = step_functions(config, caches if caches is not None else Caches())
    if name not in steps:
        log.info("%s: nothing to do, %s does not exist", name, config.icons_dir)
        return StepResult(name)
    return steps[name]()
