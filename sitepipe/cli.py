"""CLI entrypoints for sitepipe commands."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence

from rich.console import Console
from rich.table import Table

from .build import STEP_NAMES, build_graph, clean, run_step
from .cache import Caches
from .config import load_config
from .dev import develop
from .errors import PipelineError, TaskFailedError
from .logging import configure_logging, get_logger
from .static import StepResult

COMMANDS = ("clean", "build", "watch", *STEP_NAMES)

log = get_logger("cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sitepipe",
        description="Build static site assets, or watch and serve them with live reload.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every file written.",
    )
    parser.add_argument(
        "-C",
        "--directory",
        type=Path,
        default=Path("."),
        help="Project root (defaults to current directory).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (defaults to sitepipe.toml in the project root).",
    )
    env = parser.add_mutually_exclusive_group()
    env.add_argument(
        "--production",
        dest="production",
        action="store_const",
        const=True,
        default=None,
        help="Minify and skip source maps (overrides SITEPIPE_ENV).",
    )
    env.add_argument(
        "--development",
        dest="production",
        action="store_const",
        const=False,
        help="Keep output readable and write source maps (overrides SITEPIPE_ENV).",
    )
    parser.add_argument(
        "--open",
        action="store_true",
        help="Open a browser once the dev server is up (watch only).",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="watch",
        choices=COMMANDS,
        help="What to run (default: watch).",
    )
    return parser


def render_summary(
    results: Mapping[str, StepResult],
    timings: Mapping[str, float],
    console: Console | None = None,
):
    """Print a per-step table of written and removed files."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Step", justify="left")
    table.add_column("Written", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Time", justify="right")
    for name, result in results.items():
        if name == "clean":
            continue
        table.add_row(
            name,
            str(len(result.written)),
            str(len(result.removed)),
            f"{timings.get(name, 0.0):.2f}s",
        )
    (console or Console()).print(table)


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        config = load_config(args.directory, args.config, production=args.production)
        log.debug("Environment: %s", config.env)
        if args.command == "clean":
            clean(config)
        elif args.command == "build":
            graph = build_graph(config, Caches())
            results = graph.run()
            render_summary(results, graph.timings)
        elif args.command == "watch":
            develop(config, open_browser=args.open)
        else:
            run_step(args.command, config)
    except TaskFailedError as exc:
        log.error("%s failed: %s", exc.task, exc.cause)
        return 1
    except PipelineError as exc:
        log.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        log.info("Stopped")
    return 0


__all__ = ["main"]
