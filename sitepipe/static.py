from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .config import SiteConfig
from .errors import SourceIOError
from .logging import get_logger

log = get_logger("static")


@dataclass
class StepResult:
    step: str
    written: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)

    @property
    def changed(self) -> list[Path]:
        return [*self.written, *self.removed]


def iter_files(root: Path, patterns: Iterable[str] = ("*",), recursive: bool = True):
    """Yield files under root matching any pattern, sorted for stable output."""
    if not root.is_dir():
        return
    found: set[Path] = set()
    for pattern in patterns:
        matches = root.rglob(pattern) if recursive else root.glob(pattern)
        found.update(path for path in matches if path.is_file())
    yield from sorted(found)


def copy_if_newer(src: Path, dst: Path) -> bool:
    """Copy src to dst if src is newer. Return True if copied."""
    try:
        if dst.exists() and dst.stat().st_mtime >= src.stat().st_mtime:
            return False
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
    except OSError as exc:
        raise SourceIOError(src, exc) from exc
    return True


def write_if_changed(path: Path, content: str | bytes) -> bool:
    """Write content to path unless it already holds the same bytes."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    try:
        if path.exists() and path.read_bytes() == data:
            return False
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as exc:
        raise SourceIOError(path, exc) from exc
    return True


def remove_output(path: Path, stop: Path) -> bool:
    """Delete a stale output file and any directories it leaves empty."""
    if not path.exists():
        return False
    try:
        path.unlink()
    except OSError as exc:
        raise SourceIOError(path, exc) from exc
    cleanup_empty_dirs(path.parent, stop)
    return True


def publish(
    outputs: dict[Path, str | bytes],
    previous: set[Path],
    stop: Path,
    result: StepResult,
) -> set[Path]:
    """Write outputs, delete ones no longer produced, and return the new set."""
    for path, content in outputs.items():
        if write_if_changed(path, content):
            result.written.append(path)
    for stale in sorted(previous - outputs.keys()):
        if remove_output(stale, stop):
            result.removed.append(stale)
    return set(outputs)


def cleanup_empty_dirs(start: Path, stop: Path):
    """Remove empty directories up to stop (exclusive)."""
    current = start
    while current != stop and current.exists():
        try:
            current.rmdir()
        except OSError:
            break
        current = current.parent


def sync_static_dir(src_dir: Path, dest_dir: Path, patterns: Iterable[str] = ("*",)) -> list[Path]:
    """Copy directory contents if changed. Return list of changed files."""
    changed = []
    for src_file in iter_files(src_dir, patterns):
        rel = src_file.relative_to(src_dir)
        if rel.name.startswith("_"):
            continue
        dst_file = dest_dir / rel

        if copy_if_newer(src_file, dst_file):
            log.debug("Copied %s", rel)
            changed.append(dst_file)

    return changed


def copy_static(config: SiteConfig) -> StepResult:
    """Mirror the static root into the output root, skipping up-to-date files."""
    result = StepResult("static")
    if not config.static_dir.is_dir():
        return result
    for src_file in iter_files(config.static_dir):
        dst_file = config.output_dir / src_file.relative_to(config.static_dir)
        if copy_if_newer(src_file, dst_file):
            log.debug("Copied %s", dst_file.relative_to(config.output_dir))
            result.written.append(dst_file)
    log.info("static: %d file(s) copied", len(result.written))
    return result
