from __future__ import annotations

import json
import subprocess
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

import dukpy

from .cache import CacheEntry, TransformCache, file_digest, refresh
from .config import SiteConfig
from .errors import ScriptError, SourceIOError
from .logging import get_logger
from .static import StepResult, iter_files, publish

log = get_logger("scripts")


@dataclass(frozen=True)
class Script:
    source: Path
    code: str
    deps: dict[Path, str | None] = field(default_factory=dict)


def esbuild_command(config: SiteConfig, entry: Path, metafile: Path) -> list[str]:
    """Build the esbuild argv for bundling a single entry to stdout."""
    cmd = [
        config.scripts.esbuild,
        str(entry),
        "--bundle",
        f"--target={config.scripts.target}",
        f"--metafile={metafile}",
        "--log-level=error",
        "--charset=utf8",
    ]
    if config.production:
        cmd.append("--minify")
    else:
        cmd.append("--sourcemap=inline")
    return cmd


def read_metafile(metafile: Path, cwd: Path, entry: Path) -> dict[Path, str | None]:
    """Map every local module esbuild pulled into the bundle to its digest."""
    if not metafile.exists():
        return {}
    try:
        meta = json.loads(metafile.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ScriptError(entry, f"unreadable esbuild metafile: {exc}") from exc

    deps: dict[Path, str | None] = {}
    for key in meta.get("inputs", {}):
        if ":" in key or key.startswith("<"):
            continue
        path = (cwd / key).resolve()
        if path == entry:
            continue
        deps[path] = file_digest(path)
    return deps


def bundle_script(path: Path, config: SiteConfig) -> Script:
    """Bundle one entry with esbuild and record the modules it depends on."""
    with tempfile.TemporaryDirectory(prefix="sitepipe-") as tmp:
        metafile = Path(tmp) / "meta.json"
        cmd = esbuild_command(config, path, metafile)
        log.debug("Running %s", " ".join(cmd))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=config.scripts_dir,
            )
        except FileNotFoundError as exc:
            raise ScriptError(
                path, f"esbuild executable {config.scripts.esbuild!r} not found"
            ) from exc
        if proc.returncode != 0:
            detail = proc.stderr.strip() or f"esbuild exited with {proc.returncode}"
            raise ScriptError(path, detail)
        deps = read_metafile(metafile, config.scripts_dir, path)
    return Script(source=path, code=proc.stdout, deps=deps)


def transpile_script(path: Path, config: SiteConfig) -> Script:
    """Rewrite one file to ES5 with Babel; no bundling."""
    try:
        source = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SourceIOError(path, exc) from exc

    options = {"filename": path.name}
    if config.production:
        options.update(minified=True, comments=False)
    try:
        compiled = dukpy.babel_compile(source, **options)
    except dukpy.JSRuntimeError as exc:
        raise ScriptError(path, exc) from exc
    return Script(source=path, code=compiled["code"])


def script_entries(config: SiteConfig) -> list[Path]:
    if config.scripts.mode == "transpile":
        return list(iter_files(config.scripts_dir, ("*.js",)))
    return list(iter_files(config.scripts_dir, ("*.js", "*.mjs"), recursive=False))


def process_scripts(config: SiteConfig, cache: TransformCache) -> StepResult:
    """Bundle or transpile changed scripts, then emit every remembered one."""
    result = StepResult("scripts")
    compile_one = transpile_script if config.scripts.mode == "transpile" else bundle_script

    def transform(path: Path, digest: str) -> CacheEntry:
        script = compile_one(path, config)
        return CacheEntry(digest=digest, result=script, deps=script.deps)

    with cache.lock:
        redone = refresh(cache, script_entries(config), transform)
        outputs: dict[Path, str] = {}
        for path, entry in cache.entries():
            output = config.scripts_output / path.relative_to(config.scripts_dir)
            entry.output = output
            outputs[output] = entry.result.code
        cache.emitted = publish(outputs, cache.emitted, config.output_dir, result)
        cache.dirty = False

    log.info(
        "scripts: %d reprocessed, %d written, %d removed",
        len(redone),
        len(result.written),
        len(result.removed),
    )
    return result
