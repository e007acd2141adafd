"""Stylesheet pipeline: import inlining, url rewriting, lightningcss lowering."""

from __future__ import annotations

import base64
import fnmatch
import json
import mimetypes
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

import lightningcss

from .cache import CacheEntry, TransformCache, file_digest, refresh
from .config import SiteConfig
from .errors import ImportCycleError, SourceIOError, StyleError
from .logging import get_logger
from .static import StepResult, iter_files, publish

IMPORT_RE = re.compile(
    r"""@import\s+
    (?:url\(\s*(?P<uq>['"]?)(?P<url>[^'")]+)(?P=uq)\s*\)
      |(?P<sq>['"])(?P<str>[^'"]+)(?P=sq))
    \s*(?P<conditions>[^;]*);""",
    re.IGNORECASE | re.VERBOSE,
)
LAYER_RE = re.compile(r"layer(?:\(\s*(?P<name>[^)]*?)\s*\))?(?=\s|$)", re.IGNORECASE)
SUPPORTS_DECL_RE = re.compile(r"[\w-]+\s*:")
URL_RE = re.compile(r"""url\(\s*(?P<quote>['"]?)(?P<url>[^'")]*?)(?P=quote)\s*\)""", re.IGNORECASE)
PLACEHOLDER = "\x00import:{}\x00"
PLACEHOLDER_RE = re.compile("\x00import:(\\d+)\x00")
EXTERNAL_PREFIXES = ("data:", "http:", "https:", "//", "#", "/")

DECLARATION_RE = re.compile(
    r"(?P<lead>[{;\s])(?P<prop>[a-z-]+)\s*:\s*(?P<value>[^;{}]+?)\s*(?=[;}])",
    re.IGNORECASE,
)
IMPORTANT_RE = re.compile(r"\s*!\s*important$", re.IGNORECASE)

# Logical properties resolved for left-to-right, top-to-bottom writing.
LOGICAL_LONGHANDS = {
    "inline-size": "width",
    "block-size": "height",
    "min-inline-size": "min-width",
    "min-block-size": "min-height",
    "max-inline-size": "max-width",
    "max-block-size": "max-height",
    "inset-inline-start": "left",
    "inset-inline-end": "right",
    "inset-block-start": "top",
    "inset-block-end": "bottom",
    "border-start-start-radius": "border-top-left-radius",
    "border-start-end-radius": "border-top-right-radius",
    "border-end-start-radius": "border-bottom-left-radius",
    "border-end-end-radius": "border-bottom-right-radius",
}
for _box in ("margin", "padding", "border"):
    for _suffix in ("", "-width", "-style", "-color"):
        if _box != "border" and _suffix:
            continue
        for _axis, _sides in (("inline", ("left", "right")), ("block", ("top", "bottom"))):
            for _edge, _side in zip(("start", "end"), _sides):
                LOGICAL_LONGHANDS[f"{_box}-{_axis}-{_edge}{_suffix}"] = f"{_box}-{_side}{_suffix}"

# Two-sided shorthands: the value holds one or two components (start, end).
LOGICAL_PAIRS = {
    "inset-inline": ("left", "right"),
    "inset-block": ("top", "bottom"),
}
for _box in ("margin", "padding"):
    LOGICAL_PAIRS[f"{_box}-inline"] = (f"{_box}-left", f"{_box}-right")
    LOGICAL_PAIRS[f"{_box}-block"] = (f"{_box}-top", f"{_box}-bottom")
for _suffix in ("-width", "-style", "-color"):
    LOGICAL_PAIRS[f"border-inline{_suffix}"] = (f"border-left{_suffix}", f"border-right{_suffix}")
    LOGICAL_PAIRS[f"border-block{_suffix}"] = (f"border-top{_suffix}", f"border-bottom{_suffix}")

# Full border shorthands apply the same value to both sides.
LOGICAL_BOTH = {
    "border-inline": ("border-left", "border-right"),
    "border-block": ("border-top", "border-bottom"),
}
LOGICAL_VALUES = {"inline-start": "left", "inline-end": "right", "start": "left", "end": "right"}
LOGICAL_VALUE_PROPS = ("float", "clear", "text-align")

log = get_logger("styles")


@dataclass(frozen=True)
class Stylesheet:
    source: Path
    css: str
    imports: tuple[Path, ...] = ()
    deps: dict[Path, str | None] = field(default_factory=dict)
    sources: dict[Path, str] = field(default_factory=dict)


@dataclass
class _InlineState:
    base_dir: Path
    inline_filter: str
    seen: set[Path] = field(default_factory=set)
    stack: list[Path] = field(default_factory=list)
    deps: dict[Path, str | None] = field(default_factory=dict)
    sources: dict[Path, str] = field(default_factory=dict)


def is_external(url: str) -> bool:
    return url.lower().startswith(EXTERNAL_PREFIXES)


def split_suffix(url: str) -> tuple[str, str]:
    """Split `a.svg?v=1#x` into the file part and its query/fragment."""
    for marker in ("?", "#"):
        if marker in url:
            index = url.index(marker)
            return url[:index], url[index:]
    return url, ""


def data_uri(path: Path) -> str:
    data = path.read_bytes()
    if path.suffix.lower() == ".svg":
        return "data:image/svg+xml," + quote(data.decode("utf-8").strip(), safe="")
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def split_components(value: str) -> list[str]:
    """Split a declaration value on top-level whitespace, keeping calc() etc. whole."""
    parts: list[str] = []
    depth = 0
    current = ""
    for char in value:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char.isspace() and depth == 0:
            if current:
                parts.append(current)
                current = ""
            continue
        current += char
    if current:
        parts.append(current)
    return parts


def physical_declarations(prop: str, value: str) -> list[tuple[str, str]] | None:
    """Physical equivalents of a logical declaration, or None to keep it."""
    name = prop.lower()
    if name in LOGICAL_LONGHANDS:
        return [(LOGICAL_LONGHANDS[name], value)]
    if name in LOGICAL_BOTH:
        return [(side, value) for side in LOGICAL_BOTH[name]]
    if name in LOGICAL_PAIRS:
        parts = split_components(value)
        if not 1 <= len(parts) <= 2:
            return None
        start, end = parts[0], parts[-1]
        return list(zip(LOGICAL_PAIRS[name], (start, end)))
    if name in LOGICAL_VALUE_PROPS and value.lower() in LOGICAL_VALUES:
        return [(name, LOGICAL_VALUES[value.lower()])]
    return None


def logical_to_physical(css: str) -> str:
    """Rewrite logical properties and values into their physical forms."""

    def replace(match: re.Match) -> str:
        value = match.group("value")
        important = IMPORTANT_RE.search(value)
        flag = ""
        if important:
            value = value[: important.start()]
            flag = " !important"
        declarations = physical_declarations(match.group("prop"), value.strip())
        if declarations is None:
            return match.group(0)
        body = "; ".join(f"{prop}: {item}{flag}" for prop, item in declarations)
        return match.group("lead") + body

    return DECLARATION_RE.sub(replace, css)


def import_conditions(text: str, importer: Path, url: str) -> tuple[str | None, str | None, str]:
    """Split the `layer(...) supports(...) media` list that may trail an @import."""
    rest = text.strip()
    layer = supports = None
    match = LAYER_RE.match(rest)
    if match:
        layer = match.group("name") or ""
        rest = rest[match.end() :].lstrip()
    if rest.lower().startswith("supports("):
        depth = 0
        for index in range(len("supports"), len(rest)):
            depth += {"(": 1, ")": -1}.get(rest[index], 0)
            if depth == 0:
                break
        else:
            raise StyleError(importer, f"unbalanced supports() in @import {url!r}")
        supports = rest[len("supports(") : index].strip()
        if SUPPORTS_DECL_RE.match(supports):
            supports = f"({supports})"
        rest = rest[index + 1 :].lstrip()
    return layer, supports, rest


def wrap_conditions(css: str, layer: str | None, supports: str | None, media: str) -> str:
    if media:
        css = f"@media {media} {{\n{css}\n}}"
    if supports:
        css = f"@supports {supports} {{\n{css}\n}}"
    if layer is not None:
        name = f" {layer}" if layer else ""
        css = f"@layer{name} {{\n{css}\n}}"
    return css


def rewrite_urls(css: str, file_dir: Path, state: _InlineState) -> str:
    """Inline filtered assets as data URIs and rebase the rest to base_dir."""

    def replace(match: re.Match) -> str:
        url = match.group("url").strip()
        if not url or is_external(url):
            return match.group(0)
        file_part, suffix = split_suffix(url)
        target = Path(os.path.normpath(file_dir / file_part))
        if fnmatch.fnmatchcase(target.as_posix(), state.inline_filter) and target.is_file():
            state.deps[target] = file_digest(target)
            return f'url("{data_uri(target)}")'
        rebased = Path(os.path.relpath(target, state.base_dir)).as_posix()
        return f'url("{rebased}{suffix}")'

    return URL_RE.sub(replace, css)


def inline_imports(path: Path, state: _InlineState) -> str:
    """Return path's CSS with local @imports inlined recursively."""
    state.seen.add(path)
    state.stack.append(path)
    try:
        css = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        importer = state.stack[-2] if len(state.stack) > 1 else path
        raise StyleError(importer, f"cannot resolve @import {path.name!r}") from exc
    except OSError as exc:
        raise SourceIOError(path, exc) from exc
    state.sources[path] = css

    imports: list[str] = []

    def collect(match: re.Match) -> str:
        url = (match.group("url") or match.group("str")).strip()
        if is_external(url):
            return match.group(0)
        target = Path(os.path.normpath(path.parent / split_suffix(url)[0]))
        if target in state.stack:
            raise ImportCycleError([*state.stack[state.stack.index(target) :], target])
        if target in state.seen:
            imported = ""
        else:
            imported = inline_imports(target, state)
            state.deps[target] = file_digest(target)
        layer, supports, media = import_conditions(match.group("conditions"), path, url)
        if imported:
            imported = wrap_conditions(imported, layer, supports, media)
        imports.append(imported)
        return PLACEHOLDER.format(len(imports) - 1)

    css = IMPORT_RE.sub(collect, css)
    css = rewrite_urls(css, path.parent, state)
    css = PLACEHOLDER_RE.sub(lambda match: imports[int(match.group(1))], css)
    state.stack.pop()
    return css


def lower(css: str, filename: str, config: SiteConfig) -> str:
    """Physical properties, then lightningcss: custom media, range media, prefixes, minify.

    lightningcss only lowers logical properties for targets that lack them,
    so they are always rewritten first.
    """
    flags = lightningcss.calc_parser_flags(nesting=True, custom_media=True)
    return lightningcss.process_stylesheet(
        logical_to_physical(css),
        filename=filename,
        parser_flags=flags,
        browsers_list=list(config.styles.browsers),
        minify=config.production,
    )


def build_stylesheet(path: Path, config: SiteConfig, base_dir: Path) -> Stylesheet:
    state = _InlineState(base_dir=base_dir, inline_filter=config.styles.inline_filter)
    css = inline_imports(path, state)
    try:
        css = lower(css, path.name, config)
    except Exception as exc:
        raise StyleError(path, exc) from exc
    imports = tuple(dep for dep in state.deps if dep.suffix == ".css")
    sources = {} if config.production else dict(state.sources)
    return Stylesheet(
        source=path,
        css=css,
        imports=imports,
        deps=dict(state.deps),
        sources=sources,
    )


def source_map(output: Path, sources: dict[Path, str]) -> str:
    """A v3 source map naming the stylesheet's inputs and their content."""
    # lightningcss exposes no output positions; the map carries sources only.
    return json.dumps(
        {
            "version": 3,
            "file": output.name,
            "sources": [
                Path(os.path.relpath(path, output.parent)).as_posix() for path in sources
            ],
            "sourcesContent": list(sources.values()),
            "names": [],
            "mappings": "",
        },
        indent=2,
    )


def render_output(output: Path, css: str, sources: dict[Path, str], config: SiteConfig) -> dict[Path, str]:
    if config.production:
        return {output: css}
    map_path = output.with_name(output.name + ".map")
    body = f"{css.rstrip()}\n/*# sourceMappingURL={map_path.name} */\n"
    return {output: body, map_path: source_map(output, sources)}


def style_entries(config: SiteConfig) -> list[Path]:
    return [
        path
        for path in iter_files(config.styles_dir, ("*.css",))
        if not path.name.startswith("_")
    ]


def process_styles(config: SiteConfig, cache: TransformCache) -> StepResult:
    """Reprocess changed stylesheets, then emit every remembered one."""
    result = StepResult("styles")
    bundle = config.styles.bundle

    def transform(path: Path, digest: str) -> CacheEntry:
        base_dir = config.styles_dir if bundle else path.parent
        sheet = build_stylesheet(path, config, base_dir)
        return CacheEntry(digest=digest, result=sheet, deps=sheet.deps)

    with cache.lock:
        redone = refresh(cache, style_entries(config), transform)
        outputs: dict[Path, str] = {}
        if bundle:
            sheets = cache.results()
            imported = {dep for sheet in sheets for dep in sheet.imports}
            included = [sheet for sheet in sheets if sheet.source not in imported]
            if included:
                output = config.styles_output / bundle
                css = "\n".join(sheet.css.strip() for sheet in included) + "\n"
                sources = {}
                for sheet in included:
                    sources.update(sheet.sources)
                outputs.update(render_output(output, css, sources, config))
        else:
            for path, entry in cache.entries():
                output = config.styles_output / path.relative_to(config.styles_dir)
                entry.output = output
                outputs.update(render_output(output, entry.result.css, entry.result.sources, config))

        cache.emitted = publish(outputs, cache.emitted, config.output_dir, result)
        cache.dirty = False

    log.info(
        "styles: %d reprocessed, %d written, %d removed",
        len(redone),
        len(result.written),
        len(result.removed),
    )
    return result
