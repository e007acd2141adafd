"""SVG sprite builder: one <symbol> per icon file, merged into a single document."""

from __future__ import annotations

import copy
import xml.etree.ElementTree as etree
from dataclasses import dataclass
from pathlib import Path

from .cache import CacheEntry, TransformCache, refresh
from .config import SiteConfig
from .errors import IconCollisionError, IconError, SourceIOError
from .logging import get_logger
from .static import StepResult, iter_files, publish

SVG_NS = "http://www.w3.org/2000/svg"
XLINK_NS = "http://www.w3.org/1999/xlink"
SYMBOL_ATTRS = ("viewBox", "preserveAspectRatio")

etree.register_namespace("", SVG_NS)
etree.register_namespace("xlink", XLINK_NS)

log = get_logger("icons")


@dataclass(frozen=True)
class Icon:
    source: Path
    symbol_id: str
    symbol: etree.Element


def icon_id(rel: Path, separator: str) -> str:
    """Join directory segments and the file stem: `nav/arrow.svg` -> `nav-arrow`."""
    return separator.join(rel.with_suffix("").parts)


def local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def view_box(root: etree.Element) -> str | None:
    if root.get("viewBox"):
        return root.get("viewBox")
    width, height = root.get("width", ""), root.get("height", "")
    width, height = width.removesuffix("px"), height.removesuffix("px")
    try:
        return f"0 0 {float(width):g} {float(height):g}"
    except ValueError:
        return None


def load_symbol(path: Path, symbol_id: str) -> etree.Element:
    """Parse an icon and re-home its children under a <symbol>."""
    try:
        root = etree.fromstring(path.read_bytes())
    except etree.ParseError as exc:
        raise IconError(path, f"malformed SVG: {exc}") from exc
    except OSError as exc:
        raise SourceIOError(path, exc) from exc
    if local_name(root.tag) != "svg":
        raise IconError(path, f"root element is <{local_name(root.tag)}>, expected <svg>")

    symbol = etree.Element(f"{{{SVG_NS}}}symbol", {"id": symbol_id})
    box = view_box(root)
    if box:
        symbol.set("viewBox", box)
    for attr in SYMBOL_ATTRS[1:]:
        if root.get(attr):
            symbol.set(attr, root.get(attr))
    for child in root:
        if local_name(child.tag) == "metadata":
            continue
        symbol.append(child)
    return symbol


def check_collisions(icons: list[Icon]):
    owners: dict[str, Path] = {}
    for icon in icons:
        first = owners.get(icon.symbol_id)
        if first is not None:
            raise IconCollisionError(icon.symbol_id, first, icon.source)
        owners[icon.symbol_id] = icon.source


def merge_sprite(icons: list[Icon]) -> str:
    """Serialize every symbol into one hidden inline sprite."""
    sprite = etree.Element(f"{{{SVG_NS}}}svg", {"style": "display:none"})
    for icon in sorted(icons, key=lambda item: item.symbol_id):
        sprite.append(copy.deepcopy(icon.symbol))
    return etree.tostring(sprite, encoding="unicode") + "\n"


def build_icons(config: SiteConfig, cache: TransformCache) -> StepResult:
    """Rebuild the sprite whenever any icon was added, changed or evicted."""
    result = StepResult("icons")
    separator = config.icons.separator

    def transform(path: Path, digest: str) -> CacheEntry:
        symbol_id = icon_id(path.relative_to(config.icons_dir), separator)
        icon = Icon(source=path, symbol_id=symbol_id, symbol=load_symbol(path, symbol_id))
        return CacheEntry(digest=digest, result=icon)

    with cache.lock:
        refresh(cache, iter_files(config.icons_dir, ("*.svg",)), transform)
        output = config.icons_output / config.icons.sprite
        if not cache.dirty and (output.exists() or not cache.emitted):
            return result

        icons = cache.results()
        check_collisions(icons)
        outputs = {output: merge_sprite(icons)} if icons else {}
        cache.emitted = publish(outputs, cache.emitted, config.output_dir, result)
        for _, entry in cache.entries():
            entry.output = output
        cache.dirty = False

    log.info("icons: %d symbol(s) in sprite", len(cache))
    return result
