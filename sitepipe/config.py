"""Project layout and options, loaded from an optional sitepipe.toml."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError

CONFIG_FILENAME = "sitepipe.toml"
ENV_VAR = "SITEPIPE_ENV"
PRODUCTION = "production"
DEVELOPMENT = "development"

MARKUP_MODES = ("render", "copy")
SCRIPT_MODES = ("bundle", "transpile")


@dataclass(frozen=True)
class MarkupOptions:
    mode: str = "render"
    layout: str = ""


@dataclass(frozen=True)
class StyleOptions:
    bundle: str = ""
    inline_filter: str = "**/*.svg"
    browsers: tuple[str, ...] = ("defaults",)


@dataclass(frozen=True)
class ScriptOptions:
    mode: str = "bundle"
    target: str = "esnext"
    esbuild: str = "esbuild"


@dataclass(frozen=True)
class IconOptions:
    separator: str = "-"
    sprite: str = "sprite.svg"


@dataclass(frozen=True)
class ServerOptions:
    host: str = "localhost"
    port: int = 3000


@dataclass(frozen=True)
class WatchOptions:
    debounce: float = 0.1
    queue_size: int = 1000


@dataclass(frozen=True)
class SiteConfig:
    """Resolved source/output layout plus per-step options."""

    root: Path
    source_dir: Path
    output_dir: Path
    static_dir: Path
    pages_dir: Path
    components_dir: Path
    styles_dir: Path
    scripts_dir: Path
    icons_dir: Path
    production: bool = False
    markup: MarkupOptions = field(default_factory=MarkupOptions)
    styles: StyleOptions = field(default_factory=StyleOptions)
    scripts: ScriptOptions = field(default_factory=ScriptOptions)
    icons: IconOptions = field(default_factory=IconOptions)
    server: ServerOptions = field(default_factory=ServerOptions)
    watch: WatchOptions = field(default_factory=WatchOptions)

    @property
    def env(self) -> str:
        return PRODUCTION if self.production else DEVELOPMENT

    @property
    def styles_output(self) -> Path:
        return self.output_dir / "styles"

    @property
    def scripts_output(self) -> Path:
        return self.output_dir / "scripts"

    @property
    def icons_output(self) -> Path:
        return self.output_dir / "icons"

    @property
    def icons_enabled(self) -> bool:
        return self.icons_dir.is_dir()

    def with_production(self, production: bool) -> "SiteConfig":
        return replace(self, production=production)


def is_production(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when the environment selects production behaviour."""
    env = os.environ if environ is None else environ
    return env.get(ENV_VAR, "").strip().lower() == PRODUCTION


def default_config(root: Path, *, production: bool | None = None) -> SiteConfig:
    """Build a config with the conventional source/ -> dist/ layout."""
    root = Path(root).resolve()
    source = root / "source"
    return SiteConfig(
        root=root,
        source_dir=source,
        output_dir=root / "dist",
        static_dir=source / "static",
        pages_dir=source / "pages",
        components_dir=source / "components",
        styles_dir=source / "styles",
        scripts_dir=source / "scripts",
        icons_dir=source / "icons",
        production=is_production() if production is None else production,
    )


def load_config(
    root: Path,
    config_file: Path | None = None,
    *,
    production: bool | None = None,
) -> SiteConfig:
    """Load sitepipe.toml from root (or config_file) and resolve paths."""
    root = Path(root).resolve()
    path = Path(config_file) if config_file is not None else root / CONFIG_FILENAME
    if config_file is not None and not path.is_absolute():
        path = root / path

    if not path.exists():
        if config_file is not None:
            raise ConfigError(f"{path} does not exist")
        return default_config(root, production=production)

    data = _read_config(path)

    paths = _as_table(data, "paths")
    source = root / _as_str(paths, "source", "source")
    output = root / _as_str(paths, "output", "dist")

    def source_path(key: str) -> Path:
        value = paths.get(key)
        if value is None:
            return source / key
        if not isinstance(value, str):
            raise ConfigError(f"paths.{key} must be a string")
        return root / value

    markup_data = _as_table(data, "markup")
    markup = MarkupOptions(
        mode=_as_choice(markup_data, "mode", "render", MARKUP_MODES, "markup"),
        layout=_as_str(markup_data, "layout", ""),
    )

    style_data = _as_table(data, "styles")
    styles = StyleOptions(
        bundle=_as_str(style_data, "bundle", ""),
        inline_filter=_as_str(style_data, "inline_filter", "**/*.svg"),
        browsers=tuple(_as_str_list(style_data, "browsers", ["defaults"])),
    )

    script_data = _as_table(data, "scripts")
    scripts = ScriptOptions(
        mode=_as_choice(script_data, "mode", "bundle", SCRIPT_MODES, "scripts"),
        target=_as_str(script_data, "target", "esnext"),
        esbuild=_as_str(script_data, "esbuild", "esbuild"),
    )

    icon_data = _as_table(data, "icons")
    icons = IconOptions(
        separator=_as_str(icon_data, "separator", "-"),
        sprite=_as_str(icon_data, "sprite", "sprite.svg"),
    )
    if not icons.separator:
        raise ConfigError("icons.separator must not be empty")

    server_data = _as_table(data, "server")
    server = ServerOptions(
        host=_as_str(server_data, "host", "localhost"),
        port=_as_int(server_data, "port", 3000),
    )

    watch_data = _as_table(data, "watch")
    watch = WatchOptions(
        debounce=_as_float(watch_data, "debounce", 0.1),
        queue_size=_as_int(watch_data, "queue_size", 1000),
    )

    return SiteConfig(
        root=root,
        source_dir=source,
        output_dir=output,
        static_dir=source_path("static"),
        pages_dir=source_path("pages"),
        components_dir=source_path("components"),
        styles_dir=source_path("styles"),
        scripts_dir=source_path("scripts"),
        icons_dir=source_path("icons"),
        production=is_production() if production is None else production,
        markup=markup,
        styles=styles,
        scripts=scripts,
        icons=icons,
        server=server,
        watch=watch,
    )


def _read_config(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc


def _as_table(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a table")
    return value


def _as_str(data: Mapping[str, Any], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string, got {value!r}")
    return value


def _as_choice(
    data: Mapping[str, Any],
    key: str,
    default: str,
    choices: tuple[str, ...],
    section: str,
) -> str:
    value = _as_str(data, key, default)
    if value not in choices:
        allowed = ", ".join(choices)
        raise ConfigError(f"{section}.{key} must be one of: {allowed}")
    return value


def _as_int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    return value


def _as_float(data: Mapping[str, Any], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number, got {value!r}")
    return float(value)


def _as_str_list(data: Mapping[str, Any], key: str, default: list[str]) -> list[str]:
    value = data.get(key, default)
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"{key} must be a list of strings")
    return list(value)


__all__ = [
    "CONFIG_FILENAME",
    "ENV_VAR",
    "IconOptions",
    "MarkupOptions",
    "ScriptOptions",
    "ServerOptions",
    "SiteConfig",
    "StyleOptions",
    "WatchOptions",
    "default_config",
    "is_production",
    "load_config",
]
