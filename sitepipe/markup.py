from __future__ import annotations

from pathlib import Path

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from markdown import Markdown

from .config import SiteConfig
from .errors import MarkupError, SourceIOError
from .frontmatter import split_frontmatter
from .logging import get_logger
from .static import StepResult, iter_files, sync_static_dir, write_if_changed

TEMPLATE_SUFFIXES = (".njk", ".html", ".jinja", ".j2")
MARKDOWN_SUFFIXES = (".md", ".markdown")

log = get_logger("markup")


def get_template_env(config: SiteConfig) -> Environment:
    """Create a Jinja environment resolving pages first, then components."""
    search_path = [str(config.pages_dir)]
    if config.components_dir.is_dir():
        search_path.append(str(config.components_dir))
    return Environment(
        loader=FileSystemLoader(search_path),
        autoescape=select_autoescape(["html", "njk"]),
        keep_trailing_newline=True,
    )


def build_markdown_renderer() -> Markdown:
    """Create a Markdown renderer for content pages."""
    return Markdown(extensions=["extra"], output_format="html")


def render_markdown(renderer: Markdown, content: str) -> str:
    """Render Markdown content into HTML."""
    renderer.reset()
    return renderer.convert(content)


def site_context(config: SiteConfig) -> dict:
    return {"env": config.env, "production": config.production}


def page_output(config: SiteConfig, rel: Path) -> Path:
    return config.output_dir / rel.with_suffix(".html")


def is_partial(rel: Path) -> bool:
    return any(part.startswith("_") for part in rel.parts)


def render_template_page(env: Environment, config: SiteConfig, rel: Path) -> str:
    """Render one page template, resolving includes through the loader."""
    try:
        template = env.get_template(rel.as_posix())
        return template.render(site=site_context(config))
    except TemplateError as exc:
        raise MarkupError(config.pages_dir / rel, _describe(exc)) from exc


def render_markdown_page(
    env: Environment,
    renderer: Markdown,
    config: SiteConfig,
    rel: Path,
) -> str:
    """Render a markdown page and wrap it in its layout template, if any."""
    path = config.pages_dir / rel
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SourceIOError(path, exc) from exc

    fm, body = split_frontmatter(raw)
    content_html = render_markdown(renderer, body)
    layout = fm.get("layout") or config.markup.layout
    if not layout:
        return content_html

    try:
        template = env.get_template(layout)
        return template.render(
            site=site_context(config),
            page=fm,
            title=fm.get("title", ""),
            content_html=content_html,
        )
    except TemplateError as exc:
        raise MarkupError(path, _describe(exc)) from exc


def _describe(exc: TemplateError) -> str:
    name = type(exc).__name__
    lineno = getattr(exc, "lineno", None)
    location = f" (line {lineno})" if lineno else ""
    return f"{name}: {exc.message or exc}{location}"


def compile_markup(config: SiteConfig) -> StepResult:
    """Render page templates into flat HTML files under the output root."""
    result = StepResult("markup")
    if not config.pages_dir.is_dir():
        return result

    if config.markup.mode == "copy":
        result.written.extend(
            sync_static_dir(config.pages_dir, config.output_dir, ("*.html",))
        )
        log.info("markup: %d file(s) copied", len(result.written))
        return result

    env = get_template_env(config)
    renderer = build_markdown_renderer()
    patterns = [f"*{suffix}" for suffix in (*TEMPLATE_SUFFIXES, *MARKDOWN_SUFFIXES)]
    for path in iter_files(config.pages_dir, patterns):
        rel = path.relative_to(config.pages_dir)
        if is_partial(rel):
            continue
        if path.suffix in MARKDOWN_SUFFIXES:
            page_html = render_markdown_page(env, renderer, config, rel)
        else:
            page_html = render_template_page(env, config, rel)

        output = page_output(config, rel)
        if write_if_changed(output, page_html):
            log.debug("Rendered %s", output.relative_to(config.output_dir))
            result.written.append(output)

    log.info("markup: %d page(s) written", len(result.written))
    return result
