"""Live reload dev server with incremental rebuilds on source changes."""

from __future__ import annotations

from livereload import Server

from .build import run_build
from .cache import Caches
from .config import SiteConfig
from .logging import get_logger
from .watch import Watcher

log = get_logger("dev")


def make_server(config: SiteConfig) -> Server:
    """Server that reloads connected browsers when the output root changes."""
    config.output_dir.mkdir(parents=True, exist_ok=True)
    server = Server()
    server.watch(str(config.output_dir))
    return server


def serve(config: SiteConfig, *, open_url_delay: float | None = None):
    """Serve the output root until interrupted."""
    server = make_server(config)
    host, port = config.server.host, config.server.port
    log.info("Serving %s at http://%s:%d", config.output_dir, host, port)
    server.serve(
        root=str(config.output_dir),
        host=host,
        port=port,
        debug=False,
        open_url_delay=open_url_delay,
    )


def develop(
    config: SiteConfig,
    caches: Caches | None = None,
    *,
    open_browser: bool = False,
):
    """Initial build, then watch sources and serve the output until killed."""
    caches = caches if caches is not None else Caches()
    log.info("Initial build...")
    run_build(config, caches)

    watcher = Watcher(config, caches)
    watcher.start()
    try:
        serve(config, open_url_delay=0.5 if open_browser else None)
    finally:
        watcher.stop()
