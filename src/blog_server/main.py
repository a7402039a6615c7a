from __future__ import annotations

import cProfile

import uvicorn

from blog_server.app import create_app
from blog_server.config import Settings, get_settings
from blog_server.logging import get_logger


def run(settings: Settings | None = None) -> None:
    """Start the server; wrap it in cProfile when profiling is enabled."""
    settings = settings or get_settings()
    app = create_app(settings)
    logger = get_logger("main")

    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.app_host, port=settings.app_port, log_config=None)
    )

    if not settings.profiling_enabled:
        server.run()
        return

    profiler = cProfile.Profile()
    profiler.enable()
    try:
        server.run()
    finally:
        profiler.disable()
        profiler.dump_stats(settings.profiling_report)
        logger.info("profile_written", path=settings.profiling_report)


def main() -> None:
    run()


if __name__ == "__main__":
    main()
