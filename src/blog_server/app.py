from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from opentelemetry.sdk.metrics.export import MetricReader

from blog_server.api.guard import RequestGuard
from blog_server.api.router import api_router
from blog_server.config import Settings, get_settings
from blog_server.content import ArticleSource, InMemoryArticleStore
from blog_server.logging import get_logger, setup_logging
from blog_server.telemetry.cost import CostSource
from blog_server.telemetry.instrumentation import install_export_pipeline
from blog_server.telemetry.runtime import RuntimeStatsSource
from blog_server.telemetry.storage import create_telemetry


def create_app(
    settings: Settings | None = None,
    *,
    articles: ArticleSource | None = None,
    cost_source: CostSource | None = None,
    stats_source: RuntimeStatsSource | None = None,
    metric_reader: MetricReader | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(
        settings.log_level,
        env=settings.env,
        pretty=settings.pretty_logging,
        log_file=settings.log_file,
    )
    logger = get_logger("server")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        telemetry = create_telemetry(
            settings,
            cost_source=cost_source,
            stats_source=stats_source,
        )
        instrumentation = install_export_pipeline(
            telemetry.storage,
            env=settings.env,
            export_interval_seconds=settings.metric_export_interval_seconds,
            metric_reader=metric_reader,
        )

        app.state.settings = settings
        app.state.articles = articles if articles is not None else InMemoryArticleStore()
        app.state.telemetry = telemetry
        app.state.instrumentation = instrumentation

        await telemetry.start()
        logger.info("server_started", port=settings.app_port, cost_tracking=settings.cost_tracking_enabled)

        yield

        await telemetry.stop()
        instrumentation.shutdown()
        logger.info("shutdown_complete")

    app = FastAPI(
        title="Blog Server",
        version="0.1.0",
        description="Personal blog content server with in-process telemetry",
        lifespan=lifespan,
    )
    app.add_middleware(RequestGuard)
    app.include_router(api_router)

    return app
