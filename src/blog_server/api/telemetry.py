from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, Response

from blog_server.telemetry.render import metric_snapshot, render_metric_snippet

router = APIRouter(prefix="/telemetry")


@router.get("/metric", response_class=HTMLResponse)
async def metric_snippet(request: Request) -> HTMLResponse:
    """Current counters, percentiles and runtime gauges as an HTML fragment."""
    storage = request.app.state.telemetry.storage
    return HTMLResponse(render_metric_snippet(storage))


@router.get("/metric.json")
async def metric_json(request: Request) -> dict[str, Any]:
    storage = request.app.state.telemetry.storage
    return metric_snapshot(storage)


@router.get("/trace")
async def last_trace(request: Request) -> Response:
    """The most recently finished span, pretty printed."""
    storage = request.app.state.telemetry.storage
    return Response(content=storage.spans.read(indent=2), media_type="application/json")


@router.get("/cost", response_class=HTMLResponse)
async def cost_snippet(request: Request) -> HTMLResponse:
    storage = request.app.state.telemetry.storage
    return HTMLResponse(storage.cost_fragment())
