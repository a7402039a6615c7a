from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, Response

router = APIRouter()

ROBOTS_TXT = "User-agent: *\nDisallow: /content\nDisallow: /telemetry/\n"


@router.get("/content/", response_class=HTMLResponse)
async def article_list(request: Request) -> HTMLResponse:
    tracer = request.app.state.instrumentation.tracer
    with tracer.start_as_current_span("ArticleListHandler.Process"):
        return HTMLResponse(request.app.state.articles.list_html())


@router.get("/article/{name}", response_class=HTMLResponse)
async def article(name: str, request: Request) -> HTMLResponse:
    """Serve one rendered article and count the view."""
    instrumentation = request.app.state.instrumentation
    with instrumentation.tracer.start_as_current_span("ArticleHandler.Process") as span:
        span.set_attribute("article.name", name)
        content = request.app.state.articles.get(name)
        if content is None:
            span.set_attribute("error", "article not found")
            raise HTTPException(status_code=404, detail="article not found")
        instrumentation.record_article(name)
        return HTMLResponse(content)


@router.get("/feed/")
async def rss_feed(request: Request) -> Response:
    settings = request.app.state.settings
    feed = request.app.state.articles.rss_feed(settings.site_url, settings.site_title)
    return Response(content=feed, media_type="application/rss+xml")


@router.get("/sitemap.xml")
async def sitemap(request: Request) -> Response:
    sitemap_xml = request.app.state.articles.sitemap(request.app.state.settings.site_url)
    return Response(content=sitemap_xml, media_type="application/xml")


@router.get("/robots.txt", response_class=PlainTextResponse)
async def robots(request: Request) -> PlainTextResponse:
    request.app.state.instrumentation.record_robots()
    site_url = request.app.state.settings.site_url.rstrip("/")
    return PlainTextResponse(f"{ROBOTS_TXT}\nSitemap: {site_url}/sitemap.xml\n")
