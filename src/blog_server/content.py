from __future__ import annotations

import html
import threading
from typing import Protocol
from xml.sax.saxutils import escape


class ArticleSource(Protocol):
    """Protocol for the rendered article collection served over HTTP."""

    def get(self, name: str) -> str | None: ...

    def list_html(self) -> str: ...

    def rss_feed(self, site_url: str, title: str) -> str: ...

    def sitemap(self, site_url: str) -> str: ...


class InMemoryArticleStore:
    """Rendered articles held in memory, replaced wholesale on content refresh."""

    def __init__(self, articles: dict[str, str] | None = None) -> None:
        self._articles: dict[str, str] = dict(articles or {})
        self._lock = threading.Lock()

    def get(self, name: str) -> str | None:
        with self._lock:
            return self._articles.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._articles)

    def replace_all(self, articles: dict[str, str]) -> None:
        with self._lock:
            self._articles = dict(articles)

    def list_html(self) -> str:
        items = "".join(
            f'<li><a href="/article/{html.escape(name, quote=True)}">{html.escape(name)}</a></li>'
            for name in self.names()
        )
        return f"<ul>{items}</ul>"

    def rss_feed(self, site_url: str, title: str) -> str:
        """RSS 2.0 channel with one item per article, sorted by name."""
        base = site_url.rstrip("/")
        items = "".join(
            "<item>"
            f"<title>{escape(name)}</title>"
            f"<link>{escape(f'{base}/article/{name}')}</link>"
            f"<guid>{escape(f'{base}/article/{name}')}</guid>"
            "</item>"
            for name in self.names()
        )
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom"><channel>'
            f"<title>{escape(title)}</title>"
            f"<link>{escape(base)}</link>"
            f"<description>{escape(title)}</description>"
            f'<atom:link href="{escape(base)}/feed/" rel="self" type="application/rss+xml" />'
            f"{items}</channel></rss>"
        )

    def sitemap(self, site_url: str) -> str:
        base = site_url.rstrip("/")
        urls = [f"{base}/", f"{base}/content/"] + [f"{base}/article/{name}" for name in self.names()]
        entries = "".join(f"<url><loc>{escape(url)}</loc></url>" for url in urls)
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            f'<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">{entries}</urlset>'
        )
