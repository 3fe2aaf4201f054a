import httpx
import pytest

from bulk_import.core.errors import (
    EntryNotFoundError,
    FetchError,
    FetchTimeoutError,
    InvalidUrlError,
    NoImagesFoundError,
    NotAnImageError,
    SessionNotFoundError,
)
from bulk_import.crawler.http_service import RemoteFetcher
from bulk_import.models import SourceKind
from bulk_import.services.crawl_sessions import UrlCrawlSessionService

PAGE = """
<html><head><title> Trip photos </title></head>
<body>
  <img src="/photos/beach.jpg" alt="Beach">
  <img src="/photos/beach.jpg">
  <img src="https://cdn.example.org/hills.png">
  <a href="/photos/large/sunset.webp">large</a>
</body></html>
"""


class FakeSite:
    """Routes requests by path and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, Exception):
            raise route
        return route


class TestUrlCrawlSessionService:
    """Test crawl session creation and on-demand image fetching."""

    def _service(self, settings, clock, routes):
        site = FakeSite(routes)
        fetcher = RemoteFetcher(settings, transport=httpx.MockTransport(site))
        return UrlCrawlSessionService(fetcher, settings, clock=clock), site

    @pytest.mark.asyncio
    async def test_html_page_session(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })

        session = await service.create_session("https://example.com/trip")

        assert session.source_kind == SourceKind.URL_CRAWL
        assert session.source.source_url == "https://example.com/trip"
        assert session.source.page_title == "Trip photos"
        assert [(e.index, e.locator, e.alt) for e in session.entries] == [
            (0, "https://example.com/photos/beach.jpg", "Beach"),
            (1, "https://cdn.example.org/hills.png", None),
            (2, "https://example.com/photos/large/sunset.webp", None),
        ]
        assert (session.expires_at - session.created_at).total_seconds() == 3600

    @pytest.mark.asyncio
    async def test_direct_image_url(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/render": httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"}),
        })

        session = await service.create_session("https://example.com/render")

        assert len(session.entries) == 1
        entry = session.entries[0]
        assert entry.locator == "https://example.com/render"
        assert entry.filename == "render.png"
        assert session.source.page_title is None

    @pytest.mark.asyncio
    async def test_page_without_images(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/empty": httpx.Response(200, text="<p>nothing</p>", headers={"content-type": "text/html"}),
        })

        with pytest.raises(NoImagesFoundError, match="No images found on the page"):
            await service.create_session("https://example.com/empty")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["http://localhost/x.jpg", "http://192.168.1.1/x.jpg", "ftp://example.com/"])
    async def test_disallowed_urls_fail_before_network(self, settings, clock, url):
        service, site = self._service(settings, clock, {})

        with pytest.raises(InvalidUrlError):
            await service.create_session(url)

        assert site.requests == []

    @pytest.mark.asyncio
    async def test_blank_url(self, settings, clock):
        service, _ = self._service(settings, clock, {})

        with pytest.raises(InvalidUrlError, match="URL is required"):
            await service.create_session("   ")

    @pytest.mark.asyncio
    async def test_upstream_error_status(self, settings, clock):
        service, _ = self._service(settings, clock, {"/down": httpx.Response(503)})

        with pytest.raises(FetchError, match="HTTP 503"):
            await service.create_session("https://example.com/down")

    @pytest.mark.asyncio
    async def test_fetch_image_sends_referer(self, settings, clock):
        service, site = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
            "/photos/beach.jpg": httpx.Response(200, content=b"jpeg-bytes", headers={"content-type": "image/jpeg"}),
        })
        session = await service.create_session("https://example.com/trip")

        resource = await service.fetch_image(session.id, 0)

        assert resource.content == b"jpeg-bytes"
        request = site.requests[-1]
        assert request.headers["referer"] == "https://example.com/trip"
        assert request.headers["accept"] == "image/*"

    @pytest.mark.asyncio
    async def test_fetch_image_rejects_non_image(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
            "/photos/beach.jpg": httpx.Response(200, text="<html>login</html>", headers={"content-type": "text/html"}),
        })
        session = await service.create_session("https://example.com/trip")

        with pytest.raises(NotAnImageError, match=r"not an image \(content-type: text/html\)"):
            await service.fetch_image(session.id, 0)

    @pytest.mark.asyncio
    async def test_fetch_image_timeout(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
            "/photos/beach.jpg": httpx.ReadTimeout("slow"),
        })
        session = await service.create_session("https://example.com/trip")

        with pytest.raises(FetchTimeoutError, match="Image fetch timed out"):
            await service.fetch_image(session.id, 0)

    @pytest.mark.asyncio
    async def test_fetch_image_unknown_session_or_index(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })
        session = await service.create_session("https://example.com/trip")

        with pytest.raises(SessionNotFoundError):
            await service.fetch_image("missing", 0)
        with pytest.raises(EntryNotFoundError):
            await service.fetch_image(session.id, 3)

    @pytest.mark.asyncio
    async def test_session_expires_after_an_hour(self, settings, clock):
        service, _ = self._service(settings, clock, {
            "/trip": httpx.Response(200, text=PAGE, headers={"content-type": "text/html"}),
        })
        session = await service.create_session("https://example.com/trip")

        clock.advance(3601)

        assert await service.get_session(session.id) is None
        with pytest.raises(SessionNotFoundError):
            await service.fetch_image(session.id, 0)
