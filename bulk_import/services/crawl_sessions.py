import logging
import time
from typing import Callable, Optional

from ..core.config import Settings, get_settings
from ..core.errors import (
    EntryNotFoundError,
    FetchTimeoutError,
    InvalidUrlError,
    NoImagesFoundError,
    NotAnImageError,
    SessionNotFoundError,
)
from ..crawler.extractor import HtmlImageExtractor, filename_for_content_type
from ..crawler.http_service import IMAGE_ACCEPT, PAGE_ACCEPT, FetchedResource, RemoteFetcher
from ..media import extension_for_mime_type, is_supported_image_type, normalize_content_type
from ..models import CrawlSource, EntryPayload, ImportSession, SourceEntry, SourceKind
from .session_store import SessionStore

logger = logging.getLogger(__name__)


class UrlCrawlSessionService:
    """
    Builds sessions from a web page (or a direct image URL) and re-fetches
    individual images on demand. Sessions expire an hour after creation.
    """

    source_kind = SourceKind.URL_CRAWL

    def __init__(self, fetcher: RemoteFetcher, settings: Optional[Settings] = None,
                 extractor: Optional[HtmlImageExtractor] = None,
                 clock: Callable[[], float] = time.time):
        self._settings = settings or get_settings()
        self._fetcher = fetcher
        self._extractor = extractor or HtmlImageExtractor(self._settings.max_images_per_page)
        self.store = SessionStore(
            name="url-crawl",
            ttl_seconds=self._settings.crawl_session_ttl_seconds,
            clock=clock,
        )

    async def create_session(self, url: str) -> ImportSession:
        url = (url or '').strip()
        if not url:
            raise InvalidUrlError("URL is required")

        resource = await self._fetcher.fetch(url, accept=PAGE_ACCEPT,
                                             max_bytes=self._settings.max_page_size_bytes)
        content_type = normalize_content_type(resource.content_type)

        if content_type.startswith('image/'):
            if not is_supported_image_type(content_type):
                raise NoImagesFoundError(f"Unsupported image type: {content_type}")
            entries = (SourceEntry(index=0, filename=filename_for_content_type(url, content_type), locator=url),)
            page_title = None
        else:
            result = self._extractor.extract(resource.content, resource.url)
            if not result.images:
                raise NoImagesFoundError("No images found on the page", details={"url": url})
            entries = tuple(result.images)
            page_title = result.page_title

        source = CrawlSource(source_url=url, page_title=page_title)
        session = await self.store.create(
            lambda session_id, created_at, expires_at: ImportSession(
                id=session_id,
                source_kind=SourceKind.URL_CRAWL,
                created_at=created_at,
                expires_at=expires_at,
                source=source,
                entries=entries,
            )
        )
        logger.info(f"URL crawl session {session.id} created from {url}: {len(entries)} images")
        return session

    async def get_session(self, session_id: str) -> Optional[ImportSession]:
        return await self.store.get(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return await self.store.delete(session_id)

    async def fetch_image(self, session_id: str, index: int) -> FetchedResource:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        entry = session.find_entry(index)
        if entry is None:
            raise EntryNotFoundError(f"Image {index} not found in session {session_id}")
        return await self._fetch_entry(session, entry)

    async def read_entry(self, session: ImportSession, entry: SourceEntry) -> EntryPayload:
        resource = await self._fetch_entry(session, entry)
        content_type = normalize_content_type(resource.content_type)
        return EntryPayload(
            content=resource.content,
            mime_type=content_type,
            extension=extension_for_mime_type(content_type),
        )

    def missing_entry_message(self, index: int) -> str:
        return f"Image {index} not found in session"

    async def _fetch_entry(self, session: ImportSession, entry: SourceEntry) -> FetchedResource:
        try:
            resource = await self._fetcher.fetch(
                entry.locator,
                accept=IMAGE_ACCEPT,
                referer=session.source.source_url,
                max_bytes=self._settings.max_image_size_bytes,
                what="image",
            )
        except FetchTimeoutError as e:
            raise FetchTimeoutError("Image fetch timed out", details=e.details) from e

        if not normalize_content_type(resource.content_type).startswith('image/'):
            raise NotAnImageError(
                f"Fetched resource is not an image (content-type: {resource.content_type or 'unknown'})"
            )
        return resource
