import asyncio
import logging
import time
from typing import AsyncIterator, Callable, Optional, Sequence

from ..archive.base import ArchiveHandler
from ..core.config import Settings, get_settings
from ..crawler.http_service import FetchedResource, RemoteFetcher
from ..models import ImportResult, ImportSession, SourceKind
from ..tasks.session_sweeper import SessionSweeper
from .archive_sessions import ArchiveSessionService
from .crawl_sessions import UrlCrawlSessionService
from .image_processor import ImageProcessor
from .importer import ImportOrchestrator
from .repository import ImageRepository, InMemoryImageRepository
from .storage import LocalFileStorage

logger = logging.getLogger(__name__)


class StagingService:
    """
    Owns the session services, the import orchestrator and their
    collaborators. ``start()`` begins the expiry sweeper; ``close()`` stops
    it, drops every live session and closes the HTTP client.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 storage: Optional[LocalFileStorage] = None,
                 processor: Optional[ImageProcessor] = None,
                 repository: Optional[ImageRepository] = None,
                 fetcher: Optional[RemoteFetcher] = None,
                 handlers: Optional[Sequence[ArchiveHandler]] = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings or get_settings()
        self.storage = storage or LocalFileStorage(self.settings.storage_path)
        self.processor = processor or ImageProcessor(self.settings.thumbnail_size, self.settings.thumbnail_quality)
        self.repository = repository or InMemoryImageRepository()
        self.fetcher = fetcher or RemoteFetcher(self.settings)

        self.archives = ArchiveSessionService(self.storage, self.settings, handlers=handlers, clock=clock)
        self.crawls = UrlCrawlSessionService(self.fetcher, self.settings, clock=clock)
        self.importer = ImportOrchestrator([self.archives, self.crawls], self.storage,
                                           self.processor, self.repository)
        self.sweeper = SessionSweeper([self.archives.store, self.crawls.store],
                                      self.settings.session_sweep_interval_seconds)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def start(self):
        self.sweeper.start()

    async def close(self):
        await self.sweeper.stop()
        await self.archives.store.clear()
        await self.crawls.store.clear()
        await self.fetcher.close()

    async def create_archive_session(self, filename: str, media_type_hint: Optional[str],
                                     stream: AsyncIterator[bytes]) -> ImportSession:
        return await self.archives.create_session(filename, media_type_hint, stream)

    async def create_url_crawl_session(self, url: str) -> ImportSession:
        return await self.crawls.create_session(url)

    async def get_session(self, session_id: str) -> Optional[ImportSession]:
        for service in (self.archives, self.crawls):
            session = await service.get_session(session_id)
            if session is not None:
                return session
        return None

    async def extract_archive_entry(self, session_id: str, index: int) -> bytes:
        return await self.archives.extract_entry(session_id, index)

    async def fetch_crawl_image(self, session_id: str, index: int) -> FetchedResource:
        return await self.crawls.fetch_image(session_id, index)

    async def import_selected(self, session_id: str, indices: Sequence[int],
                              source_kind: Optional[SourceKind] = None) -> ImportResult:
        return await self.importer.import_selected(session_id, indices, source_kind)

    async def delete_session(self, session_id: str, source_kind: Optional[SourceKind] = None) -> None:
        """Delete a session, of the given kind only when ``source_kind`` is set. Unknown ids are ignored."""
        for service in (self.archives, self.crawls):
            if source_kind is None or service.source_kind == source_kind:
                await service.delete_session(session_id)

    async def render_thumbnail(self, content: bytes) -> bytes:
        """Preview thumbnail for an entry that has not been imported."""
        return await asyncio.to_thread(self.processor.thumbnail_from_buffer, content)
