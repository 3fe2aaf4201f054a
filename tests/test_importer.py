import io
import os
from unittest.mock import AsyncMock

import httpx
import pytest
from PIL import Image

from bulk_import.core.errors import StorageError, ValidationError
from bulk_import.crawler.http_service import RemoteFetcher
from bulk_import.models import SourceKind
from bulk_import.services.archive_sessions import ArchiveSessionService
from bulk_import.services.crawl_sessions import UrlCrawlSessionService
from bulk_import.services.image_processor import ImageProcessor
from bulk_import.services.importer import ImportOrchestrator, validate_indices
from bulk_import.services.repository import InMemoryImageRepository


def _files(storage, category):
    directory = os.path.join(str(storage.root), category)
    if not os.path.isdir(directory):
        return []
    return sorted(os.listdir(directory))


class FailingRepository(InMemoryImageRepository):
    async def create(self, image):
        raise StorageError("Database unavailable")


class TestValidateIndices:
    """Test index list validation."""

    def test_valid(self):
        assert validate_indices([0, 3, 3]) == [0, 3, 3]

    @pytest.mark.parametrize("indices", [[], None, "0,1", [-1], [1.5], [True], ["1"]])
    def test_invalid(self, indices):
        with pytest.raises(ValidationError) as exc_info:
            validate_indices(indices)

        assert exc_info.value.error_code == "VALIDATION_ERROR"


class TestImportOrchestrator:
    """Test selective import from archive and crawl sessions."""

    @pytest.fixture
    def archives(self, storage, settings, clock):
        return ArchiveSessionService(storage, settings, clock=clock)

    @pytest.fixture
    def repository(self):
        return InMemoryImageRepository()

    def _orchestrator(self, sources, storage, repository):
        return ImportOrchestrator(sources, storage, ImageProcessor(300, 80), repository)

    @pytest.mark.asyncio
    async def test_partial_success(self, archives, storage, repository, make_zip, make_image, chunks):
        data = make_zip([
            ("good.png", make_image(size=(640, 480))),
            ("broken.jpg", b"definitely not a jpeg"),
        ])
        session = await archives.create_session("mixed.zip", None, chunks(data))
        importer = self._orchestrator([archives], storage, repository)

        result = await importer.import_selected(session.id, [0, 1])

        assert result.total_requested == 2
        assert result.success_count == 1
        assert result.failed_count == 1
        good, bad = result.outcomes
        assert good.success is True
        assert good.image.width == 640 and good.image.height == 480
        assert good.image.mime_type == "image/png"
        assert good.image.title == "good"
        assert bad.success is False
        assert bad.error == "Unable to determine image dimensions from file"

        assert len(await repository.list()) == 1
        assert _files(storage, "originals") == [os.path.basename(good.image.path)]
        assert len(_files(storage, "thumbnails")) == 1

    @pytest.mark.asyncio
    async def test_thumbnail_is_square_jpeg(self, archives, storage, repository, make_zip, make_image, chunks):
        session = await archives.create_session(
            "wide.zip", None, chunks(make_zip([("wide.png", make_image(size=(900, 300)))])))
        importer = self._orchestrator([archives], storage, repository)

        result = await importer.import_selected(session.id, [0])

        record = result.outcomes[0].image
        assert record.thumbnail_path.startswith("thumbnails/")
        assert record.thumbnail_path.endswith(".jpg")
        with Image.open(io.BytesIO(await storage.read(record.thumbnail_path))) as thumb:
            assert thumb.size == (300, 300)
            assert thumb.format == "JPEG"
        assert await storage.exists(record.path)

    @pytest.mark.asyncio
    async def test_unknown_session_fails_every_index(self, archives, storage, repository):
        importer = self._orchestrator([archives], storage, repository)

        result = await importer.import_selected("missing", [0, 1, 2])

        assert result.to_dict() == {
            "totalRequested": 3,
            "successCount": 0,
            "failedCount": 3,
            "results": [
                {"index": 0, "success": False, "error": "Session not found"},
                {"index": 1, "success": False, "error": "Session not found"},
                {"index": 2, "success": False, "error": "Session not found"},
            ],
        }

    @pytest.mark.asyncio
    async def test_missing_entry_is_reported_per_item(self, archives, storage, repository,
                                                      make_zip, make_image, chunks):
        session = await archives.create_session("a.zip", None, chunks(make_zip([("a.png", make_image())])))
        importer = self._orchestrator([archives], storage, repository)

        result = await importer.import_selected(session.id, [5, 0])

        assert [o.success for o in result.outcomes] == [False, True]
        assert result.outcomes[0].error == "Entry 5 not found in archive"

    @pytest.mark.asyncio
    async def test_invalid_indices_raise(self, archives, storage, repository):
        importer = self._orchestrator([archives], storage, repository)

        with pytest.raises(ValidationError):
            await importer.import_selected("anything", [])

    @pytest.mark.asyncio
    async def test_repository_failure_leaves_no_files(self, archives, storage, make_zip, make_image, chunks):
        session = await archives.create_session("a.zip", None, chunks(make_zip([("a.png", make_image())])))
        importer = self._orchestrator([archives], storage, FailingRepository())

        result = await importer.import_selected(session.id, [0])

        assert result.outcomes[0].success is False
        assert result.outcomes[0].error == "Database unavailable"
        assert _files(storage, "originals") == []
        assert _files(storage, "thumbnails") == []

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_mask_original_error(self, archives, storage, make_zip, make_image,
                                                                chunks, monkeypatch):
        session = await archives.create_session(
            "a.zip", None, chunks(make_zip([("a.png", make_image()), ("b.png", make_image())])))
        importer = self._orchestrator([archives], storage, FailingRepository())
        delete = AsyncMock(side_effect=StorageError("Failed to delete originals/x.png: disk gone"))
        monkeypatch.setattr(storage, "delete", delete)

        result = await importer.import_selected(session.id, [0, 1])

        assert [o.error for o in result.outcomes] == ["Database unavailable", "Database unavailable"]
        assert result.failed_count == 2
        assert delete.await_count == 4

    @pytest.mark.asyncio
    async def test_import_restricted_to_source_kind(self, archives, storage, repository,
                                                    make_zip, make_image, chunks):
        session = await archives.create_session("a.zip", None, chunks(make_zip([("a.png", make_image())])))
        importer = self._orchestrator([archives], storage, repository)

        crawl_only = await importer.import_selected(session.id, [0], SourceKind.URL_CRAWL)
        archive_only = await importer.import_selected(session.id, [0], SourceKind.ARCHIVE)

        assert crawl_only.outcomes[0].error == "Session not found"
        assert archive_only.success_count == 1

    @pytest.mark.asyncio
    async def test_import_from_crawl_session(self, settings, storage, repository, clock, make_image):
        png = make_image()
        page = '<html><body><img src="/p/first.jpg" alt="Cover shot"><img src="/p/second.jpg"></body></html>'

        def handler(request):
            if request.url.path == "/gallery":
                return httpx.Response(200, text=page, headers={"content-type": "text/html"})
            if request.url.path == "/p/first.jpg":
                return httpx.Response(200, content=png, headers={"content-type": "image/png"})
            return httpx.Response(404)

        fetcher = RemoteFetcher(settings, transport=httpx.MockTransport(handler))
        crawls = UrlCrawlSessionService(fetcher, settings, clock=clock)
        session = await crawls.create_session("https://example.com/gallery")
        importer = self._orchestrator([crawls], storage, repository)

        result = await importer.import_selected(session.id, [0, 1])
        await fetcher.close()

        first, second = result.outcomes
        assert first.success is True
        assert first.image.mime_type == "image/png"
        assert first.image.path.endswith(".png")
        assert first.image.title == "Cover shot"
        assert first.image.source_locator == "https://example.com/p/first.jpg"
        assert second.success is False
        assert "HTTP 404" in second.error

    @pytest.mark.asyncio
    async def test_session_resolved_across_sources(self, settings, archives, storage, repository, clock,
                                                   make_zip, make_image, chunks):
        fetcher = RemoteFetcher(settings, transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        crawls = UrlCrawlSessionService(fetcher, settings, clock=clock)
        session = await archives.create_session("a.zip", None, chunks(make_zip([("a.png", make_image())])))
        importer = self._orchestrator([crawls, archives], storage, repository)

        result = await importer.import_selected(session.id, [0])

        assert result.success_count == 1
