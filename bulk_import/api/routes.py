from typing import Any, AsyncIterator, List

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from ..core.errors import SessionNotFoundError, StagingError, handle_staging_error
from ..media import mime_type_for_filename, normalize_content_type
from ..models import ImportSession, SourceKind
from ..services.staging import StagingService

router = APIRouter()

UPLOAD_CHUNK_SIZE = 1024 * 1024


class UrlCrawlRequest(BaseModel):
    """Request model for starting a URL crawl session."""
    url: str = Field(..., max_length=2048)


class ImportRequest(BaseModel):
    """Indices are validated by the import service so bad values map to VALIDATION_ERROR."""
    indices: List[Any] = Field(default_factory=list)


def get_staging(request: Request) -> StagingService:
    return request.app.state.staging


async def _iter_upload(upload: UploadFile) -> AsyncIterator[bytes]:
    while True:
        chunk = await upload.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


async def _require_session(staging: StagingService, session_id: str, kind: SourceKind) -> ImportSession:
    session = await staging.get_session(session_id)
    if session is None or session.source_kind != kind:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return session


# ---------- Archive sessions ----------

@router.post("/api/archives", status_code=status.HTTP_201_CREATED)
async def create_archive_session(file: UploadFile = File(...),
                                 staging: StagingService = Depends(get_staging)):
    try:
        session = await staging.create_archive_session(file.filename or "", file.content_type,
                                                       _iter_upload(file))
    except StagingError as e:
        raise handle_staging_error(e)
    return session.to_dict()


@router.get("/api/archives/{session_id}")
async def get_archive_session(session_id: str, staging: StagingService = Depends(get_staging)):
    try:
        session = await _require_session(staging, session_id, SourceKind.ARCHIVE)
    except StagingError as e:
        raise handle_staging_error(e)
    return session.to_dict()


@router.get("/api/archives/{session_id}/files/{index}/file")
async def get_archive_file(session_id: str, index: int, staging: StagingService = Depends(get_staging)):
    try:
        session = await _require_session(staging, session_id, SourceKind.ARCHIVE)
        content = await staging.extract_archive_entry(session_id, index)
    except StagingError as e:
        raise handle_staging_error(e)
    entry = session.find_entry(index)
    return Response(content=content, media_type=mime_type_for_filename(entry.filename),
                    headers={"Cache-Control": "private, max-age=3600"})


@router.get("/api/archives/{session_id}/files/{index}/thumbnail")
async def get_archive_thumbnail(session_id: str, index: int, staging: StagingService = Depends(get_staging)):
    try:
        await _require_session(staging, session_id, SourceKind.ARCHIVE)
        content = await staging.extract_archive_entry(session_id, index)
        thumbnail = await staging.render_thumbnail(content)
    except StagingError as e:
        raise handle_staging_error(e)
    return Response(content=thumbnail, media_type="image/jpeg",
                    headers={"Cache-Control": "private, max-age=3600"})


@router.post("/api/archives/{session_id}/import")
async def import_archive_entries(session_id: str, payload: ImportRequest,
                                 staging: StagingService = Depends(get_staging)):
    try:
        result = await staging.import_selected(session_id, payload.indices, SourceKind.ARCHIVE)
    except StagingError as e:
        raise handle_staging_error(e)
    return result.to_dict()


@router.delete("/api/archives/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_archive_session(session_id: str, staging: StagingService = Depends(get_staging)):
    await staging.delete_session(session_id, SourceKind.ARCHIVE)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- URL crawl sessions ----------

@router.post("/api/url-crawl", status_code=status.HTTP_201_CREATED)
async def create_url_crawl_session(payload: UrlCrawlRequest, staging: StagingService = Depends(get_staging)):
    try:
        session = await staging.create_url_crawl_session(payload.url)
    except StagingError as e:
        raise handle_staging_error(e)
    return session.to_dict()


@router.get("/api/url-crawl/{session_id}")
async def get_url_crawl_session(session_id: str, staging: StagingService = Depends(get_staging)):
    try:
        session = await _require_session(staging, session_id, SourceKind.URL_CRAWL)
    except StagingError as e:
        raise handle_staging_error(e)
    return session.to_dict()


@router.get("/api/url-crawl/{session_id}/images/{index}/file")
async def get_crawl_image(session_id: str, index: int, staging: StagingService = Depends(get_staging)):
    try:
        resource = await staging.fetch_crawl_image(session_id, index)
    except StagingError as e:
        raise handle_staging_error(e)
    return Response(content=resource.content, media_type=normalize_content_type(resource.content_type),
                    headers={"Cache-Control": "private, max-age=3600"})


@router.get("/api/url-crawl/{session_id}/images/{index}/thumbnail")
async def get_crawl_thumbnail(session_id: str, index: int, staging: StagingService = Depends(get_staging)):
    try:
        resource = await staging.fetch_crawl_image(session_id, index)
        thumbnail = await staging.render_thumbnail(resource.content)
    except StagingError as e:
        raise handle_staging_error(e)
    return Response(content=thumbnail, media_type="image/jpeg",
                    headers={"Cache-Control": "private, max-age=3600"})


@router.post("/api/url-crawl/{session_id}/import")
async def import_crawl_images(session_id: str, payload: ImportRequest,
                              staging: StagingService = Depends(get_staging)):
    try:
        result = await staging.import_selected(session_id, payload.indices, SourceKind.URL_CRAWL)
    except StagingError as e:
        raise handle_staging_error(e)
    return result.to_dict()


@router.delete("/api/url-crawl/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_url_crawl_session(session_id: str, staging: StagingService = Depends(get_staging)):
    await staging.delete_session(session_id, SourceKind.URL_CRAWL)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
