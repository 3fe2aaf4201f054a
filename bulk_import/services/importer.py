"""
Selective import of session entries into the image library.

Each requested index runs through the same pipeline: obtain bytes from the
session source, store the original, read dimensions, store a thumbnail and
create the library record. Items are processed one after another and fail
independently; when a step fails after something was written, the files
written for that item are removed before the failure is recorded.
"""

import asyncio
import logging
import posixpath
from typing import Any, List, Optional, Sequence, Tuple

from ..core.errors import StagingError, ValidationError
from ..models import (
    EntryPayload,
    ImageRecord,
    ImportOutcome,
    ImportResult,
    ImportSession,
    SourceEntry,
    SourceKind,
)
from .image_processor import ImageProcessor
from .repository import ImageRepository, NewImage
from .storage import ORIGINALS_CATEGORY, THUMBNAILS_CATEGORY, LocalFileStorage

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND_MESSAGE = "Session not found"


def validate_indices(indices: Any) -> List[int]:
    """Require a non-empty list of non-negative integers."""
    message = "indices must be a non-empty array of non-negative integers"
    if not isinstance(indices, (list, tuple)) or not indices:
        raise ValidationError(message)
    for value in indices:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(message, details={"invalid_index": value})
    return list(indices)


class ImportOrchestrator:

    def __init__(self, sources: Sequence[Any], storage: LocalFileStorage,
                 processor: ImageProcessor, repository: ImageRepository):
        # Each source offers source_kind, get_session, read_entry and missing_entry_message
        self._sources = list(sources)
        self._storage = storage
        self._processor = processor
        self._repository = repository

    async def import_selected(self, session_id: str, indices: Sequence[int],
                              source_kind: Optional[SourceKind] = None) -> ImportResult:
        """Import ``indices`` from a session; ``source_kind`` restricts which sources are searched."""
        indices = validate_indices(indices)
        result = ImportResult(total_requested=len(indices))

        located = await self._find_session(session_id, source_kind)
        if located is None:
            logger.warning(f"Import requested for unknown session {session_id}")
            result.outcomes = [ImportOutcome(index=index, success=False, error=SESSION_NOT_FOUND_MESSAGE)
                               for index in indices]
            return result

        source, session = located
        for index in indices:
            result.outcomes.append(await self._import_one(source, session, index))

        logger.info(f"Import from session {session_id}: {result.success_count} succeeded, "
                    f"{result.failed_count} failed of {result.total_requested}")
        return result

    async def _find_session(self, session_id: str,
                            source_kind: Optional[SourceKind]) -> Optional[Tuple[Any, ImportSession]]:
        for source in self._sources:
            if source_kind is not None and source.source_kind != source_kind:
                continue
            session = await source.get_session(session_id)
            if session is not None:
                return source, session
        return None

    async def _import_one(self, source, session: ImportSession, index: int) -> ImportOutcome:
        entry = session.find_entry(index)
        if entry is None:
            return ImportOutcome(index=index, success=False, error=source.missing_entry_message(index))

        try:
            payload = await source.read_entry(session, entry)
            image = await self._commit(entry, payload)
        except StagingError as e:
            logger.warning(f"Import of entry {index} from session {session.id} failed: {e.message}")
            return ImportOutcome(index=index, success=False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected error importing entry {index} from session {session.id}: {e}",
                         exc_info=True)
            return ImportOutcome(index=index, success=False, error=str(e) or type(e).__name__)

        return ImportOutcome(index=index, success=True, image=image)

    async def _commit(self, entry: SourceEntry, payload: EntryPayload) -> ImageRecord:
        original = await self._storage.save_from_buffer(payload.content, ORIGINALS_CATEGORY, payload.extension)
        written = [original.path]
        try:
            metadata = await asyncio.to_thread(self._processor.metadata_from_buffer, payload.content)
            thumbnail = await asyncio.to_thread(self._processor.thumbnail_from_buffer, payload.content)
            stem = posixpath.splitext(original.filename)[0]
            thumb = await self._storage.save_from_buffer(thumbnail, THUMBNAILS_CATEGORY, '.jpg',
                                                         filename=f"{stem}.jpg")
            written.append(thumb.path)

            return await self._repository.create(NewImage(
                filename=entry.filename,
                path=original.path,
                thumbnail_path=thumb.path,
                mime_type=payload.mime_type,
                size=len(payload.content),
                width=metadata.width,
                height=metadata.height,
                title=entry.alt or posixpath.splitext(entry.filename)[0] or None,
                source_locator=entry.locator,
            ))
        except BaseException:
            await self._remove_written(written)
            raise

    async def _remove_written(self, paths: List[str]) -> None:
        for path in paths:
            try:
                await self._storage.delete(path)
            except Exception as e:
                logger.warning(f"Failed to clean up {path} after import failure: {e}")
