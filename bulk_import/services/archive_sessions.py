import asyncio
import logging
import time
from dataclasses import replace
from typing import AsyncIterator, Callable, List, Optional, Sequence

from ..archive.base import ArchiveHandler, is_safe_path
from ..archive.handlers import default_handlers, find_handler
from ..core.config import Settings, get_settings
from ..core.errors import (
    ArchiveError,
    EmptyArchiveError,
    EntryNotFoundError,
    FileTooLargeError,
    SessionNotFoundError,
    StagingError,
    UnsupportedFormatError,
)
from ..media import DEFAULT_EXTENSION, file_extension, is_image_filename, mime_type_for_filename
from ..models import ArchiveSource, EntryPayload, ImportSession, SourceEntry, SourceKind
from .session_store import SessionStore
from .storage import TEMP_CATEGORY, LocalFileStorage

logger = logging.getLogger(__name__)


class ArchiveSessionService:
    """
    Stages uploaded archives and serves their image entries.

    The upload is written under ``temp/`` in storage and stays there for the
    life of the session; removing the session removes the file.
    """

    source_kind = SourceKind.ARCHIVE

    def __init__(self, storage: LocalFileStorage, settings: Optional[Settings] = None,
                 handlers: Optional[Sequence[ArchiveHandler]] = None,
                 clock: Callable[[], float] = time.time):
        self._settings = settings or get_settings()
        self._storage = storage
        self._handlers: List[ArchiveHandler] = list(handlers) if handlers is not None else default_handlers()
        self.store = SessionStore(
            name="archive",
            ttl_seconds=self._settings.archive_session_max_age_seconds,
            max_sessions=self._settings.max_archive_sessions,
            on_release=self._release,
            clock=clock,
        )

    async def create_session(self, filename: str, media_type: Optional[str],
                             stream: AsyncIterator[bytes]) -> ImportSession:
        handler = find_handler(self._handlers, filename, media_type)
        if handler is None:
            raise UnsupportedFormatError(f"Unsupported archive format: {media_type or filename}",
                                         details={"filename": filename, "media_type": media_type})

        limit_mb = self._settings.max_archive_size_mb
        try:
            staged = await self._storage.save_from_stream(
                stream, TEMP_CATEGORY, handler.extensions[0],
                max_bytes=self._settings.max_archive_size_bytes,
            )
        except FileTooLargeError as e:
            raise FileTooLargeError(f"Archive file exceeds maximum size of {limit_mb}MB",
                                    details={"max_size_mb": limit_mb}) from e

        try:
            listing = await asyncio.to_thread(handler.list_entries, self._storage.absolute_path(staged.path))
            images = [
                entry for entry in listing.entries
                if not entry.is_directory and is_image_filename(entry.filename) and is_safe_path(entry.locator)
            ]
            if not images:
                raise EmptyArchiveError("No image files found in the archive")
        except StagingError:
            await self._discard(staged.path)
            raise
        except Exception as e:
            await self._discard(staged.path)
            raise ArchiveError(f"Failed to read archive: {e}") from e

        entries = tuple(replace(entry, index=index) for index, entry in enumerate(images))
        source = ArchiveSource(
            archive_path=staged.path,
            archive_kind=handler.archive_kind,
            filename=filename,
            listing_strategy=listing.strategy,
        )
        session = await self.store.create(
            lambda session_id, created_at, expires_at: ImportSession(
                id=session_id,
                source_kind=SourceKind.ARCHIVE,
                created_at=created_at,
                expires_at=expires_at,
                source=source,
                entries=entries,
            )
        )
        logger.info(f"Archive session {session.id} created from {filename}: "
                    f"{len(entries)} images ({listing.strategy} listing)")
        return session

    async def get_session(self, session_id: str) -> Optional[ImportSession]:
        return await self.store.get(session_id)

    async def delete_session(self, session_id: str) -> bool:
        return await self.store.delete(session_id)

    async def extract_entry(self, session_id: str, index: int) -> bytes:
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        entry = session.find_entry(index)
        if entry is None:
            raise EntryNotFoundError(f"Entry {index} not found in session {session_id}")
        return await self._extract(session, entry)

    async def read_entry(self, session: ImportSession, entry: SourceEntry) -> EntryPayload:
        content = await self._extract(session, entry)
        return EntryPayload(
            content=content,
            mime_type=mime_type_for_filename(entry.filename),
            extension=file_extension(entry.filename) or DEFAULT_EXTENSION,
        )

    def missing_entry_message(self, index: int) -> str:
        return f"Entry {index} not found in archive"

    async def _extract(self, session: ImportSession, entry: SourceEntry) -> bytes:
        source: ArchiveSource = session.source
        handler = self._handler_for(source.archive_kind)
        path = self._storage.absolute_path(source.archive_path)
        return await asyncio.to_thread(handler.extract_entry, path, entry.archive_index, source.listing_strategy)

    def _handler_for(self, archive_kind: str) -> ArchiveHandler:
        for handler in self._handlers:
            if handler.archive_kind == archive_kind:
                return handler
        raise UnsupportedFormatError(f"Unsupported archive format: {archive_kind}")

    async def _release(self, session: ImportSession) -> None:
        await self._storage.delete(session.source.archive_path)

    async def _discard(self, relative_path: str) -> None:
        try:
            await self._storage.delete(relative_path)
        except StagingError as e:
            logger.warning(f"Failed to remove staged archive {relative_path}: {e}")
