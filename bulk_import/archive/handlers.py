"""
ZIP and RAR archive handlers.

ZIP archives are listed from their central directory when it can be read and
from their local headers otherwise. The strategy that produced a listing is
recorded on it so extraction can use the matching reader.
"""

import logging
import zipfile
from typing import List, Optional, Sequence

import rarfile

from ..core.errors import ArchiveError, DirectoryEntryError, EntryNotFoundError
from .base import (
    STRATEGY_INDEXED,
    STRATEGY_STREAMING,
    ArchiveHandler,
    ArchiveListing,
    RawEntry,
    assign_indices,
    is_safe_path,
)
from .zip_stream import LocalHeaderReader

logger = logging.getLogger(__name__)

# zipfile messages raised when the central directory is absent or unreadable
_MISSING_DIRECTORY_ERRORS = (
    "File is not a zip file",
    "Truncated central directory",
    "Bad magic number for central directory",
)


def is_missing_directory_error(error: Exception) -> bool:
    message = str(error)
    return any(message.startswith(prefix) for prefix in _MISSING_DIRECTORY_ERRORS)


def _out_of_range(index: int) -> EntryNotFoundError:
    return EntryNotFoundError(f"Entry index {index} out of range", details={"index": index})


class ZipArchiveHandler(ArchiveHandler):
    archive_kind = "zip"
    extensions = ('.zip',)
    media_types = ('application/zip', 'application/x-zip-compressed')

    def list_entries(self, path: str) -> ArchiveListing:
        try:
            with zipfile.ZipFile(path) as archive:
                raw = [RawEntry(info.filename, info.file_size, info.is_dir())
                       for info in archive.infolist()]
            return ArchiveListing(tuple(assign_indices(raw)), STRATEGY_INDEXED)
        except zipfile.BadZipFile as e:
            if not is_missing_directory_error(e):
                raise ArchiveError(f"Invalid ZIP archive: {e}") from e
            logger.info(f"ZIP central directory unavailable ({e}), scanning local headers")

        with LocalHeaderReader(path) as reader:
            raw = [RawEntry(entry.name, entry.file_size, entry.is_directory)
                   for entry in reader.entries()]
        logger.info(f"Recovered {len(raw)} entries from local headers")
        return ArchiveListing(tuple(assign_indices(raw)), STRATEGY_STREAMING)

    def extract_entry(self, path: str, index: int, strategy: Optional[str] = None) -> bytes:
        if index < 0:
            raise _out_of_range(index)

        if strategy == STRATEGY_STREAMING:
            return self._extract_streaming(path, index)
        try:
            return self._extract_indexed(path, index)
        except zipfile.BadZipFile as e:
            if strategy is None and is_missing_directory_error(e):
                return self._extract_streaming(path, index)
            raise ArchiveError(f"Failed to extract entry {index}: {e}") from e

    def _extract_indexed(self, path: str, index: int) -> bytes:
        with zipfile.ZipFile(path) as archive:
            infos = archive.infolist()
            if index >= len(infos):
                raise _out_of_range(index)
            info = infos[index]
            if info.is_dir():
                raise DirectoryEntryError("Cannot extract a directory entry")
            if not is_safe_path(info.filename):
                raise EntryNotFoundError(f"Entry index {index} not found")
            try:
                return archive.read(info)
            except (RuntimeError, NotImplementedError) as e:
                raise ArchiveError(f"Failed to extract entry {index}: {e}") from e

    def _extract_streaming(self, path: str, index: int) -> bytes:
        with LocalHeaderReader(path) as reader:
            for position, entry in enumerate(reader.entries()):
                if position != index:
                    continue
                if entry.is_directory:
                    raise DirectoryEntryError("Cannot extract a directory entry")
                if not is_safe_path(entry.name):
                    break
                return reader.read(entry)
        raise EntryNotFoundError(f"Entry index {index} not found", details={"index": index})


class RarArchiveHandler(ArchiveHandler):
    archive_kind = "rar"
    extensions = ('.rar',)
    media_types = ('application/vnd.rar', 'application/x-rar-compressed', 'application/x-rar')

    def list_entries(self, path: str) -> ArchiveListing:
        try:
            with rarfile.RarFile(path) as archive:
                raw = [RawEntry(info.filename, info.file_size, info.is_dir())
                       for info in archive.infolist()]
        except rarfile.Error as e:
            raise ArchiveError(f"Invalid RAR archive: {e}") from e
        return ArchiveListing(tuple(assign_indices(raw)), STRATEGY_INDEXED)

    def extract_entry(self, path: str, index: int, strategy: Optional[str] = None) -> bytes:
        if index < 0:
            raise _out_of_range(index)
        try:
            with rarfile.RarFile(path) as archive:
                infos = archive.infolist()
                if index >= len(infos):
                    raise _out_of_range(index)
                info = infos[index]
                if info.is_dir():
                    raise DirectoryEntryError("Cannot extract a directory entry")
                if not is_safe_path(info.filename):
                    raise EntryNotFoundError(f"Entry index {index} not found")
                return archive.read(info)
        except rarfile.Error as e:
            raise ArchiveError(f"Failed to extract entry {index}: {e}") from e


def default_handlers() -> List[ArchiveHandler]:
    return [ZipArchiveHandler(), RarArchiveHandler()]


def find_handler(handlers: Sequence[ArchiveHandler], path_hint: Optional[str],
                 media_type_hint: Optional[str]) -> Optional[ArchiveHandler]:
    """First handler that accepts the hints, or None."""
    for handler in handlers:
        if handler.can_handle(path_hint, media_type_hint):
            return handler
    return None
