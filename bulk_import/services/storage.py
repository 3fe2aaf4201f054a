"""
Local filesystem storage for staged archives, originals and thumbnails.

Paths handed out are relative to the storage root (``originals/<uuid>.png``)
so records stay valid if the root moves. Blocking file I/O runs in worker
threads.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

from ..core.errors import FileTooLargeError, StorageError

logger = logging.getLogger(__name__)

TEMP_CATEGORY = "temp"
ORIGINALS_CATEGORY = "originals"
THUMBNAILS_CATEGORY = "thumbnails"


@dataclass
class StoredFile:
    """A file written to storage."""
    path: str
    filename: str
    size: int


class LocalFileStorage:

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def absolute_path(self, relative_path: str) -> str:
        path = (self.root / relative_path).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Path escapes storage root: {relative_path}")
        return str(path)

    def _target(self, category: str, extension: str, filename: Optional[str]) -> StoredFile:
        filename = filename or f"{uuid.uuid4()}{extension}"
        return StoredFile(path=f"{category}/{filename}", filename=filename, size=0)

    async def save_from_stream(self, stream: AsyncIterator[bytes], category: str, extension: str,
                               max_bytes: Optional[int] = None,
                               filename: Optional[str] = None) -> StoredFile:
        """Write ``stream`` to a new file, enforcing ``max_bytes`` as bytes arrive.

        The partial file is removed if the limit is exceeded or writing fails.
        """
        stored = self._target(category, extension, filename)
        target = Path(self.absolute_path(stored.path))

        try:
            await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
            fh = await asyncio.to_thread(open, target, 'wb')
        except OSError as e:
            raise StorageError(f"Failed to open {stored.path} for writing: {e}") from e

        written = 0
        try:
            try:
                async for chunk in stream:
                    written += len(chunk)
                    if max_bytes is not None and written > max_bytes:
                        raise FileTooLargeError(
                            f"File exceeds maximum size of {max_bytes} bytes",
                            details={"max_bytes": max_bytes},
                        )
                    await asyncio.to_thread(fh.write, chunk)
            finally:
                await asyncio.to_thread(fh.close)
        except OSError as e:
            await self._remove_quietly(target)
            raise StorageError(f"Failed to write {stored.path}: {e}") from e
        except BaseException:
            await self._remove_quietly(target)
            raise

        stored.size = written
        logger.debug(f"Stored {written} bytes at {stored.path}")
        return stored

    async def save_from_buffer(self, data: bytes, category: str, extension: str,
                               filename: Optional[str] = None) -> StoredFile:
        stored = self._target(category, extension, filename)
        target = Path(self.absolute_path(stored.path))

        def _write():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            await self._remove_quietly(target)
            raise StorageError(f"Failed to write {stored.path}: {e}") from e

        stored.size = len(data)
        return stored

    async def read(self, relative_path: str) -> bytes:
        try:
            return await asyncio.to_thread(Path(self.absolute_path(relative_path)).read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read {relative_path}: {e}") from e

    async def exists(self, relative_path: str) -> bool:
        return await asyncio.to_thread(Path(self.absolute_path(relative_path)).is_file)

    async def delete(self, relative_path: str) -> None:
        """Delete a stored file; deleting a missing file is not an error."""
        target = Path(self.absolute_path(relative_path))
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Failed to delete {relative_path}: {e}") from e

    @staticmethod
    async def _remove_quietly(target: Path) -> None:
        try:
            await asyncio.to_thread(target.unlink)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove partial file {target}: {e}")
