"""
Archive handler interface and the index rule shared by every listing strategy.
"""

import logging
import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from ..models import SourceEntry

logger = logging.getLogger(__name__)

STRATEGY_INDEXED = "indexed"
STRATEGY_STREAMING = "streaming"


@dataclass(frozen=True)
class RawEntry:
    """An archive member as seen by a listing strategy, before indexing."""
    name: str
    size: Optional[int]
    is_directory: bool


@dataclass(frozen=True)
class ArchiveListing:
    entries: Tuple[SourceEntry, ...]
    strategy: str


def is_safe_path(name: str) -> bool:
    """Reject absolute paths and any path with a parent-directory segment."""
    normalized = name.replace('\\', '/')
    if normalized.startswith('/'):
        return False
    first = normalized.split('/', 1)[0]
    if len(first) >= 2 and first[1] == ':':
        return False
    return '..' not in normalized.split('/')


def assign_indices(raw_entries: Iterable[RawEntry]) -> List[SourceEntry]:
    """Number entries sequentially in encounter order, directories included.

    Unsafe paths consume an index but are not returned, so the numbering of
    every other entry is unaffected by their removal.
    """
    entries = []
    for index, raw in enumerate(raw_entries):
        if not is_safe_path(raw.name):
            logger.warning(f"Skipping archive entry with unsafe path: {raw.name!r}")
            continue
        entries.append(SourceEntry(
            index=index,
            filename=posixpath.basename(raw.name.rstrip('/')) if raw.is_directory
            else posixpath.basename(raw.name),
            locator=raw.name,
            size=raw.size,
            is_directory=raw.is_directory,
            archive_index=index,
        ))
    return entries


class ArchiveHandler(ABC):
    """One archive format. Handlers are stateless; every call opens and closes the file."""

    archive_kind: str = ""
    extensions: Tuple[str, ...] = ()
    media_types: Tuple[str, ...] = ()

    def can_handle(self, path_hint: Optional[str], media_type_hint: Optional[str]) -> bool:
        if path_hint and posixpath.splitext(path_hint.lower())[1] in self.extensions:
            return True
        if media_type_hint and media_type_hint.split(';', 1)[0].strip().lower() in self.media_types:
            return True
        return False

    @abstractmethod
    def list_entries(self, path: str) -> ArchiveListing:
        """List every member of the archive at ``path``."""

    @abstractmethod
    def extract_entry(self, path: str, index: int, strategy: Optional[str] = None) -> bytes:
        """Return the uncompressed bytes of the member numbered ``index``."""
