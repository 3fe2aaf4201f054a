"""
Shared data types for import sessions and import results.

Sessions are immutable once created: the entry list is a tuple and every
record is a frozen dataclass, so concurrent readers never observe a
partially-built session.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class SourceKind(str, Enum):
    ARCHIVE = "archive"
    URL_CRAWL = "url-crawl"


@dataclass(frozen=True)
class SourceEntry:
    """One previewable item of a session.

    ``locator`` is the archive-internal path for archive entries and the
    absolute URL for crawled entries. ``archive_index`` is the position the
    archive codec assigned to the entry and is what extraction is keyed on.
    """
    index: int
    filename: str
    locator: str
    size: Optional[int] = None
    alt: Optional[str] = None
    is_directory: bool = False
    archive_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": self.index,
            "filename": self.filename,
            "locator": self.locator,
        }
        if self.size is not None:
            data["size"] = self.size
        if self.alt:
            data["alt"] = self.alt
        if self.archive_index is not None:
            data["isDirectory"] = self.is_directory
        return data


@dataclass(frozen=True)
class ArchiveSource:
    """Where a staged archive lives and how it was listed."""
    archive_path: str
    archive_kind: str
    filename: str
    listing_strategy: str


@dataclass(frozen=True)
class CrawlSource:
    source_url: str
    page_title: Optional[str] = None


@dataclass(frozen=True)
class ImportSession:
    id: str
    source_kind: SourceKind
    created_at: datetime
    expires_at: Optional[datetime]
    source: Union[ArchiveSource, CrawlSource]
    entries: Tuple[SourceEntry, ...]

    def find_entry(self, index: int) -> Optional[SourceEntry]:
        if 0 <= index < len(self.entries) and self.entries[index].index == index:
            return self.entries[index]
        for entry in self.entries:
            if entry.index == index:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Render the session snapshot returned to callers."""
        data: Dict[str, Any] = {
            "sessionId": self.id,
            "sourceKind": self.source_kind.value,
            "createdAt": self.created_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "imageCount": len(self.entries),
            "entries": [entry.to_dict() for entry in self.entries],
        }
        if isinstance(self.source, ArchiveSource):
            data["archiveKind"] = self.source.archive_kind
            data["filename"] = self.source.filename
        else:
            data["sourceUrl"] = self.source.source_url
            data["pageTitle"] = self.source.page_title
        return data


@dataclass(frozen=True)
class EntryPayload:
    """Bytes obtained for one entry, with the media type they should be stored as."""
    content: bytes
    mime_type: str
    extension: str


@dataclass(frozen=True)
class ImageRecord:
    """A committed library image."""
    id: str
    filename: str
    path: str
    thumbnail_path: str
    mime_type: str
    size: int
    width: int
    height: int
    title: Optional[str]
    source_locator: Optional[str]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "path": self.path,
            "thumbnailPath": self.thumbnail_path,
            "mimeType": self.mime_type,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "title": self.title,
            "sourceLocator": self.source_locator,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ImportOutcome:
    index: int
    success: bool
    image: Optional[ImageRecord] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"index": self.index, "success": self.success}
        if self.image is not None:
            data["image"] = self.image.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ImportResult:
    total_requested: int
    outcomes: List[ImportOutcome] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRequested": self.total_requested,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "results": [outcome.to_dict() for outcome in self.outcomes],
        }
