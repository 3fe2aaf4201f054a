import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..models import ImageRecord

logger = logging.getLogger(__name__)


@dataclass
class NewImage:
    """Fields of a library record before it is persisted."""
    filename: str
    path: str
    thumbnail_path: str
    mime_type: str
    size: int
    width: int
    height: int
    title: Optional[str] = None
    source_locator: Optional[str] = None


class ImageRepository(ABC):
    """Persistence boundary for committed library images."""

    @abstractmethod
    async def create(self, image: NewImage) -> ImageRecord:
        ...


class InMemoryImageRepository(ImageRepository):

    def __init__(self):
        self._images: Dict[str, ImageRecord] = {}

    async def create(self, image: NewImage) -> ImageRecord:
        record = ImageRecord(
            id=uuid.uuid4().hex,
            created_at=datetime.now(timezone.utc),
            **asdict(image),
        )
        self._images[record.id] = record
        logger.debug(f"Created image record {record.id} for {record.path}")
        return record

    async def get(self, image_id: str) -> Optional[ImageRecord]:
        return self._images.get(image_id)

    async def list(self) -> List[ImageRecord]:
        return list(self._images.values())
