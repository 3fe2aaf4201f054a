import io
import logging
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageFile, ImageOps, UnidentifiedImageError

from ..core.errors import ImageProcessingError

logger = logging.getLogger(__name__)

Image.MAX_IMAGE_PIXELS = 50_000_000
ImageFile.LOAD_TRUNCATED_IMAGES = True


@dataclass
class ImageMetadata:
    width: int
    height: int
    format: Optional[str] = None


class ImageProcessor:
    """Pillow-backed metadata and thumbnail derivation. Methods are blocking."""

    def __init__(self, thumbnail_size: int = 300, quality: int = 80):
        self.thumbnail_size = thumbnail_size
        self.quality = quality

    def metadata_from_buffer(self, data: bytes) -> ImageMetadata:
        try:
            with Image.open(io.BytesIO(data)) as im:
                width, height = im.size
                fmt = im.format
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            raise ImageProcessingError("Unable to determine image dimensions from file") from e
        if not width or not height:
            raise ImageProcessingError("Unable to determine image dimensions from file")
        return ImageMetadata(width=width, height=height, format=fmt)

    def thumbnail_from_buffer(self, data: bytes) -> bytes:
        """Square JPEG thumbnail, scaled to cover and centre-cropped."""
        size = (self.thumbnail_size, self.thumbnail_size)
        try:
            with Image.open(io.BytesIO(data)) as im:
                im = im.convert("RGB")
                thumb = ImageOps.fit(im, size, method=Image.LANCZOS, centering=(0.5, 0.5))
                out = io.BytesIO()
                thumb.save(out, format="JPEG", quality=self.quality, optimize=True)
        except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageProcessingError(f"Failed to generate thumbnail: {e}") from e
        return out.getvalue()
