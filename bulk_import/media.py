"""Image file type helpers shared by the archive and crawl sources."""

import posixpath
from typing import Optional

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.gif', '.webp', '.bmp')

EXTENSION_MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
    '.bmp': 'image/bmp',
}

MIME_TYPE_EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/jpg': '.jpg',
    'image/pjpeg': '.jpg',
    'image/png': '.png',
    'image/gif': '.gif',
    'image/webp': '.webp',
    'image/bmp': '.bmp',
    'image/x-ms-bmp': '.bmp',
}

DEFAULT_EXTENSION = '.jpg'


def file_extension(name: str) -> str:
    """Lower-cased extension of the last path segment, including the dot."""
    return posixpath.splitext(posixpath.basename(name))[1].lower()


def is_image_filename(name: str) -> bool:
    return file_extension(name) in IMAGE_EXTENSIONS


def mime_type_for_filename(name: str) -> str:
    return EXTENSION_MIME_TYPES.get(file_extension(name), 'image/jpeg')


def normalize_content_type(content_type: Optional[str]) -> str:
    """Strip parameters (``; charset=...``) and lower-case a content type."""
    if not content_type:
        return ''
    return content_type.split(';', 1)[0].strip().lower()


def extension_for_mime_type(content_type: Optional[str]) -> str:
    return MIME_TYPE_EXTENSIONS.get(normalize_content_type(content_type), DEFAULT_EXTENSION)


def is_supported_image_type(content_type: Optional[str]) -> bool:
    return normalize_content_type(content_type) in MIME_TYPE_EXTENSIONS
