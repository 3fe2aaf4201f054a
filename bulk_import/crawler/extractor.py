"""
Image URL Extraction Module

Parses a fetched HTML page and collects candidate image URLs from image
tags, responsive and lazy-loading attributes, direct image links and CSS
background declarations.
"""

import logging
import posixpath
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from urllib.parse import unquote, urldefrag, urljoin, urlsplit

from bs4 import BeautifulSoup

from ..media import (
    EXTENSION_MIME_TYPES,
    IMAGE_EXTENSIONS,
    extension_for_mime_type,
    is_image_filename,
)
from ..models import SourceEntry

logger = logging.getLogger(__name__)

MAX_IMAGES_PER_PAGE = 500

LAZY_LOAD_ATTRIBUTES = ('data-src', 'data-original', 'data-lazy')

_BACKGROUND_URL_RE = re.compile(
    r'background(?:-image)?\s*:[^;{}]*?url\(\s*[\'"]?([^\'")]+?)[\'"]?\s*\)',
    re.IGNORECASE,
)


@dataclass
class ExtractedImage:
    """Represents an extracted image candidate."""
    url: str
    alt: Optional[str] = None


@dataclass
class ExtractionResult:
    """Result of image extraction from one page."""
    images: List[SourceEntry] = field(default_factory=list)
    page_title: Optional[str] = None
    total_found: int = 0


def extract_filename_from_url(url: str, default: str = 'image') -> str:
    """Last path segment of ``url``, URL-decoded."""
    path = urlsplit(url).path
    name = posixpath.basename(unquote(path).rstrip('/'))
    return name or default


def filename_for_content_type(url: str, content_type: str) -> str:
    """Filename from ``url`` whose extension agrees with ``content_type``."""
    name = extract_filename_from_url(url)
    stem, ext = posixpath.splitext(name)
    expected = extension_for_mime_type(content_type)
    ext = ext.lower()
    if ext in IMAGE_EXTENSIONS:
        if EXTENSION_MIME_TYPES[ext] == EXTENSION_MIME_TYPES[expected]:
            return name
        return stem + expected
    return name + expected


class HtmlImageExtractor:
    """
    Extracts image URLs from HTML documents.

    Candidates are de-duplicated by absolute URL in discovery order and
    capped at ``max_images`` before the image-extension filter runs; the
    surviving entries are numbered from zero.
    """

    def __init__(self, max_images: int = MAX_IMAGES_PER_PAGE):
        self.max_images = max_images

    def extract(self, html: Union[str, bytes], base_url: str) -> ExtractionResult:
        soup = BeautifulSoup(html, 'html.parser')
        candidates: Dict[str, ExtractedImage] = {}

        def add(raw: Optional[str], alt: Optional[str] = None, require_extension: bool = False):
            url = self._resolve_url(raw, base_url)
            if url is None or url in candidates:
                return
            if require_extension and not is_image_filename(urlsplit(url).path):
                return
            candidates[url] = ExtractedImage(url=url, alt=alt)

        for img in soup.find_all('img'):
            add(img.get('src'), alt=self._alt_text(img))

        for link in soup.find_all('a', href=True):
            add(link['href'], require_extension=True)

        for url in self._background_urls(soup):
            add(url, require_extension=True)

        for tag in soup.find_all(attrs={'srcset': True}):
            for candidate in tag['srcset'].split(','):
                parts = candidate.split()
                if parts:
                    add(parts[0], alt=self._alt_text(tag))

        for attribute in LAZY_LOAD_ATTRIBUTES:
            for tag in soup.find_all(attrs={attribute: True}):
                add(tag[attribute], alt=self._alt_text(tag))

        capped = list(candidates.values())[:self.max_images]
        images = [
            SourceEntry(
                index=index,
                filename=extract_filename_from_url(image.url),
                locator=image.url,
                alt=image.alt,
            )
            for index, image in enumerate(
                image for image in capped if is_image_filename(urlsplit(image.url).path)
            )
        ]

        logger.debug(f"Extracted {len(images)} images from {len(candidates)} candidates on {base_url}")
        return ExtractionResult(images=images, page_title=self._page_title(soup), total_found=len(candidates))

    @staticmethod
    def _resolve_url(raw: Optional[str], base_url: str) -> Optional[str]:
        if not raw:
            return None
        raw = raw.strip()
        if not raw or raw.startswith('#'):
            return None
        if raw.lower().startswith(('data:', 'javascript:')):
            return None
        try:
            absolute, _fragment = urldefrag(urljoin(base_url, raw))
        except ValueError:
            return None
        if urlsplit(absolute).scheme.lower() not in ('http', 'https'):
            return None
        return absolute

    @staticmethod
    def _alt_text(tag) -> Optional[str]:
        alt = tag.get('alt')
        if alt and alt.strip():
            return alt.strip()
        return None

    @staticmethod
    def _background_urls(soup: BeautifulSoup) -> List[str]:
        urls = []
        for tag in soup.find_all(style=True):
            urls.extend(_BACKGROUND_URL_RE.findall(tag['style']))
        for style in soup.find_all('style'):
            urls.extend(_BACKGROUND_URL_RE.findall(style.get_text()))
        return urls

    @staticmethod
    def _page_title(soup: BeautifulSoup) -> Optional[str]:
        if soup.title is None:
            return None
        title = soup.title.get_text().strip()
        return title or None
