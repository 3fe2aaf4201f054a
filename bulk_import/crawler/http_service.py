"""
Guarded HTTP fetching for URL crawl sessions.

Every URL is checked before a connection is made: only http/https, and never
a loopback, private, link-local or otherwise non-public address. Redirects
are followed by hand so each hop goes through the same check. Each fetch
runs under a hard deadline and is never retried.
"""

import asyncio
import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import httpx

from ..core.config import Settings, get_settings
from ..core.errors import FetchError, FetchTimeoutError, InvalidUrlError

logger = logging.getLogger(__name__)

# Security constants
MALICIOUS_SCHEMES = {'javascript', 'data', 'file', 'ftp'}
ALLOWED_SCHEMES = {'http', 'https'}
BLOCKED_HOSTS = {'localhost', 'localhost.localdomain'}
_NUMERIC_HOST_RE = re.compile(r'^[0-9a-fx.]+$', re.IGNORECASE)
REDIRECT_STATUSES = {301, 302, 303, 307, 308}

PAGE_ACCEPT = 'text/html,application/xhtml+xml,application/xml;q=0.9,image/*;q=0.8,*/*;q=0.7'
IMAGE_ACCEPT = 'image/*'

_REASON_MESSAGES = {
    "MALFORMED_URL": "Invalid URL format",
    "MALICIOUS_SCHEME": "Only HTTP and HTTPS URLs are supported",
    "UNSAFE_SCHEME": "Only HTTP and HTTPS URLs are supported",
    "MISSING_HOST": "URL must include a host",
    "BLOCKED_HOST": "Access to local network addresses is not allowed",
    "PRIVATE_ADDRESS": "Access to private or local network addresses is not allowed",
}


def is_blocked_address(address) -> bool:
    """True for any address a crawl must never connect to."""
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
        or address.is_multicast
        or not address.is_global
    )


def parse_numeric_host(host: str):
    """
    Parse an IP literal, including the shorthand IPv4 forms resolvers accept
    (`127.1`, `2130706433`, `0x7f.0.0.1`). Returns None for host names.
    """
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if not _NUMERIC_HOST_RE.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def validate_url_security(url: str) -> Tuple[bool, str]:
    """
    Validate URL for security threats without touching the network.

    Args:
        url: URL to validate

    Returns:
        Tuple of (is_safe, reason_code)
    """
    try:
        parsed = urlsplit(url)
        scheme = parsed.scheme.lower()

        if scheme in MALICIOUS_SCHEMES:
            return False, "MALICIOUS_SCHEME"
        if scheme not in ALLOWED_SCHEMES:
            return False, "UNSAFE_SCHEME"

        host = (parsed.hostname or '').rstrip('.')
        if not host:
            return False, "MISSING_HOST"
        if host in BLOCKED_HOSTS or host.endswith('.localhost'):
            return False, "BLOCKED_HOST"

        address = parse_numeric_host(host)
        if address is None:
            return True, "SAFE"
        if is_blocked_address(address):
            return False, "PRIVATE_ADDRESS"

        return True, "SAFE"

    except ValueError as e:
        logger.warning(f"URL validation error for {url}: {e}")
        return False, "MALFORMED_URL"


def ensure_url_allowed(url: str) -> None:
    """Raise InvalidUrlError when validate_url_security rejects ``url``."""
    is_safe, reason = validate_url_security(url)
    if not is_safe:
        logger.warning(f"URL rejected: {reason} - {url}")
        raise InvalidUrlError(_REASON_MESSAGES.get(reason, "Invalid URL"),
                              details={"reason": reason, "url": url})


@dataclass
class RequestConfig:
    """Configuration for HTTP requests."""
    timeout: float = 30.0
    max_redirects: int = 3
    max_bytes: int = 10 * 1024 * 1024
    verify_ssl: bool = True
    user_agent: str = ''


@dataclass
class FetchedResource:
    url: str
    content: bytes
    content_type: str
    status_code: int


class RemoteFetcher:
    """
    Owns a pooled httpx client and performs guarded GET requests.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings or get_settings()
        self._client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._resolve_hostnames = self._settings.resolve_hostnames

        self._limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=50,
            keepalive_expiry=30.0
        )

        self._default_config = RequestConfig(
            timeout=self._settings.fetch_timeout_seconds,
            max_redirects=self._settings.max_redirects,
            max_bytes=self._settings.max_page_size_bytes,
            user_agent=self._settings.user_agent,
        )

    async def __aenter__(self):
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_client(self):
        """Ensure HTTP client is initialized."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_config.timeout),
                verify=self._default_config.verify_ssl,
                limits=self._limits,
                headers={
                    'User-Agent': self._default_config.user_agent,
                    'Accept-Language': 'en-US,en;q=0.9',
                },
                follow_redirects=False,
                transport=self._transport,
            )
            logger.info("Remote fetcher client initialized")

    async def close(self):
        """Close the HTTP client and clean up resources."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
            logger.info("Remote fetcher client closed")

    async def check_url(self, url: str) -> None:
        """Reject disallowed URLs; with hostname resolution on, check every resolved address."""
        ensure_url_allowed(url)
        if not self._resolve_hostnames:
            return

        host = urlsplit(url).hostname
        if parse_numeric_host(host) is not None:
            return

        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise FetchError("Failed to fetch URL due to a network error",
                             details={"reason": "DNS_FAILURE", "host": host}) from e

        for _family, _type, _proto, _canonname, sockaddr in infos:
            address = ipaddress.ip_address(sockaddr[0].split('%', 1)[0])
            if is_blocked_address(address):
                logger.warning(f"URL rejected: {host} resolves to non-public address {address}")
                raise InvalidUrlError(_REASON_MESSAGES["PRIVATE_ADDRESS"],
                                      details={"reason": "PRIVATE_ADDRESS", "url": url})

    async def fetch(self, url: str, accept: str = PAGE_ACCEPT, referer: Optional[str] = None,
                    max_bytes: Optional[int] = None, what: str = "URL",
                    config: Optional[RequestConfig] = None) -> FetchedResource:
        """
        GET ``url`` following up to ``max_redirects`` validated redirects.

        Raises:
            InvalidUrlError: the URL or a redirect target is not allowed
            FetchTimeoutError: the deadline passed
            FetchError: non-2xx response, oversized body or network failure
        """
        if config is None:
            config = self._default_config

        ensure_url_allowed(url)
        await self._ensure_client()

        headers: Dict[str, str] = {'Accept': accept}
        if referer:
            headers['Referer'] = referer

        try:
            return await asyncio.wait_for(
                self._fetch_following_redirects(url, headers, max_bytes or config.max_bytes, what, config),
                timeout=config.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Fetch timed out after {config.timeout}s: {url}")
            raise FetchTimeoutError("Request timed out", details={"url": url}) from e
        except httpx.InvalidURL as e:
            raise InvalidUrlError("Invalid URL format", details={"url": url}) from e
        except httpx.HTTPError as e:
            logger.warning(f"Network error fetching {url}: {e}")
            raise FetchError(f"Failed to fetch {what} due to a network error",
                             details={"url": url}) from e

    async def _fetch_following_redirects(self, url: str, headers: Dict[str, str], max_bytes: int,
                                         what: str, config: RequestConfig) -> FetchedResource:
        current = url
        for _ in range(config.max_redirects + 1):
            await self.check_url(current)
            async with self._client.stream("GET", current, headers=headers) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get('location')
                    if not location:
                        raise FetchError(f"Failed to fetch {what}: HTTP {response.status_code}",
                                         details={"status_code": response.status_code})
                    current = urljoin(current, location)
                    logger.debug(f"Following redirect to {current}")
                    continue

                if not response.is_success:
                    raise FetchError(f"Failed to fetch {what}: HTTP {response.status_code}",
                                     details={"status_code": response.status_code, "url": current})

                content = await self._read_limited(response, max_bytes)
                return FetchedResource(
                    url=current,
                    content=content,
                    content_type=response.headers.get('content-type', ''),
                    status_code=response.status_code,
                )

        raise FetchError(f"Too many redirects (max {config.max_redirects})", details={"url": url})

    @staticmethod
    async def _read_limited(response: httpx.Response, max_bytes: int) -> bytes:
        declared = response.headers.get('content-length')
        if declared and declared.isdigit() and int(declared) > max_bytes:
            raise FetchError(f"Response exceeds maximum size of {max_bytes} bytes")

        chunks = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > max_bytes:
                raise FetchError(f"Response exceeds maximum size of {max_bytes} bytes")
            chunks.append(chunk)
        return b''.join(chunks)
