import io
import os
import tempfile
import zipfile

import pytest
from PIL import Image

# Set test environment variables before the application modules read them
os.environ.update({
    "ENVIRONMENT": "testing",
    "LOG_LEVEL": "debug",
    "STORAGE_PATH": tempfile.mkdtemp(prefix="bulk-import-test-"),
    "RESOLVE_HOSTNAMES": "false",
    "FETCH_TIMEOUT_SECONDS": "5",
})

from bulk_import.core.config import Settings  # noqa: E402
from bulk_import.services.storage import LocalFileStorage  # noqa: E402


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class UnseekableSink:
    """Write-only stream; zipfile falls back to data descriptors when it cannot seek."""

    def __init__(self):
        self.parts = []

    def write(self, data):
        self.parts.append(bytes(data))
        return len(data)

    def flush(self):
        pass

    def getvalue(self) -> bytes:
        return b''.join(self.parts)


def build_zip(members, compression=zipfile.ZIP_DEFLATED, seekable=True) -> bytes:
    """members: iterable of (name, bytes); names ending in '/' become directories."""
    sink = io.BytesIO() if seekable else UnseekableSink()
    with zipfile.ZipFile(sink, 'w', compression) as archive:
        for name, data in members:
            archive.writestr(name, data)
    return sink.getvalue()


def image_bytes(fmt: str = "PNG", size=(64, 48), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


async def iter_chunks(data: bytes, chunk_size: int = 1024):
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="testing",
        storage_path=str(tmp_path / "storage"),
        resolve_hostnames=False,
        fetch_timeout_seconds=5,
    )


@pytest.fixture
def storage(settings):
    return LocalFileStorage(settings.storage_path)


@pytest.fixture
def make_zip():
    return build_zip


@pytest.fixture
def make_image():
    return image_bytes


@pytest.fixture
def chunks():
    return iter_chunks


@pytest.fixture
def write_file(tmp_path):
    def _write(name: str, data: bytes) -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return _write
