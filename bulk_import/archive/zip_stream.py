"""
Sequential ZIP reader driven by local file headers.

Used when an archive's central directory is missing or damaged, which is
what an interrupted upload looks like: every member written before the cut
still carries a complete local header followed by its data. Entries are
produced lazily, one header at a time, from a single open file handle that
``LocalHeaderReader`` closes on exit however iteration ends.

An entry is only produced once both its header and its data are known to be
complete; a member cut off part-way through ends the scan without raising.
"""

import bz2
import logging
import os
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional, Tuple

from ..core.errors import ArchiveError

logger = logging.getLogger(__name__)

LOCAL_HEADER_SIGNATURE = b'PK\x03\x04'
DATA_DESCRIPTOR_SIGNATURE = b'PK\x07\x08'

# Records that can follow the last local entry
TRAILING_SIGNATURES = {
    b'PK\x01\x02',  # central directory header
    b'PK\x05\x06',  # end of central directory
    b'PK\x06\x06',  # zip64 end of central directory
    b'PK\x06\x07',  # zip64 end of central directory locator
    b'PK\x05\x05',  # digital signature
    b'PK\x06\x08',  # archive extra data
}

_LOCAL_HEADER = struct.Struct('<4sHHHHHIIIHH')
_DESCRIPTOR = struct.Struct('<III')
_DESCRIPTOR64 = struct.Struct('<IQQ')
_EXTRA_HEADER = struct.Struct('<HH')
_ZIP64_EXTRA_ID = 0x0001
_ZIP64_LIMIT = 0xFFFFFFFF

FLAG_ENCRYPTED = 0x01
FLAG_DATA_DESCRIPTOR = 0x08
FLAG_UTF8 = 0x800

STORED = 0
DEFLATED = 8
BZIP2 = 12

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class LocalEntry:
    name: str
    flags: int
    method: int
    crc: int
    compressed_size: int
    file_size: int
    data_offset: int

    @property
    def is_directory(self) -> bool:
        return self.name.endswith('/')


def _decode_name(raw: bytes, flags: int) -> str:
    # Same decoding the zipfile module applies to central directory names
    name = raw.decode('utf-8' if flags & FLAG_UTF8 else 'cp437', errors='replace')
    null_byte = name.find('\x00')
    if null_byte >= 0:
        name = name[:null_byte]
    return name


def _apply_zip64_extra(extra: bytes, file_size: int, compressed_size: int) -> Tuple[int, int, bool]:
    offset = 0
    while offset + _EXTRA_HEADER.size <= len(extra):
        header_id, length = _EXTRA_HEADER.unpack_from(extra, offset)
        offset += _EXTRA_HEADER.size
        if header_id == _ZIP64_EXTRA_ID:
            body = extra[offset:offset + length]
            position = 0
            if file_size == _ZIP64_LIMIT and position + 8 <= len(body):
                file_size = struct.unpack_from('<Q', body, position)[0]
                position += 8
            if compressed_size == _ZIP64_LIMIT and position + 8 <= len(body):
                compressed_size = struct.unpack_from('<Q', body, position)[0]
            return file_size, compressed_size, True
        offset += length
    return file_size, compressed_size, False


def _new_decompressor(method: int):
    if method == DEFLATED:
        return zlib.decompressobj(-15)
    if method == BZIP2:
        return bz2.BZ2Decompressor()
    return None


def _find_stream_end(fh: BinaryIO, start: int, method: int) -> Optional[int]:
    """Length of the compressed stream starting at ``start``, or None if the file ends first."""
    decompressor = _new_decompressor(method)
    fh.seek(start)
    consumed = 0
    while True:
        chunk = fh.read(_CHUNK_SIZE)
        if not chunk:
            return None
        decompressor.decompress(chunk)
        if decompressor.eof:
            return consumed + len(chunk) - len(decompressor.unused_data)
        consumed += len(chunk)


def _find_stored_end(fh: BinaryIO, start: int) -> Optional[int]:
    """Locate the data descriptor that terminates a stored entry of unknown size."""
    fh.seek(start)
    buffer = bytearray()
    search_from = 0
    while True:
        chunk = fh.read(_CHUNK_SIZE)
        if not chunk:
            return None
        buffer += chunk
        while True:
            position = buffer.find(DATA_DESCRIPTOR_SIGNATURE, search_from)
            if position < 0:
                search_from = max(0, len(buffer) - 3)
                break
            if position + 4 + _DESCRIPTOR.size > len(buffer):
                search_from = position
                break
            _, compressed_size, _ = _DESCRIPTOR.unpack_from(buffer, position + 4)
            if compressed_size == position:
                return position
            search_from = position + 1


def _read_descriptor(fh: BinaryIO, offset: int, zip64: bool) -> Optional[Tuple[int, int, int, int]]:
    """Returns (crc, compressed_size, file_size, descriptor_length)."""
    layout = _DESCRIPTOR64 if zip64 else _DESCRIPTOR
    fh.seek(offset)
    head = fh.read(4)
    if len(head) < 4:
        return None
    if head == DATA_DESCRIPTOR_SIGNATURE:
        body = fh.read(layout.size)
        prefix = 4
    else:
        body = head + fh.read(layout.size - 4)
        prefix = 0
    if len(body) < layout.size:
        return None
    crc, compressed_size, file_size = layout.unpack(body)
    return crc, compressed_size, file_size, prefix + layout.size


def iter_local_entries(fh: BinaryIO, total_size: int) -> Iterator[LocalEntry]:
    offset = 0
    while True:
        fh.seek(offset)
        header = fh.read(_LOCAL_HEADER.size)
        if len(header) < 4:
            return
        signature = header[:4]
        if signature in TRAILING_SIGNATURES:
            return
        if signature != LOCAL_HEADER_SIGNATURE:
            if offset == 0:
                raise ArchiveError("File is not a ZIP archive")
            logger.warning(f"Unexpected record at offset {offset}, ending local header scan")
            return
        if len(header) < _LOCAL_HEADER.size:
            return

        (_, _version, flags, method, _mtime, _mdate, crc, compressed_size,
         file_size, name_length, extra_length) = _LOCAL_HEADER.unpack(header)
        name_bytes = fh.read(name_length)
        extra = fh.read(extra_length)
        if len(name_bytes) < name_length or len(extra) < extra_length:
            return

        file_size, compressed_size, zip64 = _apply_zip64_extra(extra, file_size, compressed_size)
        data_offset = offset + _LOCAL_HEADER.size + name_length + extra_length

        if flags & FLAG_DATA_DESCRIPTOR:
            if flags & FLAG_ENCRYPTED:
                logger.warning("Encrypted entry without sizes, ending local header scan")
                return
            if method == STORED:
                length = _find_stored_end(fh, data_offset)
            elif _new_decompressor(method) is not None:
                length = _find_stream_end(fh, data_offset, method)
            else:
                logger.warning(f"Cannot measure entry compressed with method {method}, ending scan")
                return
            if length is None:
                return
            descriptor = _read_descriptor(fh, data_offset + length, zip64)
            if descriptor is None:
                return
            crc, _, file_size, descriptor_length = descriptor
            compressed_size = length
            next_offset = data_offset + length + descriptor_length
        else:
            next_offset = data_offset + compressed_size
            if next_offset > total_size:
                return

        yield LocalEntry(
            name=_decode_name(name_bytes, flags),
            flags=flags,
            method=method,
            crc=crc,
            compressed_size=compressed_size,
            file_size=file_size,
            data_offset=data_offset,
        )
        offset = next_offset


def _decompress(method: int, raw: bytes) -> bytes:
    if method == STORED:
        return raw
    if method == DEFLATED:
        return zlib.decompress(raw, -15)
    if method == BZIP2:
        return bz2.decompress(raw)
    raise ArchiveError(f"Unsupported compression method {method}")


class LocalHeaderReader:
    """Scoped access to the local entries of a ZIP file.

    Usage::

        with LocalHeaderReader(path) as reader:
            for entry in reader.entries():
                ...
    """

    def __init__(self, path: str):
        self.path = path
        self._fh: Optional[BinaryIO] = None
        self._size = 0

    def __enter__(self) -> "LocalHeaderReader":
        self._fh = open(self.path, 'rb')
        self._size = os.fstat(self._fh.fileno()).st_size
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def entries(self) -> Iterator[LocalEntry]:
        if self._fh is None:
            raise RuntimeError("LocalHeaderReader used outside its context")
        return iter_local_entries(self._fh, self._size)

    def read(self, entry: LocalEntry) -> bytes:
        if entry.flags & FLAG_ENCRYPTED:
            raise ArchiveError(f"Entry {entry.name} is encrypted")
        self._fh.seek(entry.data_offset)
        raw = self._fh.read(entry.compressed_size)
        if len(raw) < entry.compressed_size:
            raise ArchiveError(f"Entry {entry.name} is truncated")
        try:
            data = _decompress(entry.method, raw)
        except (zlib.error, OSError, EOFError) as e:
            raise ArchiveError(f"Failed to decompress entry {entry.name}: {e}") from e
        if zlib.crc32(data) & 0xFFFFFFFF != entry.crc:
            raise ArchiveError(f"CRC check failed for entry {entry.name}")
        return data
