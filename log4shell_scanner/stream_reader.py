# log4shell_scanner/stream_reader.py
"""
Forward-only ZIP reader.

An archive stored inside another archive is only available as a decompressing
byte stream, so the central directory at its end cannot be consulted first.
ForwardZipReader walks the local file headers front to back instead, the way
java.util.zip.ZipInputStream does, and never seeks.
"""
import struct
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional
from .errors import CorruptStreamError


CHUNK_SIZE = 32768

LOCAL_HEADER_SIG = b"PK\x03\x04"
DATA_DESCRIPTOR_SIG = b"PK\x07\x08"

LOCAL_HEADER_FORMAT = "<HHHHHIIIHH"
LOCAL_HEADER_SIZE = struct.calcsize(LOCAL_HEADER_FORMAT)

FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

METHOD_STORED = 0
METHOD_DEFLATED = 8

ZIP64_EXTRA_ID = 0x0001
ZIP64_MARKER = 0xFFFFFFFF

DEFAULT_DATE_TIME = (1980, 1, 1, 0, 0, 0)


def _dos_date_time(dos_date: int, dos_time: int) -> tuple:
    date_time = (
        (dos_date >> 9) + 1980,
        (dos_date >> 5) & 0x0F,
        dos_date & 0x1F,
        dos_time >> 11,
        (dos_time >> 5) & 0x3F,
        (dos_time & 0x1F) * 2,
    )
    if not (1 <= date_time[1] <= 12 and 1 <= date_time[2] <= 31):
        return DEFAULT_DATE_TIME
    return date_time


@dataclass
class LocalHeader:
    name: str
    flags: int
    method: int
    date_time: tuple
    crc: int
    compress_size: int
    file_size: int
    zip64: bool = False

    @property
    def has_data_descriptor(self) -> bool:
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)


class _PushbackSource:
    """Wraps a readable stream so over-read bytes can be handed back."""

    def __init__(self, fileobj: BinaryIO):
        self._fileobj = fileobj
        self._buffer = b""

    def unread(self, data: bytes) -> None:
        if data:
            self._buffer = data + self._buffer

    def read_some(self, size: int) -> bytes:
        if self._buffer:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
            return data
        return self._fileobj.read(size)

    def read_exact(self, size: int) -> bytes:
        parts = []
        remaining = size
        while remaining > 0:
            data = self.read_some(remaining)
            if not data:
                break
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)


class StreamEntry:
    """One entry of a forward-only archive. Content is readable only until the next entry is requested."""

    def __init__(self, header: LocalHeader, chunks: Iterator[bytes]):
        self.header = header
        self._chunks = chunks

    @property
    def name(self) -> str:
        return self.header.name

    def is_dir(self) -> bool:
        return self.header.name.endswith('/')

    def iter_chunks(self) -> Iterator[bytes]:
        return self._chunks

    def read(self) -> bytes:
        return b"".join(self._chunks)

    def _drain(self) -> None:
        for _ in self._chunks:
            pass


class ForwardZipReader:
    """
    Iterates the entries of a ZIP stream strictly front to back.

    Iteration stops at the first signature that is not a local file header.
    Truncated data, CRC mismatches, encrypted entries and compression other
    than stored/deflated raise CorruptStreamError.
    """

    def __init__(self, fileobj: BinaryIO, chunk_size: int = CHUNK_SIZE):
        self._source = _PushbackSource(fileobj)
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[StreamEntry]:
        while True:
            header = self._next_header()
            if header is None:
                return
            entry = StreamEntry(header, self._content_chunks(header))
            yield entry
            entry._drain()

    def _next_header(self) -> Optional[LocalHeader]:
        signature = self._source.read_exact(4)
        # Central directory, end of stream or anything that is not a local
        # header ends the entry list, like ZipInputStream.getNextEntry()
        if signature != LOCAL_HEADER_SIG:
            return None

        fixed = self._source.read_exact(LOCAL_HEADER_SIZE)
        if len(fixed) != LOCAL_HEADER_SIZE:
            raise CorruptStreamError("truncated local file header")
        (_version, flags, method, dos_time, dos_date,
         crc, compress_size, file_size, name_len, extra_len) = struct.unpack(LOCAL_HEADER_FORMAT, fixed)

        raw_name = self._source.read_exact(name_len)
        extra = self._source.read_exact(extra_len)
        if len(raw_name) != name_len or len(extra) != extra_len:
            raise CorruptStreamError("truncated local file header")
        name = raw_name.decode('utf-8' if flags & FLAG_UTF8 else 'cp437', errors='replace')

        if flags & FLAG_ENCRYPTED:
            raise CorruptStreamError(f"encrypted entry {name}")
        if method not in (METHOD_STORED, METHOD_DEFLATED):
            raise CorruptStreamError(f"unsupported compression method {method} for entry {name}")

        header = LocalHeader(name=name, flags=flags, method=method,
                             date_time=_dos_date_time(dos_date, dos_time), crc=crc,
                             compress_size=compress_size, file_size=file_size)
        self._apply_zip64_extra(header, extra)

        if header.has_data_descriptor and method == METHOD_STORED:
            raise CorruptStreamError(f"stored entry {name} uses a data descriptor, its length is unknown")
        return header

    @staticmethod
    def _apply_zip64_extra(header: LocalHeader, extra: bytes) -> None:
        offset = 0
        while offset + 4 <= len(extra):
            header_id, size = struct.unpack_from("<HH", extra, offset)
            offset += 4
            if header_id == ZIP64_EXTRA_ID:
                header.zip64 = True
                data = extra[offset:offset + size]
                fields = [struct.unpack_from("<Q", data, i)[0] for i in range(0, len(data) - 7, 8)]
                if header.file_size == ZIP64_MARKER and fields:
                    header.file_size = fields.pop(0)
                if header.compress_size == ZIP64_MARKER and fields:
                    header.compress_size = fields.pop(0)
                return
            offset += size

    def _content_chunks(self, header: LocalHeader) -> Iterator[bytes]:
        crc = 0
        try:
            if header.method == METHOD_STORED:
                chunks = self._stored_chunks(header)
            else:
                chunks = self._deflated_chunks(header)
            for chunk in chunks:
                crc = zlib.crc32(chunk, crc)
                yield chunk
        except zlib.error as e:
            raise CorruptStreamError(f"invalid deflate data in entry {header.name}: {e}") from e

        expected_crc = header.crc
        if header.has_data_descriptor:
            expected_crc = self._read_data_descriptor(header)
        if crc != expected_crc:
            raise CorruptStreamError(f"CRC mismatch in entry {header.name}")

    def _stored_chunks(self, header: LocalHeader) -> Iterator[bytes]:
        remaining = header.compress_size
        while remaining > 0:
            chunk = self._source.read_some(min(remaining, self._chunk_size))
            if not chunk:
                raise CorruptStreamError(f"unexpected end of stream in entry {header.name}")
            remaining -= len(chunk)
            yield chunk

    def _deflated_chunks(self, header: LocalHeader) -> Iterator[bytes]:
        decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        # Without a data descriptor the compressed size is exact; with one, the
        # deflate stream itself marks where the entry ends.
        remaining = None if header.has_data_descriptor else header.compress_size
        while not decompressor.eof:
            want = self._chunk_size if remaining is None else min(remaining, self._chunk_size)
            if want == 0:
                break
            data = self._source.read_some(want)
            if not data:
                raise CorruptStreamError(f"unexpected end of stream in entry {header.name}")
            if remaining is not None:
                remaining -= len(data)
            chunk = decompressor.decompress(data)
            if chunk:
                yield chunk
        if not decompressor.eof:
            raise CorruptStreamError(f"incomplete deflate data in entry {header.name}")
        tail = decompressor.flush()
        if tail:
            yield tail
        if remaining is None:
            self._source.unread(decompressor.unused_data)
        elif remaining:
            # Trailing bytes inside the declared compressed size
            self._source.read_exact(remaining)

    def _read_data_descriptor(self, header: LocalHeader) -> int:
        size_len = 8 if header.zip64 else 4
        first = self._source.read_exact(4)
        if first == DATA_DESCRIPTOR_SIG:
            first = self._source.read_exact(4)
        rest = self._source.read_exact(2 * size_len)
        if len(first) != 4 or len(rest) != 2 * size_len:
            raise CorruptStreamError(f"truncated data descriptor for entry {header.name}")
        return struct.unpack("<I", first)[0]
