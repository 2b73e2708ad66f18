"""Sequential, bulk and random access over the sample region of a recording."""
from __future__ import annotations

from dataclasses import dataclass
import io
import logging
import os
from typing import BinaryIO, Iterator, List, Optional, Protocol

from .catalog import FieldCatalog
from .decoder import RecordView
from .errors import ClosedSource, IndexOutOfRange, ShortRead

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordHeader:
    sample_byte_offset: int
    record_length: int

    def __post_init__(self) -> None:
        if self.sample_byte_offset < 0:
            raise ValueError(f"sample_byte_offset must be non-negative (got {self.sample_byte_offset})")
        if self.record_length <= 0:
            raise ValueError(f"record_length must be positive (got {self.record_length})")


class ByteSource(Protocol):
    def read_at(self, offset: int, length: int) -> bytes:
        ...

    def size_in_bytes(self) -> int:
        ...


class FileSource:
    """``ByteSource`` over a borrowed binary file object.

    The file object stays owned by the caller; this adapter never closes it.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj

    @property
    def closed(self) -> bool:
        return bool(getattr(self._file, "closed", False))

    def _check_open(self) -> None:
        if self.closed:
            raise ClosedSource("The underlying telemetry file has been closed")

    def read_at(self, offset: int, length: int) -> bytes:
        self._check_open()
        self._file.seek(offset)
        return self._file.read(length)

    def size_in_bytes(self) -> int:
        self._check_open()
        try:
            return os.fstat(self._file.fileno()).st_size
        except (AttributeError, OSError):
            pos = self._file.tell()
            size = self._file.seek(0, io.SEEK_END)
            self._file.seek(pos)
            return size


class SampleAccessor:
    def __init__(self, source: ByteSource, header: RecordHeader, catalog: FieldCatalog) -> None:
        self.source = source
        self.header = header
        self.catalog = catalog
        self._sample_count: Optional[int] = None

    def _count_samples(self) -> int:
        available = self.source.size_in_bytes() - self.header.sample_byte_offset
        return max(0, available // self.header.record_length)

    def sample_count(self) -> int:
        # Written once; concurrent first calls compute the same value.
        if self._sample_count is None:
            self._sample_count = self._count_samples()
        return self._sample_count

    def iter_samples(self) -> Iterator[RecordView]:
        """Yield records one blocking read at a time until a short read."""
        length = self.header.record_length
        position = self.header.sample_byte_offset
        index = 0
        while True:
            chunk = self.source.read_at(position, length)
            if len(chunk) != length:
                logger.debug("Sample stream ended after %d records (%d trailing bytes)", index, len(chunk))
                return
            yield RecordView(bytes(chunk), self.catalog)
            position += length
            index += 1

    def samples(self) -> List[RecordView]:
        count = self._count_samples()
        if count <= 0:
            return []
        length = self.header.record_length
        expected = count * length
        data = self.source.read_at(self.header.sample_byte_offset, expected)
        if len(data) < expected:
            raise ShortRead(self.header.sample_byte_offset, expected, len(data))
        view = memoryview(bytes(data))
        return [RecordView(view[i * length:(i + 1) * length], self.catalog) for i in range(count)]

    def sample_at(self, index: int) -> RecordView:
        count = self.sample_count()
        if not 0 <= index < count:
            if count == 0:
                raise IndexOutOfRange(f"Sample index {index} out of range: recording has no samples")
            raise IndexOutOfRange(f"Sample index {index} out of range: valid range 0..{count - 1}")
        length = self.header.record_length
        offset = self.header.sample_byte_offset + index * length
        chunk = self.source.read_at(offset, length)
        if len(chunk) != length:
            raise ShortRead(offset, length, len(chunk))
        return RecordView(bytes(chunk), self.catalog)
