"""IBT (iRacing telemetry) file reader.

Format notes (from iRacing SDK):
- Telemetry header is 112 bytes (28 int32s).
- Disk header is 32 bytes (int64 + 2x float64 + 2x int32).
- Variable headers are 144 bytes each.
- The session info block is NUL-padded YAML-ish text.
- Samples start at the first var buffer offset, one ``buf_len`` record each.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import struct
from typing import BinaryIO, List, Optional, Tuple

from .catalog import VarType, VariableDescriptor
from .config import NormalizerConfig
from .recording import Recording
from .samples import FileSource, RecordHeader

logger = logging.getLogger(__name__)

TELEMETRY_HEADER_SIZE = 112
DISK_HEADER_SIZE = 32
VAR_HEADER_SIZE = 144


@dataclass(frozen=True)
class VarBuf:
    tick_count: int
    buf_offset: int
    pad1: int
    pad2: int


@dataclass(frozen=True)
class TelemetryHeader:
    version: int
    status: int
    tick_rate: int
    session_info_update: int
    session_info_len: int
    session_info_offset: int
    num_vars: int
    var_header_offset: int
    num_buf: int
    buf_len: int
    pad1: int
    pad2: int
    var_bufs: Tuple[VarBuf, VarBuf, VarBuf, VarBuf]

    @property
    def record_header(self) -> RecordHeader:
        return RecordHeader(sample_byte_offset=self.var_bufs[0].buf_offset, record_length=self.buf_len)


@dataclass(frozen=True)
class DiskHeader:
    start_time: int
    session_start_time: float
    session_end_time: float
    session_lap_count: int
    record_count: int


class IBTReader:
    """Opens an ``.ibt`` file and builds a ``Recording`` over it.

    The reader owns the file handle; once it is closed the recording raises
    ``ClosedSource`` on any sample access.
    """

    def __init__(self, path: str, config: Optional[NormalizerConfig] = None) -> None:
        self.path = path
        self.config = config
        self.header: Optional[TelemetryHeader] = None
        self.disk_header: Optional[DiskHeader] = None
        self.recording: Optional[Recording] = None
        self._file: Optional[BinaryIO] = None

    def open(self) -> Recording:
        if self.recording is not None:
            return self.recording
        f = open(self.path, "rb")
        try:
            self.header = read_telemetry_header(f)
            self.disk_header = read_disk_header(f)
            descriptors = read_var_headers(f, self.header)
            session_info = read_session_info(f, self.header)
            recording = Recording.from_source(
                self.header.record_header,
                descriptors,
                session_info,
                FileSource(f),
                config=self.config,
            )
        except BaseException:
            f.close()
            raise
        self._file = f
        self.recording = recording
        count = recording.sample_count()
        if count != self.disk_header.record_count:
            logger.debug(
                "%s: disk header reports %d records, sample region holds %d",
                self.path, self.disk_header.record_count, count,
            )
        return recording

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> Recording:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()


def read_telemetry_header(f: BinaryIO) -> TelemetryHeader:
    f.seek(0)
    raw = f.read(TELEMETRY_HEADER_SIZE)
    if len(raw) != TELEMETRY_HEADER_SIZE:
        raise ValueError("File too small to contain telemetry header")
    ints = struct.unpack("<28i", raw)
    (version, status, tick_rate, session_info_update, session_info_len,
     session_info_offset, num_vars, var_header_offset, num_buf, buf_len,
     pad1, pad2) = ints[:12]
    var_bufs = []
    idx = 12
    for _ in range(4):
        tick_count, buf_offset, pad1b, pad2b = ints[idx:idx+4]
        var_bufs.append(VarBuf(tick_count, buf_offset, pad1b, pad2b))
        idx += 4
    return TelemetryHeader(
        version=version,
        status=status,
        tick_rate=tick_rate,
        session_info_update=session_info_update,
        session_info_len=session_info_len,
        session_info_offset=session_info_offset,
        num_vars=num_vars,
        var_header_offset=var_header_offset,
        num_buf=num_buf,
        buf_len=buf_len,
        pad1=pad1,
        pad2=pad2,
        var_bufs=tuple(var_bufs),
    )


def read_disk_header(f: BinaryIO) -> DiskHeader:
    f.seek(TELEMETRY_HEADER_SIZE)
    raw = f.read(DISK_HEADER_SIZE)
    if len(raw) != DISK_HEADER_SIZE:
        raise ValueError("File too small to contain disk header")
    start_time, session_start_time, session_end_time, session_lap_count, record_count = struct.unpack("<qddii", raw)
    return DiskHeader(
        start_time=start_time,
        session_start_time=session_start_time,
        session_end_time=session_end_time,
        session_lap_count=session_lap_count,
        record_count=record_count,
    )


def read_var_headers(f: BinaryIO, header: TelemetryHeader) -> List[VariableDescriptor]:
    f.seek(header.var_header_offset)
    descriptors = []
    for _ in range(header.num_vars):
        raw = f.read(VAR_HEADER_SIZE)
        if len(raw) != VAR_HEADER_SIZE:
            raise ValueError("Unexpected end of file while reading variable headers")
        var_type, offset, count, count_as_time = struct.unpack("<4i", raw[:16])
        name = raw[16:48].split(b"\x00", 1)[0].decode("ascii", "ignore")
        desc = raw[48:112].split(b"\x00", 1)[0].decode("ascii", "ignore")
        unit = raw[112:144].split(b"\x00", 1)[0].decode("ascii", "ignore")
        try:
            var_type = VarType(var_type)
        except ValueError as exc:
            raise ValueError(f"Unknown var type: {var_type} for {name}") from exc
        descriptors.append(VariableDescriptor(
            name=name,
            var_type=var_type,
            offset=offset,
            count=count,
            description=desc,
            unit=unit,
            count_as_time=bool(count_as_time & 0xFF),
        ))
    return descriptors


def read_session_info(f: BinaryIO, header: TelemetryHeader) -> str:
    f.seek(header.session_info_offset)
    raw = f.read(header.session_info_len)
    raw = raw.rstrip(b"\x00")
    # The sim writes cp1252-ish text; latin-1 keeps every byte.
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")
