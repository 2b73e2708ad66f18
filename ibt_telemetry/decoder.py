"""Typed decoding of fixed-size telemetry records."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import logging
import struct
from typing import Callable, Dict, Optional, Union

from .catalog import FieldCatalog, VarType, VariableDescriptor
from .errors import OffsetOutOfRange

logger = logging.getLogger(__name__)

Buffer = Union[bytes, bytearray, memoryview]
Parser = Callable[[Buffer], object]

# A recording carries a few hundred variables; this holds several at once.
PARSER_CACHE_SIZE = 2048


@dataclass(frozen=True)
class DecodedField:
    name: str
    description: str
    unit: str
    value: object


def decode_field(record: Buffer, descriptor: VariableDescriptor) -> object:
    """Decode one variable from ``record`` (little-endian).

    Arrays (``count > 1``) come back as lists, except ``CHAR`` arrays which
    are NUL-terminated ASCII strings.
    """
    if descriptor.end > len(record):
        raise OffsetOutOfRange(
            f"{descriptor.name} spans bytes {descriptor.offset}..{descriptor.end} "
            f"but the record is only {len(record)} bytes"
        )
    return _build_parser(descriptor)(record)


def decode_named(record: Buffer, catalog: FieldCatalog, name: str) -> Optional[DecodedField]:
    descriptor = catalog.lookup(name)
    if descriptor is None:
        return None
    return DecodedField(
        name=descriptor.name,
        description=descriptor.description,
        unit=descriptor.unit,
        value=decode_field(record, descriptor),
    )


def decode_all(record: Buffer, catalog: FieldCatalog) -> Dict[str, Dict[str, object]]:
    values: Dict[str, Dict[str, object]] = {}
    for descriptor in catalog.all():
        try:
            value = decode_field(record, descriptor)
        except OffsetOutOfRange as exc:
            logger.warning("Skipping %s: %s", descriptor.name, exc)
            continue
        values[descriptor.name] = {"value": value, "unit": descriptor.unit}
    return values


@lru_cache(maxsize=PARSER_CACHE_SIZE)
def _build_parser(descriptor: VariableDescriptor) -> Parser:
    var_type = descriptor.var_type
    offset = descriptor.offset
    count = descriptor.count

    if var_type is VarType.CHAR:
        end = descriptor.end

        def parse_chars(record: Buffer) -> str:
            raw = bytes(record[offset:end])
            return raw.split(b"\x00", 1)[0].decode("ascii", "ignore")
        return parse_chars

    if var_type in (
        VarType.BOOL,
        VarType.INT32,
        VarType.UINT32,
        VarType.FLOAT32,
        VarType.FLOAT64,
        VarType.INT16,
        VarType.UINT16,
        VarType.INT8,
        VarType.UINT8,
    ):
        fmt = var_type.struct_format
        parser = struct.Struct(f"<{count}{fmt}" if count > 1 else f"<{fmt}")

        def parse(record: Buffer) -> object:
            data = parser.unpack_from(record, offset)
            if count == 1:
                return data[0]
            return list(data)
        return parse

    raise ValueError(f"Unknown var type: {var_type} for {descriptor.name}")


class RecordView:
    """One sample record bound to the catalog that describes it."""

    __slots__ = ("_buffer", "_catalog")

    def __init__(self, buffer: Buffer, catalog: FieldCatalog) -> None:
        self._buffer = buffer
        self._catalog = catalog

    @property
    def raw(self) -> bytes:
        return bytes(self._buffer)

    @property
    def catalog(self) -> FieldCatalog:
        return self._catalog

    def decode(self, descriptor: VariableDescriptor) -> object:
        return decode_field(self._buffer, descriptor)

    def field(self, name: str) -> Optional[DecodedField]:
        return decode_named(self._buffer, self._catalog, name)

    def value(self, name: str) -> object:
        decoded = self.field(name)
        if decoded is None:
            raise KeyError(f"Unknown variable: {name}")
        return decoded.value

    def all_fields(self) -> Dict[str, Dict[str, object]]:
        return decode_all(self._buffer, self._catalog)

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return f"RecordView({len(self)} bytes)"
