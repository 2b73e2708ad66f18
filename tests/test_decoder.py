from __future__ import annotations

import logging
import struct

import pytest

from ibt_telemetry.catalog import FieldCatalog, VarType, VariableDescriptor
from ibt_telemetry.decoder import PARSER_CACHE_SIZE, RecordView, _build_parser, decode_all, decode_field, decode_named
from ibt_telemetry.errors import OffsetOutOfRange

RECORD_LENGTH = 40

DESCRIPTORS = [
    VariableDescriptor("Speed", VarType.FLOAT32, offset=0, unit="m/s", description="GPS vehicle speed"),
    VariableDescriptor("Lap", VarType.INT32, offset=4, unit=""),
    VariableDescriptor("SessionTime", VarType.FLOAT64, offset=8, unit="s"),
    VariableDescriptor("IsOnTrack", VarType.BOOL, offset=16),
    VariableDescriptor("Gear", VarType.INT8, offset=17),
    VariableDescriptor("GearRaw", VarType.UINT8, offset=17),
    VariableDescriptor("SteerTorque", VarType.INT16, offset=18, unit="N*m"),
    VariableDescriptor("RPM", VarType.UINT16, offset=20, unit="revs/min"),
    VariableDescriptor("SessionFlags", VarType.UINT32, offset=22, unit="irsdk_Flags"),
    VariableDescriptor("TireTemp", VarType.FLOAT32, offset=26, count=2, unit="C"),
    VariableDescriptor("Tag", VarType.CHAR, offset=34, count=4),
]


def _record() -> bytes:
    buf = bytearray(RECORD_LENGTH)
    struct.pack_into("<f", buf, 0, 42.5)
    struct.pack_into("<i", buf, 4, -3)
    struct.pack_into("<d", buf, 8, 1234.125)
    buf[16] = 7
    buf[17] = 0xFF
    struct.pack_into("<h", buf, 18, -1200)
    struct.pack_into("<H", buf, 20, 65000)
    struct.pack_into("<I", buf, 22, 0x80000001)
    struct.pack_into("<2f", buf, 26, 80.5, 81.25)
    buf[34:38] = b"GT\x00X"
    return bytes(buf)


@pytest.fixture
def catalog() -> FieldCatalog:
    return FieldCatalog(DESCRIPTORS)


def test_decodes_every_primitive_little_endian(catalog: FieldCatalog) -> None:
    record = _record()
    values = {d.name: decode_field(record, d) for d in catalog.all()}

    assert values["Speed"] == 42.5
    assert values["Lap"] == -3
    assert values["SessionTime"] == 1234.125
    assert values["IsOnTrack"] is True
    assert values["SteerTorque"] == -1200
    assert values["RPM"] == 65000
    assert values["SessionFlags"] == 0x80000001
    assert values["TireTemp"] == [80.5, 81.25]
    assert values["Tag"] == "GT"


def test_signedness_follows_declared_type(catalog: FieldCatalog) -> None:
    record = _record()

    assert decode_field(record, catalog.lookup("Gear")) == -1
    assert decode_field(record, catalog.lookup("GearRaw")) == 255


def test_bool_is_false_only_for_zero_byte() -> None:
    descriptor = VariableDescriptor("IsOnTrack", VarType.BOOL, offset=0)

    assert decode_field(b"\x00", descriptor) is False
    assert decode_field(b"\x01", descriptor) is True
    assert decode_field(b"\x80", descriptor) is True


def test_offset_past_record_end_is_rejected() -> None:
    descriptor = VariableDescriptor("SessionTime", VarType.FLOAT64, offset=36)

    with pytest.raises(OffsetOutOfRange):
        decode_field(_record(), descriptor)


def test_decode_named_returns_field_details(catalog: FieldCatalog) -> None:
    field = decode_named(_record(), catalog, "speed")

    assert field is not None
    assert field.name == "Speed"
    assert field.unit == "m/s"
    assert field.description == "GPS vehicle speed"
    assert field.value == 42.5


def test_decode_named_unknown_name_is_none(catalog: FieldCatalog) -> None:
    assert decode_named(_record(), catalog, "Throttle") is None


def test_decode_named_propagates_offset_errors() -> None:
    catalog = FieldCatalog([VariableDescriptor("Broken", VarType.INT32, offset=100)])

    with pytest.raises(OffsetOutOfRange):
        decode_named(_record(), catalog, "Broken")


def test_decode_all_keys_match_catalog(catalog: FieldCatalog) -> None:
    values = decode_all(_record(), catalog)

    assert list(values) == catalog.names
    assert values["Speed"] == {"value": 42.5, "unit": "m/s"}
    assert values["TireTemp"]["value"] == [80.5, 81.25]


def test_decode_all_skips_out_of_range_fields(caplog: pytest.LogCaptureFixture) -> None:
    catalog = FieldCatalog([
        VariableDescriptor("Speed", VarType.FLOAT32, offset=0),
        VariableDescriptor("Broken", VarType.FLOAT64, offset=RECORD_LENGTH - 4),
        VariableDescriptor("Lap", VarType.INT32, offset=4),
    ])

    with caplog.at_level(logging.WARNING, logger="ibt_telemetry.decoder"):
        values = decode_all(_record(), catalog)

    assert list(values) == ["Speed", "Lap"]
    assert "Broken" in caplog.text


def test_record_view_over_memoryview_slice(catalog: FieldCatalog) -> None:
    data = b"\x00" * 5 + _record()
    view = RecordView(memoryview(data)[5:5 + RECORD_LENGTH], catalog)

    assert len(view) == RECORD_LENGTH
    assert view.raw == _record()
    assert view.field("LAP").value == -3
    assert view.value("RPM") == 65000
    assert view.all_fields()["Gear"]["value"] == -1
    with pytest.raises(KeyError):
        view.value("Throttle")


def test_parser_cache_is_bounded() -> None:
    for offset in range(PARSER_CACHE_SIZE + 10):
        decode_field(bytes(offset + 4), VariableDescriptor("Speed", VarType.FLOAT32, offset=offset))

    info = _build_parser.cache_info()
    assert info.maxsize == PARSER_CACHE_SIZE
    assert info.currsize <= PARSER_CACHE_SIZE
