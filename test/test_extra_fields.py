import struct

import pytest

from util import *

from zipdiff import extra_fields
from zipdiff.extra_fields import decode, decode_extra_fields, register, \
    ExtendedTimestampExtraField, GrowthHintExtraField, InfoZipUnixExtraField, \
    NtfsExtraField, UnicodePathExtraField, UnknownExtraField, Zip64ExtraField, \
    ZipAlignExtraField, EXTRA_FIELD_DECODERS, filetime_to_datetime
from zipdiff.ZipParserException import ExtraFieldLengthMismatch, MalformedExtraField, \
    TruncatedRecord, UnsupportedExtraField

# 2024-01-01 00:00:00 UTC as FILETIME
FILETIME_2024 = 133485408000000000

NTFS_PAYLOAD = b'\x00' * 4 + struct.pack('<HH', 1, 24) + \
    struct.pack('<QQQ', FILETIME_2024, FILETIME_2024 + 10, FILETIME_2024 + 20)


def known_extra_fields():
    return [
        extra_field(0x0001, struct.pack('<QQ', 5000000000, 4000000000)),
        extra_field(0x0001, struct.pack('<QQQL', 1, 2, 3, 4)),
        extra_field(0x000a, NTFS_PAYLOAD),
        extra_field(0x5455, struct.pack('<BLL', 3, 1700000000, 1700000100)),
        extra_field(0x7075, struct.pack('<BL', 1, 0x12345678) + 'blåbær.txt'.encode()),
        extra_field(0x7875, struct.pack('<BBLBL', 1, 4, 1000, 4, 100)),
        extra_field(0xa220, b'\x28\xa0\x00\x00' + b'\x00' * 20),
        extra_field(0xd935, struct.pack('<H', 4) + b'\x00\x00'),
        extra_field(0xcafe, b''),
        extra_field(0x9901, b'AE\x01\x00\x03\x08\x00'),
    ]


@pytest.mark.parametrize('raw_record', known_extra_fields(),
                         ids=lambda r: f'0x{int.from_bytes(r[:2], "little"):04x}-{len(r)}')
def test_decoded_extra_field_encodes_to_original_bytes(raw_record):
    header_id = int.from_bytes(raw_record[:2], byteorder='little')
    record = decode(header_id, raw_record)
    assert record.header_id == header_id
    assert record.data_size == len(raw_record) - 4
    assert record.encode() == raw_record


def test_zip64_extra_field_values():
    record = decode(0x0001, extra_field(0x0001, struct.pack('<QQQL', 1, 2, 3, 4)))
    assert isinstance(record, Zip64ExtraField)
    assert record.values == (1, 2, 3)
    assert record.disk_number == 4


def test_zip64_resolve_only_replaces_sentinels():
    record = Zip64ExtraField(0x0001, 8, (6000000000,))
    assert record.resolve(0xffffffff, 1234, 0, 0) == (6000000000, 1234, 0, 0)
    assert record.resolve(10, 0xffffffff) == (10, 6000000000, None, None)


def test_zip64_resolve_in_order():
    record = Zip64ExtraField(0x0001, 28, (1, 2, 3), 7)
    assert record.resolve(0xffffffff, 0xffffffff, 0xffffffff, 0xffff) == (1, 2, 3, 7)


def test_zip64_resolve_missing_value():
    record = Zip64ExtraField(0x0001, 8, (6000000000,))
    with pytest.raises(MalformedExtraField, match='compressed size'):
        record.resolve(0xffffffff, 0xffffffff)


def test_zip64_wrong_size():
    with pytest.raises(MalformedExtraField, match='invalid size for Zip64'):
        decode(0x0001, extra_field(0x0001, b'\x00' * 6))


def test_ntfs_timestamps():
    record = decode(0x000a, extra_field(0x000a, NTFS_PAYLOAD))
    assert isinstance(record, NtfsExtraField)
    assert record.reserved == b'\x00' * 4
    assert len(record.attributes) == 1
    assert record.attributes[0].tag == 1
    assert record.timestamps == (FILETIME_2024, FILETIME_2024 + 10, FILETIME_2024 + 20)
    assert record.modification_time.year == 2024
    assert record.modification_time == filetime_to_datetime(FILETIME_2024)


def test_ntfs_unknown_attribute_is_kept():
    payload = b'\x00' * 4 + struct.pack('<HH', 2, 3) + b'abc'
    record = decode(0x000a, extra_field(0x000a, payload))
    assert record.attributes[0].tag == 2
    assert record.attributes[0].data == b'abc'
    assert record.timestamps is None


def test_ntfs_wrong_timestamp_size():
    payload = b'\x00' * 4 + struct.pack('<HH', 1, 8) + b'\x00' * 8
    with pytest.raises(MalformedExtraField, match='NTFS timestamp'):
        decode(0x000a, extra_field(0x000a, payload))


def test_ntfs_attribute_larger_than_payload():
    payload = b'\x00' * 4 + struct.pack('<HH', 2, 30) + b'\x00' * 8
    with pytest.raises(MalformedExtraField):
        decode(0x000a, extra_field(0x000a, payload))


def test_extended_timestamp_central_directory_version():
    # flags announce modification and access time, but only the
    # modification time is stored (as done in the central directory)
    record = decode(0x5455, extra_field(0x5455, struct.pack('<BL', 3, 1700000000)))
    assert isinstance(record, ExtendedTimestampExtraField)
    assert record.modification_time == 1700000000
    assert record.access_time is None


def test_extended_timestamp_missing_times_are_none():
    raw_record = extra_field(0x5455, struct.pack('<BL', 7, 1700000000))
    record = decode(0x5455, raw_record)
    assert record.flags == 7
    assert (record.access_time, record.creation_time) == (None, None)
    assert record.encode() == raw_record


def test_unicode_path():
    record = decode(0x7075, extra_field(0x7075, struct.pack('<BL', 1, 0) + 'ñame'.encode()))
    assert isinstance(record, UnicodePathExtraField)
    assert record.name == 'ñame'


def test_infozip_unix_ids():
    record = decode(0x7875, extra_field(0x7875, struct.pack('<BBHBH', 1, 2, 501, 2, 20)))
    assert isinstance(record, InfoZipUnixExtraField)
    assert (record.uid, record.gid) == (501, 20)


def test_growth_hint():
    record = decode(0xa220, extra_field(0xa220, b'\x28\xa0\x00\x00' + b'\x00' * 4))
    assert isinstance(record, GrowthHintExtraField)
    assert record.signature == b'\x28\xa0'
    assert record.padding_value == b'\x00\x00'
    assert record.padding == b'\x00' * 4


def test_growth_hint_too_short():
    with pytest.raises(MalformedExtraField):
        decode(0xa220, extra_field(0xa220, b'\x28\xa0'))


def test_zip_align():
    record = decode(0xd935, extra_field(0xd935, struct.pack('<H', 4) + b'\x00' * 3))
    assert isinstance(record, ZipAlignExtraField)
    assert record.alignment == 4
    assert len(record.padding) == 3


def test_decoder_checks_embedded_header_id():
    raw_record = extra_field(0xa220, b'\x28\xa0\x00\x00')
    with pytest.raises(MalformedExtraField, match='does not match') as e:
        EXTRA_FIELD_DECODERS[0x0001](raw_record, offset=100)
    assert e.value.offset == 100
    assert e.value.expected == 0x0001
    assert e.value.actual == 0xa220


def test_decoder_needs_declared_payload():
    raw_record = extra_field(0x0001, struct.pack('<QQ', 1, 2))[:-4]
    with pytest.raises(TruncatedRecord):
        decode(0x0001, raw_record)


def test_unknown_extra_field_lenient():
    raw_record = extra_field(0x4242, b'vendor data')
    record = decode(0x4242, raw_record)
    assert isinstance(record, UnknownExtraField)
    assert record.data == b'vendor data'
    assert record.encode() == raw_record


def test_unknown_extra_field_strict():
    with pytest.raises(UnsupportedExtraField, match='0x4242'):
        decode(0x4242, extra_field(0x4242, b'vendor data'), strict=True)


def test_register_new_decoder():
    try:
        @register(0x4243)
        def decode_test(header_id, data_size, payload):
            return UnknownExtraField(header_id, data_size, payload.read_bytes(2))

        assert decode(0x4243, extra_field(0x4243, b'ab')).data == b'ab'
        with pytest.raises(MalformedExtraField, match='not fully consumed'):
            decode(0x4243, extra_field(0x4243, b'abc'))
    finally:
        del EXTRA_FIELD_DECODERS[0x4243]


def test_decode_extra_fields_area():
    area = extra_field(0x5455, struct.pack('<BL', 1, 1700000000)) + \
        extra_field(0x7875, struct.pack('<BBLBL', 1, 4, 1000, 4, 1000)) + \
        extra_field(0x4242, b'')
    records = decode_extra_fields(area)
    assert [r.header_id for r in records] == [0x5455, 0x7875, 0x4242]
    assert b''.join(r.encode() for r in records) == area


def test_decode_empty_extra_field_area():
    assert decode_extra_fields(b'') == ()


def test_decode_extra_fields_area_too_short_for_record():
    area = extra_field(0x5455, struct.pack('<BL', 1, 1700000000))
    with pytest.raises(ExtraFieldLengthMismatch) as e:
        decode_extra_fields(area[:-2], base_offset=1000)
    assert e.value.offset == 1000


def test_decode_extra_fields_area_with_padding():
    # zipalign style padding that is not a complete sub-record
    area = extra_field(0x5455, struct.pack('<BL', 1, 1700000000)) + b'\x00\x00'
    with pytest.raises(ExtraFieldLengthMismatch) as e:
        decode_extra_fields(area, base_offset=10)
    assert e.value.offset == 10 + 9


def test_decode_extra_fields_strict_area():
    area = extra_field(0x5455, struct.pack('<BL', 1, 1700000000)) + extra_field(0x4242, b'x')
    with pytest.raises(UnsupportedExtraField) as e:
        decode_extra_fields(area, strict=True, base_offset=50)
    assert e.value.offset == 59


def test_all_registered_decoders_are_callable():
    for header_id in [extra_fields.ZIP64, extra_fields.NTFS, extra_fields.EXTENDED_TIMESTAMP,
                      extra_fields.UNICODE_PATH, extra_fields.INFOZIP_UNIX,
                      extra_fields.GROWTH_HINT, extra_fields.ZIP_ALIGN]:
        assert callable(EXTRA_FIELD_DECODERS[header_id])
