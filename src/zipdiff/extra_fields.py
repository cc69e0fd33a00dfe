# zipdiff
#
# This file is part of zipdiff.
#
# zipdiff is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License, version 3,
# as published by the Free Software Foundation.
#
# zipdiff is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public
# License, version 3, along with zipdiff.  If not, see
# <http://www.gnu.org/licenses/>
#
# Licensed under the terms of the GNU Affero General Public License
# version 3
# SPDX-License-Identifier: AGPL-3.0-only

'''
Decoders for the extra fields that can be attached to central directory
headers and local file headers.

An extra field area is a sequence of sub-records, each of which starts
with a 16 bit header id and a 16 bit payload size (APPNOTE section 4.5).
The interpretation of the payload depends on the header id. Known ids are
decoded into typed records, unknown ids are kept as raw data in an
UnknownExtraField so that one vendor specific extension does not stop the
analysis of an otherwise valid archive. Callers that want to reject such
fields pass strict=True.

New decoders can be added with the register() decorator:

    @register(0x4341)
    def decode_acorn(header_id, data_size, payload):
        ...

The decorated function receives the payload as a KaitaiStream and returns
a record. The decorator takes care of the sub-record header (including a
check that the embedded header id is the one the decoder was registered
for) and of checking that exactly the declared payload was consumed.
'''

import datetime
import functools
import io
import struct

from dataclasses import dataclass
from typing import Optional

from kaitaistruct import KaitaiStream

from .ZipParserException import check_condition, ExtraFieldLengthMismatch, \
    MalformedExtraField, TruncatedRecord, UnsupportedExtraField

# value that signals that the real value is in the Zip64 extra field
ZIP64_SENTINEL = 0xffffffff
ZIP64_DISK_SENTINEL = 0xffff

EXTRA_FIELD_HEADER_SIZE = 4

ZIP64 = 0x0001
NTFS = 0x000a
EXTENDED_TIMESTAMP = 0x5455
UNICODE_PATH = 0x7075
INFOZIP_UNIX = 0x7875
GROWTH_HINT = 0xa220
ZIP_ALIGN = 0xd935

# NTFS attribute 1 holds three FILETIME values
NTFS_TIMESTAMP_TAG = 1
NTFS_TIMESTAMP_SIZE = 24

FILETIME_EPOCH = datetime.datetime(1601, 1, 1, tzinfo=datetime.timezone.utc)


def filetime_to_datetime(filetime):
    '''Convert a Windows FILETIME (100 ns intervals since 1601-01-01 UTC)'''
    return FILETIME_EPOCH + datetime.timedelta(microseconds=filetime // 10)


@dataclass(frozen=True)
class ExtraField:
    header_id: int
    data_size: int

    def encode_payload(self):
        raise NotImplementedError

    def encode(self):
        '''Return the sub-record, header included, as it was stored.'''
        payload = self.encode_payload()
        return struct.pack('<HH', self.header_id, len(payload)) + payload


@dataclass(frozen=True)
class UnknownExtraField(ExtraField):
    data: bytes

    def encode_payload(self):
        return self.data


@dataclass(frozen=True)
class Zip64ExtraField(ExtraField):
    '''Zip64 extended information, APPNOTE section 4.5.3.

    The values are only present for the fields of the fixed header that
    are set to 0xffffffff, in the order: uncompressed size, compressed
    size, local header offset. The disk number (4 bytes) follows if the
    disk number in the fixed header is 0xffff. Which value belongs to which
    field can only be determined with the fixed header, see resolve().
    '''
    values: tuple
    disk_number: Optional[int] = None

    def encode_payload(self):
        payload = b''.join(struct.pack('<Q', v) for v in self.values)
        if self.disk_number is not None:
            payload += struct.pack('<L', self.disk_number)
        return payload

    def resolve(self, uncompressed_size, compressed_size,
                local_header_offset=None, disk_number_start=None):
        '''Return the effective (uncompressed size, compressed size,
        local header offset, disk number start), replacing every field
        that carries the sentinel with the next Zip64 value. Pass None
        for fields the header does not have (local file headers).
        '''
        values = list(self.values)
        resolved = []
        for field_name, value in [('uncompressed size', uncompressed_size),
                                  ('compressed size', compressed_size),
                                  ('local header offset', local_header_offset)]:
            if value == ZIP64_SENTINEL:
                check_condition(values != [], MalformedExtraField,
                                f'no Zip64 value for {field_name}')
                value = values.pop(0)
            resolved.append(value)

        if disk_number_start == ZIP64_DISK_SENTINEL:
            check_condition(self.disk_number is not None, MalformedExtraField,
                            'no Zip64 value for disk number start')
            disk_number_start = self.disk_number
        resolved.append(disk_number_start)
        return tuple(resolved)


@dataclass(frozen=True)
class NtfsAttribute:
    tag: int
    size: int
    data: bytes


@dataclass(frozen=True)
class NtfsExtraField(ExtraField):
    reserved: bytes
    attributes: tuple

    def encode_payload(self):
        payload = self.reserved
        for attribute in self.attributes:
            payload += struct.pack('<HH', attribute.tag, len(attribute.data)) + attribute.data
        return payload

    @property
    def timestamps(self):
        '''(mtime, atime, ctime) as FILETIME values, or None'''
        for attribute in self.attributes:
            if attribute.tag == NTFS_TIMESTAMP_TAG:
                return struct.unpack('<QQQ', attribute.data)
        return None

    @property
    def modification_time(self):
        if self.timestamps is None:
            return None
        return filetime_to_datetime(self.timestamps[0])


@dataclass(frozen=True)
class ExtendedTimestampExtraField(ExtraField):
    '''Extended timestamp (0x5455), times in seconds since the Unix epoch.

    The flags say which times are present in the local file header. The
    central directory version only carries the modification time, while
    keeping the flags of the local version. The decoder does not know in
    which header the field was found, so a time that is announced in the
    flags but missing from the payload is None, in both headers. A missing
    time in a local file header is therefore not an error, it shows up as
    a None value (and as a difference when comparing).
    '''
    flags: int
    modification_time: Optional[int] = None
    access_time: Optional[int] = None
    creation_time: Optional[int] = None

    def encode_payload(self):
        payload = struct.pack('<B', self.flags)
        for value in [self.modification_time, self.access_time, self.creation_time]:
            if value is not None:
                payload += struct.pack('<L', value)
        return payload


@dataclass(frozen=True)
class UnicodePathExtraField(ExtraField):
    version: int
    name_crc32: int
    unicode_name: bytes

    def encode_payload(self):
        return struct.pack('<BL', self.version, self.name_crc32) + self.unicode_name

    @property
    def name(self):
        return self.unicode_name.decode('utf-8', errors='replace')


@dataclass(frozen=True)
class InfoZipUnixExtraField(ExtraField):
    version: int
    uid_size: int
    uid: int
    gid_size: int
    gid: int

    def encode_payload(self):
        return struct.pack('<BB', self.version, self.uid_size) \
            + self.uid.to_bytes(self.uid_size, byteorder='little') \
            + struct.pack('<B', self.gid_size) \
            + self.gid.to_bytes(self.gid_size, byteorder='little')


@dataclass(frozen=True)
class GrowthHintExtraField(ExtraField):
    '''Microsoft Open Packaging growth hint, used by Office documents'''
    signature: bytes
    padding_value: bytes
    padding: bytes

    def encode_payload(self):
        return self.signature + self.padding_value + self.padding


@dataclass(frozen=True)
class ZipAlignExtraField(ExtraField):
    '''Android zipalign, only found in local file headers'''
    alignment: int
    padding: bytes

    def encode_payload(self):
        return struct.pack('<H', self.alignment) + self.padding


EXTRA_FIELD_DECODERS = {}


def _open_record(header_id, raw_record, offset):
    '''Check the sub-record header and return (data_size, payload stream)'''
    check_condition(len(raw_record) >= EXTRA_FIELD_HEADER_SIZE, TruncatedRecord,
                    'not enough data for extra field header', offset=offset,
                    expected=EXTRA_FIELD_HEADER_SIZE, actual=len(raw_record))
    record = KaitaiStream(io.BytesIO(raw_record))
    embedded_id = record.read_u2le()
    check_condition(embedded_id == header_id, MalformedExtraField,
                    'extra field header id does not match decoder', offset=offset,
                    expected=header_id, actual=embedded_id)
    data_size = record.read_u2le()
    available = len(raw_record) - EXTRA_FIELD_HEADER_SIZE
    check_condition(data_size <= available, TruncatedRecord,
                    f'not enough data for payload of extra field 0x{header_id:04x}',
                    offset=offset + EXTRA_FIELD_HEADER_SIZE, expected=data_size,
                    actual=available)
    return data_size, KaitaiStream(io.BytesIO(record.read_bytes(data_size)))


def register(header_id):
    '''Register a payload parser as the decoder for header_id.'''
    def register_decoder(parse_payload):
        @functools.wraps(parse_payload)
        def decoder(raw_record, offset=0):
            data_size, payload = _open_record(header_id, raw_record, offset)
            try:
                record = parse_payload(header_id, data_size, payload)
            except EOFError as e:
                raise MalformedExtraField(f'payload of extra field 0x{header_id:04x} is too short',
                                          offset=offset, expected=None, actual=data_size) from e
            check_condition(payload.is_eof(), MalformedExtraField,
                            f'payload of extra field 0x{header_id:04x} not fully consumed',
                            offset=offset, expected=payload.pos(), actual=data_size)
            return record
        EXTRA_FIELD_DECODERS[header_id] = decoder
        return decoder
    return register_decoder


@register(ZIP64)
def decode_zip64(header_id, data_size, payload):
    number_of_values, remainder = divmod(data_size, 8)
    check_condition(remainder in [0, 4] and number_of_values <= 3, MalformedExtraField,
                    'invalid size for Zip64 extra field', actual=data_size)
    values = tuple(payload.read_u8le() for _ in range(number_of_values))
    disk_number = None
    if remainder == 4:
        disk_number = payload.read_u4le()
    return Zip64ExtraField(header_id, data_size, values, disk_number)


@register(NTFS)
def decode_ntfs(header_id, data_size, payload):
    reserved = payload.read_bytes(4)
    attributes = []
    while not payload.is_eof():
        tag = payload.read_u2le()
        size = payload.read_u2le()
        if tag == NTFS_TIMESTAMP_TAG:
            check_condition(size == NTFS_TIMESTAMP_SIZE, MalformedExtraField,
                            'wrong size for NTFS timestamp attribute',
                            expected=NTFS_TIMESTAMP_SIZE, actual=size)
        attributes.append(NtfsAttribute(tag, size, payload.read_bytes(size)))
    return NtfsExtraField(header_id, data_size, reserved, tuple(attributes))


@register(EXTENDED_TIMESTAMP)
def decode_extended_timestamp(header_id, data_size, payload):
    flags = payload.read_u1()

    # the central directory version only carries the modification
    # time, even if the flags say otherwise
    times = []
    for bit in [1, 2, 4]:
        if flags & bit and not payload.is_eof():
            times.append(payload.read_u4le())
        else:
            times.append(None)
    return ExtendedTimestampExtraField(header_id, data_size, flags, *times)


@register(UNICODE_PATH)
def decode_unicode_path(header_id, data_size, payload):
    version = payload.read_u1()
    name_crc32 = payload.read_u4le()
    return UnicodePathExtraField(header_id, data_size, version, name_crc32,
                                 payload.read_bytes_full())


@register(INFOZIP_UNIX)
def decode_infozip_unix(header_id, data_size, payload):
    version = payload.read_u1()
    uid_size = payload.read_u1()
    uid = int.from_bytes(payload.read_bytes(uid_size), byteorder='little')
    gid_size = payload.read_u1()
    gid = int.from_bytes(payload.read_bytes(gid_size), byteorder='little')
    return InfoZipUnixExtraField(header_id, data_size, version, uid_size, uid,
                                 gid_size, gid)


@register(GROWTH_HINT)
def decode_growth_hint(header_id, data_size, payload):
    signature = payload.read_bytes(2)
    padding_value = payload.read_bytes(2)
    return GrowthHintExtraField(header_id, data_size, signature, padding_value,
                                payload.read_bytes_full())


@register(ZIP_ALIGN)
def decode_zip_align(header_id, data_size, payload):
    alignment = payload.read_u2le()
    return ZipAlignExtraField(header_id, data_size, alignment,
                              payload.read_bytes_full())


def decode_unknown(raw_record, offset=0):
    check_condition(len(raw_record) >= EXTRA_FIELD_HEADER_SIZE, TruncatedRecord,
                    'not enough data for extra field header', offset=offset,
                    expected=EXTRA_FIELD_HEADER_SIZE, actual=len(raw_record))
    header_id = int.from_bytes(raw_record[:2], byteorder='little')
    data_size, payload = _open_record(header_id, raw_record, offset)
    return UnknownExtraField(header_id, data_size, payload.read_bytes_full())


def decode(header_id, raw_record, strict=False, offset=0):
    '''Decode a single extra field sub-record (including its 4 byte header).

    Unknown header ids give an UnknownExtraField, or an
    UnsupportedExtraField exception if strict is set.
    '''
    decoder = EXTRA_FIELD_DECODERS.get(header_id)
    if decoder is None:
        check_condition(not strict, UnsupportedExtraField,
                        f'no decoder registered for extra field 0x{header_id:04x}',
                        offset=offset)
        return decode_unknown(raw_record, offset)
    return decoder(raw_record, offset)


def decode_extra_fields(area, strict=False, base_offset=0):
    '''Split an extra field area into sub-records and decode them.
    The sub-records have to fill the area exactly.
    '''
    extra = KaitaiStream(io.BytesIO(area))
    area_size = len(area)
    records = []
    while not extra.is_eof():
        record_start = extra.pos()
        check_condition(area_size - record_start >= EXTRA_FIELD_HEADER_SIZE,
                        ExtraFieldLengthMismatch,
                        'extra field area ends inside a sub-record header',
                        offset=base_offset + record_start, expected=area_size,
                        actual=record_start + EXTRA_FIELD_HEADER_SIZE)
        header_id = extra.read_u2le()
        data_size = extra.read_u2le()
        record_end = record_start + EXTRA_FIELD_HEADER_SIZE + data_size
        check_condition(record_end <= area_size, ExtraFieldLengthMismatch,
                        'extra field sub-records do not fill the declared area',
                        offset=base_offset + record_start, expected=area_size,
                        actual=record_end)
        extra.seek(record_start)
        raw_record = extra.read_bytes(EXTRA_FIELD_HEADER_SIZE + data_size)
        records.append(decode(header_id, raw_record, strict, base_offset + record_start))
    return tuple(records)
