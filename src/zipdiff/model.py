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
The read-only result of parsing a ZIP archive.

The records mirror the on-disk layout: every field of the fixed part of a
header is kept as it was stored, including fields that are overridden by
a Zip64 extra field. The effective values are available as properties.
Records refer to the compressed data by offset and length in the buffer
the archive was parsed from, the data itself is not copied.
'''

import datetime

from dataclasses import dataclass, field
from typing import Optional

from .extra_fields import Zip64ExtraField, ZIP64_SENTINEL

FLAG_ENCRYPTED = 0x0001
FLAG_DATA_DESCRIPTOR = 0x0008
FLAG_UTF8 = 0x0800

ZIP64_COUNT_SENTINEL = 0xffff


def dos_datetime(dos_date, dos_time):
    '''Decode an MS-DOS date and time, None if they are not valid'''
    try:
        return datetime.datetime(((dos_date >> 9) & 0x7f) + 1980,
                                 (dos_date >> 5) & 0x0f, dos_date & 0x1f,
                                 (dos_time >> 11) & 0x1f, (dos_time >> 5) & 0x3f,
                                 (dos_time & 0x1f) * 2)
    except ValueError:
        return None


def _zip64_field(extra_fields):
    for extra in extra_fields:
        if isinstance(extra, Zip64ExtraField):
            return extra
    return None


@dataclass(frozen=True)
class EndOfCentralDirectory:
    signature: bytes
    disk_number: int
    central_dir_start_disk: int
    disk_central_dir_count: int
    central_dir_count: int
    central_dir_size: int
    central_dir_offset: int
    comment_length: int
    comment: bytes
    offset: int
    size: int

    @property
    def needs_zip64(self):
        return ZIP64_COUNT_SENTINEL in [self.disk_number, self.central_dir_start_disk,
                                        self.disk_central_dir_count, self.central_dir_count] \
            or ZIP64_SENTINEL in [self.central_dir_size, self.central_dir_offset]


@dataclass(frozen=True)
class Zip64EndOfCentralDirectory:
    signature: bytes
    record_size: int
    version_made_by: int
    version_needed: int
    disk_number: int
    central_dir_start_disk: int
    disk_central_dir_count: int
    central_dir_count: int
    central_dir_size: int
    central_dir_offset: int
    extensible_data: bytes
    locator_offset: int
    offset: int
    size: int


@dataclass(frozen=True)
class DataDescriptor:
    signature: Optional[bytes]
    crc32: int
    compressed_size: int
    uncompressed_size: int
    offset: int
    size: int


class _HeaderMixin:
    '''Properties shared by local file headers and central directory headers'''

    @property
    def name(self):
        '''The file name as text. ZIP file names are CP437, unless the
        language encoding flag (bit 11) is set.'''
        if self.flags & FLAG_UTF8:
            return self.file_name.decode('utf-8', errors='replace')
        return self.file_name.decode('cp437')

    @property
    def is_encrypted(self):
        return bool(self.flags & FLAG_ENCRYPTED)

    @property
    def has_data_descriptor(self):
        return bool(self.flags & FLAG_DATA_DESCRIPTOR)

    @property
    def last_modified(self):
        return dos_datetime(self.last_mod_date, self.last_mod_time)

    @property
    def zip64(self):
        return _zip64_field(self.extra_fields)


@dataclass(frozen=True)
class LocalFileHeader(_HeaderMixin):
    signature: bytes
    version_needed: int
    flags: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    file_name_length: int
    extra_field_length: int
    file_name: bytes
    extra_fields: tuple
    data_offset: int
    data_length: int
    offset: int
    size: int
    data_descriptor: Optional[DataDescriptor] = None

    def _resolved(self):
        if self.zip64 is None:
            return (self.uncompressed_size, self.compressed_size)
        return self.zip64.resolve(self.uncompressed_size, self.compressed_size)[:2]

    @property
    def effective_uncompressed_size(self):
        return self._resolved()[0]

    @property
    def effective_compressed_size(self):
        return self._resolved()[1]


@dataclass(frozen=True)
class CentralDirectoryHeader(_HeaderMixin):
    signature: bytes
    version_made_by: int
    version_needed: int
    flags: int
    compression_method: int
    last_mod_time: int
    last_mod_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    file_name_length: int
    extra_field_length: int
    file_comment_length: int
    disk_number_start: int
    internal_file_attributes: bytes
    external_file_attributes: bytes
    local_header_offset: int
    file_name: bytes
    extra_fields: tuple
    file_comment: bytes
    offset: int
    size: int
    local_file_header: Optional[LocalFileHeader] = None

    def _resolved(self):
        if self.zip64 is None:
            return (self.uncompressed_size, self.compressed_size,
                    self.local_header_offset, self.disk_number_start)
        return self.zip64.resolve(self.uncompressed_size, self.compressed_size,
                                  self.local_header_offset, self.disk_number_start)

    @property
    def effective_uncompressed_size(self):
        return self._resolved()[0]

    @property
    def effective_compressed_size(self):
        return self._resolved()[1]

    @property
    def effective_local_header_offset(self):
        return self._resolved()[2]

    @property
    def effective_disk_number_start(self):
        return self._resolved()[3]


@dataclass(frozen=True)
class HeaderMismatch:
    '''A field that has a different value in the central directory
    header than in the local file header of the same entry.'''
    name: str
    field: str
    central_directory_value: object
    local_file_header_value: object


# fields that are stored in both the local file header and the
# central directory header
SHARED_HEADER_FIELDS = ['version_needed', 'flags', 'compression_method',
                        'last_mod_time', 'last_mod_date', 'crc32',
                        'compressed_size', 'uncompressed_size',
                        'file_name_length', 'file_name']

# fields that are allowed to be zero in the local file header
# if a data descriptor is used (APPNOTE section 4.4.4)
DATA_DESCRIPTOR_FIELDS = ['crc32', 'compressed_size', 'uncompressed_size']


@dataclass(frozen=True)
class ArchiveModel:
    end_of_central_directory: EndOfCentralDirectory
    entries: tuple
    zip64_end_of_central_directory: Optional[Zip64EndOfCentralDirectory] = None
    buffer: bytes = field(default=b'', repr=False, compare=False)

    @property
    def central_dir_count(self):
        if self.zip64_end_of_central_directory is not None:
            return self.zip64_end_of_central_directory.central_dir_count
        return self.end_of_central_directory.central_dir_count

    @property
    def central_dir_size(self):
        if self.zip64_end_of_central_directory is not None:
            return self.zip64_end_of_central_directory.central_dir_size
        return self.end_of_central_directory.central_dir_size

    @property
    def central_dir_offset(self):
        if self.zip64_end_of_central_directory is not None:
            return self.zip64_end_of_central_directory.central_dir_offset
        return self.end_of_central_directory.central_dir_offset

    @property
    def names(self):
        return [entry.name for entry in self.entries]

    def payload(self, entry):
        '''Return the compressed data of an entry as a memoryview'''
        local_file_header = entry.local_file_header
        start = local_file_header.data_offset
        return memoryview(self.buffer)[start:start + local_file_header.data_length]

    def local_header_mismatches(self):
        '''Compare every central directory header with its local file
        header and return the fields that differ.'''
        mismatches = []
        for entry in self.entries:
            local_file_header = entry.local_file_header
            for field_name in SHARED_HEADER_FIELDS:
                if field_name in DATA_DESCRIPTOR_FIELDS and local_file_header.has_data_descriptor:
                    continue
                central_value = getattr(entry, field_name)
                local_value = getattr(local_file_header, field_name)
                if central_value != local_value:
                    mismatches.append(HeaderMismatch(entry.name, field_name,
                                                     central_value, local_value))
        return mismatches
