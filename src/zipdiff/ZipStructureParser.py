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
Structural parser for ZIP archives.

ZIP specifications can be found at:

https://pkware.cachefly.net/webdocs/casestudies/APPNOTE.TXT

Unlike a regular ZIP reader this parser does not try to get the file
data out of the archive. It records every header exactly as it is
stored, so that differences between two archives (or between the local
file header and the central directory header of a single entry) can be
inspected.

The archive is parsed the way most ZIP readers do it: first the end of
central directory record is searched for at the end of the file, then the
central directory is parsed, and for every entry in the central directory
the local file header is parsed at the offset stored in the entry. All
reads are bounds checked. Any inconsistency in the structure is fatal and
results in an exception (see ZipParserException.py), a partial result is
never returned.
'''

import dataclasses
import io

from kaitaistruct import KaitaiStream

from .extra_fields import decode_extra_fields, ZIP64_SENTINEL
from .log import log
from .model import ArchiveModel, CentralDirectoryHeader, DataDescriptor, \
    EndOfCentralDirectory, LocalFileHeader, Zip64EndOfCentralDirectory, \
    FLAG_DATA_DESCRIPTOR
from .ZipParserException import check_condition, MalformedCentralDirectoryHeader, \
    MalformedLocalFileHeader, MalformedZip64EndOfCentralDirectory, \
    PayloadLengthMismatch, SignatureNotFound, TruncatedRecord

CENTRAL_DIRECTORY = b'PK\x01\x02'
DATA_DESCRIPTOR = b'PK\x07\x08'
END_OF_CENTRAL_DIRECTORY = b'PK\x05\x06'
LOCAL_FILE_HEADER = b'PK\x03\x04'
ZIP64_END_OF_CENTRAL_DIRECTORY = b'PK\x06\x06'
ZIP64_END_OF_CENTRAL_DIRECTORY_LOCATOR = b'PK\x06\x07'

SIGNATURE_SIZE = 4

# sizes of the fixed parts of the records
CENTRAL_DIRECTORY_HEADER_SIZE = 46
END_OF_CENTRAL_DIRECTORY_SIZE = 22
LOCAL_FILE_HEADER_SIZE = 30
ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE = 56
ZIP64_END_OF_CENTRAL_DIRECTORY_LOCATOR_SIZE = 20

# the Zip64 end of central directory stores the size of the record
# minus the signature and the size field itself (section 4.3.14.1)
ZIP64_END_OF_CENTRAL_DIRECTORY_LEADING_SIZE = 12

MAX_COMMENT_LENGTH = 65535

# the end of central directory record has to be in this many
# bytes at the end of the file, as the comment can be at most
# 65535 bytes long
EOCD_SEARCH_LIMIT = END_OF_CENTRAL_DIRECTORY_SIZE + MAX_COMMENT_LENGTH


class ZipStructureParser:
    '''Parses the structure of a ZIP archive held in memory.

    buffer:
        the complete archive. It is never modified.

    strict:
        if True, raise an UnsupportedExtraField for extra fields that
        have no registered decoder, instead of keeping them as
        UnknownExtraField records.

    eocd_search_limit:
        the number of bytes at the end of the buffer that are searched for
        the end of central directory record. None means the whole buffer.
    '''

    def __init__(self, buffer, strict=False, eocd_search_limit=EOCD_SEARCH_LIMIT):
        self.buffer = bytes(buffer)
        self.strict = strict
        self.eocd_search_limit = eocd_search_limit
        self.infile = KaitaiStream(io.BytesIO(self.buffer))

    @property
    def size(self):
        return len(self.buffer)

    def _check_available(self, offset, length, record_name, available=None):
        if available is None:
            available = self.size - offset
        check_condition(length <= available, TruncatedRecord,
                        f'not enough data for {record_name}', offset=offset,
                        expected=length, actual=max(available, 0))

    def locate_eocd(self):
        '''Find and parse the end of central directory record. The last
        signature for which the record, including the comment, fits in the
        buffer is used.'''
        if self.eocd_search_limit is None:
            search_start = 0
        else:
            search_start = max(0, self.size - self.eocd_search_limit)

        position = self.buffer.rfind(END_OF_CENTRAL_DIRECTORY, search_start)
        check_condition(position != -1, SignatureNotFound,
                        'end of central directory record not found',
                        expected=END_OF_CENTRAL_DIRECTORY)
        last_candidate = position

        while position != -1:
            if position + END_OF_CENTRAL_DIRECTORY_SIZE <= self.size:
                self.infile.seek(position + END_OF_CENTRAL_DIRECTORY_SIZE - 2)
                comment_length = self.infile.read_u2le()
                if position + END_OF_CENTRAL_DIRECTORY_SIZE + comment_length <= self.size:
                    log.debug(f'locate_eocd: end of central directory at {position}')
                    return self._parse_eocd(position)
            log.debug(f'locate_eocd: skipping end of central directory candidate at {position}')
            position = self.buffer.rfind(END_OF_CENTRAL_DIRECTORY, search_start, position)

        self._check_available(last_candidate, END_OF_CENTRAL_DIRECTORY_SIZE,
                              'end of central directory record')
        self.infile.seek(last_candidate + END_OF_CENTRAL_DIRECTORY_SIZE - 2)
        comment_length = self.infile.read_u2le()
        raise TruncatedRecord('not enough data for end of central directory comment',
                              offset=last_candidate + END_OF_CENTRAL_DIRECTORY_SIZE,
                              expected=comment_length,
                              actual=self.size - last_candidate - END_OF_CENTRAL_DIRECTORY_SIZE)

    def _parse_eocd(self, position):
        self.infile.seek(position)
        signature = self.infile.read_bytes(SIGNATURE_SIZE)
        disk_number = self.infile.read_u2le()
        central_dir_start_disk = self.infile.read_u2le()
        disk_central_dir_count = self.infile.read_u2le()
        central_dir_count = self.infile.read_u2le()
        central_dir_size = self.infile.read_u4le()
        central_dir_offset = self.infile.read_u4le()
        comment_length = self.infile.read_u2le()
        comment = self.infile.read_bytes(comment_length)
        return EndOfCentralDirectory(signature, disk_number, central_dir_start_disk,
                                     disk_central_dir_count, central_dir_count,
                                     central_dir_size, central_dir_offset,
                                     comment_length, comment, position,
                                     END_OF_CENTRAL_DIRECTORY_SIZE + comment_length)

    def locate_zip64_eocd(self, eocd):
        '''Parse the Zip64 end of central directory record if a locator
        (section 4.3.15) directly precedes the end of central directory.
        Returns None for archives without one.'''
        locator_offset = eocd.offset - ZIP64_END_OF_CENTRAL_DIRECTORY_LOCATOR_SIZE
        if locator_offset < 0:
            return None
        if self.buffer[locator_offset:locator_offset + SIGNATURE_SIZE] != ZIP64_END_OF_CENTRAL_DIRECTORY_LOCATOR:
            return None

        self.infile.seek(locator_offset + SIGNATURE_SIZE)
        zip64_disk = self.infile.read_u4le()
        zip64_offset = self.infile.read_u8le()
        total_disks = self.infile.read_u4le()
        log.debug(f'locate_zip64_eocd: locator at {locator_offset} points to {zip64_offset} (disk {zip64_disk} of {total_disks})')

        check_condition(zip64_offset + ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE <= locator_offset,
                        MalformedZip64EndOfCentralDirectory,
                        'Zip64 end of central directory does not precede its locator',
                        offset=locator_offset, expected=locator_offset, actual=zip64_offset)

        self.infile.seek(zip64_offset)
        signature = self.infile.read_bytes(SIGNATURE_SIZE)
        check_condition(signature == ZIP64_END_OF_CENTRAL_DIRECTORY,
                        MalformedZip64EndOfCentralDirectory,
                        'wrong signature for Zip64 end of central directory',
                        offset=zip64_offset, expected=ZIP64_END_OF_CENTRAL_DIRECTORY,
                        actual=signature)
        record_size = self.infile.read_u8le()
        minimum_record_size = ZIP64_END_OF_CENTRAL_DIRECTORY_SIZE - ZIP64_END_OF_CENTRAL_DIRECTORY_LEADING_SIZE
        check_condition(record_size >= minimum_record_size, MalformedZip64EndOfCentralDirectory,
                        'Zip64 end of central directory record too small',
                        offset=zip64_offset, expected=minimum_record_size, actual=record_size)
        self._check_available(zip64_offset, ZIP64_END_OF_CENTRAL_DIRECTORY_LEADING_SIZE + record_size,
                              'Zip64 end of central directory record',
                              available=locator_offset - zip64_offset)

        version_made_by = self.infile.read_u2le()
        version_needed = self.infile.read_u2le()
        disk_number = self.infile.read_u4le()
        central_dir_start_disk = self.infile.read_u4le()
        disk_central_dir_count = self.infile.read_u8le()
        central_dir_count = self.infile.read_u8le()
        central_dir_size = self.infile.read_u8le()
        central_dir_offset = self.infile.read_u8le()
        extensible_data = self.infile.read_bytes(record_size - minimum_record_size)

        return Zip64EndOfCentralDirectory(signature, record_size, version_made_by,
                                          version_needed, disk_number,
                                          central_dir_start_disk, disk_central_dir_count,
                                          central_dir_count, central_dir_size,
                                          central_dir_offset, extensible_data,
                                          locator_offset, zip64_offset,
                                          ZIP64_END_OF_CENTRAL_DIRECTORY_LEADING_SIZE + record_size)

    def parse_central_directory(self, eocd, zip64_eocd=None):
        '''Parse exactly as many central directory headers as the end of
        central directory declares. The local file headers are not
        parsed here, see analyze().'''
        if zip64_eocd is not None:
            central_dir_count = zip64_eocd.central_dir_count
            central_dir_size = zip64_eocd.central_dir_size
            central_dir_offset = zip64_eocd.central_dir_offset
        else:
            central_dir_count = eocd.central_dir_count
            central_dir_size = eocd.central_dir_size
            central_dir_offset = eocd.central_dir_offset

        self._check_available(central_dir_offset, central_dir_size, 'central directory')
        central_directory = KaitaiStream(io.BytesIO(
            self.buffer[central_dir_offset:central_dir_offset + central_dir_size]))

        headers = []
        while len(headers) < central_dir_count:
            headers.append(self._parse_central_directory_header(central_directory,
                                                                central_dir_offset))
        log.debug(f'parse_central_directory: {len(headers)} headers, {central_dir_size - central_directory.pos()} bytes unused')
        return tuple(headers)

    def _parse_central_directory_header(self, central_directory, base_offset):
        start = central_directory.pos()
        offset = base_offset + start
        available = central_directory.size() - start

        self._check_available(offset, SIGNATURE_SIZE, 'central directory header signature',
                              available=available)
        signature = central_directory.read_bytes(SIGNATURE_SIZE)
        check_condition(signature == CENTRAL_DIRECTORY, MalformedCentralDirectoryHeader,
                        'wrong signature for central directory header', offset=offset,
                        expected=CENTRAL_DIRECTORY, actual=signature)
        self._check_available(offset, CENTRAL_DIRECTORY_HEADER_SIZE, 'central directory header',
                              available=available)

        version_made_by = central_directory.read_u2le()
        version_needed = central_directory.read_u2le()
        flags = central_directory.read_u2le()
        compression_method = central_directory.read_u2le()
        last_mod_time = central_directory.read_u2le()
        last_mod_date = central_directory.read_u2le()
        crc32 = central_directory.read_u4le()
        compressed_size = central_directory.read_u4le()
        uncompressed_size = central_directory.read_u4le()
        file_name_length = central_directory.read_u2le()
        extra_field_length = central_directory.read_u2le()
        file_comment_length = central_directory.read_u2le()
        disk_number_start = central_directory.read_u2le()
        internal_file_attributes = central_directory.read_bytes(2)
        external_file_attributes = central_directory.read_bytes(4)
        local_header_offset = central_directory.read_u4le()

        variable_length = file_name_length + extra_field_length + file_comment_length
        self._check_available(offset + CENTRAL_DIRECTORY_HEADER_SIZE, variable_length,
                              'file name, extra field and comment of central directory header',
                              available=available - CENTRAL_DIRECTORY_HEADER_SIZE)
        file_name = central_directory.read_bytes(file_name_length)
        extra_offset = base_offset + central_directory.pos()
        extra_fields = decode_extra_fields(central_directory.read_bytes(extra_field_length),
                                           self.strict, extra_offset)
        file_comment = central_directory.read_bytes(file_comment_length)

        return CentralDirectoryHeader(signature, version_made_by, version_needed, flags,
                                      compression_method, last_mod_time, last_mod_date,
                                      crc32, compressed_size, uncompressed_size,
                                      file_name_length, extra_field_length,
                                      file_comment_length, disk_number_start,
                                      internal_file_attributes, external_file_attributes,
                                      local_header_offset, file_name, extra_fields,
                                      file_comment, offset,
                                      CENTRAL_DIRECTORY_HEADER_SIZE + variable_length)

    def parse_local_file_header(self, offset, central_directory_header=None):
        '''Parse the local file header at offset, followed by exactly as
        many bytes of compressed data as the header declares.

        If bit 3 of the general purpose flag is set and the local file
        header does not record the compressed size, the size from
        central_directory_header is used and the data descriptor
        following the data is parsed as well.
        '''
        self._check_available(offset, SIGNATURE_SIZE, 'local file header signature')
        self.infile.seek(offset)
        signature = self.infile.read_bytes(SIGNATURE_SIZE)
        check_condition(signature == LOCAL_FILE_HEADER, MalformedLocalFileHeader,
                        'wrong signature for local file header', offset=offset,
                        expected=LOCAL_FILE_HEADER, actual=signature)
        self._check_available(offset, LOCAL_FILE_HEADER_SIZE, 'local file header')

        version_needed = self.infile.read_u2le()
        flags = self.infile.read_u2le()
        compression_method = self.infile.read_u2le()
        last_mod_time = self.infile.read_u2le()
        last_mod_date = self.infile.read_u2le()
        crc32 = self.infile.read_u4le()
        compressed_size = self.infile.read_u4le()
        uncompressed_size = self.infile.read_u4le()
        file_name_length = self.infile.read_u2le()
        extra_field_length = self.infile.read_u2le()

        self._check_available(offset + LOCAL_FILE_HEADER_SIZE,
                              file_name_length + extra_field_length,
                              'file name and extra field of local file header')
        file_name = self.infile.read_bytes(file_name_length)
        extra_offset = self.infile.pos()
        extra_fields = decode_extra_fields(self.infile.read_bytes(extra_field_length),
                                           self.strict, extra_offset)

        data_offset = self.infile.pos()
        local_file_header = LocalFileHeader(signature, version_needed, flags,
                                            compression_method, last_mod_time,
                                            last_mod_date, crc32, compressed_size,
                                            uncompressed_size, file_name_length,
                                            extra_field_length, file_name, extra_fields,
                                            data_offset, 0, offset,
                                            data_offset - offset)
        data_length = local_file_header.effective_compressed_size

        uses_data_descriptor = flags & FLAG_DATA_DESCRIPTOR
        if uses_data_descriptor and data_length == 0 and central_directory_header is not None:
            data_length = central_directory_header.effective_compressed_size

        available = self.size - data_offset
        check_condition(data_length <= available, PayloadLengthMismatch,
                        'not enough data for compressed data', offset=data_offset,
                        expected=data_length, actual=available)

        data_descriptor = None
        if uses_data_descriptor:
            # 8 byte sizes follow a Zip64 extra field in the local file
            # header (section 4.3.9.1). A Zip64 extra field in the central
            # directory only counts if it is there for the sizes, not for
            # the local header offset.
            zip64 = local_file_header.zip64 is not None
            if central_directory_header is not None:
                zip64 = zip64 or ZIP64_SENTINEL in [central_directory_header.compressed_size,
                                                    central_directory_header.uncompressed_size]
            data_descriptor = self._parse_data_descriptor(data_offset + data_length, zip64)

        return dataclasses.replace(local_file_header, data_length=data_length,
                                   data_descriptor=data_descriptor)

    def _parse_data_descriptor(self, offset, zip64):
        '''Data descriptor, section 4.3.9. The signature is optional.'''
        self.infile.seek(offset)
        signature = None
        if self.buffer[offset:offset + SIGNATURE_SIZE] == DATA_DESCRIPTOR:
            signature = self.infile.read_bytes(SIGNATURE_SIZE)

        if zip64:
            descriptor_size = 4 + 8 + 8
        else:
            descriptor_size = 4 + 4 + 4
        self._check_available(self.infile.pos(), descriptor_size, 'data descriptor')

        crc32 = self.infile.read_u4le()
        if zip64:
            compressed_size = self.infile.read_u8le()
            uncompressed_size = self.infile.read_u8le()
        else:
            compressed_size = self.infile.read_u4le()
            uncompressed_size = self.infile.read_u4le()
        return DataDescriptor(signature, crc32, compressed_size, uncompressed_size,
                              offset, self.infile.pos() - offset)

    def analyze(self):
        '''Parse the whole archive. Every central directory header gets
        the local file header found at the offset it records.'''
        eocd = self.locate_eocd()
        zip64_eocd = self.locate_zip64_eocd(eocd)
        entries = []
        for header in self.parse_central_directory(eocd, zip64_eocd):
            local_file_header = self.parse_local_file_header(header.effective_local_header_offset,
                                                             header)
            entries.append(dataclasses.replace(header, local_file_header=local_file_header))
        return ArchiveModel(eocd, tuple(entries), zip64_eocd, self.buffer)


def analyze(buffer, strict=False, eocd_search_limit=EOCD_SEARCH_LIMIT):
    '''Parse buffer into an ArchiveModel. Raises a ZipParserException
    if the structure of the archive is not valid.'''
    return ZipStructureParser(buffer, strict, eocd_search_limit).analyze()
