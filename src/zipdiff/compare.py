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
Structural comparison of two parsed archives.

Entries are matched by their file name as stored, so names that only
decode to the same text are different entries. For every pair of matched
entries all the fields of the central directory header and of the local
file header are compared, as well as the extra fields of both headers.
Nothing is decompressed: two entries with different data but identical
headers are reported as identical.

ZIP archives can contain several entries with the same name. These are
matched by occurrence: the first entry called 'a.txt' in one archive is
compared with the first entry called 'a.txt' in the other archive, the
second with the second, and so on. Entries left over are reported as
being only in one of the archives.
'''

from dataclasses import dataclass, field
from typing import Optional

CENTRAL_DIRECTORY_FIELDS = ['signature', 'version_made_by', 'version_needed', 'flags',
                            'compression_method', 'last_mod_time', 'last_mod_date',
                            'crc32', 'compressed_size', 'uncompressed_size',
                            'file_name_length', 'extra_field_length',
                            'file_comment_length', 'disk_number_start',
                            'internal_file_attributes', 'external_file_attributes',
                            'local_header_offset', 'file_name', 'file_comment',
                            'offset', 'size']

LOCAL_FILE_HEADER_FIELDS = ['signature', 'version_needed', 'flags', 'compression_method',
                            'last_mod_time', 'last_mod_date', 'crc32',
                            'compressed_size', 'uncompressed_size', 'file_name_length',
                            'extra_field_length', 'file_name', 'data_length',
                            'data_descriptor', 'offset', 'size']

END_OF_CENTRAL_DIRECTORY_FIELDS = ['signature', 'disk_number', 'central_dir_start_disk',
                                   'disk_central_dir_count', 'central_dir_count',
                                   'central_dir_size', 'central_dir_offset',
                                   'comment_length', 'comment', 'offset', 'size']

LOCAL_FILE_HEADER_PREFIX = 'local_file_header.'
END_OF_CENTRAL_DIRECTORY_PREFIX = 'end_of_central_directory.'


@dataclass(frozen=True)
class FieldDiff:
    name: Optional[str]
    field: str
    value_a: object
    value_b: object


@dataclass
class ComparisonResult:
    only_in_a: list = field(default_factory=list)
    only_in_b: list = field(default_factory=list)
    field_diffs: list = field(default_factory=list)
    archive_diffs: list = field(default_factory=list)

    @property
    def is_identical(self):
        return not (self.only_in_a or self.only_in_b or self.field_diffs or self.archive_diffs)

    def diffs_for(self, name):
        return [diff for diff in self.field_diffs if diff.name == name]


def _is_ignored(field_name, prefix, ignore_fields):
    return field_name in ignore_fields or f'{prefix}{field_name}' in ignore_fields


def _compare_fields(name, record_a, record_b, field_names, prefix, ignore_fields):
    diffs = []
    for field_name in field_names:
        if _is_ignored(field_name, prefix, ignore_fields):
            continue
        value_a = getattr(record_a, field_name)
        value_b = getattr(record_b, field_name)

        # bytes compare by value, never by identity
        if value_a != value_b:
            diffs.append(FieldDiff(name, f'{prefix}{field_name}', value_a, value_b))
    return diffs


def _compare_extra_fields(name, extra_a, extra_b, prefix, ignore_fields):
    if _is_ignored('extra_fields', prefix, ignore_fields):
        return []
    diffs = []
    if len(extra_a) != len(extra_b):
        diffs.append(FieldDiff(name, f'{prefix}extra_fields.count', len(extra_a), len(extra_b)))
    for position, (record_a, record_b) in enumerate(zip(extra_a, extra_b)):
        if record_a != record_b:
            diffs.append(FieldDiff(name, f'{prefix}extra_fields[{position}]', record_a, record_b))
    return diffs


def compare_entries(entry_a, entry_b, ignore_fields=()):
    '''Compare two central directory headers, including their local
    file headers, and return a list of FieldDiff.'''
    name = entry_a.name
    diffs = _compare_fields(name, entry_a, entry_b, CENTRAL_DIRECTORY_FIELDS, '', ignore_fields)
    diffs += _compare_extra_fields(name, entry_a.extra_fields, entry_b.extra_fields, '',
                                   ignore_fields)

    local_a = entry_a.local_file_header
    local_b = entry_b.local_file_header
    diffs += _compare_fields(name, local_a, local_b, LOCAL_FILE_HEADER_FIELDS,
                             LOCAL_FILE_HEADER_PREFIX, ignore_fields)
    diffs += _compare_extra_fields(name, local_a.extra_fields, local_b.extra_fields,
                                   LOCAL_FILE_HEADER_PREFIX, ignore_fields)
    return diffs


def _entries_by_file_name(model):
    # keyed on the raw file name, decoded names can collide
    entries = {}
    for entry in model.entries:
        entries.setdefault(entry.file_name, []).append(entry)
    return entries


def compare(a, b, ignore_fields=()):
    '''Compare two ArchiveModels. The models are not modified.'''
    ignore_fields = set(ignore_fields)
    result = ComparisonResult()

    result.archive_diffs = _compare_fields(None, a.end_of_central_directory,
                                           b.end_of_central_directory,
                                           END_OF_CENTRAL_DIRECTORY_FIELDS,
                                           END_OF_CENTRAL_DIRECTORY_PREFIX, ignore_fields)
    if not _is_ignored('zip64_end_of_central_directory', '', ignore_fields):
        if a.zip64_end_of_central_directory != b.zip64_end_of_central_directory:
            result.archive_diffs.append(FieldDiff(None, 'zip64_end_of_central_directory',
                                                  a.zip64_end_of_central_directory,
                                                  b.zip64_end_of_central_directory))

    entries_a = _entries_by_file_name(a)
    entries_b = _entries_by_file_name(b)

    for file_name, named_entries in entries_a.items():
        matched = len(entries_b.get(file_name, []))
        result.only_in_a.extend(entry.name for entry in named_entries[matched:])
    for file_name, named_entries in entries_b.items():
        matched = len(entries_a.get(file_name, []))
        result.only_in_b.extend(entry.name for entry in named_entries[matched:])

    for file_name, named_entries in entries_a.items():
        for entry_a, entry_b in zip(named_entries, entries_b.get(file_name, [])):
            result.field_diffs += compare_entries(entry_a, entry_b, ignore_fields)

    return result
