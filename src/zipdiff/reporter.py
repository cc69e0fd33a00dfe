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
rich renderables for archive models and comparison results. This is the
only place where results are turned into text.
'''

import rich.table

from rich.markup import escape

from .extra_fields import UnknownExtraField


def format_value(value):
    '''Turn a field value into a short string for a table cell'''
    if value is None:
        return '-'
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex(' ')
    if isinstance(value, bool):
        return escape(str(value))
    if isinstance(value, int):
        return f'{value} (0x{value:x})'
    return escape(str(value))


def format_extra_field(extra):
    if isinstance(extra, UnknownExtraField):
        return f'unknown 0x{extra.header_id:04x}: {format_value(extra.data)}'
    return escape(repr(extra))


def build_eocd_table(model):
    '''Construct a table with the end of central directory record'''
    eocd = model.end_of_central_directory
    table = rich.table.Table('', '', title='End of central directory', show_lines=True,
                             show_header=False)
    table.add_row('Offset', format_value(eocd.offset))
    table.add_row('Disk number', format_value(eocd.disk_number))
    table.add_row('Central directory start disk', format_value(eocd.central_dir_start_disk))
    table.add_row('Entries on this disk', format_value(eocd.disk_central_dir_count))
    table.add_row('Entries', format_value(eocd.central_dir_count))
    table.add_row('Central directory size', format_value(eocd.central_dir_size))
    table.add_row('Central directory offset', format_value(eocd.central_dir_offset))
    if eocd.comment:
        table.add_row('Comment', escape(eocd.comment.decode('cp437')))

    zip64_eocd = model.zip64_end_of_central_directory
    if zip64_eocd is not None:
        table.add_row('Zip64 end of central directory', format_value(zip64_eocd.offset))
        table.add_row('Zip64 entries', format_value(zip64_eocd.central_dir_count))
        table.add_row('Zip64 central directory size', format_value(zip64_eocd.central_dir_size))
        table.add_row('Zip64 central directory offset', format_value(zip64_eocd.central_dir_offset))
    return table


def build_entries_table(model):
    table = rich.table.Table(title='Entries', row_styles=['dim', ''])
    table.add_column('Nr', justify='right')
    table.add_column('Name')
    table.add_column('Method', justify='right')
    table.add_column('CRC32')
    table.add_column('Compressed', justify='right')
    table.add_column('Uncompressed', justify='right')
    table.add_column('Modified')
    table.add_column('Header offset', justify='right')
    table.add_column('Extra fields', justify='right')

    for counter, entry in enumerate(model.entries, start=1):
        table.add_row(str(counter), escape(entry.name), str(entry.compression_method),
                      f'{entry.crc32:08x}', str(entry.effective_compressed_size),
                      str(entry.effective_uncompressed_size), str(entry.last_modified),
                      str(entry.effective_local_header_offset),
                      f'{len(entry.extra_fields)}/{len(entry.local_file_header.extra_fields)}')
    return table


def build_extra_fields_table(model):
    table = rich.table.Table(title='Extra fields', row_styles=['dim', ''])
    table.add_column('Name')
    table.add_column('Header')
    table.add_column('Id')
    table.add_column('Value')

    have_extra_fields = False
    for entry in model.entries:
        for header_name, extra_fields in [('central', entry.extra_fields),
                                          ('local', entry.local_file_header.extra_fields)]:
            for extra in extra_fields:
                have_extra_fields = True
                table.add_row(escape(entry.name), header_name, f'0x{extra.header_id:04x}',
                              format_extra_field(extra))
    return table, have_extra_fields


def build_mismatch_table(model):
    '''Fields that differ between central directory and local file header'''
    table = rich.table.Table(title='Central directory / local file header mismatches',
                             row_styles=['dim', ''])
    table.add_column('Name')
    table.add_column('Field')
    table.add_column('Central directory')
    table.add_column('Local file header')

    mismatches = model.local_header_mismatches()
    for mismatch in mismatches:
        table.add_row(escape(mismatch.name), mismatch.field,
                      format_value(mismatch.central_directory_value),
                      format_value(mismatch.local_file_header_value))
    return table, mismatches != []


def build_comparison_tables(result, label_a='A', label_b='B'):
    '''Return the renderables for a ComparisonResult'''
    renderables = []

    if result.only_in_a or result.only_in_b:
        table = rich.table.Table(title='Entries in one archive only', row_styles=['dim', ''])
        table.add_column('Name')
        table.add_column('Archive')
        for name in result.only_in_a:
            table.add_row(escape(name), label_a)
        for name in result.only_in_b:
            table.add_row(escape(name), label_b)
        renderables.append(table)

    if result.archive_diffs:
        table = rich.table.Table(title='Archive differences', row_styles=['dim', ''])
        table.add_column('Field')
        table.add_column(label_a)
        table.add_column(label_b)
        for diff in result.archive_diffs:
            table.add_row(diff.field, format_value(diff.value_a), format_value(diff.value_b))
        renderables.append(table)

    if result.field_diffs:
        table = rich.table.Table(title='Entry differences', row_styles=['dim', ''])
        table.add_column('Name')
        table.add_column('Field')
        table.add_column(label_a, style='red')
        table.add_column(label_b, style='green')
        for diff in result.field_diffs:
            table.add_row(escape(diff.name), diff.field, format_value(diff.value_a),
                          format_value(diff.value_b))
        renderables.append(table)

    return renderables
