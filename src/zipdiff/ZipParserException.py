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
Exceptions raised while parsing the structure of a ZIP archive.

Every exception records the absolute offset in the archive at which the
problem was found and, where it makes sense, what was expected and what
was actually found there. All of them are fatal for an analysis.
'''


def _format_value(value):
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex(' ')
    if isinstance(value, int):
        return f'{value} (0x{value:x})'
    return repr(value)


class ZipParserException(Exception):
    def __init__(self, message, offset=None, expected=None, actual=None):
        self.message = message
        self.offset = offset
        self.expected = expected
        self.actual = actual
        super().__init__(str(self))

    def __str__(self):
        parts = [self.message]
        if self.offset is not None:
            parts.append(f'at offset {self.offset} (0x{self.offset:x})')
        if self.expected is not None or self.actual is not None:
            parts.append(f'expected {_format_value(self.expected)}, got {_format_value(self.actual)}')
        return ', '.join(parts)


class SignatureNotFound(ZipParserException):
    pass


class MalformedCentralDirectoryHeader(ZipParserException):
    pass


class MalformedLocalFileHeader(ZipParserException):
    pass


class MalformedZip64EndOfCentralDirectory(ZipParserException):
    pass


class TruncatedRecord(ZipParserException):
    pass


class PayloadLengthMismatch(ZipParserException):
    pass


class UnsupportedExtraField(ZipParserException):
    pass


class ExtraFieldLengthMismatch(ZipParserException):
    pass


class MalformedExtraField(ZipParserException):
    pass


def check_condition(condition, exception_class, message, **details):
    '''semantic check function to see if condition is True.
    Raises exception_class with message and details if not.
    '''
    if not condition:
        raise exception_class(message, **details)
