import binascii
import io
import pathlib
import struct
import zipfile

import pytest

from dataclasses import dataclass

_scriptdir = pathlib.Path(__file__).parent
testdir_base = _scriptdir.resolve()

FIXED_DATE_TIME = (2024, 5, 17, 13, 37, 42)

# 2024-05-17 13:37:42 in MS-DOS format
DOS_TIME = (13 << 11) | (37 << 5) | (42 // 2)
DOS_DATE = ((2024 - 1980) << 9) | (5 << 5) | 17


def extra_field(header_id, payload):
    return struct.pack('<HH', header_id, len(payload)) + payload


@dataclass
class Entry:
    '''Description of a single entry for build_archive(). The local_*
    and central_* values override what is written in that header only.'''
    name: bytes
    data: bytes = b''
    compression: int = 0
    flags: int = 0
    local_extra: bytes = b''
    central_extra: bytes = b''
    comment: bytes = b''
    crc32: int = None
    central_crc32: int = None
    local_compression: int = None
    local_compressed_size: int = None
    central_uncompressed_size: int = None
    central_offset: int = None
    data_descriptor: bytes = b''


def create_lfh(entry):
    '''Create a Local File Header, followed by the data and the data
    descriptor, if any.'''
    crc32 = entry.crc32
    if crc32 is None:
        crc32 = binascii.crc32(entry.data) & 0xffffffff
    compression = entry.compression
    if entry.local_compression is not None:
        compression = entry.local_compression
    compressed_size = len(entry.data)
    if entry.local_compressed_size is not None:
        compressed_size = entry.local_compressed_size

    lfh = struct.pack('<4s',    b'PK\x03\x04')
    lfh += struct.pack('<H',    20)
    lfh += struct.pack('<H',    entry.flags)
    lfh += struct.pack('<H',    compression)
    lfh += struct.pack('<H',    DOS_TIME)
    lfh += struct.pack('<H',    DOS_DATE)
    lfh += struct.pack('<L',    crc32)
    lfh += struct.pack('<L',    compressed_size)
    lfh += struct.pack('<L',    len(entry.data))
    lfh += struct.pack('<H',    len(entry.name))
    lfh += struct.pack('<H',    len(entry.local_extra))
    lfh += entry.name
    lfh += entry.local_extra
    lfh += entry.data
    lfh += entry.data_descriptor
    return lfh


def create_cdh(entry, lfh_offset):
    '''Create a Central Directory Header.'''
    crc32 = entry.crc32
    if crc32 is None:
        crc32 = binascii.crc32(entry.data) & 0xffffffff
    if entry.central_crc32 is not None:
        crc32 = entry.central_crc32
    uncompressed_size = len(entry.data)
    if entry.central_uncompressed_size is not None:
        uncompressed_size = entry.central_uncompressed_size
    if entry.central_offset is not None:
        lfh_offset = entry.central_offset

    cdh = struct.pack('<4s',    b'PK\x01\x02')
    cdh += struct.pack('<H',    0x031e)
    cdh += struct.pack('<H',    20)
    cdh += struct.pack('<H',    entry.flags)
    cdh += struct.pack('<H',    entry.compression)
    cdh += struct.pack('<H',    DOS_TIME)
    cdh += struct.pack('<H',    DOS_DATE)
    cdh += struct.pack('<L',    crc32)
    cdh += struct.pack('<L',    len(entry.data))
    cdh += struct.pack('<L',    uncompressed_size)
    cdh += struct.pack('<H',    len(entry.name))
    cdh += struct.pack('<H',    len(entry.central_extra))
    cdh += struct.pack('<H',    len(entry.comment))
    cdh += struct.pack('<H',    0)
    cdh += struct.pack('<H',    0)
    cdh += struct.pack('<L',    0o100644 << 16)
    cdh += struct.pack('<L',    lfh_offset)
    cdh += entry.name
    cdh += entry.central_extra
    cdh += entry.comment
    return cdh


def create_eocd(count, cd_size, cd_offset, comment=b''):
    '''Create an End of Central Directory record.'''
    eocd = struct.pack('<4s',   b'PK\x05\x06')
    eocd += struct.pack('<H',   0)
    eocd += struct.pack('<H',   0)
    eocd += struct.pack('<H',   count)
    eocd += struct.pack('<H',   count)
    eocd += struct.pack('<L',   cd_size)
    eocd += struct.pack('<L',   cd_offset)
    eocd += struct.pack('<H',   len(comment))
    eocd += comment
    return eocd


def build_archive(entries, comment=b'', central_directory_first=False, count=None,
                  central_directory_trailer=b''):
    '''Build a ZIP archive from a list of Entry. With central_directory_first
    the central directory and end of central directory record are written
    at the start of the file, before the local file headers, so that the
    data of the last entry is at the very end of the file.'''
    local_headers = [create_lfh(entry) for entry in entries]
    if count is None:
        count = len(entries)

    if central_directory_first:
        cd_size = sum(len(create_cdh(entry, 0)) for entry in entries) + len(central_directory_trailer)
        offset = cd_size + len(create_eocd(count, 0, 0, comment))
    else:
        offset = 0

    central_directory = b''
    for entry, lfh in zip(entries, local_headers):
        central_directory += create_cdh(entry, offset)
        offset += len(lfh)
    central_directory += central_directory_trailer

    if central_directory_first:
        eocd = create_eocd(count, len(central_directory), 0, comment)
        return central_directory + eocd + b''.join(local_headers)

    cd_offset = sum(len(lfh) for lfh in local_headers)
    eocd = create_eocd(count, len(central_directory), cd_offset, comment)
    return b''.join(local_headers) + central_directory + eocd


def make_zipfile(files, compression=zipfile.ZIP_DEFLATED, comment=b'', stream=None):
    '''Write files (a dict of name to data) with Python's zipfile module'''
    if stream is None:
        stream = io.BytesIO()
    with zipfile.ZipFile(stream, 'w') as zf:
        for name, data in files.items():
            zinfo = zipfile.ZipInfo(name, date_time=FIXED_DATE_TIME)
            zinfo.compress_type = compression
            zf.writestr(zinfo, data)
        zf.comment = comment
    return stream.getvalue()


class UnseekableStream:
    '''Write only stream, makes zipfile use data descriptors'''
    def __init__(self):
        self._buffer = io.BytesIO()

    def write(self, data):
        return self._buffer.write(data)

    def tell(self):
        return self._buffer.tell()

    def seek(self, *args):
        raise OSError('stream is not seekable')

    def flush(self):
        pass

    def getvalue(self):
        return self._buffer.getvalue()


@pytest.fixture
def simple_zip():
    return make_zipfile({
        'hello.txt': b'Hello, world!\n' * 20,
        'dir/': b'',
        'dir/data.bin': bytes(range(256)) * 4,
    })


@pytest.fixture
def tmp_zip_files(tmp_path):
    def write(**archives):
        paths = {}
        for name, content in archives.items():
            path = tmp_path / f'{name}.zip'
            path.write_bytes(content)
            paths[name] = path
        return paths
    return write
