#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# ZipStreamer - Stream ZIP archives on the fly, with download resume
# Copyright (C) 2024-2025 ZipStreamer contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Builders for every ZIP record written by the streamer (PKZIP APPNOTE.TXT).

All functions are pure: they take entry metadata and archive-level numbers and
return the exact bytes of one record. Under zip64 the classic size/offset
fields hold sentinels and the real values go in the zip64 extra field and end
records. With zip64 disabled, values that do not fit raise ArchiveLimitError
instead of being truncated.
"""

import struct
import time
import zipfile
import datetime

from zipstreamer.Codec import packU16LE, packU32LE, packU64LE, U16_SENTINEL, U32_SENTINEL
from zipstreamer.Entry import ArchiveEntry, GPFlags
from zipstreamer.Errors import ArchiveLimitError

# Signature constants. The zipfile module exposes the classic ones as bytes.
LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0]  # 0x04034b50
CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0]  # 0x02014b50
END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0]  # 0x06054b50
ZIP64_END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive64)[0]  # 0x06064b50
ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive64Locator)[0]  # 0x07064b50
DATA_DESCRIPTOR_SIGNATURE = 0x08074b50

ATTR_MADE_BY_VERSION = 0x032D  # Upper byte: UNIX, lower byte: ZIP 4.5

VERSION_ZIP64 = 0x2D  # 4.5 - File uses ZIP64 format extensions
VERSION_DIRECTORY = 0x14  # 2.0 - File is a folder (directory)
VERSION_DEFAULT = 0x0A  # 1.0 - Default value

ZIP64_EXTRA_TAG = 0x0001
ZIP64_EXTRA_DATA_SIZE = 28

LOCAL_FILE_HEADER_LENGTH = 30
CENTRAL_DIR_HEADER_LENGTH = 46
ZIP64_EXTRA_FIELD_LENGTH = 4 + ZIP64_EXTRA_DATA_SIZE
END_OF_CENTRAL_DIR_LENGTH = 22
ZIP64_END_OF_CENTRAL_DIR_LENGTH = 56
ZIP64_END_OF_CENTRAL_DIR_LOCATOR_LENGTH = 20
ZIP64_END_OF_CENTRAL_DIR_RECORD_SIZE = ZIP64_END_OF_CENTRAL_DIR_LENGTH - 12  # 44, excludes signature and size field


def _fit32(value: int, field: str) -> int:
    if value > U32_SENTINEL:
        raise ArchiveLimitError(f"{field} {value} does not fit in 32 bits; enable zip64")
    return value


def _fit16(value: int, field: str) -> int:
    if value > U16_SENTINEL:
        raise ArchiveLimitError(f"{field} {value} does not fit in 16 bits; enable zip64")
    return value


def getDosTime(timestamp: int = 0) -> int:
    """
    Pack a unix timestamp into the 32-bit DOS time (low word) and date (high word)

    A timestamp of 0 means "now". Dates before 1980 pack to 0, the ZIP epoch floor;
    years past 2107 are clamped to 2107.

    DOS time (16 bits): seconds / 2 (bits 0-4), minutes (bits 5-10), hours (bits 11-15)
    DOS date (16 bits): day (bits 0-4), month (bits 5-8), year - 1980 (bits 9-15)
    """
    timestamp = int(timestamp or time.time())

    try:
        date = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)
    except (OverflowError, OSError, ValueError):
        return 0 if timestamp < 0 else getDosTime(4354819199)  # 2107-12-31 23:59:59

    if date.year < 1980:
        return 0

    year = min(date.year, 2107)
    return (((date.day + (date.month << 5) + ((year - 1980) << 9)) << 16)
            | ((date.second >> 1) + (date.minute << 5) + (date.hour << 11)))


def getVersionToExtract(zip64: bool, isDir: bool) -> int:
    if zip64:
        return VERSION_ZIP64
    elif isDir:
        return VERSION_DIRECTORY
    return VERSION_DEFAULT


def _needsUtf8(text) -> bool:
    if not text:
        return False
    try:
        text.encode('utf-8')
    except UnicodeEncodeError:
        return False
    return not text.isascii()


def getEncodingFlags(path: str, comment: str = None) -> int:
    """EFS flag when the path or comment is valid UTF-8 and not pure ASCII"""
    if _needsUtf8(path) or _needsUtf8(comment):
        return GPFlags.EFS
    return GPFlags.NONE


def makeZip64ExtraField(uncompressedSize: int, compressedSize: int, localHeaderOffset: int) -> bytes:
    """Zip64 Extended Information extra field, always the full 28-byte form"""
    return (
        packU16LE(ZIP64_EXTRA_TAG)  # Tag for this "extra" block type (ZIP64)
        + packU16LE(ZIP64_EXTRA_DATA_SIZE)  # Size of this "extra" block
        + packU64LE(uncompressedSize)  # Original uncompressed file size
        + packU64LE(compressedSize)  # Size of compressed data
        + packU64LE(localHeaderOffset)  # Offset of local header record
        + packU32LE(0)  # Number of the disk on which this file starts
    )


def makeLocalFileHeader(entry: ArchiveEntry, zip64: bool) -> bytes:
    """
    Create a local file header for the entry

    When the entry carries the ADD flag its CRC and sizes are still 0 here and the
    real values follow the data in a data descriptor.
    """
    pathBytes = entry.pathBytes

    if zip64:
        extraField = makeZip64ExtraField(entry.uncompressedSize, entry.compressedSize, entry.localHeaderOffset)
        compressedSize = U32_SENTINEL
        uncompressedSize = U32_SENTINEL
    else:
        extraField = b''
        compressedSize = _fit32(entry.compressedSize, 'Compressed size')
        uncompressedSize = _fit32(entry.uncompressedSize, 'Uncompressed size')

    return (
        packU32LE(LOCAL_FILE_HEADER_SIGNATURE)
        + packU16LE(getVersionToExtract(zip64, entry.isDirectory))  # Version needed to extract
        + packU16LE(entry.generalPurposeFlags)  # General purpose bit flag
        + packU16LE(entry.compressionMethod)  # Compression method
        + packU32LE(getDosTime(entry.timestamp))  # Last mod file time, last mod file date
        + packU32LE(entry.crc32)  # CRC-32
        + packU32LE(compressedSize)  # Compressed size
        + packU32LE(uncompressedSize)  # Uncompressed size
        + packU16LE(len(pathBytes))  # File name length
        + packU16LE(len(extraField))  # Extra field length
        + pathBytes
        + extraField
    )


def makeDataDescriptor(entry: ArchiveEntry, zip64: bool) -> bytes:
    """Create a data descriptor, signature included, with 8-byte sizes under zip64"""
    if zip64:
        packedCompressedSize = packU64LE(entry.compressedSize)
        packedUncompressedSize = packU64LE(entry.uncompressedSize)
    else:
        packedCompressedSize = packU32LE(_fit32(entry.compressedSize, 'Compressed size'))
        packedUncompressedSize = packU32LE(_fit32(entry.uncompressedSize, 'Uncompressed size'))

    return (
        packU32LE(DATA_DESCRIPTOR_SIGNATURE)
        + packU32LE(entry.crc32)
        + packedCompressedSize
        + packedUncompressedSize
    )


def makeCentralDirHeader(entry: ArchiveEntry, zip64: bool) -> bytes:
    """Create a central directory header; the file comment is always empty"""
    pathBytes = entry.pathBytes

    if zip64:
        extraField = makeZip64ExtraField(entry.uncompressedSize, entry.compressedSize, entry.localHeaderOffset)
        compressedSize = U32_SENTINEL
        uncompressedSize = U32_SENTINEL
        diskNumber = U16_SENTINEL
        offset = U32_SENTINEL
    else:
        extraField = b''
        compressedSize = _fit32(entry.compressedSize, 'Compressed size')
        uncompressedSize = _fit32(entry.uncompressedSize, 'Uncompressed size')
        diskNumber = 0
        offset = _fit32(entry.localHeaderOffset, 'Local header offset')

    return (
        packU32LE(CENTRAL_DIR_SIGNATURE)
        + packU16LE(ATTR_MADE_BY_VERSION)  # Version made by
        + packU16LE(getVersionToExtract(zip64, entry.isDirectory))  # Version needed to extract
        + packU16LE(entry.generalPurposeFlags)  # General purpose bit flag
        + packU16LE(entry.compressionMethod)  # Compression method
        + packU32LE(getDosTime(entry.timestamp))  # Last mod file time, last mod file date
        + packU32LE(entry.crc32)  # CRC-32
        + packU32LE(compressedSize)  # Compressed size
        + packU32LE(uncompressedSize)  # Uncompressed size
        + packU16LE(len(pathBytes))  # File name length
        + packU16LE(len(extraField))  # Extra field length
        + packU16LE(0)  # File comment length
        + packU16LE(diskNumber)  # Disk number start
        + packU16LE(0)  # Internal file attributes
        + packU32LE(entry.externalFileAttributes)  # External file attributes
        + packU32LE(offset)  # Relative offset of local header
        + pathBytes
        + extraField
    )


def makeZip64EndOfCentralDir(entryCount: int, centralDirSize: int, centralDirStart: int) -> bytes:
    """Create the zip64 end of central directory record"""
    return (
        packU32LE(ZIP64_END_OF_CENTRAL_DIR_SIGNATURE)
        + packU64LE(ZIP64_END_OF_CENTRAL_DIR_RECORD_SIZE)  # Size of zip64 end of central directory record
        + packU16LE(ATTR_MADE_BY_VERSION)  # Version made by
        + packU16LE(getVersionToExtract(True, False))  # Version needed to extract
        + packU32LE(0)  # Number of this disk
        + packU32LE(0)  # Disk where central directory starts
        + packU64LE(entryCount)  # Number of entries on this disk
        + packU64LE(entryCount)  # Total number of entries
        + packU64LE(centralDirSize)  # Size of central directory
        + packU64LE(centralDirStart)  # Offset of start of central directory
    )


def makeZip64Locator(zip64EocdOffset: int) -> bytes:
    """Create the zip64 end of central directory locator"""
    return (
        packU32LE(ZIP64_END_OF_CENTRAL_DIR_LOCATOR_SIGNATURE)
        + packU32LE(0)  # Disk number with zip64 EOCD
        + packU64LE(zip64EocdOffset)  # Offset of zip64 EOCD
        + packU32LE(1)  # Total number of disks
    )


def makeEndOfCentralDir(entryCount: int, centralDirSize: int, centralDirStart: int, zip64: bool) -> bytes:
    """Create the end of central directory record, fully sentineled under zip64"""
    if zip64:
        diskNumber = U16_SENTINEL
        entryCount = U16_SENTINEL
        centralDirSize = U32_SENTINEL
        centralDirStart = U32_SENTINEL
    else:
        diskNumber = 0
        entryCount = _fit16(entryCount, 'Entry count')
        centralDirSize = _fit32(centralDirSize, 'Central directory size')
        centralDirStart = _fit32(centralDirStart, 'Central directory offset')

    return (
        packU32LE(END_OF_CENTRAL_DIR_SIGNATURE)
        + packU16LE(diskNumber)  # Number of this disk
        + packU16LE(diskNumber)  # Disk where central directory starts
        + packU16LE(entryCount)  # Number of entries on this disk
        + packU16LE(entryCount)  # Total number of entries
        + packU32LE(centralDirSize)  # Size of central directory
        + packU32LE(centralDirStart)  # Offset of start of central directory
        + packU16LE(0)  # Comment length
    )


def makeEndRecords(entryCount: int, centralDirSize: int, centralDirStart: int, zip64: bool) -> bytes:
    """Everything after the central directory headers"""
    records = b''
    if zip64:
        zip64EocdOffset = centralDirStart + centralDirSize
        records += makeZip64EndOfCentralDir(entryCount, centralDirSize, centralDirStart)
        records += makeZip64Locator(zip64EocdOffset)
    return records + makeEndOfCentralDir(entryCount, centralDirSize, centralDirStart, zip64)


def calculateLocalFileHeaderLength(entry: ArchiveEntry, zip64: bool) -> int:
    return LOCAL_FILE_HEADER_LENGTH + len(entry.pathBytes) + (ZIP64_EXTRA_FIELD_LENGTH if zip64 else 0)


def calculateDataDescriptorLength(zip64: bool) -> int:
    return 24 if zip64 else 16


def calculateCentralDirHeaderLength(entry: ArchiveEntry, zip64: bool) -> int:
    return CENTRAL_DIR_HEADER_LENGTH + len(entry.pathBytes) + (ZIP64_EXTRA_FIELD_LENGTH if zip64 else 0)


def calculateEndRecordsLength(zip64: bool) -> int:
    if zip64:
        return ZIP64_END_OF_CENTRAL_DIR_LENGTH + ZIP64_END_OF_CENTRAL_DIR_LOCATOR_LENGTH + END_OF_CENTRAL_DIR_LENGTH
    return END_OF_CENTRAL_DIR_LENGTH
