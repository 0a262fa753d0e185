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

import sys
import time

from zipstreamer.Checksum import Crc32
from zipstreamer.Compression import validateCompressionOptions, getCompressionFlags, createCompressionStream
from zipstreamer.Entry import (
    ArchiveEntry, CompressionMethod, CompressionLevel, GPFlags, OPTION_KEYS,
    EXT_FILE_ATTR_FILE, EXT_FILE_ATTR_DIR, normalizeFilePath,
)
from zipstreamer.Errors import UsageError, ZipStreamerError, SinkWriteError, ArchiveLimitError
from zipstreamer.Kernel import getLogger, ZipEvent
from zipstreamer.Records import (
    getEncodingFlags, makeLocalFileHeader, makeDataDescriptor, makeCentralDirHeader, makeEndRecords,
)
from zipstreamer.Settings import SettingsGetter, DEFAULT_ARCHIVE_NAME, DEFAULT_CONTENT_TYPE
from zipstreamer.Sinks import CountingSink
from zipstreamer.Sources import StreamSource, isReadableSource
from zipstreamer.Utils import formatSize

logger = getLogger(__name__)


def resolveEntryOptions(options, defaultCompress, defaultLevel) -> dict:
    """
    Validate per-entry options and fill in the defaults

    Raises:
        UsageError: Unknown key, bad timestamp/comment, unknown method or level
        ConfigurationError: Deflate requested without a deflate backend
    """
    options = options or {}

    unknown = [key for key in options if key not in OPTION_KEYS]
    if unknown:
        raise UsageError(f"Invalid option(s): {', '.join(map(str, unknown))}")

    timestamp = options.get('timestamp') or 0
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
        raise UsageError(f"Invalid option {timestamp!r} (timestamp)")

    comment = options.get('comment')
    if comment is not None and not isinstance(comment, str):
        raise UsageError(f"Invalid option {comment!r} (comment)")

    method, level = validateCompressionOptions(
        options.get('compress', defaultCompress), options.get('level', defaultLevel)
    )

    return {'timestamp': int(timestamp), 'comment': comment, 'compress': method, 'level': level}


def resolveChunkSize(chunkSize) -> int:
    """Chunk size argument or the configured default; must be a positive int"""
    if chunkSize is None:
        return SettingsGetter.getInstance().getChunkSize()

    if isinstance(chunkSize, bool) or not isinstance(chunkSize, int) or chunkSize <= 0:
        raise UsageError(f"Invalid chunk size {chunkSize!r}")

    return chunkSize


class ArchiveWriter:
    """
    Streams a ZIP archive to a forward-only sink while entries are appended

    Every byte is written as soon as it is produced: the local file header when an
    entry starts, the (compressed) data chunk by chunk, then the data descriptor.
    The central directory is kept in memory as ArchiveEntry objects and written by
    finalize(). Nothing is ever seeked or rewritten.

    State-machine misuse (appending after finalize, two open files, closing with
    no open file, ...) returns False and logs a warning. Invalid options raise
    UsageError; unavailable codecs raise ConfigurationError. A source or sink
    failure after an entry started leaves the writer broken: the error propagates
    and every later call, finalize() included, returns False.
    """

    def __init__(
        self, sink=None, zip64: bool = None, compress=None, level=None, chunkSize: int = None, beginResponse=None
    ):
        """
        Args:
            sink: Object with write(bytes) and flush(); defaults to stdout
            zip64: Emit zip64 records (defaults to ZIPSTREAMER_ZIP64)
            compress: Default compression method for file entries ('store', 'deflate' or CompressionMethod)
            level: Default compression level ('none', 'normal', 'maximum', 'superfast' or CompressionLevel)
            chunkSize: Bytes read from a source per step (defaults to ZIPSTREAMER_CHUNK_SIZE)
            beginResponse: Callable(name, contentType) used by sendHeaders()
        """
        settings = SettingsGetter.getInstance()

        self._zip64 = settings.isZip64() if zip64 is None else bool(zip64)
        self.chunkSize = resolveChunkSize(chunkSize)
        self.compress, self.level = validateCompressionOptions(
            settings.getCompression() if compress is None else compress,
            settings.getLevel() if level is None else level,
        )
        self.beginResponse = beginResponse

        self._sink = CountingSink(sink if sink is not None else sys.stdout.buffer)
        self._entries = []
        self._finalized = False
        self._broken = False
        self._headersSent = False

        # In-flight entry of the caller-driven API
        self._openEntry = None
        self._openCompressor = None
        self._openChecksum = None

    @property
    def offset(self) -> int:
        """Running archive offset; always equals the number of bytes written"""
        return self._sink.count

    @property
    def entries(self) -> list:
        return self._entries

    @property
    def isFinalized(self) -> bool:
        return self._finalized

    @property
    def isBroken(self) -> bool:
        """True once a source or sink failed mid-entry; the archive can no longer be completed"""
        return self._broken

    @property
    def isFileOpen(self) -> bool:
        return self._openEntry is not None

    @property
    def zip64(self) -> bool:
        return self._zip64

    def sendHeaders(self, archiveName: str = DEFAULT_ARCHIVE_NAME, contentType: str = DEFAULT_CONTENT_TYPE) -> bool:
        """
        Ask the HTTP layer to start the download response

        Only possible before the first archive byte has been written.
        """
        if self.beginResponse is None:
            logger.warning("Unable to send headers: no beginResponse capability configured")
            return False

        if self._headersSent or self.offset > 0:
            logger.warning(f"Unable to send headers for {archiveName}: response already started")
            return False

        self.beginResponse(archiveName, contentType)
        self._headersSent = True
        return True

    def addFileFromStream(self, source, path: str, options: dict = None) -> bool:
        """
        Add a file whose content is read from source in chunks

        The local header carries the ADD flag; CRC and sizes follow the data in a
        data descriptor.

        Args:
            source: Path, bytes, readable binary stream or callable (see Sources)
            path: Path of the entry inside the archive
            options: timestamp, comment, compress, level

        Returns:
            bool: False when the archive is finalized, a file is open or the source is unreadable
        """
        if not self._canAppend(path):
            return False

        if not isReadableSource(source):
            logger.warning(f"Unable to add {path}: source {source!r} is not readable")
            return False

        if not self.addFileOpen(path, options):
            return False

        try:
            for chunk in StreamSource(source, name=path).iterChunks(self.chunkSize):
                self._writeOpenData(chunk)
        except ZipStreamerError as e:
            self._markBroken(f"Streaming {path} failed at offset {self.offset}: {e}")
            raise

        return self.addFileClose()

    def addFileFromString(self, data, path: str, options: dict = None) -> bool:
        """
        Add a file from an in-memory buffer

        Sizes and CRC are known up front, so they go straight into the local header
        and no data descriptor is written.
        """
        if not self._canAppend(path):
            return False

        if isinstance(data, str):
            data = data.encode('utf-8')
        elif isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        elif not isinstance(data, bytes):
            logger.warning(f"Unable to add {path}: data must be bytes or str, got {type(data).__name__}")
            return False

        entry = self._createEntry(path, options, isDirectory=False)

        compressor = createCompressionStream(entry.compressionMethod, entry.compressionLevel)
        compressed = compressor.update(data) + compressor.finish()

        entry.uncompressedSize = len(data)
        entry.compressedSize = len(compressed)
        entry.crc32 = Crc32().update(data).final()

        self._write(makeLocalFileHeader(entry, self._zip64))
        self._write(compressed)
        self._appendEntry(entry)
        return True

    def addFileOpen(self, path: str, options: dict = None) -> bool:
        """Start a caller-driven entry; feed it with addFileWrite() and end it with addFileClose()"""
        if not self._canAppend(path):
            return False

        entry = self._createEntry(path, options, isDirectory=False)
        entry.generalPurposeFlags |= GPFlags.ADD

        compressor = createCompressionStream(entry.compressionMethod, entry.compressionLevel)

        self._write(makeLocalFileHeader(entry, self._zip64))

        self._openEntry = entry
        self._openCompressor = compressor
        self._openChecksum = Crc32()
        return True

    def addFileWrite(self, chunk) -> bool:
        if self._broken:
            logger.warning("Unable to write data: archive is broken")
            return False

        if not self.isFileOpen:
            logger.warning("Unable to write data: no file is open")
            return False

        if isinstance(chunk, str):
            chunk = chunk.encode('utf-8')

        self._writeOpenData(chunk)
        return True

    def addFileClose(self) -> bool:
        if self._broken:
            logger.warning("Unable to close file: archive is broken")
            return False

        if not self.isFileOpen:
            logger.warning("Unable to close file: no file is open")
            return False

        entry = self._openEntry
        tail = self._openCompressor.finish()
        entry.compressedSize += len(tail)
        entry.crc32 = self._openChecksum.final()

        try:
            descriptor = makeDataDescriptor(entry, self._zip64)
        except ArchiveLimitError as e:
            self._markBroken(f"Unable to close {entry.path}: {e}")
            raise

        self._write(tail + descriptor)

        self._openEntry = None
        self._openCompressor = None
        self._openChecksum = None

        self._appendEntry(entry)
        return True

    def addEmptyDir(self, path: str, options: dict = None) -> bool:
        """Add a directory entry: trailing slash, no data, Store, no data descriptor"""
        if not self._canAppend(path):
            return False

        if not normalizeFilePath(path):
            logger.warning(f"Unable to add directory {path!r}: empty path")
            return False

        entry = self._createEntry(path, options, isDirectory=True)
        self._write(makeLocalFileHeader(entry, self._zip64))
        self._appendEntry(entry)
        return True

    def finalize(self) -> bool:
        """
        Write the central directory and end records. Only the first call does anything.

        A file still open through addFileOpen() is closed first. Every record is
        built before the first byte is written, so a limit error leaves the sink
        untouched.
        """
        if self._broken:
            logger.warning("Unable to finalize: archive is broken")
            return False

        if self._finalized:
            logger.warning("Archive is already finalized")
            return False

        if self.isFileOpen:
            logger.warning(f"Closing {self._openEntry.path} before finalizing")
            self.addFileClose()

        centralDirStart = self.offset
        centralDir = b''.join(makeCentralDirHeader(entry, self._zip64) for entry in self._entries)
        endRecords = makeEndRecords(len(self._entries), len(centralDir), centralDirStart, self._zip64)

        self._write(centralDir + endRecords)
        try:
            self._sink.flush()
        except SinkWriteError as e:
            self._markBroken(f"Flushing the sink failed at offset {self.offset}: {e}")
            raise

        self._finalized = True

        logger.debug(f"Archive finalized: {len(self._entries)} entries, {formatSize(self.offset)}")
        ZipEvent.archiveFinalize.trigger(size=self.offset, entries=self._entries)
        return True

    def _canAppend(self, path) -> bool:
        if self._broken:
            logger.warning(f"Unable to add {path}: archive is broken")
            return False

        if self._finalized:
            logger.warning(f"Unable to add {path}: archive is finalized")
            return False

        if self.isFileOpen:
            logger.warning(f"Unable to add {path}: {self._openEntry.path} is still open")
            return False

        return True

    def _createEntry(self, path: str, options, isDirectory: bool) -> ArchiveEntry:
        if not isinstance(path, str):
            raise UsageError(f"Invalid path {path!r}")

        resolved = resolveEntryOptions(options, self.compress, self.level)
        normalized = normalizeFilePath(path)

        if isDirectory:
            normalized += '/'
            method, level = CompressionMethod.STORE, CompressionLevel.NONE
            attributes = EXT_FILE_ATTR_DIR
        else:
            if not normalized:
                raise UsageError(f"Invalid path {path!r}")
            method, level = resolved['compress'], resolved['level']
            attributes = EXT_FILE_ATTR_FILE

        return ArchiveEntry(
            path=normalized,
            isDirectory=isDirectory,
            # Resolved once so local and central headers carry the same time
            timestamp=resolved['timestamp'] or int(time.time()),
            comment=resolved['comment'],
            compressionMethod=method,
            compressionLevel=level,
            generalPurposeFlags=getEncodingFlags(normalized, resolved['comment']) | getCompressionFlags(method, level),
            localHeaderOffset=self.offset,
            externalFileAttributes=attributes,
        )

    def _writeOpenData(self, chunk: bytes):
        if not chunk:
            return
        self._openChecksum.update(chunk)
        self._openEntry.uncompressedSize += len(chunk)
        self._writeCompressed(self._openCompressor.update(chunk))

    def _writeCompressed(self, data: bytes):
        self._openEntry.compressedSize += len(data)
        self._write(data)

    def _appendEntry(self, entry: ArchiveEntry):
        self._entries.append(entry)
        logger.debug(
            f"Added {entry.path} at offset {entry.localHeaderOffset} "
            f"({formatSize(entry.uncompressedSize)} -> {formatSize(entry.compressedSize)})"
        )
        ZipEvent.entryCreate.trigger(entry=entry)

    def _markBroken(self, reason: str):
        if not self._broken:
            logger.error(f"{reason}; archive is corrupt and cannot be finalized")
        self._broken = True

    def _write(self, data: bytes):
        try:
            self._sink.write(data)
        except SinkWriteError as e:
            self._markBroken(f"Writing to the sink failed at offset {self.offset}: {e}")
            raise
