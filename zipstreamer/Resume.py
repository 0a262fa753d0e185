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
Deferred archive streaming with byte-range resume

Entries are registered first, finalize() lays the whole archive out without
producing any data, and startStreaming() then emits the bytes from an optional
resume offset to the end. Bytes before the resume offset are never sent again;
the sources behind them are only re-read to recompute the CRCs the data
descriptors and central directory need.
"""

import sys
import time

from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Iterator, Optional

from zipstreamer.Checksum import Crc32
from zipstreamer.Entry import (
    ArchiveEntry, CompressionMethod, CompressionLevel, GPFlags, EXT_FILE_ATTR_FILE, EXT_FILE_ATTR_DIR,
    normalizeFilePath,
)
from zipstreamer.Errors import UsageError, SourceReadError
from zipstreamer.Kernel import getLogger, ZipEvent
from zipstreamer.Progress import StreamProgress
from zipstreamer.Records import (
    getEncodingFlags, makeLocalFileHeader, makeDataDescriptor, makeCentralDirHeader,
    makeZip64EndOfCentralDir, makeZip64Locator, makeEndOfCentralDir, makeEndRecords,
    calculateLocalFileHeaderLength, calculateDataDescriptorLength, calculateCentralDirHeaderLength,
    ZIP64_END_OF_CENTRAL_DIR_LENGTH, ZIP64_END_OF_CENTRAL_DIR_LOCATOR_LENGTH, END_OF_CENTRAL_DIR_LENGTH,
)
from zipstreamer.Settings import SettingsGetter
from zipstreamer.Sinks import CountingSink, DiscardSink
from zipstreamer.Sources import StreamSource, isReadableSource
from zipstreamer.Utils import formatSize
from zipstreamer.Writer import resolveEntryOptions, resolveChunkSize

logger = getLogger(__name__)


class SegmentType(Enum):
    """Archive segment kinds, in stream order"""
    LFH = auto()  # Local File Header
    FILE_DATA = auto()  # File data content
    DESCRIPTOR = auto()  # Data descriptor
    CENTRAL_DIR = auto()  # Central directory header
    ZIP64_EOCD = auto()  # Zip64 End of Central Directory
    ZIP64_LOCATOR = auto()  # Zip64 End of Central Directory Locator
    EOCD = auto()  # End of Central Directory


@dataclass
class Segment:
    type: SegmentType
    offset: int
    length: int
    entryIndex: Optional[int] = None

    @property
    def end(self) -> int:
        return self.offset + self.length


class SegmentIndex:
    """
    Coordinate table of the archive: offset and length of every segment

    Only offsets are computed here; the bytes are generated while streaming.
    """

    def __init__(self, segments: list, totalSize: int, centralDirStart: int, centralDirSize: int):
        self.segments = segments
        self.totalSize = totalSize
        self.centralDirStart = centralDirStart
        self.centralDirSize = centralDirSize

    @classmethod
    def build(cls, entries: list, dataSizes: list, zip64: bool) -> 'SegmentIndex':
        """
        Lay out the archive; sets localHeaderOffset on every entry

        Args:
            entries: ArchiveEntry list in archive order
            dataSizes: Declared data size of each entry (0 for directories)
            zip64: Whether zip64 records are emitted
        """
        segments = []
        offset = 0

        # Phase 1: LFH + DATA + DD of each entry
        for index, entry in enumerate(entries):
            entry.localHeaderOffset = offset

            lfhLength = calculateLocalFileHeaderLength(entry, zip64)
            segments.append(Segment(SegmentType.LFH, offset, lfhLength, index))
            offset += lfhLength

            if entry.isDirectory:
                continue

            fileSize = dataSizes[index]
            if fileSize > 0:
                segments.append(Segment(SegmentType.FILE_DATA, offset, fileSize, index))
                offset += fileSize

            descriptorLength = calculateDataDescriptorLength(zip64)
            segments.append(Segment(SegmentType.DESCRIPTOR, offset, descriptorLength, index))
            offset += descriptorLength

        # Phase 2: central directory
        centralDirStart = offset
        for index, entry in enumerate(entries):
            cdHeaderLength = calculateCentralDirHeaderLength(entry, zip64)
            segments.append(Segment(SegmentType.CENTRAL_DIR, offset, cdHeaderLength, index))
            offset += cdHeaderLength
        centralDirSize = offset - centralDirStart

        # Phase 3: end records
        if zip64:
            segments.append(Segment(SegmentType.ZIP64_EOCD, offset, ZIP64_END_OF_CENTRAL_DIR_LENGTH))
            offset += ZIP64_END_OF_CENTRAL_DIR_LENGTH

            segments.append(Segment(SegmentType.ZIP64_LOCATOR, offset, ZIP64_END_OF_CENTRAL_DIR_LOCATOR_LENGTH))
            offset += ZIP64_END_OF_CENTRAL_DIR_LOCATOR_LENGTH

        segments.append(Segment(SegmentType.EOCD, offset, END_OF_CENTRAL_DIR_LENGTH))
        offset += END_OF_CENTRAL_DIR_LENGTH

        logger.debug(f"SegmentIndex built: totalSize={offset}, entries={len(entries)}, segments={len(segments)}")

        return cls(segments, offset, centralDirStart, centralDirSize)

    def locate(self, offset: int) -> dict:
        """
        Find the segment containing offset (binary search)

        Returns:
            dict: {'segment': Segment, 'offsetInSegment': int, 'segmentIndex': int}

        Raises:
            ValueError: If offset is out of range
        """
        if offset < 0 or offset >= self.totalSize:
            raise ValueError(f"Offset {offset} out of range [0, {self.totalSize})")

        left, right = 0, len(self.segments) - 1

        while left <= right:
            mid = (left + right) // 2
            segment = self.segments[mid]

            if offset < segment.offset:
                right = mid - 1
            elif offset >= segment.end:
                left = mid + 1
            else:
                return {'segment': segment, 'offsetInSegment': offset - segment.offset, 'segmentIndex': mid}

        raise ValueError(f"No segment found for offset {offset}")


class ResumeController:
    """
    Register, finalize, then stream (optionally from a resume offset)

        controller = ResumeController(sink)
        controller.addFileFromStream('/data/a.bin', 'a.bin')
        controller.addEmptyDir('docs')
        controller.finalize()
        controller.resumeAt(rangeStart)
        controller.startStreaming()

    Entries are always stored (no compression) so the layout is known before any
    data is read. Sources must be re-readable for resume to work.
    """

    def __init__(self, sink=None, zip64: bool = None, chunkSize: int = None):
        settings = SettingsGetter.getInstance()

        self._zip64 = settings.isZip64() if zip64 is None else bool(zip64)
        self.chunkSize = resolveChunkSize(chunkSize)
        self.sink = sink if sink is not None else sys.stdout.buffer

        self._entries = []
        self._sources = []
        self._dataSizes = []

        self._segmentIndex = None
        self._resumeOffset = 0
        self._streaming = False

    @property
    def entries(self) -> list:
        return self._entries

    @property
    def zip64(self) -> bool:
        return self._zip64

    @property
    def isFinalized(self) -> bool:
        return self._segmentIndex is not None

    @property
    def isStreaming(self) -> bool:
        return self._streaming

    @property
    def resumeOffset(self) -> int:
        return self._resumeOffset

    def addFileFromStream(self, source, path: str, size: int = None, options: dict = None) -> bool:
        """
        Register a file

        Args:
            source: Path, bytes, readable binary stream or opener callable
            path: Path of the entry inside the archive
            size: Exact byte count of the source; detected for paths, buffers and seekable streams
            options: timestamp, comment ('compress' may only be store)

        Raises:
            UsageError: Invalid options, compression requested, or size unknown
        """
        if self.isFinalized:
            logger.warning(f"Unable to add {path}: archive is finalized")
            return False

        if not isReadableSource(source):
            logger.warning(f"Unable to add {path}: source {source!r} is not readable")
            return False

        entry = self._createEntry(path, options, isDirectory=False)

        streamSource = StreamSource(source, name=entry.path)
        if size is None:
            size = streamSource.getSize()
            if size is None:
                raise UsageError(f"Unable to determine the size of {path}; pass size explicitly")
        elif isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise UsageError(f"Invalid size {size!r} for {path}")

        self._register(entry, streamSource, size)
        return True

    def addEmptyDir(self, path: str, options: dict = None) -> bool:
        if self.isFinalized:
            logger.warning(f"Unable to add directory {path}: archive is finalized")
            return False

        if not isinstance(path, str) or not normalizeFilePath(path):
            logger.warning(f"Unable to add directory {path!r}: empty path")
            return False

        self._register(self._createEntry(path, options, isDirectory=True), None, 0)
        return True

    def finalize(self) -> bool:
        """
        Compute the archive layout (dry run); no byte is written

        Raises:
            ArchiveLimitError: Archive needs zip64 but zip64 is disabled
        """
        if self.isFinalized:
            logger.warning("Archive is already finalized")
            return False

        if not self._entries:
            logger.warning("Unable to finalize: no entry registered")
            return False

        segmentIndex = SegmentIndex.build(self._entries, self._dataSizes, self._zip64)
        self._checkLayout(segmentIndex)

        self._segmentIndex = segmentIndex
        logger.debug(f"Archive layout ready: {len(self._entries)} entries, {formatSize(segmentIndex.totalSize)}")
        return True

    def getZipSize(self) -> Optional[int]:
        """Size of the complete archive; None before finalize or once streaming started"""
        if not self.isFinalized or self._streaming:
            return None
        return self._segmentIndex.totalSize

    def getContentLength(self) -> Optional[int]:
        """Bytes startStreaming() will emit; None before finalize or once streaming started"""
        if not self.isFinalized or self._streaming:
            return None
        return self._segmentIndex.totalSize - self._resumeOffset

    def resumeAt(self, offset: int) -> bool:
        """Start streaming at offset instead of 0; requires 0 < offset < archive size"""
        if not self.isFinalized or self._streaming:
            logger.warning(f"Unable to resume at {offset}: archive not finalized or already streaming")
            return False

        if isinstance(offset, bool) or not isinstance(offset, int) or not 0 < offset < self._segmentIndex.totalSize:
            logger.warning(f"Unable to resume at {offset}: out of range (0, {self._segmentIndex.totalSize})")
            return False

        self._resumeOffset = offset
        logger.debug(f"Resuming at {offset} of {self._segmentIndex.totalSize}")
        ZipEvent.streamResume.trigger(offset=offset, totalSize=self._segmentIndex.totalSize)
        return True

    def startStreaming(self, progress=None) -> bool:
        """
        Write the archive bytes from the resume offset to the end into the sink

        Args:
            progress: None, True for a tqdm bar, a StreamProgress, or a
                      callable(transferred, total)

        Raises:
            SourceReadError: A source produced a different byte count than registered
            SinkWriteError: Writing to the sink failed
        """
        if not self._canStream():
            return False

        contentLength = self._segmentIndex.totalSize - self._resumeOffset
        reporter = self._createProgress(progress, contentLength)

        sink = CountingSink(self.sink)
        try:
            for chunk in self._iterArchive(self._resumeOffset, self.chunkSize):
                sink.write(chunk)
                if reporter is not None:
                    reporter.update(sink.count)
            sink.flush()
        except (SourceReadError, OSError) as e:
            logger.error(f"Streaming failed after {sink.count} of {contentLength} bytes: {e}")
            raise
        finally:
            if isinstance(reporter, StreamProgress):
                reporter.finish()

        logger.debug(f"Streamed {formatSize(sink.count)} from offset {self._resumeOffset}")
        return True

    def iterChunks(self, chunkSize: int = None) -> Iterator[bytes]:
        """Yield the archive bytes from the resume offset to the end instead of writing them"""
        chunkSize = self.chunkSize if chunkSize is None else resolveChunkSize(chunkSize)
        if not self._canStream():
            return iter(())
        return self._iterArchive(self._resumeOffset, chunkSize)

    def _canStream(self) -> bool:
        if not self.isFinalized:
            logger.warning("Unable to stream: archive is not finalized")
            return False

        if self._streaming:
            logger.warning("Unable to stream: streaming already started")
            return False

        self._streaming = True
        return True

    def _createProgress(self, progress, contentLength):
        if progress is None or progress is False:
            return None

        if progress is True:
            return StreamProgress(contentLength, useBar=True)

        if isinstance(progress, StreamProgress):
            return progress

        if callable(progress):
            return _CallbackProgress(progress, contentLength)

        raise UsageError(f"Invalid progress {progress!r}")

    def _createEntry(self, path, options, isDirectory: bool) -> ArchiveEntry:
        if not isinstance(path, str):
            raise UsageError(f"Invalid path {path!r}")

        resolved = resolveEntryOptions(options, CompressionMethod.STORE, CompressionLevel.NONE)
        if resolved['compress'] != CompressionMethod.STORE:
            raise UsageError(f"Unable to add {path}: resumable archives only support store")

        normalized = normalizeFilePath(path)
        if isDirectory:
            normalized += '/'
        elif not normalized:
            raise UsageError(f"Invalid path {path!r}")

        flags = getEncodingFlags(normalized, resolved['comment'])
        if not isDirectory:
            flags |= GPFlags.ADD

        return ArchiveEntry(
            path=normalized,
            isDirectory=isDirectory,
            # Fixed at registration so a resumed run rebuilds identical headers
            timestamp=resolved['timestamp'] or int(time.time()),
            comment=resolved['comment'],
            compressionMethod=CompressionMethod.STORE,
            compressionLevel=CompressionLevel.NONE,
            generalPurposeFlags=flags,
            externalFileAttributes=EXT_FILE_ATTR_DIR if isDirectory else EXT_FILE_ATTR_FILE,
        )

    def _register(self, entry: ArchiveEntry, source, size: int):
        self._entries.append(entry)
        self._sources.append(source)
        self._dataSizes.append(size)

    def _checkLayout(self, segmentIndex: SegmentIndex):
        """Build every size-dependent record once so zip64 limits fail here, not mid-stream"""
        dryRun = DiscardSink()
        for index, entry in enumerate(self._entries):
            size = self._dataSizes[index]
            dryRun.write(makeCentralDirHeader(replace(entry, uncompressedSize=size, compressedSize=size), self._zip64))
            if not entry.isDirectory:
                dryRun.write(makeDataDescriptor(replace(entry, uncompressedSize=size, compressedSize=size), self._zip64))
        dryRun.write(makeEndRecords(
            len(self._entries), segmentIndex.centralDirSize, segmentIndex.centralDirStart, self._zip64
        ))

    def _iterArchive(self, start: int, chunkSize: int) -> Iterator[bytes]:
        """
        Generate the archive from start to the end

        The segment containing start is found by binary search and sliced. Data
        segments before it are still read so their CRC is known, but none of their
        bytes are emitted; header segments before it are skipped.
        """
        segmentIndex = self._segmentIndex
        buffer = bytearray()

        location = segmentIndex.locate(start)
        first = location['segmentIndex']

        for segment in segmentIndex.segments[:first]:
            if segment.type == SegmentType.FILE_DATA:
                yield from self._streamFileData(segment, segment.length, chunkSize, buffer)

        skip = location['offsetInSegment']
        for segment in segmentIndex.segments[first:]:
            if segment.type == SegmentType.FILE_DATA:
                yield from self._streamFileData(segment, skip, chunkSize, buffer)
            else:
                data = self._makeSegment(segment)
                buffer.extend(data[skip:] if skip > 0 else data)
                yield from self._yieldChunks(buffer, chunkSize)
            skip = 0

        # Yield final buffer
        if buffer:
            yield bytes(buffer)

    def _makeSegment(self, segment: Segment) -> bytes:
        segmentIndex = self._segmentIndex
        entry = self._entries[segment.entryIndex] if segment.entryIndex is not None else None

        if segment.type == SegmentType.LFH:
            # Streamed entries: CRC and sizes are 0 in the local header
            return makeLocalFileHeader(replace(entry, uncompressedSize=0, compressedSize=0, crc32=0), self._zip64)

        elif segment.type == SegmentType.DESCRIPTOR:
            return makeDataDescriptor(entry, self._zip64)

        elif segment.type == SegmentType.CENTRAL_DIR:
            return makeCentralDirHeader(entry, self._zip64)

        elif segment.type == SegmentType.ZIP64_EOCD:
            return makeZip64EndOfCentralDir(
                len(self._entries), segmentIndex.centralDirSize, segmentIndex.centralDirStart
            )

        elif segment.type == SegmentType.ZIP64_LOCATOR:
            return makeZip64Locator(segmentIndex.centralDirStart + segmentIndex.centralDirSize)

        elif segment.type == SegmentType.EOCD:
            return makeEndOfCentralDir(
                len(self._entries), segmentIndex.centralDirSize, segmentIndex.centralDirStart, self._zip64
            )

        raise RuntimeError(f"Unknown segment type: {segment.type}")

    def _streamFileData(self, segment: Segment, skip: int, chunkSize: int, buffer: bytearray):
        """
        Read the whole source, hash it, emit the bytes past skip

        Raises:
            SourceReadError: The source produced more or fewer bytes than registered
        """
        entry = self._entries[segment.entryIndex]
        source = self._sources[segment.entryIndex]
        fileSize = segment.length

        if skip >= fileSize:
            logger.debug(f"Rehashing {entry.path} ({formatSize(fileSize)}) before resume offset")

        checksum = Crc32()
        for chunk in source.iterChunks(chunkSize):
            consumed = checksum.length
            if consumed + len(chunk) > fileSize:
                raise SourceReadError(
                    f"{entry.path} is larger than its registered size {fileSize}", path=entry.path
                )

            checksum.update(chunk)

            if consumed + len(chunk) > skip:
                buffer.extend(chunk[max(0, skip - consumed):])
                yield from self._yieldChunks(buffer, chunkSize)

        if checksum.length != fileSize:
            raise SourceReadError(
                f"{entry.path} produced {checksum.length} bytes, registered size is {fileSize}", path=entry.path
            )

        entry.crc32 = checksum.final()
        entry.uncompressedSize = fileSize
        entry.compressedSize = fileSize

    def _yieldChunks(self, buffer: bytearray, chunkSize: int):
        while len(buffer) >= chunkSize:
            yield bytes(buffer[:chunkSize])
            del buffer[:chunkSize]


class _CallbackProgress:
    """Adapts a callable(transferred, total) to the StreamProgress interface"""

    def __init__(self, callback, totalSize):
        self.callback = callback
        self.totalSize = totalSize

    def update(self, bytesTransferred):
        self.callback(bytesTransferred, self.totalSize)
