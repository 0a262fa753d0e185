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

import io
import os
import zlib
import shutil
import zipfile
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from zipstreamer import Settings
from zipstreamer.Codec import unpackU16LE, unpackU32LE, unpackU64LE
from zipstreamer.Compression import getDeflateBackend, setDeflateBackend
from zipstreamer.Entry import CompressionMethod
from zipstreamer.Errors import ConfigurationError, UsageError, SourceReadError, SinkWriteError, ArchiveLimitError
from zipstreamer.Kernel import ZipEvent
from zipstreamer.Sinks import CountingSink
from zipstreamer.Writer import ArchiveWriter

TIMESTAMP = 1700000000


class ArchiveWriterTest(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.output = io.BytesIO()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _createWriter(self, **kwargs):
        kwargs.setdefault('zip64', True)
        return ArchiveWriter(sink=self.output, **kwargs)

    def _openZip(self):
        return zipfile.ZipFile(io.BytesIO(self.output.getvalue()))

    def _writeFile(self, name, content):
        path = os.path.join(self.tmpdir, name)
        with open(path, 'wb') as f:
            f.write(content)
        return path

    def testRoundTrip(self):
        for zip64 in (True, False):
            with self.subTest(zip64=zip64):
                self.output = io.BytesIO()
                big = os.urandom(300000)
                path = self._writeFile('big.bin', big)

                writer = self._createWriter(zip64=zip64, chunkSize=65536)
                self.assertTrue(writer.addFileFromString(b'hello world', 'hello.txt'))
                self.assertTrue(writer.addEmptyDir('folder'))
                self.assertTrue(writer.addFileFromStream(path, 'folder/big.bin'))
                self.assertTrue(writer.addFileFromStream(io.BytesIO(b'x' * 1000), 'x.txt', {'compress': 'deflate'}))
                self.assertTrue(writer.finalize())

                with self._openZip() as zf:
                    self.assertIsNone(zf.testzip())
                    self.assertEqual(zf.namelist(), ['hello.txt', 'folder/', 'folder/big.bin', 'x.txt'])
                    self.assertTrue(zf.getinfo('folder/').is_dir())
                    self.assertEqual(zf.read('hello.txt'), b'hello world')
                    self.assertEqual(zf.read('folder/big.bin'), big)
                    self.assertEqual(zf.read('x.txt'), b'x' * 1000)
                    self.assertEqual(zf.getinfo('x.txt').compress_type, zipfile.ZIP_DEFLATED)

                print(f"[Test] Round trip (zip64={zip64}) passed, {writer.offset} bytes")

    def testOffsetTracksBytesWritten(self):
        counter = CountingSink(self.output)
        writer = ArchiveWriter(sink=counter, zip64=True)

        writer.addFileFromString('first', 'a.txt')
        self.assertEqual(writer.offset, counter.count)
        writer.addFileFromStream(b'second' * 100, 'b.txt')
        self.assertEqual(writer.offset, counter.count)
        writer.addEmptyDir('c')
        self.assertEqual(writer.offset, counter.count)
        writer.finalize()

        self.assertEqual(writer.offset, counter.count)
        self.assertEqual(counter.count, len(self.output.getvalue()))
        self.assertEqual([e.localHeaderOffset for e in writer.entries][0], 0)

        offsets = [e.localHeaderOffset for e in writer.entries]
        self.assertEqual(offsets, sorted(offsets))

    def testEntryCrcAndCount(self):
        payloads = {'a.txt': b'alpha', 'b.txt': b'', 'c.txt': os.urandom(5000)}
        writer = self._createWriter()
        for name, data in payloads.items():
            writer.addFileFromStream(data, name)
        writer.addEmptyDir('d')
        writer.finalize()

        self.assertEqual(len(writer.entries), 4)
        for entry in writer.entries[:3]:
            self.assertEqual(entry.crc32, zlib.crc32(payloads[entry.path]))
            self.assertEqual(entry.uncompressedSize, len(payloads[entry.path]))

        with self._openZip() as zf:
            self.assertEqual(len(zf.infolist()), 4)

    def testKnownLengthHeaderSizes(self):
        data = b'known length content'
        writer = self._createWriter(zip64=False)
        writer.addFileFromString(data, 'k.txt')
        written = self.output.getvalue()

        # No data descriptor: flags without ADD, sizes and CRC in the local header
        self.assertEqual(unpackU16LE(written, 6) & 0x0008, 0)
        self.assertEqual(unpackU32LE(written, 14), zlib.crc32(data))
        self.assertEqual(unpackU32LE(written, 18), len(data))
        self.assertEqual(unpackU32LE(written, 22), len(data))
        self.assertEqual(len(written), 30 + 5 + len(data))

        writer.finalize()
        with self._openZip() as zf:
            info = zf.getinfo('k.txt')
            self.assertEqual(info.file_size, len(data))
            self.assertEqual(info.compress_size, len(data))

    def testKnownLengthHeaderSizesZip64(self):
        data = b'known length content'
        writer = self._createWriter(zip64=True)
        writer.addFileFromString(data, 'k.txt')
        written = self.output.getvalue()

        self.assertEqual(unpackU32LE(written, 18), 0xFFFFFFFF)
        self.assertEqual(unpackU32LE(written, 22), 0xFFFFFFFF)
        self.assertEqual(unpackU16LE(written, 28), 32)
        self.assertEqual(unpackU64LE(written, 35 + 4), len(data))
        self.assertEqual(unpackU64LE(written, 35 + 12), len(data))
        self.assertEqual(unpackU64LE(written, 35 + 20), 0)
        self.assertEqual(len(written), 30 + 5 + 32 + len(data))

    def testStreamedHeaderDefersSizes(self):
        writer = self._createWriter(zip64=False)
        writer.addFileFromStream(b'streamed', 's.txt')
        written = self.output.getvalue()

        self.assertEqual(unpackU16LE(written, 6) & 0x0008, 0x0008)
        self.assertEqual(unpackU32LE(written, 14), 0)
        self.assertEqual(unpackU32LE(written, 18), 0)
        self.assertEqual(written[-16:-12], b'PK\x07\x08')
        self.assertEqual(unpackU32LE(written, len(written) - 12), zlib.crc32(b'streamed'))
        self.assertEqual(unpackU32LE(written, len(written) - 4), len(b'streamed'))

    def testSingleSmallFileWithoutZip64(self):
        writer = self._createWriter(zip64=False)
        writer.addFileFromStream(b'hello', 'a.txt')
        writer.finalize()
        written = self.output.getvalue()

        centralDirOffset = unpackU32LE(written, len(written) - 6)
        self.assertEqual(centralDirOffset, 30 + len('a.txt') + len(b'hello') + 16)
        self.assertEqual(written[centralDirOffset:centralDirOffset + 4], b'PK\x01\x02')

    def testThreeEntryScenario(self):
        writer = self._createWriter()
        writer.addFileFromString(b'', 'empty.txt')
        writer.addEmptyDir('dir')
        writer.addFileFromStream(b'compress me ' * 200, 'dir/deflated.txt', {'compress': 'deflate'})
        writer.finalize()

        with self._openZip() as zf:
            self.assertEqual(len(zf.infolist()), 3)
            self.assertIsNone(zf.testzip())
            self.assertEqual(zf.read('empty.txt'), b'')
            self.assertLess(zf.getinfo('dir/deflated.txt').compress_size, 200 * 12)

    def testChunkSizeMultiple(self):
        data = os.urandom(16 * 8)
        with patch.object(Settings, 'STREAM_CHUNK_SIZE', 16):
            writer = self._createWriter()
            self.assertEqual(writer.chunkSize, 16)

        writer.addFileFromStream(io.BytesIO(data), 'exact.bin')
        writer.finalize()

        with self._openZip() as zf:
            self.assertEqual(zf.read('exact.bin'), data)

    def testFinalizeTwice(self):
        writer = self._createWriter()
        writer.addFileFromString(b'data', 'a.txt')
        self.assertTrue(writer.finalize())
        size = len(self.output.getvalue())

        self.assertFalse(writer.finalize())
        self.assertEqual(len(self.output.getvalue()), size)
        self.assertTrue(writer.isFinalized)

    def testRejectionsAfterFinalize(self):
        writer = self._createWriter()
        writer.finalize()
        size = len(self.output.getvalue())

        self.assertFalse(writer.addFileFromString(b'data', 'a.txt'))
        self.assertFalse(writer.addFileFromStream(b'data', 'b.txt'))
        self.assertFalse(writer.addEmptyDir('c'))
        self.assertFalse(writer.addFileOpen('d.txt'))
        self.assertEqual(len(self.output.getvalue()), size)

        with self._openZip() as zf:
            self.assertEqual(zf.namelist(), [])

    def testCallerDrivenEntry(self):
        writer = self._createWriter()
        self.assertFalse(writer.addFileWrite(b'nothing open'))
        self.assertFalse(writer.addFileClose())

        self.assertTrue(writer.addFileOpen('manual.txt', {'compress': 'deflate', 'level': 'maximum'}))
        self.assertTrue(writer.isFileOpen)
        self.assertFalse(writer.addFileOpen('other.txt'))
        self.assertFalse(writer.addFileFromString(b'x', 'other.txt'))

        self.assertTrue(writer.addFileWrite(b'part one, '))
        self.assertTrue(writer.addFileWrite('part two'))
        self.assertTrue(writer.addFileClose())
        self.assertFalse(writer.isFileOpen)
        writer.finalize()

        with self._openZip() as zf:
            self.assertEqual(zf.read('manual.txt'), b'part one, part two')
            self.assertEqual(zf.getinfo('manual.txt').flag_bits & 0x0006, 0x0002)

    def testFinalizeClosesOpenFile(self):
        writer = self._createWriter()
        writer.addFileOpen('open.txt')
        writer.addFileWrite(b'unfinished')
        self.assertTrue(writer.finalize())

        with self._openZip() as zf:
            self.assertEqual(zf.read('open.txt'), b'unfinished')

    def testInvalidInputs(self):
        writer = self._createWriter()

        self.assertFalse(writer.addFileFromString(12345, 'number.txt'))
        self.assertFalse(writer.addFileFromStream(os.path.join(self.tmpdir, 'missing'), 'missing.txt'))
        self.assertFalse(writer.addEmptyDir(''))
        self.assertFalse(writer.addEmptyDir('//'))

        with self.assertRaises(UsageError):
            writer.addFileFromString(b'x', 'x.txt', {'mode': 0o644})
        with self.assertRaises(UsageError):
            writer.addFileFromString(b'x', 'x.txt', {'compress': 'lzma'})
        with self.assertRaises(UsageError):
            writer.addFileFromString(b'x', 'x.txt', {'level': 'extreme'})
        with self.assertRaises(UsageError):
            writer.addFileFromString(b'x', '/')

        self.assertEqual(writer.offset, 0)
        self.assertEqual(writer.entries, [])

    def testDeflateWithoutBackend(self):
        originalBackend = getDeflateBackend()
        setDeflateBackend(None)
        try:
            with self.assertRaises(ConfigurationError):
                self._createWriter(compress='deflate', level='normal')

            writer = self._createWriter(compress='deflate', level='none')
            with self.assertRaises(ConfigurationError):
                writer.addFileFromString(b'x', 'x.txt', {'level': 'superfast'})

            writer.addFileFromString(b'stored blocks ' * 10000, 'blocks.txt')
            writer.finalize()
        finally:
            setDeflateBackend(originalBackend)

        with self._openZip() as zf:
            self.assertEqual(zf.read('blocks.txt'), b'stored blocks ' * 10000)
            self.assertEqual(zf.getinfo('blocks.txt').compress_type, zipfile.ZIP_DEFLATED)

    def testLevelFlags(self):
        writer = self._createWriter()
        writer.addFileFromString(b'a' * 100, 'normal.txt', {'compress': 'deflate', 'level': 'normal'})
        writer.addFileFromString(b'a' * 100, 'maximum.txt', {'compress': 'deflate', 'level': 'maximum'})
        writer.addFileFromString(b'a' * 100, 'superfast.txt', {'compress': 'deflate', 'level': 'superfast'})
        writer.addFileFromString(b'a' * 100, 'store.txt', {'compress': CompressionMethod.STORE})
        writer.finalize()

        with self._openZip() as zf:
            flags = {info.filename: info.flag_bits & 0x0006 for info in zf.infolist()}
            self.assertEqual(flags, {'normal.txt': 0, 'maximum.txt': 2, 'superfast.txt': 6, 'store.txt': 0})
            self.assertIsNone(zf.testzip())

    def testNamesAndAttributes(self):
        writer = self._createWriter()
        writer.addFileFromString(b'data', '\\windows\\style\\path.txt')
        writer.addFileFromString(b'data', 'überraschung.txt', {'timestamp': TIMESTAMP})
        writer.addEmptyDir('/nested/dir/')
        writer.finalize()

        with self._openZip() as zf:
            self.assertEqual(zf.namelist(), ['windows/style/path.txt', 'überraschung.txt', 'nested/dir/'])

            self.assertEqual(zf.getinfo('windows/style/path.txt').flag_bits & 0x0800, 0)
            self.assertEqual(zf.getinfo('überraschung.txt').flag_bits & 0x0800, 0x0800)
            self.assertEqual(zf.getinfo('überraschung.txt').date_time, (2023, 11, 14, 22, 13, 20))

            self.assertEqual(zf.getinfo('windows/style/path.txt').external_attr, 0x81A40000)
            self.assertEqual(zf.getinfo('nested/dir/').external_attr, 0x41ED0010)

    def testChunkProducerSource(self):
        chunks = [b'one ', b'two ', b'three', b'']

        writer = self._createWriter()
        writer.addFileFromStream(lambda: chunks.pop(0), 'chunks.txt')
        writer.finalize()

        with self._openZip() as zf:
            self.assertEqual(zf.read('chunks.txt'), b'one two three')

    def testSourceFailureIsFatal(self):
        class FailingStream(io.RawIOBase):
            def __init__(self):
                super().__init__()
                self.calls = 0

            def readable(self):
                return True

            def read(self, size=-1):
                self.calls += 1
                if self.calls == 1:
                    return b'A' * 10
                raise OSError("disk went away")

        writer = self._createWriter()
        writer.addFileFromString(b'kept', 'kept.txt')
        with self.assertRaises(SourceReadError):
            writer.addFileFromStream(FailingStream(), 'truncated.bin')

        self.assertTrue(writer.isBroken)
        size = len(self.output.getvalue())

        self.assertFalse(writer.finalize())
        self.assertFalse(writer.addFileWrite(b'more'))
        self.assertFalse(writer.addFileClose())
        self.assertFalse(writer.addFileFromString(b'late', 'late.txt'))
        self.assertFalse(writer.addEmptyDir('late'))

        self.assertFalse(writer.isFinalized)
        self.assertEqual(len(self.output.getvalue()), size)
        self.assertEqual([entry.path for entry in writer.entries], ['kept.txt'])
        print(f"[Test] Writer stays broken after a source failure at offset {writer.offset}")

    def testSinkFailure(self):
        sink = MagicMock()
        sink.write.side_effect = OSError("connection reset")

        writer = ArchiveWriter(sink=sink)
        with self.assertRaises(SinkWriteError):
            writer.addFileFromString(b'data', 'a.txt')

        self.assertTrue(writer.isBroken)
        self.assertFalse(writer.finalize())
        self.assertEqual(sink.write.call_count, 1)

    def testSinkFailureDuringFinalize(self):
        class FailingFlushSink(io.BytesIO):
            def flush(self):
                raise OSError("connection reset")

        sink = FailingFlushSink()
        writer = ArchiveWriter(sink=sink, zip64=True)
        writer.addFileFromString(b'data', 'a.txt')

        with self.assertRaises(SinkWriteError):
            writer.finalize()

        size = len(sink.getvalue())
        self.assertTrue(writer.isBroken)
        self.assertFalse(writer.finalize())
        self.assertEqual(len(sink.getvalue()), size)

    def testEntryCountLimitLeavesSinkUntouched(self):
        writer = self._createWriter(zip64=False)
        for index in range(0x10000):
            writer.addEmptyDir(f'd{index}')
        size = len(self.output.getvalue())

        for attempt in range(2):
            with self.assertRaises(ArchiveLimitError):
                writer.finalize()
            self.assertEqual(len(self.output.getvalue()), size)

        self.assertFalse(writer.isFinalized)
        self.assertFalse(writer.isBroken)

    def testInvalidChunkSize(self):
        for chunkSize in (0, -1, 1.5, True):
            with self.subTest(chunkSize=chunkSize):
                with self.assertRaises(UsageError):
                    self._createWriter(chunkSize=chunkSize)

    def testSendHeaders(self):
        beginResponse = MagicMock()

        writer = self._createWriter(beginResponse=beginResponse)
        self.assertTrue(writer.sendHeaders())
        beginResponse.assert_called_once_with('archive.zip', 'application/zip')
        self.assertFalse(writer.sendHeaders('again.zip'))

        writer = self._createWriter(beginResponse=beginResponse)
        writer.addFileFromString(b'data', 'a.txt')
        self.assertFalse(writer.sendHeaders('late.zip'))

        self.assertFalse(self._createWriter().sendHeaders())

    def testEvents(self):
        created = []
        finalized = []

        def onEntryCreate(entry, **kwargs):
            created.append(entry.path)

        def onFinalize(size, **kwargs):
            finalized.append(size)

        ZipEvent.entryCreate.subscribe(onEntryCreate)
        ZipEvent.archiveFinalize.subscribe(onFinalize)
        try:
            writer = self._createWriter()
            writer.addFileFromString(b'data', 'a.txt')
            writer.addEmptyDir('b')
            writer.finalize()
        finally:
            ZipEvent.entryCreate.unsubscribe(onEntryCreate)
            ZipEvent.archiveFinalize.unsubscribe(onFinalize)

        self.assertEqual(created, ['a.txt', 'b/'])
        self.assertEqual(finalized, [len(self.output.getvalue())])


if __name__ == '__main__':
    unittest.main()
