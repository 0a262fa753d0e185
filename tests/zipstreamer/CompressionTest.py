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

import zlib
import unittest

from zipstreamer import Compression
from zipstreamer.Compression import (
    StoreStream, DeflateStoreStream, DeflateStream, createCompressionStream, validateCompressionOptions,
    parseCompressionMethod, parseCompressionLevel, getCompressionFlags, setDeflateBackend, getDeflateBackend,
)
from zipstreamer.Entry import CompressionMethod, CompressionLevel
from zipstreamer.Errors import ConfigurationError, UsageError


def inflate(data):
    return zlib.decompress(data, -zlib.MAX_WBITS)


class CompressionTest(unittest.TestCase):

    def setUp(self):
        self.originalBackend = getDeflateBackend()

    def tearDown(self):
        setDeflateBackend(self.originalBackend)

    def testStoreIsIdentity(self):
        stream = createCompressionStream(CompressionMethod.STORE, CompressionLevel.NORMAL)
        self.assertIsInstance(stream, StoreStream)
        self.assertEqual(stream.update(b'abc'), b'abc')
        self.assertEqual(stream.finish(), b'')

    def testDeflateLevels(self):
        data = b'zipstreamer ' * 5000
        for level in (CompressionLevel.NORMAL, CompressionLevel.MAXIMUM, CompressionLevel.SUPERFAST):
            stream = createCompressionStream(CompressionMethod.DEFLATE, level)
            self.assertIsInstance(stream, DeflateStream)

            output = b''.join(stream.update(data[pos:pos + 1000]) for pos in range(0, len(data), 1000))
            output += stream.finish()

            self.assertLess(len(output), len(data))
            self.assertEqual(inflate(output), data)

    def testStoredBlocksWithoutBackend(self):
        setDeflateBackend(None)
        data = bytes(range(256)) * 600  # more than one 65535-byte block

        stream = createCompressionStream(CompressionMethod.DEFLATE, CompressionLevel.NONE)
        self.assertIsInstance(stream, DeflateStoreStream)

        output = stream.update(data) + stream.finish()

        # 3 full blocks, 1 final empty block, 5 bytes of framing each
        self.assertEqual(len(output), len(data) + 5 * 4)
        self.assertEqual(output[-5:], b'\x01\x00\x00\xff\xff')
        self.assertEqual(inflate(output), data)

    def testDeflateWithoutBackendIsConfigurationError(self):
        setDeflateBackend(None)

        with self.assertRaises(ConfigurationError):
            DeflateStream(CompressionLevel.NORMAL)

        with self.assertRaises(ConfigurationError):
            validateCompressionOptions('deflate', 'maximum')

        # Store and deflate/none never need a codec
        self.assertEqual(
            validateCompressionOptions('deflate', 'none'), (CompressionMethod.DEFLATE, CompressionLevel.NONE)
        )
        self.assertEqual(
            validateCompressionOptions('store', 'normal'), (CompressionMethod.STORE, CompressionLevel.NORMAL)
        )

    def testCustomBackend(self):
        levels = []

        def backend(level):
            levels.append(level)
            return zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)

        setDeflateBackend(backend)
        stream = Compression.createCompressionStream(CompressionMethod.DEFLATE, CompressionLevel.SUPERFAST)

        self.assertEqual(inflate(stream.update(b'data') + stream.finish()), b'data')
        self.assertEqual(levels, [1])

    def testParseOptions(self):
        self.assertEqual(parseCompressionMethod('DEFLATE'), CompressionMethod.DEFLATE)
        self.assertEqual(parseCompressionMethod(0), CompressionMethod.STORE)
        self.assertEqual(parseCompressionLevel('SuperFast'), CompressionLevel.SUPERFAST)
        self.assertEqual(parseCompressionLevel(CompressionLevel.NONE), CompressionLevel.NONE)

        with self.assertRaises(UsageError):
            parseCompressionMethod('bzip2')
        with self.assertRaises(UsageError):
            parseCompressionMethod(12)
        with self.assertRaises(UsageError):
            parseCompressionLevel('ultra')

    def testCompressionFlags(self):
        self.assertEqual(getCompressionFlags(CompressionMethod.STORE, CompressionLevel.MAXIMUM), 0)
        self.assertEqual(getCompressionFlags(CompressionMethod.DEFLATE, CompressionLevel.NONE), 0x0000)
        self.assertEqual(getCompressionFlags(CompressionMethod.DEFLATE, CompressionLevel.NORMAL), 0x0000)
        self.assertEqual(getCompressionFlags(CompressionMethod.DEFLATE, CompressionLevel.MAXIMUM), 0x0002)
        self.assertEqual(getCompressionFlags(CompressionMethod.DEFLATE, CompressionLevel.SUPERFAST), 0x0006)


if __name__ == '__main__':
    unittest.main()
