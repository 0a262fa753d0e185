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

from zipstreamer.Codec import packU16LE
from zipstreamer.Entry import CompressionMethod, CompressionLevel, GPFlags
from zipstreamer.Errors import ConfigurationError, UsageError
from zipstreamer.Kernel import getLogger

logger = getLogger(__name__)

ZLIB_LEVELS = {
    CompressionLevel.NORMAL: 6,
    CompressionLevel.MAXIMUM: 9,
    CompressionLevel.SUPERFAST: 1,
}

DEFLATE_FLAGS = {
    CompressionLevel.NONE: GPFlags.DEFL_NORM,
    CompressionLevel.NORMAL: GPFlags.DEFL_NORM,
    CompressionLevel.MAXIMUM: GPFlags.DEFL_MAX,
    CompressionLevel.SUPERFAST: GPFlags.DEFL_SFAST,
}


def _zlibRawDeflate(level):
    return zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)


# Factory(level) -> object with compress(data) and flush(); None means no backend
_deflateBackend = _zlibRawDeflate


def setDeflateBackend(factory):
    """
    Replace the raw-deflate backend

    Args:
        factory: Callable taking a zlib level and returning an object with
                 compress(data) and flush(), or None to mark deflate unavailable
    """
    global _deflateBackend
    _deflateBackend = factory
    logger.debug(f"Deflate backend set to {factory!r}")


def getDeflateBackend():
    return _deflateBackend


class CompressionStream:
    """Incremental compressor owned by the single in-flight entry"""

    method = CompressionMethod.STORE

    def update(self, data: bytes) -> bytes:
        raise NotImplementedError

    def finish(self) -> bytes:
        raise NotImplementedError


class StoreStream(CompressionStream):
    """Identity transform"""

    def update(self, data: bytes) -> bytes:
        return data

    def finish(self) -> bytes:
        return b''


class DeflateStoreStream(CompressionStream):
    """
    Raw deflate made of stored (uncompressed) blocks only

    Used for deflate at level NONE, so it needs no codec. Each block is a
    one-byte header (BFINAL, BTYPE=00, padded), LEN and its one's complement NLEN,
    then up to 65535 bytes of data.
    """

    method = CompressionMethod.DEFLATE

    BLOCK_HEADER_NORMAL = 0x00
    BLOCK_HEADER_FINAL = 0x01

    MAX_UNCOMPRESSED_BLOCK_SIZE = 0xFFFF

    def update(self, data: bytes) -> bytes:
        result = bytearray()
        for pos in range(0, len(data), self.MAX_UNCOMPRESSED_BLOCK_SIZE):
            result += self._makeBlock(self.BLOCK_HEADER_NORMAL, data[pos:pos + self.MAX_UNCOMPRESSED_BLOCK_SIZE])
        return bytes(result)

    def finish(self) -> bytes:
        return self._makeBlock(self.BLOCK_HEADER_FINAL, b'')

    def _makeBlock(self, header: int, data: bytes) -> bytes:
        return bytes([header]) + packU16LE(len(data)) + packU16LE(0xFFFF ^ len(data)) + data


class DeflateStream(CompressionStream):
    """Raw deflate through the configured backend (zlib by default)"""

    method = CompressionMethod.DEFLATE

    def __init__(self, level: CompressionLevel):
        backend = getDeflateBackend()
        if backend is None:
            raise ConfigurationError(
                f"Unable to use compression method DEFLATE with level {level.name}: no deflate backend configured"
            )

        self.level = level
        self._compressor = backend(ZLIB_LEVELS[level])

    def update(self, data: bytes) -> bytes:
        return self._compressor.compress(data)

    def finish(self) -> bytes:
        return self._compressor.flush()


def parseCompressionMethod(value) -> CompressionMethod:
    if isinstance(value, str):
        try:
            return CompressionMethod[value.upper()]
        except KeyError:
            raise UsageError(f"Invalid option {value!r} (compression method)")

    try:
        return CompressionMethod(value)
    except ValueError:
        raise UsageError(f"Invalid option {value!r} (compression method)")


def parseCompressionLevel(value) -> CompressionLevel:
    if isinstance(value, CompressionLevel):
        return value

    try:
        return CompressionLevel(str(value).lower())
    except ValueError:
        raise UsageError(f"Invalid option {value!r} (compression level)")


def validateCompressionOptions(method, level) -> tuple:
    """
    Check that the compression method and level are usable

    Returns:
        tuple: (CompressionMethod, CompressionLevel)

    Raises:
        UsageError: Unknown method or level
        ConfigurationError: DEFLATE with a level other than NONE and no backend
    """
    method = parseCompressionMethod(method)
    level = parseCompressionLevel(level)

    if method == CompressionMethod.DEFLATE and level != CompressionLevel.NONE and getDeflateBackend() is None:
        raise ConfigurationError(
            "Unable to use compression method DEFLATE with level other than NONE (no deflate backend configured)"
        )

    return method, level


def getCompressionFlags(method: CompressionMethod, level: CompressionLevel) -> int:
    if method == CompressionMethod.DEFLATE:
        return DEFLATE_FLAGS[level]
    return GPFlags.NONE


def createCompressionStream(method: CompressionMethod, level: CompressionLevel) -> CompressionStream:
    if method == CompressionMethod.STORE:
        return StoreStream()

    if level == CompressionLevel.NONE:
        return DeflateStoreStream()

    return DeflateStream(level)
