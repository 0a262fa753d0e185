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
Entry sources

A source is one of:
    - a filesystem path (str or os.PathLike), re-readable
    - an in-memory buffer (bytes, bytearray, memoryview), re-readable
    - a readable binary stream, read once from its current position
    - a callable. Each time the source is opened the callable is invoked; if it
      returns a readable stream that stream is used (an opener, re-readable),
      otherwise the returned bytes are the first chunk and the callable is polled
      for more until it returns b'' or None (a chunk producer, single use)
"""

import io
import os

from zipstreamer.Errors import SourceReadError


def isReadableSource(origin) -> bool:
    if isinstance(origin, (bytes, bytearray, memoryview)):
        return True

    if isinstance(origin, (str, os.PathLike)):
        return os.path.isfile(origin)

    if hasattr(origin, 'read'):
        readable = getattr(origin, 'readable', None)
        if readable is None:
            return True
        try:
            return bool(readable())
        except ValueError:  # closed file
            return False

    return callable(origin)


class StreamSource:
    """Uniform chunked reader over the supported source kinds"""

    def __init__(self, origin, name=None):
        if not isReadableSource(origin):
            raise SourceReadError(f"Source {origin!r} is not readable", path=name)

        self.origin = origin
        self.name = name

    @property
    def isReusable(self):
        if isinstance(self.origin, (bytes, bytearray, memoryview, str, os.PathLike)):
            return True
        # Openers are reusable; a stream read from its current position is not
        return False if hasattr(self.origin, 'read') else None

    def getSize(self):
        """Byte count the source will produce, or None when it cannot be known in advance"""
        origin = self.origin

        if isinstance(origin, (bytes, bytearray, memoryview)):
            return memoryview(origin).nbytes

        if isinstance(origin, (str, os.PathLike)):
            try:
                return os.path.getsize(origin)
            except OSError as e:
                raise SourceReadError(f"Unable to stat {origin}: {e}", path=self.name) from e

        if hasattr(origin, 'seek') and hasattr(origin, 'tell'):
            seekable = getattr(origin, 'seekable', None)
            if seekable is not None and not seekable():
                return None
            try:
                position = origin.tell()
                end = origin.seek(0, io.SEEK_END)
                origin.seek(position)
            except (OSError, ValueError):
                return None
            return end - position

        return None

    def iterChunks(self, chunkSize):
        """
        Yield the source content in chunks of at most chunkSize bytes

        Chunk producers yield whatever size they return. A read that returns
        b'' ends the stream.

        Raises:
            SourceReadError: Opening or reading the source failed
        """
        origin = self.origin

        try:
            if isinstance(origin, (bytes, bytearray, memoryview)):
                view = memoryview(origin).cast('B')
                for pos in range(0, len(view), chunkSize):
                    yield bytes(view[pos:pos + chunkSize])

            elif isinstance(origin, (str, os.PathLike)):
                with open(origin, 'rb') as f:
                    yield from self._readStream(f, chunkSize)

            elif hasattr(origin, 'read'):
                yield from self._readStream(origin, chunkSize)

            else:
                produced = origin()
                if hasattr(produced, 'read'):
                    try:
                        yield from self._readStream(produced, chunkSize)
                    finally:
                        close = getattr(produced, 'close', None)
                        if close is not None:
                            close()
                else:
                    while produced:
                        yield bytes(produced)
                        produced = origin()

        except SourceReadError:
            raise
        except OSError as e:
            raise SourceReadError(f"Failed to read source {self.name or origin!r}: {e}", path=self.name) from e

    def _readStream(self, stream, chunkSize):
        while True:
            chunk = stream.read(chunkSize)
            if not chunk:
                break
            yield chunk
