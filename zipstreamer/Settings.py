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

from zipstreamer.Kernel import PUBLIC_VERSION, Singleton, getLogger
from zipstreamer.Compression import parseCompressionMethod, parseCompressionLevel
from zipstreamer.Entry import CompressionMethod, CompressionLevel
from zipstreamer.Errors import UsageError
from zipstreamer.Utils import getEnv

# 16 * 65535, almost 1 MiB: best deflate throughput while keeping memory O(chunk)
STREAM_CHUNK_SIZE = getEnv('ZIPSTREAMER_CHUNK_SIZE', 1048560)

ZIP64 = getEnv('ZIPSTREAMER_ZIP64', True)

DEFAULT_COMPRESSION = getEnv('ZIPSTREAMER_COMPRESSION', 'store')
DEFAULT_LEVEL = getEnv('ZIPSTREAMER_LEVEL', 'normal')

DEFAULT_ARCHIVE_NAME = 'archive.zip'
DEFAULT_CONTENT_TYPE = 'application/zip'

logger = getLogger(__name__)


class SettingsGetter(Singleton):
    """Writer defaults resolved from module constants (and therefore from the environment)"""

    def initialize(self):
        self.version = PUBLIC_VERSION

    def getChunkSize(self):
        if STREAM_CHUNK_SIZE <= 0:
            logger.warning(f"Ignoring invalid chunk size {STREAM_CHUNK_SIZE}, using 1048560")
            return 1048560
        return STREAM_CHUNK_SIZE

    def isZip64(self):
        return ZIP64

    def getCompression(self):
        try:
            return parseCompressionMethod(DEFAULT_COMPRESSION)
        except UsageError:
            logger.warning(f"Unknown ZIPSTREAMER_COMPRESSION '{DEFAULT_COMPRESSION}', using store")
            return CompressionMethod.STORE

    def getLevel(self):
        try:
            return parseCompressionLevel(DEFAULT_LEVEL)
        except UsageError:
            logger.warning(f"Unknown ZIPSTREAMER_LEVEL '{DEFAULT_LEVEL}', using normal")
            return CompressionLevel.NORMAL
