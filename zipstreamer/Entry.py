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

import zipfile

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional


class CompressionMethod(IntEnum):
    """Compression method field values (APPNOTE 4.4.5)"""
    STORE = zipfile.ZIP_STORED  # 0
    DEFLATE = zipfile.ZIP_DEFLATED  # 8


class CompressionLevel(Enum):
    """Deflate levels; NONE emits stored deflate blocks"""
    NONE = 'none'
    NORMAL = 'normal'
    MAXIMUM = 'maximum'
    SUPERFAST = 'superfast'


class GPFlags:
    """General purpose bit flags"""
    NONE = 0x0000
    COMP1 = 0x0002  # Compression option bit 1
    COMP2 = 0x0004  # Compression option bit 2
    ADD = 0x0008  # Bit 3: sizes/CRC in data descriptor
    EFS = 0x0800  # Bit 11: filename and comment UTF-8 encoded

    # Deflate option bits
    DEFL_NORM = 0x0000
    DEFL_MAX = COMP1
    DEFL_FAST = COMP2
    DEFL_SFAST = COMP1 | COMP2


class UnixMode:
    """UNIX mode bits as stored in the high word of the external attributes"""
    S_IFDIR = 0o040000
    S_IFREG = 0o100000
    S_IRWXU = 0o000700
    S_IRUSR = 0o000400
    S_IWUSR = 0o000200
    S_IRGRP = 0o000040
    S_IXGRP = 0o000010
    S_IROTH = 0o000004
    S_IXOTH = 0o000001


class DosAttribute:
    READ_ONLY = 0x01
    HIDDEN = 0x02
    SYSTEM = 0x04
    VOLUME = 0x08
    DIR = 0x10
    ARCHIVE = 0x20


# External attributes layout: TTTTsstrwxrwxrwx0000000000ADVSHR
EXT_FILE_ATTR_FILE = (
    UnixMode.S_IFREG | UnixMode.S_IRUSR | UnixMode.S_IWUSR | UnixMode.S_IRGRP | UnixMode.S_IROTH
) << 16  # 0x81A40000
EXT_FILE_ATTR_DIR = ((
    UnixMode.S_IFDIR | UnixMode.S_IRWXU | UnixMode.S_IRGRP | UnixMode.S_IXGRP | UnixMode.S_IROTH | UnixMode.S_IXOTH
) << 16) | DosAttribute.DIR  # 0x41ED0010

OPTION_KEYS = ('timestamp', 'comment', 'compress', 'level')


def normalizeFilePath(path: str) -> str:
    """Backslashes to forward slashes, no leading or trailing slash"""
    return path.replace('\\', '/').strip('/')


@dataclass
class ArchiveEntry:
    """
    Per-entry metadata captured at append time

    Sizes and CRC are filled in while the data streams and are frozen once the
    data descriptor (or the complete local block) has been written.
    """
    path: str
    isDirectory: bool = False
    timestamp: int = 0
    comment: Optional[str] = None
    compressionMethod: CompressionMethod = CompressionMethod.STORE
    compressionLevel: CompressionLevel = CompressionLevel.NORMAL
    generalPurposeFlags: int = GPFlags.NONE
    uncompressedSize: int = 0
    compressedSize: int = 0
    crc32: int = 0
    localHeaderOffset: int = 0
    externalFileAttributes: int = EXT_FILE_ATTR_FILE

    @property
    def pathBytes(self) -> bytes:
        return self.path.encode('utf-8')

    @property
    def hasDataDescriptor(self) -> bool:
        return bool(self.generalPurposeFlags & GPFlags.ADD)
