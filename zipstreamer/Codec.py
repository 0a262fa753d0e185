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

import struct

# Field sentinels: the real value lives in the zip64 extension
U16_SENTINEL = 0xFFFF
U32_SENTINEL = 0xFFFFFFFF

_U16 = struct.Struct('<H')
_U32 = struct.Struct('<I')
_U64 = struct.Struct('<Q')


def packU16LE(value: int) -> bytes:
    return _U16.pack(value)


def packU32LE(value: int) -> bytes:
    return _U32.pack(value)


def packU64LE(value: int) -> bytes:
    return _U64.pack(value)


def unpackU16LE(data: bytes, offset: int = 0) -> int:
    return _U16.unpack_from(data, offset)[0]


def unpackU32LE(data: bytes, offset: int = 0) -> int:
    return _U32.unpack_from(data, offset)[0]


def unpackU64LE(data: bytes, offset: int = 0) -> int:
    return _U64.unpack_from(data, offset)[0]
