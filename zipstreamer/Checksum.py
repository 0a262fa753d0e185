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


class Crc32:
    """
    Incremental CRC-32 (reflected polynomial, as used by ZIP)

    The running value is the whole state, so copy() is a cheap snapshot that can
    keep hashing independently.
    """

    def __init__(self, value: int = 0):
        self.value = value
        self.length = 0

    def update(self, data: bytes) -> 'Crc32':
        self.value = zlib.crc32(data, self.value)
        self.length += len(data)
        return self

    def final(self) -> int:
        return self.value & 0xFFFFFFFF

    def copy(self) -> 'Crc32':
        other = Crc32(self.value)
        other.length = self.length
        return other


def crc32(data: bytes) -> int:
    return Crc32().update(data).final()
