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

from zipstreamer.Errors import SinkWriteError


class CountingSink:
    """
    Forward writes to an inner sink and count the bytes that went through

    With no inner sink the bytes are dropped. I/O errors of the inner sink are
    raised as SinkWriteError.
    """

    def __init__(self, inner=None):
        self.inner = inner
        self.count = 0

    def write(self, data: bytes) -> int:
        if not data:
            return 0

        if self.inner is not None:
            try:
                self.inner.write(data)
            except (OSError, ValueError) as e:
                raise SinkWriteError(f"Failed to write {len(data)} bytes at offset {self.count}: {e}") from e

        self.count += len(data)
        return len(data)

    def flush(self):
        flush = getattr(self.inner, 'flush', None)
        if flush is None:
            return

        try:
            flush()
        except (OSError, ValueError) as e:
            raise SinkWriteError(f"Failed to flush sink at offset {self.count}: {e}") from e


class DiscardSink(CountingSink):
    """Counts and drops everything; used for dry runs"""

    def __init__(self):
        super().__init__(None)
