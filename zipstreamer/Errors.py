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


class ZipStreamerError(Exception):
    """Base class of every error raised by zipstreamer"""


class UsageError(ZipStreamerError, ValueError):
    """Invalid path, option or compression/level combination; archive state is unchanged"""


class ConfigurationError(ZipStreamerError, RuntimeError):
    """Requested codec is not available"""


class SourceReadError(ZipStreamerError, IOError):
    """
    Reading an entry source failed mid-stream

    The local file header is already committed to the sink, so the archive being
    written is corrupt. Never retried.
    """

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class SinkWriteError(ZipStreamerError, IOError):
    """Writing to the output sink failed; the archive is corrupt"""


class ArchiveLimitError(ZipStreamerError, OverflowError):
    """A size, offset or entry count does not fit in the classic fields while zip64 is disabled"""
