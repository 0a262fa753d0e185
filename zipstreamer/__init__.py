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

from zipstreamer.Kernel import PUBLIC_VERSION as __version__
from zipstreamer.Entry import ArchiveEntry, CompressionMethod, CompressionLevel
from zipstreamer.Errors import (
    ZipStreamerError, UsageError, ConfigurationError, SourceReadError, SinkWriteError, ArchiveLimitError,
)
from zipstreamer.Writer import ArchiveWriter
from zipstreamer.Resume import ResumeController
