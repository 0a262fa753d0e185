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

import time

from tqdm import tqdm

from zipstreamer.Kernel import getLogger
from zipstreamer.Utils import formatSize

logger = getLogger(__name__)


class BitmathTqdm(tqdm):
    """tqdm bar that prints byte counts and rates with Utils.formatSize"""

    def __init__(self, *args, sizeFormatter=None, **kwargs):
        self.sizeFormatter = sizeFormatter or formatSize

        if 'bar_format' not in kwargs:
            kwargs['bar_format'] = (
                '{desc}: {percentage:3.0f}%|{bar}| '
                '{n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]'
            )

        super().__init__(*args, unit='B', unit_scale=False, **kwargs)

    @property
    def format_dict(self):
        d = super().format_dict

        rate = d.get('rate', 0) or 0
        d['rate_fmt'] = f"{self.sizeFormatter(int(rate))}/sec" if rate > 0 else "0/sec"
        d['n_fmt'] = self.sizeFormatter(d.get('n', 0))

        total = d.get('total')
        d['total_fmt'] = self.sizeFormatter(total) if total is not None else '?'

        return d


class StreamProgress:
    """
    Reports how many archive bytes have been emitted.

    Either drives a tqdm bar (useBar=True) or calls loggerCallback with a
    one-line summary at most every logInterval seconds.
    """

    def __init__(self, totalSize, description='Streaming', loggerCallback=None, logInterval=2.0, useBar=False):
        self.totalSize = totalSize
        self.description = description
        self.loggerCallback = loggerCallback or logger.info
        self.logInterval = logInterval
        self.useBar = useBar

        self.transferred = 0
        self.startTime = time.monotonic()
        self.lastProgressTime = self.startTime

        self.pbar = None
        if self.useBar:
            self.pbar = BitmathTqdm(total=totalSize or None, desc=description, leave=True, ncols=100)

    def update(self, bytesTransferred, forceLog=False):
        """Set the absolute number of bytes transferred so far"""
        increment = bytesTransferred - self.transferred
        self.transferred = bytesTransferred

        if self.pbar is not None:
            if increment > 0:
                self.pbar.update(increment)
            return

        currentTime = time.monotonic()
        if forceLog or (currentTime - self.lastProgressTime) >= self.logInterval:
            self._logProgress(currentTime)

    def _logProgress(self, currentTime):
        elapsed = currentTime - self.startTime
        speed = self.transferred / elapsed if elapsed > 0 else 0
        percentage = (self.transferred * 100.0 / self.totalSize) if self.totalSize > 0 else 0

        self.loggerCallback(
            f"{self.description}: {formatSize(self.transferred)}/{formatSize(self.totalSize)} "
            f"({percentage:.2f}%), {formatSize(int(speed))}/sec"
        )
        self.lastProgressTime = currentTime

    def getPercentage(self):
        return (self.transferred * 100.0 / self.totalSize) if self.totalSize > 0 else 0

    def finish(self):
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None
        else:
            self._logProgress(time.monotonic())

    def __enter__(self):
        return self

    def __exit__(self, excType, excVal, excTb):
        self.finish()
