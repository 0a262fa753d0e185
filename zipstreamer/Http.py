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

import re

from email.utils import formatdate
from http import HTTPStatus
from urllib.parse import quote

from zipstreamer.Errors import SinkWriteError
from zipstreamer.Kernel import getLogger
from zipstreamer.Settings import DEFAULT_ARCHIVE_NAME, DEFAULT_CONTENT_TYPE

logger = getLogger(__name__)


def buildDownloadHeaders(
    archiveName=DEFAULT_ARCHIVE_NAME, contentType=DEFAULT_CONTENT_TYPE, contentLength=None,
    rangeStart=None, totalSize=None, userAgent=None,
):
    """
    Headers of a ZIP download response, in sending order

    Args:
        contentLength: Bytes in the body, omitted when None (unbounded streaming)
        rangeStart: First byte of a partial response; adds Content-Range
        totalSize: Complete archive size, required with rangeStart
        userAgent: Old Internet Explorer only understands the plain filename

    Returns:
        list: (name, value) tuples
    """
    quotedName = quote(archiveName)

    if userAgent and 'MSIE' in userAgent:
        disposition = f'attachment; filename="{quotedName}"'
    else:
        disposition = f"attachment; filename*=UTF-8''{quotedName}; filename=\"{quotedName}\""

    headers = [
        ('Pragma', 'public'),
        ('Last-Modified', formatdate(usegmt=True)),
        ('Expires', '0'),
        ('Accept-Ranges', 'bytes'),
        ('Connection', 'Keep-Alive'),
        ('Content-Type', contentType),
        ('Content-Disposition', disposition),
        ('Content-Transfer-Encoding', 'binary'),
    ]

    if rangeStart is not None:
        headers.append(('Content-Range', f'bytes {rangeStart}-{totalSize - 1}/{totalSize}'))

    if contentLength is not None:
        headers.append(('Content-Length', str(contentLength)))

    return headers


def parseByteRange(byteRange):
    """
    Parse a Range header value ('bytes=N-' or 'bytes=N-M')

    Returns:
        tuple: (start, end) with end None for open ranges, or None when absent or invalid
    """
    try:
        if byteRange is None or byteRange.strip() == '':
            return None

        reg = re.search(r'bytes=(\d+)-(\d+)?$', byteRange.strip())
        if not reg:
            raise ValueError(f'Invalid byte range {byteRange}')

        # end might be None (protocol supported)
        start, end = [x and int(x) for x in reg.groups()]
        if end is not None and start > end:
            raise ValueError(f'Invalid byte range {byteRange}')
        return start, end

    except ValueError as e:
        logger.warning(e)
        return None


class ZipDownloadResponder:
    """
    HTTP side of a streamed download, bound to a BaseHTTPRequestHandler

    Serves as both the beginResponse capability and the output sink:

        responder = ZipDownloadResponder(self, totalSize=controller.getZipSize(), resumeOffset=start)
        writer = ArchiveWriter(sink=responder, beginResponse=responder.beginResponse)

    A positive resumeOffset sends 206 Partial Content with a Content-Range.
    """

    def __init__(self, handler, totalSize=None, resumeOffset=0):
        self.handler = handler
        self.totalSize = totalSize
        self.resumeOffset = resumeOffset
        self.started = False

    @property
    def contentLength(self):
        if self.totalSize is None:
            return None
        return self.totalSize - self.resumeOffset

    def beginResponse(self, name, contentType):
        isPartial = self.resumeOffset > 0 and self.totalSize is not None

        self.handler.send_response(HTTPStatus.PARTIAL_CONTENT if isPartial else HTTPStatus.OK)
        headers = buildDownloadHeaders(
            name,
            contentType,
            contentLength=self.contentLength,
            rangeStart=self.resumeOffset if isPartial else None,
            totalSize=self.totalSize,
            userAgent=self.handler.headers.get('User-Agent') if self.handler.headers else None,
        )
        for key, value in headers:
            self.handler.send_header(key, value)
        self.handler.end_headers()

        self.started = True

    def write(self, data):
        try:
            self.handler.wfile.write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            raise SinkWriteError(f"Client disconnected: {e}") from e

    def flush(self):
        self.handler.wfile.flush()
