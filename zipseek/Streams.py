#!/usr/bin/env python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0
#
# zipseek - Read Zip directories and members over byte-range requests
# Copyright (C) 2025-2026 zipseek contributors
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
Readable stream building blocks for member payloads.

- BoundedStream: exposes exactly `length` bytes of an underlying binary source
- InflateStream: raw DEFLATE decompression on top of another raw stream

Range sources combine them through openPayloadStream().
"""

import io
import zipfile
import zlib

from typing import BinaryIO, Callable, Optional

from zipseek.Kernel import getLogger
from zipseek.Settings import SettingsGetter

logger = getLogger(__name__)

COMPRESSION_STORED = zipfile.ZIP_STORED # 0
COMPRESSION_DEFLATED = zipfile.ZIP_DEFLATED # 8

SUPPORTED_COMPRESSIONS = (COMPRESSION_STORED, COMPRESSION_DEFLATED)


def isSupportedCompression(compression: int) -> bool:
    """Check a compression method, warning about anything but stored or DEFLATE"""
    if compression in SUPPORTED_COMPRESSIONS:
        return True

    logger.warning(f"Compression type {compression} is unsupported")
    return False


class BoundedStream(io.RawIOBase):
    """
    Raw stream limited to `length` bytes of `source`.

    When `offset` is given the stream keeps its own absolute position and seeks
    the source before every read, so several bounded streams can take turns on
    one seekable handle. Without `offset` the source is read sequentially from
    wherever it currently is (HTTP response bodies, S3 bodies).
    """

    def __init__(self, source: BinaryIO, length: int, offset: Optional[int] = None,
                 closeSource: bool = False, onClose: Optional[Callable[[], None]] = None):
        super().__init__()
        self._source = source
        self._left = max(0, int(length))
        self._pos = offset
        self._closeSource = closeSource
        self._onClose = onClose

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        if self.closed or self._left <= 0:
            return 0

        want = min(len(b), self._left)
        if want <= 0:
            return 0

        if self._pos is not None:
            self._source.seek(self._pos)

        data = self._source.read(want)
        if not data:
            # Source ended before the declared length
            logger.debug(f"Bounded stream source exhausted with {self._left} bytes outstanding")
            self._left = 0
            return 0

        n = len(data)
        b[:n] = data
        self._left -= n
        if self._pos is not None:
            self._pos += n

        return n

    def close(self) -> None:
        if not self.closed:
            try:
                if self._closeSource:
                    self._source.close()
            finally:
                if self._onClose:
                    self._onClose()
        super().close()


class InflateStream(io.RawIOBase):
    """
    Raw stream that inflates headerless DEFLATE data (Zip method 8) read from `source`.

    Output is produced at most len(b) bytes at a time via max_length, so a small
    compressed chunk never expands into an unbounded buffer.
    """

    def __init__(self, source: BinaryIO, chunkSize: int = None):
        super().__init__()
        self._source = source
        self._chunkSize = chunkSize or SettingsGetter.getInstance().streamChunkSize
        self._decompressor = zlib.decompressobj(-zlib.MAX_WBITS)
        self._pending = b''
        self._finished = False

    def readable(self) -> bool:
        return True

    def _fill(self, want: int) -> None:
        tail = self._decompressor.unconsumed_tail
        if tail:
            self._pending = self._decompressor.decompress(tail, want)
            return

        if self._decompressor.eof:
            self._finished = True
            return

        chunk = self._source.read(self._chunkSize)
        if not chunk:
            self._pending = self._decompressor.flush()
            self._finished = True
            return

        self._pending = self._decompressor.decompress(chunk, want)

    def readinto(self, b) -> int:
        if self.closed:
            return 0

        want = len(b)
        if want <= 0:
            return 0

        while not self._pending and not self._finished:
            self._fill(want)

        n = min(want, len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._source.close()
        super().close()


def openPayloadStream(raw: io.RawIOBase, compression: int = COMPRESSION_STORED,
                      chunkSize: int = None) -> Optional[BinaryIO]:
    """
    Wrap a bounded raw stream for the caller.

    Args:
        raw: Raw stream yielding the compressed payload
        compression: Zip compression method (0 stored, 8 DEFLATE)
        chunkSize: Buffer size, defaults to the configured stream chunk size

    Returns:
        Buffered binary stream, or None if the compression method is unsupported
    """
    chunkSize = chunkSize or SettingsGetter.getInstance().streamChunkSize

    if compression == COMPRESSION_STORED:
        stream = raw
    elif compression == COMPRESSION_DEFLATED:
        stream = InflateStream(raw, chunkSize=chunkSize)
    else:
        isSupportedCompression(compression)
        raw.close()
        return None

    return io.BufferedReader(stream, buffer_size=chunkSize)
