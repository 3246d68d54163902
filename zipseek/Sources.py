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
Range source abstraction for ArchiveDirectoryReader.

A range source hands out byte windows of one finite, immutable byte sequence:
- BytesRangeSource: bytes already in memory
- LocalFileSource: local seekable file
- HTTPRangeSource: remote object over HTTP Range requests
- S3ObjectSource: object storage via ranged GetObject

Failures never cross this boundary as exceptions: they are logged and reported
as None, and the caller decides whether that is fatal.
"""

import io
import os

from typing import BinaryIO, Optional, Protocol, Tuple
from urllib.parse import urlparse

import boto3
import requests

from botocore.exceptions import BotoCoreError, ClientError

from zipseek.Kernel import getLogger
from zipseek.Settings import SettingsGetter
from zipseek.Streams import BoundedStream, COMPRESSION_STORED, isSupportedCompression, openPayloadStream
from zipseek.Utils import StallResilientAdapter

logger = getLogger(__name__)

# Errors a provider may hit while reading; they are turned into None results
RANGE_ERRORS = (OSError, ValueError, requests.RequestException, BotoCoreError, ClientError)


class NotSeekable(ValueError):
    """Raised when a local source is backed by a handle that cannot seek"""

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class RangeSource(Protocol):
    """Capability every byte range provider must offer"""

    def retrieveStart(self, length: int, offset: int = 0) -> Optional[bytes]:
        ... # `length` bytes beginning `offset` bytes from the start

    def retrieveEnd(self, length: int, offset: int = 0) -> Optional[bytes]:
        ... # `length` bytes ending `offset` bytes before the end

    def getStream(self, length: int, offset: int = 0, compression: int = COMPRESSION_STORED) -> Optional[BinaryIO]:
        ... # `length` raw bytes from `offset`, inflated when compression is DEFLATE


def startWindow(size: int, length: int, offset: int = 0) -> Optional[Tuple[int, int]]:
    """
    Resolve a window counted from the start of a sequence of `size` bytes.

    Returns:
        (start, stop) half-open window, or None if the request is invalid
    """
    if length <= 0 or offset < 0 or offset + length > size:
        return None

    return offset, offset + length


def endWindow(size: int, length: int, offset: int = 0) -> Optional[Tuple[int, int]]:
    """
    Resolve a window ending `offset` bytes before the end, i.e. [size-offset-length, size-offset).

    Without an offset the trailing min(length, size) bytes are returned, which lets
    callers ask for "at most this much of the tail" on small sequences.

    Returns:
        (start, stop) half-open window, or None if the request is invalid
    """
    if length <= 0:
        return None

    if offset == 0:
        length = min(length, size)
        if length <= 0:
            return None
        return size - length, size

    # Accept both positive and negative expressions of the offset
    offset = min(abs(offset), size)
    if offset + length > size:
        return None

    return size - offset - length, size - offset


class SizedRangeSource:
    """
    Base class for providers that know their total size up front.

    Subclasses implement _readRange() and _openRange(); validation, error
    handling and decompression are shared here.
    """

    _size = 0

    @property
    def size(self) -> int:
        return self._size

    def _readRange(self, start: int, stop: int) -> Optional[bytes]:
        raise NotImplementedError

    def _openRange(self, start: int, length: int) -> Optional[io.RawIOBase]:
        raise NotImplementedError

    def _describe(self) -> str:
        return type(self).__name__

    def _retrieve(self, window: Optional[Tuple[int, int]]) -> Optional[bytes]:
        if window is None:
            return None

        start, stop = window
        try:
            data = self._readRange(start, stop)
        except RANGE_ERRORS as e:
            logger.warning(f"Reading bytes {start}-{stop - 1} of {self._describe()} failed: {e}")
            return None

        if data is None:
            return None

        if len(data) != stop - start:
            logger.warning(
                f"Short read of {self._describe()}: expected {stop - start} bytes at {start}, got {len(data)}"
            )
            return None

        return data

    def retrieveStart(self, length: int, offset: int = 0) -> Optional[bytes]:
        return self._retrieve(startWindow(self._size, length, offset))

    def retrieveEnd(self, length: int, offset: int = 0) -> Optional[bytes]:
        return self._retrieve(endWindow(self._size, length, offset))

    def getStream(self, length: int, offset: int = 0, compression: int = COMPRESSION_STORED) -> Optional[BinaryIO]:
        if not isSupportedCompression(compression):
            return None

        if length < 0 or offset < 0 or offset + length > self._size:
            logger.warning(f"Invalid stream range {offset}+{length} for {self._describe()} of {self._size} bytes")
            return None

        try:
            raw = self._openRange(offset, length)
        except RANGE_ERRORS as e:
            logger.warning(f"Opening stream at {offset} of {self._describe()} failed: {e}")
            return None

        if raw is None:
            return None

        return openPayloadStream(raw, compression)

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, excType, excValue, traceback):
        self.close()


class BytesRangeSource(SizedRangeSource):
    """Range source over an in-memory buffer"""

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._size = len(self._data)

    def _readRange(self, start: int, stop: int) -> Optional[bytes]:
        return self._data[start:stop]

    def _openRange(self, start: int, length: int) -> Optional[io.RawIOBase]:
        return BoundedStream(io.BytesIO(self._data), length, offset=start, closeSource=True)


class LocalFileSource(SizedRangeSource):
    """
    Range source over a local seekable file.

    Built from a path, every stream opens its own handle, so streams do not share
    a file cursor. Built from a caller-owned file object, all reads go through that
    one handle; do not use it from several threads at once.
    """

    def __init__(self, path):
        """
        Initialize LocalFileSource.

        Args:
            path: Path to the file, or an open binary file object

        Raises:
            ValueError: If the path cannot be opened
            NotSeekable: If the file handle does not support seeking
        """
        if isinstance(path, (str, bytes, os.PathLike)):
            self.path = os.fsdecode(path)
            try:
                self._stream = open(self.path, 'rb')
            except OSError as e:
                raise ValueError(f"The provided file could not be opened: {e}") from e
            self._ownsStream = True
        else:
            self.path = getattr(path, 'name', None)
            self._stream = path
            self._ownsStream = False

        if not self._stream.seekable():
            if self._ownsStream:
                self._stream.close()
            raise NotSeekable("The file passed to LocalFileSource must be seekable", self.path)

        self._size = self._stream.seek(0, io.SEEK_END)

        logger.debug(f"LocalFileSource opened: {self.path} ({self._size} bytes)")

    def _describe(self) -> str:
        return f"local file {self.path}"

    def _readRange(self, start: int, stop: int) -> Optional[bytes]:
        self._stream.seek(start)
        return self._stream.read(stop - start)

    def _openRange(self, start: int, length: int) -> Optional[io.RawIOBase]:
        if self._ownsStream:
            handle = open(self.path, 'rb')
            handle.seek(start)
            return BoundedStream(handle, length, closeSource=True)

        return BoundedStream(self._stream, length, offset=start)

    def close(self) -> None:
        """Close the handle opened by this source; caller supplied handles stay open"""
        if self._ownsStream and not self._stream.closed:
            self._stream.close()


class HTTPRangeSource(SizedRangeSource):
    """
    Range source over HTTP(S) using `Range: bytes=start-end` (inclusive) requests.

    Every read is an independent request, so one source can serve concurrent
    readers. Pass a preconfigured requests.Session to control proxies or retries.
    """

    def __init__(self, url: str, session: requests.Session = None, timeout: float = None,
                 auth=None, headers: dict = None):
        """
        Initialize HTTPRangeSource.

        Args:
            url: http:// or https:// URL of the archive
            session: Optional requests session; one with StallResilientAdapter is created otherwise
            timeout: Request timeout in seconds (default: configured HTTP timeout)
            auth: Optional requests auth (tuple or AuthBase)
            headers: Extra headers sent with every request

        Raises:
            ValueError: If the object cannot be reached or its size is unknown
        """
        settingsGetter = SettingsGetter.getInstance()

        self.url = url
        self.timeout = timeout or settingsGetter.httpTimeout

        # Range offsets refer to the stored representation, never a transfer-encoded one
        self._headers = {'Accept-Encoding': 'identity'}
        self._headers.update(headers or {})

        self._ownsSession = session is None
        if session is None:
            session = requests.Session()
            adapter = StallResilientAdapter(chunkSize=settingsGetter.streamChunkSize)
            session.mount('http://', adapter)
            session.mount('https://', adapter)
        if auth is not None:
            session.auth = auth
        self._session = session

        try:
            size = self._fetchSize()
        except requests.RequestException as e:
            self.close()
            raise ValueError(f"The provided URL could not be opened: {e}") from e

        if size is None:
            self.close()
            raise ValueError(f"Could not determine the size of {url}")

        self._size = size

        logger.debug(f"HTTPRangeSource opened: {url} ({self._size} bytes)")

    def _describe(self) -> str:
        return self.url

    def _rangeHeaders(self, start: int, stop: int) -> dict:
        headers = dict(self._headers)
        headers['Range'] = f"bytes={start}-{stop - 1}"
        return headers

    def _fetchSize(self) -> Optional[int]:
        response = self._session.head(self.url, headers=self._headers, timeout=self.timeout, allow_redirects=True)
        contentLength = response.headers.get('Content-Length')
        if response.status_code == 200 and contentLength is not None:
            return int(contentLength)

        # Some servers (presigned URLs among them) reject HEAD; ask for a one byte range instead
        logger.debug(f"HEAD {self.url} returned {response.status_code}, probing with a range request")
        response = self._session.get(
            self.url, headers=self._rangeHeaders(0, 1), timeout=self.timeout, stream=True
        )
        try:
            if response.status_code == 206:
                # Content-Range: bytes 0-0/12345
                total = response.headers.get('Content-Range', '').rpartition('/')[2]
                return int(total) if total.isdigit() else None

            if response.status_code == 200 and response.headers.get('Content-Length') is not None:
                logger.warning(f"{self.url} ignored the Range header; only whole-object reads will succeed")
                return int(response.headers['Content-Length'])

            logger.warning(f"HTTP {response.status_code} for {self.url}")
            return None
        finally:
            response.close()

    def _acceptable(self, response: requests.Response, start: int, length: int) -> bool:
        if response.status_code == 206:
            return True

        # A plain 200 is only the requested range if that range is the whole object
        if response.status_code == 200 and start == 0 and length == self._size:
            return True

        logger.warning(f"HTTP {response.status_code} for bytes {start}-{start + length - 1} of {self.url}")
        return False

    def _readRange(self, start: int, stop: int) -> Optional[bytes]:
        response = self._session.get(self.url, headers=self._rangeHeaders(start, stop), timeout=self.timeout)
        if not self._acceptable(response, start, stop - start):
            return None

        return response.content

    def _openRange(self, start: int, length: int) -> Optional[io.RawIOBase]:
        if length == 0:
            return BoundedStream(io.BytesIO(), 0, closeSource=True)

        response = self._session.get(
            self.url, headers=self._rangeHeaders(start, start + length), timeout=self.timeout, stream=True
        )
        if not self._acceptable(response, start, length):
            response.close()
            return None

        return BoundedStream(response.raw, length, onClose=response.close)

    def close(self) -> None:
        if self._ownsSession:
            self._session.close()


class S3ObjectSource(SizedRangeSource):
    """Range source over an S3 (or S3 compatible) object using ranged GetObject calls"""

    def __init__(self, bucket: str, key: str, client=None):
        """
        Initialize S3ObjectSource.

        Args:
            bucket: Bucket name
            key: Object key
            client: Optional boto3 S3 client (default: one built for the configured endpoint)

        Raises:
            ValueError: If the object cannot be found or accessed
        """
        self.bucket = bucket
        self.key = key

        if client is None:
            client = boto3.client('s3', endpoint_url=SettingsGetter.getInstance().s3EndpointUrl)
        self._client = client

        try:
            head = self._client.head_object(Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise ValueError(f"The provided S3 object could not be opened: {e}") from e

        self._size = int(head['ContentLength'])

        logger.debug(f"S3ObjectSource opened: s3://{bucket}/{key} ({self._size} bytes)")

    def _describe(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def _getObject(self, start: int, stop: int):
        return self._client.get_object(Bucket=self.bucket, Key=self.key, Range=f"bytes={start}-{stop - 1}")['Body']

    def _readRange(self, start: int, stop: int) -> Optional[bytes]:
        body = self._getObject(start, stop)
        try:
            return body.read()
        finally:
            body.close()

    def _openRange(self, start: int, length: int) -> Optional[io.RawIOBase]:
        if length == 0:
            return BoundedStream(io.BytesIO(), 0, closeSource=True)

        return BoundedStream(self._getObject(start, start + length), length, closeSource=True)


def openSource(uri: str, **kwargs) -> SizedRangeSource:
    """
    Build a range source for a URI.

    Args:
        uri: http(s):// URL, s3://bucket/key, or a local path
        **kwargs: Passed to the provider constructor

    Returns:
        Range source for the URI
    """
    parsed = urlparse(uri)

    if parsed.scheme in ('http', 'https'):
        return HTTPRangeSource(uri, **kwargs)

    if parsed.scheme == 's3':
        key = parsed.path.lstrip('/')
        if not parsed.netloc or not key:
            raise ValueError(f"Invalid S3 URI: {uri}")
        return S3ObjectSource(parsed.netloc, key, **kwargs)

    return LocalFileSource(uri, **kwargs)
