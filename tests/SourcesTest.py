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

import io
import os
import shutil
import tempfile
import unittest

import requests
import requests_mock

from botocore.exceptions import ClientError

from tests.ArchiveTestBase import ArchiveTestBase, buildZipfile
from zipseek.Archive import ArchiveDirectoryReader, NoData
from zipseek.Sources import (
    BytesRangeSource, HTTPRangeSource, LocalFileSource, NotSeekable, S3ObjectSource,
    endWindow, openSource, startWindow
)

DIGITS = b'0123456789'
ARCHIVE_URL = 'https://downloads.example.com/releases/bundle.zip'


def rangeResponder(data, status=206, truncate=0):
    """requests_mock content callback answering Range requests over `data`"""
    def callback(request, context):
        rangeHeader = request.headers.get('Range')
        if rangeHeader is None or status == 200:
            context.status_code = 200
            return data

        start, end = (int(value) for value in rangeHeader.split('=', 1)[1].split('-'))
        context.status_code = status
        context.headers['Content-Range'] = f'bytes {start}-{end}/{len(data)}'
        return data[start:end + 1 - truncate]

    return callback


class FakeStreamingBody(io.BytesIO):
    pass


class FakeS3Client:
    """Minimal stand-in for a boto3 S3 client"""

    def __init__(self, objects):
        self.objects = objects
        self.ranges = []

    def _lookup(self, Bucket, Key, operation):
        try:
            return self.objects[(Bucket, Key)]
        except KeyError:
            raise ClientError({'Error': {'Code': '404', 'Message': 'Not Found'}}, operation)

    def head_object(self, Bucket, Key):
        return {'ContentLength': len(self._lookup(Bucket, Key, 'HeadObject'))}

    def get_object(self, Bucket, Key, Range):
        data = self._lookup(Bucket, Key, 'GetObject')
        self.ranges.append(Range)
        start, end = (int(value) for value in Range.split('=', 1)[1].split('-'))
        return {'Body': FakeStreamingBody(data[start:end + 1])}


class WindowTest(unittest.TestCase):
    """Window arithmetic shared by every provider"""

    def testStartWindow(self):
        self.assertEqual(startWindow(10, 3), (0, 3))
        self.assertEqual(startWindow(10, 3, 7), (7, 10))
        self.assertIsNone(startWindow(10, 3, 8))
        self.assertIsNone(startWindow(10, 0))
        self.assertIsNone(startWindow(10, -1))
        self.assertIsNone(startWindow(10, 3, -1))

    def testEndWindow(self):
        self.assertEqual(endWindow(10, 4), (6, 10))
        self.assertEqual(endWindow(10, 4, 2), (4, 8))
        self.assertEqual(endWindow(10, 4, -2), (4, 8))
        # Without an offset the window shrinks to the whole sequence
        self.assertEqual(endWindow(10, 100), (0, 10))
        self.assertIsNone(endWindow(10, 8, 5))
        self.assertIsNone(endWindow(10, 2, 20))
        self.assertIsNone(endWindow(10, 0))
        self.assertIsNone(endWindow(0, 22))


class BytesRangeSourceTest(unittest.TestCase):

    def setUp(self):
        self.source = BytesRangeSource(DIGITS)

    def testRetrieveStart(self):
        self.assertEqual(self.source.retrieveStart(3), b'012')
        self.assertEqual(self.source.retrieveStart(3, 7), b'789')
        self.assertEqual(self.source.retrieveStart(10), DIGITS)
        self.assertIsNone(self.source.retrieveStart(3, 8))
        self.assertIsNone(self.source.retrieveStart(0))
        self.assertIsNone(self.source.retrieveStart(3, -1))

    def testRetrieveEnd(self):
        self.assertEqual(self.source.retrieveEnd(4), b'6789')
        self.assertEqual(self.source.retrieveEnd(4, 2), b'4567')
        self.assertEqual(self.source.retrieveEnd(4, -2), b'4567')
        self.assertEqual(self.source.retrieveEnd(65557), DIGITS)
        self.assertIsNone(self.source.retrieveEnd(8, 5))
        self.assertIsNone(self.source.retrieveEnd(-4))

    def testGetStream(self):
        with self.source.getStream(4, 2) as stream:
            self.assertEqual(stream.read(), b'2345')

        with self.source.getStream(0, 10) as stream:
            self.assertEqual(stream.read(), b'')

        self.assertIsNone(self.source.getStream(4, 8))

    def testUnsupportedCompression(self):
        with self.assertLogs('zipseek.Streams', level='WARNING'):
            self.assertIsNone(self.source.getStream(4, 0, compression=12))


class LocalFileSourceTest(ArchiveTestBase):

    def setUp(self):
        self.tempDir = tempfile.mkdtemp()
        self.path = os.path.join(self.tempDir, 'digits.bin')
        with open(self.path, 'wb') as f:
            f.write(DIGITS * 100)

    def tearDown(self):
        shutil.rmtree(self.tempDir, ignore_errors=True)

    def testRangesFromPath(self):
        with LocalFileSource(self.path) as source:
            self.assertEqual(source.size, 1000)
            self.assertEqual(source.retrieveStart(5, 995), b'56789')
            self.assertEqual(source.retrieveEnd(3), b'789')
            self.assertEqual(source.retrieveEnd(3, 10), b'789')
            self.assertIsNone(source.retrieveStart(5, 996))

    def testIndependentStreams(self):
        with LocalFileSource(self.path) as source:
            first = source.getStream(6, 0)
            second = source.getStream(6, 503)
            try:
                self.assertEqual(first.read(3), b'012')
                self.assertEqual(second.read(3), b'345')
                self.assertEqual(first.read(), b'345')
                self.assertEqual(second.read(), b'678')
            finally:
                first.close()
                second.close()

    def testSharedHandle(self):
        with open(self.path, 'rb') as handle:
            source = LocalFileSource(handle)
            first = source.getStream(4, 10)
            second = source.getStream(4, 21)

            self.assertEqual(second.read(), b'1234')
            self.assertEqual(first.read(), b'0123')
            self.assertEqual(source.retrieveStart(2, 998), b'89')

            source.close()
            # Caller supplied handles are left open
            self.assertFalse(handle.closed)

    def testMissingPath(self):
        with self.assertRaises(ValueError):
            LocalFileSource(os.path.join(self.tempDir, 'missing.zip'))

        with self.assertRaises(ValueError):
            LocalFileSource(self.tempDir)

    def testNotSeekable(self):
        readFd, writeFd = os.pipe()
        try:
            with open(readFd, 'rb') as pipe:
                with self.assertRaises(NotSeekable):
                    LocalFileSource(pipe)
        finally:
            os.close(writeFd)

    def testArchiveOnDisk(self):
        archivePath = os.path.join(self.tempDir, 'bundle.zip')
        payload = b'local payload ' * 500
        with open(archivePath, 'wb') as f:
            f.write(buildZipfile([('docs/readme.txt', b'read me'), ('payload.bin', payload)]))

        with LocalFileSource(archivePath) as source:
            reader = ArchiveDirectoryReader(source)
            self.assertEqual(reader.namelist(), ['docs/readme.txt', 'payload.bin'])
            self.assertEqual(reader.read('payload.bin'), payload)


class HTTPRangeSourceTest(ArchiveTestBase):

    def setUp(self):
        self.data = buildZipfile([('index.html', b'<html></html>'), ('assets/app.js', b'console.log(1);' * 200)])

    def testSizeFromHead(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS))

            source = HTTPRangeSource(ARCHIVE_URL)
            self.assertEqual(source.size, 10)

            self.assertEqual(source.retrieveStart(3, 2), b'234')
            self.assertEqual(m.request_history[-1].headers['Range'], 'bytes=2-4')
            self.assertEqual(m.request_history[-1].headers['Accept-Encoding'], 'identity')

            self.assertEqual(source.retrieveEnd(4), b'6789')
            self.assertEqual(m.request_history[-1].headers['Range'], 'bytes=6-9')

            # Invalid windows never reach the network
            requestCount = m.call_count
            self.assertIsNone(source.retrieveStart(3, 9))
            self.assertEqual(m.call_count, requestCount)

    def testSizeFromOneByteRange(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, status_code=405)
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS))

            source = HTTPRangeSource(ARCHIVE_URL)
            self.assertEqual(source.size, 10)
            self.assertEqual(m.request_history[1].headers['Range'], 'bytes=0-0')

    def testUnreachable(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, status_code=404)
            m.get(ARCHIVE_URL, status_code=404)
            with self.assertRaises(ValueError):
                HTTPRangeSource(ARCHIVE_URL)

        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, exc=requests.exceptions.ConnectTimeout)
            with self.assertRaises(ValueError):
                HTTPRangeSource(ARCHIVE_URL)

    def testStream(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS))

            source = HTTPRangeSource(ARCHIVE_URL)
            with source.getStream(5, 3) as stream:
                self.assertEqual(stream.read(), b'34567')
            self.assertEqual(m.request_history[-1].headers['Range'], 'bytes=3-7')

    def testIgnoredRangeHeader(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS, status=200))

            source = HTTPRangeSource(ARCHIVE_URL)
            with self.assertLogs('zipseek.Sources', level='WARNING'):
                self.assertIsNone(source.retrieveStart(3, 2))
            self.assertIsNone(source.getStream(3, 2))

            # A 200 is fine when the whole object was asked for
            self.assertEqual(source.retrieveStart(10), DIGITS)
            self.assertEqual(source.retrieveEnd(65557), DIGITS)

    def testShortBody(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS, truncate=1))

            source = HTTPRangeSource(ARCHIVE_URL)
            with self.assertLogs('zipseek.Sources', level='WARNING'):
                self.assertIsNone(source.retrieveStart(4, 2))

    def testConnectionError(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, exc=requests.exceptions.ConnectionError)

            source = HTTPRangeSource(ARCHIVE_URL)
            with self.assertLogs('zipseek.Sources', level='WARNING'):
                self.assertIsNone(source.retrieveEnd(4))
            self.assertIsNone(source.getStream(4))

    def testExtraHeaders(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(DIGITS))})
            m.get(ARCHIVE_URL, content=rangeResponder(DIGITS))

            source = HTTPRangeSource(ARCHIVE_URL, headers={'X-Api-Key': 'secret-key'}, auth=('reader', 'pass'))
            source.retrieveStart(1)

            request = m.request_history[-1]
            self.assertEqual(request.headers['X-Api-Key'], 'secret-key')
            self.assertTrue(request.headers['Authorization'].startswith('Basic '))

    def testRemoteArchive(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(self.data))})
            m.get(ARCHIVE_URL, content=rangeResponder(self.data))

            reader = ArchiveDirectoryReader(HTTPRangeSource(ARCHIVE_URL))
            self.assertEqual(reader.namelist(), ['index.html', 'assets/app.js'])
            self.assertEqual(reader.read('assets/app.js'), b'console.log(1);' * 200)

    def testRemoteArchiveWithoutRangeSupport(self):
        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': str(len(self.data))})
            m.get(ARCHIVE_URL, content=rangeResponder(self.data, status=200))

            with self.assertRaises(NoData):
                ArchiveDirectoryReader(HTTPRangeSource(ARCHIVE_URL))


class S3ObjectSourceTest(ArchiveTestBase):

    def setUp(self):
        self.data = buildZipfile([('report.csv', b'id,value\n' + b'1,2\n' * 300)])
        self.client = FakeS3Client({('releases', 'nightly/report.zip'): self.data})

    def testRanges(self):
        source = S3ObjectSource('releases', 'nightly/report.zip', client=self.client)
        self.assertEqual(source.size, len(self.data))
        self.assertEqual(source.retrieveStart(4), self.data[:4])
        self.assertEqual(self.client.ranges[-1], 'bytes=0-3')
        self.assertEqual(source.retrieveEnd(22), self.data[-22:])

    def testArchive(self):
        reader = ArchiveDirectoryReader(S3ObjectSource('releases', 'nightly/report.zip', client=self.client))
        self.assertEqual(reader.read('report.csv'), b'id,value\n' + b'1,2\n' * 300)

    def testMissingObject(self):
        with self.assertRaises(ValueError):
            S3ObjectSource('releases', 'missing.zip', client=self.client)

    def testReadFailure(self):
        source = S3ObjectSource('releases', 'nightly/report.zip', client=self.client)
        del self.client.objects[('releases', 'nightly/report.zip')]

        with self.assertLogs('zipseek.Sources', level='WARNING'):
            self.assertIsNone(source.retrieveStart(4))
        self.assertIsNone(source.getStream(4))


class OpenSourceTest(unittest.TestCase):

    def testDispatch(self):
        client = FakeS3Client({('bucket', 'path/to/archive.zip'): DIGITS})
        source = openSource('s3://bucket/path/to/archive.zip', client=client)
        self.assertIsInstance(source, S3ObjectSource)
        self.assertEqual(source.key, 'path/to/archive.zip')

        with self.assertRaises(ValueError):
            openSource('s3://bucket-only')

        with requests_mock.Mocker() as m:
            m.head(ARCHIVE_URL, headers={'Content-Length': '10'})
            self.assertIsInstance(openSource(ARCHIVE_URL), HTTPRangeSource)

        tempDir = tempfile.mkdtemp()
        try:
            path = os.path.join(tempDir, 'local.zip')
            with open(path, 'wb') as f:
                f.write(DIGITS)
            with openSource(path) as source:
                self.assertIsInstance(source, LocalFileSource)
        finally:
            shutil.rmtree(tempDir, ignore_errors=True)


if __name__ == '__main__':
    unittest.main()
