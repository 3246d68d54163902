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

import os
import platform as _platform

from zipseek.Kernel import Singleton, getLogger

# Buffer size for member streams and the chunk size fed to the inflater (256 KiB)
STREAM_CHUNK_SIZE = int(os.getenv('ZIPSEEK_STREAM_CHUNK_SIZE', 256 * 1024))

# Socket timeout for HTTP range requests, in seconds
HTTP_TIMEOUT = float(os.getenv('ZIPSEEK_HTTP_TIMEOUT', 30.0))

# Custom endpoint for S3 compatible object storage (MinIO, R2, ...)
S3_ENDPOINT_URL = os.getenv('ZIPSEEK_S3_ENDPOINT_URL') or None

SUPPORT_URL = 'https://github.com/zipseek/zipseek/issues'

logger = getLogger(__name__)


# Singleton
class SettingsGetter(Singleton):

    @classmethod
    def getInstance(cls):
        if cls not in cls._instances:
            # Library callers rarely configure settings; fall back to the running platform.
            logger.debug('SettingsGetter used before initialization, using defaults')
            cls(platform=_platform.system())
        return cls._instances[cls]

    def initialize(
        self,
        platform=None,
        streamChunkSize=None,
        httpTimeout=None,
        s3EndpointUrl=None,
    ):
        """Initialize the SettingsGetter with platform and transfer settings."""
        self._platform = platform
        self._streamChunkSize = streamChunkSize or STREAM_CHUNK_SIZE
        self._httpTimeout = httpTimeout or HTTP_TIMEOUT
        self._s3EndpointUrl = s3EndpointUrl or S3_ENDPOINT_URL

    @property
    def streamChunkSize(self) -> int:
        return self._streamChunkSize

    @property
    def httpTimeout(self) -> float:
        return self._httpTimeout

    @property
    def s3EndpointUrl(self):
        return self._s3EndpointUrl

    def isLinux(self):
        return self._platform == "Linux"

    def getSupportURL(self):
        return SUPPORT_URL
