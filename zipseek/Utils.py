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
import socket
import ssl
import sys

import bitmath

from urllib3 import PoolManager
from urllib3.connection import HTTPConnection
from urllib3.util.retry import Retry
from requests.adapters import HTTPAdapter

from zipseek.Kernel import getLogger
from zipseek.Settings import SettingsGetter

ONE_KB = bitmath.KiB(1).bytes
ONE_MB = bitmath.MiB(1).bytes
ONE_GB = bitmath.GiB(1).bytes
ONE_TB = bitmath.TiB(1).bytes

logger = getLogger(__name__)


# flush is required when stdout is piped into another process.
def flushPrint(text, file=None):
    try:
        print(text, file=file, flush=True)
    except UnicodeEncodeError as e:
        # Fallback for terminals that don't support certain characters (e.g. cp950 consoles)
        stream = file or sys.stdout
        logger.debug(f"UnicodeEncodeError during print, using fallback encoding: {e}, {stream.encoding=}")

        buf = getattr(stream, "buffer", None)
        if buf is not None:
            buf.write(text.encode("utf-8", errors="replace"))
            buf.write(b"\n")
            buf.flush()
            return

        safeText = ''.join(ch if ch.isprintable() else '?' for ch in text)
        print(safeText, file=file, flush=True)


def formatSize(size, decimal=None, plural=None):
    if decimal is None:
        if size < ONE_GB: # Less than 1GB
            decimal = 0
        elif size < ONE_TB: # Between 1GB and 1TB
            decimal = 1
        else: # Greater than 1TB
            decimal = 2

    if plural is None:
        plural = False if size > ONE_KB else True

    sizeStr = bitmath.Byte(size).best_prefix(system=bitmath.SI).format(
        "{value:.%df}{%s}" % (decimal, 'unit_plural' if plural else 'unit')
    )

    if not sizeStr.endswith('Byte') and not sizeStr.endswith('Bytes') and not sizeStr.endswith('Bits'):
        return sizeStr.replace('B', '').upper()
    else:
        return sizeStr.replace('Byte', ' Byte').replace('Bit', ' Byte')


def sendException(logger, e, action=None, errorPrefix="Oops, something went wrong"):
    if e and errorPrefix:
        flushPrint(f'{errorPrefix}: {e}', file=sys.stderr)
    elif e:
        flushPrint(f'{e}', file=sys.stderr)
    else: # only errorPrefix without e?
        logger.error(f'Incorrect argument: {errorPrefix=} {e=}')

    if action:
        flushPrint(action, file=sys.stderr)

    supportURL = SettingsGetter.getInstance().getSupportURL()
    flushPrint(f'If you think this is a bug, please report it at {supportURL}.', file=sys.stderr)

    logger.debug(f'{type(e).__name__}: {e}', exc_info=isinstance(e, BaseException))

    if os.getenv('RAISE_EXCEPTION', 'False') == 'True' and isinstance(e, BaseException):
        raise e


# Helper functions for environment variable configuration
def getEnv(envVar, default):
    """Safely get value from environment variable with automatic type detection based on default"""
    try:
        value = os.getenv(envVar)
        if value is not None:
            if default is None:
                return value

            # Automatically detect type based on default value
            if isinstance(default, bool):
                return value == "True"
            elif isinstance(default, int):
                return int(value)
            elif isinstance(default, float):
                return float(value)
            elif isinstance(default, str):
                return str(value)
            else:
                return type(default)(value)
        return default
    except (ValueError, TypeError):
        return default


# HTTP/HTTPS connection timeout and retry configuration
# https://github.com/urllib3/urllib3/issues/3100
# https://github.com/urllib3/urllib3/issues/2733
# https://github.com/python/cpython/issues/115627

# Minimum stall timeout in seconds
DEFAULT_MIN_STALL_TIMEOUT_SECONDS = getEnv('HTTP_DEFAULT_MIN_STALL_TIMEOUT_SECONDS', 120)

# Minimum speed threshold in MBps for stall calculation
DEFAULT_STALL_SPEED_THRESHOLD_MBPS = getEnv('HTTP_DEFAULT_STALL_SPEED_THRESHOLD_MBPS', 1.0)

# Python 3.12 workaround control
ENABLE_PY312_WORKAROUND = getEnv('HTTP_ENABLE_PY312_WORKAROUND', True)


class StallResilientAdapter(HTTPAdapter):
    """
    HTTP adapter that provides stall resistance through TCP socket options and Python 3.12 workarounds.

    Features:
    - TCP keepalive for early dead connection detection
    - TCP_USER_TIMEOUT on Linux for stall detection
    - Python 3.12 + OpenSSL 3.x workarounds (TLS 1.2 force, limited retries)

    Range reads are idempotent GETs/HEADs, so limited transport retries are safe.
    """

    DEFAULT_SOCKET_OPTIONS = HTTPConnection.default_socket_options

    @classmethod
    def calculateStallTimeoutMs(cls, chunkSize):
        """
        Calculate dynamic stall timeout based on chunk size and minimum acceptable speed.
        Formula: stall = max(120s, chunkSize / speedThreshold)

        Args:
            chunkSize: Size of transfer chunks in bytes

        Returns:
            int: Stall timeout in milliseconds
        """
        speedThresholdBps = DEFAULT_STALL_SPEED_THRESHOLD_MBPS * ONE_MB
        calculatedTimeSeconds = chunkSize / speedThresholdBps
        stallTimeoutSeconds = max(DEFAULT_MIN_STALL_TIMEOUT_SECONDS, calculatedTimeSeconds)

        return int(stallTimeoutSeconds * 1000)

    def __init__(self, stallTimeoutMs: int = None, chunkSize: int = None, allowedMethods=None, *args, **kwargs):
        """
        Initialize stall-resilient adapter.

        Args:
            stallTimeoutMs: Explicit stall timeout in milliseconds (overrides calculation)
            chunkSize: Chunk size for dynamic timeout calculation
            allowedMethods: HTTP methods to allow retries on (default: GET, HEAD)
        """
        settingsGetter = SettingsGetter.getInstance()

        if stallTimeoutMs is None and chunkSize is not None:
            self.stallTimeoutMs = self.calculateStallTimeoutMs(chunkSize)
        elif stallTimeoutMs is not None:
            self.stallTimeoutMs = stallTimeoutMs
        else:
            self.stallTimeoutMs = DEFAULT_MIN_STALL_TIMEOUT_SECONDS * 1000

        self.isLinux = settingsGetter.isLinux()

        if allowedMethods is None:
            allowedMethods = {'GET', 'HEAD'}

        if sys.version_info >= (3, 12) and ENABLE_PY312_WORKAROUND:
            # Limited urllib3 retries for SSLEOFError and read/write timeouts seen with Python 3.12 + OpenSSL 3.x
            retryConfig = Retry(
                total=2,
                connect=1,
                read=1,
                status=0, # Status codes are interpreted by the range source
                backoff_factor=0.5,
                allowed_methods=allowedMethods,
                raise_on_status=False
            )
            logger.debug(
                f"Python 3.12+ workaround enabled: limited urllib3 retries for SSL/connection issues "
                f"(methods: {allowedMethods})"
            )
        else:
            retryConfig = Retry(total=0)

        kwargs['max_retries'] = retryConfig

        super().__init__(*args, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **kwargs):
        """Initialize pool manager with custom socket options and SSL context."""
        socketOptions = list(self.DEFAULT_SOCKET_OPTIONS)

        socketOptions.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

        if hasattr(socket, "TCP_KEEPIDLE"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 30))
        if hasattr(socket, "TCP_KEEPINTVL"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))
        if hasattr(socket, "TCP_KEEPCNT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 3))

        # Linux-specific: Timeout for unacknowledged data
        if self.isLinux and hasattr(socket, "TCP_USER_TIMEOUT"):
            socketOptions.append((socket.IPPROTO_TCP, socket.TCP_USER_TIMEOUT, self.stallTimeoutMs))

        kwargs["socket_options"] = socketOptions

        # Force TLS 1.2 to avoid TLS 1.3 + OpenSSL 3.x EOF behavior issues
        if sys.version_info >= (3, 12) and ENABLE_PY312_WORKAROUND:
            logger.debug("Python 3.12+ workaround enabled: forcing TLS 1.2 to avoid SSLEOFError issues")
            sslContext = ssl.create_default_context()
            sslContext.minimum_version = ssl.TLSVersion.TLSv1_2
            sslContext.maximum_version = ssl.TLSVersion.TLSv1_2
            kwargs["ssl_context"] = sslContext

        self.poolmanager = PoolManager(num_pools=connections, maxsize=maxsize, block=block, **kwargs)
