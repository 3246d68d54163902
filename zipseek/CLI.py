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

import argparse
import json
import os
import logging
import logging.config
import platform

from zipseek.Kernel import PUBLIC_VERSION, LOG_LEVEL_MAPPING, getLogger, configureGlobalLogLevel
from zipseek.Settings import SettingsGetter
from zipseek.Utils import flushPrint, formatSize, getEnv

logger = getLogger(__name__)


def configureLogging(logLevel):
    """Configure logging level for the application using Kernel's centralized configuration or config file

    Priority order:
    1. logLevel parameter (from --log-level CLI argument)
    2. ZIPSEEK_LOGGING_LEVEL environment variable
    3. Default to None (no configuration change)

    Both logLevel and ZIPSEEK_LOGGING_LEVEL can be:
    - A logging level name (DEBUG, INFO, WARNING, ERROR)
    - A path to a logging configuration JSON file
    """

    def suppressNoisyLogger():
        logging.getLogger('urllib3').setLevel(logging.INFO)
        logging.getLogger('urllib3.connectionpool').setLevel(logging.INFO)
        logging.getLogger('botocore').setLevel(logging.INFO)
        logging.getLogger('sentry_sdk').setLevel(logging.INFO)

    if logLevel is None:
        logLevel = getEnv('ZIPSEEK_LOGGING_LEVEL', None)

    if logLevel is None:
        suppressNoisyLogger()
        return None

    if os.path.isfile(logLevel):
        try:
            with open(logLevel, 'r') as configFile:
                configDict = json.load(configFile)

            logging.config.dictConfig(configDict)
            getLogger(__name__, reinitialize=True)
            logger.info(f"Logging configured from file: {logLevel}")
            suppressNoisyLogger()
            return logLevel

        except (json.JSONDecodeError, FileNotFoundError, KeyError, ValueError) as e:
            flushPrint(f"Failed to load logging config from {logLevel}: {e}")
            flushPrint("Falling back to default logging level configuration")

    if logLevel.upper() in LOG_LEVEL_MAPPING:
        configureGlobalLogLevel(LOG_LEVEL_MAPPING[logLevel.upper()])
        logger.info(f"Logging level set to {logLevel}")
    else:
        logger.warning(f"Invalid logging level '{logLevel}', using WARNING as default")
        configureGlobalLogLevel(logging.WARNING)

    # Suppress noisy third-party loggers even in DEBUG mode
    suppressNoisyLogger()

    return logLevel


def showVersion():
    """Display version and platform information"""
    flushPrint(f"zipseek v{PUBLIC_VERSION}")
    flushPrint("")

    settingsGetter = SettingsGetter.getInstance()
    flushPrint(f"Stream chunk size: {formatSize(settingsGetter.streamChunkSize)}")
    flushPrint(f"HTTP timeout: {settingsGetter.httpTimeout}s")
    if settingsGetter.s3EndpointUrl:
        flushPrint(f"S3 endpoint: {settingsGetter.s3EndpointUrl}")

    flushPrint("")
    uname = platform.uname()
    flushPrint(f"Architecture: {uname.system} {uname.release} {uname.machine} - {uname.version} ({uname.processor})")
    flushPrint(f"Support: {settingsGetter.getSupportURL()}")


def configureCLIParser():
    """Configure the parser for CLI mode using the global parent approach

    Returns:
        tuple: (parser, globalsParent, commandNames)
    """

    def validateLogLevel(logLevel):
        """Validate log level for argparse"""
        # Allow file paths (they'll be validated later)
        if os.path.exists(logLevel):
            return logLevel

        validLevels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if logLevel.upper() not in validLevels:
            raise argparse.ArgumentTypeError(
                f"Invalid log level '{logLevel}'. Valid levels are: {', '.join(validLevels)}"
            )
        return logLevel.upper()

    # === 1) Global parameters in a parent parser ===
    globalsParent = argparse.ArgumentParser(add_help=False, exit_on_error=False)
    globalsParent.add_argument("--version", action="store_true", help="Show version information")
    globalsParent.add_argument(
        "--log-level",
        type=validateLogLevel,
        help="Set logging level (DEBUG, INFO, WARNING, ERROR) or path to logging config JSON file (default: WARNING)",
        metavar="LEVEL_OR_FILE",
        dest="logLevel"
    )

    # === 2) Main parser + subparsers; all inherit from globalsParent ===
    parser = argparse.ArgumentParser(
        prog="zipseek",
        description="Inspect and extract Zip archive members with byte-range reads (local, HTTP, S3).",
        parents=[globalsParent],
        exit_on_error=False,
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')
    sourceHelp = "Archive location: local path, http(s):// URL or s3://bucket/key"

    listSubparser = subparsers.add_parser(
        'list', help='List archive members', parents=[globalsParent], exit_on_error=False
    )
    listSubparser.add_argument("source", metavar="SOURCE", help=sourceHelp)

    infoSubparser = subparsers.add_parser(
        'info', help='Show central directory information', parents=[globalsParent], exit_on_error=False
    )
    infoSubparser.add_argument("source", metavar="SOURCE", help=sourceHelp)

    extractSubparser = subparsers.add_parser(
        'extract', help='Extract one member to a file', parents=[globalsParent], exit_on_error=False
    )
    extractSubparser.add_argument("source", metavar="SOURCE", help=sourceHelp)
    extractSubparser.add_argument("member", metavar="MEMBER", help="Member name as listed by 'list'")
    extractSubparser.add_argument(
        "--output", "-o", metavar="PATH", help="Output file path (default: member basename in current directory)"
    )

    catSubparser = subparsers.add_parser(
        'cat', help='Write one member to stdout', parents=[globalsParent], exit_on_error=False
    )
    catSubparser.add_argument("source", metavar="SOURCE", help=sourceHelp)
    catSubparser.add_argument("member", metavar="MEMBER", help="Member name as listed by 'list'")

    commandNames = {'list', 'info', 'extract', 'cat'}
    return parser, globalsParent, commandNames
