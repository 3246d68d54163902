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
import os
import platform
import sys

import certifi

from zipseek.Archive import ArchiveDirectoryReader, ZipRangeError
from zipseek.CLI import configureCLIParser, configureLogging, showVersion
from zipseek.Kernel import getLogger
from zipseek.Settings import SettingsGetter
from zipseek.Sources import openSource
from zipseek.Utils import flushPrint, formatSize, sendException

logger = getLogger(__name__)


def setupSettings():
    if platform.system().lower() != 'windows':
        os.environ["SSL_CERT_FILE"] = certifi.where()

    return SettingsGetter.getInstance()


def listMembers(reader, args):
    flushPrint(f"{'Size':>12} {'Compressed':>12} {'CRC-32':<8}  Name")
    for entry in reader.infolist():
        flushPrint(f"{entry.uncompressedSize:>12} {entry.compressedSize:>12} {entry.crc32:<8}  {entry.name}")
    flushPrint(f"{len(reader)} member(s)")
    return 0


def showInfo(reader, args):
    flushPrint(f"EOCD offset: {reader.eocdOffset}")
    flushPrint(f"Central directory offset: {reader.centralDirectoryOffset}")
    flushPrint(f"Central directory size: {reader.centralDirectorySize}")
    flushPrint(f"Entries: {len(reader)} of {reader.expectedEntryCount} declared")
    if reader.invalidHeaders:
        flushPrint(f"Invalid headers skipped: {len(reader.invalidHeaders)}")
    if reader.archiveComment:
        flushPrint(f"Comment: {reader.archiveComment}")
    return 0


def extractMember(reader, args):
    entry = reader.getEntry(args.member)
    if entry.isDirectory:
        raise ValueError(f"'{args.member}' is a directory")

    outputPath = args.output or os.path.basename(entry.name)
    chunkSize = SettingsGetter.getInstance().streamChunkSize

    with open(outputPath, 'wb') as outputFile:
        try:
            written = reader.copyMember(entry.name, outputFile, chunkSize)
        except (ZipRangeError, OSError):
            # Never leave a partial or unverified member behind
            outputFile.close()
            os.remove(outputPath)
            raise

    flushPrint(f"Extracted {entry.name} to {outputPath} ({formatSize(written)})")
    return 0


def catMember(reader, args):
    chunkSize = SettingsGetter.getInstance().streamChunkSize

    reader.copyMember(args.member, sys.stdout.buffer, chunkSize)
    sys.stdout.buffer.flush()
    return 0


COMMANDS = {
    'list': listMembers,
    'info': showInfo,
    'extract': extractMember,
    'cat': catMember,
}


def main(argv=None):
    """Run the zipseek command line; returns the process exit code"""
    parser, globalsParent, commandNames = configureCLIParser()

    argv = sys.argv[1:] if argv is None else list(argv)
    if not argv:
        parser.print_help()
        return 0

    # Phase 1: global arguments only
    try:
        globalArgs, rest = globalsParent.parse_known_args(argv)
    except argparse.ArgumentError as e:
        parser.error(str(e))

    configureLogging(globalArgs.logLevel)
    setupSettings()

    if globalArgs.version:
        showVersion()
        return 0

    if not rest:
        parser.print_help()
        return 0

    # Phase 2: full parsing with the subcommand
    try:
        args = parser.parse_args(argv)
    except argparse.ArgumentError as e:
        parser.error(str(e))

    if args.command not in commandNames:
        parser.print_help()
        return 0

    try:
        with openSource(args.source) as source:
            reader = ArchiveDirectoryReader(source)
            return COMMANDS[args.command](reader, args)
    except (ZipRangeError, ValueError, OSError) as e:
        sendException(logger, e, errorPrefix="Error")
        return 1
    except KeyboardInterrupt:
        flushPrint('\nExiting on user request (Ctrl+C)...')
        return 0


if __name__ == '__main__':
    sys.exit(main())
