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
Zip central directory reader working purely through range reads.

The reader never needs the whole archive: it fetches the tail to find the EOCD
record, fetches the central directory it points at, and, per member, the local
file header in front of the payload.
"""

import datetime
import io
import struct
import zipfile
import zlib

from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, List, Optional

from zipseek.Kernel import getLogger, ZipEvent
from zipseek.Settings import SettingsGetter
from zipseek.Sources import RangeSource
from zipseek.Streams import SUPPORTED_COMPRESSIONS

logger = getLogger(__name__)


class ZipRangeError(Exception):
    """Base class for errors raised by ArchiveDirectoryReader"""


class NoData(ZipRangeError):
    """A range read unexpectedly returned nothing"""


class InvalidArchive(ZipRangeError):
    """The archive structure is malformed (no EOCD, zero directory pointers, bad local header)"""


class FileNotFound(ZipRangeError):
    """Raised when a member name is not in the file table"""

    def __init__(self, name: str):
        super().__init__(f"There is no member named '{name}' in the archive")
        self.name = name


class UnsupportedCompression(ZipRangeError):
    """Raised when a member uses a compression method other than stored or DEFLATE"""

    def __init__(self, name: str, compression: int):
        super().__init__(f"Member '{name}' uses unsupported compression method {compression}")
        self.name = name
        self.compression = compression


class CorruptMember(ZipRangeError):
    """Raised when a member's content does not match its central directory record"""


@dataclass(frozen=True)
class FileEntry:
    name: str
    localHeaderOffset: int
    compressedSize: int
    uncompressedSize: int
    crc32: str
    comment: str = ''
    compressionMethod: int = zipfile.ZIP_STORED
    flags: int = 0
    lastModified: Optional[datetime.datetime] = None
    extraField: Optional[bytes] = None

    @property
    def isDirectory(self) -> bool:
        return self.name.endswith('/')


class ArchiveDirectoryReader:
    """
    File table of a Zip archive read through a RangeSource.

    Construction locates the EOCD record, decodes the directory pointer and
    parses the whole central directory; any structural problem raises and no
    reader is returned. Member payloads are resolved lazily on request.

    Zip64 records, multi-disk archives and encryption are not handled.
    """

    # ZIP format constants (PKZIP APPNOTE.TXT)
    LOCAL_FILE_HEADER_SIGNATURE = struct.unpack('<I', zipfile.stringFileHeader)[0] # 0x04034b50
    CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringCentralDir)[0] # 0x02014b50
    END_OF_CENTRAL_DIR_SIGNATURE = struct.unpack('<I', zipfile.stringEndArchive)[0] # 0x06054b50

    LOCAL_FILE_HEADER_SIZE = zipfile.sizeFileHeader # 30
    CENTRAL_DIR_SIZE = zipfile.sizeCentralDir # 46
    END_OF_CENTRAL_DIR_SIZE = zipfile.sizeEndCentDir # 22

    MAX_COMMENT_LENGTH = 0xFFFF
    EOCD_SEARCH_WINDOW = END_OF_CENTRAL_DIR_SIZE + MAX_COMMENT_LENGTH

    # General purpose bit flags
    UTF8_FLAG = 0x0800 # Bit 11: filename and comment UTF-8 encoded

    # signature, versionMadeBy, versionNeeded, flags, method, time, date, crc (raw),
    # compressedSize, uncompressedSize, nameLength, extraLength, commentLength,
    # diskStart, internalAttributes, externalAttributes, localHeaderOffset
    CENTRAL_DIR_STRUCT = struct.Struct('<IHHHHHH4sIIHHHHHII')

    # signature, versionNeeded, flags, method, time, date, crc (raw),
    # compressedSize, uncompressedSize, nameLength, extraLength
    LOCAL_FILE_HEADER_STRUCT = struct.Struct('<IHHHHH4sIIHH')

    def __init__(self, source: RangeSource):
        """
        Initialize ArchiveDirectoryReader.

        Args:
            source: Any object implementing the RangeSource protocol

        Raises:
            NoData: If the source could not deliver the EOCD window or the central directory
            InvalidArchive: If no EOCD record exists or its directory pointer is invalid
        """
        self.source = source

        self.eocdOffset = 0
        self.centralDirectoryOffset = 0
        self.centralDirectorySize = 0
        self.expectedEntryCount = 0
        self.archiveComment = ''

        self.fileTable: Dict[str, FileEntry] = {}
        self.invalidHeaders: List[int] = []

        eocdBytes = self.locateEOCD()
        if not self.parseDirectoryPointer(eocdBytes):
            raise InvalidArchive("The EOCD record holds an invalid central directory pointer")

        self.parseCentralDirectory()

        ZipEvent.centralDirectoryParsed.trigger(sender=self, entryCount=len(self.fileTable))

    @staticmethod
    def correctCRC(crcHex: str) -> str:
        """
        Turn the hex of the 4 raw little-endian CRC bytes into the canonical CRC-32 hex.

        The byte pairs are reversed and uppercased, e.g. 'cc36e0c6' -> 'C6E036CC'.
        Applying it twice gives back the input (uppercased).
        """
        pairs = [crcHex[i:i + 2] for i in range(0, len(crcHex), 2)]
        return ''.join(reversed(pairs)).upper()

    @staticmethod
    def dosToDatetime(dosTime: int, dosDate: int) -> Optional[datetime.datetime]:
        """
        Convert DOS time and date fields to a naive datetime.

        Returns:
            datetime, or None if the fields do not form a valid date (e.g. both zero)
        """
        try:
            return datetime.datetime(
                (dosDate >> 9) + 1980,
                (dosDate >> 5) & 0x0F,
                dosDate & 0x1F,
                dosTime >> 11,
                (dosTime >> 5) & 0x3F,
                min((dosTime & 0x1F) * 2, 59),
            )
        except ValueError:
            return None

    @classmethod
    def _decodeText(cls, raw: bytes, flags: int) -> str:
        if flags & cls.UTF8_FLAG:
            return raw.decode('utf-8', errors='replace')
        return raw.decode('cp437')

    def locateEOCD(self) -> bytes:
        """
        Find the End-Of-Central-Directory record by scanning the tail backward.

        Returns:
            The 22-byte EOCD record
        """
        window = self.source.retrieveEnd(self.EOCD_SEARCH_WINDOW)
        if window is None:
            raise NoData("Could not read the end of the archive")

        windowSize = len(window)
        position = windowSize - self.END_OF_CENTRAL_DIR_SIZE
        while position >= 0:
            signature, = struct.unpack_from('<I', window, position)
            if signature == self.END_OF_CENTRAL_DIR_SIGNATURE:
                self.eocdOffset = position - windowSize

                record = window[position:position + self.END_OF_CENTRAL_DIR_SIZE]
                commentLength, = struct.unpack_from('<H', record, 20)
                commentStart = position + self.END_OF_CENTRAL_DIR_SIZE
                rawComment = window[commentStart:commentStart + commentLength]
                try:
                    self.archiveComment = rawComment.decode('utf-8')
                except UnicodeDecodeError:
                    self.archiveComment = rawComment.decode('cp437')

                logger.debug(f"EOCD record found at offset {self.eocdOffset} from the end")
                return record

            position -= 1

        raise InvalidArchive("No EOCD record was found")

    def parseDirectoryPointer(self, eocdBytes: bytes) -> bool:
        """
        Decode entry count, central directory size and offset from an EOCD record.

        Returns:
            bool: False if the record is short or any of the three values is zero
        """
        if not eocdBytes or len(eocdBytes) < self.END_OF_CENTRAL_DIR_SIZE:
            logger.warning("EOCD record is truncated")
            return False

        entryCount, = struct.unpack_from('<H', eocdBytes, 10)
        directorySize, directoryOffset = struct.unpack_from('<II', eocdBytes, 12)

        if not entryCount or not directorySize or not directoryOffset:
            logger.warning(
                f"Invalid central directory pointer: entries={entryCount}, "
                f"size={directorySize}, offset={directoryOffset}"
            )
            return False

        self.expectedEntryCount = entryCount
        self.centralDirectorySize = directorySize
        self.centralDirectoryOffset = directoryOffset
        return True

    def _skipInvalidHeader(self, position: int, signature: int) -> None:
        logger.warning(f"Invalid central directory header signature 0x{signature:08x} at position {position}, skipped")
        self.invalidHeaders.append(position)
        ZipEvent.centralDirectoryHeaderInvalid.trigger(sender=self, position=position, signature=signature)

    def parseCentralDirectory(self) -> None:
        """Walk the central directory and fill fileTable"""
        data = self.source.retrieveStart(self.centralDirectorySize, self.centralDirectoryOffset)
        if data is None:
            raise NoData(
                f"Could not read {self.centralDirectorySize} bytes of central directory "
                f"at offset {self.centralDirectoryOffset}"
            )

        cursor = 0
        for _ in range(self.expectedEntryCount):
            if cursor + self.CENTRAL_DIR_SIZE > len(data):
                logger.warning(
                    f"Central directory ended after {len(self.fileTable)} of {self.expectedEntryCount} entries"
                )
                break

            (signature, _versionMadeBy, _versionNeeded, flags, method, modTime, modDate, rawCRC,
             compressedSize, uncompressedSize, nameLength, extraLength, commentLength,
             _diskStart, _internalAttributes, _externalAttributes,
             localHeaderOffset) = self.CENTRAL_DIR_STRUCT.unpack_from(data, cursor)

            if signature != self.CENTRAL_DIR_SIGNATURE:
                self._skipInvalidHeader(cursor, signature)

                # Length fields of a corrupt header are meaningless, resync on the next signature
                nextHeader = data.find(zipfile.stringCentralDir, cursor + self.CENTRAL_DIR_SIZE)
                if nextHeader < 0:
                    break
                cursor = nextHeader
                continue

            cursor += self.CENTRAL_DIR_SIZE
            if cursor + nameLength + extraLength + commentLength > len(data):
                logger.warning(f"Central directory header at position {cursor - self.CENTRAL_DIR_SIZE} is truncated")
                break

            name = self._decodeText(data[cursor:cursor + nameLength], flags)
            cursor += nameLength

            extraField = data[cursor:cursor + extraLength] if extraLength > 0 else None
            cursor += extraLength

            comment = self._decodeText(data[cursor:cursor + commentLength], flags) if commentLength > 0 else ''
            cursor += commentLength

            self.fileTable[name] = FileEntry(
                name=name,
                localHeaderOffset=localHeaderOffset,
                compressedSize=compressedSize,
                uncompressedSize=uncompressedSize,
                crc32=self.correctCRC(rawCRC.hex()),
                comment=comment,
                compressionMethod=method,
                flags=flags,
                lastModified=self.dosToDatetime(modTime, modDate),
                extraField=extraField,
            )

        logger.debug(
            f"Central directory parsed: {len(self.fileTable)} entries, "
            f"{len(self.invalidHeaders)} invalid headers"
        )

    def getEntry(self, name: str) -> FileEntry:
        entry = self.fileTable.get(name)
        if entry is None:
            raise FileNotFound(name)
        return entry

    def resolveMember(self, name: str) -> BinaryIO:
        """
        Open the payload of a member as a readable stream.

        The local file header is read to find where the payload starts; its own name
        and extra lengths are used, as they may differ from the central directory copy.

        Args:
            name: Member name as stored in the archive

        Returns:
            Binary stream of the uncompressed content

        Raises:
            FileNotFound: If the member is not in the file table
            NoData: If the local header or the payload stream could not be retrieved
            InvalidArchive: If the local header signature is wrong
            UnsupportedCompression: If the member is neither stored nor DEFLATE
        """
        entry = self.getEntry(name)

        header = self.source.retrieveStart(self.LOCAL_FILE_HEADER_SIZE, entry.localHeaderOffset)
        if header is None:
            raise NoData(f"Could not read the local file header of '{name}' at offset {entry.localHeaderOffset}")

        (signature, _versionNeeded, _flags, method, _modTime, _modDate, _rawCRC,
         _compressedSize, _uncompressedSize, nameLength,
         extraLength) = self.LOCAL_FILE_HEADER_STRUCT.unpack(header)

        if signature != self.LOCAL_FILE_HEADER_SIGNATURE:
            raise InvalidArchive(f"Invalid local file header signature 0x{signature:08x} for '{name}'")

        if method not in SUPPORTED_COMPRESSIONS:
            raise UnsupportedCompression(name, method)

        payloadStart = entry.localHeaderOffset + self.LOCAL_FILE_HEADER_SIZE + nameLength + extraLength

        stream = self.source.getStream(entry.compressedSize, payloadStart, method)
        if stream is None:
            raise NoData(f"Could not open the payload of '{name}' at offset {payloadStart}")

        return stream

    def _verify(self, entry: FileEntry, length: int, crc: int) -> None:
        if length != entry.uncompressedSize:
            raise CorruptMember(f"Member '{entry.name}' is {length} bytes, expected {entry.uncompressedSize}")

        crcHex = f"{crc:08X}"
        if crcHex != entry.crc32:
            raise CorruptMember(f"Member '{entry.name}' CRC-32 is {crcHex}, expected {entry.crc32}")

    def copyMember(self, name: str, target: BinaryIO, chunkSize: int = None, verify: bool = True) -> int:
        """
        Stream the uncompressed content of a member into a writable binary file.

        The length and a running CRC-32 are checked once the payload ends, so a
        mismatch is reported after the bytes were written; callers writing to a
        file should discard it on CorruptMember.

        Args:
            name: Member name
            target: Writable binary file object
            chunkSize: Read size (default: configured stream chunk size)
            verify: Check the size and CRC-32 against the central directory

        Returns:
            int: Number of bytes written

        Raises:
            CorruptMember: If the payload cannot be inflated or does not match its record
        """
        entry = self.getEntry(name)
        chunkSize = chunkSize or SettingsGetter.getInstance().streamChunkSize

        written = 0
        crc = 0
        with self.resolveMember(name) as stream:
            while True:
                try:
                    chunk = stream.read(chunkSize)
                except zlib.error as e:
                    raise CorruptMember(f"Member '{name}' could not be decompressed: {e}") from e

                if not chunk:
                    break

                target.write(chunk)
                crc = zlib.crc32(chunk, crc)
                written += len(chunk)

        if verify:
            self._verify(entry, written, crc)

        return written

    def read(self, name: str, verify: bool = True) -> bytes:
        """
        Read the whole uncompressed content of a member.

        Raises:
            CorruptMember: If the payload cannot be inflated or does not match its record
        """
        buffer = io.BytesIO()
        self.copyMember(name, buffer, verify=verify)
        return buffer.getvalue()

    def namelist(self) -> List[str]:
        return list(self.fileTable)

    def infolist(self) -> List[FileEntry]:
        return list(self.fileTable.values())

    def __contains__(self, name) -> bool:
        return name in self.fileTable

    def __len__(self) -> int:
        return len(self.fileTable)

    def __iter__(self) -> Iterator[str]:
        return iter(self.fileTable)
