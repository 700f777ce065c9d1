"""Wire constants, error types and the low level reader shared by the decoders."""

from __future__ import annotations

import io
import struct
from typing import BinaryIO, Union

# Tag bytes. ``BIN_END`` and ``BIN_END_ALT`` terminate a block; every other
# value introduces a keyed entry.
BIN_NONE = 0x00
BIN_STRING = 0x01
BIN_INT32 = 0x02
BIN_FLOAT32 = 0x03
BIN_POINTER = 0x04
BIN_WIDESTRING = 0x05
BIN_COLOR = 0x06
BIN_UINT64 = 0x07
BIN_END = 0x08
BIN_INT64 = 0x0A
BIN_END_ALT = 0x0B

APPINFO_MAGIC_V28 = 0x07564428
APPINFO_MAGIC_V29 = 0x07564429
APPINFO_MAGICS = (APPINFO_MAGIC_V28, APPINFO_MAGIC_V29)
PACKAGEINFO_MAGICS = (0x06565527, 0x06565528)

APP_END_ID = 0
PACKAGE_END_ID = 0xFFFFFFFF

U8 = struct.Struct("<B")
I32 = struct.Struct("<i")
U32 = struct.Struct("<I")
I64 = struct.Struct("<q")
U64 = struct.Struct("<Q")
F32 = struct.Struct("<f")
FILE_HEADER_STRUCT = struct.Struct("<I I")
# size, state, last_update, access_token, checksum_txt, change_number, checksum_bin
APP_HEADER_STRUCT = struct.Struct("<I I I Q 20s I 20s")
# checksum, change_number, pics token
PACKAGE_HEADER_STRUCT = struct.Struct("<20s I Q")


class VdfError(RuntimeError):
    """Base class for every failure raised while decoding a VDF file."""


class UnsupportedVersionError(VdfError):
    """Raised when the leading magic number is not a recognised revision."""

    def __init__(self, magic: int) -> None:
        super().__init__(f"Unsupported version {magic:#x}")
        self.magic = magic


class InvalidTypeError(VdfError):
    """Raised when a tag byte does not belong to the closed tag set."""

    def __init__(self, tag: int) -> None:
        super().__init__(f"Invalid type {tag:#x}")
        self.tag = tag


class VdfReadError(VdfError):
    """Raised when the source ends early or cannot be repositioned."""


class StringTableError(VdfError):
    """Raised when the key string table is inconsistent or mis-addressed."""


class NestingDepthError(VdfError):
    """Raised when nested trees exceed the configured depth limit."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Nested key-values exceed the maximum depth of {limit}")
        self.limit = limit


class ByteReader:
    """Exact-read wrapper around a seekable binary stream.

    Every short read raises :class:`VdfReadError`; callers never see partial
    values.
    """

    # Must be even so wide code units never straddle two chunks.
    STRING_CHUNK_SIZE = 256

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> "ByteReader":
        return cls(io.BytesIO(bytes(data)))

    def read(self, size: int) -> bytes:
        try:
            chunk = self._stream.read(size)
        except OSError as exc:
            raise VdfReadError(f"Failed to read {size} bytes: {exc}") from exc
        if len(chunk) != size:
            raise VdfReadError(
                f"Unexpected end of data at offset {self.tell()}: "
                f"wanted {size} bytes, got {len(chunk)}"
            )
        return chunk

    def read_rest(self) -> bytes:
        try:
            return self._stream.read()
        except OSError as exc:
            raise VdfReadError(f"Failed to read to end of source: {exc}") from exc

    def unpack(self, layout: struct.Struct) -> tuple:
        return layout.unpack(self.read(layout.size))

    def read_u8(self) -> int:
        return self.unpack(U8)[0]

    def read_u32(self) -> int:
        return self.unpack(U32)[0]

    def read_i64(self) -> int:
        return self.unpack(I64)[0]

    def read_string(self, wide: bool = False) -> str:
        """Read a null-terminated string, consuming the terminator.

        Narrow strings are UTF-8 and wide strings UTF-16LE; undecodable
        sequences are replaced rather than rejected.
        """

        if wide:
            return self._read_terminated(2).decode("utf-16-le", errors="replace")
        return self._read_terminated(1).decode("utf-8", errors="replace")

    def _read_terminated(self, unit: int) -> bytes:
        # Reads ahead in chunks, then seeks back to just past the terminator.
        terminator = b"\x00" * unit
        buf = bytearray()
        while True:
            start = self.tell()
            try:
                chunk = self._stream.read(self.STRING_CHUNK_SIZE)
            except OSError as exc:
                raise VdfReadError(f"Failed to read string data: {exc}") from exc
            usable = len(chunk) - len(chunk) % unit
            index = chunk.find(terminator, 0, usable)
            while index != -1 and index % unit:
                index = chunk.find(terminator, index + 1, usable)
            if index != -1:
                buf += chunk[:index]
                self.seek(start + index + unit)
                return bytes(buf)
            if len(chunk) < self.STRING_CHUNK_SIZE:
                raise VdfReadError(
                    f"Unexpected end of data at offset {start + len(chunk)}: "
                    "unterminated string"
                )
            buf += chunk

    def tell(self) -> int:
        try:
            return self._stream.tell()
        except OSError as exc:
            raise VdfReadError(f"Unable to query stream position: {exc}") from exc

    def seek(self, offset: int) -> None:
        if offset < 0:
            raise VdfReadError(f"Invalid seek target {offset}")
        try:
            self._stream.seek(offset)
        except (OSError, ValueError) as exc:
            raise VdfReadError(f"Unable to seek to offset {offset}: {exc}") from exc


__all__ = [
    "APPINFO_MAGICS",
    "APPINFO_MAGIC_V28",
    "APPINFO_MAGIC_V29",
    "APP_END_ID",
    "APP_HEADER_STRUCT",
    "BIN_COLOR",
    "BIN_END",
    "BIN_END_ALT",
    "BIN_FLOAT32",
    "BIN_INT32",
    "BIN_INT64",
    "BIN_NONE",
    "BIN_POINTER",
    "BIN_STRING",
    "BIN_UINT64",
    "BIN_WIDESTRING",
    "ByteReader",
    "FILE_HEADER_STRUCT",
    "InvalidTypeError",
    "NestingDepthError",
    "PACKAGEINFO_MAGICS",
    "PACKAGE_END_ID",
    "PACKAGE_HEADER_STRUCT",
    "StringTableError",
    "UnsupportedVersionError",
    "VdfError",
    "VdfReadError",
]
