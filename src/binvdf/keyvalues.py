"""Binary key-value tree decoding.

A tree is a run of ``tag [key] [payload]`` entries closed by a sentinel tag.
The tag alone decides the payload width, so an unknown tag aborts the decode:
nothing after it can be framed reliably.

Keys are inline null-terminated strings unless the file carries a string
table, in which case every key is a ``u32`` index into that table.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple, Union

from .common import (
    BIN_COLOR,
    BIN_END,
    BIN_END_ALT,
    BIN_FLOAT32,
    BIN_INT32,
    BIN_INT64,
    BIN_NONE,
    BIN_POINTER,
    BIN_STRING,
    BIN_UINT64,
    BIN_WIDESTRING,
    F32,
    I32,
    I64,
    U64,
    ByteReader,
    InvalidTypeError,
    NestingDepthError,
    StringTableError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 128


class ValueType(enum.IntEnum):
    """Tag bytes of entries that carry a key and a payload."""

    TREE = BIN_NONE
    STRING = BIN_STRING
    INT32 = BIN_INT32
    FLOAT32 = BIN_FLOAT32
    POINTER = BIN_POINTER
    WIDESTRING = BIN_WIDESTRING
    COLOR = BIN_COLOR
    UINT64 = BIN_UINT64
    INT64 = BIN_INT64


_FIXED_WIDTH = {
    ValueType.INT32: I32,
    ValueType.POINTER: I32,
    ValueType.COLOR: I32,
    ValueType.UINT64: U64,
    ValueType.INT64: I64,
    ValueType.FLOAT32: F32,
}


@dataclass(frozen=True)
class Value:
    """One decoded payload; ``type`` fixes the shape of ``data``."""

    type: ValueType
    data: Union[str, int, float, Dict[str, "Value"]]

    @property
    def is_tree(self) -> bool:
        return self.type is ValueType.TREE

    def to_python(self, typed: bool = False) -> object:
        if self.is_tree:
            data: object = tree_to_python(self.data, typed=typed)  # type: ignore[arg-type]
        else:
            data = self.data
        if typed:
            return {"type": self.type.name.lower(), "value": data}
        return data


KeyValues = Dict[str, Value]


@dataclass(frozen=True)
class DecodeOptions:
    """Settings shared by every block of one decode session."""

    alt_format: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self) -> None:
        if self.max_depth < 0:
            raise ValueError("max_depth must be non-negative")

    @property
    def end_tag(self) -> int:
        return BIN_END_ALT if self.alt_format else BIN_END


DEFAULT_OPTIONS = DecodeOptions()


@dataclass(frozen=True)
class StringTable:
    """De-duplicated key strings addressed by zero-based index."""

    strings: Tuple[str, ...]

    def __len__(self) -> int:
        return len(self.strings)

    def __getitem__(self, index: int) -> str:
        if not 0 <= index < len(self.strings):
            raise StringTableError(
                f"String table index {index} out of range for {len(self.strings)} entries"
            )
        return self.strings[index]

    @classmethod
    def read(cls, reader: ByteReader) -> "StringTable":
        """Read the table whose offset is the next ``i64`` in ``reader``.

        The reader is left positioned just after the offset field.
        """

        offset = reader.read_i64()
        resume_at = reader.tell()
        try:
            reader.seek(offset)
            declared = reader.read_u32()
            fragments = reader.read_rest().split(b"\x00")
            strings = tuple(
                fragment.decode("utf-8", errors="replace")
                for fragment in fragments
                if fragment
            )
        finally:
            reader.seek(resume_at)
        if len(strings) != declared:
            raise StringTableError(
                f"String table at offset {offset} declares {declared} entries "
                f"but contains {len(strings)}"
            )
        logger.debug("Loaded %d key strings from offset %d", declared, offset)
        return cls(strings)


def _read_key(reader: ByteReader, string_table: Optional[StringTable]) -> str:
    if string_table is None:
        return reader.read_string()
    return string_table[reader.read_u32()]


def _read_scalar(reader: ByteReader, value_type: ValueType) -> Union[str, int, float]:
    if value_type is ValueType.STRING:
        return reader.read_string()
    if value_type is ValueType.WIDESTRING:
        return reader.read_string(wide=True)
    return reader.unpack(_FIXED_WIDTH[value_type])[0]


def read_keyvalues(
    reader: ByteReader,
    options: Optional[DecodeOptions] = None,
    string_table: Optional[StringTable] = None,
) -> KeyValues:
    """Decode one tree, including every nested tree, up to its sentinel.

    Nested trees are tracked on an explicit stack bounded by
    ``options.max_depth`` rather than by Python recursion.
    """

    options = options or DEFAULT_OPTIONS
    end_tag = options.end_tag
    root: KeyValues = {}
    stack = [root]
    while True:
        tag = reader.read_u8()
        if tag == end_tag:
            stack.pop()
            if not stack:
                return root
            continue
        try:
            value_type = ValueType(tag)
        except ValueError:
            raise InvalidTypeError(tag) from None

        key = _read_key(reader, string_table)
        node = stack[-1]
        if value_type is ValueType.TREE:
            if len(stack) > options.max_depth:
                raise NestingDepthError(options.max_depth)
            child: KeyValues = {}
            node[key] = Value(value_type, child)
            stack.append(child)
        else:
            node[key] = Value(value_type, _read_scalar(reader, value_type))


def find_keys(tree: KeyValues, keys: Sequence[str]) -> Optional[Value]:
    """Follow ``keys`` down through nested trees.

    Every key but the last must name a nested tree; anything else, including a
    missing key, yields ``None``.
    """

    if not keys:
        return None
    node = tree
    for key in keys[:-1]:
        value = node.get(key)
        if value is None or not value.is_tree:
            return None
        node = value.data  # type: ignore[assignment]
    return node.get(keys[-1])


def tree_to_python(tree: KeyValues, typed: bool = False) -> Dict[str, object]:
    """Convert a decoded tree into JSON and msgpack friendly primitives."""

    return {key: value.to_python(typed=typed) for key, value in tree.items()}


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_OPTIONS",
    "DecodeOptions",
    "KeyValues",
    "StringTable",
    "Value",
    "ValueType",
    "find_keys",
    "read_keyvalues",
    "tree_to_python",
]
