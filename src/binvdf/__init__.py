"""Decoder for Steam's binary ``appinfo.vdf`` and ``packageinfo.vdf`` caches."""

from .common import (
    InvalidTypeError,
    NestingDepthError,
    StringTableError,
    UnsupportedVersionError,
    VdfError,
    VdfReadError,
)
from .keyvalues import DecodeOptions, StringTable, Value, ValueType, find_keys, read_keyvalues
from .records import (
    App,
    AppInfo,
    Package,
    PackageInfo,
    detect_kind,
    load_appinfo,
    load_packageinfo,
)

__all__ = [
    "App",
    "AppInfo",
    "DecodeOptions",
    "InvalidTypeError",
    "NestingDepthError",
    "Package",
    "PackageInfo",
    "StringTable",
    "StringTableError",
    "UnsupportedVersionError",
    "Value",
    "ValueType",
    "VdfError",
    "VdfReadError",
    "detect_kind",
    "find_keys",
    "load_appinfo",
    "load_packageinfo",
    "read_keyvalues",
]
