"""Readers for ``appinfo.vdf`` and ``packageinfo.vdf`` record files."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import BinaryIO, Dict, Mapping, Optional, Sequence, Union

from .common import (
    APP_END_ID,
    APP_HEADER_STRUCT,
    APPINFO_MAGIC_V29,
    APPINFO_MAGICS,
    FILE_HEADER_STRUCT,
    PACKAGE_END_ID,
    PACKAGE_HEADER_STRUCT,
    PACKAGEINFO_MAGICS,
    ByteReader,
    UnsupportedVersionError,
)
from .keyvalues import (
    DecodeOptions,
    KeyValues,
    StringTable,
    Value,
    find_keys,
    read_keyvalues,
    tree_to_python,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _as_reader(source: Union[ByteReader, BinaryIO]) -> ByteReader:
    return source if isinstance(source, ByteReader) else ByteReader(source)


@dataclass(frozen=True)
class App:
    """One application record: fixed header plus its key-value payload."""

    size: int
    state: int
    last_update: int
    access_token: int
    checksum_txt: bytes
    change_number: int
    checksum_bin: bytes
    key_values: KeyValues

    def get(self, keys: Sequence[str]) -> Optional[Value]:
        return find_keys(self.key_values, keys)

    def to_dict(self, typed: bool = False) -> Dict[str, object]:
        return {
            "size": self.size,
            "state": self.state,
            "last_update": self.last_update,
            "access_token": self.access_token,
            "checksum_txt": self.checksum_txt.hex(),
            "change_number": self.change_number,
            "checksum_bin": self.checksum_bin.hex(),
            "key_values": tree_to_python(self.key_values, typed=typed),
        }


@dataclass(frozen=True)
class AppInfo:
    """Every application record in one ``appinfo.vdf`` file, keyed by id."""

    magic: int
    universe: int
    apps: Mapping[int, App]

    @property
    def has_string_table(self) -> bool:
        return self.magic == APPINFO_MAGIC_V29

    @classmethod
    def read(
        cls,
        source: Union[ByteReader, BinaryIO],
        options: Optional[DecodeOptions] = None,
    ) -> "AppInfo":
        reader = _as_reader(source)
        magic = reader.read_u32()
        if magic not in APPINFO_MAGICS:
            raise UnsupportedVersionError(magic)
        universe = reader.read_u32()

        string_table = StringTable.read(reader) if magic == APPINFO_MAGIC_V29 else None

        apps: Dict[int, App] = {}
        while True:
            app_id = reader.read_u32()
            if app_id == APP_END_ID:
                break
            (
                size,
                state,
                last_update,
                access_token,
                checksum_txt,
                change_number,
                checksum_bin,
            ) = reader.unpack(APP_HEADER_STRUCT)
            key_values = read_keyvalues(reader, options, string_table)
            apps[app_id] = App(
                size=size,
                state=state,
                last_update=last_update,
                access_token=access_token,
                checksum_txt=checksum_txt,
                change_number=change_number,
                checksum_bin=checksum_bin,
                key_values=key_values,
            )
            logger.debug(
                "Decoded app %d (change %d, %d top-level keys)",
                app_id,
                change_number,
                len(key_values),
            )

        logger.info(
            "Read %d apps (magic %#x, universe %d)", len(apps), magic, universe
        )
        return cls(magic=magic, universe=universe, apps=MappingProxyType(apps))

    def to_dict(self, typed: bool = False) -> Dict[str, object]:
        return {
            "magic": self.magic,
            "universe": self.universe,
            "apps": {
                str(app_id): app.to_dict(typed=typed)
                for app_id, app in sorted(self.apps.items())
            },
        }


@dataclass(frozen=True)
class Package:
    """One package record: fixed header plus its key-value payload."""

    checksum: bytes
    change_number: int
    # Unidentified 8-byte field stored after the change number.
    pics: int
    key_values: KeyValues

    def get(self, keys: Sequence[str]) -> Optional[Value]:
        return find_keys(self.key_values, keys)

    def to_dict(self, typed: bool = False) -> Dict[str, object]:
        return {
            "checksum": self.checksum.hex(),
            "change_number": self.change_number,
            "pics": self.pics,
            "key_values": tree_to_python(self.key_values, typed=typed),
        }


@dataclass(frozen=True)
class PackageInfo:
    """Every package record in one ``packageinfo.vdf`` file, keyed by id."""

    magic: int
    universe: int
    packages: Mapping[int, Package]

    @classmethod
    def read(
        cls,
        source: Union[ByteReader, BinaryIO],
        options: Optional[DecodeOptions] = None,
    ) -> "PackageInfo":
        reader = _as_reader(source)
        magic, universe = reader.unpack(FILE_HEADER_STRUCT)
        if magic not in PACKAGEINFO_MAGICS:
            logger.warning("Unrecognised packageinfo magic %#x; decoding anyway", magic)

        packages: Dict[int, Package] = {}
        while True:
            package_id = reader.read_u32()
            if package_id == PACKAGE_END_ID:
                break
            checksum, change_number, pics = reader.unpack(PACKAGE_HEADER_STRUCT)
            key_values = read_keyvalues(reader, options)
            packages[package_id] = Package(
                checksum=checksum,
                change_number=change_number,
                pics=pics,
                key_values=key_values,
            )
            logger.debug("Decoded package %d (change %d)", package_id, change_number)

        logger.info(
            "Read %d packages (magic %#x, universe %d)", len(packages), magic, universe
        )
        return cls(magic=magic, universe=universe, packages=MappingProxyType(packages))

    def to_dict(self, typed: bool = False) -> Dict[str, object]:
        return {
            "magic": self.magic,
            "universe": self.universe,
            "packages": {
                str(package_id): package.to_dict(typed=typed)
                for package_id, package in sorted(self.packages.items())
            },
        }


def detect_kind(magic: int) -> Optional[str]:
    """Map a leading magic number onto ``"appinfo"`` or ``"packageinfo"``."""

    if magic in APPINFO_MAGICS:
        return "appinfo"
    if magic in PACKAGEINFO_MAGICS:
        return "packageinfo"
    return None


def load_appinfo(path: PathLike, options: Optional[DecodeOptions] = None) -> AppInfo:
    """Decode the ``appinfo.vdf`` file at ``path``."""

    path = Path(path).expanduser()
    with path.open("rb") as fh:
        return AppInfo.read(fh, options)


def load_packageinfo(
    path: PathLike, options: Optional[DecodeOptions] = None
) -> PackageInfo:
    """Decode the ``packageinfo.vdf`` file at ``path``."""

    path = Path(path).expanduser()
    with path.open("rb") as fh:
        return PackageInfo.read(fh, options)


__all__ = [
    "App",
    "AppInfo",
    "Package",
    "PackageInfo",
    "detect_kind",
    "load_appinfo",
    "load_packageinfo",
]
