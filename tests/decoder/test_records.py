from __future__ import annotations

import io
import logging
import struct
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import pytest

from binvdf.common import (
    APPINFO_MAGIC_V28,
    APPINFO_MAGIC_V29,
    InvalidTypeError,
    NestingDepthError,
    StringTableError,
    UnsupportedVersionError,
    VdfReadError,
)
from binvdf.keyvalues import DecodeOptions, Value, ValueType
from binvdf.records import (
    AppInfo,
    PackageInfo,
    detect_kind,
    load_appinfo,
    load_packageinfo,
)
from tests.vdf_fixtures import (
    AppFixture,
    PackageFixture,
    build_appinfo,
    build_packageinfo,
    nested,
    tree,
    write_fixture,
)


def _tf2_tree() -> dict:
    return tree(
        appinfo=nested(
            appid=Value(ValueType.INT32, 440),
            common=nested(
                name=Value(ValueType.STRING, "Team Fortress 2"),
                type=Value(ValueType.STRING, "Game"),
            ),
        )
    )


def test_current_revision_with_single_empty_record() -> None:
    data = build_appinfo({7: AppFixture()}, magic=APPINFO_MAGIC_V29)

    info = AppInfo.read(io.BytesIO(data))

    assert info.magic == APPINFO_MAGIC_V29
    assert info.has_string_table
    assert list(info.apps) == [7]
    assert info.apps[7].key_values == {}


@pytest.mark.parametrize("magic", [APPINFO_MAGIC_V28, APPINFO_MAGIC_V29])
def test_appinfo_reads_headers_and_payloads(magic: int) -> None:
    apps = {
        440: AppFixture(
            key_values=_tf2_tree(),
            size=1234,
            state=2,
            last_update=1_690_000_000,
            access_token=0xDEADBEEFCAFEF00D,
            checksum_txt=bytes(range(20)),
            change_number=19_000_000,
            checksum_bin=bytes(range(20, 40)),
        ),
        570: AppFixture(key_values=tree(appinfo=nested(appid=Value(ValueType.INT32, 570)))),
    }
    data = build_appinfo(apps, magic=magic, universe=1)

    info = AppInfo.read(io.BytesIO(data))

    assert info.universe == 1
    assert sorted(info.apps) == [440, 570]
    app = info.apps[440]
    assert app.size == 1234
    assert app.state == 2
    assert app.last_update == 1_690_000_000
    assert app.access_token == 0xDEADBEEFCAFEF00D
    assert app.checksum_txt == bytes(range(20))
    assert app.change_number == 19_000_000
    assert app.checksum_bin == bytes(range(20, 40))
    assert app.key_values == _tf2_tree()
    assert app.get(["appinfo", "common", "name"]) == Value(ValueType.STRING, "Team Fortress 2")
    assert app.get(["appinfo", "common", "missing"]) is None
    assert info.apps[570].get(["appinfo", "appid"]).data == 570


def test_unknown_magic_fails_before_reading_further() -> None:
    source = io.BytesIO(struct.pack("<I", 0x11111111) + b"\xff" * 32)

    with pytest.raises(UnsupportedVersionError) as excinfo:
        AppInfo.read(source)

    assert excinfo.value.magic == 0x11111111
    assert "0x11111111" in str(excinfo.value)
    assert source.tell() == 4


def test_duplicate_app_ids_keep_the_last_record() -> None:
    first = build_appinfo({9: AppFixture(change_number=1)})
    second = build_appinfo({9: AppFixture(change_number=2)})
    # Splice the second record in front of the first file's terminator.
    data = first[:-4] + second[8:]

    info = AppInfo.read(io.BytesIO(data))

    assert list(info.apps) == [9]
    assert info.apps[9].change_number == 2


def test_missing_terminator_is_a_read_error() -> None:
    data = build_appinfo({7: AppFixture(key_values=_tf2_tree())})

    with pytest.raises(VdfReadError):
        AppInfo.read(io.BytesIO(data[:-4]))


def test_string_table_mismatch_aborts_appinfo() -> None:
    data = bytearray(build_appinfo({7: AppFixture(key_values=_tf2_tree())}, magic=APPINFO_MAGIC_V29))
    (offset,) = struct.unpack_from("<q", data, 8)
    declared = struct.unpack_from("<I", data, offset)[0]
    struct.pack_into("<I", data, offset, declared + 1)

    with pytest.raises(StringTableError):
        AppInfo.read(io.BytesIO(bytes(data)))


def test_invalid_tag_inside_record_aborts_appinfo() -> None:
    data = bytearray(build_appinfo({7: AppFixture(key_values=_tf2_tree())}))
    tree_start = 8 + 4 + 64
    data[tree_start] = 0x09

    with pytest.raises(InvalidTypeError) as excinfo:
        AppInfo.read(io.BytesIO(bytes(data)))
    assert excinfo.value.tag == 0x09


def test_decode_options_reach_the_tree_builder() -> None:
    data = build_appinfo({7: AppFixture(key_values=_tf2_tree())})

    with pytest.raises(NestingDepthError):
        AppInfo.read(io.BytesIO(data), DecodeOptions(max_depth=1))


def test_collections_are_read_only() -> None:
    info = AppInfo.read(io.BytesIO(build_appinfo({7: AppFixture()})))

    with pytest.raises(TypeError):
        info.apps[8] = info.apps[7]  # type: ignore[index]


def test_packageinfo_terminates_on_all_ones() -> None:
    packages = {
        0: PackageFixture(key_values=tree(packageid=Value(ValueType.INT32, 0))),
        17: PackageFixture(
            key_values=tree(
                packageid=Value(ValueType.INT32, 17),
                appids=nested(**{"0": Value(ValueType.INT32, 440)}),
            ),
            checksum=b"\xab" * 20,
            change_number=555,
            pics=0x0102030405060708,
        ),
    }
    data = build_packageinfo(packages, universe=1)

    info = PackageInfo.read(io.BytesIO(data))

    assert sorted(info.packages) == [0, 17]
    package = info.packages[17]
    assert package.checksum == b"\xab" * 20
    assert package.change_number == 555
    assert package.pics == 0x0102030405060708
    assert package.get(["appids", "0"]) == Value(ValueType.INT32, 440)


def test_packageinfo_accepts_unknown_magic_with_warning(caplog) -> None:
    data = build_packageinfo({1: PackageFixture()}, magic=0x12345678)

    with caplog.at_level(logging.WARNING, logger="binvdf.records"):
        info = PackageInfo.read(io.BytesIO(data))

    assert info.magic == 0x12345678
    assert list(info.packages) == [1]
    assert "Unrecognised packageinfo magic 0x12345678" in caplog.text


def test_to_dict_hex_encodes_checksums() -> None:
    data = build_appinfo({440: AppFixture(key_values=_tf2_tree())}, universe=1)

    payload = AppInfo.read(io.BytesIO(data)).to_dict()

    app = payload["apps"]["440"]
    assert app["checksum_txt"] == "11" * 20
    assert app["key_values"]["appinfo"]["common"]["name"] == "Team Fortress 2"


def test_path_loaders(tmp_path: Path) -> None:
    app_path = write_fixture(tmp_path / "appcache" / "appinfo.vdf", build_appinfo({7: AppFixture()}))
    package_path = write_fixture(
        tmp_path / "appcache" / "packageinfo.vdf", build_packageinfo({3: PackageFixture()})
    )

    assert list(load_appinfo(app_path).apps) == [7]
    assert list(load_packageinfo(str(package_path)).packages) == [3]


@pytest.mark.parametrize(
    "magic, expected",
    [
        (APPINFO_MAGIC_V28, "appinfo"),
        (APPINFO_MAGIC_V29, "appinfo"),
        (0x06565528, "packageinfo"),
        (0x11111111, None),
    ],
)
def test_detect_kind(magic: int, expected) -> None:
    assert detect_kind(magic) == expected
