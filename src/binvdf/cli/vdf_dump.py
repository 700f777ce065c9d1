"""Dump Steam ``appinfo.vdf`` / ``packageinfo.vdf`` files as JSON or msgpack.

Example
-------
binvdf-dump ~/.steam/steam/appcache/appinfo.vdf --id 440 --key common/name
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import msgpack

from binvdf.common import ByteReader, UnsupportedVersionError, VdfError
from binvdf.keyvalues import DEFAULT_MAX_DEPTH, DecodeOptions
from binvdf.records import AppInfo, PackageInfo, detect_kind, load_appinfo, load_packageinfo

logger = logging.getLogger(__name__)

KINDS = ("auto", "appinfo", "packageinfo")
FORMATS = ("json", "msgpack")

RecordFile = Union[AppInfo, PackageInfo]


def resolve_kind(path: Path, requested: str = "auto") -> str:
    """Return the record kind of ``path``, sniffing the magic for ``"auto"``."""

    if requested != "auto":
        return requested
    with path.open("rb") as fh:
        magic = ByteReader(fh).read_u32()
    kind = detect_kind(magic)
    if kind is None:
        raise UnsupportedVersionError(magic)
    logger.info("Detected %s file (magic %#x)", kind, magic)
    return kind


def load(path: Path, kind: str = "auto", options: Optional[DecodeOptions] = None) -> RecordFile:
    kind = resolve_kind(path, kind)
    if kind == "appinfo":
        return load_appinfo(path, options)
    return load_packageinfo(path, options)


def build_payload(
    info: RecordFile,
    *,
    ids: Sequence[int] = (),
    key_path: Sequence[str] = (),
    typed: bool = False,
) -> Dict[str, object]:
    """Select records from ``info`` and convert them into plain primitives.

    With ``key_path`` each record is reduced to the value found at that path,
    or ``None`` when the path does not resolve.
    """

    section = "apps" if isinstance(info, AppInfo) else "packages"
    records = getattr(info, section)

    if ids:
        selected: List[int] = []
        for record_id in ids:
            if record_id in records:
                selected.append(record_id)
            else:
                logger.warning("No record with id %d in %s", record_id, section)
    else:
        selected = sorted(records)

    entries: Dict[str, object] = {}
    for record_id in selected:
        record = records[record_id]
        if key_path:
            value = record.get(key_path)
            entries[str(record_id)] = value.to_python(typed=typed) if value is not None else None
        else:
            entries[str(record_id)] = record.to_dict(typed=typed)

    return {"magic": info.magic, "universe": info.universe, section: entries}


def render(payload: Dict[str, object], *, format: str = "json") -> bytes:
    normalized = format.lower()
    if normalized == "json":
        text = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
        return (text + "\n").encode("utf-8")
    if normalized == "msgpack":
        return msgpack.packb(payload, use_bin_type=True)
    raise ValueError(f"Unsupported output format: {format}")


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Decode a binary appinfo.vdf or packageinfo.vdf file.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("path", type=Path, help="Path to the .vdf file to decode")
    parser.add_argument(
        "--kind",
        choices=KINDS,
        default="auto",
        help="Record layout of the file; auto sniffs the leading magic number",
    )
    parser.add_argument(
        "--id",
        dest="ids",
        type=int,
        action="append",
        default=[],
        help="Only dump the record with this id (repeatable)",
    )
    parser.add_argument(
        "--key",
        default=None,
        help="Slash separated key path to print for each record, e.g. common/name",
    )
    parser.add_argument("--format", choices=FORMATS, default="json", help="Output format")
    parser.add_argument(
        "--typed",
        action="store_true",
        help="Keep each value's wire type alongside its data",
    )
    parser.add_argument(
        "--output",
        type=Path,
        help="Write the dump to this file instead of stdout",
    )
    parser.add_argument(
        "--alt-format",
        action="store_true",
        help="Terminate key-value blocks with 0x0B instead of 0x08",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=DEFAULT_MAX_DEPTH,
        help="Maximum nesting depth accepted in key-value payloads",
    )
    parser.add_argument(
        "--verbose",
        dest="verbose",
        action="store_true",
        default=None,
        help="Enable verbose logging (can also set BINVDF_VERBOSE=1)",
    )
    parser.add_argument(
        "--quiet",
        dest="verbose",
        action="store_false",
        help="Disable verbose logging",
    )

    args = parser.parse_args(argv)

    args.path = args.path.expanduser()
    if args.output is not None:
        args.output = args.output.expanduser()

    if args.max_depth < 0:
        parser.error("--max-depth must be a non-negative integer")

    if args.key is not None:
        args.key_path = [part for part in args.key.split("/") if part]
        if not args.key_path:
            parser.error("--key must name at least one key")
    else:
        args.key_path = []

    if args.format == "msgpack" and args.output is None:
        parser.error("--output is required with --format msgpack")

    if args.verbose is None:
        env_value = os.environ.get("BINVDF_VERBOSE")
        if env_value is None:
            args.verbose = False
        else:
            args.verbose = env_value.lower() not in {"", "0", "false", "no"}

    return args


def main(argv: Sequence[str] | None = None) -> None:
    args = _parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.INFO)

    options = DecodeOptions(alt_format=args.alt_format, max_depth=args.max_depth)
    try:
        info = load(args.path, args.kind, options)
    except (VdfError, OSError) as exc:
        print(f"binvdf-dump: {args.path}: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    payload = build_payload(info, ids=args.ids, key_path=args.key_path, typed=args.typed)
    rendered = render(payload, format=args.format)

    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_bytes(rendered)
        logger.info("Wrote %d bytes to %s", len(rendered), args.output)
    else:
        # Bypass the text layer so the console encoding cannot reject the UTF-8 dump.
        sys.stdout.flush()
        sys.stdout.buffer.write(rendered)
        sys.stdout.buffer.flush()


if __name__ == "__main__":
    main()
