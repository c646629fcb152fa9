#!/usr/bin/env python3
"""
Binary module version CLI.

Identifies the version of a native module from its exported version string
or, failing that, its content fingerprint.

Usage:
    binver <binary> --symbol bootstrapperVersion [--table bootstrapper:win64]
    binver --install-dir <game dir> [--target bootstrapper]
    python -m binver.tools.binver_cli ...
"""

import argparse
import logging
import sys
from pathlib import Path

from binver.fingerprint import FingerprintTable, load_fingerprint_table, make_table
from binver.fingerprint_tables import get_fingerprint_table
from binver.pipeline import VersionResult, VersionSource, resolve_version
from binver.platform_utils import configure_windows_console
from binver.strings import StringShape
from binver.targets import KNOWN_TARGETS, find_target, resolve_install_versions

EXIT_FOUND = 0
EXIT_UNKNOWN = 1
EXIT_UNREADABLE = 2


def _parse_table_key(value: str) -> tuple[str, str]:
    product, sep, architecture = value.partition(":")
    if not sep or not product or not architecture:
        raise argparse.ArgumentTypeError(
            f"expected PRODUCT:ARCH (e.g. bootstrapper:win64), got {value!r}"
        )
    return product, architecture


def build_table(
    table_keys: list[tuple[str, str]], table_files: list[Path]
) -> FingerprintTable | None:
    """Merge built-in and file-based tables into one.

    Raises:
        KeyError: If a built-in table is unknown
        RuntimeError: If a table file is invalid
        OSError: If a table file cannot be read
        ValueError: If the same fingerprint appears in two tables
    """
    tables = [get_fingerprint_table(*key) for key in table_keys]
    tables.extend(load_fingerprint_table(path) for path in table_files)
    if not tables:
        return None
    return make_table(pair for table in tables for pair in table.items())


def exit_code(results: list[VersionResult]) -> int:
    if any(r.source is VersionSource.UNREADABLE for r in results):
        return EXIT_UNREADABLE
    if any(not r.found for r in results):
        return EXIT_UNKNOWN
    return EXIT_FOUND


def main(argv: list[str] | None = None) -> int:
    configure_windows_console()

    parser = argparse.ArgumentParser(
        description="Identify the version of a native binary module"
    )
    parser.add_argument("binary", type=Path, nargs="?", help="Module to identify")
    parser.add_argument("--symbol", help="Export holding the version string")
    parser.add_argument(
        "--shape",
        choices=[s.value for s in StringShape],
        default=StringShape.AUTO.value,
        help="Layout of the exported string (default: auto)",
    )
    parser.add_argument(
        "--table",
        type=_parse_table_key,
        action="append",
        default=[],
        metavar="PRODUCT:ARCH",
        help="Built-in fingerprint table to match against (repeatable)",
    )
    parser.add_argument(
        "--table-file",
        type=Path,
        action="append",
        default=[],
        help="MessagePack fingerprint table to match against (repeatable)",
    )
    parser.add_argument(
        "--install-dir",
        type=Path,
        help="Resolve every known product inside this install directory",
    )
    parser.add_argument(
        "--target",
        action="append",
        choices=[t.name for t in KNOWN_TARGETS],
        help="With --install-dir, only resolve these products",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.install_dir is not None:
        if args.binary is not None:
            parser.error("give either a binary or --install-dir, not both")
        targets = (
            tuple(find_target(name) for name in args.target)
            if args.target
            else KNOWN_TARGETS
        )
        by_name = resolve_install_versions(args.install_dir, targets)
        for name, result in by_name.items():
            print(f"{name}: {result}")
        return exit_code(list(by_name.values()))

    if args.binary is None or not args.symbol:
        parser.error("a binary and --symbol are required without --install-dir")

    try:
        table = build_table(args.table, args.table_file)
    except (KeyError, RuntimeError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNREADABLE

    result = resolve_version(args.binary, args.symbol, table, StringShape(args.shape))
    print(result)
    return exit_code([result])


if __name__ == "__main__":
    sys.exit(main())
