"""
binver: version identification for third-party native modules.

A module's version is read from an exported version string, either
statically from a PE file or through the host's dynamic loader for native
shared libraries. Builds that export no version are identified by matching
the SHA-256 of the whole file against tables of catalogued releases.

    from pathlib import Path
    from binver import resolve_version, BOOTSTRAPPER_WIN64

    result = resolve_version(Path("xinput1_3.dll"), "bootstrapperVersion",
                             BOOTSTRAPPER_WIN64)
    print(result.version, result.source)

For the individual strategies, use the modules directly:

    from binver.coff import CoffReader, locate_export
    from binver.loader import resolve_loaded_symbol
    from binver.fingerprint import match_known_version
"""

from .fingerprint import (
    FingerprintTable,
    hash_file,
    load_fingerprint_table,
    make_table,
    match_known_version,
)
from .fingerprint_tables import (
    BOOTSTRAPPER_WIN64,
    FINGERPRINT_TABLES,
    get_fingerprint_table,
)
from .format_detect import (
    detect_binary_format,
    UnsupportedBinaryFormat,
)
from .pipeline import (
    VersionRequest,
    VersionResult,
    VersionSource,
    resolve_version,
    resolve_versions,
)
from .resolver import (
    DynamicLoaderResolver,
    StaticFormatResolver,
    SymbolResolver,
    resolve_symbol_as_string,
    select_resolver,
)
from .strings import MAX_VERSION_CHARS, StringShape
from .targets import (
    BOOTSTRAPPER,
    KNOWN_TARGETS,
    MOD_LOADER,
    ProductTarget,
    resolve_install_versions,
)

__all__ = [
    # Pipeline
    "VersionRequest",
    "VersionResult",
    "VersionSource",
    "resolve_version",
    "resolve_versions",
    # Symbol resolution
    "SymbolResolver",
    "StaticFormatResolver",
    "DynamicLoaderResolver",
    "resolve_symbol_as_string",
    "select_resolver",
    "StringShape",
    "MAX_VERSION_CHARS",
    # Fingerprints
    "FingerprintTable",
    "hash_file",
    "load_fingerprint_table",
    "make_table",
    "match_known_version",
    "BOOTSTRAPPER_WIN64",
    "FINGERPRINT_TABLES",
    "get_fingerprint_table",
    # Format detection
    "detect_binary_format",
    "UnsupportedBinaryFormat",
    # Products
    "ProductTarget",
    "BOOTSTRAPPER",
    "MOD_LOADER",
    "KNOWN_TARGETS",
    "resolve_install_versions",
]
