"""
Content fingerprint matching.

Some released binaries carry no version export but are byte-for-byte
identical to a catalogued build. This module hashes a whole file with
SHA-256 and looks the digest up in a table of known fingerprints.

Tables are immutable mappings of lowercase hex digest -> version label.
Built-in tables live in binver.fingerprint_tables; extra tables can be
loaded from MessagePack files.
"""

import hashlib
import logging
import re
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

import msgpack

logger = logging.getLogger(__name__)

# Read size for streaming a file through the digest
HASH_CHUNK_SIZE = 64 * 1024

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")

FingerprintTable = Mapping[str, str]


def make_table(entries: Mapping[str, str] | Iterable[tuple[str, str]]) -> FingerprintTable:
    """Build an immutable fingerprint table.

    Args:
        entries: digest -> label pairs. Digests are normalized to lowercase.

    Raises:
        ValueError: If a digest is not 64 hex characters or appears twice
    """
    pairs = entries.items() if isinstance(entries, Mapping) else entries
    table: dict[str, str] = {}
    for digest, label in pairs:
        key = digest.strip().lower()
        if not _DIGEST_RE.match(key):
            raise ValueError(f"Not a SHA-256 hex digest: {digest!r}")
        if key in table:
            raise ValueError(
                f"Duplicate fingerprint {key} for {table[key]!r} and {label!r}"
            )
        table[key] = label
    return MappingProxyType(table)


def hash_file(path: Path) -> str:
    """SHA-256 of a file's full contents, as lowercase hex.

    Raises:
        OSError: If the file cannot be read
    """
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def match_known_version(path: Path, table: FingerprintTable) -> str | None:
    """Look up a file's fingerprint in a table.

    Args:
        path: File to fingerprint
        table: digest -> version label

    Returns:
        The version label, or None if the file is not catalogued.

    Raises:
        OSError: If the file cannot be read
    """
    if not table:
        return None
    fingerprint = hash_file(path)
    label = table.get(fingerprint)
    if label is None:
        logger.debug("%s: fingerprint %s not in table", path, fingerprint)
    return label


def load_fingerprint_table(path: Path) -> FingerprintTable:
    """Load a fingerprint table from a MessagePack file.

    The file holds a single map of hex digest -> version label.

    Raises:
        OSError: If the file cannot be read
        RuntimeError: If the file is not a valid table
    """
    content = path.read_bytes()
    try:
        data = msgpack.unpackb(content, raw=False, strict_map_key=True)
    except (msgpack.exceptions.UnpackException, ValueError) as e:
        raise RuntimeError(f"Failed to parse fingerprint table {path}: {e}") from e

    if not isinstance(data, dict):
        raise RuntimeError(
            f"Invalid fingerprint table {path}: expected map, "
            f"got {type(data).__name__}"
        )
    for digest, label in data.items():
        if not isinstance(digest, str) or not isinstance(label, str):
            raise RuntimeError(
                f"Invalid fingerprint table {path}: entries must be str -> str"
            )
    try:
        return make_table(data)
    except ValueError as e:
        raise RuntimeError(f"Invalid fingerprint table {path}: {e}") from e


def dump_fingerprint_table(table: FingerprintTable) -> bytes:
    """Serialize a table in the format load_fingerprint_table reads."""
    return msgpack.packb(dict(table), use_bin_type=True)
