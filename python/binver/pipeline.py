"""
Version resolution pipeline.

Policy, in order of trust:
1. An exported version string is the binary's own report and wins outright.
2. Otherwise a fingerprint match against a table of catalogued builds.
3. Otherwise the version is unknown.

Unreadable files are reported as such and never raised past this layer, so
callers can tell "could not check" from "checked, no version".
"""

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .fingerprint import FingerprintTable, match_known_version
from .loader import LoaderBackend
from .resolver import resolve_symbol_as_string
from .strings import StringShape

logger = logging.getLogger(__name__)


class VersionSource(enum.Enum):
    SYMBOL = "symbol"
    FINGERPRINT = "fingerprint"
    UNKNOWN = "unknown"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class VersionResult:
    """Outcome of resolving one binary's version."""

    path: Path
    version: str | None = None
    source: VersionSource = VersionSource.UNKNOWN
    error: str | None = None

    @property
    def found(self) -> bool:
        return self.version is not None

    @property
    def readable(self) -> bool:
        return self.source is not VersionSource.UNREADABLE

    def __str__(self) -> str:
        if self.source is VersionSource.UNREADABLE:
            return f"{self.path}: version could not be determined ({self.error})"
        if self.version is None:
            return f"{self.path}: unknown version"
        return f"{self.path}: {self.version} (from {self.source.value})"


@dataclass(frozen=True)
class VersionRequest:
    """Arguments for one resolve_version() call."""

    path: Path
    symbol_name: str
    fingerprint_table: FingerprintTable | None = None
    shape: StringShape = StringShape.AUTO


def resolve_version(
    path: Path,
    symbol_name: str,
    fingerprint_table: FingerprintTable | None = None,
    shape: StringShape = StringShape.AUTO,
    backend: LoaderBackend | None = None,
) -> VersionResult:
    """Resolve the version of a binary module.

    Args:
        path: Binary to identify
        symbol_name: Export holding the version string
        fingerprint_table: digest -> version for builds without the export
        shape: Layout of the exported string
        backend: Loader backend for the dynamic strategy (tests)

    Returns:
        VersionResult; never raises for I/O failures, which are reported
        with source UNREADABLE.
    """
    try:
        version = resolve_symbol_as_string(path, symbol_name, shape, backend)
        if version is not None:
            return VersionResult(path, version, VersionSource.SYMBOL)

        if fingerprint_table:
            version = match_known_version(path, fingerprint_table)
            if version is not None:
                return VersionResult(path, version, VersionSource.FINGERPRINT)
    except OSError as e:
        logger.warning("Could not read %s: %s", path, e)
        return VersionResult(path, None, VersionSource.UNREADABLE, str(e))

    logger.debug("%s: no %s export and no fingerprint match", path, symbol_name)
    return VersionResult(path)


def resolve_versions(
    requests: Iterable[VersionRequest],
    max_workers: int | None = None,
    backend: LoaderBackend | None = None,
) -> list[VersionResult]:
    """Resolve several binaries in parallel.

    Each resolution opens its own file and loader handle, so no state is
    shared between workers. Results are returned in request order.
    """
    requests = list(requests)
    if not requests:
        return []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(
                resolve_version,
                request.path,
                request.symbol_name,
                request.fingerprint_table,
                request.shape,
                backend,
            )
            for request in requests
        ]
        return [future.result() for future in futures]
