"""
Symbol resolution strategies and artifact routing.

A SymbolResolver turns (path, symbol name) into the symbol's string value.
There are two strategies:

- StaticFormatResolver reads PE files directly (no loading), on any host
- DynamicLoaderResolver asks the host's dynamic loader

select_resolver() picks exactly one strategy per artifact, from its file
suffix and, failing that, its magic bytes. A strategy that finds nothing
is final: the other strategy is not tried.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from .coff.reader import read_export_string
from .format_detect import sniff_binary_format
from .loader import LoaderBackend, resolve_loaded_symbol
from .platform_utils import PE_SUFFIXES, native_library_suffixes
from .strings import StringShape

logger = logging.getLogger(__name__)


class SymbolResolver(ABC):
    """Resolves a named export of a binary to its string value."""

    name: str = "abstract"

    def __init__(self, shape: StringShape = StringShape.AUTO):
        self.shape = shape

    @abstractmethod
    def resolve(self, path: Path, symbol_name: str) -> str | None:
        """Return the export's string value, or None if it is not found.

        Raises:
            OSError: If the file cannot be read
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(shape={self.shape.value})"


class StaticFormatResolver(SymbolResolver):
    """Reads exports straight from PE file bytes."""

    name = "static"

    def resolve(self, path: Path, symbol_name: str) -> str | None:
        return read_export_string(path, symbol_name, self.shape)


class DynamicLoaderResolver(SymbolResolver):
    """Reads exports from a copy of the module mapped by the host loader."""

    name = "dynamic"

    def __init__(
        self,
        shape: StringShape = StringShape.AUTO,
        backend: LoaderBackend | None = None,
    ):
        super().__init__(shape)
        self.backend = backend

    def resolve(self, path: Path, symbol_name: str) -> str | None:
        return resolve_loaded_symbol(path, symbol_name, self.shape, self.backend)


def select_resolver(
    path: Path,
    shape: StringShape = StringShape.AUTO,
    backend: LoaderBackend | None = None,
) -> SymbolResolver | None:
    """Choose the resolver for an artifact.

    PE suffixes go to the static reader and the host's native library
    suffixes to the dynamic loader. Anything else is routed by its magic
    bytes: PE to the static reader, ELF to the dynamic loader.

    Returns:
        The resolver, or None if the artifact is of no supported type.

    Raises:
        OSError: If the file has to be sniffed and cannot be read
    """
    suffix = path.suffix.lower()
    if suffix in PE_SUFFIXES:
        return StaticFormatResolver(shape)
    if suffix in native_library_suffixes():
        return DynamicLoaderResolver(shape, backend)

    fmt = sniff_binary_format(path)
    if fmt == "coff":
        return StaticFormatResolver(shape)
    if fmt == "elf":
        return DynamicLoaderResolver(shape, backend)
    return None


def resolve_symbol_as_string(
    path: Path,
    symbol_name: str,
    shape: StringShape = StringShape.AUTO,
    backend: LoaderBackend | None = None,
) -> str | None:
    """Resolve a named export of any supported artifact to a string.

    Returns:
        The non-empty string value, or None if not found.

    Raises:
        OSError: If the file cannot be read
    """
    resolver = select_resolver(path, shape, backend)
    if resolver is None:
        logger.debug("%s: not a supported binary, no resolver", path)
        return None

    logger.debug("%s: resolving %s with %r", path, symbol_name, resolver)
    value = resolver.resolve(path, symbol_name)
    if not value:
        return None
    return value
