"""
Symbol resolution through the operating system's dynamic loader.

The module is mapped with the host loader, the export is resolved with the
loader's own lookup, the string at the resolved address is read out of
process memory and the module is released again before returning.

On Windows the module is loaded with DONT_RESOLVE_DLL_REFERENCES, so
DllMain and the import table are not processed. POSIX loaders have no such
mode: dlopen() runs the library's constructors. Only point the POSIX
backend at libraries whose initializers are safe to run.

Loader access goes through a LoaderBackend so the resolver can be tested
without loading real native code.
"""

import ctypes
import logging
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .platform_utils import is_windows
from .strings import MAX_VERSION_CHARS, StringShape, narrow_wide_units

logger = logging.getLogger(__name__)

# LoadLibraryEx flag: map the image without calling DllMain or loading imports
DONT_RESOLVE_DLL_REFERENCES = 0x00000001


def _export_name(name: str) -> bytes | None:
    """Export names are ASCII; anything else cannot be exported."""
    try:
        return name.encode("ascii")
    except UnicodeEncodeError:
        return None


class LoaderBackend(ABC):
    """Abstract access to a dynamic loader and the memory it maps."""

    @abstractmethod
    def open(self, path: Path) -> int | None:
        """Map a library. Returns an opaque handle, or None on failure."""
        ...

    @abstractmethod
    def symbol(self, handle: int, name: str) -> int | None:
        """Address of an exported symbol, or None if it is not exported."""
        ...

    @abstractmethod
    def close(self, handle: int) -> None:
        """Release a handle returned by open()."""
        ...

    @abstractmethod
    def read_pointer(self, address: int) -> int:
        """Read a native pointer stored at address."""
        ...

    @abstractmethod
    def read_wide_string(self, address: int, max_chars: int) -> str:
        """Read a null-terminated wchar_t string at address, narrowed."""
        ...


class NativeLoaderBackend(LoaderBackend):
    """Memory reads shared by the real loaders, via ctypes."""

    def read_pointer(self, address: int) -> int:
        return ctypes.c_void_p.from_address(address).value or 0

    def read_wide_string(self, address: int, max_chars: int) -> str:
        # Raw code units: c_wchar rejects values that are not valid code points
        if ctypes.sizeof(ctypes.c_wchar) == 2:
            unit_type = ctypes.c_uint16
        else:
            unit_type = ctypes.c_uint32
        unit_size = ctypes.sizeof(unit_type)
        units = []
        for i in range(max_chars):
            unit = unit_type.from_address(address + i * unit_size).value
            if unit == 0:
                break
            units.append(unit)
        return narrow_wide_units(units)


class WindowsLoaderBackend(NativeLoaderBackend):
    """LoadLibraryExW / GetProcAddress / FreeLibrary."""

    def __init__(self):
        kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)

        self._load = kernel32.LoadLibraryExW
        self._load.argtypes = [ctypes.c_wchar_p, ctypes.c_void_p, ctypes.c_uint32]
        self._load.restype = ctypes.c_void_p

        self._proc = kernel32.GetProcAddress
        self._proc.argtypes = [ctypes.c_void_p, ctypes.c_char_p]
        self._proc.restype = ctypes.c_void_p

        self._free = kernel32.FreeLibrary
        self._free.argtypes = [ctypes.c_void_p]
        self._free.restype = ctypes.c_int

    def open(self, path: Path) -> int | None:
        handle = self._load(str(path), None, DONT_RESOLVE_DLL_REFERENCES)
        if not handle:
            logger.debug(
                "LoadLibraryExW(%s) failed with error %d", path, ctypes.get_last_error()
            )
            return None
        return handle

    def symbol(self, handle: int, name: str) -> int | None:
        encoded = _export_name(name)
        if encoded is None:
            return None
        return self._proc(handle, encoded) or None

    def close(self, handle: int) -> None:
        if not self._free(handle):
            logger.debug("FreeLibrary failed with error %d", ctypes.get_last_error())


class PosixLoaderBackend(NativeLoaderBackend):
    """dlopen / dlsym / dlclose."""

    def __init__(self):
        libc = ctypes.CDLL(None)

        self._dlopen = libc.dlopen
        self._dlopen.argtypes = [ctypes.c_char_p, ctypes.c_int]
        self._dlopen.restype = ctypes.c_void_p

        self._dlsym = libc.dlsym
        self._dlsym.argtypes = [ctypes.c_void_p, ctypes.c_char_p]
        self._dlsym.restype = ctypes.c_void_p

        self._dlclose = libc.dlclose
        self._dlclose.argtypes = [ctypes.c_void_p]
        self._dlclose.restype = ctypes.c_int

        self._dlerror = libc.dlerror
        self._dlerror.argtypes = []
        self._dlerror.restype = ctypes.c_char_p

        # Symbols stay private to this handle and are bound on first use
        self._mode = os.RTLD_LAZY | os.RTLD_LOCAL

    def _last_error(self) -> str:
        message = self._dlerror()
        return message.decode(errors="replace") if message else "unknown error"

    def open(self, path: Path) -> int | None:
        handle = self._dlopen(os.fsencode(path), self._mode)
        if not handle:
            logger.debug("dlopen(%s) failed: %s", path, self._last_error())
            return None
        return handle

    def symbol(self, handle: int, name: str) -> int | None:
        encoded = _export_name(name)
        if encoded is None:
            return None
        return self._dlsym(handle, encoded) or None

    def close(self, handle: int) -> None:
        if self._dlclose(handle) != 0:
            logger.debug("dlclose failed: %s", self._last_error())


def default_backend() -> LoaderBackend:
    """The loader backend for the running platform."""
    if is_windows():
        return WindowsLoaderBackend()
    return PosixLoaderBackend()


@contextmanager
def loaded_library(backend: LoaderBackend, path: Path) -> Iterator[int | None]:
    """Map a library for the duration of a with-block.

    Yields the handle, or None if the library could not be loaded. The
    handle is released on every exit path, including exceptions.
    """
    handle = backend.open(path)
    try:
        yield handle
    finally:
        if handle is not None:
            backend.close(handle)


def resolve_loaded_symbol(
    path: Path,
    symbol_name: str,
    shape: StringShape = StringShape.AUTO,
    backend: LoaderBackend | None = None,
) -> str | None:
    """Resolve an exported string through the dynamic loader.

    Args:
        path: Library to load
        symbol_name: Export holding the string
        shape: DIRECT reads the string at the symbol; POINTER dereferences
            a pointer stored there first. AUTO is DIRECT, since the loader
            has already applied relocations.
        backend: Loader to use, default_backend() if None

    Returns:
        The narrowed string, or None if the library does not load or does
        not export symbol_name.

    Raises:
        OSError: If the file does not exist or cannot be opened for reading
    """
    # The loader reports a missing file the same way as a bad image, so
    # check readability first to keep I/O failures distinct.
    with open(path, "rb"):
        pass

    if backend is None:
        backend = default_backend()

    with loaded_library(backend, path) as handle:
        if handle is None:
            return None

        address = backend.symbol(handle, symbol_name)
        if address is None:
            logger.debug("%s: %s is not exported", path, symbol_name)
            return None

        if shape is StringShape.POINTER:
            address = backend.read_pointer(address)
            if not address:
                logger.debug("%s: %s holds a null pointer", path, symbol_name)
                return None

        return backend.read_wide_string(address, MAX_VERSION_CHARS)
