"""
Bounds-checked reads over untrusted binary data.

Every header, table and string read by the format reader goes through a
ByteWindow. A read declares its length up front and is checked against the
size of the underlying buffer, so a corrupt offset surfaces as OutOfBounds
instead of a short slice or a struct.error deep inside parsing.
"""

import mmap
import os
import struct
from pathlib import Path

from .strings import narrow_wide_units


class OutOfBounds(ValueError):
    """Raised when a read would extend past the end of the data."""

    pass


class ByteWindow:
    """Read-only view over the bytes of a binary file.

    Usage:
        with ByteWindow.load(Path("foo.dll")) as window:
            magic = window.u16(0)
            name = window.c_string(0x3000)
    """

    def __init__(self, data, path: Path | None = None):
        self._data = memoryview(data)
        self._path = path
        self._mapping = data if isinstance(data, mmap.mmap) else None

    @classmethod
    def load(cls, path: Path) -> "ByteWindow":
        """Map a file read-only into a window.

        Call close(), or use the window as a context manager, to unmap it.

        Raises:
            OSError: If the file cannot be opened or mapped
        """
        with open(path, "rb") as f:
            # Zero-length files cannot be mapped
            if os.fstat(f.fileno()).st_size == 0:
                return cls(b"", path)
            mapping = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        return cls(mapping, path)

    def close(self) -> None:
        """Release the buffer and unmap the file, if mapped."""
        self._data.release()
        if self._mapping is not None:
            self._mapping.close()
            self._mapping = None

    def __enter__(self) -> "ByteWindow":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def path(self) -> Path | None:
        return self._path

    def check(self, offset: int, length: int) -> None:
        """Ensure [offset, offset + length) lies inside the data."""
        if offset < 0 or length < 0 or offset + length > len(self._data):
            raise OutOfBounds(
                f"Read of {length} bytes at 0x{offset:x} exceeds data size "
                f"0x{len(self._data):x}"
            )

    def contains(self, offset: int, length: int = 1) -> bool:
        return 0 <= offset and 0 <= length and offset + length <= len(self._data)

    def read(self, offset: int, length: int) -> bytes:
        self.check(offset, length)
        return bytes(self._data[offset : offset + length])

    def view(self) -> memoryview:
        """The whole buffer, for struct-based header parsing."""
        return self._data

    def unpack(self, fmt: str, offset: int) -> tuple:
        self.check(offset, struct.calcsize(fmt))
        return struct.unpack_from(fmt, self._data, offset)

    def u16(self, offset: int) -> int:
        return self.unpack("<H", offset)[0]

    def u32(self, offset: int) -> int:
        return self.unpack("<I", offset)[0]

    def u64(self, offset: int) -> int:
        return self.unpack("<Q", offset)[0]

    def c_string(self, offset: int, max_length: int = 512) -> bytes:
        """Read a null-terminated byte string (terminator not included).

        Raises:
            OutOfBounds: If offset is outside the data or no terminator is
                found within max_length bytes
        """
        self.check(offset, 1)
        end = min(offset + max_length, len(self._data))
        chunk = bytes(self._data[offset:end])
        null_pos = chunk.find(b"\x00")
        if null_pos < 0:
            raise OutOfBounds(
                f"Unterminated string at 0x{offset:x} (searched {len(chunk)} bytes)"
            )
        return chunk[:null_pos]

    def wide_string(self, offset: int, max_chars: int) -> str:
        """Read a UTF-16LE string until a zero code unit or max_chars units.

        Reading stops early at end of data; the string is never read past it.
        """
        self.check(offset, 2)
        units = []
        pos = offset
        while len(units) < max_chars and pos + 2 <= len(self._data):
            (unit,) = struct.unpack_from("<H", self._data, pos)
            if unit == 0:
                break
            units.append(unit)
            pos += 2
        return narrow_wide_units(units)
