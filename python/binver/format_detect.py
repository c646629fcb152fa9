"""
Binary format detection utilities.

This module sniffs whether a file is ELF or PE/COFF from its magic bytes,
so artifacts without a telling file extension can still be routed to the
right symbol resolver.
"""

from pathlib import Path


# Magic bytes for format detection
ELF_MAGIC = b"\x7fELF"
DOS_MAGIC = b"MZ"
PE_SIGNATURE = b"PE\x00\x00"

# PE header offsets beyond this are not produced by any linker
MAX_PE_OFFSET = 0x100000


class UnsupportedBinaryFormat(ValueError):
    """Raised when a binary is not ELF or PE/COFF format."""

    pass


def detect_binary_format(path: Path) -> str:
    """Detect whether a binary is ELF or PE/COFF format.

    Args:
        path: Path to binary file

    Returns:
        "elf" for ELF binaries, "coff" for PE/COFF binaries

    Raises:
        UnsupportedBinaryFormat: If the binary is neither ELF nor PE/COFF
        OSError: If the file cannot be read
    """
    with open(path, "rb") as f:
        header = f.read(64)

        if len(header) < 4:
            raise UnsupportedBinaryFormat(f"File too small to be a valid binary: {path}")

        if header[:4] == ELF_MAGIC:
            return "elf"

        if header[:2] == DOS_MAGIC and len(header) >= 0x40:
            pe_offset = int.from_bytes(header[0x3C:0x40], "little")
            if pe_offset < 0x40 or pe_offset > MAX_PE_OFFSET:
                raise UnsupportedBinaryFormat(
                    f"Invalid PE header offset {pe_offset:#x}: {path}"
                )
            f.seek(pe_offset)
            if f.read(4) == PE_SIGNATURE:
                return "coff"

    raise UnsupportedBinaryFormat(f"Binary is neither ELF nor PE/COFF format: {path}")


def sniff_binary_format(path: Path) -> str | None:
    """Like detect_binary_format, but returns None for unsupported files.

    Raises:
        OSError: If the file cannot be read
    """
    try:
        return detect_binary_format(path)
    except UnsupportedBinaryFormat:
        return None
