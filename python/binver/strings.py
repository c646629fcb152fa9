"""
Exported version string layout and narrowing.

Shared by the static PE reader and the dynamic loader resolver, which read
the same kinds of export from a file and from memory respectively.
"""

import enum

# Longest version string read from an export, in characters
MAX_VERSION_CHARS = 50


class StringShape(enum.Enum):
    """How an exported string value is laid out at the export's address."""

    DIRECT = "direct"  # wide string stored inline
    POINTER = "pointer"  # pointer to a wide string
    AUTO = "auto"  # follow the value if it is a pointer into the image


def narrow_wide_units(units: list[int]) -> str:
    """Narrow wide code units to ASCII text, dropping what does not fit."""
    return "".join(chr(unit) for unit in units if unit < 0x80)
