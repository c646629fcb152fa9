"""
PE/COFF export reading for binver.

This package statically reads exported version strings from Windows
binaries without loading them:
- types: PE/COFF struct definitions (headers, sections, export directory)
- reader: CoffReader, which resolves named exports to file offsets and
  reads wide-string values stored there
"""

from .reader import (
    CoffReader,
    ExportInfo,
    SectionInfo,
    StringShape,
    MAX_VERSION_CHARS,
    locate_export,
    read_export_string,
)
from .types import (
    # Structs
    DosHeader,
    CoffHeader,
    OptionalHeader32,
    OptionalHeader64,
    SectionHeader,
    DataDirectory,
    ExportDirectory,
    # Errors
    NotRecognizedFormat,
    # Constants
    DOS_MAGIC,
    PE_SIGNATURE,
    IMAGE_NT_OPTIONAL_HDR32_MAGIC,
    IMAGE_NT_OPTIONAL_HDR64_MAGIC,
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    IMAGE_NUMBEROF_DIRECTORY_ENTRIES,
    # Helper functions
    parse_optional_header,
    section_name_to_bytes,
)

__all__ = [
    # Reader
    "CoffReader",
    "ExportInfo",
    "SectionInfo",
    "StringShape",
    "MAX_VERSION_CHARS",
    "locate_export",
    "read_export_string",
    # Structs
    "DosHeader",
    "CoffHeader",
    "OptionalHeader32",
    "OptionalHeader64",
    "SectionHeader",
    "DataDirectory",
    "ExportDirectory",
    # Errors
    "NotRecognizedFormat",
    # Constants
    "DOS_MAGIC",
    "PE_SIGNATURE",
    "IMAGE_NT_OPTIONAL_HDR32_MAGIC",
    "IMAGE_NT_OPTIONAL_HDR64_MAGIC",
    "IMAGE_DIRECTORY_ENTRY_EXPORT",
    "IMAGE_NUMBEROF_DIRECTORY_ENTRIES",
    # Helper functions
    "parse_optional_header",
    "section_name_to_bytes",
]
