"""
Read-only PE/COFF export reader.

The CoffReader class walks a PE image's header chain (DOS header -> PE
signature -> COFF header -> optional header -> data directories -> section
table), resolves named exports through the export directory and reads
string values stored at an export.

Design principles:
- Parse once, never modify
- Every read is bounds-checked through a ByteWindow
- Address translation returns None instead of guessing
- Absence of an export is a normal result, not an error
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ..byte_window import ByteWindow, OutOfBounds
from ..strings import MAX_VERSION_CHARS, StringShape
from .types import (
    CoffHeader,
    DataDirectory,
    DosHeader,
    ExportDirectory,
    NotRecognizedFormat,
    OptionalHeader,
    SectionHeader,
    COFF_HEADER_SIZE,
    DATA_DIRECTORY_SIZE,
    IMAGE_DIRECTORY_ENTRY_EXPORT,
    PE_SIGNATURE,
    SECTION_HEADER_SIZE,
    parse_optional_header,
)

logger = logging.getLogger(__name__)

# Export names longer than this are not something we would look up
MAX_EXPORT_NAME_LENGTH = 512


@dataclass(frozen=True)
class SectionInfo:
    """Information about a section, combining header with derived data."""

    index: int
    name: str
    header: SectionHeader

    @property
    def rva(self) -> int:
        return self.header.VirtualAddress

    @property
    def virtual_size(self) -> int:
        return self.header.VirtualSize

    @property
    def file_offset(self) -> int:
        return self.header.PointerToRawData

    @property
    def raw_size(self) -> int:
        return self.header.SizeOfRawData


@dataclass(frozen=True)
class ExportInfo:
    """A resolved named export."""

    name: str
    ordinal: int  # Biased ordinal (index + ExportDirectory.Base)
    rva: int
    file_offset: int | None  # None if the RVA has no file data


class CoffReader:
    """Read-only interface to a PE image's exports.

    Usage:
        with CoffReader.load(Path("foo.dll")) as reader:
            offset = reader.rva_to_file_offset(0x1000)
            export = reader.find_export("bootstrapperVersion")
            version = reader.read_export_string("bootstrapperVersion")
    """

    # Reasonable limits for PE structures to prevent DoS from malformed files
    MAX_NUMBER_OF_SECTIONS = 256
    MAX_NUMBER_OF_DATA_DIRECTORIES = 64
    MAX_NUMBER_OF_NAMES = 0x10000

    def __init__(self, window: ByteWindow):
        """Parse the header chain of an in-memory image.

        Prefer using CoffReader.load() for most use cases.

        Raises:
            NotRecognizedFormat: If the header chain is missing or malformed
        """
        self._window = window
        data = window.view()

        self._dos_hdr = DosHeader.from_bytes(data)
        self._pe_offset = self._dos_hdr.e_lfanew

        if not window.contains(self._pe_offset, len(PE_SIGNATURE)):
            raise NotRecognizedFormat(
                f"Invalid PE header offset {self._pe_offset:#x}: "
                f"must be within file bounds (0 to {window.size - 4})"
            )

        pe_sig = window.read(self._pe_offset, len(PE_SIGNATURE))
        if pe_sig != PE_SIGNATURE:
            raise NotRecognizedFormat(f"Invalid PE signature: {pe_sig!r}")

        coff_offset = self._pe_offset + len(PE_SIGNATURE)
        self._coff_hdr = CoffHeader.from_bytes(data, coff_offset)

        opt_offset = coff_offset + COFF_HEADER_SIZE
        self._opt_hdr = parse_optional_header(data, opt_offset)

        data_dir_offset = opt_offset + self._opt_hdr.SIZE
        self._data_dirs = self._parse_data_directories(data_dir_offset)

        section_offset = opt_offset + self._coff_hdr.SizeOfOptionalHeader
        self._sections = self._parse_sections(section_offset)

    @classmethod
    def load(cls, path: Path) -> "CoffReader":
        """Load a PE binary from file.

        Raises:
            OSError: If the file cannot be read
            NotRecognizedFormat: If the file is not a PE image
        """
        window = ByteWindow.load(path)
        try:
            return cls(window)
        except Exception:
            window.close()
            raise

    @classmethod
    def from_bytes(cls, data: bytes) -> "CoffReader":
        return cls(ByteWindow(data))

    def close(self) -> None:
        self._window.close()

    def __enter__(self) -> "CoffReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def window(self) -> ByteWindow:
        return self._window

    @property
    def dos_header(self) -> DosHeader:
        return self._dos_hdr

    @property
    def coff_header(self) -> CoffHeader:
        return self._coff_hdr

    @property
    def optional_header(self) -> OptionalHeader:
        return self._opt_hdr

    @property
    def image_base(self) -> int:
        """Preferred load address."""
        return self._opt_hdr.ImageBase

    @property
    def entry_point(self) -> int:
        return self._opt_hdr.AddressOfEntryPoint

    @property
    def pointer_size(self) -> int:
        """4 for PE32, 8 for PE32+."""
        return self._opt_hdr.POINTER_SIZE

    @property
    def is_dll(self) -> bool:
        return self._coff_hdr.is_dll

    # =========================================================================
    # Parsing (internal)
    # =========================================================================

    def _parse_data_directories(self, offset: int) -> list[DataDirectory]:
        num_dirs = self._opt_hdr.NumberOfRvaAndSizes
        if num_dirs > self.MAX_NUMBER_OF_DATA_DIRECTORIES:
            raise NotRecognizedFormat(
                f"NumberOfRvaAndSizes ({num_dirs}) exceeds maximum "
                f"({self.MAX_NUMBER_OF_DATA_DIRECTORIES})"
            )
        data = self._window.view()
        return [
            DataDirectory.from_bytes(data, offset + i * DATA_DIRECTORY_SIZE)
            for i in range(num_dirs)
        ]

    def _parse_sections(self, offset: int) -> list[SectionHeader]:
        num_sections = self._coff_hdr.NumberOfSections
        if num_sections > self.MAX_NUMBER_OF_SECTIONS:
            raise NotRecognizedFormat(
                f"NumberOfSections ({num_sections}) exceeds maximum "
                f"({self.MAX_NUMBER_OF_SECTIONS})"
            )
        data = self._window.view()
        return [
            SectionHeader.from_bytes(data, offset + i * SECTION_HEADER_SIZE)
            for i in range(num_sections)
        ]

    # =========================================================================
    # Query Operations
    # =========================================================================

    def iter_sections(self) -> Iterator[SectionInfo]:
        for idx, shdr in enumerate(self._sections):
            yield SectionInfo(index=idx, name=shdr.name_str, header=shdr)

    def find_section(self, name: str) -> SectionInfo | None:
        for info in self.iter_sections():
            if info.name == name:
                return info
        return None

    def get_data_directory(self, index: int) -> DataDirectory | None:
        if 0 <= index < len(self._data_dirs):
            return self._data_dirs[index]
        return None

    # =========================================================================
    # Address Conversion
    # =========================================================================

    def rva_to_file_offset(self, rva: int) -> int | None:
        """Convert RVA to file offset using section table.

        Returns:
            File offset if RVA is in a section with raw data backing it,
            None otherwise.
        """
        for shdr in self._sections:
            if shdr.contains_rva(rva):
                section_offset = rva - shdr.VirtualAddress
                # Tail of a section past its raw data is zero-fill, not file data
                if section_offset >= shdr.SizeOfRawData:
                    return None
                return shdr.PointerToRawData + section_offset
        return None

    def va_to_rva(self, va: int) -> int:
        """Convert virtual address to RVA (VA - ImageBase)."""
        return va - self.image_base

    def va_to_file_offset(self, va: int) -> int | None:
        """Convert a virtual address to a file offset.

        Only addresses inside [ImageBase, ImageBase + SizeOfImage) translate.
        """
        rva = self.va_to_rva(va)
        if rva < 0 or rva >= self._opt_hdr.SizeOfImage:
            return None
        return self.rva_to_file_offset(rva)

    # =========================================================================
    # Exports
    # =========================================================================

    def export_directory(self) -> ExportDirectory | None:
        """Parse the export directory, or None if the image has none."""
        entry = self.get_data_directory(IMAGE_DIRECTORY_ENTRY_EXPORT)
        if entry is None or not entry.is_present:
            return None
        offset = self.rva_to_file_offset(entry.VirtualAddress)
        if offset is None:
            logger.debug("Export directory RVA 0x%x is not in any section", entry.VirtualAddress)
            return None
        return ExportDirectory.from_bytes(self._window.view(), offset)

    def _table_offset(self, rva: int, entry_size: int, count: int) -> int | None:
        """File offset of a table of count entries, if it is all in the file."""
        offset = self.rva_to_file_offset(rva)
        if offset is None or not self._window.contains(offset, entry_size * count):
            return None
        return offset

    def _name_at(self, names_offset: int, index: int) -> bytes | None:
        name_rva = self._window.u32(names_offset + index * 4)
        name_offset = self.rva_to_file_offset(name_rva)
        if name_offset is None:
            return None
        return self._window.c_string(name_offset, MAX_EXPORT_NAME_LENGTH)

    def iter_export_names(self) -> Iterator[str]:
        """Yield the names in the export name pointer table, in table order."""
        directory = self.export_directory()
        if directory is None:
            return
        count = min(directory.NumberOfNames, self.MAX_NUMBER_OF_NAMES)
        names_offset = self._table_offset(directory.AddressOfNames, 4, count)
        if names_offset is None:
            return
        for i in range(count):
            name = self._read_name(names_offset, i)
            if name is not None:
                yield name.decode("ascii", errors="replace")

    def _read_name(self, names_offset: int, index: int) -> bytes | None:
        try:
            return self._name_at(names_offset, index)
        except OutOfBounds:
            return None

    def _find_name_index(self, names_offset: int, count: int, target: bytes) -> int | None:
        """Binary search the name table.

        The table is required to be sorted. Every name read by the search is
        checked against the first and last entries and against the others
        read so far; only if those are out of order, or one is unreadable,
        is the table scanned linearly.
        """
        if count == 0:
            return None

        seen: dict[int, bytes | None] = {}
        for index in (0, count - 1):
            seen[index] = self._read_name(names_offset, index)

        lo, hi = 0, count
        while lo < hi:
            mid = (lo + hi) // 2
            if mid not in seen:
                seen[mid] = self._read_name(names_offset, mid)
            name = seen[mid]
            if name is None:
                break
            if name == target:
                return mid
            if name < target:
                lo = mid + 1
            else:
                hi = mid

        names = [seen[index] for index in sorted(seen)]
        if None not in names and all(a <= b for a, b in zip(names, names[1:])):
            return None

        logger.debug("Export name table is not sorted, scanning it")
        for i in range(count):
            if self._read_name(names_offset, i) == target:
                return i
        return None

    def find_export(self, name: str) -> ExportInfo | None:
        """Resolve a named export.

        Args:
            name: Exact, case-sensitive export name

        Returns:
            ExportInfo if the image exports a data/code symbol with that name,
            None if it does not (or the export tables are malformed).
        """
        directory = self.export_directory()
        if directory is None:
            return None

        count = min(directory.NumberOfNames, self.MAX_NUMBER_OF_NAMES)
        names_offset = self._table_offset(directory.AddressOfNames, 4, count)
        ordinals_offset = self._table_offset(directory.AddressOfNameOrdinals, 2, count)
        if names_offset is None or ordinals_offset is None:
            logger.debug("Export name tables are not backed by file data")
            return None

        try:
            target = name.encode("ascii")
        except UnicodeEncodeError:
            logger.debug("Export name %r is not ASCII", name)
            return None

        index = self._find_name_index(names_offset, count, target)
        if index is None:
            return None

        ordinal_index = self._window.u16(ordinals_offset + index * 2)
        if ordinal_index >= directory.NumberOfFunctions:
            logger.debug(
                "Export %s has ordinal index %d beyond %d functions",
                name,
                ordinal_index,
                directory.NumberOfFunctions,
            )
            return None

        functions_offset = self._table_offset(
            directory.AddressOfFunctions, 4, directory.NumberOfFunctions
        )
        if functions_offset is None:
            return None
        rva = self._window.u32(functions_offset + ordinal_index * 4)

        # An address inside the export directory is a forwarder string, not data
        export_entry = self.get_data_directory(IMAGE_DIRECTORY_ENTRY_EXPORT)
        if export_entry is not None and export_entry.contains_rva(rva):
            logger.debug("Export %s is forwarded, ignoring", name)
            return None

        return ExportInfo(
            name=name,
            ordinal=directory.Base + ordinal_index,
            rva=rva,
            file_offset=self.rva_to_file_offset(rva),
        )

    # =========================================================================
    # Value Reads
    # =========================================================================

    def read_pointer(self, offset: int) -> int:
        """Read a pointer-sized little-endian value at a file offset."""
        if self.pointer_size == 8:
            return self._window.u64(offset)
        return self._window.u32(offset)

    def read_wide_string(self, offset: int, max_chars: int = MAX_VERSION_CHARS) -> str:
        """Read a null-terminated UTF-16LE string at a file offset."""
        return self._window.wide_string(offset, max_chars)

    def _follow_pointer(self, offset: int) -> int | None:
        if not self._window.contains(offset, self.pointer_size):
            return None
        return self.va_to_file_offset(self.read_pointer(offset))

    def read_export_string(
        self, name: str, shape: StringShape = StringShape.AUTO
    ) -> str | None:
        """Read the string value of a named export.

        Args:
            name: Export name
            shape: Layout of the value at the export (see StringShape)

        Returns:
            The narrowed string, or None if the export is absent or its
            address cannot be translated to file data.
        """
        export = self.find_export(name)
        if export is None or export.file_offset is None:
            return None

        offset = export.file_offset
        if shape is StringShape.POINTER:
            target = self._follow_pointer(offset)
            if target is None:
                logger.debug("Pointer at export %s does not point into the image", name)
                return None
            offset = target
        elif shape is StringShape.AUTO:
            target = self._follow_pointer(offset)
            if target is not None:
                logger.debug("Export %s holds a pointer, following it", name)
                offset = target

        try:
            return self.read_wide_string(offset)
        except OutOfBounds:
            return None


def locate_export(path: Path, symbol_name: str) -> int | None:
    """Resolve a named export of a PE file to a file offset.

    Raises:
        OSError: If the file cannot be read

    Returns:
        File offset of the export's data, or None if the file is not a PE
        image, does not export symbol_name, or the address is malformed.
    """
    try:
        with CoffReader.load(path) as reader:
            export = reader.find_export(symbol_name)
    except (NotRecognizedFormat, OutOfBounds) as e:
        logger.debug("%s: no exports readable: %s", path, e)
        return None
    if export is None:
        return None
    return export.file_offset


def read_export_string(
    path: Path, symbol_name: str, shape: StringShape = StringShape.AUTO
) -> str | None:
    """Read the string value of a named export from a PE file.

    Raises:
        OSError: If the file cannot be read

    Returns:
        The string, or None if it cannot be found.
    """
    try:
        with CoffReader.load(path) as reader:
            return reader.read_export_string(symbol_name, shape)
    except (NotRecognizedFormat, OutOfBounds) as e:
        logger.debug("%s: no exports readable: %s", path, e)
        return None
