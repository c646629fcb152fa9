"""
PE/COFF type definitions for the export reader.

This module holds the struct definitions needed to walk a PE image from the
DOS header to its export directory: DOS header, COFF file header, the
PE32 and PE32+ optional headers, data directories, section headers and the
export directory table.

Every structure is a frozen dataclass. The reader never modifies an image;
to_bytes() exists so synthetic images can be assembled for testing.

References:
- Microsoft PE/COFF Specification
- https://learn.microsoft.com/en-us/windows/win32/debug/pe-format
"""

import struct
from dataclasses import astuple, dataclass
from typing import ClassVar

# =============================================================================
# Constants
# =============================================================================

# DOS Header
DOS_MAGIC = 0x5A4D  # "MZ" in little-endian

# PE Signature
PE_SIGNATURE = b"PE\x00\x00"

# Machine types
IMAGE_FILE_MACHINE_I386 = 0x14C
IMAGE_FILE_MACHINE_AMD64 = 0x8664

# Optional header magic
IMAGE_NT_OPTIONAL_HDR32_MAGIC = 0x10B
IMAGE_NT_OPTIONAL_HDR64_MAGIC = 0x20B  # PE32+

# File characteristics
IMAGE_FILE_EXECUTABLE_IMAGE = 0x0002
IMAGE_FILE_DLL = 0x2000

# Section characteristics (only those the test builder emits)
IMAGE_SCN_CNT_INITIALIZED_DATA = 0x00000040
IMAGE_SCN_MEM_READ = 0x40000000

# Data directory indices
IMAGE_DIRECTORY_ENTRY_EXPORT = 0
IMAGE_NUMBEROF_DIRECTORY_ENTRIES = 16

# Structure sizes
DOS_HEADER_SIZE = 64
COFF_HEADER_SIZE = 20
DATA_DIRECTORY_SIZE = 8
SECTION_HEADER_SIZE = 40
EXPORT_DIRECTORY_SIZE = 40


class NotRecognizedFormat(ValueError):
    """Raised when data does not carry a valid PE header chain.

    Callers looking for a version treat this as "no version available",
    not as a failure.
    """

    pass


def _require(data, offset: int, size: int, what: str) -> None:
    if offset < 0 or len(data) < offset + size:
        raise NotRecognizedFormat(
            f"Data too short for {what}: {len(data)} < {offset + size}"
        )


# =============================================================================
# PE/COFF Structures
# =============================================================================


@dataclass(frozen=True)
class DosHeader:
    """DOS MZ header (IMAGE_DOS_HEADER).

    The DOS header is 64 bytes and exists for backwards compatibility.
    The only field we really care about is e_lfanew which points to the PE signature.
    """

    e_magic: int  # "MZ" = 0x5A4D
    e_cblp: int
    e_cp: int
    e_crlc: int
    e_cparhdr: int
    e_minalloc: int
    e_maxalloc: int
    e_ss: int
    e_sp: int
    e_csum: int
    e_ip: int
    e_cs: int
    e_lfarlc: int
    e_ovno: int
    e_res: bytes  # 8 bytes reserved
    e_oemid: int
    e_oeminfo: int
    e_res2: bytes  # 20 bytes reserved
    e_lfanew: int  # Offset to PE signature

    STRUCT_FMT: ClassVar[str] = "<HHHHHHHHHHHHHH8sHH20sI"
    SIZE: ClassVar[int] = 64

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "DosHeader":
        """Parse DOS header from binary data."""
        _require(data, offset, cls.SIZE, "DOS header")
        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        if fields[0] != DOS_MAGIC:
            raise NotRecognizedFormat(
                f"Not a DOS/PE file (bad magic: 0x{fields[0]:04X})"
            )
        return cls(*fields)

    @classmethod
    def minimal(cls, e_lfanew: int) -> "DosHeader":
        """A DOS header with only the magic and PE offset filled in."""
        return cls(
            DOS_MAGIC, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0,
            b"\x00" * 8, 0, 0, b"\x00" * 20, e_lfanew,
        )  # fmt: skip

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))


@dataclass(frozen=True)
class CoffHeader:
    """COFF file header (IMAGE_FILE_HEADER).

    This 20-byte header comes right after the PE signature.
    """

    Machine: int
    NumberOfSections: int
    TimeDateStamp: int
    PointerToSymbolTable: int
    NumberOfSymbols: int
    SizeOfOptionalHeader: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<HHIIIHH"
    SIZE: ClassVar[int] = 20

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "CoffHeader":
        _require(data, offset, cls.SIZE, "COFF header")
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))

    @property
    def is_dll(self) -> bool:
        return bool(self.Characteristics & IMAGE_FILE_DLL)


@dataclass(frozen=True)
class DataDirectory:
    """Data directory entry (IMAGE_DATA_DIRECTORY)."""

    VirtualAddress: int  # RVA of the data
    Size: int

    STRUCT_FMT: ClassVar[str] = "<II"
    SIZE: ClassVar[int] = 8

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "DataDirectory":
        _require(data, offset, cls.SIZE, "data directory")
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, self.VirtualAddress, self.Size)

    @property
    def is_present(self) -> bool:
        return self.VirtualAddress != 0 or self.Size != 0

    def contains_rva(self, rva: int) -> bool:
        return self.VirtualAddress <= rva < self.VirtualAddress + self.Size


@dataclass(frozen=True)
class OptionalHeader32:
    """PE32 optional header (IMAGE_OPTIONAL_HEADER32).

    Same layout as the PE32+ header except for the extra BaseOfData field
    and 4-byte ImageBase and stack/heap sizes. Data directories follow.
    """

    Magic: int  # 0x10B for PE32
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    BaseOfData: int
    ImageBase: int
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int
    SizeOfStackCommit: int
    SizeOfHeapReserve: int
    SizeOfHeapCommit: int
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    # 2 + 1 + 1 + 4*9 + 2*6 + 4*4 + 2*2 + 4*6 = 96 bytes
    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIIIIIHHHHHHIIIIHHIIIIII"
    SIZE: ClassVar[int] = 96
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR32_MAGIC
    POINTER_SIZE: ClassVar[int] = 4

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "OptionalHeader32":
        _require(data, offset, cls.SIZE, "optional header")
        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        if fields[0] != cls.MAGIC:
            raise NotRecognizedFormat(
                f"Not a PE32 file (magic: 0x{fields[0]:04X}, expected 0x{cls.MAGIC:04X})"
            )
        return cls(*fields)

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))


@dataclass(frozen=True)
class OptionalHeader64:
    """PE32+ optional header (IMAGE_OPTIONAL_HEADER64).

    This header is required for executable images despite its name.
    The "optional" refers to object files which don't have it.

    Note: Data directories are parsed separately.
    """

    Magic: int  # 0x20B for PE32+
    MajorLinkerVersion: int
    MinorLinkerVersion: int
    SizeOfCode: int
    SizeOfInitializedData: int
    SizeOfUninitializedData: int
    AddressOfEntryPoint: int
    BaseOfCode: int
    ImageBase: int  # 8 bytes for PE32+
    SectionAlignment: int
    FileAlignment: int
    MajorOperatingSystemVersion: int
    MinorOperatingSystemVersion: int
    MajorImageVersion: int
    MinorImageVersion: int
    MajorSubsystemVersion: int
    MinorSubsystemVersion: int
    Win32VersionValue: int
    SizeOfImage: int
    SizeOfHeaders: int
    CheckSum: int
    Subsystem: int
    DllCharacteristics: int
    SizeOfStackReserve: int  # 8 bytes for PE32+
    SizeOfStackCommit: int  # 8 bytes for PE32+
    SizeOfHeapReserve: int  # 8 bytes for PE32+
    SizeOfHeapCommit: int  # 8 bytes for PE32+
    LoaderFlags: int
    NumberOfRvaAndSizes: int

    # 2 + 1 + 1 + 4*5 + 8 + 4*2 + 2*6 + 4*4 + 2*2 + 8*4 + 4*2 = 112 bytes
    STRUCT_FMT: ClassVar[str] = "<HBBIIIIIQIIHHHHHH" "IIIIHHQQQQII"
    SIZE: ClassVar[int] = 112
    MAGIC: ClassVar[int] = IMAGE_NT_OPTIONAL_HDR64_MAGIC
    POINTER_SIZE: ClassVar[int] = 8

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "OptionalHeader64":
        _require(data, offset, cls.SIZE, "optional header")
        fields = struct.unpack_from(cls.STRUCT_FMT, data, offset)
        if fields[0] != cls.MAGIC:
            raise NotRecognizedFormat(
                f"Not a PE32+ file (magic: 0x{fields[0]:04X}, "
                f"expected 0x{cls.MAGIC:04X})"
            )
        return cls(*fields)

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))


OptionalHeader = OptionalHeader32 | OptionalHeader64


def parse_optional_header(data, offset: int) -> OptionalHeader:
    """Parse whichever optional header variant the magic announces."""
    _require(data, offset, 2, "optional header magic")
    (magic,) = struct.unpack_from("<H", data, offset)
    if magic == IMAGE_NT_OPTIONAL_HDR64_MAGIC:
        return OptionalHeader64.from_bytes(data, offset)
    if magic == IMAGE_NT_OPTIONAL_HDR32_MAGIC:
        return OptionalHeader32.from_bytes(data, offset)
    raise NotRecognizedFormat(f"Unknown optional header magic 0x{magic:04X}")


@dataclass(frozen=True)
class SectionHeader:
    """PE/COFF section header (IMAGE_SECTION_HEADER).

    Each section header is 40 bytes.
    """

    Name: bytes  # 8 bytes, null-padded (NOT null-terminated if 8 chars)
    VirtualSize: int  # Size in memory (can be > SizeOfRawData)
    VirtualAddress: int  # RVA of section
    SizeOfRawData: int  # Size in file (rounded to FileAlignment)
    PointerToRawData: int  # File offset
    PointerToRelocations: int
    PointerToLinenumbers: int
    NumberOfRelocations: int
    NumberOfLinenumbers: int
    Characteristics: int

    STRUCT_FMT: ClassVar[str] = "<8sIIIIIIHHI"
    SIZE: ClassVar[int] = 40

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "SectionHeader":
        _require(data, offset, cls.SIZE, "section header")
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    @classmethod
    def create(
        cls,
        name: str,
        virtual_address: int,
        virtual_size: int,
        raw_address: int,
        raw_size: int,
        characteristics: int = IMAGE_SCN_MEM_READ | IMAGE_SCN_CNT_INITIALIZED_DATA,
    ) -> "SectionHeader":
        return cls(
            Name=section_name_to_bytes(name),
            VirtualSize=virtual_size,
            VirtualAddress=virtual_address,
            SizeOfRawData=raw_size,
            PointerToRawData=raw_address,
            PointerToRelocations=0,
            PointerToLinenumbers=0,
            NumberOfRelocations=0,
            NumberOfLinenumbers=0,
            Characteristics=characteristics,
        )

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))

    @property
    def name_str(self) -> str:
        """Get section name as string (strips null padding)."""
        null_pos = self.Name.find(b"\x00")
        if null_pos >= 0:
            return self.Name[:null_pos].decode("ascii", errors="replace")
        return self.Name.decode("ascii", errors="replace")

    @property
    def extent(self) -> int:
        """Size of the section's address range.

        Some linkers leave VirtualSize at zero; the raw size is the extent then.
        """
        return self.VirtualSize or self.SizeOfRawData

    @property
    def end_rva(self) -> int:
        return self.VirtualAddress + self.extent

    def contains_rva(self, rva: int) -> bool:
        """Check if an RVA falls within this section."""
        return self.VirtualAddress <= rva < self.end_rva


@dataclass(frozen=True)
class ExportDirectory:
    """Export directory table (IMAGE_EXPORT_DIRECTORY).

    AddressOfNames and AddressOfNameOrdinals are parallel arrays of
    NumberOfNames entries; each ordinal indexes AddressOfFunctions.
    """

    Characteristics: int
    TimeDateStamp: int
    MajorVersion: int
    MinorVersion: int
    Name: int  # RVA of the DLL name
    Base: int  # Starting ordinal number
    NumberOfFunctions: int
    NumberOfNames: int
    AddressOfFunctions: int  # RVA of export address table (u32 RVAs)
    AddressOfNames: int  # RVA of name pointer table (u32 RVAs)
    AddressOfNameOrdinals: int  # RVA of ordinal table (u16)

    STRUCT_FMT: ClassVar[str] = "<IIHHIIIIIII"
    SIZE: ClassVar[int] = 40

    @classmethod
    def from_bytes(cls, data, offset: int = 0) -> "ExportDirectory":
        _require(data, offset, cls.SIZE, "export directory")
        return cls(*struct.unpack_from(cls.STRUCT_FMT, data, offset))

    def to_bytes(self) -> bytes:
        return struct.pack(self.STRUCT_FMT, *astuple(self))


# =============================================================================
# Helper Functions
# =============================================================================


def section_name_to_bytes(name: str) -> bytes:
    """Convert section name string to 8-byte padded bytes.

    Section names are limited to 8 characters in PE/COFF.
    """
    if len(name) > 8:
        raise ValueError(f"Section name too long (max 8 chars): {name}")
    return name.encode("ascii").ljust(8, b"\x00")
