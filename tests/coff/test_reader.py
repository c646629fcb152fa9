"""
Unit tests for the binver.coff.reader module.

Tests CoffReader header parsing, address translation and export lookup
against synthetic PE images.
"""

import struct
from pathlib import Path

import pytest

from binver.byte_window import OutOfBounds
from binver.coff import (
    DataDirectory,
    CoffReader,
    NotRecognizedFormat,
    locate_export,
    read_export_string,
)
from binver.strings import MAX_VERSION_CHARS, StringShape

from pe_test_utils import PE_OFFSET, PeBuilder, build_version_dll

# File offset of the export directory in build_version_dll() images
VERSION_DLL_EXPORT_DIR_OFFSET = 0x400 + 0x100


def _two_section_image() -> bytes:
    """.text at RVA 0x1000 and .data at RVA 0x3000, nothing in between."""
    builder = PeBuilder()
    builder.add_section(".text", virtual_address=0x1000, size=0x200)
    builder.add_section(".data", virtual_address=0x3000, size=0x200)
    return builder.build()


def _patch_u32(image: bytes, offset: int, value: int) -> bytes:
    data = bytearray(image)
    struct.pack_into("<I", data, offset, value)
    return bytes(data)


class TestCoffReaderHeaders:
    """Tests for header chain parsing."""

    def test_pe32plus_properties(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))

        assert reader.pointer_size == 8
        assert reader.image_base == 0x180000000
        assert reader.is_dll
        assert reader.dos_header.e_lfanew == PE_OFFSET

    def test_pe32_properties(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0", pe32plus=False))

        assert reader.pointer_size == 4
        assert reader.image_base == 0x10000000

    def test_sections(self):
        reader = CoffReader.from_bytes(_two_section_image())

        names = [s.name for s in reader.iter_sections()]
        assert names == [".text", ".data"]

        data = reader.find_section(".data")
        assert data is not None
        assert data.rva == 0x3000
        assert data.file_offset == 0x600
        assert data.raw_size == 0x200
        assert reader.find_section(".rsrc") is None

    def test_load_from_file(self, version_dll: Path):
        with CoffReader.load(version_dll) as reader:
            assert reader.window.path == version_dll
            assert reader.window.size == len(version_dll.read_bytes())
            assert reader.find_export("versionString") is not None

    def test_load_missing_file_raises_oserror(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            CoffReader.load(tmp_path / "missing.dll")


class TestCoffReaderMalformed:
    """Malformed header chains are rejected with NotRecognizedFormat."""

    def test_empty_data(self):
        with pytest.raises(NotRecognizedFormat):
            CoffReader.from_bytes(b"")

    def test_bad_dos_magic(self):
        with pytest.raises(NotRecognizedFormat, match="bad magic"):
            CoffReader.from_bytes(b"\x7fELF" + b"\x00" * 200)

    def test_pe_offset_past_end(self):
        image = _patch_u32(build_version_dll("v1.0.0"), 0x3C, 0x100000)

        with pytest.raises(NotRecognizedFormat, match="Invalid PE header offset"):
            CoffReader.from_bytes(image)

    def test_bad_pe_signature(self):
        image = bytearray(build_version_dll("v1.0.0"))
        image[PE_OFFSET : PE_OFFSET + 4] = b"NE\x00\x00"

        with pytest.raises(NotRecognizedFormat, match="Invalid PE signature"):
            CoffReader.from_bytes(bytes(image))

    def test_truncated_headers(self):
        with pytest.raises(NotRecognizedFormat, match="Data too short"):
            CoffReader.from_bytes(build_version_dll("v1.0.0")[:0x100])

    def test_too_many_sections(self):
        image = bytearray(build_version_dll("v1.0.0"))
        # NumberOfSections follows the 2-byte Machine field
        struct.pack_into("<H", image, PE_OFFSET + 4 + 2, 1000)

        with pytest.raises(NotRecognizedFormat, match="NumberOfSections"):
            CoffReader.from_bytes(bytes(image))


class TestAddressTranslation:
    """Tests for RVA and VA to file offset conversion."""

    def test_rva_in_first_section(self):
        reader = CoffReader.from_bytes(_two_section_image())
        assert reader.rva_to_file_offset(0x1000) == 0x400
        assert reader.rva_to_file_offset(0x1010) == 0x410

    def test_rva_in_second_section(self):
        reader = CoffReader.from_bytes(_two_section_image())
        assert reader.rva_to_file_offset(0x3010) == 0x610

    def test_rva_in_gap_is_none(self):
        reader = CoffReader.from_bytes(_two_section_image())
        assert reader.rva_to_file_offset(0x2000) is None
        assert reader.rva_to_file_offset(0x1200) is None

    def test_rva_in_headers_is_none(self):
        reader = CoffReader.from_bytes(_two_section_image())
        assert reader.rva_to_file_offset(0x10) is None

    def test_rva_past_raw_data_is_none(self):
        """The zero-filled tail of a section has no file data."""
        builder = PeBuilder()
        builder.add_section(".bss", virtual_address=0x1000, size=0x400, raw_size=0x200)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.rva_to_file_offset(0x11FF) == 0x5FF
        assert reader.rva_to_file_offset(0x1200) is None
        assert reader.rva_to_file_offset(0x13FF) is None

    def test_va_to_file_offset(self):
        reader = CoffReader.from_bytes(_two_section_image())
        base = reader.image_base

        assert reader.va_to_rva(base + 0x3010) == 0x3010
        assert reader.va_to_file_offset(base + 0x3010) == 0x610
        assert reader.va_to_file_offset(base - 1) is None
        assert reader.va_to_file_offset(0x3010) is None
        assert (
            reader.va_to_file_offset(base + reader.optional_header.SizeOfImage) is None
        )


class TestFindExport:
    """Tests for export lookup."""

    def test_find_export(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))

        export = reader.find_export("versionString")
        assert export is not None
        assert export.name == "versionString"
        assert export.rva == 0x1050
        assert export.file_offset == 0x450
        assert export.ordinal == 1

    def test_lookup_is_case_sensitive(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        assert reader.find_export("VersionString") is None
        assert reader.find_export("versionstring") is None

    def test_missing_export(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        assert reader.find_export("bootstrapperVersion") is None

    def test_empty_export_directory(self):
        reader = CoffReader.from_bytes(build_version_dll(None))
        assert reader.export_directory() is not None
        assert reader.find_export("versionString") is None
        assert list(reader.iter_export_names()) == []

    def test_no_export_directory(self):
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.export_directory() is None
        assert reader.find_export("versionString") is None

    def test_many_sorted_exports(self):
        """Every name of a sorted table is found by bisection."""
        names = {f"export{i:02d}": 0x1000 + i * 4 for i in range(20)}
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.add_exports(names)
        reader = CoffReader.from_bytes(builder.build())

        assert list(reader.iter_export_names()) == sorted(names)
        for name, rva in names.items():
            export = reader.find_export(name)
            assert export is not None, name
            assert export.rva == rva

    def test_unsorted_exports(self):
        """Names out of lexical order are still found."""
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.add_exports(
            {"zeta": 0x1010, "alpha": 0x1020, "mid": 0x1030}, sort_names=False
        )
        reader = CoffReader.from_bytes(builder.build())

        assert list(reader.iter_export_names()) == ["zeta", "alpha", "mid"]
        assert reader.find_export("zeta").rva == 0x1010
        assert reader.find_export("alpha").rva == 0x1020
        assert reader.find_export("mid").rva == 0x1030
        assert reader.find_export("omega") is None

    def test_sorted_miss_does_not_scan(self, monkeypatch):
        """A name missing from a sorted table costs a bisection, not a scan."""
        names = {f"export{i:03d}": 0x1000 for i in range(200)}
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x2000)
        builder.add_exports(names)
        reader = CoffReader.from_bytes(builder.build())

        reads = []
        name_at = reader._name_at

        def counting_name_at(names_offset, index):
            reads.append(index)
            return name_at(names_offset, index)

        monkeypatch.setattr(reader, "_name_at", counting_name_at)

        assert reader.find_export("export0995") is None
        assert reader.find_export("zzz") is None
        # Two endpoints plus at most eight bisection steps per lookup
        assert len(reads) <= 2 * 10
        assert reader.find_export("export123") is not None

    def test_unreadable_name_falls_back_to_scan(self):
        """A name RVA without file data forces the linear scan."""
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.add_exports({"alpha": 0x1010, "beta": 0x1020, "gamma": 0x1030})
        image = builder.build()
        reader = CoffReader.from_bytes(image)
        directory = reader.export_directory()
        names_offset = reader.rva_to_file_offset(directory.AddressOfNames)

        # Point the middle name (the first bisection step) outside every section
        reader = CoffReader.from_bytes(_patch_u32(image, names_offset + 4, 0x9000))

        assert reader.find_export("gamma").rva == 0x1030
        assert reader.find_export("alpha").rva == 0x1010
        assert reader.find_export("beta") is None

    def test_non_ascii_name(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        assert reader.find_export("versiónString") is None

    def test_export_outside_sections(self):
        """An export whose RVA has no file data resolves without an offset."""
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.add_exports({"ghost": 0x9000}, directory_rva=0x1100)
        image = builder.build()
        reader = CoffReader.from_bytes(image)

        export = reader.find_export("ghost")
        assert export is not None
        assert export.file_offset is None
        assert reader.read_export_string("ghost") is None

    def test_forwarded_export_ignored(self):
        """An address inside the export directory is a forwarder string."""
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.add_exports({"forwarded": 0x1104}, directory_rva=0x1100)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.find_export("forwarded") is None

    def test_ordinal_beyond_function_table(self):
        # NumberOfFunctions lives 20 bytes into the export directory
        image = _patch_u32(
            build_version_dll("v1.0.0"), VERSION_DLL_EXPORT_DIR_OFFSET + 20, 0
        )
        reader = CoffReader.from_bytes(image)

        assert reader.find_export("versionString") is None

    def test_name_table_past_end_of_file(self):
        # NumberOfNames lives 24 bytes into the export directory
        image = _patch_u32(
            build_version_dll("v1.0.0"), VERSION_DLL_EXPORT_DIR_OFFSET + 24, 0x8000
        )
        reader = CoffReader.from_bytes(image)

        assert reader.find_export("versionString") is None
        assert list(reader.iter_export_names()) == []

    def test_export_directory_truncated(self):
        """A directory RVA that maps to the last bytes of the file raises."""
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.export_directory = DataDirectory(0x11F0, 0x28)
        reader = CoffReader.from_bytes(builder.build())

        with pytest.raises(NotRecognizedFormat, match="export directory"):
            reader.export_directory()


class TestReadExportString:
    """Tests for reading string values at exports."""

    def test_direct_string(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        assert reader.read_export_string("versionString") == "v1.0.0"
        assert reader.read_export_string("versionString", StringShape.DIRECT) == "v1.0.0"

    def test_direct_string_pe32(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0", pe32plus=False))
        assert reader.read_export_string("versionString") == "v1.0.0"

    @pytest.mark.parametrize("pe32plus", [True, False])
    def test_pointer_string(self, pe32plus: bool):
        builder = PeBuilder(pe32plus=pe32plus)
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.put_wide_string(0x1080, "v3.1.4")
        builder.put_pointer(0x1050, 0x1080)
        builder.add_exports({"versionPtr": 0x1050}, directory_rva=0x1100)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.read_export_string("versionPtr", StringShape.POINTER) == "v3.1.4"
        assert reader.read_export_string("versionPtr", StringShape.AUTO) == "v3.1.4"
        assert reader.read_export_string("versionPtr", StringShape.DIRECT) != "v3.1.4"

    def test_pointer_outside_image(self):
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.put(0x1050, struct.pack("<Q", 0x1234))
        builder.add_exports({"versionPtr": 0x1050}, directory_rva=0x1100)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.read_export_string("versionPtr", StringShape.POINTER) is None

    def test_string_capped(self):
        reader = CoffReader.from_bytes(build_version_dll("v" + "1" * 79))

        value = reader.read_export_string("versionString")
        assert len(value) == MAX_VERSION_CHARS
        assert value == "v" + "1" * (MAX_VERSION_CHARS - 1)

    def test_non_ascii_units_dropped(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0é-中beta"))
        assert reader.read_export_string("versionString") == "v1.0-beta"

    def test_empty_string(self):
        reader = CoffReader.from_bytes(build_version_dll(""))
        assert reader.read_export_string("versionString") == ""

    def test_unterminated_string_stops_at_end_of_file(self):
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.put(0x11F8, "abcd".encode("utf-16-le"))
        builder.add_exports({"tail": 0x11F8}, directory_rva=0x1100)
        reader = CoffReader.from_bytes(builder.build())

        assert reader.read_export_string("tail", StringShape.DIRECT) == "abcd"

    def test_read_pointer_sizes(self):
        reader64 = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        reader32 = CoffReader.from_bytes(build_version_dll("v1.0.0", pe32plus=False))
        # "v1" in UTF-16LE at the string's file offset
        assert reader64.read_pointer(0x450) & 0xFFFFFFFF == 0x00310076
        assert reader32.read_pointer(0x450) == 0x00310076

    def test_read_pointer_past_end_raises(self):
        reader = CoffReader.from_bytes(build_version_dll("v1.0.0"))
        with pytest.raises(OutOfBounds):
            reader.read_pointer(reader.window.size - 4)


class TestModuleFunctions:
    """Tests for the path-based helpers."""

    def test_locate_export(self, version_dll: Path):
        assert locate_export(version_dll, "versionString") == 0x450
        assert locate_export(version_dll, "otherSymbol") is None

    def test_read_export_string(self, version_dll: Path):
        assert read_export_string(version_dll, "versionString") == "v1.0.0"

    def test_not_a_pe_file(self, tmp_path: Path):
        path = tmp_path / "garbage.dll"
        path.write_bytes(b"\x00" * 1024)

        assert locate_export(path, "versionString") is None
        assert read_export_string(path, "versionString") is None

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.dll"
        path.write_bytes(b"")

        assert read_export_string(path, "versionString") is None

    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(OSError):
            read_export_string(tmp_path / "missing.dll", "versionString")
        with pytest.raises(OSError):
            locate_export(tmp_path / "missing.dll", "versionString")
