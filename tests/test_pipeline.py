"""
Tests for the version resolution pipeline.

Covers the order of strategies (export, then fingerprint, then unknown),
the separation of unreadable files from unknown versions, and parallel
resolution of several binaries.
"""

from pathlib import Path

import pytest

from binver.fingerprint import hash_file, make_table
from binver.pipeline import (
    VersionRequest,
    VersionResult,
    VersionSource,
    resolve_version,
    resolve_versions,
)
from binver.strings import StringShape

from pe_test_utils import PeBuilder, build_version_dll
from loader_test_utils import FakeLoaderBackend


class TestResolveVersion:
    def test_version_from_export(self, version_dll: Path):
        result = resolve_version(version_dll, "versionString")

        assert result.version == "v1.0.0"
        assert result.source is VersionSource.SYMBOL
        assert result.found
        assert result.readable
        assert result.error is None

    def test_export_wins_over_fingerprint(self, version_dll: Path):
        table = make_table({hash_file(version_dll): "v9.9.9"})

        result = resolve_version(version_dll, "versionString", table)
        assert result.version == "v1.0.0"
        assert result.source is VersionSource.SYMBOL

    def test_version_from_fingerprint(self, unversioned_dll: Path, unversioned_table):
        result = resolve_version(unversioned_dll, "versionString", unversioned_table)

        assert result.version == "v2.0.0"
        assert result.source is VersionSource.FINGERPRINT
        assert result.found

    def test_fingerprint_is_repeatable(self, unversioned_dll: Path, unversioned_table):
        first = resolve_version(unversioned_dll, "versionString", unversioned_table)
        second = resolve_version(unversioned_dll, "versionString", unversioned_table)
        assert first == second

    def test_unknown_without_table(self, unversioned_dll: Path):
        result = resolve_version(unversioned_dll, "versionString")

        assert result.version is None
        assert result.source is VersionSource.UNKNOWN
        assert not result.found
        assert result.readable

    def test_unknown_with_non_matching_table(self, unversioned_dll: Path):
        table = make_table({"0" * 64: "v1.0.0"})

        result = resolve_version(unversioned_dll, "versionString", table)
        assert result.source is VersionSource.UNKNOWN

    def test_empty_export_falls_through_to_fingerprint(self, tmp_path: Path):
        path = tmp_path / "blank.dll"
        path.write_bytes(build_version_dll(""))
        table = make_table({hash_file(path): "v1.3.1"})

        result = resolve_version(path, "versionString", table)
        assert result.version == "v1.3.1"
        assert result.source is VersionSource.FINGERPRINT

    def test_wrong_symbol_name(self, version_dll: Path):
        result = resolve_version(version_dll, "bootstrapperVersion")
        assert result.source is VersionSource.UNKNOWN

    def test_non_ascii_symbol_name(self, version_dll: Path):
        result = resolve_version(version_dll, "versiónString")
        assert result.source is VersionSource.UNKNOWN
        assert result.error is None

    def test_missing_file_is_unreadable(self, tmp_path: Path):
        missing = tmp_path / "missing.dll"

        result = resolve_version(missing, "versionString", make_table({"a" * 64: "x"}))
        assert result.source is VersionSource.UNREADABLE
        assert result.version is None
        assert not result.readable
        assert result.error

    def test_empty_file_is_unknown(self, tmp_path: Path):
        """A present but empty file is readable; it just has no version."""
        empty = tmp_path / "empty.dll"
        empty.write_bytes(b"")

        result = resolve_version(empty, "versionString")
        assert result.source is VersionSource.UNKNOWN
        assert result.readable

    def test_empty_file_vs_missing_file(self, tmp_path: Path):
        empty = tmp_path / "empty.dll"
        empty.write_bytes(b"")

        assert resolve_version(empty, "versionString").readable
        assert not resolve_version(tmp_path / "missing.dll", "versionString").readable

    def test_garbage_is_unknown(self, tmp_path: Path):
        garbage = tmp_path / "garbage.dll"
        garbage.write_bytes(bytes(range(256)) * 16)

        result = resolve_version(garbage, "versionString")
        assert result.source is VersionSource.UNKNOWN

    def test_truncated_pe_is_unknown(self, tmp_path: Path):
        path = tmp_path / "truncated.dll"
        path.write_bytes(build_version_dll("v1.0.0")[:0x200])

        assert resolve_version(path, "versionString").source is VersionSource.UNKNOWN

    def test_directory_is_unreadable(self, tmp_path: Path):
        directory = tmp_path / "module.dll"
        directory.mkdir()

        result = resolve_version(directory, "versionString")
        assert result.source is VersionSource.UNREADABLE

    def test_pointer_shape(self, tmp_path: Path):
        builder = PeBuilder()
        builder.add_section(".data", virtual_address=0x1000, size=0x200)
        builder.put_wide_string(0x1080, "v2.1.0")
        builder.put_pointer(0x1050, 0x1080)
        builder.add_exports({"modLoaderVersionString": 0x1050}, directory_rva=0x1100)
        path = builder.write(tmp_path / "loader.dll")

        result = resolve_version(path, "modLoaderVersionString", shape=StringShape.POINTER)
        assert result.version == "v2.1.0"

    def test_dynamic_backend(self, tmp_path: Path, monkeypatch):
        from binver import resolver

        monkeypatch.setattr(resolver, "native_library_suffixes", lambda: (".so",))
        path = tmp_path / "libsml.so"
        path.write_bytes(b"\x7fELF" + b"\x00" * 60)
        backend = FakeLoaderBackend(
            libraries={path.name: {"modLoaderVersionString": 0x5000}},
            memory={0x5000: "v3.1.0"},
        )

        result = resolve_version(path, "modLoaderVersionString", backend=backend)
        assert result.version == "v3.1.0"
        assert result.source is VersionSource.SYMBOL
        assert backend.open_handles == []


class TestVersionResult:
    def test_str_found(self):
        result = VersionResult(Path("a.dll"), "v1.0.0", VersionSource.SYMBOL)
        assert str(result) == "a.dll: v1.0.0 (from symbol)"

    def test_str_unknown(self):
        assert str(VersionResult(Path("a.dll"))) == "a.dll: unknown version"

    def test_str_unreadable(self):
        result = VersionResult(
            Path("a.dll"), None, VersionSource.UNREADABLE, "No such file"
        )
        assert str(result) == "a.dll: version could not be determined (No such file)"

    def test_immutable(self):
        result = VersionResult(Path("a.dll"))
        with pytest.raises(AttributeError):
            result.version = "v1.0.0"


class TestResolveVersions:
    def test_empty(self):
        assert resolve_versions([]) == []

    def test_results_in_request_order(
        self, tmp_path: Path, version_dll: Path, unversioned_dll: Path, unversioned_table
    ):
        requests = [
            VersionRequest(unversioned_dll, "versionString", unversioned_table),
            VersionRequest(tmp_path / "missing.dll", "versionString"),
            VersionRequest(version_dll, "versionString"),
        ]

        results = resolve_versions(requests, max_workers=3)
        assert [r.path for r in results] == [r.path for r in requests]
        assert [r.source for r in results] == [
            VersionSource.FINGERPRINT,
            VersionSource.UNREADABLE,
            VersionSource.SYMBOL,
        ]

    def test_parallel_matches_sequential(self, tmp_path: Path):
        requests = []
        for i in range(16):
            path = tmp_path / f"module{i}.dll"
            path.write_bytes(build_version_dll(f"v1.{i}.0" if i % 2 else None))
            table = make_table({hash_file(path): f"fp{i}"})
            requests.append(VersionRequest(path, "versionString", table))

        sequential = [
            resolve_version(r.path, r.symbol_name, r.fingerprint_table)
            for r in requests
        ]
        parallel = resolve_versions(requests, max_workers=8)
        assert parallel == sequential
