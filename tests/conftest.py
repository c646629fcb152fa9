import pathlib

import pytest

from binver.fingerprint import hash_file, make_table
from pe_test_utils import build_version_dll


@pytest.fixture
def version_dll(tmp_path: pathlib.Path) -> pathlib.Path:
    """
    A PE32+ DLL exporting versionString = L"v1.0.0".

    One section {VirtualAddress: 0x1000, PointerToRawData: 0x400,
    VirtualSize: 0x200}; the string lives at RVA 0x1050 and the export
    directory at RVA 0x1100.
    """
    path = tmp_path / "versioned.dll"
    path.write_bytes(build_version_dll("v1.0.0"))
    return path


@pytest.fixture
def unversioned_dll(tmp_path: pathlib.Path) -> pathlib.Path:
    """The same layout as version_dll but with zero exports."""
    path = tmp_path / "unversioned.dll"
    path.write_bytes(build_version_dll(None))
    return path


@pytest.fixture
def unversioned_table(unversioned_dll: pathlib.Path):
    """A fingerprint table that catalogues unversioned_dll as v2.0.0."""
    return make_table({hash_file(unversioned_dll): "v2.0.0"})
