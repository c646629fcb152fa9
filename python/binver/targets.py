"""
Known products whose versions binver identifies.

Each ProductTarget names where the product's module sits inside a game
install, the export holding its version string and, where one exists, the
fingerprint table for builds that predate the export.
"""

from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .fingerprint import FingerprintTable
from .fingerprint_tables import BOOTSTRAPPER_WIN64
from .loader import LoaderBackend
from .pipeline import VersionRequest, VersionResult, resolve_versions


@dataclass(frozen=True)
class ProductTarget:
    name: str
    relative_path: PurePosixPath  # Relative to the install directory
    symbol_name: str
    fingerprint_table: FingerprintTable | None = None

    def path_in(self, install_dir: Path) -> Path:
        return install_dir.joinpath(*self.relative_path.parts)

    def request(self, install_dir: Path) -> VersionRequest:
        return VersionRequest(
            path=self.path_in(install_dir),
            symbol_name=self.symbol_name,
            fingerprint_table=self.fingerprint_table,
        )


BOOTSTRAPPER = ProductTarget(
    name="bootstrapper",
    relative_path=PurePosixPath("FactoryGame/Binaries/Win64/xinput1_3.dll"),
    symbol_name="bootstrapperVersion",
    fingerprint_table=BOOTSTRAPPER_WIN64,
)

MOD_LOADER = ProductTarget(
    name="mod-loader",
    relative_path=PurePosixPath("loaders/UE4-SML-Win64-Shipping.dll"),
    symbol_name="modLoaderVersionString",
)

KNOWN_TARGETS: tuple[ProductTarget, ...] = (BOOTSTRAPPER, MOD_LOADER)


def find_target(name: str) -> ProductTarget:
    """Look up a known target by name.

    Raises:
        KeyError: If there is no target with that name
    """
    for target in KNOWN_TARGETS:
        if target.name == name:
            return target
    raise KeyError(f"Unknown target: {name}")


def resolve_install_versions(
    install_dir: Path,
    targets: tuple[ProductTarget, ...] = KNOWN_TARGETS,
    backend: LoaderBackend | None = None,
) -> dict[str, VersionResult]:
    """Resolve the version of every target in an install, in parallel.

    A target whose module is absent is reported UNREADABLE, like any other
    file that cannot be opened.
    """
    results = resolve_versions(
        (target.request(install_dir) for target in targets),
        max_workers=len(targets) or None,
        backend=backend,
    )
    return {target.name: result for target, result in zip(targets, results)}
