"""
Built-in fingerprint tables.

One table per (product, architecture). Each maps the SHA-256 of a released
build to the version it was released as. Add new releases by appending an
entry; digests must be unique within a table.
"""

from types import MappingProxyType
from typing import Mapping

from .fingerprint import FingerprintTable, make_table

# Satisfactory mod loader bootstrapper, xinput1_3.dll for Win64. Releases
# before bootstrapperVersion was exported can only be identified this way.
BOOTSTRAPPER_WIN64 = make_table(
    {
        "535d285ca61f768b7b10c6c122713154fc47bb52c51bd76f2c356be301b26ee6": "v1.0.0",
        "eba226da37c9ef11d9e78bffbbeb5debc0549a9da96b400d970420aa304d64f1": "v1.1.0",
        "8c52b7291b42e246f0c60ca2b65e2499728008ee8a13a3d74f224340cd6b5e20": "v1.2.0",
        "556cfc594f55b39a4d8a3632c723b224ba63b6bbb21d039ac6eb3e6a487c4ac4": "v1.2.1",
        "772cd6ad8d9616c55d1c8db75ef9b012a8bb6ea15239da84b8484991357b6eb3": "v1.3.0",
        "9770c2d1f30fb63ba694ce74f449bb370dfc0de798df43356c7364bb387ca049": "v1.3.1",
        "12d284e8942ac19bdaa6cd665d8e8eb63349ddf0c3f26937bd6671bf0ddbbc37": "v2.0.0",
        "c63b7d55622c5bce4828dfe37d691801f3677a239d578fb764ff02d4a8dd44cd": "v2.0.1",
    }
)

FINGERPRINT_TABLES: Mapping[tuple[str, str], FingerprintTable] = MappingProxyType(
    {
        ("bootstrapper", "win64"): BOOTSTRAPPER_WIN64,
    }
)

def get_fingerprint_table(product: str, architecture: str) -> FingerprintTable:
    """Built-in table for a product/architecture.

    Raises:
        KeyError: If no table is registered for the pair
    """
    try:
        return FINGERPRINT_TABLES[(product, architecture)]
    except KeyError:
        known = ", ".join(f"{p}:{a}" for p, a in sorted(FINGERPRINT_TABLES))
        raise KeyError(
            f"No fingerprint table for {product}:{architecture} (known: {known})"
        ) from None
