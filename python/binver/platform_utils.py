"""
Platform-specific utilities for binver.

Helpers for the few places where the host platform matters: which file
suffix the native loader uses for shared libraries, and console setup for
the CLI on Windows.
"""

import sys

# Suffixes of PE artifacts that are read statically on every host
PE_SUFFIXES = (".dll", ".exe")


def is_windows() -> bool:
    return sys.platform == "win32"


def native_library_suffixes() -> tuple[str, ...]:
    """Suffixes of the host loader's native shared-library format.

    Windows has no separate native format here: its DLLs are PE files and
    go to the static reader.
    """
    if is_windows():
        return ()
    if sys.platform == "darwin":
        return (".dylib", ".so")
    return (".so",)


def configure_windows_console() -> None:
    """Configure Windows console for UTF-8 output.

    Windows consoles often use legacy codepages that can't display every
    character of a file path. This reconfigures stdout/stderr to UTF-8 with
    replacement for unsupported chars.

    Safe to call on any platform - does nothing on non-Windows systems.
    """
    if not is_windows():
        return

    for stream in (sys.stdout, sys.stderr):
        if hasattr(stream, "reconfigure"):
            try:
                stream.reconfigure(encoding="utf-8", errors="replace")
            except (OSError, ValueError):
                pass  # Keep the default encoding
