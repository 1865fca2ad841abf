"""Host path rewriting for bind-mount sources.

Docker Desktop on Windows wants drive-letter paths, while a CLI running
inside WSL2 wants ``/mnt/<drive>/...``. macOS and plain Linux paths pass
through unchanged.
"""

from __future__ import annotations

import os
import sys


def is_wsl2(platform: str | None = None) -> bool:
    """True when running inside WSL2 (``WSL_INTEROP`` is only set there)."""
    platform = platform or sys.platform
    return "WSL_INTEROP" in os.environ and platform.startswith("linux")


def adjust_path_for_engine(path: str, platform: str, wsl: bool) -> str:
    if platform == "darwin":
        return path
    if platform == "win32":
        # /mnt/c/Users/x -> C:\Users\x
        if path.startswith("/mnt/"):
            rest = path[len("/mnt/") :].replace("/", "\\")
            return rest[:1].upper() + ":" + rest[1:]
        return path
    if wsl and len(path) > 1 and path[1] == ":":
        # C:\Users\x -> /mnt/c/Users/x
        drive = path[0].lower()
        return f"/mnt/{drive}{path[2:].replace(chr(92), '/')}"
    return path


def host_path(path: str) -> str:
    """Rewrite *path* for the engine on the current platform."""
    return adjust_path_for_engine(path, sys.platform, is_wsl2())
