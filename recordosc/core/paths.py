"""Path utilities for recordosc.

Resolves packaged resources filesystem-first and picks the default place
where recordings are written.
"""
from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path, PurePath
from typing import Optional

import platformdirs

RECORDOSC_PKG_DIR = Path(__file__).resolve().parent.parent  # recordosc/
SCHEMA_DIR = RECORDOSC_PKG_DIR / "schema"

RECORDING_SUFFIX = ".oscrec"


def get_user_data_dir() -> Path:
    return Path(platformdirs.user_data_dir("recordosc", "extRecordOSC"))


def get_recordings_dir() -> Path:
    """Default directory for new recordings (not created here)."""
    return get_user_data_dir() / "recordings"


# --- Windows Long Path Support ---
def normalize_path(path: Path) -> Path:
    r"""Normalize path for Windows long path support.

    On Windows, paths longer than 260 characters require the \\?\ prefix.
    """
    if sys.platform != "win32":
        return path

    path_str = str(path.resolve())
    if len(path_str) > 260 and not path_str.startswith("\\\\?\\"):
        if path_str.startswith("\\\\"):
            path_str = "\\\\?\\UNC\\" + path_str[2:]
        else:
            path_str = "\\\\?\\" + path_str
        return Path(path_str)
    return path


def resolve_resource_path(*parts: str, pkg_fallback: bool = True) -> Optional[Path]:
    """
    Resolve a resource path relative to the recordosc package.

    The filesystem is checked first (works for checkouts and editable installs),
    then importlib.resources for wheel/zipapp installs.

    Returns:
        Resolved Path or None if not found
    """
    fs_path = RECORDOSC_PKG_DIR.joinpath(*parts)
    if fs_path.exists():
        return normalize_path(fs_path)

    if pkg_fallback:
        try:
            from importlib import resources
            traversable = resources.files("recordosc")
            for part in parts:
                traversable = traversable.joinpath(part)

            with resources.as_file(traversable) as real_path:
                if real_path.exists():
                    return normalize_path(Path(real_path))
        except (TypeError, FileNotFoundError, AttributeError, ModuleNotFoundError):
            pass  # MultiplexedPath issues or missing resource

    return None


WINDOWS_RESERVED = frozenset([
    "CON", "PRN", "AUX", "NUL",
    "COM1", "COM2", "COM3", "COM4", "COM5", "COM6", "COM7", "COM8", "COM9",
    "LPT1", "LPT2", "LPT3", "LPT4", "LPT5", "LPT6", "LPT7", "LPT8", "LPT9",
])


def is_valid_filename(name: str) -> bool:
    """Check if filename is valid on all platforms."""
    if not name:
        return False
    stem = PurePath(name).stem.upper()
    if stem in WINDOWS_RESERVED:
        return False
    invalid_chars = '<>:"|?*' if sys.platform == "win32" else ""
    return not any(c in name for c in invalid_chars)


def resolve_recording_path(name: Optional[str], recordings_dir: Path, *, now: Optional[datetime] = None) -> Path:
    """
    Map a CLI argument to a recording path.
    - None          -> <recordings_dir>/session-YYYYmmdd-HHMMSS.oscrec
    - bare filename -> <recordings_dir>/<name>[.oscrec]
    - anything with a directory part is used as given
    """
    if name is None:
        stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M%S")
        return normalize_path(recordings_dir / f"session-{stamp}{RECORDING_SUFFIX}")

    p = Path(name).expanduser()
    if p.parent != Path("."):
        return normalize_path(p)
    if not is_valid_filename(p.name):
        raise ValueError(f"invalid recording name: {name!r}")
    if not p.suffix:
        p = p.with_suffix(RECORDING_SUFFIX)
    return normalize_path(recordings_dir / p.name)
