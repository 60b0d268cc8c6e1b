"""
Cross-platform utilities for Smart Copier.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.

Supported platforms:
  - Windows 10/11
  - macOS 12+ (Monterey and newer)
  - Linux
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"

_APP_DIR_NAME = "SmartCopier"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\SmartCopier``
    - macOS   : ``~/Library/Application Support/SmartCopier``
    - Linux   : ``$XDG_CONFIG_HOME/SmartCopier`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / _APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_data_dir() -> Path:
    """
    Return the directory holding the copy ledger database, created if needed.

    - Windows : ``%LOCALAPPDATA%\\SmartCopier``
    - macOS   : same as the config directory
    - Linux   : ``$XDG_DATA_HOME/SmartCopier`` (default ``~/.local/share``)
    """
    if IS_WINDOWS:
        base = os.environ.get("LOCALAPPDATA", os.environ.get("APPDATA", str(Path.home())))
        data_dir = Path(base) / _APP_DIR_NAME
    elif IS_MACOS:
        return get_config_dir()
    else:
        base = os.environ.get("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
        data_dir = Path(base) / _APP_DIR_NAME
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "smart_copier.log"
