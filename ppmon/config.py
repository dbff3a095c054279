"""Location of the daemon configuration file."""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_ENV = "PPM_CONFIG"
LOCAL_CONFIG = Path("partner") / "partner-pm.yml"
DOT_CONFIG = ".partner-pm.yml"


def _home() -> Path | None:
    try:
        return Path.home()
    except RuntimeError:
        return None


def _cwd() -> Path | None:
    try:
        return Path.cwd()
    except OSError:
        return None


def _config_local_dir() -> Path | None:
    if sys.platform == "win32":
        local = os.environ.get("LOCALAPPDATA")
        return Path(local) if local else None
    home = _home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" if home else None
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg and os.path.isabs(xdg):
        return Path(xdg)
    return home / ".config" if home else None


def find_config_file() -> Path | None:
    """Return the configuration file to load, or None.

    A non-empty PPM_CONFIG is returned as is, existing or not.
    """
    from_env = os.environ.get(CONFIG_ENV)
    if from_env:
        return Path(from_env)

    local_dir = _config_local_dir()
    if local_dir is not None:
        candidate = local_dir / LOCAL_CONFIG
        if candidate.exists():
            return candidate

    for base in (_home(), _cwd()):
        if base is not None:
            candidate = base / DOT_CONFIG
            if candidate.exists():
                return candidate
    return None