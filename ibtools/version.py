"""
Version management for ibtools.

The version is read from pyproject.toml, which serves as the single source
of truth. Installed copies without a pyproject.toml fall back to the
distribution metadata.
"""

from importlib import metadata
from pathlib import Path

import tomli

PROJECT_ROOT = Path(__file__).resolve().parent.parent
PYPROJECT_PATH = PROJECT_ROOT / "pyproject.toml"

_FALLBACK_VERSION = "0.0.0"


def get_version_from_pyproject() -> str:
    """
    Read the version string from pyproject.toml.

    Returns:
        str: Version string in the format "x.y.z"
    """
    try:
        with open(PYPROJECT_PATH, "rb") as f:
            pyproject_data = tomli.load(f)
        return pyproject_data["project"]["version"]
    except (FileNotFoundError, KeyError, tomli.TOMLDecodeError):
        try:
            return metadata.version("ibtools")
        except metadata.PackageNotFoundError:
            return _FALLBACK_VERSION


__version__ = get_version_from_pyproject()


def get_version() -> str:
    """Get the current version of the ibtools package."""
    return __version__
