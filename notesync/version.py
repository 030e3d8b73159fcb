"""Package version lookup."""

import tomllib
from importlib import metadata
from pathlib import Path

_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"
_DISTRIBUTION = "notesync"


def _source_version() -> str | None:
    # Only trust a pyproject.toml that describes this project (source checkout)
    try:
        with _PYPROJECT.open("rb") as f:
            project = tomllib.load(f).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return None
    if project.get("name") != _DISTRIBUTION:
        return None
    return project.get("version")


def get_version() -> str:
    """Version of the source checkout, else of the installed distribution."""
    version = _source_version()
    if version:
        return version
    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "0.0.0"
