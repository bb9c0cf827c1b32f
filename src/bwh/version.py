"""Package version and the User-Agent sent to the KiwiVM API."""

from importlib import metadata

__version__ = "0.4.0"


def get_version() -> str:
    """Installed distribution version, falling back to the source tree value."""
    try:
        return metadata.version("bwh")
    except metadata.PackageNotFoundError:
        return __version__


def get_user_agent() -> str:
    return f"bwh-python/{get_version()}"
