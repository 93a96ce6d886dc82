"""Version information for smimemailer."""

__version__ = "0.1.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Release information
__title__ = "smimemailer"
__description__ = "S/MIME signing and encryption for outgoing email"
__license__ = "MIT"


def get_version() -> str:
    """Return the current version string."""
    return __version__
