"""ghlink: jump from GitHub source links to a synced local checkout, and back."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("ghlink")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .link_spec import LinkSpec, format_link, parse_link  # noqa: F401
from .errors import GhlinkError  # noqa: F401
from .flows import OpenedLocation, generate_link, open_link  # noqa: F401

__all__ = [
    "LinkSpec",
    "parse_link",
    "format_link",
    "GhlinkError",
    "OpenedLocation",
    "open_link",
    "generate_link",
    "__version__",
]
