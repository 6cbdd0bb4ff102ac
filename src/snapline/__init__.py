"""snapline: one git branch per released version of an external artifact."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("snapline")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .lock import AdvisoryLock  # noqa: F401
from .manifest import VersionDescriptor, VersionManifest, load_manifest, parse_manifest  # noqa: F401

__all__ = [
    "AdvisoryLock",
    "VersionDescriptor",
    "VersionManifest",
    "load_manifest",
    "parse_manifest",
    "__version__",
]
