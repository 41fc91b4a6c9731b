"""mdharvest: harvest a documentation site into local Markdown files."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("mdharvest")
except PackageNotFoundError:
    __version__ = "0.0.0+dev"
