"""compose-e2e - black-box verification harness for compose-style CLIs."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("compose-e2e")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for editable installs without metadata

from .main import main

__all__ = ["main", "__version__"]
