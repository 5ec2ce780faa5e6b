"""Serverwatch - live registry of game servers discovered from a master directory."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("serverwatch")
except PackageNotFoundError:
    # Package is not installed (e.g., running from source without pip install)
    __version__ = "0.0.0.dev0"

# Re-export core public API. `main` must be bound after the serverwatch.main
# submodule is imported, or the submodule attribute replaces it.
from serverwatch.main import Serverwatch
from serverwatch.app import main

# NOTE: Update this list when adding new exports to this module.
__all__ = [
    "__version__",
    "Serverwatch",
    "main",
]
