"""Docs Harvester - documentation ingestion into a Redis vector index."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("docs-harvester")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for development without install
