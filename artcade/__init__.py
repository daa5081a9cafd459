"""artcade — pattern evolution and vector retrieval for interactive HTML snippets."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("artcade")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
