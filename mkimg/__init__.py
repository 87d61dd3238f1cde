"""Build partitioned disk images from declarative partition specs."""

from mkimg.__version__ import __version__

__all__ = ["__version__"]
