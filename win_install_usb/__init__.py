"""Create a bootable Windows installer USB drive from a Windows ISO on macOS."""

from .__version__ import __version__

__all__ = ["__version__"]
