"""
Local repository archive manager.

Search a remote code host, save a repository's full file tree under a
category on local disk, and later browse, verify, or remove that copy.
"""
from .version import __version__

__all__ = ["__version__"]
