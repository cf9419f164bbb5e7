"""
Service layer orchestrators for the local repository archive.
"""

from .archive import ArchiveManager, SaveCallbacks

__all__ = ["ArchiveManager", "SaveCallbacks"]
