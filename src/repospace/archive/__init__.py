"""
Remote tree fetching and on-disk archive materialization.
"""
from .fetcher import TreeFetcher
from .writer import MANIFEST_FILENAME, ArchiveWriter

__all__ = ["ArchiveWriter", "MANIFEST_FILENAME", "TreeFetcher"]
