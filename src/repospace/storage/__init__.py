"""
Local persistence: archive layout and the category index.
"""

from .paths import ArchivePathPolicy, safe_join
from .registry import CategoryIndex, RepositoryIndex

__all__ = ["ArchivePathPolicy", "CategoryIndex", "RepositoryIndex", "safe_join"]
