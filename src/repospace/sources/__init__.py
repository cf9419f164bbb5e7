"""
Remote repository providers.
"""
from .base import RepositorySource
from .github import GitHubSource, is_binary_payload

__all__ = ["GitHubSource", "RepositorySource", "is_binary_payload"]
