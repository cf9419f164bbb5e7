"""
Exception hierarchy for archive operations.

Read-side lookups (missing repository, category, manifest) never raise; they
return empty or negative results. The classes below cover the hard failures
that must reach the caller.
"""
from __future__ import annotations

from typing import Optional


class RepoSpaceError(Exception):
    """Base exception for all repospace errors."""

    status_code: int = 500
    retriable: bool = False

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class UnsafePathError(RepoSpaceError, ValueError):
    """A repository name, category, or file path would escape the archive root."""

    status_code = 400


class SourceError(RepoSpaceError):
    """Listing or fetching content from the remote source failed."""

    status_code = 502
    retriable = True

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
        **context: object,
    ) -> None:
        super().__init__(message, **context)
        self.cause = cause
        self.status = status


class AuthenticationRequiredError(SourceError):
    """The operation needs a bearer token and none was configured."""

    status_code = 401
    retriable = False


class FileLimitExceededError(SourceError):
    """The operator-supplied file limit was reached while walking a tree."""

    status_code = 413
    retriable = False


class ArchiveWriteError(RepoSpaceError):
    """Directory creation or a file write failed while materializing an archive."""


class ArchiveRemoveError(RepoSpaceError):
    """Removing an archive left either its index entry or its files behind."""


class ArchiveConflictError(RepoSpaceError):
    """The archive directory already belongs to a different repository."""

    status_code = 409
