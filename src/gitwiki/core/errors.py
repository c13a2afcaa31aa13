"""Exception hierarchy for the content store and search index.

Every error raised across a component boundary derives from WikiError so
callers can catch the whole family. Library exceptions (OSError,
git.GitCommandError) are translated into these types where they occur.
"""

from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gitwiki.core.models import CommitInfo


class WikiError(Exception):
    """Base class for all wiki storage errors."""


class PathEscapeError(WikiError):
    """Raised when a title would resolve to a path outside the root.

    Attributes:
        root: The configured root directory
        title: The rejected page title
    """

    def __init__(self, root: Path | str, title: str, reason: str = "outside root"):
        super().__init__(f"Title {title!r} rejected: {reason}")
        self.root = root
        self.title = title
        self.reason = reason


class PageNotFoundError(WikiError):
    """Raised when a page does not exist."""

    def __init__(self, title: str):
        super().__init__(f"Page not found: {title}")
        self.title = title


class PageIOError(WikiError):
    """Raised when reading or writing a page file fails."""

    def __init__(self, title: str, message: str):
        super().__init__(f"I/O error for page {title!r}: {message}")
        self.title = title
        self.message = message


class VersionControlError(WikiError):
    """Base class for git repository failures."""


class CommitError(VersionControlError):
    """Raised when the local commit fails after the file was written.

    The new content is on disk but not versioned. The commit step can be
    retried on its own without writing the file again.

    Attributes:
        title: Page whose commit failed
        modified_at: Write time of the unversioned content, if known
        git_output: Stderr of the failing git command, if any
    """

    def __init__(
        self,
        title: str,
        message: str,
        modified_at: datetime | None = None,
        git_output: str = "",
    ):
        super().__init__(f"Commit failed for page {title!r}: {message}")
        self.title = title
        self.message = message
        self.modified_at = modified_at
        self.git_output = git_output


class PushError(VersionControlError):
    """Raised when pushing a local commit to the remote fails.

    The local commit stands; ``commit`` describes it.
    """

    def __init__(self, url: str, message: str, commit: "CommitInfo | None" = None):
        super().__init__(f"Push to {url} failed: {message}")
        self.url = url
        self.message = message
        self.commit = commit


class IndexDriftError(WikiError):
    """The search index could not be updated after a successful commit."""

    def __init__(self, title: str, cause: BaseException | None = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Search index is stale for page {title!r}{detail}")
        self.title = title
        self.cause = cause
