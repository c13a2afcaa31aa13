"""Data models for GitWiki."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from gitwiki.core.errors import IndexDriftError, PushError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Page(BaseModel):
    """Represents a wiki page as stored on disk."""

    title: str
    body: bytes
    modified_at: datetime

    @property
    def text(self) -> str:
        """Body decoded as UTF-8."""
        return self.body.decode("utf-8", errors="replace")


class RemoteConfig(BaseModel):
    """Remote repository that commits are pushed to."""

    url: str
    push: bool = False
    name: str = "origin"
    timeout: float = 10.0


class CommitInfo(BaseModel):
    """A commit created for one page save."""

    title: str
    revision: str
    sequence: int
    message: str
    committed_at: datetime
    modified_at: datetime
    pushed: bool = False


class Revision(BaseModel):
    """One entry of a page's history."""

    revision: str
    message: str
    author: str
    committed_at: datetime


class IndexEntry(BaseModel):
    """Search index entry derived from one page."""

    title: str
    terms: dict[str, int] = Field(default_factory=dict)
    title_terms: dict[str, int] = Field(default_factory=dict)
    revision: str | None = None
    # Commit order within this process; not meaningful after a restart.
    sequence: int = Field(default=0, exclude=True)
    indexed_at: datetime = Field(default_factory=utcnow)


class IndexSnapshot(BaseModel):
    """On-disk form of the search index."""

    version: int = 1
    head: str | None = None
    stale: list[str] = Field(default_factory=list)
    entries: list[IndexEntry] = Field(default_factory=list)


class SearchHit(BaseModel):
    """A single ranked search result."""

    title: str
    score: float


class SaveState(str, Enum):
    """Terminal states of a save."""

    INDEXED = "indexed"
    INDEX_STALE = "index_stale"
    WRITE_FAILED = "write_failed"
    COMMIT_FAILED = "commit_failed"


@dataclass
class SaveResult:
    """Outcome of a save that reached the repository."""

    state: SaveState
    page: Page
    commit: CommitInfo
    push_error: PushError | None = None
    index_error: IndexDriftError | None = None

    @property
    def warnings(self) -> list[str]:
        """Non-fatal problems, as messages."""
        return [str(e) for e in (self.push_error, self.index_error) if e is not None]
