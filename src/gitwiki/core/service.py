"""Orchestration of page store, git history and search index.

A save runs through these states:

    Idle -> Writing -> Committed -> Indexed       (success)
    Idle -> Writing -> Committed -> IndexStale    (saved, search lags)
    Idle -> WriteFailed                           (nothing changed)
    Idle -> Writing -> CommitFailed               (on disk, not versioned)

The index is only updated after a successful commit, so search never shows
content that was not committed. Index failures never fail a save.
"""

import logging
from pathlib import Path

from gitwiki.config import Settings
from gitwiki.core.errors import (
    CommitError,
    IndexDriftError,
    PageIOError,
    PushError,
)
from gitwiki.core.models import (
    CommitInfo,
    Page,
    RemoteConfig,
    Revision,
    SaveResult,
    SaveState,
    SearchHit,
)
from gitwiki.core.search import SearchIndex
from gitwiki.core.storage import PageStore
from gitwiki.core.vcs import VersionedBackend

logger = logging.getLogger(__name__)


class ContentService:
    """Single entry point for reading, saving and searching pages."""

    def __init__(self, store: PageStore, backend: VersionedBackend, index: SearchIndex):
        self.store = store
        self.backend = backend
        self.index = index
        self._states: dict[str, SaveState] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentService":
        """Build a service from application settings."""
        store = PageStore(Path(settings.data_dir), extension=settings.file_extension)
        remote = None
        if settings.git.url:
            remote = RemoteConfig(
                url=settings.git.url,
                push=settings.git.push,
                timeout=settings.git.push_timeout,
            )
        backend = VersionedBackend(
            store,
            remote=remote,
            author_name=settings.git.author_name,
            author_email=settings.git.author_email,
        )
        return cls(store, backend, SearchIndex(settings.index_dir))

    def last_state(self, title: str) -> SaveState | None:
        """Terminal state of the most recent save of ``title``."""
        return self._states.get(title)

    @property
    def stale_titles(self) -> list[str]:
        return self.index.stale_titles

    def save_and_index(self, title: str, body: bytes) -> SaveResult:
        """Save a page, commit it and update the search index.

        Raises:
            PathEscapeError, PageIOError: The page could not be written.
            CommitError: The page was written but not committed.

        A rejected title raises PathEscapeError before any state is kept
        for it.
        """
        title = self.store.canonical_title(title)
        push_error = None
        try:
            commit = self.backend.commit(title, body)
        except PushError as exc:
            push_error = exc
            commit = exc.commit
        except PageIOError:
            self._states[title] = SaveState.WRITE_FAILED
            raise
        except CommitError:
            self._states[title] = SaveState.COMMIT_FAILED
            logger.warning("Page %r saved to disk but not committed", title)
            raise

        return self._index(title, body, commit, push_error)

    def retry_commit(self, title: str) -> SaveResult:
        """Commit a page left unversioned by a CommitError, then index it."""
        title = self.store.canonical_title(title)
        push_error = None
        try:
            commit = self.backend.commit_pending(title)
        except PushError as exc:
            push_error = exc
            commit = exc.commit
        except CommitError:
            self._states[title] = SaveState.COMMIT_FAILED
            raise

        body = self.store.load(title).body
        return self._index(title, body, commit, push_error)

    def _index(
        self,
        title: str,
        body: bytes,
        commit: CommitInfo,
        push_error: PushError | None,
    ) -> SaveResult:
        page = Page(title=title, body=body, modified_at=commit.modified_at)
        try:
            self.index.update(
                title, body, revision=commit.revision, sequence=commit.sequence
            )
        except Exception as exc:
            drift = IndexDriftError(title, exc)
            logger.exception("Search index update failed for page %r", title)
            try:
                self.index.mark_stale(title)
            except OSError:
                logger.exception("Could not record stale index entry for %r", title)
            self._states[title] = SaveState.INDEX_STALE
            return SaveResult(
                state=SaveState.INDEX_STALE,
                page=page,
                commit=commit,
                push_error=push_error,
                index_error=drift,
            )

        self._states[title] = SaveState.INDEXED
        return SaveResult(
            state=SaveState.INDEXED,
            page=page,
            commit=commit,
            push_error=push_error,
        )

    def read(self, title: str) -> Page:
        """Load a page. Raises PageNotFoundError if it does not exist."""
        return self.store.load(title)

    def search(self, term: str, limit: int | None = None) -> list[SearchHit]:
        return self.index.query(term, limit=limit)

    def history(self, title: str, limit: int | None = None) -> list[Revision]:
        return self.backend.history(title, limit=limit)

    def rebuild_index(self) -> None:
        """Rebuild the search index from the pages committed at HEAD.

        Pages left on disk by a failed commit are not searchable until
        they are committed.
        """
        head, sequence, pages = self.backend.committed_pages()
        self.index.rebuild(pages, head=head, sequence=sequence)

    def ensure_index(self) -> bool:
        """Load the index snapshot, rebuilding it if it is missing or stale.

        Returns True if a rebuild was needed.
        """
        loaded = self.index.load()
        head, sequence, pages = self.backend.committed_pages()
        if loaded and self.index.is_consistent_with(
            [title for title, _ in pages], head
        ):
            return False

        if loaded:
            logger.warning("Search index is out of date, rebuilding")
        self.index.rebuild(pages, head=head, sequence=sequence)
        return True

    def close(self) -> None:
        self.backend.close()
