"""Git versioning for page writes.

Every save becomes one commit in a git repository rooted at the page store's
root directory. Commits can optionally be pushed to a remote.

Commit message format:
    "update: {title}"

Only one commit is created at a time per repository: stage, commit and push
run under a single lock. Writes to the same title are additionally
serialized so that file order and commit order agree.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from git import Actor, Repo
from git.exc import GitError, InvalidGitRepositoryError, NoSuchPathError
from git.objects import Commit
from git.remote import PushInfo

from gitwiki.core.errors import CommitError, PushError, VersionControlError
from gitwiki.core.models import CommitInfo, RemoteConfig, Revision
from gitwiki.core.storage import PageStore

logger = logging.getLogger(__name__)

COMMIT_MESSAGE = "update: {title}"


class VersionedBackend:
    """Wraps page writes in git commits.

    Example:
        >>> backend = VersionedBackend(PageStore("data/pages"))
        >>> info = backend.commit("FrontPage", b"Hello CamelCase World")
        >>> backend.history("FrontPage")[0].revision == info.revision
        True
    """

    def __init__(
        self,
        store: PageStore,
        remote: RemoteConfig | None = None,
        author_name: str = "GitWiki",
        author_email: str = "gitwiki@localhost",
    ):
        self.store = store
        self.remote = remote
        self.actor = Actor(author_name, author_email)
        self.repo = self._open_repo()
        self._commit_lock = threading.Lock()
        self._title_locks: dict[str, list] = {}
        self._title_locks_guard = threading.Lock()
        self._sequence = 0

        if remote is not None and remote.url:
            self._configure_remote(remote)

    def _open_repo(self) -> Repo:
        """Open the repository at the store root, initializing it if needed."""
        root = self.store.root
        try:
            return Repo(root)
        except (InvalidGitRepositoryError, NoSuchPathError):
            pass

        try:
            repo = Repo.init(root)
        except (GitError, OSError) as exc:
            raise VersionControlError(
                f"Cannot initialize git repository at {root}: {exc}"
            ) from exc
        logger.info("Initialized git repository at %s", root)
        return repo

    def _configure_remote(self, remote: RemoteConfig) -> None:
        if remote.name in [r.name for r in self.repo.remotes]:
            existing = self.repo.remote(remote.name)
            if existing.url != remote.url:
                existing.set_url(remote.url)
                logger.info("Updated remote %s to %s", remote.name, remote.url)
        else:
            self.repo.create_remote(remote.name, remote.url)
            logger.info("Added remote %s at %s", remote.name, remote.url)

    @contextmanager
    def _title_lock(self, title: str) -> Iterator[None]:
        # Entries are [lock, users] and are dropped once nobody holds them
        with self._title_locks_guard:
            entry = self._title_locks.setdefault(title, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._title_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._title_locks[title]

    def _head(self) -> str | None:
        try:
            return self.repo.head.commit.hexsha
        except ValueError:
            return None

    @property
    def head(self) -> str | None:
        """Hex sha of HEAD, or None before the first commit."""
        with self._commit_lock:
            return self._head()

    @property
    def sequence(self) -> int:
        """Number of commits created by this backend so far."""
        return self._sequence

    def commit(self, title: str, body: bytes) -> CommitInfo:
        """Write a page and commit it.

        Raises:
            PathEscapeError, PageIOError: The write failed; nothing was
                committed.
            CommitError: The file was written but could not be committed.
            PushError: The commit was created but the push failed. The
                commit is available as ``exc.commit``.
        """
        title = self.store.canonical_title(title)
        with self._title_lock(title):
            modified_at = self.store.save(title, body)
            return self._commit_file(title, modified_at)

    def commit_pending(self, title: str) -> CommitInfo:
        """Commit a page that is already on disk, without rewriting it.

        Used to recover after a CommitError.
        """
        title = self.store.canonical_title(title)
        with self._title_lock(title):
            page = self.store.load(title)
            return self._commit_file(title, page.modified_at)

    def _commit_file(self, title: str, modified_at: datetime) -> CommitInfo:
        relpath = self.store.relative_path(title)
        message = COMMIT_MESSAGE.format(title=title)

        with self._commit_lock:
            try:
                commit = self._record_commit(relpath, message)
            except (GitError, OSError) as exc:
                logger.warning("Commit failed for page %r: %s", title, exc)
                raise CommitError(
                    title,
                    str(exc),
                    modified_at=modified_at,
                    git_output=getattr(exc, "stderr", "") or "",
                ) from exc

            self._sequence += 1
            info = CommitInfo(
                title=title,
                revision=commit.hexsha,
                sequence=self._sequence,
                message=message,
                committed_at=commit.committed_datetime,
                modified_at=modified_at,
            )
            logger.info("Committed %s for page %r", info.revision[:8], title)

            if self.remote is not None and self.remote.push:
                self._push(info)
                info.pushed = True

        return info

    def _record_commit(self, relpath: str, message: str) -> Commit:
        """Stage one file and create a commit."""
        index = self.repo.index
        index.add([relpath])
        return index.commit(message, author=self.actor, committer=self.actor)

    def _push(self, info: CommitInfo) -> None:
        """Push the current branch to the remote. Never retried here."""
        remote = self.remote
        try:
            branch = self.repo.active_branch.name
            results = self.repo.remote(remote.name).push(
                refspec=f"{branch}:{branch}",
                kill_after_timeout=remote.timeout,
            )
        except (GitError, ValueError, TypeError) as exc:
            logger.warning("Push to %s failed: %s", remote.url, exc)
            raise PushError(remote.url, str(exc), commit=info) from exc

        failed = (
            PushInfo.ERROR
            | PushInfo.REJECTED
            | PushInfo.REMOTE_REJECTED
            | PushInfo.REMOTE_FAILURE
        )
        if not results:
            logger.warning("Push to %s transferred nothing", remote.url)
            raise PushError(remote.url, "no refs were pushed", commit=info)
        for result in results:
            if result.flags & failed:
                summary = result.summary.strip() or "rejected"
                logger.warning("Push to %s rejected: %s", remote.url, summary)
                raise PushError(remote.url, summary, commit=info)

        logger.info("Pushed %s to %s", info.revision[:8], remote.url)

    def committed_pages(self) -> tuple[str | None, int, list[tuple[str, bytes]]]:
        """Pages as of HEAD, sorted by title.

        Returns ``(head, sequence, pages)`` read under the commit lock, so
        the three agree. Files written to disk but never committed are not
        included.
        """
        extension = self.store.extension
        with self._commit_lock:
            head = self._head()
            if head is None:
                return None, self._sequence, []
            pages = []
            try:
                for item in self.repo.head.commit.tree.traverse():
                    if item.type != "blob" or not item.path.endswith(extension):
                        continue
                    title = item.path.removesuffix(extension)
                    if self.store.resolver.is_canonical(title):
                        pages.append((title, item.data_stream.read()))
            except GitError as exc:
                raise VersionControlError(f"Cannot read tree at {head}: {exc}") from exc
            pages.sort(key=lambda page: page[0])
            return head, self._sequence, pages

    def history(self, title: str, limit: int | None = None) -> list[Revision]:
        """Commits touching a page, newest first."""
        relpath = self.store.relative_path(title)
        kwargs = {"max_count": limit} if limit is not None else {}

        # The Repo object is shared with the commit path and not thread-safe
        with self._commit_lock:
            if self._head() is None:
                return []
            try:
                return [
                    Revision(
                        revision=c.hexsha,
                        message=c.message.strip(),
                        author=c.author.name or "",
                        committed_at=c.committed_datetime,
                    )
                    for c in self.repo.iter_commits(paths=relpath, **kwargs)
                ]
            except GitError as exc:
                raise VersionControlError(
                    f"Cannot read history of {title!r}: {exc}"
                ) from exc

    def close(self) -> None:
        """Release git subprocesses held by the repository object."""
        self.repo.close()
