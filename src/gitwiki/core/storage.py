"""File storage for wiki pages."""

import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

from gitwiki.core.errors import PageIOError, PageNotFoundError
from gitwiki.core.models import Page
from gitwiki.core.paths import DEFAULT_EXTENSION, PathResolver

logger = logging.getLogger(__name__)

FILE_MODE = 0o600


def _from_ns(ns: int) -> datetime:
    return datetime.fromtimestamp(ns / 1_000_000_000, tz=timezone.utc)


class PageStore:
    """File-based page storage.

    Pages are stored as raw bytes in ``<root>/<title><extension>``. Titles
    containing ``/`` map to subdirectories. Writes go to a temporary file
    in the target directory and are renamed into place, so a reader sees
    either the old or the new content, never a partial file.
    """

    def __init__(self, root: Path | str, extension: str = DEFAULT_EXTENSION):
        Path(root).mkdir(parents=True, exist_ok=True)
        self.resolver = PathResolver(root, extension)

    @property
    def root(self) -> Path:
        return self.resolver.root

    @property
    def extension(self) -> str:
        return self.resolver.extension

    def canonical_title(self, title: str) -> str:
        """Validated key for a page; raises PathEscapeError."""
        return self.resolver.canonical_title(title)

    def path_for(self, title: str) -> Path:
        """Get the full path for a page without creating anything."""
        return self.resolver.resolve(title, create_dirs=False)

    def relative_path(self, title: str) -> str:
        """Path of the page relative to the root, with ``/`` separators."""
        return self.path_for(title).relative_to(self.root).as_posix()

    def exists(self, title: str) -> bool:
        return self.path_for(title).is_file()

    def load(self, title: str) -> Page:
        """Load a page.

        Raises:
            PageNotFoundError: If the page does not exist.
            PathEscapeError: If the title resolves outside the root.
            PageIOError: On any other read failure.
        """
        path = self.path_for(title)
        try:
            with open(path, "rb") as f:
                body = f.read()
                stat = os.fstat(f.fileno())
        except FileNotFoundError as exc:
            raise PageNotFoundError(title) from exc
        except OSError as exc:
            raise PageIOError(title, str(exc)) from exc

        return Page(title=title, body=body, modified_at=_from_ns(stat.st_mtime_ns))

    def save(self, title: str, body: bytes) -> datetime:
        """Write a page, replacing any previous content.

        Returns the new modification time.

        Raises:
            PathEscapeError: If the title resolves outside the root.
            PageIOError: If the write fails. The previous content is kept.
        """
        path = self.resolver.resolve(title)
        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
        except OSError as exc:
            raise PageIOError(title, str(exc)) from exc
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, FILE_MODE)
            # Stamp the write time explicitly; filesystem clocks can lag
            # behind time.time() by a few milliseconds.
            now_ns = time.time_ns()
            os.utime(tmp_name, ns=(now_ns, now_ns))
            os.replace(tmp_name, path)
        except OSError as exc:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise PageIOError(title, str(exc)) from exc

        logger.debug("Wrote page %r (%d bytes)", title, len(body))
        return _from_ns(now_ns)

    def list_titles(self) -> list[str]:
        """List all page titles, sorted."""
        titles = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            # Skip .git and other hidden directories
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for filename in filenames:
                if filename.startswith(".") or not filename.endswith(self.extension):
                    continue
                title = self.resolver.title_for(Path(dirpath) / filename)
                if self.resolver.is_canonical(title):
                    titles.append(title)
        return sorted(titles)
