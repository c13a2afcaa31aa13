"""Mapping of page titles to files inside the data root.

Titles may contain ``/`` to form hierarchical pages (``Projects/Roadmap``).
Containment is checked on fully normalized paths, component by component,
so ``/data-evil`` is never mistaken for a child of ``/data``.
"""

import logging
import os
from pathlib import Path, PurePosixPath

from gitwiki.core.errors import PageIOError, PathEscapeError

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".md"
DIR_MODE = 0o755


def is_within_root(root: str | os.PathLike, path: str | os.PathLike) -> bool:
    """Return True if ``path`` equals ``root`` or lies below it.

    Both arguments must already be normalized absolute paths.
    """
    root, path = os.fspath(root), os.fspath(path)
    try:
        return os.path.commonpath([root, path]) == root
    except ValueError:
        # Different drives, or a mix of absolute and relative paths
        return False


class PathResolver:
    """Resolves page titles to file paths confined to ``root``."""

    def __init__(self, root: Path | str, extension: str = DEFAULT_EXTENSION):
        self.root = Path(os.path.realpath(root))
        self.extension = extension

    def _reject(self, title: str, reason: str) -> PathEscapeError:
        logger.warning("Rejected page title %r: %s", title, reason)
        return PathEscapeError(self.root, title, reason)

    @staticmethod
    def _title_problem(title: str) -> str | None:
        if not title or not title.strip():
            return "empty title"
        if "\x00" in title:
            return "NUL byte in title"
        if "\\" in title:
            return "backslash in title"
        if os.path.isabs(title):
            return "absolute path"
        for part in title.split("/"):
            if part == "..":
                return "parent directory segment"
            if not part:
                return "empty path segment"
            if part.startswith("."):
                # Also covers ".git" and the "." segment
                return "hidden path segment"
        return None

    def is_canonical(self, title: str) -> bool:
        return self._title_problem(title) is None

    def canonical_title(self, title: str) -> str:
        """Validate ``title`` and return it as the key for its page.

        Only one spelling maps to each file: empty, ``.``-prefixed and
        backslash-separated segments are rejected rather than normalized,
        so ``a//b`` and ``a/./b`` never alias ``a/b``.

        Raises:
            PathEscapeError: If the title is unusable.
        """
        problem = self._title_problem(title)
        if problem is not None:
            raise self._reject(title, problem)
        return title

    def resolve(self, title: str, create_dirs: bool = True) -> Path:
        """Return the file path for ``title``.

        Raises:
            PathEscapeError: If the title is unusable or the normalized path
                leaves the root. Nothing is created in that case.
            PageIOError: If the page's directory cannot be created.
        """
        title = self.canonical_title(title)

        root = os.fspath(self.root)
        candidate = os.path.realpath(os.path.join(root, title + self.extension))
        directory = os.path.dirname(candidate)
        if not is_within_root(root, directory) or candidate == root:
            raise self._reject(title, "outside root")

        if create_dirs and directory != root:
            try:
                os.makedirs(directory, mode=DIR_MODE, exist_ok=True)
            except OSError as exc:
                raise PageIOError(title, f"cannot create directory: {exc}") from exc

        return Path(candidate)

    def title_for(self, path: Path | str) -> str:
        """Convert a page file path back to its title."""
        relative = Path(path).relative_to(self.root)
        return str(PurePosixPath(*relative.parts)).removesuffix(self.extension)


def resolve(root: Path | str, title: str, extension: str = DEFAULT_EXTENSION) -> Path:
    """Resolve ``title`` below ``root``, creating parent directories."""
    return PathResolver(root, extension).resolve(title)
