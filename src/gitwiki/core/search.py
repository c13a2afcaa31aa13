"""Full-text search index over page titles and bodies.

An in-memory inverted index (term -> titles) with term-frequency scoring.
When an index directory is configured, every change is written to a JSON
snapshot so the index survives restarts; the snapshot records the git HEAD
it corresponds to, which lets the service detect a stale snapshot and
rebuild.
"""

import logging
import os
import re
import tempfile
import threading
from collections import Counter
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from gitwiki.core.models import IndexEntry, IndexSnapshot, SearchHit


logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r"\w+")
TITLE_WEIGHT = 2
SNAPSHOT_NAME = "index.json"


def tokenize(text: str) -> list[str]:
    """Split text into lower-cased word tokens."""
    return [token.lower() for token in TOKEN_PATTERN.findall(text)]


def _decode(body: bytes | str) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


class SearchIndex:
    """Inverted index of wiki pages.

    Updates for a title carry the commit sequence they were derived from.
    An update older than the one already indexed is ignored, so the index
    always reflects the last commit for each title regardless of the order
    in which updates arrive.
    """

    def __init__(self, index_dir: Path | str | None = None):
        self.index_dir = Path(index_dir) if index_dir is not None else None
        self._entries: dict[str, IndexEntry] = {}
        self._postings: dict[str, set[str]] = {}
        self._stale: set[str] = set()
        self._head: str | None = None
        self._head_sequence = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entries)

    def titles(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def get(self, title: str) -> IndexEntry | None:
        with self._lock:
            return self._entries.get(title)

    @property
    def head(self) -> str | None:
        """Revision of the latest commit reflected in the index."""
        return self._head

    @property
    def stale_titles(self) -> list[str]:
        """Titles whose index entry is known to lag behind the store."""
        with self._lock:
            return sorted(self._stale)

    # ---- internal bookkeeping (caller holds the lock) ----

    @staticmethod
    def _make_entry(
        title: str, body: bytes | str, revision: str | None, sequence: int
    ) -> IndexEntry:
        return IndexEntry(
            title=title,
            terms=dict(Counter(tokenize(_decode(body)))),
            title_terms=dict(Counter(tokenize(title))),
            revision=revision,
            sequence=sequence,
        )

    def _add(self, entry: IndexEntry) -> None:
        self._entries[entry.title] = entry
        for term in entry.terms.keys() | entry.title_terms.keys():
            self._postings.setdefault(term, set()).add(entry.title)

    def _discard(self, title: str) -> IndexEntry | None:
        entry = self._entries.pop(title, None)
        if entry is None:
            return None
        for term in entry.terms.keys() | entry.title_terms.keys():
            titles = self._postings.get(term)
            if titles is not None:
                titles.discard(title)
                if not titles:
                    del self._postings[term]
        return entry

    def _persist(self) -> None:
        if self.index_dir is None:
            return
        snapshot = IndexSnapshot(
            head=self._head,
            stale=sorted(self._stale),
            entries=[self._entries[t] for t in sorted(self._entries)],
        )
        self.index_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.index_dir, prefix=".index.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(snapshot.model_dump_json())
            os.replace(tmp_name, self.index_dir / SNAPSHOT_NAME)
        except OSError:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    # ---- public API ----

    def update(
        self,
        title: str,
        body: bytes | str,
        revision: str | None = None,
        sequence: int | None = None,
    ) -> bool:
        """Index a page, replacing any previous entry for the title.

        Returns False if the update was ignored because a later commit of
        the same title is already indexed.
        """
        with self._lock:
            current = self._entries.get(title)
            if (
                sequence is not None
                and current is not None
                and current.sequence > sequence
            ):
                logger.debug(
                    "Ignoring out-of-order index update for %r (%d < %d)",
                    title,
                    sequence,
                    current.sequence,
                )
                return False

            seq = sequence or 0
            self._discard(title)
            self._add(self._make_entry(title, body, revision, seq))
            self._stale.discard(title)
            if revision is not None and seq >= self._head_sequence:
                self._head = revision
                self._head_sequence = seq
            self._persist()
        return True

    def remove(self, title: str) -> bool:
        """Drop a title from the index. Returns False if it was not indexed."""
        with self._lock:
            entry = self._discard(title)
            self._stale.discard(title)
            if entry is not None:
                self._persist()
        return entry is not None

    def mark_stale(self, title: str) -> None:
        """Record that the entry for ``title`` lags behind the store."""
        with self._lock:
            self._stale.add(title)
            self._persist()

    def query(self, term: str, limit: int | None = None) -> list[SearchHit]:
        """Rank pages matching any word of ``term``.

        Score is the body term frequency plus TITLE_WEIGHT times the title
        term frequency, summed over query words. Results are ordered by
        score, highest first, then by title.
        """
        tokens = list(dict.fromkeys(tokenize(term or "")))
        if not tokens:
            return []

        scores: dict[str, float] = {}
        with self._lock:
            for token in tokens:
                for title in self._postings.get(token, ()):
                    entry = self._entries[title]
                    score = entry.terms.get(token, 0) + TITLE_WEIGHT * entry.title_terms.get(token, 0)
                    scores[title] = scores.get(title, 0.0) + score

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        if limit is not None:
            ranked = ranked[:limit]
        return [SearchHit(title=title, score=score) for title, score in ranked]

    def rebuild(
        self,
        pages: Iterable[tuple[str, bytes | str]],
        head: str | None = None,
        sequence: int = 0,
    ) -> None:
        """Replace the index with one built from ``(title, body)`` pairs.

        Equivalent to calling ``update`` for every page in title order.
        ``head`` and ``sequence`` identify the commit the pages come from.
        If reading any page fails the previous index is kept and the error
        propagates.
        """
        with self._lock:
            entries = [
                self._make_entry(title, body, head, sequence)
                for title, body in sorted(pages, key=lambda page: page[0])
            ]
            self._entries = {}
            self._postings = {}
            for entry in entries:
                self._add(entry)
            self._stale = set()
            self._head = head
            self._head_sequence = sequence
            self._persist()
        logger.info("Rebuilt search index: %d pages", len(entries))

    def load(self) -> bool:
        """Load the snapshot from the index directory.

        Returns False if there is no usable snapshot.
        """
        if self.index_dir is None:
            return False
        path = self.index_dir / SNAPSHOT_NAME
        try:
            snapshot = IndexSnapshot.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return False
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable index snapshot %s: %s", path, exc)
            return False

        with self._lock:
            self._entries = {}
            self._postings = {}
            for entry in snapshot.entries:
                self._add(entry)
            self._stale = set(snapshot.stale)
            self._head = snapshot.head
            self._head_sequence = 0
        logger.info("Loaded search index: %d pages", len(snapshot.entries))
        return True

    def is_consistent_with(self, titles: list[str], head: str | None) -> bool:
        """True if the index covers exactly ``titles`` at revision ``head``."""
        with self._lock:
            return (
                not self._stale
                and self._head == head
                and sorted(self._entries) == sorted(titles)
            )
