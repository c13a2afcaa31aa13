"""Unit tests for title-to-path resolution."""

import os
from pathlib import Path

import pytest

from gitwiki.core.errors import PathEscapeError
from gitwiki.core.paths import PathResolver, is_within_root, resolve


@pytest.fixture
def root(tmp_path):
    root = tmp_path / "data"
    root.mkdir()
    return Path(os.path.realpath(root))


@pytest.fixture
def resolver(root):
    return PathResolver(root)


def snapshot_tree(path: Path) -> list[str]:
    return sorted(str(p.relative_to(path)) for p in path.rglob("*"))


# ============================================================
# Rejected titles
# ============================================================


class TestEscapes:
    @pytest.mark.parametrize(
        "title",
        [
            "../../etc/passwd",
            "../Page",
            "sub/../../Page",
            "a/b/../../../Page",
            "..",
            "/etc/passwd",
            "/abs/Page",
            "\\windows\\Page",
            "",
            "   ",
            "bad\x00name",
            ".git/config",
            "sub/.git/hooks/pre-commit",
            ".hidden",
            "sub/.secret",
            "sub/",
            "a//b",
            "a/./b",
            "./sub/./Page",
            "sub\\Page",
        ],
    )
    def test_rejected(self, resolver, root, tmp_path, title):
        before_root = snapshot_tree(root)
        before_parent = snapshot_tree(tmp_path)
        with pytest.raises(PathEscapeError):
            resolver.resolve(title)
        assert snapshot_tree(root) == before_root
        assert snapshot_tree(tmp_path) == before_parent

    def test_error_carries_title_and_root(self, resolver, root):
        with pytest.raises(PathEscapeError) as excinfo:
            resolver.resolve("../Page")
        assert excinfo.value.title == "../Page"
        assert excinfo.value.root == root

    def test_module_level_resolve_rejects_traversal(self, root):
        with pytest.raises(PathEscapeError):
            resolve(root, "../../etc/passwd")

    def test_symlink_out_of_root_rejected(self, resolver, root, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (root / "link").symlink_to(outside, target_is_directory=True)
        with pytest.raises(PathEscapeError):
            resolver.resolve("link/Page")
        assert list(outside.iterdir()) == []


# ============================================================
# Canonical titles
# ============================================================


class TestCanonicalTitle:
    def test_valid_title_unchanged(self, resolver):
        assert resolver.canonical_title("Projects/Roadmap") == "Projects/Roadmap"

    @pytest.mark.parametrize("title", ["a//b", "a/./b", "./a/b", "a/b/"])
    def test_aliases_of_same_file_rejected(self, resolver, title):
        # a/b is the only spelling for <root>/a/b.md
        with pytest.raises(PathEscapeError):
            resolver.canonical_title(title)
        assert resolver.is_canonical("a/b")

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("FrontPage", True),
            ("sub/Page", True),
            ("Page.v2", True),
            (".hidden", False),
            ("sub/", False),
            ("sub//Page", False),
            ("..", False),
        ],
    )
    def test_is_canonical(self, resolver, title, expected):
        assert resolver.is_canonical(title) is expected

    def test_is_canonical_does_not_log(self, resolver, caplog):
        resolver.is_canonical(".hidden")
        assert caplog.records == []

    def test_every_accepted_title_maps_back(self, resolver):
        for title in ["FrontPage", "a/b", "a/b/c", "Page.v2", "x y/z"]:
            assert resolver.title_for(resolver.resolve(title)) == title


# ============================================================
# Prefix collisions
# ============================================================


class TestIsWithinRoot:
    def test_sibling_with_common_prefix(self):
        assert is_within_root("/data", "/data-evil") is False
        assert is_within_root("/data", "/data-evil/Page.md") is False

    def test_root_itself(self):
        assert is_within_root("/data", "/data") is True

    def test_descendant(self):
        assert is_within_root("/data", "/data/sub/Page.md") is True

    def test_parent(self):
        assert is_within_root("/data", "/") is False

    def test_relative_and_absolute_mix(self):
        assert is_within_root("/data", "data/Page.md") is False

    def test_evil_sibling_on_disk(self, tmp_path):
        root = tmp_path / "data"
        evil = tmp_path / "data-evil"
        root.mkdir()
        evil.mkdir()
        assert str(evil).startswith(str(root))
        assert is_within_root(str(root), str(evil)) is False


# ============================================================
# Successful resolution
# ============================================================


class TestResolve:
    def test_flat_title(self, resolver, root):
        assert resolver.resolve("FrontPage") == root / "FrontPage.md"

    def test_hierarchical_title_creates_directory(self, root):
        path = resolve(root, "sub/Page")
        assert path == root / "sub" / "Page.md"
        assert (root / "sub").is_dir()
        assert not path.exists()

    def test_deep_hierarchy(self, resolver, root):
        path = resolver.resolve("a/b/c/Page")
        assert path.parent == root / "a" / "b" / "c"
        assert path.parent.is_dir()

    def test_idempotent(self, resolver):
        first = resolver.resolve("sub/Page")
        second = resolver.resolve("sub/Page")
        assert first == second

    def test_create_dirs_disabled(self, resolver, root):
        path = resolver.resolve("missing/Page", create_dirs=False)
        assert path == root / "missing" / "Page.md"
        assert not (root / "missing").exists()

    def test_custom_extension(self, root):
        resolver = PathResolver(root, extension=".txt")
        assert resolver.resolve("Notes") == root / "Notes.txt"

    def test_title_for_roundtrip(self, resolver):
        path = resolver.resolve("Projects/Roadmap")
        assert resolver.title_for(path) == "Projects/Roadmap"
