"""
Tests for canonical path handling.
"""

import pytest

from filexplorer.paths import ROOT, PathNormalizer


class TestCanonicalConversion:
    def test_root_maps_to_slash(self, tmp_path):
        normalizer = PathNormalizer(tmp_path)
        assert normalizer.to_canonical(tmp_path) == ROOT
        assert normalizer.to_absolute(ROOT) == tmp_path.resolve()

    def test_nested_path_is_relative_without_leading_slash(self, tmp_path):
        normalizer = PathNormalizer(tmp_path)
        assert normalizer.to_canonical(tmp_path / "src" / "a.txt") == "src/a.txt"
        assert normalizer.to_absolute("src/a.txt") == tmp_path.resolve() / "src" / "a.txt"

    def test_outside_paths_are_detected(self, tmp_path):
        normalizer = PathNormalizer(tmp_path / "root")
        canonical = normalizer.to_canonical(tmp_path / "elsewhere" / "x")
        assert PathNormalizer.is_outside(canonical)
        assert not PathNormalizer.is_outside("..hidden/file")

    def test_root_name_is_directory_name(self, tmp_path):
        normalizer = PathNormalizer(tmp_path / "project")
        assert normalizer.root_name == "project"
        assert normalizer.name_of(ROOT) == "project"
        assert normalizer.name_of("src/b/c.txt") == "c.txt"


class TestClean:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("/src/a.txt", "src/a.txt"),
            ("src/a.txt/", "src/a.txt"),
            ("  src  ", "src"),
            ("/", ROOT),
            ("", ""),
            (None, ""),
        ],
    )
    def test_clean(self, raw, expected):
        assert PathNormalizer.clean(raw) == expected


class TestHierarchy:
    def test_parent_of(self):
        assert PathNormalizer.parent_of(ROOT) is None
        assert PathNormalizer.parent_of("src") == ROOT
        assert PathNormalizer.parent_of("src/b/c.txt") == "src/b"

    def test_child_of(self):
        assert PathNormalizer.child_of(ROOT, "src") == "src"
        assert PathNormalizer.child_of("src", "b") == "src/b"

    def test_depth_of(self):
        assert PathNormalizer.depth_of(ROOT) == 0
        assert PathNormalizer.depth_of("src") == 1
        assert PathNormalizer.depth_of("src/b/c.txt") == 3


class TestGitInternal:
    def test_is_git_internal(self):
        assert PathNormalizer.is_git_internal(".git")
        assert PathNormalizer.is_git_internal("lib/.git/HEAD")
        assert not PathNormalizer.is_git_internal("lib/.gitignore")
        assert not PathNormalizer.is_git_internal(ROOT)

    @pytest.mark.parametrize(
        "path, repo",
        [
            (".git", ROOT),
            (".git/refs/heads/main", ROOT),
            ("lib/.git", "lib"),
            ("lib/vendor/.git/HEAD", "lib/vendor"),
            ("lib/.gitignore", None),
            ("src/a.txt", None),
        ],
    )
    def test_repo_path_from_git_internal(self, path, repo):
        assert PathNormalizer.repo_path_from_git_internal(path) == repo
