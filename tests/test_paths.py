"""Tests for storage path helpers."""

import pytest

from polystore import paths


SAMPLES = [
    None,
    "",
    "/",
    "//",
    "a",
    "/a",
    "a/",
    "/a/b/c/",
    "a//b///c",
    "./a/./b",
    "a/b/../c",
    "../../a",
    "a/..",
    "A/b/C",
    "/dir with space/file.txt",
]


class TestNormalize:
    """Tests for normalize() and split()."""

    @pytest.mark.parametrize("path", SAMPLES)
    def test_idempotent(self, path):
        once = paths.normalize(path)
        assert paths.normalize(once) == once

    @pytest.mark.parametrize("path", SAMPLES)
    def test_no_edge_separators_or_empty_segments(self, path):
        result = paths.normalize(path)
        assert not result.startswith("/")
        assert not result.endswith("/")
        assert "//" not in result

    @pytest.mark.parametrize("path", [None, "", "/", "//", "a/..", "./"])
    def test_root_forms(self, path):
        assert paths.normalize(path) == paths.ROOT_FOLDER_PATH
        assert paths.is_root(path)

    def test_strips_separators(self):
        assert paths.normalize("/a/b/c/") == "a/b/c"

    def test_collapses_empty_segments(self):
        assert paths.normalize("a//b///c") == "a/b/c"

    def test_dot_segments(self):
        assert paths.normalize("./a/./b") == "a/b"
        assert paths.normalize("a/b/../c") == "a/c"

    def test_parent_of_root_clamped(self):
        assert paths.normalize("../../a") == "a"

    def test_case_sensitive(self):
        assert paths.normalize("A/b") != paths.normalize("a/b")

    def test_split_segments(self):
        assert paths.split("/a/b/") == ["a", "b"]
        assert paths.split(None) == []


class TestCombine:
    """Tests for combine()."""

    def test_joins_fragments(self):
        assert paths.combine("/a/", "b", "c/d") == "a/b/c/d"

    def test_ignores_empty_fragments(self):
        assert paths.combine("", None, "a", "") == "a"

    def test_root_only(self):
        assert paths.combine("/", "") == ""


class TestParentAndName:
    """Tests for get_parent(), get_name() and is_under()."""

    def test_parent(self):
        assert paths.get_parent("a/b/c") == "a/b"
        assert paths.get_parent("a") == ""
        assert paths.get_parent("/") is None

    def test_name(self):
        assert paths.get_name("/a/b/file.txt") == "file.txt"
        assert paths.get_name("") == ""

    def test_is_under(self):
        assert paths.is_under("a/b/c", "a")
        assert paths.is_under("a", "")
        assert not paths.is_under("a", "a")
        assert not paths.is_under("ab/c", "a")
        assert not paths.is_under("", "")
