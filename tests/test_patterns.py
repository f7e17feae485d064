"""Tests for glob matching over relative paths."""

import pytest

from codecontext.patterns import glob_match, glob_to_regex, matches_any, path_matches


class TestGlobMatch:
    """Tests for glob_match."""

    @pytest.mark.parametrize(
        "path,pattern",
        [
            ("a.ts", "**/*.ts"),
            ("src/a.ts", "**/*.ts"),
            ("src/deep/nested/a.ts", "src/**/*.ts"),
            ("node_modules/x/index.js", "**/node_modules/**"),
            ("docs/README.md", "**/docs/**"),
            ("src/a.ts", "src/?.ts"),
        ],
    )
    def test_matches(self, path, pattern):
        assert glob_match(path, pattern)

    @pytest.mark.parametrize(
        "path,pattern",
        [
            ("src/a.ts", "*.js"),
            ("src/deep/a.ts", "src/*.ts"),
            ("src/ab.ts", "src/?.ts"),
            ("srcx/a.ts", "src/**"),
        ],
    )
    def test_no_match(self, path, pattern):
        assert not glob_match(path, pattern)

    def test_slash_free_pattern_matches_basename(self):
        assert glob_match("src/app/main.py", "*.py")
        assert glob_match("src/app/main.py", "main.py")

    def test_special_characters_are_literal(self):
        assert glob_match("a+b.txt", "a+b.txt")
        assert not glob_match("aab.txt", "a+b.txt")

    def test_regex_is_cached(self):
        assert glob_to_regex("**/*.py") is glob_to_regex("**/*.py")


def test_matches_any():
    assert matches_any("lib/util.js", ["**/*.py", "**/*.js"])
    assert not matches_any("lib/util.rb", ["**/*.py", "**/*.js"])
    assert not matches_any("lib/util.rb", [])


class TestPathMatches:
    """Tests for path_matches."""

    def test_exact_path(self):
        assert path_matches("src/a.ts", "src/a.ts")

    def test_directory_prefix(self):
        assert path_matches("src/a.ts", "src")
        assert path_matches("src/a.ts", "src/")
        assert not path_matches("srcx/a.ts", "src")

    def test_glob(self):
        assert path_matches("docs/guide/intro.md", "**/*.md")
