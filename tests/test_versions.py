"""
Tests for mod version ordering and range syntaxes.
"""

import pytest

from craftkit.utils.versions import ModVersion, VersionRange


class TestModVersion:
    @pytest.mark.parametrize(
        "lower, higher",
        [
            ("1.20", "1.20.1"),
            ("1.9", "1.10"),
            ("1.0-beta.2", "1.0"),
            ("1.0-alpha", "1.0-beta"),
            ("1.0-rc1", "1.0-rc2"),
            ("1.20.1", "1.20.1-47.2.0"),
            ("0.14.21", "0.15.0"),
        ],
    )
    def test_ordering(self, lower, higher):
        assert ModVersion(lower) < ModVersion(higher)

    def test_trailing_zeros_and_build_metadata_are_ignored(self):
        assert ModVersion("1.0") == ModVersion("1.0.0")
        assert ModVersion("0.92.0+1.20.1") == ModVersion("0.92")
        assert len({ModVersion("2"), ModVersion("2.0.0")}) == 1


class TestFabricRanges:
    @pytest.mark.parametrize(
        "spec, version, expected",
        [
            ("*", "0.0.1", True),
            (">=0.14", "0.15.0", True),
            (">=0.14", "0.13.9", False),
            (">=1.20 <1.21", "1.20.4", True),
            (">=1.20 <1.21", "1.21", False),
            ("~1.20", "1.20.6", True),
            ("~1.20", "1.21", False),
            ("^2.1", "2.9", True),
            ("^2.1", "3.0", False),
            ("1.20.x", "1.20.4", True),
            ("1.20.x", "1.19.4", False),
            ("1.20.1", "1.20.1", True),
            ("1.20.1", "1.20.2", False),
        ],
    )
    def test_predicates(self, spec, version, expected):
        assert VersionRange.fabric(spec).matches(version) is expected

    def test_list_accepts_any_entry(self):
        accepted = VersionRange.fabric(["1.19.4", "~1.20"])
        assert accepted.matches("1.19.4")
        assert accepted.matches("1.20.2")
        assert not accepted.matches("1.19.2")


class TestMavenRanges:
    @pytest.mark.parametrize(
        "spec, version, expected",
        [
            ("[47,)", "47.2.0", True),
            ("[47,)", "46.0.1", False),
            ("[1.20.1,1.21)", "1.20.4", True),
            ("[1.20.1,1.21)", "1.21", False),
            ("(,1.0]", "1.0", True),
            ("(,1.0]", "1.0.1", False),
            ("[1.12.2]", "1.12.2", True),
            ("[1.12.2]", "1.12.1", False),
            ("[1.0,2.0),[3.0,)", "3.1", True),
            ("[1.0,2.0),[3.0,)", "2.5", False),
            ("1.0", "0.1", True),
            ("", "0.1", True),
        ],
    )
    def test_ranges(self, spec, version, expected):
        assert VersionRange.maven(spec).matches(version) is expected

    def test_unbalanced_range(self):
        with pytest.raises(ValueError):
            VersionRange.maven("[1.0")
