"""
Unit tests for version parsing and latest/next pointer selection.
"""

import pytest

from pkgregistry.domain.versioning import (
    InvalidVersion,
    is_prerelease,
    normalize_version,
    parse_version,
    pick_pointers,
)


class TestNormalizeVersion:
    def test_prerelease_is_kept_as_written(self):
        assert normalize_version("2.0.0-beta") == "2.0.0-beta"
        assert normalize_version("2.0.0-Beta.1") == "2.0.0-beta.1"

    def test_plain_version_is_unchanged(self):
        assert normalize_version("1.0.0") == "1.0.0"

    def test_missing_components_are_padded(self):
        assert normalize_version("1.0") == "1.0.0"
        assert normalize_version("2") == "2.0.0"

    def test_build_metadata_is_dropped(self):
        assert normalize_version("1.0.0+build.5") == "1.0.0"
        assert normalize_version("1.0.0-rc.1+sha.abc") == "1.0.0-rc.1"

    def test_surrounding_whitespace_is_ignored(self):
        assert normalize_version(" 1.2.3 ") == "1.2.3"

    @pytest.mark.parametrize("value", ["not-a-version", "1.0.0.0", "01.0.0", "1.0.0-", "2.0.0b0", None])
    def test_invalid_version_raises(self, value):
        with pytest.raises(InvalidVersion):
            normalize_version(value)

    @pytest.mark.parametrize("value", ["1.0.0-nightly", "1.0.0-alpha.beta", "1.0.0-x.7.z.92", "2.0.0-beta.x"])
    def test_any_semver_prerelease_is_accepted(self, value):
        assert normalize_version(value) == value

    def test_prerelease_detection(self):
        assert is_prerelease("2.0.0-beta")
        assert is_prerelease("1.0.0-rc1")
        assert not is_prerelease("1.0.0")
        assert not is_prerelease("1.0.0+build.5")


class TestPrecedence:
    def test_prerelease_identifiers_are_ordered(self):
        ordered = [
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta",
            "1.0.0-beta.2",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
        ]
        parsed = [parse_version(v) for v in ordered]
        assert parsed == sorted(parsed)
        assert all(a < b for a, b in zip(parsed, parsed[1:]))

    def test_numeric_components_compare_as_numbers(self):
        assert parse_version("1.10.0") > parse_version("1.9.0")

    def test_build_metadata_does_not_affect_precedence(self):
        assert parse_version("1.0.0+build.9") == parse_version("1.0.0")
        assert parse_version("1.0") == parse_version("1.0.0")


class TestPickPointers:
    def test_empty_set_has_no_pointers(self):
        assert pick_pointers([]) == (None, None)

    def test_latest_is_highest_stable(self):
        latest, next_ = pick_pointers(["1.0.0", "2.0.0", "1.5.0"])
        assert latest == "2.0.0"
        assert next_ == "2.0.0"

    def test_next_is_highest_overall(self):
        latest, next_ = pick_pointers(["1.0.0", "2.0.0-beta"])
        assert latest == "1.0.0"
        assert next_ == "2.0.0-beta"

    def test_only_prereleases(self):
        latest, next_ = pick_pointers(["1.0.0-alpha.1", "1.0.0-beta.2"])
        assert latest is None
        assert next_ == "1.0.0-beta.2"

    def test_next_never_lower_than_latest(self):
        # A prerelease of an older line does not pull next below latest.
        latest, next_ = pick_pointers(["2.0.0", "1.5.0-rc.1"])
        assert latest == "2.0.0"
        assert next_ == "2.0.0"

    def test_unparseable_entries_are_ignored(self):
        assert pick_pointers(["garbage", "1.0.0"]) == ("1.0.0", "1.0.0")

    def test_order_of_input_does_not_matter(self):
        versions = ["3.0.0-beta.1", "1.0.0", "2.1.0", "2.0.0"]
        assert pick_pointers(versions) == pick_pointers(list(reversed(versions)))
