"""Tests for famly.core.name_resolver — fuzzy attendee resolution."""

import pytest

from famly.core.errors import ValidationError
from famly.core.name_resolver import find_member, resolve_names


class TestFindMember:
    def test_case_insensitive_substring(self, roster):
        assert find_member("mi", roster).name == "Mia"
        assert find_member("LEO", roster).name == "Leo"

    def test_first_match_in_roster_order(self, roster):
        # "m" is contained in both "Mom" and "Mia"
        assert find_member("m", roster).name == "Mom"

    def test_no_match(self, roster):
        assert find_member("Zzz", roster) is None

    def test_blank_fragment(self, roster):
        assert find_member("   ", roster) is None


class TestResolveNames:
    def test_single_match(self, roster):
        assert resolve_names(["Mia"], roster) == ["3"]

    def test_unmatched_fragments_dropped(self, roster):
        assert resolve_names(["Zzz", "Leo"], roster) == ["4"]

    def test_fallback_to_first_member_when_nothing_matches(self, roster):
        assert resolve_names(["Zzz"], roster) == ["1"]

    def test_fallback_for_none_and_empty(self, roster):
        assert resolve_names(None, roster) == ["1"]
        assert resolve_names([], roster) == ["1"]

    def test_ids_unique_and_ordered(self, roster):
        assert resolve_names(["leo", "Dad", "Leo"], roster) == ["4", "2"]

    def test_empty_roster_rejected(self):
        with pytest.raises(ValidationError):
            resolve_names(["Mia"], [])

    @pytest.mark.parametrize("names", [["x"], ["mom", "DAD"], [""], ["a", "e", "i"], None])
    def test_always_non_empty_and_from_roster(self, roster, names):
        ids = resolve_names(names, roster)
        assert ids
        assert set(ids) <= {m.id for m in roster}
