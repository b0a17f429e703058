"""Unit tests for the name_normalizer utilities.

Test Strategy:
1. Player names: suffixes, punctuation, accents, case and whitespace
2. Team keys: letters-only keys for team names and abbreviations
3. Tokens: only words longer than three letters count
4. Equality: exact after normalization, optional rapidfuzz fallback
"""
import pytest

from slatesync.services.sync.utils.name_normalizer import (
    are_names_equal,
    extract_suffix,
    name_tokens,
    normalize,
    team_key,
)


class TestNormalize:
    """Player-name normalization."""

    # Suffixes
    # ─────────────────────────────────────────────────────────────

    def test_removes_generational_suffixes(self):
        assert normalize("Tim Hardaway Jr.") == "tim hardaway"
        assert normalize("Kenyon Martin Sr") == "kenyon martin"
        assert normalize("Marvin Bagley III") == "marvin bagley"
        assert normalize("Lonnie Walker IV") == "lonnie walker"

    def test_only_last_suffix_is_removed(self):
        assert normalize("Player Jr. III") == "player jr"

    def test_single_word_is_not_treated_as_suffix(self):
        assert normalize("V") == "v"

    # Punctuation, accents, case
    # ─────────────────────────────────────────────────────────────

    def test_removes_punctuation(self):
        assert normalize("P.J. Washington") == "pj washington"
        assert normalize("De'Aaron Fox") == "deaaron fox"

    def test_removes_accents(self):
        assert normalize("Nikola Jokić") == "nikola jokic"
        assert normalize("Jusuf Nurkić") == "jusuf nurkic"

    def test_lowercases_and_collapses_whitespace(self):
        assert normalize("  SHAI   Gilgeous-Alexander ") == "shai gilgeousalexander"

    # Edge cases
    # ─────────────────────────────────────────────────────────────

    @pytest.mark.parametrize("value", ["", None, "' . -"])
    def test_empty_results(self, value):
        assert normalize(value) == ""

    def test_idempotent(self):
        once = normalize("D'Angelo Russell Sr.")
        assert normalize(once) == once

    def test_extract_suffix(self):
        assert extract_suffix("Gary Trent Jr.") == "jr"
        assert extract_suffix("Gary Trent") == ""
        assert extract_suffix(None) == ""


class TestTeamKeys:
    """Team keys and tokens used by the entity resolver."""

    # team_key()
    # ─────────────────────────────────────────────────────────────

    def test_team_key_strips_non_letters(self):
        assert team_key("St. Louis Blues") == "stlouisblues"
        assert team_key("ST LOUIS BLUES") == "stlouisblues"
        assert team_key("Philadelphia 76ers") == "philadelphiaers"

    def test_team_key_for_abbreviation(self):
        assert team_key("LAL") == "lal"
        assert team_key("") == ""

    # name_tokens()
    # ─────────────────────────────────────────────────────────────

    def test_tokens_longer_than_three_letters(self):
        assert name_tokens("LA Clippers") == {"clippers"}
        assert name_tokens("Los Angeles Clippers") == {"angeles", "clippers"}

    def test_tokens_empty_for_short_words(self):
        assert name_tokens("NY") == set()
        assert name_tokens(None) == set()


class TestAreNamesEqual:
    """Player-name equality."""

    def test_equal_after_normalization(self):
        assert are_names_equal("P.J. Tucker", "PJ Tucker")
        assert are_names_equal("Luka Dončić", "Luka Doncic")

    def test_different_names(self):
        assert not are_names_equal("Jaylen Brown", "Jalen Brunson")

    def test_conflicting_suffixes_never_match(self):
        assert not are_names_equal("Tim Hardaway Jr.", "Tim Hardaway Sr.", fuzzy=True)

    def test_missing_suffix_still_matches(self):
        assert are_names_equal("Gary Trent Jr.", "Gary Trent")

    def test_fuzzy_fallback_catches_typos(self):
        assert not are_names_equal("Jayson Tatum", "Jayson Tatumm")
        assert are_names_equal("Jayson Tatum", "Jayson Tatumm", fuzzy=True)

    def test_empty_names_never_match(self):
        assert not are_names_equal("", "", fuzzy=True)
