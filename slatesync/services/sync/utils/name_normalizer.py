"""Name normalization utilities for player and team matching.

Player names (box scores vs. prop feeds):
- Suffixes: "Jr.", "Sr.", "III" are dropped
- Punctuation: "P.J. Tucker" -> "pj tucker"
- Accents: "Luka Dončić" -> "luka doncic"

Team names (schedule vs. odds feeds) are reduced to a letters-only key so
that "St. Louis Blues", "St Louis Blues" and "ST LOUIS BLUES" compare equal.
"""
import re
import unicodedata
from typing import Set

from rapidfuzz import fuzz

SUFFIXES = {'jr', 'sr', 'ii', 'iii', 'iv', 'v'}

# Shared tokens must be longer than this to count as overlap
MIN_TOKEN_LENGTH = 3

FUZZY_THRESHOLD = 90


def normalize(name: str) -> str:
    """
    Normalize a player name for comparison.

    Examples:
        >>> normalize("P.J. Tucker")
        'pj tucker'
        >>> normalize("Tim Hardaway Jr.")
        'tim hardaway'
        >>> normalize("Luka Dončić")
        'luka doncic'
    """
    if not name:
        return ""

    name = _remove_suffixes(name)
    name = _strip_accents(name).lower()
    name = re.sub(r'[^\w\s]', '', name)
    return ' '.join(name.split())


def _remove_suffixes(name: str) -> str:
    parts = name.split()
    if len(parts) > 1 and parts[-1].lower().replace('.', '') in SUFFIXES:
        return ' '.join(parts[:-1])
    return name


def extract_suffix(name: str) -> str:
    """
    Suffix of a name ("jr", "sr", ...) or empty string.

    Used to keep "Tim Hardaway Jr." from matching "Tim Hardaway Sr.".
    """
    parts = (name or "").split()
    if len(parts) > 1 and parts[-1].lower().replace('.', '') in SUFFIXES:
        return parts[-1].lower().replace('.', '')
    return ""


def _strip_accents(name: str) -> str:
    normalized = unicodedata.normalize('NFD', name)
    return ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')


def team_key(name: str) -> str:
    """
    Letters-only lowercase key for a team name or abbreviation.

        >>> team_key("St. Louis Blues")
        'stlouisblues'
        >>> team_key("LA Clippers")
        'laclippers'
    """
    if not name:
        return ""
    return re.sub(r'[^a-z]', '', _strip_accents(name).lower())


def name_tokens(name: str) -> Set[str]:
    """Lowercase alphabetic tokens longer than MIN_TOKEN_LENGTH characters."""
    if not name:
        return set()
    words = re.split(r'[^a-z]+', _strip_accents(name).lower())
    return {w for w in words if len(w) > MIN_TOKEN_LENGTH}


def are_names_equal(name1: str, name2: str, fuzzy: bool = False) -> bool:
    """
    Check if two player names are equal after normalization.

    With ``fuzzy`` set, falls back to rapidfuzz WRatio >= 90. Differing
    generational suffixes never match.
    """
    suffix1, suffix2 = extract_suffix(name1), extract_suffix(name2)
    if suffix1 and suffix2 and suffix1 != suffix2:
        return False

    norm1 = normalize(name1)
    norm2 = normalize(name2)
    if not norm1 or not norm2:
        return False

    if norm1 == norm2:
        return True

    if fuzzy:
        return fuzz.WRatio(norm1, norm2) >= FUZZY_THRESHOLD

    return False
