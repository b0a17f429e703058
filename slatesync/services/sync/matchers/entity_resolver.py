"""
Cross-provider entity resolution for teams and games.

Providers spell the same team differently ("LA Clippers", "Los Angeles
Clippers", "LAC") and identify the same game by unrelated ids. Resolution
walks fixed tiers and stops at the first one that yields a unique answer:

1. provider_id   - exact provider id (team alias table, game external ids,
                   or the canonical id itself)
2. exact         - letters-only lowercase name equals a team's name,
                   abbreviation, short name or "location + short name"
3. containment   - one letters-only name contains the other
4. token_overlap - a shared word longer than 3 characters

For games, tiers 2-4 apply to both the home and the away side (the game's
tier is the weaker of the two) and only games whose start instant lies
within GAME_MATCH_WINDOW_DAYS of the approximate instant are considered.
Nothing past tier 4 is attempted; no match returns None.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from sqlalchemy.orm import Session

from slatesync.core.config import settings
from slatesync.core.logging import get_logger
from slatesync.models import Game, Team
from slatesync.repositories import GameRepository, TeamRepository
from slatesync.services.sync.utils.name_normalizer import name_tokens, team_key

logger = get_logger(__name__)

PROVIDER_ID = "provider_id"
EXACT = "exact"
CONTAINMENT = "containment"
TOKEN_OVERLAP = "token_overlap"

# Tier order and the confidence attached to each
TIERS = [PROVIDER_ID, EXACT, CONTAINMENT, TOKEN_OVERLAP]
TIER_CONFIDENCE = {
    PROVIDER_ID: 1.0,
    EXACT: 0.95,
    CONTAINMENT: 0.85,
    TOKEN_OVERLAP: 0.75,
}

ANY_PROVIDER = "any"


class EntityMatch:
    """A resolved entity plus how it was found."""

    def __init__(self, entity, method: str):
        self.entity = entity
        self.method = method
        self.confidence = TIER_CONFIDENCE[method]

    def __repr__(self):
        return f"EntityMatch(entity={self.entity.id}, method={self.method}, confidence={self.confidence:.2f})"


@dataclass
class GameCandidate:
    """
    Identifiers a provider gives for one game.

    ``external_ids`` maps a provider category (schedule, odds, score) to that
    provider's id; the key ``"any"`` searches every external-id column.
    """
    canonical_id: Optional[str] = None
    external_ids: Dict[str, str] = field(default_factory=dict)
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None


class _TeamProfile:
    """Pre-computed comparison keys for one canonical team."""

    def __init__(self, team: Team):
        self.team = team
        location_short = f"{team.location or ''}{team.short_name or ''}"
        self.keys: Set[str] = {
            k for k in (
                team_key(team.name),
                team_key(team.abbreviation),
                team_key(team.short_name),
                team_key(location_short) if team.location and team.short_name else "",
            ) if k
        }
        self.long_keys = {k for k in self.keys if k != team_key(team.abbreviation)}
        self.tokens = name_tokens(team.name) | name_tokens(team.short_name) | name_tokens(team.location)


class EntityResolver:
    """
    Resolves provider references to canonical Team and Game rows.

    Team profiles are cached per sport for the lifetime of the resolver;
    call ``invalidate(sport)`` after creating or renaming teams.
    """

    def __init__(
        self,
        db: Session,
        window_days: Optional[int] = None,
        containment_min_length: Optional[int] = None,
    ):
        self.db = db
        self.teams = TeamRepository(db)
        self.games = GameRepository(db)
        self.window_days = window_days if window_days is not None else settings.GAME_MATCH_WINDOW_DAYS
        self.containment_min_length = (
            containment_min_length if containment_min_length is not None else settings.CONTAINMENT_MIN_LENGTH
        )
        self._profiles: Dict[str, List[_TeamProfile]] = {}

    def invalidate(self, sport: Optional[str] = None) -> None:
        if sport is None:
            self._profiles.clear()
        else:
            self._profiles.pop(sport, None)

    # ========================================================================
    # Teams
    # ========================================================================

    def resolve_team(
        self,
        name_or_abbr: Optional[str],
        sport: str,
        provider: Optional[str] = None,
        external_key: Optional[str] = None,
    ) -> Optional[Team]:
        match = self.match_team(name_or_abbr, sport, provider, external_key)
        return match.entity if match else None

    def match_team(
        self,
        name_or_abbr: Optional[str],
        sport: str,
        provider: Optional[str] = None,
        external_key: Optional[str] = None,
    ) -> Optional[EntityMatch]:
        """
        Resolve a team reference.

        Args:
            name_or_abbr: Display name, nickname, abbreviation or canonical id
            sport: Sport code
            provider: Provider name for alias lookup
            external_key: Provider-native team id or spelling

        Returns:
            EntityMatch, or None when no tier gives a unique team
        """
        if provider and external_key:
            team = self.teams.find_by_alias(sport, provider, external_key)
            if team is not None:
                return EntityMatch(team, PROVIDER_ID)

        if not name_or_abbr:
            return None

        team = self.teams.find_by_id(name_or_abbr)
        if team is not None and team.sport == sport:
            return EntityMatch(team, PROVIDER_ID)

        key = team_key(name_or_abbr)
        if not key:
            return None
        tokens = name_tokens(name_or_abbr)

        profiles = self._team_profiles(sport)
        for tier in (EXACT, CONTAINMENT, TOKEN_OVERLAP):
            hits = [p.team for p in profiles if self._team_tier(key, tokens, p, tier)]
            if len(hits) == 1:
                logger.debug(f"Resolved {sport} team {name_or_abbr!r} -> {hits[0].id} ({tier})")
                return EntityMatch(hits[0], tier)
            if len(hits) > 1:
                logger.info(
                    f"Ambiguous {sport} team {name_or_abbr!r} at tier {tier}: "
                    f"{', '.join(t.id for t in hits)}"
                )
                return None

        logger.debug(f"No {sport} team matches {name_or_abbr!r}")
        return None

    def _team_profiles(self, sport: str) -> List[_TeamProfile]:
        if sport not in self._profiles:
            self._profiles[sport] = [_TeamProfile(t) for t in self.teams.list_for_sport(sport)]
        return self._profiles[sport]

    def _team_tier(self, key: str, tokens: Set[str], profile: _TeamProfile, tier: str) -> bool:
        if tier == EXACT:
            return key in profile.keys
        if tier == CONTAINMENT:
            for candidate in profile.long_keys:
                shorter = min(len(key), len(candidate))
                if shorter >= self.containment_min_length and (key in candidate or candidate in key):
                    return True
            return False
        if tier == TOKEN_OVERLAP:
            return bool(tokens & profile.tokens)
        return False

    def _best_tier(self, name: Optional[str], team: Team, team_id: Optional[str]) -> Optional[str]:
        """Best tier at which a provider name (or resolved id) matches one side of a game."""
        if team_id:
            return EXACT if team_id == team.id else None
        if not name:
            return None
        key = team_key(name)
        tokens = name_tokens(name)
        profile = _TeamProfile(team)
        for tier in (EXACT, CONTAINMENT, TOKEN_OVERLAP):
            if self._team_tier(key, tokens, profile, tier):
                return tier
        return None

    # ========================================================================
    # Games
    # ========================================================================

    def resolve_game(
        self,
        candidate: GameCandidate,
        sport: str,
        approx_instant: Optional[datetime],
    ) -> Optional[Game]:
        match = self.match_game(candidate, sport, approx_instant)
        return match.entity if match else None

    def match_game(
        self,
        candidate: GameCandidate,
        sport: str,
        approx_instant: Optional[datetime],
    ) -> Optional[EntityMatch]:
        """
        Resolve a game reference.

        Id tiers are checked first and need no instant. Name tiers need
        ``approx_instant`` and only look at games inside the tolerance
        window; among several games at the same tier the one closest in
        time wins, and an exact tie is treated as ambiguous.
        """
        if candidate.canonical_id:
            game = self.games.find_by_id(candidate.canonical_id)
            if game is not None and game.sport == sport:
                return EntityMatch(game, PROVIDER_ID)

        for category, external_id in candidate.external_ids.items():
            if not external_id:
                continue
            if category == ANY_PROVIDER:
                game = self.games.find_by_any_external_id(external_id, sport)
            else:
                game = self.games.find_by_external_id(sport, category, external_id)
            if game is not None:
                return EntityMatch(game, PROVIDER_ID)

        if approx_instant is None:
            return None
        has_home = candidate.home_team or candidate.home_team_id
        has_away = candidate.away_team or candidate.away_team_id
        if not (has_home and has_away):
            return None

        by_tier: Dict[str, List[Game]] = {EXACT: [], CONTAINMENT: [], TOKEN_OVERLAP: []}
        for game in self.games.in_window(sport, approx_instant, self.window_days):
            home_tier = self._best_tier(candidate.home_team, game.home_team, candidate.home_team_id)
            away_tier = self._best_tier(candidate.away_team, game.away_team, candidate.away_team_id)
            if home_tier is None or away_tier is None:
                continue
            weaker = max(home_tier, away_tier, key=TIERS.index)
            by_tier[weaker].append(game)

        for tier in (EXACT, CONTAINMENT, TOKEN_OVERLAP):
            hits = by_tier[tier]
            if not hits:
                continue
            chosen = self._closest(hits, approx_instant)
            if chosen is None:
                logger.info(
                    f"Ambiguous {sport} game {candidate.away_team} @ {candidate.home_team} "
                    f"near {approx_instant.isoformat()} ({tier})"
                )
                return None
            return EntityMatch(chosen, tier)

        return None

    @staticmethod
    def _closest(games: List[Game], instant: datetime) -> Optional[Game]:
        ranked = sorted(games, key=lambda g: abs((g.start_time - instant).total_seconds()))
        if len(ranked) > 1:
            first = abs((ranked[0].start_time - instant).total_seconds())
            second = abs((ranked[1].start_time - instant).total_seconds())
            if first == second:
                return None
        return ranked[0]
