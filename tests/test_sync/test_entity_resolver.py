"""Tests for EntityResolver.

Test Strategy:
1. Team tiers: provider id -> exact -> containment -> token overlap
2. Short abbreviations never match by containment
3. Ambiguous tiers return None instead of guessing
4. Game resolution: external ids, canonical id, names inside the window
5. Closest game in time wins; exact ties are ambiguous
"""
from datetime import date, datetime, timedelta, timezone

from sqlalchemy.orm import Session

from slatesync.models import Team
from slatesync.services.sync.matchers.entity_resolver import (
    ANY_PROVIDER,
    CONTAINMENT,
    EXACT,
    PROVIDER_ID,
    TOKEN_OVERLAP,
    EntityResolver,
    GameCandidate,
)
from conftest import create_game

UTC = timezone.utc
TIP_OFF = datetime(2025, 11, 6, 0, 30, tzinfo=UTC)


class TestResolveTeam:
    """Team resolution tiers."""

    # Required properties
    # ─────────────────────────────────────────────────────────────

    def test_full_name_and_nickname_resolve_to_same_team(self, db_session: Session, nfl_teams):
        resolver = EntityResolver(db_session)
        full = resolver.resolve_team("New England Patriots", "nfl")
        nickname = resolver.resolve_team("Patriots", "nfl")
        assert full is not None
        assert full.id == nickname.id == "nfl-ne"

    def test_chicago_does_not_match_charlotte(self, db_session: Session):
        db_session.add(Team(id="nba-cha", sport="nba", name="Charlotte Hornets", abbreviation="CHA",
                            short_name="Hornets", location="Charlotte"))
        db_session.commit()
        assert EntityResolver(db_session).resolve_team("Chicago", "nba") is None

    def test_chicago_matches_bulls_not_hornets(self, db_session: Session, nba_teams):
        assert EntityResolver(db_session).resolve_team("Chicago", "nba").id == "nba-chi"

    # Tiers
    # ─────────────────────────────────────────────────────────────

    def test_provider_alias_tier(self, db_session: Session, nba_teams):
        match = EntityResolver(db_session).match_team(None, "nba", provider="espn", external_key="13")
        assert match.entity.id == "nba-lal"
        assert match.method == PROVIDER_ID
        assert match.confidence == 1.0

    def test_canonical_id_is_provider_tier(self, db_session: Session, nba_teams):
        match = EntityResolver(db_session).match_team("nba-bos", "nba")
        assert match.method == PROVIDER_ID

    def test_abbreviation_exact(self, db_session: Session, nba_teams):
        match = EntityResolver(db_session).match_team("lal", "nba")
        assert match.entity.id == "nba-lal"
        assert match.method == EXACT

    def test_containment(self, db_session: Session, nba_teams):
        match = EntityResolver(db_session).match_team("LA Clippers", "nba")
        assert match.entity.id == "nba-lac"
        assert match.method == CONTAINMENT

    def test_token_overlap(self, db_session: Session, nba_teams):
        match = EntityResolver(db_session).match_team("Boston Celts", "nba")
        assert match.entity.id == "nba-bos"
        assert match.method == TOKEN_OVERLAP
        assert match.confidence == 0.75

    def test_short_key_does_not_use_containment(self, db_session: Session, nba_teams):
        assert EntityResolver(db_session).resolve_team("LA", "nba") is None

    def test_ambiguous_tier_returns_none(self, db_session: Session, nba_teams):
        # "angeles" is shared by the Lakers and the Clippers
        assert EntityResolver(db_session).resolve_team("Angeles", "nba") is None

    def test_other_sport_never_matches(self, db_session: Session, nba_teams, nfl_teams):
        assert EntityResolver(db_session).resolve_team("Celtics", "nfl") is None

    def test_invalidate_picks_up_new_teams(self, db_session: Session, nba_teams):
        resolver = EntityResolver(db_session)
        assert resolver.resolve_team("Knicks", "nba") is None
        db_session.add(Team(id="nba-ny", sport="nba", name="New York Knicks", abbreviation="NY",
                            short_name="Knicks", location="New York"))
        db_session.commit()
        resolver.invalidate("nba")
        assert resolver.resolve_team("Knicks", "nba").id == "nba-ny"


class TestResolveGame:
    """Game resolution."""

    # Id tiers
    # ─────────────────────────────────────────────────────────────

    def test_external_id(self, db_session: Session, nba_teams):
        create_game(db_session, odds_external_id="evt-1")
        candidate = GameCandidate(external_ids={"odds": "evt-1"})
        match = EntityResolver(db_session).match_game(candidate, "nba", None)
        assert match.entity.id == "nba-lal-bos-20251105"
        assert match.method == PROVIDER_ID

    def test_any_provider_id(self, db_session: Session, nba_teams):
        create_game(db_session, score_external_id="401")
        candidate = GameCandidate(external_ids={ANY_PROVIDER: "401"})
        assert EntityResolver(db_session).resolve_game(candidate, "nba", None) is not None

    def test_canonical_id(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(canonical_id="nba-lal-bos-20251105")
        assert EntityResolver(db_session).resolve_game(candidate, "nba", None).id == "nba-lal-bos-20251105"

    # Name tiers
    # ─────────────────────────────────────────────────────────────

    def test_names_within_window(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(home_team="Boston Celtics", away_team="Los Angeles Lakers")
        match = EntityResolver(db_session).match_game(candidate, "nba", TIP_OFF + timedelta(hours=2))
        assert match.entity.id == "nba-lal-bos-20251105"
        assert match.method == EXACT

    def test_game_tier_is_weaker_side(self, db_session: Session, nba_teams):
        create_game(db_session, id="nba-lal-lac-20251105", home_team_id="nba-lac", schedule_external_id="402")
        candidate = GameCandidate(home_team="LA Clippers", away_team="Los Angeles Lakers")
        match = EntityResolver(db_session).match_game(candidate, "nba", TIP_OFF)
        assert match.method == CONTAINMENT

    def test_swapped_home_and_away_does_not_match(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(home_team="Los Angeles Lakers", away_team="Boston Celtics")
        assert EntityResolver(db_session).resolve_game(candidate, "nba", TIP_OFF) is None

    def test_outside_window_not_matched(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(home_team="Boston Celtics", away_team="Los Angeles Lakers")
        resolver = EntityResolver(db_session, window_days=3)
        assert resolver.resolve_game(candidate, "nba", TIP_OFF + timedelta(days=4)) is None

    def test_closest_game_wins(self, db_session: Session, nba_teams):
        create_game(db_session)
        create_game(
            db_session,
            id="nba-lal-bos-20251107",
            start_time=TIP_OFF + timedelta(days=2),
            local_date=date(2025, 11, 7),
            schedule_external_id="403",
        )
        candidate = GameCandidate(home_team="Celtics", away_team="Lakers")
        game = EntityResolver(db_session).resolve_game(candidate, "nba", TIP_OFF + timedelta(days=2, hours=-1))
        assert game.id == "nba-lal-bos-20251107"

    def test_exact_tie_is_ambiguous(self, db_session: Session, nba_teams):
        create_game(db_session)
        create_game(
            db_session,
            id="nba-lal-bos-20251107",
            start_time=TIP_OFF + timedelta(days=2),
            local_date=date(2025, 11, 7),
            schedule_external_id="403",
        )
        candidate = GameCandidate(home_team="Celtics", away_team="Lakers")
        assert EntityResolver(db_session).resolve_game(candidate, "nba", TIP_OFF + timedelta(days=1)) is None

    def test_resolved_team_ids(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(home_team_id="nba-bos", away_team_id="nba-lal")
        assert EntityResolver(db_session).resolve_game(candidate, "nba", TIP_OFF) is not None

    def test_no_instant_means_no_name_match(self, db_session: Session, nba_teams):
        create_game(db_session)
        candidate = GameCandidate(home_team="Boston Celtics", away_team="Los Angeles Lakers")
        assert EntityResolver(db_session).resolve_game(candidate, "nba", None) is None
