"""
Idempotent, merge-only ingestion into the canonical store.

This is the only write path for teams, games and odds. Every record goes
through the TemporalNormalizer (start times) and the EntityResolver
(identity) before anything is written, so the store never needs after-the-
fact date or id repair.

Merge rules for an existing game:
- start_time is replaced only by a strictly higher-confidence time
- status only moves forward (scheduled/postponed -> in_progress -> final);
  scores follow accepted status updates
- external ids are set once per provider; they are never cleared, and a
  different non-null id for the same provider is an IntegrityViolation
- any other field is written only while it is still null

Batches are deduplicated by canonical id before writing (last record wins),
and each record is committed on its own so one failure never aborts the rest.
"""
import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from slatesync.core.exceptions import (
    IntegrityViolation,
    PermanentProviderError,
    ResolutionFailure,
)
from slatesync.core.logging import get_logger
from slatesync.models import Game, GameStatus, OddsSnapshot, Team
from slatesync.repositories import GameRepository, TeamRepository
from slatesync.services.sync.adapters.base import (
    RawGame,
    RawLiveStatus,
    RawOdds,
    RawProp,
    RawTeam,
    RawTeamRef,
    build_record,
)
from slatesync.services.sync.matchers.entity_resolver import (
    EXACT,
    PROVIDER_ID,
    EntityResolver,
    GameCandidate,
)
from slatesync.services.sync.temporal_normalizer import (
    NormalizedTime,
    SourceConvention,
    TemporalNormalizer,
)
from slatesync.services.sync.utils.name_normalizer import team_key

logger = get_logger(__name__)

# Lifecycle rank; an update may keep or raise the rank, never lower it
STATUS_RANK = {
    GameStatus.SCHEDULED.value: 0,
    GameStatus.POSTPONED.value: 0,
    GameStatus.IN_PROGRESS.value: 1,
    GameStatus.FINAL.value: 2,
}

MAX_DOUBLEHEADER_SUFFIX = 4


class UpsertOutcome(str, enum.Enum):
    ADDED = "added"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass
class IngestSummary:
    """Per-batch tally returned to callers."""
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: int = 0
    integrity_violations: List[dict] = field(default_factory=list)
    error_details: List[str] = field(default_factory=list)
    budget_exceeded: bool = False

    @property
    def processed(self) -> int:
        return self.added + self.updated + self.unchanged + self.errors

    def record(self, outcome: UpsertOutcome) -> None:
        if outcome == UpsertOutcome.ADDED:
            self.added += 1
        elif outcome == UpsertOutcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def fail(self, message: str) -> None:
        self.errors += 1
        self.error_details.append(message)

    def merge(self, other: "IngestSummary") -> None:
        self.added += other.added
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.errors += other.errors
        self.integrity_violations.extend(other.integrity_violations)
        self.error_details.extend(other.error_details)
        self.budget_exceeded = self.budget_exceeded or other.budget_exceeded

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "errors": self.errors,
            "integrity_violations": list(self.integrity_violations),
            "budget_exceeded": self.budget_exceeded,
        }


@dataclass
class _PreparedGame:
    record: RawGame
    start: NormalizedTime
    local_date: date
    home: Team
    away: Team
    existing: Optional[Game]


def team_canonical_id(sport: str, abbreviation: str) -> str:
    return f"{sport}-{team_key(abbreviation) or abbreviation.lower()}"


class Ingestor:
    """
    Writes provider records into the canonical store.

    Args:
        db: Database session
        normalizer: TemporalNormalizer (default instance if omitted)
        resolver: EntityResolver bound to the same session
    """

    def __init__(
        self,
        db: Session,
        normalizer: Optional[TemporalNormalizer] = None,
        resolver: Optional[EntityResolver] = None,
    ):
        self.db = db
        self.normalizer = normalizer or TemporalNormalizer()
        self.resolver = resolver or EntityResolver(db)
        self.teams = TeamRepository(db)
        self.games = GameRepository(db)

    # ========================================================================
    # Teams
    # ========================================================================

    def upsert_team(self, record: RawTeam) -> UpsertOutcome:
        """Create or merge one team; registers the provider alias."""
        team = self._find_team(record)
        if team is None:
            outcome = self._create_team(record)
        else:
            outcome = self._merge_team(team, record)
        return outcome

    def _find_team(self, record: RawTeam) -> Optional[Team]:
        match = self.resolver.match_team(
            record.name, record.sport, provider=record.provider, external_key=record.external_id
        )
        if match is not None and match.method in (PROVIDER_ID, EXACT):
            return match.entity
        return self.teams.find_by_abbreviation(record.sport, record.abbreviation)

    def _create_team(self, record: RawTeam) -> UpsertOutcome:
        canonical_id = team_canonical_id(record.sport, record.abbreviation)
        team = Team(
            id=canonical_id,
            sport=record.sport,
            name=record.name,
            abbreviation=record.abbreviation,
            short_name=record.short_name,
            location=record.location,
        )
        self.db.add(team)
        if record.external_id:
            self.teams.add_alias(team, record.provider, record.external_id)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.teams.find_by_id(canonical_id) or self.teams.find_by_abbreviation(
                record.sport, record.abbreviation
            )
            if existing is None:
                raise
            return self._merge_team(existing, record)
        self.resolver.invalidate(record.sport)
        logger.info(f"Created team {canonical_id} ({record.name})")
        return UpsertOutcome.ADDED

    def _merge_team(self, team: Team, record: RawTeam) -> UpsertOutcome:
        changed = False
        for attr in ("short_name", "location"):
            incoming = getattr(record, attr)
            if incoming and getattr(team, attr) is None:
                setattr(team, attr, incoming)
                changed = True

        if record.external_id:
            alias = self.teams.find_alias(team.sport, record.provider, record.external_id)
            if alias is not None and alias.team_id != team.id:
                raise IntegrityViolation(
                    f"{record.provider} team id {record.external_id} already maps to {alias.team_id}, "
                    f"not {team.id}",
                    entity="team",
                    canonical_id=team.id,
                )
            if alias is None:
                others = self.teams.aliases_for(team.id, record.provider)
                if others:
                    raise IntegrityViolation(
                        f"Team {team.id} already has {record.provider} id {others[0].external_key}, "
                        f"incoming {record.external_id}",
                        entity="team",
                        canonical_id=team.id,
                    )
                self.teams.add_alias(team, record.provider, record.external_id)
                changed = True

        if changed:
            self.db.commit()
            self.resolver.invalidate(team.sport)
            return UpsertOutcome.UPDATED
        return UpsertOutcome.UNCHANGED

    def upsert_teams(self, records: Iterable[RawTeam]) -> IngestSummary:
        summary = IngestSummary()
        batch: Dict[str, RawTeam] = {}
        for record in records:
            batch[team_canonical_id(record.sport, record.abbreviation)] = record
        for canonical_id, record in batch.items():
            self._isolated(summary, f"team {canonical_id}", self.upsert_team, record)
        return summary

    # ========================================================================
    # Games
    # ========================================================================

    def upsert_game(self, record: RawGame) -> UpsertOutcome:
        """Create or merge one game."""
        return self._write_game(self._prepare_game(record))

    def upsert_games(self, records: Iterable[RawGame]) -> IngestSummary:
        """
        Normalize and resolve every record, collapse records for the same
        game (last one wins), then write each survivor in isolation.

        Records that match a stored game collapse on its canonical id; new
        games collapse on their provider id. New games get their canonical
        ids in start-time order as they are written, so two same-day games
        between the same teams become ``...-YYYYMMDD`` and ``...-g2``
        whatever order the provider listed them in.
        """
        summary = IngestSummary()
        known: Dict[str, _PreparedGame] = {}
        new: Dict[Tuple[str, str], _PreparedGame] = {}
        for record in records:
            prepared = self._isolated(
                summary, f"{record.provider} game {record.external_id}", self._prepare_game, record
            )
            if prepared is None:
                continue
            if prepared.existing is not None:
                known[prepared.existing.id] = prepared
            else:
                new[(record.provider, record.external_id)] = prepared

        ordered = sorted(new.values(), key=lambda p: (p.start.instant, p.record.external_id))
        for prepared in list(known.values()) + ordered:
            label = f"game {prepared.existing.id if prepared.existing else prepared.record.external_id}"
            outcome = self._isolated(summary, label, self._write_game, prepared, count=False)
            if outcome is not None:
                summary.record(outcome)
        return summary

    def _prepare_game(self, record: RawGame) -> _PreparedGame:
        sport = record.sport
        convention = self.normalizer.convention_for(record.provider, sport, record.convention)
        start = self.normalizer.normalize(
            record.start, convention, sport, record.time_hint, listed_date=record.listed_date
        )
        local_date = self.normalizer.local_date(start.instant, sport)

        home = self._resolve_side(record.home, sport, record.provider)
        away = self._resolve_side(record.away, sport, record.provider)
        if home.id == away.id:
            raise ResolutionFailure(f"{record.provider} game {record.external_id}: home and away resolve to {home.id}")

        external_ids = {"schedule": record.external_id}
        if record.score_external_id:
            external_ids["score"] = record.score_external_id
        candidate = GameCandidate(external_ids=external_ids, home_team_id=home.id, away_team_id=away.id)
        match = self.resolver.match_game(candidate, sport, start.instant)

        existing = None
        if match is not None:
            existing = match.entity
            if match.method == PROVIDER_ID:
                self._check_identity(existing, external_ids, home, away)
            elif existing.schedule_external_id and existing.schedule_external_id != record.external_id:
                # Same teams nearby under another schedule id: a different game
                existing = None

        return _PreparedGame(record, start, local_date, home, away, existing)

    def _resolve_side(self, ref: Optional[RawTeamRef], sport: str, provider: str) -> Team:
        if ref is None:
            raise ResolutionFailure(f"{provider} game record is missing a team")

        match = self.resolver.match_team(ref.name or ref.abbreviation, sport, provider, ref.external_id)
        if match is None and ref.abbreviation and ref.name:
            match = self.resolver.match_team(ref.abbreviation, sport)
            if match is not None and match.method != EXACT:
                match = None
        if match is not None:
            return match.entity

        if ref.name and ref.abbreviation:
            # First sighting of this team
            self.upsert_team(build_record(
                RawTeam,
                provider,
                sport=sport,
                external_id=ref.external_id,
                name=ref.name,
                abbreviation=ref.abbreviation,
                short_name=ref.short_name,
                location=ref.location,
            ))
            team = self.teams.find_by_abbreviation(sport, ref.abbreviation)
            if team is not None:
                return team

        raise ResolutionFailure(f"Unresolved {sport} team {ref.name or ref.abbreviation!r} from {provider}")

    def _check_identity(self, game: Game, external_ids: Dict[str, str], home: Team, away: Team) -> None:
        for category, external_id in external_ids.items():
            other = self.games.find_by_external_id(game.sport, category, external_id)
            if other is not None and other.id != game.id:
                raise IntegrityViolation(
                    f"{category} id {external_id} belongs to {other.id} but record resolves to {game.id}",
                    entity="game",
                    canonical_id=game.id,
                )
        if (game.home_team_id, game.away_team_id) != (home.id, away.id):
            raise IntegrityViolation(
                f"Game {game.id} is {game.away_team_id} @ {game.home_team_id}, "
                f"incoming record says {away.id} @ {home.id}",
                entity="game",
                canonical_id=game.id,
            )

    def _new_game_id(self, record: RawGame, home: Team, away: Team, local_date: date) -> str:
        base = f"{record.sport}-{team_key(away.abbreviation)}-{team_key(home.abbreviation)}-{local_date:%Y%m%d}"
        if record.game_number and record.game_number > 1:
            candidate = f"{base}-g{record.game_number}"
            if self.games.find_by_id(candidate) is not None:
                raise IntegrityViolation(
                    f"{candidate} already exists under another schedule id", entity="game", canonical_id=candidate
                )
            return candidate

        if self.games.find_by_id(base) is None:
            return base
        if record.game_number == 1:
            raise IntegrityViolation(
                f"{base} already exists under another schedule id", entity="game", canonical_id=base
            )
        for n in range(2, MAX_DOUBLEHEADER_SUFFIX + 1):
            candidate = f"{base}-g{n}"
            if self.games.find_by_id(candidate) is None:
                logger.warning(f"{base} taken by another schedule id, using {candidate}")
                return candidate
        raise IntegrityViolation(f"No free canonical id for {base}", entity="game", canonical_id=base)

    def _write_game(self, prepared: _PreparedGame) -> UpsertOutcome:
        if prepared.existing is not None:
            return self._merge_game(prepared.existing, prepared)

        record = prepared.record
        canonical_id = self._new_game_id(record, prepared.home, prepared.away, prepared.local_date)
        game = Game(
            id=canonical_id,
            sport=record.sport,
            start_time=prepared.start.instant,
            start_time_confidence=prepared.start.confidence,
            local_date=prepared.local_date,
            status=(record.status or GameStatus.SCHEDULED).value,
            home_team_id=prepared.home.id,
            away_team_id=prepared.away.id,
            home_score=record.home_score,
            away_score=record.away_score,
            game_number=record.game_number,
            schedule_external_id=record.external_id,
            score_external_id=record.score_external_id,
        )
        self.db.add(game)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost an insert race with an overlapping run: re-resolve and merge
            self.db.rollback()
            logger.info(f"Concurrent insert for {canonical_id}, merging instead")
            retry = self._prepare_game(record)
            if retry.existing is None:
                raise
            return self._merge_game(retry.existing, retry)
        logger.debug(f"Created game {game.id} at {prepared.start.instant.isoformat()}")
        return UpsertOutcome.ADDED

    def _merge_game(self, game: Game, prepared: _PreparedGame) -> UpsertOutcome:
        record = prepared.record
        changed = False

        if prepared.start.confidence > (game.start_time_confidence or 0.0):
            if game.start_time != prepared.start.instant:
                logger.info(
                    f"Start time for {game.id}: {game.start_time.isoformat()} -> "
                    f"{prepared.start.instant.isoformat()} (confidence {prepared.start.confidence})"
                )
                game.start_time = prepared.start.instant
                game.local_date = prepared.local_date
            game.start_time_confidence = prepared.start.confidence
            changed = True

        changed |= self._set_external_id(game, "schedule", record.external_id)
        changed |= self._set_external_id(game, "score", record.score_external_id)
        changed |= self._merge_status(game, record.status, record.home_score, record.away_score)

        if record.game_number and game.game_number is None:
            game.game_number = record.game_number
            changed = True

        if not changed:
            self.db.rollback()
            return UpsertOutcome.UNCHANGED
        self.db.commit()
        return UpsertOutcome.UPDATED

    def _set_external_id(self, game: Game, category: str, external_id: Optional[str]) -> bool:
        if not external_id:
            return False
        column = Game.EXTERNAL_ID_COLUMNS[category]
        current = getattr(game, column)
        if current is None:
            setattr(game, column, str(external_id))
            return True
        if current != str(external_id):
            raise IntegrityViolation(
                f"Game {game.id} already has {category} id {current}, incoming {external_id}",
                entity="game",
                canonical_id=game.id,
            )
        return False

    @staticmethod
    def _merge_status(
        game: Game,
        status: Optional[GameStatus],
        home_score: Optional[int],
        away_score: Optional[int],
    ) -> bool:
        if status is None:
            return False
        incoming = status.value
        if STATUS_RANK[incoming] < STATUS_RANK[game.status]:
            return False
        if game.status == GameStatus.FINAL.value and incoming != GameStatus.FINAL.value:
            return False

        changed = False
        if incoming != game.status:
            game.status = incoming
            changed = True
        if home_score is not None and home_score != game.home_score:
            game.home_score = home_score
            changed = True
        if away_score is not None and away_score != game.away_score:
            game.away_score = away_score
            changed = True
        return changed

    # ========================================================================
    # Live status
    # ========================================================================

    def apply_live_status(self, game: Game, live: RawLiveStatus) -> UpsertOutcome:
        """Merge a ScoreProvider update (status, scores, score id) into a game."""
        changed = self._set_external_id(game, "score", live.external_id)
        changed |= self._merge_status(game, live.status, live.home_score, live.away_score)
        if not changed:
            self.db.rollback()
            return UpsertOutcome.UNCHANGED
        self.db.commit()
        logger.debug(f"Live update for {game.id}: {game.status} {game.away_score}-{game.home_score}")
        return UpsertOutcome.UPDATED

    def apply_live_batch(self, updates: Iterable[Tuple[Game, RawLiveStatus]]) -> IngestSummary:
        summary = IngestSummary()
        for game, live in updates:
            self._isolated(summary, f"live status {game.id}", self.apply_live_status, game, live)
        return summary

    # ========================================================================
    # Odds
    # ========================================================================

    def link_event(self, record: Union[RawOdds, RawProp]) -> Game:
        """
        Resolve the canonical game for an odds event and attach the event id
        to it (set-once). Also upgrades the start time when the odds feed's
        instant is more trustworthy than what is stored.

        Raises:
            ResolutionFailure: no canonical game matches the event
            IntegrityViolation: the game already carries a different event id
        """
        sport = record.sport
        start = self.normalizer.normalize(record.commence_time, SourceConvention.INSTANT, sport)
        candidate = GameCandidate(
            external_ids={"odds": record.event_id},
            home_team=record.home_team,
            away_team=record.away_team,
        )
        match = self.resolver.match_game(candidate, sport, start.instant)
        if match is None:
            raise ResolutionFailure(
                f"No {sport} game for odds event {record.event_id} "
                f"({record.away_team} @ {record.home_team}, {start.instant.isoformat()})"
            )

        game = match.entity
        changed = self._set_external_id(game, "odds", record.event_id)
        if start.confidence > (game.start_time_confidence or 0.0):
            game.start_time = start.instant
            game.start_time_confidence = start.confidence
            game.local_date = self.normalizer.local_date(start.instant, sport)
            changed = True
        if changed:
            self.db.commit()
            logger.debug(f"Linked odds event {record.event_id} -> {game.id} ({match.method})")
        return game

    def upsert_odds(self, record: RawOdds) -> UpsertOutcome:
        """Append one odds snapshot; re-ingesting the same snapshot is a no-op."""
        game = self.link_event(record)

        exists = self.db.query(OddsSnapshot.id).filter(
            OddsSnapshot.game_id == game.id,
            OddsSnapshot.book == record.book,
            OddsSnapshot.market == record.market,
            OddsSnapshot.captured_at == record.captured_at,
        ).first()
        if exists is not None:
            return UpsertOutcome.UNCHANGED

        self.db.add(OddsSnapshot(
            game_id=game.id,
            book=record.book,
            market=record.market,
            captured_at=record.captured_at,
            values=record.outcomes,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return UpsertOutcome.UNCHANGED
        return UpsertOutcome.ADDED

    def upsert_odds_batch(self, records: Iterable[RawOdds]) -> IngestSummary:
        summary = IngestSummary()
        batch: Dict[tuple, RawOdds] = {}
        for record in records:
            batch[(record.event_id, record.book, record.market, record.captured_at)] = record
        for key, record in batch.items():
            self._isolated(summary, f"odds {key[0]}/{key[1]}/{key[2]}", self.upsert_odds, record)
        return summary

    # ========================================================================
    # Isolation
    # ========================================================================

    def _isolated(self, summary: IngestSummary, label: str, func, *args, count: bool = True):
        """
        Run one item's work; on failure roll back, tally, and keep going.

        Returns the function's result, or None if it failed. With ``count``
        set, successful UpsertOutcome results are tallied too.
        """
        try:
            result = func(*args)
        except IntegrityViolation as e:
            self.db.rollback()
            logger.error(f"Integrity violation on {label}: {e}")
            summary.integrity_violations.append(e.to_dict())
            summary.fail(f"{label}: {e}")
            return None
        except (ResolutionFailure, PermanentProviderError) as e:
            self.db.rollback()
            logger.warning(f"Skipping {label}: {e}")
            summary.fail(f"{label}: {e}")
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error on {label}: {e}")
            summary.fail(f"{label}: {e}")
            return None
        except Exception as e:
            self.db.rollback()
            logger.error(f"Unexpected error on {label}: {e}", exc_info=True)
            summary.fail(f"{label}: {type(e).__name__}: {e}")
            return None

        if count and isinstance(result, UpsertOutcome):
            summary.record(result)
        return result
