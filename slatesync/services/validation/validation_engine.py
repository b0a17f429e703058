"""
Prediction validation lifecycle.

Each PropValidation moves through:

    pending -> completed          game final, actual value found
    pending -> needs_review       game unresolvable, or no usable box score
    needs_review -> needs_review  another unsuccessful review pass
    needs_review -> completed     a later pass succeeds
    needs_review -> invalid       the player is absent from a complete box score

completed and invalid are terminal. Every needs_review pass increments
review_attempts; once VALIDATION_MAX_REVIEW_ATTEMPTS is reached the row is
left alone until someone calls mark_invalid() or update_result().

Game resolution tries, in order: the already-resolved game, the stored game
reference as a canonical id, the reference as any provider's external id,
then the EntityResolver with the stored team names and game time.
"""
from datetime import datetime, timedelta
from statistics import mean
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from slatesync.core.config import settings
from slatesync.core.exceptions import InvalidStatusTransition, ProviderError
from slatesync.core.logging import get_logger
from slatesync.models import (
    Game,
    GameStatus,
    PlayerProp,
    PropValidation,
    ValidationResult,
    ValidationStatus,
)
from slatesync.repositories import GameRepository, ValidationRepository
from slatesync.services.props.derivation import DerivedProp
from slatesync.services.props.pricing import american_payout
from slatesync.services.props.prop_cache import prop_fingerprint
from slatesync.services.sync.adapters.base import RawLiveStatus, ScoreProvider
from slatesync.services.sync.ingestor import Ingestor
from slatesync.services.sync.matchers.entity_resolver import (
    ANY_PROVIDER,
    EntityResolver,
    GameCandidate,
)
from slatesync.services.sync.utils.name_normalizer import are_names_equal, normalize
from slatesync.utils.timezone import ensure_utc, utcnow

logger = get_logger(__name__)

# Status strings providers use for a settled game
TERMINAL_STATUSES = {"final", "completed", "closed", "f", "post"}

PENDING = ValidationStatus.PENDING.value
NEEDS_REVIEW = ValidationStatus.NEEDS_REVIEW.value
COMPLETED = ValidationStatus.COMPLETED.value
INVALID = ValidationStatus.INVALID.value

ALLOWED_TRANSITIONS = {
    PENDING: {COMPLETED, NEEDS_REVIEW},
    NEEDS_REVIEW: {COMPLETED, NEEDS_REVIEW, INVALID},
    COMPLETED: set(),
    INVALID: set(),
}

# Combined prop types and the box-score stats they add up
PROP_STATS = {
    'nba': {
        'points_rebounds_assists': ('points', 'rebounds', 'assists'),
        'points_rebounds': ('points', 'rebounds'),
        'points_assists': ('points', 'assists'),
        'rebounds_assists': ('rebounds', 'assists'),
        'steals_blocks': ('steals', 'blocks'),
    },
    'nhl': {
        'points': ('goals', 'assists'),
    },
    'nfl': {
        'rush_rec_yards': ('rushing_yards', 'receiving_yards'),
    },
    'mlb': {},
}

STANDARD_JUICE = -110


def stat_components(sport: str, prop_type: str) -> tuple:
    return PROP_STATS.get(sport, {}).get(prop_type, (prop_type,))


class ValidationEngine:
    """
    Resolves predictions against final games and settles them.

    Args:
        db: Database session
        score_provider: source of final status and box scores
        resolver: EntityResolver for team-name game lookups
        ingestor: used to record final statuses reported by the score provider
    """

    def __init__(
        self,
        db: Session,
        score_provider: Optional[ScoreProvider] = None,
        resolver: Optional[EntityResolver] = None,
        ingestor: Optional[Ingestor] = None,
        max_review_attempts: Optional[int] = None,
        final_fallback_hours: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        self.db = db
        self.score_provider = score_provider
        self.resolver = resolver or EntityResolver(db)
        self.ingestor = ingestor or Ingestor(db, resolver=self.resolver)
        self.validations = ValidationRepository(db)
        self.games = GameRepository(db)
        self.max_review_attempts = (
            max_review_attempts if max_review_attempts is not None else settings.VALIDATION_MAX_REVIEW_ATTEMPTS
        )
        self.final_fallback = timedelta(
            hours=final_fallback_hours if final_fallback_hours is not None
            else settings.VALIDATION_FINAL_FALLBACK_HOURS
        )
        self.batch_size = batch_size if batch_size is not None else settings.VALIDATION_BATCH_SIZE

    # ========================================================================
    # Recording
    # ========================================================================

    def record_prediction(
        self,
        prop: Union[PlayerProp, DerivedProp],
        source: str = "model",
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
    ) -> PropValidation:
        """
        Start tracking a prediction. Recording the same prediction slot twice
        returns the existing row.

        Team names are stored as hints for re-resolving the game later, so
        they are kept even when the game reference does not resolve today.
        Explicit arguments win over the names carried on the prop, which win
        over the names of the referenced game.
        """
        prop_id = getattr(prop, 'fingerprint', None) or prop_fingerprint(
            prop.game_id, prop.player_name, prop.prop_type, prop.pick, prop.threshold, prop.book
        )
        existing = self.validations.find_by_prop_id(prop_id)
        if existing is not None:
            return existing

        game = self.games.find_by_id(prop.game_id) if prop.game_id else None
        home_team = home_team or getattr(prop, 'home_team', None) or (game.home_team.name if game else None)
        away_team = away_team or getattr(prop, 'away_team', None) or (game.away_team.name if game else None)
        validation = self.validations.create(
            prop_id=prop_id,
            game_id_ref=prop.game_id,
            sport=prop.sport,
            player_name=prop.player_name,
            prop_type=prop.prop_type,
            prediction=prop.pick,
            threshold=prop.threshold,
            projected_value=prop.projection,
            edge=prop.edge,
            probability=prop.probability,
            quality_score=prop.quality_score,
            odds=prop.odds,
            home_team=home_team,
            away_team=away_team,
            game_time=prop.game_time,
            source=source,
        )
        self.db.commit()
        logger.debug(f"Tracking prediction {prop_id} ({prop.player_name} {prop.prop_type} {prop.pick} {prop.threshold})")
        return validation

    # ========================================================================
    # Sweep
    # ========================================================================

    def run_validation(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        One validation pass over every actionable prediction.

        Returns:
            {"updated": rows whose state changed, "errors": rows that failed
            this pass, "remaining": rows still pending or in review}
        """
        now = now or utcnow()
        updated = 0
        errors = 0

        batch = self.validations.actionable(self.max_review_attempts, limit=self.batch_size)
        for validation in batch:
            validation_id = validation.id
            try:
                if self._validate(validation, now):
                    updated += 1
            except ProviderError as e:
                self.db.rollback()
                errors += 1
                logger.warning(f"Score lookup failed for validation {validation_id}: {e}")
            except SQLAlchemyError as e:
                self.db.rollback()
                errors += 1
                logger.error(f"Database error validating {validation_id}: {e}")
            except Exception as e:
                self.db.rollback()
                errors += 1
                logger.error(f"Unexpected error validating {validation_id}: {e}", exc_info=True)

        remaining = self.validations.count_open()
        logger.info(f"Validation pass: {len(batch)} checked, {updated} updated, {errors} errors, {remaining} open")
        return {"updated": updated, "errors": errors, "remaining": remaining}

    def _validate(self, validation: PropValidation, now: datetime) -> bool:
        game = self.resolve_game(validation)
        if game is None:
            self._review(validation, "game reference could not be resolved")
            return True

        changed = False
        if validation.resolved_game_id != game.id:
            validation.resolved_game_id = game.id
            self.db.commit()
            changed = True

        if not self.is_final(game, now) or self.score_provider is None:
            return changed

        score_id = game.score_external_id
        if not score_id:
            self._review(validation, f"no score id for {game.id}")
            return True

        live = self.score_provider.fetch(game.sport, score_id)
        self.ingestor.apply_live_status(game, live)

        stats = self.find_player_stats(live, validation.player_name)
        if stats is None:
            if live.box_score_complete:
                reason = f"{validation.player_name} not in box score for {game.id}"
                if validation.status == NEEDS_REVIEW:
                    self._invalidate(validation, reason)
                else:
                    self._review(validation, reason)
            else:
                self._review(validation, f"box score unavailable for {game.id}")
            return True

        actual = self.actual_value(validation.sport, validation.prop_type, stats)
        if actual is None:
            self._review(validation, f"no {validation.prop_type} stat for {validation.player_name}")
            return True

        self._complete(validation, actual, now)
        return True

    # ========================================================================
    # Resolution & finality
    # ========================================================================

    def resolve_game(self, validation: PropValidation) -> Optional[Game]:
        if validation.resolved_game_id:
            game = self.games.find_by_id(validation.resolved_game_id)
            if game is not None:
                return game

        candidate = GameCandidate(
            canonical_id=validation.game_id_ref,
            external_ids={ANY_PROVIDER: validation.game_id_ref} if validation.game_id_ref else {},
            home_team=validation.home_team,
            away_team=validation.away_team,
        )
        match = self.resolver.match_game(candidate, validation.sport, validation.game_time)
        if match is None:
            return None
        logger.debug(f"Validation {validation.id} -> {match.entity.id} ({match.method})")
        return match.entity

    def is_final(self, game: Game, now: Optional[datetime] = None) -> bool:
        """
        Terminal status, or (for feeds that never report one) a start more
        than VALIDATION_FINAL_FALLBACK_HOURS ago on a game not postponed.
        """
        status = (game.status or "").lower()
        if status in TERMINAL_STATUSES:
            return True
        if status == GameStatus.POSTPONED.value or game.start_time is None:
            return False
        now = now or utcnow()
        return ensure_utc(game.start_time) < now - self.final_fallback

    @staticmethod
    def find_player_stats(live: RawLiveStatus, player_name: str) -> Optional[Dict[str, float]]:
        target = normalize(player_name)
        for name, stats in live.player_stats.items():
            if normalize(name) == target:
                return stats
        for name, stats in live.player_stats.items():
            if are_names_equal(name, player_name, fuzzy=True):
                return stats
        return None

    @staticmethod
    def actual_value(sport: str, prop_type: str, stats: Dict[str, float]) -> Optional[float]:
        components = stat_components(sport, prop_type)
        if any(component not in stats for component in components):
            return None
        return float(sum(stats[component] for component in components))

    @staticmethod
    def compute_result(prediction: str, threshold: float, actual: float) -> ValidationResult:
        if actual == threshold:
            return ValidationResult.PUSH
        if prediction == 'over':
            hit = actual > threshold
        elif prediction == 'under':
            hit = actual < threshold
        else:
            raise ValueError(f"Unknown prediction direction: {prediction!r}")
        return ValidationResult.CORRECT if hit else ValidationResult.INCORRECT

    # ========================================================================
    # Transitions
    # ========================================================================

    @staticmethod
    def _transition(validation: PropValidation, new_status: str) -> None:
        if new_status not in ALLOWED_TRANSITIONS[validation.status]:
            raise InvalidStatusTransition(
                f"Validation {validation.id}: {validation.status} -> {new_status} is not allowed"
            )
        validation.status = new_status

    def _review(self, validation: PropValidation, reason: str) -> None:
        self._transition(validation, NEEDS_REVIEW)
        validation.result = ValidationResult.NEEDS_REVIEW.value
        validation.review_attempts = (validation.review_attempts or 0) + 1
        validation.notes = reason
        self.db.commit()
        if validation.review_attempts >= self.max_review_attempts:
            logger.warning(
                f"Validation {validation.id} needs manual review after "
                f"{validation.review_attempts} attempts: {reason}"
            )
        else:
            logger.info(f"Validation {validation.id} needs review: {reason}")

    def _invalidate(self, validation: PropValidation, reason: str) -> None:
        self._transition(validation, INVALID)
        validation.result = ValidationResult.INVALID.value
        validation.notes = reason
        validation.completed_at = utcnow()
        self.db.commit()
        logger.info(f"Validation {validation.id} invalid: {reason}")

    def _complete(self, validation: PropValidation, actual: float, now: datetime) -> None:
        self._transition(validation, COMPLETED)
        validation.actual_value = actual
        validation.result = self.compute_result(validation.prediction, validation.threshold, actual).value
        validation.completed_at = now
        self.db.commit()

    def _get(self, validation_id: str) -> PropValidation:
        validation = self.validations.find_by_id(validation_id)
        if validation is None:
            raise LookupError(f"Unknown validation {validation_id}")
        return validation

    def mark_invalid(self, validation_id: str, reason: str) -> PropValidation:
        """Manually close a prediction that is under review."""
        validation = self._get(validation_id)
        self._invalidate(validation, reason)
        return validation

    def update_result(self, validation_id: str, actual_value: float, now: Optional[datetime] = None) -> PropValidation:
        """Manually settle a prediction with a known actual value."""
        validation = self._get(validation_id)
        self._complete(validation, float(actual_value), now or utcnow())
        return validation

    # ========================================================================
    # Statistics
    # ========================================================================

    def get_stats(self, sport: Optional[str] = None, prop_type: Optional[str] = None) -> Dict:
        """
        Settled-prediction performance.

        Accuracy excludes pushes. ROI assumes a flat stake at -110 on every
        decided pick.
        """
        rows = self.validations.completed(sport=sport, prop_type=prop_type)
        stats = summarize(rows)
        stats["sport"] = sport
        stats["prop_type"] = prop_type
        stats["by_prop_type"] = {
            key: summarize(group) for key, group in _group(rows, "prop_type").items()
        }
        if sport is None:
            stats["by_sport"] = {key: summarize(group) for key, group in _group(rows, "sport").items()}
        stats["open"] = self.validations.count_open()
        return stats


def _group(rows: Iterable[PropValidation], attr: str) -> Dict[str, List[PropValidation]]:
    groups: Dict[str, List[PropValidation]] = {}
    for row in rows:
        groups.setdefault(getattr(row, attr), []).append(row)
    return groups


def summarize(rows: List[PropValidation]) -> Dict:
    correct = sum(1 for r in rows if r.result == ValidationResult.CORRECT.value)
    incorrect = sum(1 for r in rows if r.result == ValidationResult.INCORRECT.value)
    pushes = sum(1 for r in rows if r.result == ValidationResult.PUSH.value)
    decided = correct + incorrect
    edges = [r.edge for r in rows if r.edge is not None]

    profit = correct * american_payout(STANDARD_JUICE) - incorrect
    return {
        "total": len(rows),
        "correct": correct,
        "incorrect": incorrect,
        "pushes": pushes,
        "accuracy": round(correct / decided, 4) if decided else 0.0,
        "average_edge": round(mean(edges), 4) if edges else 0.0,
        "roi": round(profit / decided, 4) if decided else 0.0,
    }
