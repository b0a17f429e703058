"""
Turn raw player-prop lines into cached predictions.

For every (player, prop type, line) the no-vig over probability is computed
per book and averaged into a market consensus. Each book's offer is then
priced against that consensus: the side with the larger edge (consensus
probability minus the book's implied probability) becomes the pick.

The projection is the line shifted by the normal quantile of the consensus
over probability, with a Poisson-like spread of sqrt(line).
"""
import math
from dataclasses import dataclass
from datetime import datetime
from statistics import NormalDist, mean
from typing import Dict, List, Optional, Tuple

from slatesync.core.logging import get_logger
from slatesync.models import Game
from slatesync.services.props.pricing import american_to_implied, remove_vig
from slatesync.services.props.quality_score import calculate_quality_score, confidence_label
from slatesync.services.sync.adapters.base import RawProp
from slatesync.services.sync.utils.name_normalizer import normalize
from slatesync.utils.timezone import utcnow

logger = get_logger(__name__)

_NORMAL = NormalDist()


@dataclass
class DerivedProp:
    sport: str
    game_id: str
    game_time: datetime
    player_name: str
    prop_type: str
    pick: str
    threshold: float
    odds: Optional[int]
    book: str
    projection: Optional[float]
    probability: Optional[float]
    edge: Optional[float]
    confidence: Optional[str]
    quality_score: Optional[float]
    fetched_at: datetime
    team: Optional[str] = None
    home_team: Optional[str] = None
    away_team: Optional[str] = None


def project(line: float, over_probability: float) -> float:
    p = min(0.99, max(0.01, over_probability))
    sigma = max(1.0, math.sqrt(max(line, 0.0)))
    return round(line + _NORMAL.inv_cdf(p) * sigma, 2)


def derive_props(raw_props: List[RawProp], game: Game, fetched_at: Optional[datetime] = None) -> List[DerivedProp]:
    """
    Price every book's offer for one game.

    Offers whose (player, prop type, line) has no two-sided market at any
    book cannot be de-vigged and are skipped.
    """
    fetched_at = fetched_at or utcnow()

    offers: Dict[Tuple[str, str, float, str], Dict[str, RawProp]] = {}
    display_names: Dict[str, str] = {}
    for raw in raw_props:
        player = normalize(raw.player_name)
        if not player:
            continue
        display_names.setdefault(player, raw.player_name)
        offers.setdefault((player, raw.prop_type, raw.line, raw.book), {})[raw.side] = raw

    consensus: Dict[Tuple[str, str, float], List[float]] = {}
    for (player, prop_type, line, _book), sides in offers.items():
        if 'over' in sides and 'under' in sides:
            fair_over, _ = remove_vig(sides['over'].price, sides['under'].price)
            consensus.setdefault((player, prop_type, line), []).append(fair_over)

    derived: List[DerivedProp] = []
    skipped = 0
    for (player, prop_type, line, book), sides in offers.items():
        fair = consensus.get((player, prop_type, line))
        if not fair:
            skipped += 1
            continue
        p_over = mean(fair)

        best = None
        for side, raw in sides.items():
            probability = p_over if side == 'over' else 1 - p_over
            edge = probability - american_to_implied(raw.price)
            if best is None or edge > best[1]:
                best = (side, edge, probability, raw)
        side, edge, probability, raw = best

        confidence = confidence_label(probability)
        derived.append(DerivedProp(
            sport=game.sport,
            game_id=game.id,
            game_time=game.start_time,
            player_name=display_names[player],
            prop_type=prop_type,
            pick=side,
            threshold=line,
            odds=raw.price,
            book=book,
            projection=project(line, p_over),
            probability=round(probability, 4),
            edge=round(edge, 4),
            confidence=confidence,
            quality_score=calculate_quality_score(probability, edge, confidence),
            fetched_at=fetched_at,
            home_team=raw.home_team,
            away_team=raw.away_team,
        ))

    if skipped:
        logger.debug(f"Skipped {skipped} one-sided prop offers for {game.id}")
    return derived
