"""American odds <-> probability conversion and vig removal."""
from typing import Optional, Tuple


def american_to_implied(american_odds: Optional[float]) -> float:
    """
    Implied probability of American odds (0 for missing odds).

        >>> round(american_to_implied(-110), 4)
        0.5238
        >>> american_to_implied(150)
        0.4
    """
    if not american_odds:
        return 0.0
    if american_odds > 0:
        return 100 / (american_odds + 100)
    return abs(american_odds) / (abs(american_odds) + 100)


def implied_to_american(probability: float) -> int:
    """American odds for a probability (0 outside (0, 1))."""
    if probability <= 0 or probability >= 1:
        return 0
    if probability >= 0.5:
        return -round((probability / (1 - probability)) * 100)
    return round(((1 - probability) / probability) * 100)


def remove_vig(over_odds: float, under_odds: float) -> Tuple[float, float]:
    """
    Fair (no-vig) probabilities for a two-way market.

    Implied probabilities are scaled down proportionally so they sum to 1.
    A market without overround is returned as-is.
    """
    over = american_to_implied(over_odds)
    under = american_to_implied(under_odds)
    total = over + under
    if total <= 1 or total == 0:
        return over, under
    return over / total, under / total


def american_payout(american_odds: float) -> float:
    """Profit per 1 unit staked on a win."""
    if american_odds > 0:
        return american_odds / 100
    return 100 / abs(american_odds)
