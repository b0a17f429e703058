"""
Quality score for prop predictions.

Combines win probability, edge and confidence into a 0-100 score:

    score = (probability * 0.50 + edge * 0.35 + confidence * 0.15) * 100

Inputs are clamped to [0, 1]; unknown confidence labels count as "medium".
"""
from typing import Optional

CONFIDENCE_VALUES = {
    'very_low': 0.2,
    'low': 0.4,
    'medium': 0.6,
    'high': 0.8,
    'very_high': 1.0,
}

# (minimum score, tier), highest first
QUALITY_TIERS = [
    (70, 'elite'),
    (55, 'premium'),
    (40, 'solid'),
    (25, 'speculative'),
    (0, 'longshot'),
]


def _clamp(value: Optional[float]) -> float:
    return max(0.0, min(1.0, value or 0.0))


def calculate_quality_score(probability: Optional[float], edge: Optional[float], confidence: Optional[str]) -> float:
    conf_value = CONFIDENCE_VALUES.get(confidence or '', CONFIDENCE_VALUES['medium'])
    score = (_clamp(probability) * 0.50 + _clamp(edge) * 0.35 + conf_value * 0.15) * 100
    return round(score, 1)


def quality_tier(score: float) -> str:
    for minimum, tier in QUALITY_TIERS:
        if score >= minimum:
            return tier
    return QUALITY_TIERS[-1][1]


def confidence_label(probability: float) -> str:
    """Bucket a fair win probability into a confidence label."""
    if probability >= 0.65:
        return 'very_high'
    if probability >= 0.60:
        return 'high'
    if probability >= 0.55:
        return 'medium'
    if probability >= 0.52:
        return 'low'
    return 'very_low'
