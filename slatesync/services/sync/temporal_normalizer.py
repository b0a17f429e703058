"""
Temporal normalization for provider timestamps.

Every start time written to the canonical store goes through
TemporalNormalizer.normalize(), which returns a UTC instant plus a
confidence score. The Ingestor compares confidences when two providers
disagree about the same game, so a true kickoff instant always wins over
a time reconstructed from a bare date.

Source conventions:
- INSTANT: real start instant. Explicit offsets are honoured; naive values
  are read as UTC.
- LOCAL_TIME: naive wall clock in the league's market zone.
- DISPLAY_DATE: a date with no trustworthy time of day. The league's
  typical start time (or a caller-supplied hint) is assumed.
- INSTANT_MIDNIGHT_DEFECT: an instant feed known to emit 00:00:00 UTC as a
  placeholder for "sometime on this date". 00:00Z is also a real start
  (7 PM Eastern in winter), so the value alone decides nothing: the day the
  provider listed the game under is the second signal. A midnight value on
  the listed day that reads as the previous local evening is truncated and
  rebuilt from the league's typical start hour (low confidence). One that
  reads as the listed local day is a genuine start and kept. Without a
  listed day the instant is kept at display-date confidence.
"""
import enum
import re
from datetime import datetime, date, time, timezone
from typing import NamedTuple, Optional, Set, Union

from slatesync.core.config import settings
from slatesync.core.exceptions import PermanentProviderError
from slatesync.core.logging import get_logger
from slatesync.utils.timezone import local_to_utc, local_market_date, typical_start_time

logger = get_logger(__name__)

CONFIDENCE_INSTANT = 1.0
CONFIDENCE_LOCAL_TIME = 0.95
CONFIDENCE_NAIVE_INSTANT = 0.9
CONFIDENCE_DISPLAY_DATE_WITH_TIME = 0.8
CONFIDENCE_DISPLAY_DATE = 0.5
CONFIDENCE_MIDNIGHT_REPAIRED = 0.4

_DATE_ONLY = re.compile(r'^\d{4}-\d{2}-\d{2}$')
_COMPACT_DATE = re.compile(r'^\d{8}$')
_TIME_HINT_FORMATS = ("%I:%M %p", "%I:%M%p", "%I %p", "%H:%M", "%H:%M:%S")

RawTimestamp = Union[str, datetime, date, int, float]


class SourceConvention(str, enum.Enum):
    INSTANT = "instant"
    LOCAL_TIME = "local_time"
    DISPLAY_DATE = "display_date"
    INSTANT_MIDNIGHT_DEFECT = "instant_midnight_defect"


class NormalizedTime(NamedTuple):
    instant: datetime
    confidence: float


def parse_timestamp(raw: RawTimestamp) -> Union[datetime, date]:
    """
    Parse a provider timestamp into a datetime (possibly naive) or a date.

    Accepts ISO 8601 strings (with or without offset, ``Z`` suffix allowed),
    ``YYYY-MM-DD`` and ``YYYYMMDD`` dates, epoch seconds or milliseconds,
    and datetime/date objects.

    Raises:
        PermanentProviderError: if the value cannot be parsed
    """
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return raw
    if isinstance(raw, bool):
        raise PermanentProviderError(f"Unparseable timestamp: {raw!r}")
    if isinstance(raw, (int, float)):
        seconds = raw / 1000 if raw > 1e11 else raw
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if not isinstance(raw, str) or not raw.strip():
        raise PermanentProviderError(f"Unparseable timestamp: {raw!r}")

    value = raw.strip()
    try:
        if _DATE_ONLY.match(value):
            return date.fromisoformat(value)
        if _COMPACT_DATE.match(value):
            return datetime.strptime(value, "%Y%m%d").date()
        if value.endswith('Z') or value.endswith('z'):
            value = value[:-1] + '+00:00'
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise PermanentProviderError(f"Unparseable timestamp: {raw!r}") from e


def parse_time_hint(hint: Union[str, time, None]) -> Optional[time]:
    """Parse a local time-of-day hint such as "7:30 PM" or "19:30"."""
    if hint is None or isinstance(hint, time):
        return hint
    text = hint.strip().upper()
    for fmt in _TIME_HINT_FORMATS:
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    logger.debug(f"Ignoring unparseable time hint {hint!r}")
    return None


def is_midnight_utc(instant: datetime) -> bool:
    return (instant.hour, instant.minute, instant.second, instant.microsecond) == (0, 0, 0, 0)


class TemporalNormalizer:
    """
    Converts raw provider timestamps into canonical UTC instants.

    Args:
        midnight_defect_sources: "provider:sport" pairs whose instants are
            known to be truncated to midnight UTC. Defaults to the
            MIDNIGHT_DEFECT_SOURCES setting.
    """

    def __init__(self, midnight_defect_sources: Optional[Set[str]] = None):
        if midnight_defect_sources is None:
            midnight_defect_sources = settings.midnight_defect_sources
        self.midnight_defect_sources = {s.lower() for s in midnight_defect_sources}

    def convention_for(self, provider: str, sport: str, declared: SourceConvention) -> SourceConvention:
        """Upgrade an INSTANT convention to INSTANT_MIDNIGHT_DEFECT for known-bad feeds."""
        if declared == SourceConvention.INSTANT and f"{provider}:{sport}".lower() in self.midnight_defect_sources:
            return SourceConvention.INSTANT_MIDNIGHT_DEFECT
        return declared

    def normalize(
        self,
        raw: RawTimestamp,
        convention: SourceConvention,
        sport: str,
        time_hint: Union[str, time, None] = None,
        listed_date: Optional[date] = None,
    ) -> NormalizedTime:
        """
        Normalize one timestamp.

        Args:
            raw: Provider timestamp
            convention: How the provider represents start times
            sport: Sport code, selects market zone and typical start hour
            time_hint: Local time of day for DISPLAY_DATE sources, if known
            listed_date: Market day the provider listed the game under
                (e.g. the scoreboard date it was fetched for)

        Returns:
            NormalizedTime(instant, confidence) with an aware UTC instant

        Raises:
            PermanentProviderError: if the timestamp cannot be parsed
        """
        parsed = parse_timestamp(raw)

        if convention == SourceConvention.DISPLAY_DATE or not isinstance(parsed, datetime):
            day = parsed.date() if isinstance(parsed, datetime) else parsed
            return self._from_display_date(day, sport, parse_time_hint(time_hint))

        if convention == SourceConvention.LOCAL_TIME:
            if parsed.tzinfo is not None:
                return NormalizedTime(parsed.astimezone(timezone.utc), CONFIDENCE_INSTANT)
            instant = local_to_utc(parsed.date(), parsed.time(), sport)
            return NormalizedTime(instant, CONFIDENCE_LOCAL_TIME)

        if parsed.tzinfo is None:
            instant = parsed.replace(tzinfo=timezone.utc)
            confidence = CONFIDENCE_NAIVE_INSTANT
        else:
            instant = parsed.astimezone(timezone.utc)
            confidence = CONFIDENCE_INSTANT

        if convention == SourceConvention.INSTANT_MIDNIGHT_DEFECT and is_midnight_utc(instant):
            return self._check_midnight(NormalizedTime(instant, confidence), sport, listed_date)

        return NormalizedTime(instant, confidence)

    def _check_midnight(self, value: NormalizedTime, sport: str, listed_date: Optional[date]) -> NormalizedTime:
        instant = value.instant
        if listed_date is None:
            logger.debug(f"Midnight {sport} start {instant.isoformat()} with no listed day, kept unverified")
            return NormalizedTime(instant, CONFIDENCE_DISPLAY_DATE)

        if local_market_date(instant, sport) == listed_date:
            # 00:00Z is a real evening start on the listed local day
            return value

        if instant.date() == listed_date:
            repaired = local_to_utc(listed_date, typical_start_time(sport), sport)
            logger.info(
                f"Repaired midnight-truncated {sport} start {instant.isoformat()} -> {repaired.isoformat()}"
            )
            return NormalizedTime(repaired, CONFIDENCE_MIDNIGHT_REPAIRED)

        logger.warning(
            f"Midnight {sport} start {instant.isoformat()} matches neither reading of listed day "
            f"{listed_date.isoformat()}, kept unverified"
        )
        return NormalizedTime(instant, CONFIDENCE_DISPLAY_DATE)

    def _from_display_date(self, day: date, sport: str, local_time: Optional[time]) -> NormalizedTime:
        if local_time is not None:
            return NormalizedTime(local_to_utc(day, local_time, sport), CONFIDENCE_DISPLAY_DATE_WITH_TIME)
        return NormalizedTime(local_to_utc(day, typical_start_time(sport), sport), CONFIDENCE_DISPLAY_DATE)

    @staticmethod
    def local_date(instant: datetime, sport: str) -> date:
        """Market calendar day a game belongs to (see slatesync.utils.timezone)."""
        return local_market_date(instant, sport)
