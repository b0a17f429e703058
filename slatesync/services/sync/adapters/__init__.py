"""Provider adapters.

Each upstream implements the interface for the categories it serves:
- ScheduleProvider, TeamProvider, ScoreProvider: ESPN
- OddsProvider: The Odds API (budgeted)
"""
from slatesync.services.sync.adapters.base import (
    OddsProvider,
    RawGame,
    RawLiveStatus,
    RawOdds,
    RawProp,
    RawTeam,
    RawTeamRef,
    ScheduleProvider,
    ScoreProvider,
    TeamProvider,
)
from slatesync.services.sync.adapters.espn_adapter import (
    EspnAdapter,
    EspnScheduleProvider,
    EspnScoreProvider,
    EspnTeamProvider,
)
from slatesync.services.sync.adapters.odds_api_adapter import OddsApiAdapter

__all__ = [
    "OddsProvider",
    "RawGame",
    "RawLiveStatus",
    "RawOdds",
    "RawProp",
    "RawTeam",
    "RawTeamRef",
    "ScheduleProvider",
    "ScoreProvider",
    "TeamProvider",
    "EspnAdapter",
    "EspnScheduleProvider",
    "EspnScoreProvider",
    "EspnTeamProvider",
    "OddsApiAdapter",
]
