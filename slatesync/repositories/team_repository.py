"""Team and team-alias queries."""
from typing import List, Optional

from sqlalchemy.orm import Session

from slatesync.models import Team, TeamAlias
from slatesync.repositories.base import BaseRepository


class TeamRepository(BaseRepository[Team]):

    def __init__(self, db: Session):
        super().__init__(Team, db)

    def list_for_sport(self, sport: str) -> List[Team]:
        return self.db.query(Team).filter(Team.sport == sport).order_by(Team.id).all()

    def find_by_abbreviation(self, sport: str, abbreviation: str) -> Optional[Team]:
        return self.where_first(Team.sport == sport, Team.abbreviation == abbreviation.upper())

    def find_by_alias(self, sport: str, provider: str, external_key: str) -> Optional[Team]:
        alias = self.db.query(TeamAlias).filter(
            TeamAlias.sport == sport,
            TeamAlias.provider == provider,
            TeamAlias.external_key == str(external_key),
        ).first()
        return alias.team if alias else None

    def find_alias(self, sport: str, provider: str, external_key: str) -> Optional[TeamAlias]:
        return self.db.query(TeamAlias).filter(
            TeamAlias.sport == sport,
            TeamAlias.provider == provider,
            TeamAlias.external_key == str(external_key),
        ).first()

    def aliases_for(self, team_id: str, provider: str) -> List[TeamAlias]:
        return self.db.query(TeamAlias).filter(
            TeamAlias.team_id == team_id,
            TeamAlias.provider == provider,
        ).all()

    def add_alias(self, team: Team, provider: str, external_key: str) -> TeamAlias:
        alias = TeamAlias(
            team_id=team.id,
            sport=team.sport,
            provider=provider,
            external_key=str(external_key),
        )
        self.db.add(alias)
        return alias
