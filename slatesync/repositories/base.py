"""
Base repository class for data access layer.

Example:
    class TeamRepository(BaseRepository[Team]):
        def list_for_sport(self, sport: str) -> List[Team]:
            return self.db.query(Team).filter(Team.sport == sport).all()
"""
from abc import ABC
from datetime import datetime
from typing import TypeVar, Generic, Type, Optional, List

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

T = TypeVar("T")


class BaseRepository(Generic[T], ABC):
    """
    Common data access methods for one model type.

    Attributes:
        model_type: The SQLAlchemy model class this repository manages
        db: The database session
    """

    def __init__(self, model_type: Type[T], db: Session):
        self.model_type = model_type
        self.db = db

    # ========================================================================
    # CRUD Operations
    # ========================================================================

    def find_by_id(self, id: str) -> Optional[T]:
        """Find a single record by primary key."""
        return self.db.get(self.model_type, id)

    def create(self, **kwargs) -> T:
        """Create a new record (added to the session, not committed)."""
        instance = self.model_type(**kwargs)
        self.db.add(instance)
        return instance

    # ========================================================================
    # Query Builders
    # ========================================================================

    def query(self) -> Query:
        """Get a new query object for this model."""
        return self.db.query(self.model_type)

    def where(self, *criterion) -> List[T]:
        """Filter records using SQLAlchemy expressions."""
        return self.db.query(self.model_type).filter(*criterion).all()

    def where_first(self, *criterion) -> Optional[T]:
        """Filter records using SQLAlchemy expressions and return first match."""
        return self.db.query(self.model_type).filter(*criterion).first()

    def count(self, *criterion) -> int:
        """Count records matching optional criterion."""
        query = self.db.query(func.count()).select_from(self.model_type)
        if criterion:
            query = query.filter(*criterion)
        return query.scalar() or 0

    def in_date_range(
        self,
        date_field: str,
        start: datetime,
        end: datetime,
        *additional_criterion
    ) -> List[T]:
        """
        Find records with ``date_field`` in [start, end].

        Args:
            date_field: Name of the datetime field to filter on
            start: Start (inclusive)
            end: End (inclusive)
            additional_criterion: Additional filter criteria
        """
        column = getattr(self.model_type, date_field)
        query = self.db.query(self.model_type).filter(column >= start, column <= end)
        if additional_criterion:
            query = query.filter(*additional_criterion)
        return query.order_by(column).all()
