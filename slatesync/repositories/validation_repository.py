"""Prediction-validation queries."""
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from slatesync.models import PropValidation, ValidationStatus
from slatesync.repositories.base import BaseRepository

OPEN_STATUSES = (ValidationStatus.PENDING.value, ValidationStatus.NEEDS_REVIEW.value)


class ValidationRepository(BaseRepository[PropValidation]):

    def __init__(self, db: Session):
        super().__init__(PropValidation, db)

    def find_by_prop_id(self, prop_id: str) -> Optional[PropValidation]:
        return self.where_first(PropValidation.prop_id == prop_id)

    def actionable(self, max_review_attempts: int, limit: Optional[int] = None) -> List[PropValidation]:
        """
        Predictions the validation sweep should look at: every pending row,
        plus needs_review rows that still have review attempts left.
        """
        query = self.query().filter(or_(
            PropValidation.status == ValidationStatus.PENDING.value,
            and_(
                PropValidation.status == ValidationStatus.NEEDS_REVIEW.value,
                PropValidation.review_attempts < max_review_attempts,
            ),
        )).order_by(PropValidation.created_at)
        if limit:
            query = query.limit(limit)
        return query.all()

    def count_open(self) -> int:
        return self.count(PropValidation.status.in_(OPEN_STATUSES))

    def completed(self, sport: Optional[str] = None, prop_type: Optional[str] = None) -> List[PropValidation]:
        criterion = [PropValidation.status == ValidationStatus.COMPLETED.value]
        if sport:
            criterion.append(PropValidation.sport == sport)
        if prop_type:
            criterion.append(PropValidation.prop_type == prop_type)
        return self.where(*criterion)
