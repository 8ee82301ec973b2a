from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, field_validator

from models.common import BenefitStatus


class BenefitRow(BaseModel):
    """Benefit document as read by the prediction tasks."""
    benefit_id:    Optional[str] = None
    member_id:     str
    benefit_type:  str
    status:        BenefitStatus
    amount:        Optional[float] = None
    eligible_date: Optional[datetime] = None
    expiry_date:   Optional[datetime] = None
    claimed_at:    Optional[datetime] = None
    updated_at:    Optional[datetime] = None

    @field_validator("eligible_date", "expiry_date", "claimed_at", "updated_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Mongo hands back naive datetimes unless the client is tz_aware
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v
