from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List
from pydantic import BaseModel, ConfigDict, Field, field_validator


class NotificationType(str, Enum):
    BENEFIT_REMINDER   = "benefit_reminder"     # benefit expiring soon
    BENEFIT_UNUSED     = "benefit_unused"       # eligible but never claimed
    SECTION40_OUTREACH = "section40_outreach"   # consented, not enrolled
    PAYMENT_STATUS     = "payment_status"       # approved / rejected in the last day
    SYSTEM             = "system"


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    LINE   = "line"
    SMS    = "sms"


DUPLICATE_SKIPPED = "duplicate"


class Notification(BaseModel):
    """In-app record; also what the dedup guard reads back."""
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    notif_id:   str
    member_id:  str
    type:       NotificationType
    title:      str
    body:       str
    channel:    NotificationChannel = NotificationChannel.IN_APP
    read:       bool = False
    sent_at:    datetime
    read_at:    Optional[datetime] = None


class NotificationCandidate(BaseModel):
    """An intent to notify, created fresh on every run and never persisted."""
    member_id:    str
    type:         NotificationType
    title:        str
    body:         str
    channels:     List[NotificationChannel] = Field(min_length=1)
    # Channel addresses; a requested channel without its address is skipped
    line_user_id: Optional[str] = None
    phone:        Optional[str] = None

    @field_validator("channels")
    @classmethod
    def dedupe_channels(cls, v: List[NotificationChannel]) -> List[NotificationChannel]:
        return list(dict.fromkeys(v))


class DeliveryOutcome(BaseModel):
    member_id:      str
    success:        bool
    channels:       List[NotificationChannel] = []   # channels actually delivered
    skipped_reason: Optional[str] = None
    error:          Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.skipped_reason == DUPLICATE_SKIPPED


class PredictionSummary(BaseModel):
    total:       int
    sent:        int
    skipped:     int
    failed:      int
    breakdown:   Dict[str, int]
    duration_ms: int


class AdminNotificationCreate(BaseModel):
    member_id: str
    type:      NotificationType
    title:     str = Field(min_length=1)
    body:      str = Field(min_length=1)
    channel:   Optional[NotificationChannel] = None


class MarkReadRequest(BaseModel):
    ids: Optional[List[str]] = None
    all: bool = False
