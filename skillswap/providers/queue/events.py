from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SessionEventType(str, Enum):
    SESSION_REQUESTED = "SESSION_REQUESTED"
    SESSION_CONFIRMED = "SESSION_CONFIRMED"
    SESSION_DECLINED = "SESSION_DECLINED"
    SESSION_CANCELLED = "SESSION_CANCELLED"
    SESSION_RESCHEDULED = "SESSION_RESCHEDULED"
    SESSION_STARTED = "SESSION_STARTED"
    SESSION_COMPLETED = "SESSION_COMPLETED"
    SESSION_DISPUTED = "SESSION_DISPUTED"
    CREDITS_EARNED = "CREDITS_EARNED"


# 이메일 큐에도 보내는 이벤트
EMAIL_EVENT_TYPES = frozenset(
    {
        SessionEventType.SESSION_REQUESTED,
        SessionEventType.SESSION_CONFIRMED,
        SessionEventType.SESSION_CANCELLED,
        SessionEventType.SESSION_RESCHEDULED,
        SessionEventType.SESSION_COMPLETED,
    }
)


class SessionEvent(BaseModel):
    event_type: SessionEventType
    session_id: int
    actor_id: Optional[int] = None
    recipient_ids: List[int] = Field(default_factory=list)
    credits: Optional[Decimal] = None
    occurred_at: datetime
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def deduplication_id(self) -> str:
        return f"{self.event_type.value}:{self.session_id}:{self.occurred_at.timestamp()}"
