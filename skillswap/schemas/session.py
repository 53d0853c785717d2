from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from skillswap.models.session import SessionStatusEnum
from skillswap.utils.clock import ensure_utc


class SessionRole(str, Enum):
    """내 세션 조회 시 역할 필터"""

    ALL = "all"
    TEACHING = "teaching"
    LEARNING = "learning"


class SettlementStatus(str, Enum):
    SETTLED = "SETTLED"  # 교사에게 EARNED 지급 완료
    PENDING_SETTLEMENT = "PENDING_SETTLEMENT"  # 완료되었으나 지급 실패, 재시도 대상


class _TimeWindow(BaseModel):
    scheduled_start: datetime = Field(..., description="시작 시각 (naive면 UTC)")
    scheduled_end: datetime = Field(..., description="종료 시각 (naive면 UTC)")

    @field_validator("scheduled_start", "scheduled_end")
    @classmethod
    def normalize_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class SessionCreateRequest(_TimeWindow):
    """세션 예약 요청"""

    user_skill_id: int = Field(..., gt=0, description="예약할 OFFERED 유저 스킬 ID")
    teacher_id: Optional[int] = Field(
        None, gt=0, description="교사 ID (지정 시 스킬 소유자와 일치해야 함)"
    )
    notes: Optional[str] = Field(None, max_length=1000)
    is_online: bool = True
    location: Optional[str] = Field(None, max_length=200)
    meeting_link: Optional[str] = Field(None, max_length=500)


class SessionUpdateRequest(BaseModel):
    """세션 부가 정보 수정 요청 (상태/시간/비용은 변경 불가)"""

    notes: Optional[str] = Field(None, max_length=1000)
    is_online: Optional[bool] = None
    location: Optional[str] = Field(None, max_length=200)
    meeting_link: Optional[str] = Field(None, max_length=500)


class SessionConfirmRequest(BaseModel):
    confirmed: bool = Field(True, description="false면 거절(decline)")


class SessionCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500, description="취소 사유")


class SessionRescheduleRequest(_TimeWindow):
    pass


class SessionDisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000, description="이의 제기 사유")


class SessionResponse(BaseModel):
    id: int
    teacher_id: int
    student_id: int
    user_skill_id: int
    scheduled_start: datetime
    scheduled_end: datetime
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    credits_cost: Decimal
    status: SessionStatusEnum
    teacher_confirmed: bool = False
    student_confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    dispute_reason: Optional[str] = None
    notes: Optional[str] = None
    is_online: bool = True
    location: Optional[str] = None
    meeting_link: Optional[str] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator(
        "scheduled_start",
        "scheduled_end",
        "actual_start",
        "actual_end",
        "confirmed_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    )
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class SessionListResponse(BaseModel):
    sessions: List[SessionResponse]
    total_count: int


class SessionRescheduleResponse(BaseModel):
    """일정 변경 결과 - 비용 변동분 포함"""

    session: SessionResponse
    previous_cost: Decimal
    credits_delta: Decimal = Field(
        ..., description="양수면 추가 홀드, 음수면 환불된 크레딧"
    )


class SessionCompletionResponse(BaseModel):
    session: SessionResponse
    settlement_status: SettlementStatus
    earned_transaction_id: Optional[int] = None
    message: str


class SessionLedgerCheckResponse(BaseModel):
    """세션-원장 정합성 검증 결과"""

    status: str = Field(..., description="OK 또는 MISMATCH")
    session_id: int
    session_status: SessionStatusEnum
    credits_cost: Decimal
    pending_spent: Decimal = Field(..., description="PENDING SPENT 합계 (양수)")
    captured_spent: Decimal = Field(..., description="COMPLETED SPENT 합계 (양수)")
    earned: Decimal
    refunded: Decimal
    issues: List[str] = Field(default_factory=list)
    verified_at: datetime

    @model_validator(mode="after")
    def status_matches_issues(self):
        if self.issues and self.status == "OK":
            self.status = "MISMATCH"
        return self
