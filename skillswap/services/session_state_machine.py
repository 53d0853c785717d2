"""
세션 상태 머신

PENDING -> CONFIRMED -> IN_PROGRESS -> COMPLETED
PENDING | CONFIRMED -> CANCELLED
COMPLETED -> DISPUTED

부수 효과가 없는 순수 로직입니다. 전이 가드를 검증하고 메모리 상의 Session만
변경하며, 짝이 되는 원장 작업(홀드/환불/지급)은 SessionService가 실행합니다.
현재 시각은 주입된 Clock에서만 얻습니다.
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from skillswap.config import Settings, settings as default_settings
from skillswap.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    ValidationError,
)
from skillswap.models.session import Session, SessionStatusEnum
from skillswap.models.skill import UserSkill
from skillswap.schemas.session import SessionCreateRequest, SessionUpdateRequest
from skillswap.schemas.user import User as UserSchema
from skillswap.utils.clock import Clock, ensure_utc
from skillswap.utils.credits import hours_between, quantize_credits

MUTABLE_STATUSES = (SessionStatusEnum.PENDING, SessionStatusEnum.CONFIRMED)


class SessionStateMachine:
    def __init__(self, clock: Clock, settings: Optional[Settings] = None):
        self.clock = clock
        self.settings = settings or default_settings

    # ------------------------------------------------------------------
    # 가드
    # ------------------------------------------------------------------

    @staticmethod
    def authorize(session: Session, caller: UserSchema) -> None:
        """세션 당사자(교사/학생) 또는 관리자만 허용"""
        if session.is_participant(caller.id) or caller.is_admin:
            return
        raise AuthorizationError(
            "You are not a participant of this session",
            details={"session_id": session.id},
        )

    @staticmethod
    def require_status(
        session: Session, allowed: Iterable[SessionStatusEnum], action: str
    ) -> None:
        allowed = tuple(allowed)
        if session.status in allowed:
            return
        raise InvalidStateError(
            current_status=session.status.value,
            message=f"Cannot {action} a session in {session.status.value} status",
            details={"allowed_statuses": [status.value for status in allowed]},
        )

    def validate_window(self, start: datetime, end: datetime) -> None:
        """시작 < 종료, 시작은 현재보다 엄격히 미래, 최대 길이 이하"""
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            raise ValidationError(
                "Session start time must be before end time",
                details={"scheduled_start": start.isoformat(), "scheduled_end": end.isoformat()},
            )
        if start <= self.clock.now():
            raise ValidationError(
                "Session start time must be in the future",
                details={"scheduled_start": start.isoformat()},
            )
        if hours_between(start, end) > self.settings.MAX_SESSION_HOURS:
            raise ValidationError(
                f"Session cannot be longer than {self.settings.MAX_SESSION_HOURS} hours"
            )

    def compute_cost(
        self, start: datetime, end: datetime, credits_per_hour: Decimal
    ) -> Decimal:
        hours = hours_between(ensure_utc(start), ensure_utc(end))
        return quantize_credits(
            hours * Decimal(str(credits_per_hour)), self.settings.CREDIT_DECIMAL_PLACES
        )

    # ------------------------------------------------------------------
    # 전이
    # ------------------------------------------------------------------

    def create(
        self, student_id: int, user_skill: UserSkill, request: SessionCreateRequest
    ) -> Session:
        """새 PENDING 세션 생성 (저장하지 않음)"""
        if user_skill.user_id == student_id:
            raise ValidationError("You cannot book a session for your own skill")
        if not user_skill.is_offered:
            raise ValidationError(
                "Sessions can only be booked for offered skills",
                details={"user_skill_id": user_skill.id},
            )
        if not user_skill.is_available:
            raise ValidationError(
                "This skill is not available for booking",
                details={"user_skill_id": user_skill.id},
            )
        if request.teacher_id is not None and request.teacher_id != user_skill.user_id:
            raise ValidationError(
                "teacher_id does not match the owner of the skill",
                details={"teacher_id": request.teacher_id},
            )

        self.validate_window(request.scheduled_start, request.scheduled_end)

        return Session(
            teacher_id=user_skill.user_id,
            student_id=student_id,
            user_skill_id=user_skill.id,
            scheduled_start=ensure_utc(request.scheduled_start),
            scheduled_end=ensure_utc(request.scheduled_end),
            credits_cost=self.compute_cost(
                request.scheduled_start,
                request.scheduled_end,
                user_skill.credits_per_hour,
            ),
            status=SessionStatusEnum.PENDING,
            teacher_confirmed=False,
            student_confirmed=False,
            notes=request.notes,
            is_online=request.is_online,
            location=request.location,
            meeting_link=request.meeting_link,
        )

    def confirm(self, session: Session, caller: UserSchema, confirmed: bool) -> bool:
        """
        호출자 쪽 확인 플래그 설정

        두 플래그가 모두 true가 되는 순간에만 CONFIRMED로 전이하며,
        전이가 일어났으면 True를 반환합니다. 관리자라도 당사자가 아니면 거부합니다.
        """
        if not session.is_participant(caller.id):
            raise AuthorizationError(
                "Only the teacher or the student can confirm a session",
                details={"session_id": session.id},
            )
        self.require_status(session, [SessionStatusEnum.PENDING], "confirm")

        if caller.id == session.teacher_id:
            session.teacher_confirmed = confirmed
        else:
            session.student_confirmed = confirmed

        if session.teacher_confirmed and session.student_confirmed:
            session.status = SessionStatusEnum.CONFIRMED
            session.confirmed_at = self.clock.now()
            return True
        return False

    def cancel(self, session: Session, caller: UserSchema, reason: str) -> Decimal:
        """취소 처리 후 환불할 에스크로 금액(credits_cost) 반환"""
        self.authorize(session, caller)
        self.require_status(session, MUTABLE_STATUSES, "cancel")
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")

        session.status = SessionStatusEnum.CANCELLED
        session.cancelled_at = self.clock.now()
        session.cancellation_reason = reason.strip()
        return session.credits_cost

    def reschedule(
        self,
        session: Session,
        caller: UserSchema,
        start: datetime,
        end: datetime,
        credits_per_hour: Decimal,
    ) -> Decimal:
        """
        일정 변경 - 상태는 유지하고 시간/비용을 갱신

        Returns:
            Decimal: 비용 변동분 (양수면 추가 홀드, 음수면 환불 필요)
        """
        self.authorize(session, caller)
        self.require_status(session, MUTABLE_STATUSES, "reschedule")
        self.validate_window(start, end)

        new_cost = self.compute_cost(start, end, credits_per_hour)
        delta = new_cost - session.credits_cost

        session.scheduled_start = ensure_utc(start)
        session.scheduled_end = ensure_utc(end)
        session.credits_cost = new_cost
        return delta

    def start(self, session: Session, caller: UserSchema) -> None:
        self.authorize(session, caller)
        self.require_status(session, [SessionStatusEnum.CONFIRMED], "start")
        session.status = SessionStatusEnum.IN_PROGRESS
        session.actual_start = self.clock.now()

    def complete(self, session: Session, caller: UserSchema) -> bool:
        """
        완료 처리

        이미 COMPLETED인 세션은 오류가 아니며(클라이언트 재시도) False를 반환합니다.
        새로 전이했으면 True.
        """
        self.authorize(session, caller)
        if session.status == SessionStatusEnum.COMPLETED:
            return False
        self.require_status(
            session,
            [SessionStatusEnum.CONFIRMED, SessionStatusEnum.IN_PROGRESS],
            "complete",
        )
        now = self.clock.now()
        session.status = SessionStatusEnum.COMPLETED
        session.actual_end = now
        if session.actual_start is None:
            session.actual_start = ensure_utc(session.scheduled_start)
        return True

    def dispute(self, session: Session, caller: UserSchema, reason: str) -> None:
        self.authorize(session, caller)
        self.require_status(session, [SessionStatusEnum.COMPLETED], "dispute")
        if not reason or not reason.strip():
            raise ValidationError("A dispute reason is required")
        session.status = SessionStatusEnum.DISPUTED
        session.dispute_reason = reason.strip()

    def update_details(
        self, session: Session, caller: UserSchema, request: SessionUpdateRequest
    ) -> None:
        """부가 정보(메모, 장소, 링크) 수정"""
        self.authorize(session, caller)
        self.require_status(session, MUTABLE_STATUSES, "update")
        changes = request.model_dump(exclude_unset=True)
        # notes/location/meeting_link는 null로 비울 수 있지만 is_online은 불가
        if "is_online" in changes and changes["is_online"] is None:
            raise ValidationError(
                "is_online cannot be null", details={"field": "is_online"}
            )
        for field, value in changes.items():
            setattr(session, field, value)
