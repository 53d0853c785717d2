"""
세션 오케스트레이션 서비스

각 작업은 다음 순서로 실행됩니다:
1. 세션 행 잠금 조회
2. 상태 머신으로 전이 검증 및 필드 계산
3. 세션 flush
4. 짝이 되는 원장 작업 (홀드 / 환불)
5. 하나의 DB 트랜잭션으로 커밋
6. 커밋 이후 이벤트 발행 (best-effort)

완료(complete)만 예외로, 상태 변경을 먼저 커밋하고 지급은 별도 트랜잭션에서
실행합니다. 지급이 실패해도 세션은 COMPLETED로 남고 PENDING_SETTLEMENT로 보고됩니다.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TypeVar

from sqlalchemy.orm import Session as DBSession
from sqlalchemy.orm.exc import StaleDataError

from skillswap.config import Settings, settings as default_settings
from skillswap.core.exceptions import (
    AuthorizationError,
    BaseAPIException,
    ConflictError,
    InsufficientCreditsError,
    InternalServerError,
    NotFoundError,
    SettlementError,
)
from skillswap.models.credit import TransactionStatusEnum, TransactionTypeEnum
from skillswap.models.session import Session, SessionStatusEnum
from skillswap.providers.queue.events import SessionEvent, SessionEventType
from skillswap.repositories.session_repository import SessionRepository
from skillswap.repositories.user_skill_repository import UserSkillRepository
from skillswap.schemas.session import (
    SessionCompletionResponse,
    SessionCreateRequest,
    SessionLedgerCheckResponse,
    SessionListResponse,
    SessionResponse,
    SessionRescheduleResponse,
    SessionRole,
    SessionUpdateRequest,
    SettlementStatus,
)
from skillswap.schemas.user import User as UserSchema
from skillswap.services.credit_service import CreditService
from skillswap.services.notification_service import NotificationDispatcher
from skillswap.services.session_state_machine import SessionStateMachine
from skillswap.utils.clock import Clock, SystemClock
import logging

logger = logging.getLogger(__name__)

R = TypeVar("R")


class SessionService:
    """세션 라이프사이클과 크레딧 에스크로를 하나의 작업 단위로 묶는 서비스"""

    def __init__(
        self,
        db: DBSession,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.state_machine = SessionStateMachine(self.clock, self.settings)
        self.session_repo = SessionRepository(db)
        self.user_skill_repo = UserSkillRepository(db)
        self.credit_service = CreditService(db, settings=self.settings, clock=self.clock)
        self.dispatcher = dispatcher or NotificationDispatcher(settings=self.settings)

    # ------------------------------------------------------------------
    # 트랜잭션 / 이벤트 헬퍼
    # ------------------------------------------------------------------

    def _run_in_transaction(self, operation: str, work: Callable[[], R]) -> R:
        """
        작업 실행 후 커밋

        - StaleDataError(동시 수정): 롤백 후 SESSION_UPDATE_MAX_RETRIES회까지 재실행, 초과 시 ConflictError
        - 도메인 예외(BaseAPIException): 롤백 후 그대로 전파
        - SettlementError 및 그 외 예외: 롤백, 에러 로그, InternalServerError로 변환
        """
        max_retries = self.settings.SESSION_UPDATE_MAX_RETRIES
        for attempt in range(1, max_retries + 1):
            try:
                result = work()
                self.db.commit()
                return result
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    f"Concurrent update while trying to {operation} (attempt {attempt}/{max_retries})"
                )
            except BaseAPIException as e:
                self.db.rollback()
                logger.warning(f"Refused to {operation}: {e.message}")
                raise
            except SettlementError as e:
                self.db.rollback()
                logger.error(f"Ledger out of sync while trying to {operation}: {str(e)}")
                raise InternalServerError(
                    "Session escrow is inconsistent", details={"session_id": e.session_id}
                )
            except Exception as e:
                self.db.rollback()
                logger.error(f"Unexpected error while trying to {operation}: {str(e)}", exc_info=True)
                raise InternalServerError(f"Failed to {operation}")

        raise ConflictError(
            "Session was modified concurrently, please retry",
            details={"operation": operation, "attempts": max_retries},
        )

    def _load(self, session_id: int) -> Session:
        session = self.session_repo.get_for_update(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id}
            )
        return session

    def _publish(
        self,
        event_type: SessionEventType,
        session: Session,
        actor_id: Optional[int],
        recipient_ids: List[int],
        credits: Optional[Decimal] = None,
        **payload,
    ) -> None:
        try:
            self.dispatcher.publish(
                SessionEvent(
                    event_type=event_type,
                    session_id=session.id,
                    actor_id=actor_id,
                    recipient_ids=recipient_ids,
                    credits=credits,
                    occurred_at=self.clock.now(),
                    payload=payload,
                )
            )
        except Exception as e:
            logger.error(f"Failed to dispatch {event_type.value} for session {session.id}: {str(e)}")

    @staticmethod
    def _other_parties(session: Session, actor_id: int) -> List[int]:
        return [uid for uid in (session.teacher_id, session.student_id) if uid != actor_id]

    @staticmethod
    def _to_response(session: Session) -> SessionResponse:
        return SessionResponse.model_validate(session)

    # ------------------------------------------------------------------
    # 전이
    # ------------------------------------------------------------------

    def create_session(
        self, student_id: int, request: SessionCreateRequest
    ) -> SessionResponse:
        """
        세션 예약 - PENDING 세션 생성과 에스크로 홀드를 한 트랜잭션으로 처리

        홀드가 거부되면 세션 insert까지 롤백되어 자금 없는 PENDING 세션이 남지 않습니다.

        Raises:
            NotFoundError: 유저 스킬이 없음
            ValidationError: 자기 예약, OFFERED 아님, 시간 검증 실패
            InsufficientCreditsError: 사용 가능 잔액 부족
        """

        def work() -> Session:
            user_skill = self.user_skill_repo.get_user_skill(request.user_skill_id)
            if user_skill is None:
                raise NotFoundError(
                    f"User skill {request.user_skill_id} not found",
                    details={"user_skill_id": request.user_skill_id},
                )

            session = self.state_machine.create(student_id, user_skill, request)
            self.session_repo.add(session)

            hold = self.credit_service.hold(
                student_id,
                session.credits_cost,
                session.id,
                f"Booking for session #{session.id}",
            )
            if hold is None:
                available = self.credit_service.get_available_balance(student_id)
                raise InsufficientCreditsError(
                    details={
                        "required": str(session.credits_cost),
                        "available": str(available),
                    }
                )
            return session

        session = self._run_in_transaction("create session", work)
        logger.info(
            f"Session {session.id} created: student={student_id} teacher={session.teacher_id} cost={session.credits_cost}"
        )
        self._publish(
            SessionEventType.SESSION_REQUESTED,
            session,
            student_id,
            [session.teacher_id],
            credits=session.credits_cost,
            scheduled_start=session.scheduled_start.isoformat(),
        )
        return self._to_response(session)

    def confirm_session(
        self, session_id: int, caller: UserSchema, confirmed: bool = True
    ) -> SessionResponse:
        """당사자 확인 플래그 설정. 양쪽 모두 확인하면 CONFIRMED"""

        def work() -> Tuple[Session, bool]:
            session = self._load(session_id)
            became_confirmed = self.state_machine.confirm(session, caller, confirmed)
            self.db.flush()
            return session, became_confirmed

        session, became_confirmed = self._run_in_transaction("confirm session", work)

        if became_confirmed:
            logger.info(f"Session {session_id} confirmed by both parties")
            self._publish(
                SessionEventType.SESSION_CONFIRMED,
                session,
                caller.id,
                [session.teacher_id, session.student_id],
            )
        elif not confirmed:
            logger.info(f"Session {session_id} declined by user {caller.id}")
            self._publish(
                SessionEventType.SESSION_DECLINED,
                session,
                caller.id,
                self._other_parties(session, caller.id),
            )
        else:
            logger.info(f"Session {session_id} confirmed by user {caller.id}, waiting for the other party")
        return self._to_response(session)

    def cancel_session(
        self, session_id: int, caller: UserSchema, reason: str
    ) -> SessionResponse:
        """취소 - 에스크로 전액 환불"""

        def work() -> Session:
            session = self._load(session_id)
            refund_amount = self.state_machine.cancel(session, caller, reason)
            self.db.flush()
            self.credit_service.refund(
                session.student_id,
                refund_amount,
                session.id,
                f"Refund for cancelled session #{session.id}",
            )
            return session

        session = self._run_in_transaction("cancel session", work)
        logger.info(f"Session {session_id} cancelled by user {caller.id}, refunded {session.credits_cost}")
        self._publish(
            SessionEventType.SESSION_CANCELLED,
            session,
            caller.id,
            self._other_parties(session, caller.id),
            credits=session.credits_cost,
            reason=session.cancellation_reason,
        )
        return self._to_response(session)

    def reschedule_session(
        self,
        session_id: int,
        caller: UserSchema,
        new_start: datetime,
        new_end: datetime,
    ) -> SessionRescheduleResponse:
        """
        일정 변경 - 비용이 늘면 추가 홀드, 줄면 차액 환불

        세션의 credits_cost와 PENDING 홀드 합계는 항상 일치합니다.
        """

        def work() -> Tuple[Session, Decimal, Decimal]:
            session = self._load(session_id)
            user_skill = self.user_skill_repo.get_user_skill(session.user_skill_id)
            if user_skill is None:
                raise NotFoundError(
                    f"User skill {session.user_skill_id} not found",
                    details={"user_skill_id": session.user_skill_id},
                )

            previous_cost = session.credits_cost
            delta = self.state_machine.reschedule(
                session, caller, new_start, new_end, user_skill.credits_per_hour
            )
            self.db.flush()

            if delta > 0:
                hold = self.credit_service.hold(
                    session.student_id,
                    delta,
                    session.id,
                    f"Additional hold for rescheduled session #{session.id}",
                )
                if hold is None:
                    available = self.credit_service.get_available_balance(session.student_id)
                    raise InsufficientCreditsError(
                        details={"required": str(delta), "available": str(available)}
                    )
            elif delta < 0:
                self.credit_service.refund(
                    session.student_id,
                    -delta,
                    session.id,
                    f"Refund for rescheduled session #{session.id}",
                )
            return session, previous_cost, delta

        session, previous_cost, delta = self._run_in_transaction("reschedule session", work)
        logger.info(
            f"Session {session_id} rescheduled by user {caller.id}: cost {previous_cost} -> {session.credits_cost}"
        )
        self._publish(
            SessionEventType.SESSION_RESCHEDULED,
            session,
            caller.id,
            self._other_parties(session, caller.id),
            credits=session.credits_cost,
            scheduled_start=session.scheduled_start.isoformat(),
            scheduled_end=session.scheduled_end.isoformat(),
        )
        return SessionRescheduleResponse(
            session=self._to_response(session),
            previous_cost=previous_cost,
            credits_delta=delta,
        )

    def start_session(self, session_id: int, caller: UserSchema) -> SessionResponse:
        def work() -> Session:
            session = self._load(session_id)
            self.state_machine.start(session, caller)
            self.db.flush()
            return session

        session = self._run_in_transaction("start session", work)
        logger.info(f"Session {session_id} started by user {caller.id}")
        self._publish(
            SessionEventType.SESSION_STARTED,
            session,
            caller.id,
            self._other_parties(session, caller.id),
        )
        return self._to_response(session)

    def complete_session(
        self, session_id: int, caller: UserSchema
    ) -> SessionCompletionResponse:
        """
        완료 처리 후 교사에게 지급

        1. COMPLETED 상태를 먼저 커밋 (이미 COMPLETED면 통과)
        2. 별도 트랜잭션에서 지급 (멱등, 재호출해도 이중 지급 없음)
        3. 지급 실패 시 세션은 COMPLETED로 유지하고 PENDING_SETTLEMENT 반환
        """

        def work() -> Tuple[Session, bool]:
            session = self._load(session_id)
            transitioned = self.state_machine.complete(session, caller)
            self.db.flush()
            return session, transitioned

        session, transitioned = self._run_in_transaction("complete session", work)
        if transitioned:
            logger.info(f"Session {session_id} completed by user {caller.id}")
            self._publish(
                SessionEventType.SESSION_COMPLETED,
                session,
                caller.id,
                [session.teacher_id, session.student_id],
                credits=session.credits_cost,
            )
        else:
            logger.info(f"Session {session_id} already completed, retrying settlement")
        return self._settle(session)

    def _settle(self, session: Session) -> SessionCompletionResponse:
        session_response = self._to_response(session)

        existing = self.credit_service.get_session_payout(session.teacher_id, session.id)
        if existing is not None:
            return SessionCompletionResponse(
                session=session_response,
                settlement_status=SettlementStatus.SETTLED,
                earned_transaction_id=existing.id,
                message="Session completed and credits already transferred",
            )

        try:
            earned = self.credit_service.transfer(
                session.student_id,
                session.teacher_id,
                session.credits_cost,
                session.id,
                f"Earned from session #{session.id}",
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Payout for completed session {session.id} failed, pending settlement: {str(e)}"
            )
            return SessionCompletionResponse(
                session=session_response,
                settlement_status=SettlementStatus.PENDING_SETTLEMENT,
                earned_transaction_id=None,
                message="Session completed, credit transfer is pending settlement",
            )

        self._publish(
            SessionEventType.CREDITS_EARNED,
            session,
            None,
            [session.teacher_id],
            credits=earned.amount,
        )
        return SessionCompletionResponse(
            session=session_response,
            settlement_status=SettlementStatus.SETTLED,
            earned_transaction_id=earned.id,
            message="Session completed and credits transferred",
        )

    def settle_session(self, session_id: int) -> SessionCompletionResponse:
        """관리자용 - COMPLETED 세션의 지급 재시도"""
        session = self.session_repo.get_model(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id}
            )
        self.state_machine.require_status(
            session, [SessionStatusEnum.COMPLETED], "settle"
        )
        return self._settle(session)

    def dispute_session(
        self, session_id: int, caller: UserSchema, reason: str
    ) -> SessionResponse:
        """이의 제기 - 원장 변경 없음"""

        def work() -> Session:
            session = self._load(session_id)
            self.state_machine.dispute(session, caller, reason)
            self.db.flush()
            return session

        session = self._run_in_transaction("dispute session", work)
        logger.info(f"Session {session_id} disputed by user {caller.id}")
        self._publish(
            SessionEventType.SESSION_DISPUTED,
            session,
            caller.id,
            self._other_parties(session, caller.id),
            reason=session.dispute_reason,
        )
        return self._to_response(session)

    def update_session_details(
        self, session_id: int, caller: UserSchema, request: SessionUpdateRequest
    ) -> SessionResponse:
        def work() -> Session:
            session = self._load(session_id)
            self.state_machine.update_details(session, caller, request)
            self.db.flush()
            return session

        session = self._run_in_transaction("update session", work)
        logger.info(f"Session {session_id} details updated by user {caller.id}")
        return self._to_response(session)

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_session(self, session_id: int, caller: UserSchema) -> SessionResponse:
        session = self.session_repo.get_model(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id}
            )
        if not (session.is_participant(caller.id) or caller.is_admin):
            raise AuthorizationError(
                "You are not a participant of this session",
                details={"session_id": session_id},
            )
        return self._to_response(session)

    def get_user_sessions(
        self,
        user_id: int,
        role: SessionRole = SessionRole.ALL,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SessionListResponse:
        sessions = self.session_repo.find_for_user(user_id, role, limit, offset)
        return SessionListResponse(
            sessions=sessions, total_count=self.session_repo.count_for_user(user_id, role)
        )

    def get_upcoming_sessions(self, user_id: int) -> SessionListResponse:
        sessions = self.session_repo.find_upcoming(user_id, self.clock.now())
        return SessionListResponse(sessions=sessions, total_count=len(sessions))

    def get_sessions_by_status(
        self, status: SessionStatusEnum, limit: Optional[int] = None, offset: int = 0
    ) -> SessionListResponse:
        sessions = self.session_repo.find_by_status(status, limit, offset)
        return SessionListResponse(
            sessions=sessions, total_count=self.session_repo.count({"status": status})
        )

    def find_unsettled_sessions(self) -> SessionListResponse:
        sessions = self.session_repo.find_unsettled()
        return SessionListResponse(sessions=sessions, total_count=len(sessions))

    def verify_session_ledger(self, session_id: int) -> SessionLedgerCheckResponse:
        """
        세션-원장 정합성 검증

        검증 항목:
        1. 에스크로 상태(PENDING/CONFIRMED/IN_PROGRESS): PENDING 홀드 합계 == credits_cost, 지급 없음
        2. CANCELLED: 남은 홀드 없음, 확정된 SPENT는 모두 REFUND로 상쇄
        3. COMPLETED/DISPUTED: 남은 홀드 없음, 교사 EARNED == credits_cost == 순지출
        """
        session = self.session_repo.get_model(session_id)
        if session is None:
            raise NotFoundError(
                f"Session {session_id} not found", details={"session_id": session_id}
            )

        repo = self.credit_service.credit_repo
        student, teacher = session.student_id, session.teacher_id
        pending = -repo.get_session_total(
            session.id, TransactionTypeEnum.SPENT, TransactionStatusEnum.PENDING, student
        )
        captured = -repo.get_session_total(
            session.id, TransactionTypeEnum.SPENT, TransactionStatusEnum.COMPLETED, student
        )
        earned = repo.get_session_total(
            session.id, TransactionTypeEnum.EARNED, TransactionStatusEnum.COMPLETED, teacher
        )
        refunded = repo.get_session_total(
            session.id, TransactionTypeEnum.REFUND, TransactionStatusEnum.COMPLETED, student
        )

        issues: List[str] = []
        cost = session.credits_cost
        if session.holds_escrow:
            if pending != cost:
                issues.append(f"Escrow {pending} does not match credits cost {cost}")
            if earned != 0:
                issues.append(f"Teacher already earned {earned} before completion")
            if captured != refunded:
                issues.append(f"Released holds {captured} not matched by refunds {refunded}")
        elif session.status == SessionStatusEnum.CANCELLED:
            if pending != 0:
                issues.append(f"Cancelled session still holds {pending} in escrow")
            if earned != 0:
                issues.append(f"Teacher earned {earned} on a cancelled session")
            if captured != refunded:
                issues.append(f"Released holds {captured} not matched by refunds {refunded}")
        else:
            if earned == 0 and pending == cost:
                issues.append("Payout pending settlement")
            else:
                if pending != 0:
                    issues.append(f"Completed session still holds {pending} in escrow")
                if earned != cost:
                    issues.append(f"Teacher earned {earned}, expected {cost}")
                if captured - refunded != cost:
                    issues.append(f"Student net spend {captured - refunded}, expected {cost}")

        if issues:
            logger.warning(f"Ledger mismatch for session {session_id}: {issues}")

        return SessionLedgerCheckResponse(
            status="MISMATCH" if issues else "OK",
            session_id=session.id,
            session_status=session.status,
            credits_cost=cost,
            pending_spent=pending,
            captured_spent=captured,
            earned=earned,
            refunded=refunded,
            issues=issues,
            verified_at=self.clock.now(),
        )
