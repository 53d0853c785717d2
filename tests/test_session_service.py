from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from skillswap.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientCreditsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from skillswap.models.credit import TransactionStatusEnum, TransactionTypeEnum
from skillswap.models.session import Session as SessionModel
from skillswap.models.session import SessionStatusEnum
from skillswap.providers.queue.events import SessionEventType
from skillswap.schemas.session import SessionRole, SessionUpdateRequest, SettlementStatus

from conftest import NOW


def _entries(credit_service, session_id, user_id=None):
    entries = credit_service.get_transactions_by_session(session_id)
    if user_id is not None:
        entries = [e for e in entries if e.user_id == user_id]
    return entries


@pytest.fixture
def booked(session_service, offered_skill, student, fund, booking):
    """학생 잔액 50, 1시간(20 크레딧) PENDING 세션"""
    fund(student.id, "50.00")
    return session_service.create_session(student.id, booking(offered_skill.id))


@pytest.fixture
def confirmed(session_service, booked, teacher, student):
    session_service.confirm_session(booked.id, teacher, True)
    return session_service.confirm_session(booked.id, student, True)


class TestCreateSession:
    """세션 예약 테스트"""

    def test_booking_holds_credits(self, session_service, credit_service, booked, student, teacher):
        """예약 시 credits_cost만큼 PENDING SPENT 홀드 생성"""
        # Assert
        assert booked.status == SessionStatusEnum.PENDING
        assert booked.credits_cost == Decimal("20.00")
        assert booked.teacher_id == teacher.id
        assert booked.version == 1

        entries = _entries(credit_service, booked.id)
        assert len(entries) == 1
        assert entries[0].transaction_type == TransactionTypeEnum.SPENT
        assert entries[0].status == TransactionStatusEnum.PENDING
        assert entries[0].amount == Decimal("-20.00")
        assert entries[0].balance_after == Decimal("30.00")

        assert credit_service.get_balance(student.id) == Decimal("50.00")
        assert credit_service.get_available_balance(student.id) == Decimal("30.00")

    def test_insufficient_credits_persists_nothing(
        self, db, session_service, credit_service, offered_skill, student, fund, booking
    ):
        """사용 가능 잔액이 부족하면 세션도 원장 항목도 남지 않음"""
        # Arrange
        fund(student.id, "10.00")

        # Act & Assert
        with pytest.raises(InsufficientCreditsError) as exc_info:
            session_service.create_session(student.id, booking(offered_skill.id))

        assert exc_info.value.details["required"] == "20.00"
        assert exc_info.value.details["available"] == "10.00"
        assert db.query(SessionModel).count() == 0
        history = credit_service.get_transaction_history(student.id)
        assert history.total_count == 1
        assert credit_service.get_available_balance(student.id) == Decimal("10.00")

    def test_second_booking_sees_first_hold(
        self, session_service, offered_skill, student, fund, booking
    ):
        """두 번째 예약은 첫 번째 홀드를 뺀 잔액 기준으로 판단"""
        # Arrange
        fund(student.id, "30.00")
        session_service.create_session(student.id, booking(offered_skill.id))

        # Act & Assert
        with pytest.raises(InsufficientCreditsError):
            session_service.create_session(student.id, booking(offered_skill.id, start_hours=3))

    def test_cannot_book_own_skill(self, session_service, offered_skill, teacher, fund, booking):
        fund(teacher.id, "50.00")

        with pytest.raises(ValidationError):
            session_service.create_session(teacher.id, booking(offered_skill.id))

    def test_start_must_be_in_future(self, session_service, offered_skill, student, fund, booking):
        fund(student.id, "50.00")

        with pytest.raises(ValidationError):
            session_service.create_session(student.id, booking(offered_skill.id, start_hours=0))

    def test_start_must_precede_end(self, session_service, offered_skill, student, fund, booking):
        fund(student.id, "50.00")

        with pytest.raises(ValidationError):
            session_service.create_session(
                student.id, booking(offered_skill.id, duration_hours=0)
            )

    def test_unknown_user_skill(self, session_service, student, booking):
        with pytest.raises(NotFoundError):
            session_service.create_session(student.id, booking(9999))

    def test_publishes_requested_event(self, booked, dispatcher, teacher):
        """예약 후 교사에게 SESSION_REQUESTED 이벤트 발행"""
        dispatcher.publish.assert_called_once()
        event = dispatcher.publish.call_args[0][0]
        assert event.event_type == SessionEventType.SESSION_REQUESTED
        assert event.session_id == booked.id
        assert event.recipient_ids == [teacher.id]
        assert event.credits == Decimal("20.00")

    def test_event_failure_does_not_fail_booking(
        self, session_service, dispatcher, offered_skill, student, fund, booking
    ):
        """이벤트 발행 실패는 로그만 남기고 예약은 성공"""
        # Arrange
        fund(student.id, "50.00")
        dispatcher.publish.side_effect = RuntimeError("queue down")

        # Act
        result = session_service.create_session(student.id, booking(offered_skill.id))

        # Assert
        assert result.status == SessionStatusEnum.PENDING


class TestConfirmSession:
    def test_both_parties_confirm(self, session_service, booked, teacher, student):
        """양쪽 확인 시 CONFIRMED, confirmed_at 기록"""
        # Act
        first = session_service.confirm_session(booked.id, teacher, True)
        second = session_service.confirm_session(booked.id, student, True)

        # Assert
        assert first.status == SessionStatusEnum.PENDING
        assert first.teacher_confirmed is True
        assert first.confirmed_at is None
        assert second.status == SessionStatusEnum.CONFIRMED
        assert second.teacher_confirmed is True
        assert second.student_confirmed is True
        assert second.confirmed_at == NOW
        assert second.version == 3

    def test_decline_keeps_pending(self, session_service, dispatcher, booked, teacher, student):
        # Act
        result = session_service.confirm_session(booked.id, teacher, False)

        # Assert
        assert result.status == SessionStatusEnum.PENDING
        assert result.teacher_confirmed is False
        event = dispatcher.publish.call_args[0][0]
        assert event.event_type == SessionEventType.SESSION_DECLINED
        assert event.recipient_ids == [student.id]

    def test_admin_cannot_confirm(self, session_service, booked, admin):
        """확인은 당사자만 가능 (관리자 포함 거부)"""
        with pytest.raises(AuthorizationError):
            session_service.confirm_session(booked.id, admin, True)

    def test_confirm_after_confirmed_is_invalid(self, session_service, confirmed, teacher):
        with pytest.raises(InvalidStateError) as exc_info:
            session_service.confirm_session(confirmed.id, teacher, True)

        assert exc_info.value.details["current_status"] == "CONFIRMED"


class TestCancelSession:
    def test_cancel_refunds_hold(self, session_service, credit_service, booked, student):
        """취소 시 잔액 유지, 에스크로 해제, REFUND 기록"""
        # Act
        result = session_service.cancel_session(booked.id, student, "Schedule conflict")

        # Assert
        assert result.status == SessionStatusEnum.CANCELLED
        assert result.cancelled_at == NOW
        assert result.cancellation_reason == "Schedule conflict"

        assert credit_service.get_balance(student.id) == Decimal("50.00")
        assert credit_service.get_available_balance(student.id) == Decimal("50.00")
        assert credit_service.get_pending_spent(student.id) == Decimal("0.00")

        entries = _entries(credit_service, booked.id)
        refunds = [e for e in entries if e.transaction_type == TransactionTypeEnum.REFUND]
        assert len(refunds) == 1
        assert refunds[0].amount == Decimal("20.00")
        assert all(e.status == TransactionStatusEnum.COMPLETED for e in entries)

    def test_cancel_confirmed_session(self, session_service, credit_service, confirmed, teacher, student):
        teacher_balance = credit_service.get_balance(teacher.id)
        teacher_available = credit_service.get_available_balance(teacher.id)

        result = session_service.cancel_session(confirmed.id, teacher, "Sick")

        assert result.status == SessionStatusEnum.CANCELLED
        assert credit_service.get_balance(student.id) == Decimal("50.00")
        assert credit_service.get_available_balance(student.id) == Decimal("50.00")
        assert credit_service.get_balance(teacher.id) == teacher_balance == Decimal("0.00")
        assert credit_service.get_available_balance(teacher.id) == teacher_available == Decimal("0.00")
        assert _entries(credit_service, confirmed.id, teacher.id) == []

    def test_admin_can_cancel(self, session_service, booked, admin):
        result = session_service.cancel_session(booked.id, admin, "Policy violation")

        assert result.status == SessionStatusEnum.CANCELLED

    def test_outsider_cannot_cancel(self, session_service, credit_service, booked, outsider, student):
        with pytest.raises(AuthorizationError):
            session_service.cancel_session(booked.id, outsider, "Nope")

        assert credit_service.get_pending_spent(student.id) == Decimal("20.00")

    def test_cancel_requires_reason(self, session_service, booked, student):
        with pytest.raises(ValidationError):
            session_service.cancel_session(booked.id, student, "   ")

    def test_cancel_twice_is_invalid(self, session_service, credit_service, booked, student):
        session_service.cancel_session(booked.id, student, "First")
        before = len(_entries(credit_service, booked.id))

        with pytest.raises(InvalidStateError):
            session_service.cancel_session(booked.id, student, "Second")

        assert len(_entries(credit_service, booked.id)) == before

    def test_cancel_completed_session_is_invalid(
        self, session_service, credit_service, confirmed, teacher, student
    ):
        """완료된 세션은 취소 불가, 원장 변경 없음"""
        # Arrange
        session_service.complete_session(confirmed.id, teacher)
        before = _entries(credit_service, confirmed.id)

        # Act & Assert
        with pytest.raises(InvalidStateError) as exc_info:
            session_service.cancel_session(confirmed.id, student, "Too late")

        assert exc_info.value.details["current_status"] == "COMPLETED"
        assert _entries(credit_service, confirmed.id) == before


class TestRescheduleSession:
    def test_longer_session_adds_one_hold(
        self, session_service, credit_service, booked, student
    ):
        """비용 증가분만큼 추가 홀드 1건"""
        # Arrange
        start = NOW + timedelta(hours=2)

        # Act
        result = session_service.reschedule_session(
            booked.id, student, start, start + timedelta(hours=2)
        )

        # Assert
        assert result.previous_cost == Decimal("20.00")
        assert result.credits_delta == Decimal("20.00")
        assert result.session.credits_cost == Decimal("40.00")
        assert result.session.status == SessionStatusEnum.PENDING

        holds = credit_service.get_pending_transactions(student.id)
        assert len(holds) == 2
        assert sum(h.amount for h in holds) == Decimal("-40.00")
        assert credit_service.get_available_balance(student.id) == Decimal("10.00")
        assert session_service.verify_session_ledger(booked.id).status == "OK"

    def test_shorter_session_refunds_difference(
        self, session_service, credit_service, booked, student
    ):
        """비용 감소분은 홀드 일부 해제 + REFUND"""
        # Arrange
        start = NOW + timedelta(hours=1)

        # Act
        result = session_service.reschedule_session(
            booked.id, student, start, start + timedelta(minutes=30)
        )

        # Assert
        assert result.credits_delta == Decimal("-10.00")
        assert result.session.credits_cost == Decimal("10.00")
        assert credit_service.get_balance(student.id) == Decimal("50.00")
        assert credit_service.get_pending_spent(student.id) == Decimal("10.00")
        assert credit_service.get_available_balance(student.id) == Decimal("40.00")

        entries = _entries(credit_service, booked.id)
        statuses = sorted(e.status.value for e in entries)
        assert statuses == ["CANCELLED", "COMPLETED", "COMPLETED", "PENDING"]
        assert session_service.verify_session_ledger(booked.id).status == "OK"

    def test_grow_then_shrink_releases_newest_hold(
        self, session_service, credit_service, booked, student
    ):
        start = NOW + timedelta(hours=1)
        session_service.reschedule_session(booked.id, student, start, start + timedelta(hours=2))

        result = session_service.reschedule_session(
            booked.id, student, start, start + timedelta(hours=1)
        )

        assert result.credits_delta == Decimal("-20.00")
        holds = credit_service.get_pending_transactions(student.id)
        assert len(holds) == 1
        assert holds[0].amount == Decimal("-20.00")
        assert credit_service.get_available_balance(student.id) == Decimal("30.00")

    def test_insufficient_credits_rolls_back(
        self, session_service, credit_service, offered_skill, student, fund, booking
    ):
        """추가 홀드 실패 시 일정/비용 변경도 롤백"""
        # Arrange
        fund(student.id, "30.00")
        session = session_service.create_session(student.id, booking(offered_skill.id))
        start = NOW + timedelta(hours=5)

        # Act & Assert
        with pytest.raises(InsufficientCreditsError):
            session_service.reschedule_session(
                session.id, student, start, start + timedelta(hours=2)
            )

        reloaded = session_service.get_session(session.id, student)
        assert reloaded.credits_cost == Decimal("20.00")
        assert reloaded.scheduled_start == session.scheduled_start
        assert credit_service.get_pending_spent(student.id) == Decimal("20.00")

    def test_reschedule_keeps_confirmation(self, session_service, confirmed, teacher):
        start = NOW + timedelta(hours=4)

        result = session_service.reschedule_session(
            confirmed.id, teacher, start, start + timedelta(hours=1)
        )

        assert result.credits_delta == Decimal("0.00")
        assert result.session.status == SessionStatusEnum.CONFIRMED
        assert result.session.teacher_confirmed is True

    def test_reschedule_into_past_is_invalid(self, session_service, booked, student):
        start = NOW - timedelta(hours=1)

        with pytest.raises(ValidationError):
            session_service.reschedule_session(
                booked.id, student, start, start + timedelta(hours=1)
            )


class TestCompleteSession:
    def test_complete_pays_teacher(
        self, session_service, credit_service, dispatcher, confirmed, teacher, student
    ):
        """완료 시 학생 홀드 확정, 교사 EARNED 지급"""
        # Act
        result = session_service.complete_session(confirmed.id, teacher)

        # Assert
        assert result.settlement_status == SettlementStatus.SETTLED
        assert result.session.status == SessionStatusEnum.COMPLETED
        assert result.session.actual_end == NOW
        assert result.earned_transaction_id is not None

        student_entries = _entries(credit_service, confirmed.id, student.id)
        assert [e.status for e in student_entries] == [TransactionStatusEnum.COMPLETED]
        teacher_entries = _entries(credit_service, confirmed.id, teacher.id)
        assert len(teacher_entries) == 1
        assert teacher_entries[0].transaction_type == TransactionTypeEnum.EARNED
        assert teacher_entries[0].amount == Decimal("20.00")

        assert credit_service.get_balance(teacher.id) == Decimal("20.00")
        assert credit_service.get_balance(student.id) == Decimal("30.00")
        assert session_service.verify_session_ledger(confirmed.id).status == "OK"

        published = [call[0][0].event_type for call in dispatcher.publish.call_args_list]
        assert SessionEventType.SESSION_COMPLETED in published
        assert SessionEventType.CREDITS_EARNED in published

    def test_complete_twice_pays_once(
        self, session_service, credit_service, confirmed, teacher, student
    ):
        """재호출/재정산해도 EARNED는 1건"""
        first = session_service.complete_session(confirmed.id, teacher)
        second = session_service.complete_session(confirmed.id, student)
        third = session_service.settle_session(confirmed.id)

        assert second.settlement_status == SettlementStatus.SETTLED
        assert second.earned_transaction_id == first.earned_transaction_id
        assert third.earned_transaction_id == first.earned_transaction_id
        assert len(_entries(credit_service, confirmed.id, teacher.id)) == 1
        assert credit_service.get_balance(teacher.id) == Decimal("20.00")

    def test_complete_from_in_progress(self, session_service, clock, confirmed, student):
        started = session_service.start_session(confirmed.id, student)
        clock.advance(hours=1)

        result = session_service.complete_session(confirmed.id, student)

        assert started.status == SessionStatusEnum.IN_PROGRESS
        assert started.actual_start == NOW
        assert result.session.actual_start == NOW
        assert result.session.actual_end == NOW + timedelta(hours=1)

    def test_complete_pending_is_invalid(self, session_service, booked, teacher):
        with pytest.raises(InvalidStateError):
            session_service.complete_session(booked.id, teacher)

    def test_payout_failure_leaves_session_completed(
        self, session_service, credit_service, confirmed, teacher, student
    ):
        """지급 실패 시 COMPLETED 유지 + PENDING_SETTLEMENT, 이후 재정산"""
        # Act
        with patch.object(
            session_service.credit_service, "transfer", side_effect=RuntimeError("ledger down")
        ):
            result = session_service.complete_session(confirmed.id, teacher)

        # Assert
        assert result.settlement_status == SettlementStatus.PENDING_SETTLEMENT
        assert result.earned_transaction_id is None
        assert session_service.get_session(confirmed.id, teacher).status == SessionStatusEnum.COMPLETED
        assert credit_service.get_pending_spent(student.id) == Decimal("20.00")

        unsettled = session_service.find_unsettled_sessions()
        assert [s.id for s in unsettled.sessions] == [confirmed.id]
        check = session_service.verify_session_ledger(confirmed.id)
        assert check.status == "MISMATCH"
        assert check.issues == ["Payout pending settlement"]

        # Act - 관리자 재정산
        settled = session_service.settle_session(confirmed.id)

        # Assert
        assert settled.settlement_status == SettlementStatus.SETTLED
        assert credit_service.get_balance(teacher.id) == Decimal("20.00")
        assert session_service.find_unsettled_sessions().total_count == 0
        assert session_service.verify_session_ledger(confirmed.id).status == "OK"

    def test_settle_requires_completed(self, session_service, booked):
        with pytest.raises(InvalidStateError):
            session_service.settle_session(booked.id)


class TestOtherTransitions:
    def test_start_requires_confirmed(self, session_service, booked, student):
        with pytest.raises(InvalidStateError):
            session_service.start_session(booked.id, student)

    def test_dispute_completed_session(self, session_service, credit_service, confirmed, teacher, student):
        session_service.complete_session(confirmed.id, teacher)
        before = _entries(credit_service, confirmed.id)

        result = session_service.dispute_session(confirmed.id, student, "Teacher did not show up")

        assert result.status == SessionStatusEnum.DISPUTED
        assert result.dispute_reason == "Teacher did not show up"
        assert _entries(credit_service, confirmed.id) == before
        assert session_service.verify_session_ledger(confirmed.id).status == "OK"

    def test_dispute_pending_is_invalid(self, session_service, booked, student):
        with pytest.raises(InvalidStateError):
            session_service.dispute_session(booked.id, student, "Why")

    def test_update_details(self, session_service, booked, teacher):
        result = session_service.update_session_details(
            booked.id, teacher, SessionUpdateRequest(notes="Bring a laptop", is_online=False)
        )

        assert result.notes == "Bring a laptop"
        assert result.is_online is False
        assert result.credits_cost == Decimal("20.00")

    def test_update_rejects_null_is_online(self, session_service, booked, teacher):
        request = SessionUpdateRequest.model_validate({"is_online": None})

        with pytest.raises(ValidationError) as exc_info:
            session_service.update_session_details(booked.id, teacher, request)

        assert exc_info.value.status_code == 400
        assert session_service.get_session(booked.id, teacher).is_online is True

    def test_update_can_clear_nullable_fields(self, session_service, booked, teacher):
        session_service.update_session_details(
            booked.id, teacher, SessionUpdateRequest(notes="Bring a laptop")
        )

        result = session_service.update_session_details(
            booked.id, teacher, SessionUpdateRequest.model_validate({"notes": None})
        )

        assert result.notes is None

    def test_update_cancelled_session_is_invalid(self, session_service, booked, student):
        session_service.cancel_session(booked.id, student, "Changed my mind")

        with pytest.raises(InvalidStateError):
            session_service.update_session_details(
                booked.id, student, SessionUpdateRequest(notes="late")
            )


class TestOptimisticConcurrency:
    def test_retries_after_stale_data(self, session_service, confirmed, student):
        """동시 수정 충돌 시 재조회 후 재시도"""
        # Arrange
        original = session_service.session_repo.get_for_update
        calls = {"count": 0}

        def flaky(session_id):
            calls["count"] += 1
            if calls["count"] == 1:
                raise StaleDataError("concurrent update")
            return original(session_id)

        # Act
        with patch.object(session_service.session_repo, "get_for_update", side_effect=flaky):
            result = session_service.start_session(confirmed.id, student)

        # Assert
        assert calls["count"] == 2
        assert result.status == SessionStatusEnum.IN_PROGRESS

    def test_conflict_after_max_retries(self, session_service, settings, booked, student):
        with patch.object(
            session_service.session_repo,
            "get_for_update",
            side_effect=StaleDataError("concurrent update"),
        ) as mock_load:
            with pytest.raises(ConflictError) as exc_info:
                session_service.cancel_session(booked.id, student, "Busy")

        assert mock_load.call_count == settings.SESSION_UPDATE_MAX_RETRIES
        assert exc_info.value.status_code == 409


class TestQueries:
    def test_get_session_authorization(self, session_service, booked, student, admin, outsider):
        assert session_service.get_session(booked.id, student).id == booked.id
        assert session_service.get_session(booked.id, admin).id == booked.id
        with pytest.raises(AuthorizationError):
            session_service.get_session(booked.id, outsider)

    def test_get_session_not_found(self, session_service, student):
        with pytest.raises(NotFoundError):
            session_service.get_session(404, student)

    def test_user_sessions_by_role(self, session_service, booked, teacher, student):
        assert session_service.get_user_sessions(teacher.id, SessionRole.TEACHING).total_count == 1
        assert session_service.get_user_sessions(teacher.id, SessionRole.LEARNING).total_count == 0
        assert session_service.get_user_sessions(student.id).total_count == 1

    def test_upcoming_excludes_cancelled(self, session_service, booked, student):
        assert session_service.get_upcoming_sessions(student.id).total_count == 1

        session_service.cancel_session(booked.id, student, "No time")

        assert session_service.get_upcoming_sessions(student.id).total_count == 0
        cancelled = session_service.get_sessions_by_status(SessionStatusEnum.CANCELLED)
        assert [s.id for s in cancelled.sessions] == [booked.id]

    def test_paginated_total_count_covers_all_matches(
        self, session_service, offered_skill, student, teacher, fund, booking
    ):
        """limit/offset이 있어도 total_count는 조건에 맞는 전체 건수"""
        # Arrange
        fund(student.id, "60.00")
        for start_hours in (1, 3, 5):
            session_service.create_session(
                student.id, booking(offered_skill.id, start_hours=start_hours)
            )

        # Act
        page = session_service.get_user_sessions(student.id, limit=2, offset=0)
        teaching = session_service.get_user_sessions(
            teacher.id, SessionRole.TEACHING, limit=1, offset=2
        )
        pending = session_service.get_sessions_by_status(
            SessionStatusEnum.PENDING, limit=1
        )

        # Assert
        assert len(page.sessions) == 2
        assert page.total_count == 3
        assert len(teaching.sessions) == 1
        assert teaching.total_count == 3
        assert len(pending.sessions) == 1
        assert pending.total_count == 3
