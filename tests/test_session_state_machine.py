from datetime import timedelta
from decimal import Decimal

import pytest

from skillswap.config import Settings
from skillswap.core.exceptions import AuthorizationError, InvalidStateError, ValidationError
from skillswap.models.session import Session, SessionStatusEnum
from skillswap.models.skill import SkillTypeEnum, UserSkill
from skillswap.models.user import UserRole
from skillswap.schemas.session import SessionCreateRequest
from skillswap.schemas.user import User as UserSchema
from skillswap.services.session_state_machine import SessionStateMachine

from conftest import NOW, FixedClock

TEACHER = UserSchema(id=1, email="teacher@example.com", nickname="teacher")
STUDENT = UserSchema(id=2, email="student@example.com", nickname="student")
OUTSIDER = UserSchema(id=3, email="outsider@example.com", nickname="outsider")
ADMIN = UserSchema(id=9, email="admin@example.com", nickname="admin", role=UserRole.ADMIN)


@pytest.fixture
def machine():
    return SessionStateMachine(FixedClock(), Settings(MAX_SESSION_HOURS=8))


@pytest.fixture
def user_skill():
    return UserSkill(
        id=10,
        user_id=TEACHER.id,
        skill_id=1,
        skill_type=SkillTypeEnum.OFFERED,
        credits_per_hour=Decimal("15.00"),
        is_available=True,
    )


def _request(start_hours=1, duration_hours=1.0, **kwargs):
    start = NOW + timedelta(hours=start_hours)
    return SessionCreateRequest(
        user_skill_id=10,
        scheduled_start=start,
        scheduled_end=start + timedelta(hours=duration_hours),
        **kwargs,
    )


def _session(status=SessionStatusEnum.PENDING, **kwargs):
    fields = dict(
        id=100,
        teacher_id=TEACHER.id,
        student_id=STUDENT.id,
        user_skill_id=10,
        scheduled_start=NOW + timedelta(hours=1),
        scheduled_end=NOW + timedelta(hours=2),
        credits_cost=Decimal("15.00"),
        status=status,
        teacher_confirmed=False,
        student_confirmed=False,
    )
    fields.update(kwargs)
    return Session(**fields)


class TestCreate:
    def test_creates_pending_session_with_cost(self, machine, user_skill):
        """시간 * 시간당 크레딧으로 비용 계산"""
        session = machine.create(STUDENT.id, user_skill, _request(duration_hours=1.5))

        assert session.status == SessionStatusEnum.PENDING
        assert session.teacher_id == TEACHER.id
        assert session.student_id == STUDENT.id
        assert session.credits_cost == Decimal("22.50")
        assert session.teacher_confirmed is False
        assert session.student_confirmed is False

    def test_cost_is_rounded_half_up(self, machine, user_skill):
        user_skill.credits_per_hour = Decimal("10.00")

        # 20분 = 3.333... 크레딧
        session = machine.create(STUDENT.id, user_skill, _request(duration_hours=1 / 3))

        assert session.credits_cost == Decimal("3.33")

    def test_rejects_self_booking(self, machine, user_skill):
        with pytest.raises(ValidationError):
            machine.create(TEACHER.id, user_skill, _request())

    def test_rejects_requested_skill(self, machine, user_skill):
        user_skill.skill_type = SkillTypeEnum.REQUESTED

        with pytest.raises(ValidationError):
            machine.create(STUDENT.id, user_skill, _request())

    def test_rejects_unavailable_skill(self, machine, user_skill):
        user_skill.is_available = False

        with pytest.raises(ValidationError):
            machine.create(STUDENT.id, user_skill, _request())

    def test_rejects_mismatched_teacher(self, machine, user_skill):
        with pytest.raises(ValidationError):
            machine.create(STUDENT.id, user_skill, _request(teacher_id=OUTSIDER.id))

    def test_rejects_too_long_session(self, machine, user_skill):
        with pytest.raises(ValidationError):
            machine.create(STUDENT.id, user_skill, _request(duration_hours=9))

    def test_naive_times_are_utc(self, machine, user_skill):
        start = (NOW + timedelta(hours=1)).replace(tzinfo=None)
        request = SessionCreateRequest(
            user_skill_id=10, scheduled_start=start, scheduled_end=start + timedelta(hours=1)
        )

        session = machine.create(STUDENT.id, user_skill, request)

        assert session.scheduled_start == NOW + timedelta(hours=1)


class TestConfirm:
    def test_only_both_flags_confirm(self, machine):
        session = _session()

        assert machine.confirm(session, STUDENT, True) is False
        assert session.status == SessionStatusEnum.PENDING
        assert session.confirmed_at is None

        assert machine.confirm(session, TEACHER, True) is True
        assert session.status == SessionStatusEnum.CONFIRMED
        assert session.confirmed_at == NOW

    def test_decline_resets_flag(self, machine):
        session = _session(teacher_confirmed=True)

        assert machine.confirm(session, TEACHER, False) is False
        assert session.teacher_confirmed is False

    def test_rejects_non_participants(self, machine):
        session = _session()

        for caller in (OUTSIDER, ADMIN):
            with pytest.raises(AuthorizationError):
                machine.confirm(session, caller, True)


class TestGuards:
    @pytest.mark.parametrize(
        "status",
        [SessionStatusEnum.COMPLETED, SessionStatusEnum.CANCELLED, SessionStatusEnum.IN_PROGRESS],
    )
    def test_cancel_only_while_mutable(self, machine, status):
        session = _session(status=status)

        with pytest.raises(InvalidStateError) as exc_info:
            machine.cancel(session, STUDENT, "reason")

        assert exc_info.value.details["current_status"] == status.value
        assert exc_info.value.details["allowed_statuses"] == ["PENDING", "CONFIRMED"]
        assert session.status == status

    def test_cancel_returns_refund_amount(self, machine):
        session = _session(status=SessionStatusEnum.CONFIRMED)

        refund = machine.cancel(session, ADMIN, "  Teacher unavailable ")

        assert refund == Decimal("15.00")
        assert session.status == SessionStatusEnum.CANCELLED
        assert session.cancellation_reason == "Teacher unavailable"
        assert session.cancelled_at == NOW

    def test_reschedule_returns_delta(self, machine):
        session = _session()
        start = NOW + timedelta(hours=3)

        delta = machine.reschedule(
            session, STUDENT, start, start + timedelta(hours=2), Decimal("15.00")
        )

        assert delta == Decimal("15.00")
        assert session.credits_cost == Decimal("30.00")
        assert session.scheduled_start == start
        assert session.status == SessionStatusEnum.PENDING

    def test_reschedule_rejected_for_outsider(self, machine):
        session = _session()
        start = NOW + timedelta(hours=3)

        with pytest.raises(AuthorizationError):
            machine.reschedule(session, OUTSIDER, start, start + timedelta(hours=1), Decimal("1"))

    def test_start_sets_actual_start(self, machine):
        session = _session(status=SessionStatusEnum.CONFIRMED)

        machine.start(session, TEACHER)

        assert session.status == SessionStatusEnum.IN_PROGRESS
        assert session.actual_start == NOW

    def test_complete_is_idempotent(self, machine):
        session = _session(status=SessionStatusEnum.CONFIRMED)

        assert machine.complete(session, TEACHER) is True
        assert session.actual_end == NOW
        assert session.actual_start == NOW + timedelta(hours=1)
        assert machine.complete(session, STUDENT) is False

    def test_dispute_requires_completed_and_reason(self, machine):
        with pytest.raises(InvalidStateError):
            machine.dispute(_session(status=SessionStatusEnum.CONFIRMED), STUDENT, "bad")

        session = _session(status=SessionStatusEnum.COMPLETED)
        with pytest.raises(ValidationError):
            machine.dispute(session, STUDENT, "")

        machine.dispute(session, STUDENT, "No show")
        assert session.status == SessionStatusEnum.DISPUTED
