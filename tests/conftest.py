import os

# 앱 모듈 import 전에 설정 (기본 postgres 엔진 대신 sqlite)
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from skillswap.config import Settings
from skillswap.models.base import Base
from skillswap.models import credit, session, skill  # noqa: F401
from skillswap.models.skill import Skill, SkillLevelEnum, SkillTypeEnum, UserSkill
from skillswap.models.user import User, UserRole
from skillswap.schemas.session import SessionCreateRequest
from skillswap.schemas.user import User as UserSchema
from skillswap.services.credit_service import CreditService
from skillswap.services.session_service import SessionService
from skillswap.utils.clock import Clock

NOW = datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)


class FixedClock(Clock):
    """테스트용 고정 시계"""

    def __init__(self, now: datetime = NOW):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def db():
    """테스트마다 새로 만드는 in-memory sqlite 세션"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return Settings(SQS_NOTIFICATION_QUEUE="", SQS_EMAIL_QUEUE="")


@pytest.fixture
def dispatcher():
    return Mock()


@pytest.fixture
def credit_service(db, settings, clock):
    return CreditService(db, settings=settings, clock=clock)


@pytest.fixture
def session_service(db, settings, clock, dispatcher):
    return SessionService(db, settings=settings, clock=clock, dispatcher=dispatcher)


@pytest.fixture
def make_user(db):
    def _make(nickname: str, role: UserRole = UserRole.USER, is_active: bool = True) -> UserSchema:
        user = User(
            email=f"{nickname}@example.com",
            nickname=nickname,
            role=role.value,
            is_active=is_active,
        )
        db.add(user)
        db.commit()
        return UserSchema.model_validate(user)

    return _make


@pytest.fixture
def teacher(make_user):
    return make_user("teacher")


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def outsider(make_user):
    return make_user("outsider")


@pytest.fixture
def admin(make_user):
    return make_user("admin", role=UserRole.ADMIN)


@pytest.fixture
def make_user_skill(db):
    def _make(
        owner_id: int,
        credits_per_hour: Decimal = Decimal("20.00"),
        skill_type: SkillTypeEnum = SkillTypeEnum.OFFERED,
        is_available: bool = True,
    ) -> UserSkill:
        catalog = Skill(name="Python", category="Programming")
        db.add(catalog)
        db.flush()
        user_skill = UserSkill(
            user_id=owner_id,
            skill_id=catalog.id,
            skill_type=skill_type,
            level=SkillLevelEnum.EXPERT,
            credits_per_hour=credits_per_hour,
            is_available=is_available,
        )
        db.add(user_skill)
        db.commit()
        return user_skill

    return _make


@pytest.fixture
def offered_skill(make_user_skill, teacher):
    """시간당 20 크레딧 OFFERED 스킬"""
    return make_user_skill(teacher.id)


@pytest.fixture
def fund(credit_service):
    def _fund(user_id: int, amount: str) -> None:
        credit_service.add_bonus(user_id, Decimal(amount), "Test funding")

    return _fund


@pytest.fixture
def booking():
    """NOW 기준 start_hours 뒤에 시작하는 예약 요청 생성기"""

    def _booking(user_skill_id: int, start_hours: float = 1, duration_hours: float = 1, **kwargs):
        start = NOW + timedelta(hours=start_hours)
        return SessionCreateRequest(
            user_skill_id=user_skill_id,
            scheduled_start=start,
            scheduled_end=start + timedelta(hours=duration_hours),
            **kwargs,
        )

    return _booking
