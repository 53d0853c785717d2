from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, asc, desc, exists, or_
from sqlalchemy.orm import Query, Session

from skillswap.models.credit import (
    CreditTransaction,
    TransactionStatusEnum,
    TransactionTypeEnum,
)
from skillswap.models.session import Session as SessionModel
from skillswap.models.session import SessionStatusEnum
from skillswap.repositories.base import BaseRepository
from skillswap.schemas.session import SessionResponse, SessionRole


class SessionRepository(BaseRepository[SessionModel, SessionResponse]):
    """세션 저장소 - 세션은 물리적으로 삭제하지 않음"""

    def __init__(self, db: Session):
        super().__init__(SessionModel, SessionResponse, db)

    def get_for_update(self, session_id: int) -> Optional[SessionModel]:
        """
        세션 행 잠금 조회

        populate_existing으로 identity map의 오래된 값(특히 version)을 덮어써
        재시도 시 최신 상태에서 전이를 다시 계산합니다.
        """
        return self.get_model(session_id, for_update=True)

    def _for_user(self, user_id: int, role: SessionRole) -> Query:
        query = self.db.query(self.model_class)
        if role == SessionRole.TEACHING:
            query = query.filter(self.model_class.teacher_id == user_id)
        elif role == SessionRole.LEARNING:
            query = query.filter(self.model_class.student_id == user_id)
        else:
            query = query.filter(
                or_(
                    self.model_class.teacher_id == user_id,
                    self.model_class.student_id == user_id,
                )
            )
        return query

    def find_for_user(
        self,
        user_id: int,
        role: SessionRole = SessionRole.ALL,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[SessionResponse]:
        query = self._for_user(user_id, role)
        query = query.order_by(desc(self.model_class.scheduled_start)).offset(offset)
        if limit:
            query = query.limit(limit)
        return self._to_schemas(query.all())

    def count_for_user(self, user_id: int, role: SessionRole = SessionRole.ALL) -> int:
        return self._for_user(user_id, role).count()

    def find_upcoming(self, user_id: int, now: datetime) -> List[SessionResponse]:
        """앞으로 시작할 PENDING/CONFIRMED 세션 (시작 시각 오름차순)"""
        rows = (
            self.db.query(self.model_class)
            .filter(
                or_(
                    self.model_class.teacher_id == user_id,
                    self.model_class.student_id == user_id,
                ),
                self.model_class.status.in_(
                    [SessionStatusEnum.PENDING, SessionStatusEnum.CONFIRMED]
                ),
                self.model_class.scheduled_start > now,
            )
            .order_by(asc(self.model_class.scheduled_start))
            .all()
        )
        return self._to_schemas(rows)

    def find_by_status(
        self, status: SessionStatusEnum, limit: Optional[int] = None, offset: int = 0
    ) -> List[SessionResponse]:
        query = (
            self.db.query(self.model_class)
            .filter(self.model_class.status == status)
            .order_by(asc(self.model_class.scheduled_start))
            .offset(offset)
        )
        if limit:
            query = query.limit(limit)
        return self._to_schemas(query.all())

    def find_unsettled(self) -> List[SessionResponse]:
        """COMPLETED 상태인데 교사의 EARNED 항목이 없는 세션 (지급 재시도 대상)"""
        earned_exists = exists().where(
            and_(
                CreditTransaction.session_id == self.model_class.id,
                CreditTransaction.user_id == self.model_class.teacher_id,
                CreditTransaction.transaction_type == TransactionTypeEnum.EARNED,
                CreditTransaction.status == TransactionStatusEnum.COMPLETED,
            )
        )
        rows = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.status == SessionStatusEnum.COMPLETED,
                ~earned_exists,
            )
            .order_by(asc(self.model_class.actual_end))
            .all()
        )
        return self._to_schemas(rows)
