"""
크레딧 원장 리포지토리 - 데이터베이스 접근 및 원장 비즈니스 로직

이 파일은 크레딧 시스템의 핵심 원장 로직을 담당합니다:
1. 잔액 계산 (COMPLETED 항목 합계) 및 사용 가능 잔액 (잔액 - 에스크로)
2. 에스크로 홀드 / 지급(transfer) / 환불(refund)
3. 관리자 조정, 보너스, 차감, 사용자 간 이체
4. 거래 내역 조회

핵심 특징:
- 잔액 컬럼은 존재하지 않으며 항상 원장 합계로 계산됩니다
- 잔액에 영향을 주는 기록은 사용자 행 잠금 아래에서 잔액을 재확인합니다
- 잔액 부족은 예외가 아닌 None 반환으로 보고됩니다
- 세션 지급은 ref_id 유니크 제약으로 중복 지급이 방지됩니다
- commit 하지 않습니다 (flush만 수행, 트랜잭션은 서비스가 소유)
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import asc, desc, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from skillswap.core.exceptions import SettlementError
from skillswap.models.credit import CreditTransaction as CreditTransactionModel
from skillswap.models.credit import TransactionStatusEnum, TransactionTypeEnum
from skillswap.repositories.base import BaseRepository
from skillswap.repositories.user_repository import UserRepository
from skillswap.schemas.credit import CreditTransactionResponse
from skillswap.utils.credits import quantize_credits

COMPLETED = TransactionStatusEnum.COMPLETED
PENDING = TransactionStatusEnum.PENDING
CANCELLED = TransactionStatusEnum.CANCELLED


def earned_ref_id(session_id: int) -> str:
    return f"session:{session_id}:earned"


class CreditRepository(
    BaseRepository[CreditTransactionModel, CreditTransactionResponse]
):
    """
    크레딧 원장 리포지토리

    금액 부호 규칙:
    - EARNED / BONUS / REFUND / TRANSFER(받는 쪽): 양수
    - SPENT / TRANSFER(보내는 쪽): 음수
    - ADJUSTMENT: 조정 방향에 따라 양수 또는 음수
    """

    def __init__(self, db: Session):
        super().__init__(CreditTransactionModel, CreditTransactionResponse, db)
        self.users = UserRepository(db)

    # ------------------------------------------------------------------
    # 잔액 계산
    # ------------------------------------------------------------------

    def _sum_amount(self, *criteria) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(self.model_class.amount), 0))
            .filter(*criteria)
            .scalar()
        )
        return quantize_credits(total)

    def get_balance(self, user_id: int) -> Decimal:
        """COMPLETED 항목의 부호 있는 금액 합계"""
        return self._sum_amount(
            self.model_class.user_id == user_id,
            self.model_class.status == COMPLETED,
        )

    def get_pending_spent(self, user_id: int) -> Decimal:
        """에스크로(PENDING SPENT) 합계, 양수로 반환"""
        return -self._sum_amount(
            self.model_class.user_id == user_id,
            self.model_class.transaction_type == TransactionTypeEnum.SPENT,
            self.model_class.status == PENDING,
        )

    def get_available_balance(self, user_id: int) -> Decimal:
        return self.get_balance(user_id) - self.get_pending_spent(user_id)

    def get_total_by_type(
        self, user_id: int, transaction_type: TransactionTypeEnum
    ) -> Decimal:
        """특정 유형의 COMPLETED 항목 합계 (부호 유지)"""
        return self._sum_amount(
            self.model_class.user_id == user_id,
            self.model_class.transaction_type == transaction_type,
            self.model_class.status == COMPLETED,
        )

    def get_session_total(
        self,
        session_id: int,
        transaction_type: TransactionTypeEnum,
        status: TransactionStatusEnum,
        user_id: Optional[int] = None,
    ) -> Decimal:
        criteria = [
            self.model_class.session_id == session_id,
            self.model_class.transaction_type == transaction_type,
            self.model_class.status == status,
        ]
        if user_id is not None:
            criteria.append(self.model_class.user_id == user_id)
        return self._sum_amount(*criteria)

    # ------------------------------------------------------------------
    # 기록
    # ------------------------------------------------------------------

    def _insert(
        self,
        user_id: int,
        transaction_type: TransactionTypeEnum,
        amount: Decimal,
        status: TransactionStatusEnum,
        description: Optional[str] = None,
        session_id: Optional[int] = None,
        related_transaction_id: Optional[int] = None,
        ref_id: Optional[str] = None,
        processed_at: Optional[datetime] = None,
    ) -> CreditTransactionModel:
        """
        원장 항목 추가

        balance_after는 기록 직전 사용 가능 잔액에 amount를 더한 스냅샷입니다.
        PENDING 항목은 SPENT(홀드)뿐이므로 모든 항목이 사용 가능 잔액에 amount만큼 반영됩니다.
        """
        amount = quantize_credits(amount)
        balance_after = self.get_available_balance(user_id) + amount

        entry = self.model_class(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_after=balance_after,
            description=description,
            session_id=session_id,
            related_transaction_id=related_transaction_id,
            status=status,
            ref_id=ref_id,
            processed_at=processed_at,
        )
        return self.add(entry)

    def hold(
        self, user_id: int, amount: Decimal, session_id: int, description: str
    ) -> Optional[CreditTransactionModel]:
        """
        에스크로 홀드 - PENDING SPENT 항목 생성

        사용자 행을 잠근 뒤 사용 가능 잔액을 재확인하므로 같은 사용자의
        동시 예약이 둘 다 성공할 수 없습니다. 잔액이 부족하면 None을 반환합니다.
        """
        amount = quantize_credits(amount)
        if amount < 0:
            raise ValueError("Hold amount must not be negative")

        self.users.lock_user(user_id)
        if self.get_available_balance(user_id) < amount:
            return None

        return self._insert(
            user_id,
            TransactionTypeEnum.SPENT,
            -amount,
            PENDING,
            description=description,
            session_id=session_id,
        )

    def get_session_holds(
        self, user_id: int, session_id: int
    ) -> List[CreditTransactionModel]:
        """세션에 걸린 사용자의 PENDING SPENT 항목 (최신순, 행 잠금)"""
        return (
            self.db.query(self.model_class)
            .filter(
                self.model_class.user_id == user_id,
                self.model_class.session_id == session_id,
                self.model_class.transaction_type == TransactionTypeEnum.SPENT,
                self.model_class.status == PENDING,
            )
            .order_by(desc(self.model_class.id))
            .with_for_update()
            .all()
        )

    def find_earned(
        self, user_id: int, session_id: int
    ) -> Optional[CreditTransactionModel]:
        return (
            self.db.query(self.model_class)
            .filter(
                self.model_class.user_id == user_id,
                self.model_class.session_id == session_id,
                self.model_class.transaction_type == TransactionTypeEnum.EARNED,
                self.model_class.status == COMPLETED,
            )
            .first()
        )

    def find_by_ref_id(self, ref_id: str) -> Optional[CreditTransactionModel]:
        return (
            self.db.query(self.model_class)
            .filter(self.model_class.ref_id == ref_id)
            .first()
        )

    def transfer(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        session_id: int,
        description: str,
        now: datetime,
    ) -> CreditTransactionModel:
        """
        세션 지급 - 학생의 홀드를 확정(COMPLETED)하고 교사에게 EARNED 기록

        멱등성:
        - 교사의 COMPLETED EARNED 항목이 이미 있으면 그대로 반환
        - 동시 지급으로 ref_id 유니크 제약 위반 시 롤백 후 기존 항목 반환

        Raises:
            SettlementError: 홀드가 없거나 홀드 합계가 amount와 다를 때
        """
        amount = quantize_credits(amount)

        # 학생 행 잠금으로 같은 세션의 동시 지급을 직렬화
        self.users.lock_user(from_user_id)

        existing = self.find_earned(to_user_id, session_id)
        if existing:
            return existing

        holds = self.get_session_holds(from_user_id, session_id)
        if not holds:
            raise SettlementError(
                f"No escrow hold found for session {session_id}", session_id
            )

        held = sum((-hold.amount for hold in holds), Decimal("0"))
        if quantize_credits(held) != amount:
            raise SettlementError(
                f"Escrow for session {session_id} is {held}, expected {amount}",
                session_id,
            )

        for hold in holds:
            hold.status = COMPLETED
            hold.processed_at = now
        self.db.flush()

        ref_id = earned_ref_id(session_id)
        try:
            return self._insert(
                to_user_id,
                TransactionTypeEnum.EARNED,
                amount,
                COMPLETED,
                description=description,
                session_id=session_id,
                related_transaction_id=holds[0].id,
                ref_id=ref_id,
                processed_at=now,
            )
        except IntegrityError as e:
            self.db.rollback()
            if "ref_id" in str(e):
                existing = self.find_by_ref_id(ref_id)
                if existing:
                    return existing
            raise

    def refund(
        self,
        user_id: int,
        amount: Decimal,
        session_id: int,
        description: str,
        now: datetime,
    ) -> CreditTransactionModel:
        """
        에스크로 환불 - 세션 홀드에서 amount만큼 해제

        처리 방식:
        1. 해제되는 홀드는 확정(COMPLETED) 처리되어 잔액에서 빠지고
        2. 같은 금액의 COMPLETED REFUND 항목이 이를 되돌립니다
        3. 홀드 일부만 해제되면 기존 홀드는 CANCELLED 처리되고
           해제분(COMPLETED SPENT)과 잔여분(PENDING SPENT)으로 대체됩니다

        결과적으로 잔액은 그대로, 사용 가능 잔액은 정확히 amount만큼 증가합니다.

        Raises:
            SettlementError: 에스크로가 amount보다 적을 때
        """
        amount = quantize_credits(amount)
        if amount < 0:
            raise ValueError("Refund amount must not be negative")

        self.users.lock_user(user_id)
        holds = self.get_session_holds(user_id, session_id)
        held = quantize_credits(sum((-hold.amount for hold in holds), Decimal("0")))
        if not holds or held < amount:
            raise SettlementError(
                f"Escrow for session {session_id} is {held}, cannot refund {amount}",
                session_id,
            )

        remaining = amount
        last_released = holds[0]
        # 최신 홀드(일정 변경으로 추가된 홀드)부터 해제
        for hold in holds:
            hold_amount = -hold.amount
            if hold_amount <= remaining:
                hold.status = COMPLETED
                hold.processed_at = now
                remaining -= hold_amount
                last_released = hold
            elif remaining > 0:
                hold.status = CANCELLED
                hold.processed_at = now
                self.db.flush()
                self._insert(
                    user_id,
                    TransactionTypeEnum.SPENT,
                    -remaining,
                    COMPLETED,
                    description=f"Released part of hold #{hold.id}",
                    session_id=session_id,
                    related_transaction_id=hold.id,
                    processed_at=now,
                )
                self._insert(
                    user_id,
                    TransactionTypeEnum.SPENT,
                    -(hold_amount - remaining),
                    PENDING,
                    description=hold.description,
                    session_id=session_id,
                    related_transaction_id=hold.id,
                )
                remaining = Decimal("0")
                last_released = hold
            else:
                break
        self.db.flush()

        return self._insert(
            user_id,
            TransactionTypeEnum.REFUND,
            amount,
            COMPLETED,
            description=description,
            session_id=session_id,
            related_transaction_id=last_released.id,
            processed_at=now,
        )

    def adjust_balance(
        self, user_id: int, amount: Decimal, description: str, now: datetime
    ) -> Optional[CreditTransactionModel]:
        """관리자 조정 - 결과 잔액이 음수가 되면 None"""
        self.users.lock_user(user_id)
        if self.get_balance(user_id) + quantize_credits(amount) < 0:
            return None
        return self._insert(
            user_id,
            TransactionTypeEnum.ADJUSTMENT,
            amount,
            COMPLETED,
            description=description,
            processed_at=now,
        )

    def add_bonus(
        self,
        user_id: int,
        amount: Decimal,
        description: str,
        now: datetime,
        ref_id: Optional[str] = None,
    ) -> CreditTransactionModel:
        """
        보너스 지급 (ref_id가 주어지면 중복 지급 방지)

        ref_id 조회는 사용자 잠금 이후에 수행합니다. 잠금을 우회한 중복 삽입은
        ref_id 유니크 제약에서 걸러 기존 항목을 반환합니다.
        """
        self.users.lock_user(user_id)
        if ref_id:
            existing = self.find_by_ref_id(ref_id)
            if existing:
                return existing
        try:
            return self._insert(
                user_id,
                TransactionTypeEnum.BONUS,
                amount,
                COMPLETED,
                description=description,
                ref_id=ref_id,
                processed_at=now,
            )
        except IntegrityError as e:
            self.db.rollback()
            if ref_id and "ref_id" in str(e):
                existing = self.find_by_ref_id(ref_id)
                if existing:
                    return existing
            raise

    def deduct(
        self, user_id: int, amount: Decimal, description: str, now: datetime
    ) -> Optional[CreditTransactionModel]:
        """차감 - 잔액이 amount보다 적으면 None"""
        amount = quantize_credits(amount)
        self.users.lock_user(user_id)
        if self.get_balance(user_id) < amount:
            return None
        return self._insert(
            user_id,
            TransactionTypeEnum.ADJUSTMENT,
            -amount,
            COMPLETED,
            description=description,
            processed_at=now,
        )

    def transfer_between_users(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        description: str,
        now: datetime,
    ) -> Optional[Tuple[CreditTransactionModel, CreditTransactionModel]]:
        """
        사용자 간 직접 이체 - 보내는 쪽 사용 가능 잔액 기준

        교착 방지를 위해 사용자 ID 오름차순으로 잠급니다.
        잔액이 부족하면 None을 반환합니다.
        """
        amount = quantize_credits(amount)
        for user_id in sorted((from_user_id, to_user_id)):
            self.users.lock_user(user_id)

        if self.get_available_balance(from_user_id) < amount:
            return None

        outgoing = self._insert(
            from_user_id,
            TransactionTypeEnum.TRANSFER,
            -amount,
            COMPLETED,
            description=description,
            processed_at=now,
        )
        incoming = self._insert(
            to_user_id,
            TransactionTypeEnum.TRANSFER,
            amount,
            COMPLETED,
            description=description,
            related_transaction_id=outgoing.id,
            processed_at=now,
        )
        outgoing.related_transaction_id = incoming.id
        self.db.flush()
        return outgoing, incoming

    # ------------------------------------------------------------------
    # 조회
    # ------------------------------------------------------------------

    def get_history(
        self, user_id: int, limit: int = 50, offset: int = 0
    ) -> Tuple[List[CreditTransactionResponse], int]:
        """사용자 거래 내역 (최신순, 페이징) 및 전체 건수"""
        total_count = self.count({"user_id": user_id})
        rows = (
            self.db.query(self.model_class)
            .filter(self.model_class.user_id == user_id)
            .order_by(desc(self.model_class.id))
            .limit(limit)
            .offset(offset)
            .all()
        )
        return self._to_schemas(rows), total_count

    def get_by_session(self, session_id: int) -> List[CreditTransactionResponse]:
        rows = (
            self.db.query(self.model_class)
            .filter(self.model_class.session_id == session_id)
            .order_by(asc(self.model_class.id))
            .all()
        )
        return self._to_schemas(rows)

    def get_pending(self, user_id: int) -> List[CreditTransactionResponse]:
        rows = (
            self.db.query(self.model_class)
            .filter(
                self.model_class.user_id == user_id,
                self.model_class.status == PENDING,
            )
            .order_by(asc(self.model_class.id))
            .all()
        )
        return self._to_schemas(rows)
