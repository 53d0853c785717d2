"""
크레딧 원장 데이터 모델

사용자 크레딧의 모든 변동을 기록하는 원장(Ledger) 테이블을 정의합니다.
잔액은 별도 컬럼에 저장하지 않고 항상 이 테이블의 합계로 계산합니다.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from skillswap.models.base import BaseModel, BigIntPK


class TransactionTypeEnum(enum.Enum):
    EARNED = "EARNED"  # 수업을 진행하고 받은 크레딧
    SPENT = "SPENT"  # 수업 수강에 사용한 크레딧 (PENDING 상태면 에스크로)
    TRANSFER = "TRANSFER"  # 사용자 간 직접 이체
    BONUS = "BONUS"  # 가입/추천 보너스
    REFUND = "REFUND"  # 취소/일정 변경으로 돌려받은 크레딧
    ADJUSTMENT = "ADJUSTMENT"  # 관리자 조정


class TransactionStatusEnum(enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CreditTransaction(BaseModel):
    """
    크레딧 원장 테이블 - 모든 크레딧 거래 내역을 저장

    이 테이블은 다음 원칙을 따릅니다:
    1. 불변성(Immutable): 에스크로 홀드의 status/processed_at 전환을 제외하면 수정하지 않음
    2. 부호 있는 금액(Signed): 증가는 양수, 감소는 음수
    3. 멱등성(Idempotent): ref_id 유니크 제약으로 중복 지급 방지
    4. 잔액 파생(Derived): 잔액 = COMPLETED 항목 amount 합계

    balance_after는 기록 시점의 사용 가능 잔액 스냅샷일 뿐 권위 있는 값이 아닙니다.
    """

    __tablename__ = "credit_transactions"
    __table_args__ = (
        UniqueConstraint("ref_id", name="uq_credit_transactions_ref_id"),
        Index("idx_credit_tx_user_status", "user_id", "status"),
        Index("idx_credit_tx_session", "session_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # 사용자 ID - users 테이블과의 외래키 관계
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    transaction_type: Mapped[TransactionTypeEnum] = mapped_column(
        Enum(TransactionTypeEnum), nullable=False
    )

    # 크레딧 변동량 - 양수면 증가, 음수면 감소
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # 기록 직후 사용 가능 잔액 스냅샷 (참고용)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # 세션 관련 거래인 경우 세션 ID
    session_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("sessions.id"), nullable=True
    )

    # 환불/지급/이체 쌍을 잇는 상대 거래 ID
    related_transaction_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("credit_transactions.id"), nullable=True
    )

    status: Mapped[TransactionStatusEnum] = mapped_column(
        Enum(TransactionStatusEnum),
        nullable=False,
        default=TransactionStatusEnum.PENDING,
    )

    # 참조 ID - 중복 처리 방지용 고유 식별자 (NULL 허용, NULL끼리는 중복 가능)
    # 형식 예시: "session:12:earned", "transfer:3:7:1700000000.0"
    ref_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"type={self.transaction_type.value}, amount={self.amount}, "
            f"status={self.status.value})>"
        )
