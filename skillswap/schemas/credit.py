from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from skillswap.models.credit import TransactionStatusEnum, TransactionTypeEnum
from skillswap.utils.clock import ensure_utc


class CreditTransactionResponse(BaseModel):
    """크레딧 원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    user_id: int = Field(..., description="사용자 ID")
    transaction_type: TransactionTypeEnum = Field(..., description="거래 유형")
    amount: Decimal = Field(..., description="부호 있는 변동량")
    balance_after: Decimal = Field(..., description="기록 직후 사용 가능 잔액")
    description: Optional[str] = Field(None, description="거래 설명")
    session_id: Optional[int] = Field(None, description="관련 세션 ID")
    related_transaction_id: Optional[int] = Field(None, description="연결된 거래 ID")
    status: TransactionStatusEnum = Field(..., description="거래 상태")
    ref_id: Optional[str] = Field(None, description="참조 ID")
    processed_at: Optional[datetime] = Field(None, description="처리 시간")
    created_at: Optional[datetime] = Field(None, description="생성 시간")

    class Config:
        from_attributes = True

    @field_validator("processed_at", "created_at")
    @classmethod
    def normalize_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class CreditBalanceResponse(BaseModel):
    """크레딧 잔액 요약"""

    user_id: int
    balance: Decimal = Field(..., description="COMPLETED 항목 합계")
    available_balance: Decimal = Field(..., description="잔액 - 에스크로")
    pending_spent: Decimal = Field(..., description="에스크로로 묶인 크레딧")
    total_earned: Decimal = Field(Decimal("0"), description="수업으로 번 크레딧 합계")
    total_spent: Decimal = Field(Decimal("0"), description="수강에 사용한 크레딧 합계")


class CreditHistoryResponse(BaseModel):
    """크레딧 거래 내역 조회 응답"""

    balance: Decimal = Field(..., description="현재 잔액")
    available_balance: Decimal = Field(..., description="사용 가능 잔액")
    transactions: List[CreditTransactionResponse] = Field(..., description="거래 목록 (최신순)")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class CreditTransferRequest(BaseModel):
    """사용자 간 크레딧 이체 요청"""

    to_user_id: int = Field(..., gt=0, description="받는 사용자 ID")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="이체 금액")
    description: Optional[str] = Field(None, max_length=200, description="메모")


class CreditTransferResponse(BaseModel):
    outgoing: CreditTransactionResponse
    incoming: CreditTransactionResponse


class AdminCreditRequest(BaseModel):
    """관리자 보너스 지급 / 차감 요청"""

    user_id: int = Field(..., gt=0, description="사용자 ID")
    amount: Decimal = Field(..., gt=0, decimal_places=2, description="금액")
    description: str = Field(..., min_length=1, max_length=255, description="사유")


class AdminCreditAdjustmentRequest(BaseModel):
    """관리자 크레딧 조정 요청"""

    user_id: int = Field(..., gt=0, description="사용자 ID")
    amount: Decimal = Field(
        ..., decimal_places=2, description="조정 금액 (양수: 추가, 음수: 차감)"
    )
    description: str = Field(..., min_length=1, max_length=255, description="조정 사유")

    @field_validator("amount")
    @classmethod
    def amount_not_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("Adjustment amount must not be zero")
        return v
