"""
크레딧 API 라우터

사용자용 엔드포인트:
- GET /credits/balance: 내 잔액 요약 (잔액, 사용 가능 잔액, 에스크로)
- GET /credits/transactions: 내 거래 내역 (페이징)
- GET /credits/transactions/{id}: 거래 상세 (본인/관리자)
- GET /credits/sessions/{session_id}: 세션 관련 원장 항목 (당사자/관리자)
- GET /credits/pending: 내 에스크로 홀드
- POST /credits/transfer: 다른 사용자에게 이체

관리자용 엔드포인트:
- POST /credits/admin/bonus: 보너스 지급
- POST /credits/admin/deduct: 차감
- POST /credits/admin/adjust: 조정 (양수/음수)
- GET /credits/admin/balance/{user_id}: 사용자 잔액 조회
- GET /credits/admin/transactions/{user_id}: 사용자 거래 내역
"""

from typing import Any

from fastapi import APIRouter, Depends, Path, Query

from skillswap.core.auth_middleware import get_current_active_user, require_admin
from skillswap.core.exceptions import (
    AuthorizationError,
    InsufficientCreditsError,
    NotFoundError,
)
from skillswap.deps import get_credit_service, get_session_service
from skillswap.schemas.auth import BaseResponse
from skillswap.schemas.credit import (
    AdminCreditAdjustmentRequest,
    AdminCreditRequest,
    CreditTransferRequest,
)
from skillswap.schemas.user import User as UserSchema
from skillswap.services.credit_service import CreditService
from skillswap.services.session_service import SessionService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("/balance", response_model=BaseResponse)
def get_my_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    """
    내 크레딧 잔액 조회

    Returns:
        balance: COMPLETED 항목 합계
        available_balance: balance - pending_spent (새 예약에 쓸 수 있는 금액)
        pending_spent: 진행 중인 세션에 묶인 에스크로
    """
    summary = credit_service.get_balance_summary(current_user.id)
    return BaseResponse(success=True, data=summary.model_dump(mode="json"))


@router.get("/transactions", response_model=BaseResponse)
def get_my_transactions(
    limit: int = Query(50, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    history = credit_service.get_transaction_history(current_user.id, limit, offset)
    return BaseResponse(
        success=True,
        data=history.model_dump(mode="json"),
        meta={"limit": limit, "offset": offset},
    )


@router.get("/transactions/{transaction_id}", response_model=BaseResponse)
def get_transaction(
    transaction_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    transaction = credit_service.get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError(
            f"Transaction {transaction_id} not found",
            details={"transaction_id": transaction_id},
        )
    if transaction.user_id != current_user.id and not current_user.is_admin:
        raise AuthorizationError("You can only view your own transactions")
    return BaseResponse(success=True, data={"transaction": transaction.model_dump(mode="json")})


@router.get("/sessions/{session_id}", response_model=BaseResponse)
def get_session_transactions(
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    session_service: SessionService = Depends(get_session_service),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    # 당사자/관리자 확인 (아니면 403, 없으면 404)
    session_service.get_session(session_id, current_user)
    transactions = credit_service.get_transactions_by_session(session_id)
    return BaseResponse(
        success=True,
        data={
            "session_id": session_id,
            "transactions": [t.model_dump(mode="json") for t in transactions],
        },
    )


@router.get("/pending", response_model=BaseResponse)
def get_my_pending_holds(
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    """진행 중인 세션에 묶인 에스크로 홀드 목록"""
    holds = credit_service.get_pending_transactions(current_user.id)
    return BaseResponse(
        success=True,
        data={"transactions": [t.model_dump(mode="json") for t in holds]},
    )


@router.post("/transfer", response_model=BaseResponse)
def transfer_credits(
    request: CreditTransferRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    result = credit_service.transfer_between_users(
        current_user.id, request.to_user_id, request.amount, request.description
    )
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


# 관리자 전용 엔드포인트


@router.post("/admin/bonus", response_model=BaseResponse)
def admin_add_bonus(
    request: AdminCreditRequest,
    admin: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    logger.info(f"Admin {admin.id} granting bonus of {request.amount} to user {request.user_id}")
    transaction = credit_service.add_bonus(
        request.user_id, request.amount, f"Admin bonus by {admin.id}: {request.description}"
    )
    return BaseResponse(success=True, data={"transaction": transaction.model_dump(mode="json")})


@router.post("/admin/deduct", response_model=BaseResponse)
def admin_deduct(
    request: AdminCreditRequest,
    admin: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    logger.info(f"Admin {admin.id} deducting {request.amount} from user {request.user_id}")
    transaction = credit_service.deduct(
        request.user_id, request.amount, f"Admin deduction by {admin.id}: {request.description}"
    )
    return BaseResponse(success=True, data={"transaction": transaction.model_dump(mode="json")})


@router.post("/admin/adjust", response_model=BaseResponse)
def admin_adjust(
    request: AdminCreditAdjustmentRequest,
    admin: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    logger.info(f"Admin {admin.id} adjusting user {request.user_id} by {request.amount}")
    transaction = credit_service.adjust_balance(
        request.user_id, request.amount, f"Admin adjustment by {admin.id}: {request.description}"
    )
    if transaction is None:
        raise InsufficientCreditsError(
            "Adjustment would make the balance negative",
            details={"user_id": request.user_id, "amount": str(request.amount)},
        )
    return BaseResponse(success=True, data={"transaction": transaction.model_dump(mode="json")})


@router.get("/admin/balance/{user_id}", response_model=BaseResponse)
def admin_get_user_balance(
    user_id: int = Path(..., gt=0),
    _admin: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    summary = credit_service.get_balance_summary(user_id)
    return BaseResponse(success=True, data=summary.model_dump(mode="json"))


@router.get("/admin/transactions/{user_id}", response_model=BaseResponse)
def admin_get_user_transactions(
    user_id: int = Path(..., gt=0),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: UserSchema = Depends(require_admin),
    credit_service: CreditService = Depends(get_credit_service),
) -> Any:
    history = credit_service.get_transaction_history(user_id, limit, offset)
    return BaseResponse(
        success=True,
        data=history.model_dump(mode="json"),
        meta={"limit": limit, "offset": offset},
    )
