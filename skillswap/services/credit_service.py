from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from skillswap.config import Settings, settings as default_settings
from skillswap.core.exceptions import (
    BaseAPIException,
    InsufficientCreditsError,
    InternalServerError,
    NotFoundError,
    ValidationError,
)
from skillswap.models.credit import TransactionTypeEnum
from skillswap.repositories.credit_repository import CreditRepository
from skillswap.repositories.user_repository import UserRepository
from skillswap.schemas.credit import (
    CreditBalanceResponse,
    CreditHistoryResponse,
    CreditTransactionResponse,
    CreditTransferResponse,
)
from skillswap.utils.clock import Clock, SystemClock
from skillswap.utils.credits import quantize_credits
import logging

logger = logging.getLogger(__name__)


class CreditService:
    """
    크레딧 원장 서비스

    hold / transfer / refund 는 호출자의 트랜잭션 안에서 실행되며 commit 하지 않습니다
    (세션 전이와 같은 단위로 커밋되어야 함). 관리자/이체 작업은 단독으로 호출되므로
    기본적으로 직접 커밋합니다.
    """

    def __init__(
        self,
        db: Session,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.clock = clock or SystemClock()
        self.credit_repo = CreditRepository(db)
        self.user_repo = UserRepository(db)

    def _q(self, value) -> Decimal:
        return quantize_credits(value, self.settings.CREDIT_DECIMAL_PLACES)

    def _now(self) -> datetime:
        return self.clock.now()

    def _to_response(self, entry) -> Optional[CreditTransactionResponse]:
        if entry is None:
            return None
        return CreditTransactionResponse.model_validate(entry)

    def _ensure_user(self, user_id: int) -> None:
        if not self.user_repo.exists({"id": user_id}):
            raise NotFoundError(
                f"User {user_id} not found", details={"user_id": user_id}
            )

    def _commit_or_rollback(self, commit: bool, operation: str, user_id: int) -> None:
        if not commit:
            return
        try:
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to commit {operation} for user {user_id}: {str(e)}")
            raise InternalServerError(f"Failed to {operation}")

    # 잔액 조회 -------------------------------------------------------------

    def get_balance(self, user_id: int) -> Decimal:
        return self.credit_repo.get_balance(user_id)

    def get_pending_spent(self, user_id: int) -> Decimal:
        return self.credit_repo.get_pending_spent(user_id)

    def get_available_balance(self, user_id: int) -> Decimal:
        """잔액 - 에스크로. 새 홀드 허용 여부는 이 값으로 판단"""
        return self.credit_repo.get_available_balance(user_id)

    def get_balance_summary(self, user_id: int) -> CreditBalanceResponse:
        balance = self.credit_repo.get_balance(user_id)
        pending = self.credit_repo.get_pending_spent(user_id)
        earned = self.credit_repo.get_total_by_type(user_id, TransactionTypeEnum.EARNED)
        spent = self.credit_repo.get_total_by_type(user_id, TransactionTypeEnum.SPENT)
        return CreditBalanceResponse(
            user_id=user_id,
            balance=balance,
            available_balance=balance - pending,
            pending_spent=pending,
            total_earned=earned,
            total_spent=-spent,
        )

    # 세션 에스크로 (호출자 트랜잭션) ------------------------------------------

    def hold(
        self, user_id: int, amount: Decimal, session_id: int, description: str
    ) -> Optional[CreditTransactionResponse]:
        """에스크로 홀드. 사용 가능 잔액이 부족하면 None"""
        entry = self.credit_repo.hold(user_id, self._q(amount), session_id, description)
        if entry is None:
            logger.warning(
                f"Hold of {amount} refused for user {user_id} on session {session_id}: insufficient credits"
            )
            return None
        logger.info(f"Held {amount} credits for user {user_id} on session {session_id}")
        return self._to_response(entry)

    def transfer(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        session_id: int,
        description: str,
    ) -> CreditTransactionResponse:
        """세션 지급 (멱등). 에스크로와 맞지 않으면 SettlementError"""
        entry = self.credit_repo.transfer(
            from_user_id, to_user_id, self._q(amount), session_id, description, self._now()
        )
        logger.info(
            f"Session {session_id} payout: {amount} credits {from_user_id} -> {to_user_id} (entry {entry.id})"
        )
        return self._to_response(entry)

    def refund(
        self, user_id: int, amount: Decimal, session_id: int, description: str
    ) -> CreditTransactionResponse:
        """에스크로 환불. 에스크로가 부족하면 SettlementError"""
        entry = self.credit_repo.refund(
            user_id, self._q(amount), session_id, description, self._now()
        )
        logger.info(f"Refunded {amount} credits to user {user_id} for session {session_id}")
        return self._to_response(entry)

    # 관리자 / 이체 -----------------------------------------------------------

    def adjust_balance(
        self, user_id: int, amount: Decimal, description: str, commit: bool = True
    ) -> Optional[CreditTransactionResponse]:
        """관리자 조정. 결과 잔액이 음수가 되면 None"""
        self._ensure_user(user_id)
        entry = self.credit_repo.adjust_balance(
            user_id, self._q(amount), description, self._now()
        )
        if entry is None:
            logger.warning(
                f"Adjustment of {amount} refused for user {user_id}: balance would go negative"
            )
            return None
        self._commit_or_rollback(commit, "adjust balance", user_id)
        logger.info(f"Adjusted balance of user {user_id} by {amount}")
        return self._to_response(entry)

    def add_bonus(
        self,
        user_id: int,
        amount: Decimal,
        description: str,
        ref_id: Optional[str] = None,
        commit: bool = True,
    ) -> CreditTransactionResponse:
        if self._q(amount) <= 0:
            raise ValidationError("Bonus amount must be positive")
        self._ensure_user(user_id)
        entry = self.credit_repo.add_bonus(
            user_id, self._q(amount), description, self._now(), ref_id=ref_id
        )
        self._commit_or_rollback(commit, "add bonus", user_id)
        logger.info(f"Added bonus of {amount} credits for user {user_id}")
        return self._to_response(entry)

    def grant_signup_bonus(self, user_id: int) -> CreditTransactionResponse:
        """신규 가입 보너스 (사용자당 1회)"""
        return self.add_bonus(
            user_id,
            self.settings.SIGNUP_BONUS_CREDITS,
            "Welcome bonus",
            ref_id=f"signup:{user_id}",
        )

    def deduct(
        self, user_id: int, amount: Decimal, description: str, commit: bool = True
    ) -> CreditTransactionResponse:
        if self._q(amount) <= 0:
            raise ValidationError("Deduct amount must be positive")
        self._ensure_user(user_id)
        entry = self.credit_repo.deduct(user_id, self._q(amount), description, self._now())
        if entry is None:
            balance = self.credit_repo.get_balance(user_id)
            logger.warning(
                f"Deduct of {amount} refused for user {user_id}: balance {balance}"
            )
            raise InsufficientCreditsError(
                details={"required": str(self._q(amount)), "balance": str(balance)}
            )
        self._commit_or_rollback(commit, "deduct credits", user_id)
        logger.info(f"Deducted {amount} credits from user {user_id}")
        return self._to_response(entry)

    def transfer_between_users(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> CreditTransferResponse:
        """사용자 간 직접 이체 (보내는 쪽 사용 가능 잔액 기준)"""
        if from_user_id == to_user_id:
            raise ValidationError("Cannot transfer credits to yourself")
        if self._q(amount) <= 0:
            raise ValidationError("Transfer amount must be positive")
        self._ensure_user(to_user_id)

        try:
            pair = self.credit_repo.transfer_between_users(
                from_user_id,
                to_user_id,
                self._q(amount),
                description or f"Transfer from user {from_user_id} to user {to_user_id}",
                self._now(),
            )
            if pair is None:
                available = self.credit_repo.get_available_balance(from_user_id)
                self.db.rollback()
                logger.warning(
                    f"Transfer of {amount} from user {from_user_id} refused: available {available}"
                )
                raise InsufficientCreditsError(
                    details={"required": str(self._q(amount)), "available": str(available)}
                )
            self._commit_or_rollback(commit, "transfer credits", from_user_id)
        except BaseAPIException:
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to transfer {amount} from user {from_user_id} to {to_user_id}: {str(e)}"
            )
            raise InternalServerError("Failed to transfer credits")

        outgoing, incoming = pair
        logger.info(f"Transferred {amount} credits from user {from_user_id} to {to_user_id}")
        return CreditTransferResponse(
            outgoing=self._to_response(outgoing), incoming=self._to_response(incoming)
        )

    # 내역 조회 ---------------------------------------------------------------

    def get_transaction_history(
        self, user_id: int, limit: int = 50, offset: int = 0
    ) -> CreditHistoryResponse:
        """사용자 거래 내역 (최신순, 페이지 크기는 LEDGER_PAGE_MAX 이하)"""
        limit = min(limit, self.settings.LEDGER_PAGE_MAX)
        transactions, total_count = self.credit_repo.get_history(user_id, limit, offset)
        balance = self.credit_repo.get_balance(user_id)
        pending = self.credit_repo.get_pending_spent(user_id)
        return CreditHistoryResponse(
            balance=balance,
            available_balance=balance - pending,
            transactions=transactions,
            total_count=total_count,
            has_next=offset + limit < total_count,
        )

    def get_transactions_by_session(self, session_id: int) -> List[CreditTransactionResponse]:
        return self.credit_repo.get_by_session(session_id)

    def get_transaction(self, transaction_id: int) -> Optional[CreditTransactionResponse]:
        return self.credit_repo.get_by_id(transaction_id)

    def get_session_payout(
        self, teacher_id: int, session_id: int
    ) -> Optional[CreditTransactionResponse]:
        """세션에 대한 교사의 COMPLETED EARNED 항목 (지급 여부 확인)"""
        return self._to_response(self.credit_repo.find_earned(teacher_id, session_id))

    def get_pending_transactions(self, user_id: int) -> List[CreditTransactionResponse]:
        return self.credit_repo.get_pending(user_id)
