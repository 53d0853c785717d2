"""
API 예외 계층

모든 도메인 예외는 BaseAPIException(HTTPException)을 상속하며, 등록된 exception
handler가 detail을 그대로 공통 에러 본문으로 응답합니다:

    {"success": false, "error": {"code": ..., "message": ..., "details": {...}}}

하위 클래스는 status_code / error_code / default_message 만 지정합니다.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class BaseAPIException(HTTPException):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_001"
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(
            status_code=type(self).status_code,
            detail={
                "success": False,
                "error": {
                    "code": self.error_code,
                    "message": self.message,
                    "details": self.details,
                },
            },
        )

    def __str__(self) -> str:
        return self.message


class AuthenticationError(BaseAPIException):
    """토큰 없음/위조/만료, 또는 토큰의 사용자가 없음"""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "AUTH_001"
    default_message = "Authentication failed"


class AuthorizationError(BaseAPIException):
    """세션 당사자(또는 관리자)가 아님"""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = "AUTH_002"
    default_message = "Access forbidden"


class ValidationError(BaseAPIException):
    """잘못된 입력: 시간 범위, 빈 사유, 자기 예약 등"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_001"
    default_message = "Validation failed"


class NotFoundError(BaseAPIException):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND_001"
    default_message = "Resource not found"


class InvalidStateError(BaseAPIException):
    """현재 세션 상태에서 허용되지 않는 전이. details.current_status 포함"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "SESSION_STATE_001"
    default_message = "Operation not allowed in the current session status"

    def __init__(
        self,
        current_status: str,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.current_status = current_status
        super().__init__(message, {"current_status": current_status, **(details or {})})


class InsufficientCreditsError(BaseAPIException):
    """홀드/차감/이체에 쓸 크레딧이 부족"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "CREDITS_001"
    default_message = "Insufficient credits"


class ConflictError(BaseAPIException):
    """동시 수정 재시도 한도 초과"""

    status_code = status.HTTP_409_CONFLICT
    error_code = "CONFLICT_001"
    default_message = "Resource conflict"


class InternalServerError(BaseAPIException):
    pass


class SettlementError(Exception):
    """지급/환불 금액을 세션 에스크로와 맞출 수 없음 (HTTP 예외 아님)"""

    def __init__(self, message: str, session_id: Optional[int] = None):
        super().__init__(message)
        self.session_id = session_id
