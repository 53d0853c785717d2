"""
세션 API 라우터

사용자용 엔드포인트:
- POST /sessions: 세션 예약 (에스크로 홀드)
- GET /sessions/me: 내 세션 목록 (role=all|teaching|learning)
- GET /sessions/upcoming: 다가오는 세션
- GET /sessions/{id}: 세션 상세 (당사자/관리자)
- PATCH /sessions/{id}: 부가 정보 수정
- POST /sessions/{id}/confirm|cancel|reschedule|start|complete|dispute: 상태 전이

관리자용 엔드포인트:
- GET /sessions/status/{status}: 상태별 세션 목록
- GET /sessions/admin/unsettled: 지급 대기 세션
- POST /sessions/{id}/settle: 지급 재시도
- GET /sessions/{id}/ledger-check: 세션-원장 정합성 검증

라우터는 얇게 유지하며 예외는 등록된 exception handler가 공통 에러 본문으로 변환합니다.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from skillswap.core.auth_middleware import get_current_active_user, require_admin
from skillswap.deps import get_session_service
from skillswap.models.session import SessionStatusEnum
from skillswap.schemas.auth import BaseResponse
from skillswap.schemas.session import (
    SessionCancelRequest,
    SessionConfirmRequest,
    SessionCreateRequest,
    SessionDisputeRequest,
    SessionRescheduleRequest,
    SessionRole,
    SessionUpdateRequest,
)
from skillswap.schemas.user import User as UserSchema
from skillswap.services.session_service import SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=BaseResponse, status_code=status.HTTP_201_CREATED)
def create_session(
    request: SessionCreateRequest,
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    """
    세션 예약

    학생(현재 사용자)의 사용 가능 잔액에서 credits_cost만큼 에스크로 홀드합니다.

    HTTP Status:
        201: 생성 성공 (status=PENDING)
        400: 검증 실패(VALIDATION_001) 또는 크레딧 부족(CREDITS_001)
        404: 유저 스킬 없음
    """
    session = service.create_session(current_user.id, request)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.get("/me", response_model=BaseResponse)
def get_my_sessions(
    role: SessionRole = Query(SessionRole.ALL, description="all | teaching | learning"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.get_user_sessions(current_user.id, role, limit, offset)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/upcoming", response_model=BaseResponse)
def get_upcoming_sessions(
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.get_upcoming_sessions(current_user.id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/status/{session_status}", response_model=BaseResponse)
def get_sessions_by_status(
    session_status: SessionStatusEnum = Path(..., description="세션 상태"),
    limit: Optional[int] = Query(None, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: UserSchema = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.get_sessions_by_status(session_status, limit, offset)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/admin/unsettled", response_model=BaseResponse)
def get_unsettled_sessions(
    _admin: UserSchema = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> Any:
    """COMPLETED 상태이지만 교사 지급이 완료되지 않은 세션"""
    result = service.find_unsettled_sessions()
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/{session_id}", response_model=BaseResponse)
def get_session(
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    session = service.get_session(session_id, current_user)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.patch("/{session_id}", response_model=BaseResponse)
def update_session(
    request: SessionUpdateRequest,
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    session = service.update_session_details(session_id, current_user, request)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.post("/{session_id}/confirm", response_model=BaseResponse)
def confirm_session(
    request: SessionConfirmRequest,
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    """
    세션 확인 / 거절

    양쪽 당사자가 모두 confirmed=true를 보내야 CONFIRMED로 전이합니다.
    confirmed=false는 거절이며 상태는 PENDING으로 남습니다.
    """
    session = service.confirm_session(session_id, current_user, request.confirmed)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.post("/{session_id}/cancel", response_model=BaseResponse)
def cancel_session(
    request: SessionCancelRequest,
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    session = service.cancel_session(session_id, current_user, request.reason)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.post("/{session_id}/reschedule", response_model=BaseResponse)
def reschedule_session(
    request: SessionRescheduleRequest,
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.reschedule_session(
        session_id, current_user, request.scheduled_start, request.scheduled_end
    )
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/{session_id}/start", response_model=BaseResponse)
def start_session(
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    session = service.start_session(session_id, current_user)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.post("/{session_id}/complete", response_model=BaseResponse)
def complete_session(
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    """
    세션 완료

    지급이 실패해도 200을 반환하며 settlement_status=PENDING_SETTLEMENT로 보고합니다.
    """
    result = service.complete_session(session_id, current_user)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/{session_id}/dispute", response_model=BaseResponse)
def dispute_session(
    request: SessionDisputeRequest,
    session_id: int = Path(..., gt=0),
    current_user: UserSchema = Depends(get_current_active_user),
    service: SessionService = Depends(get_session_service),
) -> Any:
    session = service.dispute_session(session_id, current_user, request.reason)
    return BaseResponse(success=True, data={"session": session.model_dump(mode="json")})


@router.post("/{session_id}/settle", response_model=BaseResponse)
def settle_session(
    session_id: int = Path(..., gt=0),
    _admin: UserSchema = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.settle_session(session_id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/{session_id}/ledger-check", response_model=BaseResponse)
def check_session_ledger(
    session_id: int = Path(..., gt=0),
    _admin: UserSchema = Depends(require_admin),
    service: SessionService = Depends(get_session_service),
) -> Any:
    result = service.verify_session_ledger(session_id)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))
