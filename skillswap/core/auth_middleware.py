from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from skillswap.core.exceptions import AuthenticationError, AuthorizationError
from skillswap.core.security import decode_access_token
from skillswap.database.session import get_db
from skillswap.repositories.user_repository import UserRepository
from skillswap.schemas.user import User as UserSchema

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> UserSchema:
    """필수 사용자 인증 - 유효한 토큰이 필요함"""
    if not credentials:
        raise AuthenticationError("Authentication required")

    token_data = decode_access_token(credentials.credentials)
    user = UserRepository(db).get_by_id(token_data.user_id)
    if not user:
        raise AuthenticationError("User not found for token")
    return user


def get_current_active_user(
    current_user: UserSchema = Depends(get_current_user),
) -> UserSchema:
    """활성 사용자만 허용"""
    if not current_user.is_active:
        raise AuthorizationError("Inactive user account")
    return current_user


def require_admin(
    current_user: UserSchema = Depends(get_current_active_user),
) -> UserSchema:
    """관리자 권한이 필요한 엔드포인트용 의존성"""
    if not current_user.is_admin:
        raise AuthorizationError("Admin access required")
    return current_user
