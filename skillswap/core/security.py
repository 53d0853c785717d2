from jose import jwt, JWTError
from pydantic import ValidationError

from skillswap.config import settings
from skillswap.core.exceptions import AuthenticationError
from skillswap.schemas.auth import TokenPayload


def decode_access_token(token: str) -> TokenPayload:
    """
    외부에서 발급된 JWT를 검증하고 클레임을 반환합니다.

    이 서비스는 토큰을 발급하지 않으며 서명/만료 검증만 수행합니다.
    """
    if not settings.SECRET_KEY:
        raise AuthenticationError("Token verification is not configured")
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, ValidationError):
        raise AuthenticationError("Invalid authentication credentials")
