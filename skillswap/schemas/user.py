from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional

from skillswap.models.user import UserRole


class User(BaseModel):
    id: int
    email: EmailStr
    nickname: str
    created_at: Optional[datetime] = None
    is_active: bool = True
    role: UserRole = UserRole.USER

    class Config:
        from_attributes = True

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(self.role)
