from enum import Enum
from typing import Union

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from skillswap.models.base import BaseModel, BigIntPK


class UserRole(str, Enum):
    """사용자 역할 정의"""

    USER = "user"  # 일반 사용자
    ADMIN = "admin"  # 관리자

    @classmethod
    def is_admin(cls, role: Union[str, "UserRole"]) -> bool:
        """관리자 권한 확인"""
        if isinstance(role, cls):
            role = role.value
        return role == cls.ADMIN.value


class User(BaseModel):
    """
    Marketplace member referenced by sessions and ledger entries.

    There is no balance column: a user's credits are always
    derived from ``credit_transactions``. The row doubles as the per-user
    lock taken before any balance-affecting ledger write.
    """

    __tablename__ = "users"
    __table_args__ = (Index("idx_users_email", "email"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    nickname: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), default=UserRole.USER.value, nullable=False
    )

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return UserRole.is_admin(str(self.role))
