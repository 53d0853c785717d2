from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()

# sqlite only autoincrements INTEGER primary keys
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


class TimestampMixin:
    """created_at / updated_at (DB 서버 시각)"""

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class BaseModel(Base, TimestampMixin):
    """모든 SkillSwap 테이블의 베이스"""

    __abstract__ = True
