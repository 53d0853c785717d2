import enum
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.schema import UniqueConstraint

from skillswap.models.base import BaseModel, BigIntPK


class SkillTypeEnum(enum.Enum):
    OFFERED = "OFFERED"  # The owner can teach it
    REQUESTED = "REQUESTED"  # The owner wants to learn it


class SkillLevelEnum(enum.Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    EXPERT = "EXPERT"


class Skill(BaseModel):
    __tablename__ = "skills"
    __table_args__ = (Index("idx_skills_category", "category"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    # Catalog entries are never deleted once referenced, only deactivated
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self):
        return f"<Skill(id={self.id}, name={self.name}, category={self.category})>"


class UserSkill(BaseModel):
    __tablename__ = "user_skills"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "skill_id", "skill_type", name="uq_user_skill_direction"
        ),
        Index("idx_user_skills_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    skill_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("skills.id"), nullable=False
    )
    skill_type: Mapped[SkillTypeEnum] = mapped_column(
        Enum(SkillTypeEnum), nullable=False
    )
    level: Mapped[SkillLevelEnum] = mapped_column(
        Enum(SkillLevelEnum), nullable=False, default=SkillLevelEnum.BEGINNER
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requirements: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    credits_per_hour: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("1.00")
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    skill: Mapped[Skill] = relationship(Skill, lazy="joined")

    def __repr__(self):
        return (
            f"<UserSkill(id={self.id}, user_id={self.user_id}, "
            f"skill_id={self.skill_id}, type={self.skill_type.value})>"
        )

    @property
    def is_offered(self) -> bool:
        return bool(self.skill_type == SkillTypeEnum.OFFERED)
