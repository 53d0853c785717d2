from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from skillswap.models.skill import SkillLevelEnum, SkillTypeEnum


class UserSkillResponse(BaseModel):
    id: int
    user_id: int
    skill_id: int
    skill_type: SkillTypeEnum
    level: SkillLevelEnum
    credits_per_hour: Decimal
    is_available: bool
    description: Optional[str] = None
    requirements: Optional[str] = None

    class Config:
        from_attributes = True
