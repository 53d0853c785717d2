from typing import Optional

from sqlalchemy.orm import Session

from skillswap.models.skill import UserSkill as UserSkillModel
from skillswap.repositories.base import BaseRepository
from skillswap.schemas.skill import UserSkillResponse


class UserSkillRepository(BaseRepository[UserSkillModel, UserSkillResponse]):
    def __init__(self, db: Session):
        super().__init__(UserSkillModel, UserSkillResponse, db)

    def get_user_skill(self, user_skill_id: int) -> Optional[UserSkillModel]:
        return self.get_model(user_skill_id)
