from typing import Optional

from sqlalchemy.orm import Session

from skillswap.models.user import User as UserModel
from skillswap.repositories.base import BaseRepository
from skillswap.schemas.user import User as UserSchema


class UserRepository(BaseRepository[UserModel, UserSchema]):
    def __init__(self, db: Session):
        super().__init__(UserModel, UserSchema, db)

    def lock_user(self, user_id: int) -> Optional[UserModel]:
        """
        사용자 행 잠금 (SELECT ... FOR UPDATE)

        잔액에 영향을 주는 모든 원장 기록은 이 잠금 아래에서 잔액을 재확인합니다.
        """
        return self.get_model(user_id, for_update=True)
