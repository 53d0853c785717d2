"""
개발용 시드 스크립트
스킬 카탈로그, 샘플 사용자, 제공 스킬을 만들고 가입 보너스를 지급합니다.
"""

import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from decimal import Decimal

from skillswap.database.session import get_db_context
from skillswap.models.skill import Skill, SkillLevelEnum, SkillTypeEnum, UserSkill
from skillswap.models.user import User, UserRole
from skillswap.services.credit_service import CreditService


def seed_data():
    """샘플 데이터 시드 (이미 있으면 건너뜀)"""

    default_skills = [
        ("Python", "Programming", "Backend"),
        ("Guitar", "Music", "Acoustic"),
        ("Spanish", "Language", "Conversation"),
    ]
    default_users = [
        ("teacher@example.com", "teacher", UserRole.USER),
        ("student@example.com", "student", UserRole.USER),
        ("admin@example.com", "admin", UserRole.ADMIN),
    ]

    with get_db_context() as db:
        if db.query(User).count() > 0:
            print("Seed data already present, skipping")
            return

        skills = [Skill(name=n, category=c, sub_category=s) for n, c, s in default_skills]
        users = [User(email=e, nickname=n, role=r.value) for e, n, r in default_users]
        db.add_all(skills + users)
        db.flush()

        teacher = users[0]
        for index, skill in enumerate(skills):
            db.add(
                UserSkill(
                    user_id=teacher.id,
                    skill_id=skill.id,
                    skill_type=SkillTypeEnum.OFFERED,
                    level=SkillLevelEnum.EXPERT,
                    credits_per_hour=Decimal("2.00") + index,
                )
            )
        db.commit()

        credit_service = CreditService(db)
        for seeded in users:
            credit_service.grant_signup_bonus(seeded.id)

        print(f"Seeded {len(skills)} skills and {len(users)} users")


if __name__ == "__main__":
    seed_data()
