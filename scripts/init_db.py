import sys
import os

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from skillswap.database.connection import engine
from skillswap.models.base import Base

# create_all 전에 모든 모델을 메타데이터에 등록
from skillswap.models import credit, session, skill, user  # noqa: F401


def init_db():
    """데이터베이스 초기화"""
    try:
        Base.metadata.create_all(bind=engine)
        print(f"Database initialized successfully: {', '.join(Base.metadata.tables)}")
    except Exception as e:
        print(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    init_db()
