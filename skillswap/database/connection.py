from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from skillswap.config import settings


def build_engine(database_url: str, echo: bool = False):
    """데이터베이스 URL에 맞는 엔진 생성 (sqlite는 로컬/테스트용)"""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        database_url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # 연결 유효성 검사
        pool_recycle=3600,  # 1시간마다 연결 재생성
        echo=echo,
    )


engine = build_engine(settings.database_url, echo=settings.DEBUG)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)
