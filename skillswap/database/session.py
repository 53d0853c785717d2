import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.orm import Session

from skillswap.database.connection import SessionLocal

logger = logging.getLogger(__name__)


def get_db() -> Iterator[Session]:
    """
    요청 단위 DB 세션 (FastAPI 의존성)

    커밋은 서비스 계층이 직접 수행합니다. 여기서는 처리되지 않은 예외로
    남은 트랜잭션만 정리합니다.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            logger.warning("Rolling back open transaction after request failure")
            db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def get_db_context() -> Iterator[Session]:
    """스크립트용 세션 - 블록이 정상 종료되면 커밋"""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Script transaction rolled back: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()
