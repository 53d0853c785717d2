import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from skillswap.config import settings
from skillswap.database.session import get_db
from skillswap.schemas.health import HealthCheckResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)) -> HealthCheckResponse:
    """Health check endpoint. DB 연결 실패 시에도 200으로 상태만 보고"""
    try:
        db.execute(text("SELECT 1"))
        return HealthCheckResponse(environment=settings.ENVIRONMENT, database="ok")
    except Exception as e:
        logger.error(f"Health check database error: {str(e)}")
        return HealthCheckResponse(
            status="unhealthy",
            environment=settings.ENVIRONMENT,
            database="error",
            error=str(e),
        )
