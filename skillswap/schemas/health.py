"""Pydantic models for health endpoints."""

from typing import Optional
from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    environment: Optional[str] = None
    database: str = "unknown"
    error: Optional[str] = None
