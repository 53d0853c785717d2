from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="skillswap/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "SkillSwap Sessions API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "skillswap"

    # 지정되면 POSTGRES_* 값보다 우선 (로컬/테스트용 sqlite 등)
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Security (token verification only, tokens are issued elsewhere)
    SECRET_KEY: str = ""
    JWT_ALGORITHM: str = "HS256"

    # AWS
    AWS_REGION: str = "ap-northeast-2"
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    SQS_ENDPOINT_URL: Optional[str] = None

    # Outbound event queues (empty = log only)
    SQS_NOTIFICATION_QUEUE: str = ""
    SQS_EMAIL_QUEUE: str = ""

    # Business Rules
    SESSION_UPDATE_MAX_RETRIES: int = 3  # 낙관적 잠금 충돌 시 재시도 횟수
    CREDIT_DECIMAL_PLACES: int = 2  # 크레딧 금액 소수점 자리수
    MAX_SESSION_HOURS: int = 8  # 한 세션의 최대 길이 (시간)
    LEDGER_PAGE_MAX: int = 100  # 거래 내역 페이지 최대 크기
    SIGNUP_BONUS_CREDITS: Decimal = Decimal("10.00")  # 신규 가입 보너스 크레딧


settings = Settings()
