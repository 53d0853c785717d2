import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from mangum import Mangum
from starlette.middleware.cors import CORSMiddleware

from skillswap import containers
from skillswap.config import settings
from skillswap.core.exception_handlers import register_exception_handlers
from skillswap.core.logging_middleware import LoggingMiddleware
from skillswap.logging_config import setup_logging
from skillswap.routers import credit_router, health_router, session_router

load_dotenv("skillswap/.env")

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL, json_output=settings.ENVIRONMENT == "production")

    app = FastAPI(title=settings.APP_NAME)
    app.container = containers.Container()  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)

    register_exception_handlers(app)

    @app.get("/")
    def hello() -> dict:
        return {"message": "Hello SkillSwap!"}

    app.include_router(health_router.router)
    app.include_router(session_router.router, prefix=settings.API_V1_STR)
    app.include_router(credit_router.router, prefix=settings.API_V1_STR)

    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")
    return app


app = create_app()

handler = Mangum(app)
