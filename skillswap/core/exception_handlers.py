import logging
import traceback
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .exceptions import BaseAPIException, InternalServerError

logger = logging.getLogger(__name__)


def _request_context(request: Request) -> Dict[str, Any]:
    client = request.client.host if request.client else "-"
    return {
        "method": request.method,
        "url": str(request.url),
        "client": client,
    }


def _error_body(code: str, message: str, details: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": code, "message": message, "details": details},
    }


async def handle_base_api_exception(request: Request, exc: BaseAPIException):
    ctx = _request_context(request)
    line = f"[{type(exc).__name__}] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.error_code} {exc.message}"
    if exc.status_code >= 500:
        logger.error(line)
    else:
        logger.warning(line)
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    ctx = _request_context(request)
    error_msg = f"[HTTPException] {ctx['method']} {ctx['url']} from {ctx['client']} -> {exc.status_code}: {exc.detail}"

    if exc.status_code >= 500:
        # 500번대 에러는 스택 트레이스 포함
        tb_str = ''.join(traceback.format_tb(exc.__traceback__))
        logger.error(f"{error_msg}\n\nStack Trace:\n{tb_str}")
    else:
        logger.warning(error_msg)

    if isinstance(exc.detail, dict) and "error" in exc.detail:
        content = exc.detail
    else:
        code = {401: "AUTH_001", 403: "AUTH_002", 404: "NOT_FOUND_001"}.get(
            exc.status_code, "HTTP_ERROR"
        )
        content = _error_body(code, str(exc.detail), {})
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None)
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    """요청 본문/쿼리 검증 실패 - 잘못된 입력은 400으로 통일"""
    ctx = _request_context(request)
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    logger.warning(
        f"[RequestValidationError] {ctx['method']} {ctx['url']} from {ctx['client']} -> 400: {errors}"
    )
    return JSONResponse(
        status_code=400,
        content=_error_body("VALIDATION_001", "Validation failed", {"errors": errors}),
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    ctx = _request_context(request)

    # 전체 스택 트레이스 포함, 응답에는 내부 정보를 노출하지 않음
    tb_str = ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(
        f"[Unhandled Error] {ctx['method']} {ctx['url']} from {ctx['client']}\n"
        f"Exception Type: {type(exc).__name__}\n"
        f"Exception Message: {str(exc)}\n\n"
        f"Full Stack Trace:\n{tb_str}"
    )

    internal = InternalServerError()
    return JSONResponse(status_code=internal.status_code, content=internal.detail)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
