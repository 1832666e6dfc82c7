from __future__ import annotations
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = structlog.get_logger(__name__)


class ApiError(Exception):
    """서비스 계층의 모든 업무 오류. 응답 본문은 항상 {"message": code}."""

    def __init__(self, status_code: int, code: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(code)
        self.status_code = status_code
        self.code = code
        self.headers = headers


def bad_request(code: str) -> ApiError:
    return ApiError(status.HTTP_400_BAD_REQUEST, code)


def unprocessable(code: str) -> ApiError:
    return ApiError(status.HTTP_422_UNPROCESSABLE_ENTITY, code)


def not_found(code: str) -> ApiError:
    return ApiError(status.HTTP_404_NOT_FOUND, code)


def forbidden(code: str) -> ApiError:
    return ApiError(status.HTTP_403_FORBIDDEN, code)


def conflict(code: str) -> ApiError:
    return ApiError(status.HTTP_409_CONFLICT, code)


def error_body(code: str, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"message": code}
    body.update(extra)
    return body


def _log_failure(request: Request, status_code: int, code: str) -> None:
    log = logger.error if status_code >= 500 else logger.warning
    log("request_failed", status=status_code, code=code, method=request.method, path=request.url.path)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    _log_failure(request, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code), headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    _log_failure(request, status.HTTP_400_BAD_REQUEST, "invalid_request")
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(error_body("invalid_request", errors=errors)),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = exc.detail if isinstance(exc.detail, str) else "http_error"
    _log_failure(request, exc.status_code, code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code),
        headers=getattr(exc, "headers", None),
    )


async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store_failure", error=str(exc), path=request.url.path)
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content=error_body("store_unavailable"))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
