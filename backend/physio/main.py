from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from physio.api.deps import CORRELATION_HEADER, correlation_id_from
from physio.api.routers import ai_generations, patients, profile, visits
from physio.config import Settings, get_settings
from physio.db import build_engine, build_sessionmaker
from physio.errors import error_body, register_exception_handlers
from physio.logging_setup import configure_logging

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = (settings or get_settings()).validate()
    configure_logging(settings.log_level)

    engine = build_engine(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # 앱 시작 시
        logger.info("app_startup", database=engine.url.render_as_string(hide_password=True))
        try:
            yield
        finally:
            # 앱 종료 시 커넥션 풀 정리
            await engine.dispose()

    app = FastAPI(title="Physio Visits API", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.sessionmaker = build_sessionmaker(engine)

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        cid = correlation_id_from(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = cid
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=cid)
        try:
            response = await call_next(request)
        except Exception:
            # 처리되지 않은 예외: 상세는 로그에만 남긴다
            logger.exception("unhandled_exception", method=request.method, path=request.url.path)
            response = JSONResponse(status_code=500, content=error_body("internal_error"))
        response.headers[CORRELATION_HEADER] = cid
        return response

    # CORS 는 가장 바깥에서 적용
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "Location", CORRELATION_HEADER],
    )

    register_exception_handlers(app)

    app.include_router(patients.router, prefix="/api")
    app.include_router(visits.router, prefix="/api")
    app.include_router(ai_generations.router, prefix="/api")
    app.include_router(profile.router, prefix="/api")

    @app.get("/health")
    async def health():
        return {"ok": True}

    return app
