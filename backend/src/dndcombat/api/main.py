from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from dndcombat.api.routers.encounters import router as encounters_router
from dndcombat.config import get_settings
from dndcombat.core.adapters.memory import InMemoryCharacterProvider, InMemorySessionProvider
from dndcombat.core.engine.factory import build_service
from dndcombat.core.engine.service import EncounterService
from dndcombat.core.errors import EngineError, ErrorCode
from dndcombat.logging_config import configure_logging

logger = logging.getLogger(__name__)

_STATUS = {
    ErrorCode.INVALID_ARGUMENT: 400,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.ALREADY_EXISTS: 409,
    ErrorCode.CONFLICT: 409,
    ErrorCode.UNKNOWN: 500,
}


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status = _STATUS.get(exc.code, 500)
    if status >= 500:
        logger.error("unexpected failure on %s: %s", request.url.path, exc)
        detail = "Something went wrong, please try again"
    else:
        detail = exc.message
    return JSONResponse(status_code=status, content={"code": exc.code.value, "detail": detail})


def create_app(service: Optional[EncounterService] = None) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        if settings.repository_backend == "sql":
            from dndcombat.db.init_db import init_db

            init_db()
        yield

    app = FastAPI(title="DnD 5e Combat Engine", lifespan=lifespan)
    app.state.service = service or build_service(
        InMemoryCharacterProvider(), InMemorySessionProvider(), settings=settings
    )
    app.add_exception_handler(EngineError, engine_error_handler)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(encounters_router)
    return app


app = create_app()
