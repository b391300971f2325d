from __future__ import annotations

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes.annotations import router as annotations_router
from api.routes.sessions import router as sessions_router
from reading_session.core import (
    ConfigurationError,
    DocumentLoadError,
    MalformedPosition,
    QuotaExceeded,
)


def _error(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app() -> FastAPI:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    app = FastAPI(title="Reading Session API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MalformedPosition, _error(400))
    app.add_exception_handler(QuotaExceeded, _error(403))
    app.add_exception_handler(ConfigurationError, _error(422))
    app.add_exception_handler(DocumentLoadError, _error(422))

    app.include_router(sessions_router)
    app.include_router(annotations_router)

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
