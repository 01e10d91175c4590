"""FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.routes import health, notifications, payees, payouts, sales
from app.schemas.common import ErrorResponse
from config import Settings, get_settings
from db.connection import init_database
from royalties import __version__
from royalties.logging_setup import configure_logging

logger: logging.Logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("DB: %s", settings.database.db_info_for_logging())

    init_database()
    yield


def create_app() -> FastAPI:
    app: FastAPI = FastAPI(
        title="Royalty Payout Engine",
        version=__version__,
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(detail=str(exc), type=type(exc).__name__).model_dump(),
        )

    app.include_router(health.router)
    app.include_router(sales.router)
    app.include_router(payees.router)
    app.include_router(payouts.router)
    app.include_router(notifications.router)

    return app


app: FastAPI = create_app()


def start() -> None:
    """Entry point for royalties-api."""
    root: Path = Path(__file__).resolve().parent.parent
    os.chdir(root)

    for candidate in (root / ".env", root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)

    reload: bool = os.environ.get("ROYALTIES_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "app.main:app",
        host=os.environ.get("ROYALTIES_HOST", "0.0.0.0"),
        port=int(os.environ.get("ROYALTIES_PORT", "8000")),
        reload=reload,
    )
