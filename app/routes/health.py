"""Health endpoints."""

import logging
import os

from fastapi import APIRouter, Depends
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from app.dependencies import get_api_key
from app.schemas.common import HealthResponse
from config import DatabaseSettings, get_settings
from db.connection import REQUIRED_TABLES, get_engine
from royalties import __version__
from royalties.services._types import DbInfoDict

logger: logging.Logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def get_db_info(engine: Engine | None = None) -> DbInfoDict:
    """Gather DB info. Never raises."""
    try:
        db: DatabaseSettings = get_settings().database

        if db._use_postgres():
            backend_type: str = "postgres"
            url_or_path: str | None = db._redacted_postgres_dsn()
        else:
            backend_type = "sqlite"
            url_or_path = db._resolved_sqlite_path().as_posix()

        engine = engine or get_engine()
        existing: set[str] = set()
        try:
            existing = set(inspect(engine).get_table_names())
        except Exception as e:
            logger.warning("Could not inspect DB: %s", e)

        missing = [t for t in REQUIRED_TABLES if t not in existing]
        return DbInfoDict(
            backend_type=backend_type,
            database_url_or_path=url_or_path,
            tables_present=sorted(existing),
            tables_missing=missing,
            schema_initialized=not missing,
            pid=os.getpid(),
        )
    except Exception as e:
        logger.exception("Health DB check failed: %s", e)
        return DbInfoDict(
            backend_type="unknown",
            database_url_or_path=None,
            tables_present=[],
            tables_missing=list(REQUIRED_TABLES),
            schema_initialized=False,
            error=str(e),
            pid=os.getpid(),
        )


@router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


@router.get("/health/db", dependencies=[Depends(get_api_key)])
def health_db() -> DbInfoDict:
    return get_db_info()
