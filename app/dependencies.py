"""FastAPI dependencies: DB sessions, auth and the application context."""

from functools import lru_cache

from fastapi import Header, HTTPException

from config import get_settings
from db.connection import get_db as get_db  # noqa: F401 (re-exported for routes)
from royalties.context import AppContext


def get_api_key(x_api_key: str = Header(default="")) -> str:
    """Validate API key on mutation endpoints."""
    expected: str | None = get_settings().api_key
    if not expected:
        return ""  # auth disabled when no key configured
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return x_api_key


@lru_cache
def _app_context() -> AppContext:
    return AppContext.create()


def get_context() -> AppContext:
    """Process-wide context (gateway, clock). Tests override this dependency."""
    return _app_context()
