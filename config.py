"""Application settings: single file, Pydantic-based.

DB selection:
  - DATABASE_URL set and non-empty -> PostgreSQL
  - DATABASE_URL absent/empty -> SQLite (DB_SQLITE_PATH, default data/royalties.db)
"""

import re
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _project_root() -> Path:
    """Project root. config.py lives at the repository root."""
    return Path(__file__).resolve().parent


def _ensure_env_loaded() -> None:
    """Load .env from project root (then its parent). Idempotent."""
    root: Path = _project_root()
    for candidate in (root / ".env", root.parent / ".env"):
        if candidate.exists():
            load_dotenv(candidate, override=False)


_ensure_env_loaded()


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str | None = Field(
        default=None,
        description="PostgreSQL DSN; when set, uses Postgres.",
        validation_alias="DATABASE_URL",
    )
    sqlite_path: str | None = Field(default="data/royalties.db")
    pool_size: int = Field(default=5)
    pool_timeout: int = Field(default=30)
    pool_recycle: int = Field(default=1800)

    def _use_postgres(self) -> bool:
        return bool((self.database_url or "").strip())

    def _resolved_sqlite_path(self) -> Path:
        raw: str = (self.sqlite_path or "data/royalties.db").strip()
        path: Path = Path(raw)
        if not path.is_absolute():
            path = (_project_root() / path).resolve()
        return path

    def _redacted_postgres_dsn(self) -> str:
        url: str = (self.database_url or "").strip()
        return re.sub(r":([^:@]+)@", r":***@", url) if url else ""

    @property
    def url(self) -> str:
        if self._use_postgres():
            return (self.database_url or "").strip()
        path = self._resolved_sqlite_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{path.as_posix()}"

    def db_info_for_logging(self) -> str:
        if self._use_postgres():
            return f"PostgreSQL @ {self._redacted_postgres_dsn()}"
        return f"SQLite @ {self._resolved_sqlite_path().as_posix()}"


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    stripe_secret_key: str = Field(default="", description="Stripe secret key (sk_...)")
    currency: str = Field(default="EUR", description="Settlement currency (ISO 4217)")
    minimum_payout: Decimal = Field(
        default=Decimal("15.00"), description="Smallest payout the processor accepts"
    )


class PayoutSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PAYOUT_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    minimum_amount: Decimal = Field(default=Decimal("15.00"))
    aging_window_months: int = Field(default=3, ge=1)
    settlement_period_months: int = Field(default=2, ge=1)
    admin_review_delay_hours: float = Field(default=6.0, ge=0)
    inter_payee_pause_seconds: float = Field(default=1.0, ge=0)
    job_lease_seconds: int = Field(default=900, ge=1)
    poll_interval_seconds: float = Field(default=60.0, gt=0)


class NotificationSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=(str(_project_root() / ".env"), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    admin_email: str = Field(default="admin@localhost")
    site_name: str = Field(default="Marketplace")
    cancel_url_template: str = Field(
        default="/api/payouts/cancel?batch_id={batch_id}",
        description="Link included in the batch-scheduled notification",
    )


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ROYALTIES_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")
    api_key: str | None = Field(default=None, description="API key for mutation endpoints")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    payout: PayoutSettings = Field(default_factory=PayoutSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


@lru_cache
def get_settings() -> Settings:
    return Settings()
