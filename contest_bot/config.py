"""
Bot configuration (pydantic-settings).
Values come from environment variables or a .env file in the working directory.
"""
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Telegram ──────────────────────────────────────────────────────────────
    BOT_TOKEN: str

    # Raw comma-separated admin chat IDs, e.g. "123,456"
    ADMIN_IDS: str = ""

    # ── Database ──────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./contest_bot.db"

    # ── Dialogs ───────────────────────────────────────────────────────────────
    CANCEL_KEYWORD: str = "/cancel"
    MAX_HANDOFFS: int = 2

    LOG_LEVEL: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """
        Hosting providers hand out 'postgresql://...' URLs,
        SQLAlchemy async requires 'postgresql+asyncpg://...'.
        """
        url = self.DATABASE_URL
        if url.startswith("postgresql://") or url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql://", 1).replace("://", "+asyncpg://", 1)
        return url

    @property
    def admin_ids_list(self) -> list[str]:
        """Parse ADMIN_IDS env var to a list of chat ids (kept as strings)."""
        if not self.ADMIN_IDS:
            return []
        return [x.strip() for x in self.ADMIN_IDS.split(",") if x.strip().lstrip("-").isdigit()]


settings = Settings()
