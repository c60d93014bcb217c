from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # ── Application ──────────────────────────────────────────────
    app_name: str = "Storefront Core"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    api_version: str = "v1"

    # ── Database ─────────────────────────────────────────────────
    mongodb_uri: Optional[str] = None
    database_name: str = "storefront_db"

    # ── JWT verification ─────────────────────────────────────────
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"

    # ── Authorization ────────────────────────────────────────────
    # JSON file shaped {role: {"rank": int, "permissions": [str]}}.
    # When unset the built-in role table is used.
    roles_config_path: Optional[str] = None

    # ── Orders ───────────────────────────────────────────────────
    order_placement_max_attempts: int = 3
    # Seconds; attempt n waits n * backoff before retrying.
    order_placement_retry_backoff: float = 0.05
    lock_terminal_order_status: bool = False

    # ── CORS ─────────────────────────────────────────────────────
    cors_allowed_origins: list[str] = [
        "http://localhost:4200",
        "http://localhost:3000",
        "http://127.0.0.1:4200",
    ]
    cors_allow_credentials: bool = True
    cors_allowed_methods: list[str] = ["*"]
    cors_allowed_headers: list[str] = ["*"]

    class Config:
        env_file = ".env.local"
        extra = "ignore"


# ── Module-level singleton ──────────────────────────────────────
settings = Settings()
