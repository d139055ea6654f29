"""Application configuration via Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Resolve .env from the project root regardless of CWD
_ENV_FILE = Path(__file__).resolve().parents[3] / ".env"


class Settings(BaseSettings):
    """Central configuration loaded from environment variables / .env file."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./relaykit.db"

    # AI
    gemini_api_key: str = ""
    estimate_model: str = "gemini-3-flash-preview"
    estimate_temperature: float = 0.2
    llm_timeout_seconds: float = 120.0

    # Estimate generation
    max_estimate_images: int = 8
    catalog_hint_limit: int = 60
    pricing_lookup_timeout_seconds: float = 5.0
    generation_lock_ttl_seconds: int = 600

    # Estimate queue
    estimate_queue_max_attempts: int = 3
    estimate_queue_lease_seconds: int = 900
    estimate_worker_enabled: bool = False
    estimate_worker_poll_seconds: float = 15.0

    # Storage
    storage_dir: str = "./var/storage"
    storage_timeout_seconds: float = 10.0
    signed_url_ttl_seconds: int = 3600
    signing_secret: str = "change-me-in-production"
    public_base_url: str = "http://localhost:8000"

    # Auth / JWT
    jwt_secret_key: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Workspaces / invites
    trial_days: int = 14
    invite_token_pepper: str = ""
    invite_expiry_days: int = 7
    trial_token_pepper: str = ""
    trial_link_ttl_days: int = 7
    trial_link_days: int = 30

    # External services
    sendgrid_api_key: str = ""
    invite_from_email: str = ""

    # CORS / Frontend
    cors_origins: str = "http://localhost:3000"
    app_base_url: str = "http://localhost:3000"

    # Internal endpoints (worker tick, pdf generation)
    internal_token: str = "relaykit-internal"

    # General
    debug: bool = True

    model_config = {"env_file": str(_ENV_FILE), "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list.

        In debug mode, returns ["*"] to allow any origin (LAN IPs, etc.).
        """
        if self.debug:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return cached Settings instance."""
    return Settings()
