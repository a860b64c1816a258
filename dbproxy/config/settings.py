# dbproxy/config/settings.py
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env from the repo root even when uvicorn's cwd varies.
# Existing env wins so container/CI secrets are never overridden.
load_dotenv(find_dotenv(usecwd=True), override=False)


# ---------------------------
# Settings (env-driven config)
# ---------------------------
class Settings(BaseSettings):
    VERSION: str = "0.1.0"

    # Elevated store credentials (service role preferred, SUPABASE_KEY as fallback)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE: Optional[str] = None
    SUPABASE_KEY: Optional[str] = None

    # Fixed CORS set attached to every gateway response
    CORS_ALLOW_ORIGIN: str = "http://localhost:8000"
    CORS_ALLOW_HEADERS: str = "authorization, x-client-info, apikey, content-type"

    # Optional JSON file replacing the bundled policy.json
    POLICY_PATH: Optional[str] = None

    # Deadline for a single store call, and how often the router checks
    # whether the caller is still connected while that call is in flight.
    STORE_TIMEOUT_S: float = 15.0
    DISCONNECT_POLL_S: float = 0.25

    LOG_JSON: bool = False
    LOG_REQUESTS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def service_key(self) -> Optional[str]:
        return self.SUPABASE_SERVICE_ROLE or self.SUPABASE_KEY


@lru_cache
def get_settings() -> Settings:
    return Settings()
