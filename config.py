from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

_ENV_FILE = Path(__file__).parent / ".env"


class Settings(BaseSettings):
    api_url: str = "http://localhost:3000/api"
    platform: str = "mobile"                 # sent in auth payloads
    client_platform: str = "mobile-customer" # X-Platform header
    refresh_path: str = "/auth/refresh-token"
    request_timeout: float = 15.0            # seconds, covers the refresh exchange too
    credentials_path: str | None = "credentials.json"
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "DELIVERY_",
        "env_file": str(_ENV_FILE),
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    return Settings()
