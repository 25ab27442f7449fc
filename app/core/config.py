import logging
import os
from functools import lru_cache

import requests
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DOPPLER_API_URL = "https://api.doppler.com/v3/configs/config/secrets/download"


def _load_doppler_secrets():
    """Load secrets from Doppler API into environment variables.

    Must run BEFORE Settings is instantiated so pydantic can read the env vars.
    """
    token = os.getenv("DOPPLER_TOKEN")
    if not token:
        return

    try:
        response = requests.get(
            DOPPLER_API_URL,
            params={"format": "json"},
            auth=(token, ""),
            timeout=30,
        )
        response.raise_for_status()
        secrets = response.json()
    except requests.RequestException as e:
        logger.warning(f"Failed to load Doppler secrets: {e}")
        return

    for key, value in secrets.items():
        if key not in os.environ:  # Don't override existing env vars
            os.environ[key] = value

    logger.info(f"Loaded {len(secrets)} secrets from Doppler")


# Load Doppler secrets into environment BEFORE Settings is instantiated
_load_doppler_secrets()


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_publishable_key: str = ""
    supabase_secret_key: str = ""
    supabase_jwt_secret: str = ""  # JWT secret for HS256 token verification

    # Plan lookup
    users_table: str = "users"
    plan_column: str = "plan"
    default_plan: str = "free"  # used when a user has no plan recorded

    # Server
    environment: str = "development"
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
