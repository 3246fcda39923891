from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # When disabled every request runs as a fixed local identity
    auth_enabled: bool = False

    # Cognito Settings (Optional for local dev)
    cognito_user_pool_id: Optional[str] = None
    cognito_app_client_id: Optional[str] = None
    cognito_domain: Optional[str] = None
    aws_region: Optional[str] = None

    # Emails that are granted admin when they first complete their profile
    admin_emails: List[str] = []

    # Listing behaviour
    rows_per_page: int = 10
    new_job_window_hours: int = 24
    recent_activity_limit: int = 4

    # Application base URL (for constructing callback URLs etc.)
    app_base_url: str = "http://localhost:8000"  # Default for local dev
    cors_origins: List[str] = [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:8000",
        "http://127.0.0.1:8000",
    ]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
