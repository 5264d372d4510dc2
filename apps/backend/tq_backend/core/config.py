from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = ""

    environment: str = "development"
    cors_origins: str = "http://localhost:3000"

    # Header injected by the upstream auth proxy with the authenticated user id
    auth_user_header: str = "X-Authenticated-User"

    # Fernet key for provider tokens at rest
    fernet_key: str = ""

    github_api_url: str = "https://api.github.com"
    gitlab_base_url: str = "https://gitlab.com"

    provider_timeout_seconds: float = 30.0
    provider_page_size: int = 100
    rate_limit_max_wait_seconds: float = 60.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
