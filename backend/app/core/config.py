from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "Launch AI"
    debug: bool = False
    environment: str = "development"  # "production" hides stack traces

    # API
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"
    cors_allowed_origins: list[str] = [
        "http://localhost:3000",
    ]

    # Anthropic
    anthropic_api_key: str = ""

    # LLM Models (one per content-generating agent)
    research_model: str = "claude-sonnet-4-20250514"
    strategy_model: str = "claude-sonnet-4-20250514"
    code_model: str = "claude-sonnet-4-20250514"
    qa_model: str = "claude-sonnet-4-20250514"

    # Auth (HS256 bearer tokens issued by the account service)
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # Build retention
    archive_dir: str = "./temp/builds"  # shared by all builds
    build_ttl_hours: int = 24
    registry_sweep_interval_seconds: int = 3600
    archive_sweep_interval_seconds: int = 21600
    sweeper_enabled: bool = True  # env: SWEEPER_ENABLED

    # Build limits
    log_retention: int = 50
    poll_log_window: int = 20
    min_description_length: int = 20
    estimated_build_time: str = "3-5 minutes"

    # In-memory account service seed
    default_credits: int = 3

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def build_ttl_seconds(self) -> int:
        return self.build_ttl_hours * 3600


@lru_cache
def get_settings() -> Settings:
    return Settings()
