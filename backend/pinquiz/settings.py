"""Settings for the pinquiz backend."""

from __future__ import annotations

from typing import Any, Optional, Tuple

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
    service_name: str = _env_field("pinquiz-api", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
    cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")
    secret_key: str = _env_field("dev-secret-change-me", "SECRET_KEY")
    access_ttl_minutes: int = _env_field(60, "ACCESS_TTL_MINUTES")

    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")

    # Remote compute ("callable function") endpoint; None keeps calls in-process
    functions_base_url: Optional[str] = _env_field(None, "FUNCTIONS_BASE_URL")
    functions_timeout_seconds: float = _env_field(30.0, "FUNCTIONS_TIMEOUT_SECONDS")
    # Text generation endpoint used by crowdsource evaluation
    ai_generate_url: Optional[str] = _env_field(None, "AI_GENERATE_URL")
    ai_timeout_seconds: float = _env_field(120.0, "AI_TIMEOUT_SECONDS")

    # Gameplay
    default_question_time_limit: int = _env_field(20, "DEFAULT_QUESTION_TIME_LIMIT")
    auto_finish_delay_seconds: float = _env_field(1.5, "AUTO_FINISH_DELAY_SECONDS")
    crowdsource_grace_seconds: float = _env_field(2.0, "CROWDSOURCE_GRACE_SECONDS")
    crowdsource_max_submissions_per_player: int = _env_field(3, "CROWDSOURCE_MAX_SUBMISSIONS_PER_PLAYER")
    leaderboard_top_n: int = _env_field(20, "LEADERBOARD_TOP_N")
    pin_length: int = _env_field(6, "PIN_LENGTH")
    pin_max_attempts: int = _env_field(10, "PIN_MAX_ATTEMPTS")

    # Session pointers and retention
    host_session_ttl_hours: int = _env_field(12, "HOST_SESSION_TTL_HOURS")
    player_session_ttl_hours: int = _env_field(24, "PLAYER_SESSION_TTL_HOURS")
    game_retention_days: int = _env_field(30, "GAME_RETENTION_DAYS")
    cleanup_jobs_enabled: bool = _env_field(True, "CLEANUP_JOBS_ENABLED")
    cleanup_interval_hours: int = _env_field(24, "CLEANUP_INTERVAL_HOURS")
    poll_answer_rate_limit: int = _env_field(60, "POLL_ANSWER_RATE_LIMIT")
    poll_answer_rate_window_seconds: int = _env_field(60, "POLL_ANSWER_RATE_WINDOW_SECONDS")

    # Environment helpers
    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        env_nested_delimiter="__",
        extra="ignore",
    )

    @field_validator("cors_allow_origins", mode="before")
    def _split_cors(cls, value) -> Tuple[str, ...]:  # type: ignore[override]
        if value in (None, ""):
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple, set)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        return ()


def _normalise_level(level: str) -> str:
    return level.upper()


settings = Settings()
settings.obs_log_level = _normalise_level(settings.obs_log_level)
