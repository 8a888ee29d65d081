"""Settings for the search relevance service."""

from __future__ import annotations

from typing import Optional

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
	service_name: str = _env_field("relevance-api", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
	obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
	obs_metrics_public: bool = _env_field(True, "OBS_METRICS_PUBLIC")

	# Client-facing search behaviour
	search_debounce_ms: int = _env_field(200, "SEARCH_DEBOUNCE_MS")
	search_min_query_length: int = _env_field(2, "SEARCH_MIN_QUERY_LENGTH")
	search_instant: bool = _env_field(True, "SEARCH_INSTANT")
	search_default_limit: int = _env_field(20, "SEARCH_DEFAULT_LIMIT")
	search_max_limit: int = _env_field(50, "SEARCH_MAX_LIMIT")

	# Query cache
	search_cache_ttl_seconds: float = _env_field(300.0, "SEARCH_CACHE_TTL_SECONDS")
	search_cache_max_entries: int = _env_field(50, "SEARCH_CACHE_MAX_ENTRIES")
	search_timeout_seconds: float = _env_field(5.0, "SEARCH_TIMEOUT_SECONDS")

	# History & trending
	search_history_limit: int = _env_field(10, "SEARCH_HISTORY_LIMIT")
	trending_recency_weight: float = _env_field(1.0, "TRENDING_RECENCY_WEIGHT")
	trending_recency_tau_hours: float = _env_field(24.0, "TRENDING_RECENCY_TAU_HOURS")
	trending_candidate_window: int = _env_field(50, "TRENDING_CANDIDATE_WINDOW")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		extra="ignore",
	)

	@field_validator("obs_log_level", mode="before")
	def _normalise_level(cls, value):  # type: ignore[override]
		if value in (None, ""):
			return "INFO"
		return str(value).strip().upper()

	@field_validator("search_debounce_ms", "search_min_query_length", "search_cache_max_entries", mode="after")
	def _non_negative(cls, value: int) -> int:  # type: ignore[override]
		return max(0, int(value))


settings = Settings()
