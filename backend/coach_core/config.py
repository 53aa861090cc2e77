from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "Potok Coach"
    app_env: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Memory persistence: "null" (offline defaults) or "sql"
    memory_backend: str = "null"
    database_url: str = "sqlite+aiosqlite:///./coach_memory.db"
    coach_user_key: str = "local"

    # Circuit breakers
    memory_breaker_failure_threshold: int = 3
    memory_breaker_reset_timeout_ms: int = 8000
    runtime_breaker_failure_threshold: int = 2
    explainability_breaker_failure_threshold: int = 2
    breaker_reset_timeout_ms: int = 8000

    # Privacy: strings longer than this are truncated before persistence
    payload_max_chars: int = 500

    # Telemetry budgets (ms) per timing metric
    telemetry_budgets_ms: dict[str, int] = {
        "coach_response_time": 300,
        "coach_overlay_time": 50,
        "memory_fetch_time": 150,
        "explainability_latency": 200,
        "trust_update_time": 120,
    }

    # Intervention policy
    daily_nudge_limit: int = 3
    nudge_min_interval_minutes: int = 180
    nudge_cooldown_after_ignore_hours: int = 6
    nudge_ignore_threshold: int = 3
    dedupe_capacity: int = 500

    # CORS: comma-separated origins of the screens consuming the coach
    cors_allow_origins: str = "http://localhost:3000"
    cors_allow_origin_regex: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


settings = Settings()
