from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Provider selector
    llm_provider: str = "openai"

    # OpenAI: gpt-4o-mini for cost efficiency
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str | None = None

    # Anthropic: claude-3-5-haiku for cost efficiency
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-haiku-20241022"
    anthropic_base_url: str | None = None

    # Google: gemini-2.0-flash for cost efficiency
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"
    google_base_url: str | None = None

    # AWS Bedrock (credentials fall back to the default boto3 chain when unset)
    bedrock_model: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    aws_region: str | None = None
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    # Perplexity
    perplexity_api_key: str = ""
    perplexity_model: str = "sonar"

    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_model: str = "openai/gpt-4o-mini"
    openrouter_site_url: str | None = None
    openrouter_site_name: str | None = None

    # Per-user rate limiting
    llm_rate_limit_requests: int = 100
    llm_rate_limit_window_ms: int = 60_000
    llm_max_tokens_per_request: int = 4096
    rate_limit_cleanup_interval_s: float = 60.0  # 0 disables the sweep task

    # App
    app_env: str = "development"
    app_debug: bool = True

    # CORS
    allowed_origins: str = "*"  # comma-separated, e.g. "https://app.example.com,https://admin.example.com"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings_for_production() -> None:
    """Validate critical settings. Called on startup in non-test environments."""
    errors: list[str] = []

    if settings.llm_rate_limit_requests < 1:
        errors.append("LLM_RATE_LIMIT_REQUESTS must be at least 1")

    if settings.llm_rate_limit_window_ms < 1:
        errors.append("LLM_RATE_LIMIT_WINDOW_MS must be at least 1")

    if settings.app_env == "production":
        if settings.allowed_origins == "*":
            errors.append("ALLOWED_ORIGINS must not be '*' in production")
        if settings.app_debug:
            errors.append("APP_DEBUG must be false in production")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
