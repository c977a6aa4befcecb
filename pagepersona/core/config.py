import os
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

load_dotenv()


def _env(name: str, default: str):
    """Field read from the environment each time Settings() is built; pydantic parses and validates the raw string."""
    return Field(default_factory=lambda: os.getenv(name, default))


class Settings(BaseModel):
    """Application settings loaded from environment: OpenAI model, shared store URL, job/lock/cache TTLs, pipeline limits and tier header switch.
    Why available: Single source of configuration so the job manager, rate limiter, result cache and pipeline agree on TTLs and limits."""
    model_config = ConfigDict(validate_default=True)

    openai_api_key: str = _env("OPENAI_API_KEY", "")
    chat_model: str = _env("CHAT_MODEL", "gpt-4o-mini")
    prompt_version: str = _env("PROMPT_VERSION", "v1")

    redis_url: str = _env("REDIS_URL", "redis://localhost:6379/0")  # memory:// = in-process store
    redis_disabled: bool = _env("REDIS_DISABLED", "false")
    redis_connect_timeout: float = _env("REDIS_CONNECT_TIMEOUT", "3.0")

    job_ttl_seconds: int = _env("JOB_TTL_SECONDS", "3600")
    job_lock_ttl_seconds: int = _env("JOB_LOCK_TTL_SECONDS", "300")
    cache_ttl_seconds: int = _env("CACHE_TTL_SECONDS", "3600")
    text_cache_sample_chars: int = _env("TEXT_CACHE_SAMPLE_CHARS", "100")

    max_clean_chars: int = _env("MAX_CLEAN_CHARS", "45000")
    max_text_chars: int = _env("MAX_TEXT_CHARS", "50000")
    fetch_timeout_seconds: float = _env("FETCH_TIMEOUT_SECONDS", "15")
    max_page_kb: int = _env("MAX_PAGE_KB", "2048")

    job_wait_timeout_seconds: float = _env("JOB_WAIT_TIMEOUT_SECONDS", "30")
    job_poll_interval_seconds: float = _env("JOB_POLL_INTERVAL_SECONDS", "0.5")

    tier_header_enabled: bool = _env("TIER_HEADER_ENABLED", "true")
    log_level: str = _env("LOG_LEVEL", "INFO")

    @field_validator(
        "job_ttl_seconds",
        "job_lock_ttl_seconds",
        "cache_ttl_seconds",
        "text_cache_sample_chars",
        "max_clean_chars",
        "max_text_chars",
        "max_page_kb",
        "fetch_timeout_seconds",
        "redis_connect_timeout",
        "job_wait_timeout_seconds",
        "job_poll_interval_seconds",
    )
    @classmethod
    def must_be_positive(cls, v):
        """Ensure TTLs, limits and timeouts are positive. Prevents invalid config from env."""
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @model_validator(mode="after")
    def lock_ttl_below_job_ttl(self):
        """A crashed lock holder must release before the job record it guards expires."""
        if self.job_lock_ttl_seconds >= self.job_ttl_seconds:
            raise ValueError(
                f"JOB_LOCK_TTL_SECONDS ({self.job_lock_ttl_seconds}) must be lower than "
                f"JOB_TTL_SECONDS ({self.job_ttl_seconds})"
            )
        return self


settings = Settings()
