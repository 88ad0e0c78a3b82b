from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "development"
    database_url: str = "sqlite:///./coinledger.db"
    # Empty string disables the Redis catalog cache entirely.
    redis_url: str = "redis://localhost:6379/0"

    # The API gateway authenticates users/admins and forwards their ids
    # together with this shared key.
    internal_api_key: str | None = None
    allow_insecure_dev_auth: bool = False

    cors_origins_raw: str = ""
    rate_limit_enabled: bool = True

    # Reference data (plans, slabs, gifts, settings) cache
    catalog_cache_ttl_seconds: int = 30

    # Per-account mutation guard
    ledger_max_retries: int = 5
    ledger_retry_backoff_seconds: float = 0.02
    ledger_lock_timeout_seconds: float = 5.0

    # Pending withdrawals older than this are cancelled by the worker
    withdrawal_expiry_hours: int = 48

    # Economy values in effect until an admin saves the settings row
    default_message_cost_basic: int = 50
    default_message_cost_silver: int = 45
    default_message_cost_gold: int = 40
    default_message_cost_platinum: int = 35
    default_video_call_cost: int = 500
    default_withdrawal_min_amount: int = 500
    default_withdrawal_max_amount: int = 50000
    default_withdrawal_processing_fee: int = 0
    default_withdrawal_daily_limit: int = 10000
    default_withdrawal_weekly_limit: int = 50000

    def cors_origins(self) -> list[str]:
        raw = self.cors_origins_raw.strip()
        if not raw:
            return []
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
