from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 声明 .env 里会出现的字段
    secret_key: str = "dev_secret"
    access_token_expire_minutes: int = 120

    database_url: str = "sqlite:///./lending.db"
    sqlite_busy_timeout: float = 15.0

    log_level: str = "INFO"

    # 借用单号：PMJ-2026-001
    borrowing_code_prefix: str = "PMJ"
    # 物品编号：TKJ-KLAB
    item_code_prefix: str = "TKJ"
    # 单号冲突时最多重试几次
    code_max_attempts: int = 5

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
