from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "sqlite:///./qsmart.db"

    # --- AUTH ---
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # School-local timezone, used for "today" boundaries
    TIMEZONE: str = "UTC"

    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # Baseline minutes per ticket for new queues
    DEFAULT_AVERAGE_WAIT_TIME: int = 10


settings = Settings()
