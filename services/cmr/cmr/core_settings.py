from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "cmr"
    POSTGRES_USER: str = "cmr"
    POSTGRES_PASSWORD: str = "cmr"
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set (e.g. sqlite for local runs)
    DATABASE_URL: Optional[str] = None

    REDIS_URL: Optional[str] = None
    EVENTS_CHANNEL: str = "cmr.delivery-events"
    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 2.0

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    DEFAULT_ACTOR: str = "system"

    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    RUN_MIGRATIONS: bool = True

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
