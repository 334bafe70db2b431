from pydantic_settings import BaseSettings
from pydantic import AnyUrl
from functools import lru_cache


class Settings(BaseSettings):
    # core
    ENV: str = "dev"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # database & redis
    DATABASE_URL: AnyUrl
    # Keep this as a plain string so redis:// URLs are always accepted
    REDIS_URL: str

    # cors
    FRONTEND_ORIGIN: str | None = None
    # Explicit debug-only switch for wide-open CORS in non-prod envs
    CORS_ALLOW_ALL_ORIGINS: bool = False

    # research agent (Firecrawl)
    FIRECRAWL_API_KEY: str | None = None
    FIRECRAWL_BASE_URL: str = "https://api.firecrawl.dev/v2"
    FIRECRAWL_AGENT_MODEL: str = "spark-1-mini"
    FIRECRAWL_TIMEOUT_SECONDS: int = 30

    # crm provider (Attio)
    ATTIO_BASE_URL: str = "https://api.attio.com/v2"
    ATTIO_TIMEOUT_SECONDS: int = 30

    # enrichment dispatch queue
    ENRICHMENT_MAX_PARALLELISM: int = 3
    ENRICHMENT_RETRY_BY_DEFAULT: bool = True
    ENRICHMENT_RETRY_MAX_ATTEMPTS: int = 2
    ENRICHMENT_RETRY_INITIAL_BACKOFF_MS: int = 10_000
    ENRICHMENT_RETRY_BASE: float = 2.0
    # How long a work item waits in the broker when every slot is taken
    ENRICHMENT_SLOT_WAIT_SECONDS: float = 5.0
    # Slot leases expire so a crashed worker cannot hold one forever
    ENRICHMENT_SLOT_LEASE_SECONDS: int = 900

    # enrichment polling
    ENRICHMENT_POLL_INTERVAL_SECONDS: int = 60
    ENRICHMENT_MAX_POLLS: int = 10

    # data retention (in days)
    ENRICHMENT_JOB_RETENTION_DAYS: int = 90

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
