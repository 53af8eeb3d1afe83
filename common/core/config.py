from typing import Optional, List
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "quota-engine"
    api_version: str = "v1"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "quota_engine"
    db_use_nullpool: bool = (
        False  # True for one-shot workers (sweep), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis (rate limiter storage shared across API pods)
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    rate_limit_use_redis: bool = False

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    @property
    def rate_limit_storage_uri(self) -> str:
        """Redis in deployed environments, in-process memory otherwise."""
        if self.rate_limit_use_redis:
            return self.redis_connection_url
        return "memory://"

    # OpenTelemetry
    otel_service_name: str = "quota-engine"
    otel_service_version: str = "0.1.0"

    # Axiom (exporters are only attached when a token is configured)
    axiom_token: Optional[str] = None
    axiom_dataset: Optional[str] = None

    # Internal callers (payment webhook relay, scheduler, admin tooling)
    internal_api_token: Optional[str] = None

    # Quota engine
    storage_timeout_seconds: float = 5.0
    quota_strict_enforcement: bool = True  # increment only while usage < limit
    usage_warning_threshold: float = 80.0  # percent
    default_period_days: int = 30  # used when a provider omits the period end

    # External product ids that resolve to plans (current provider first, legacy after)
    starter_product_ids: List[str] = [
        "1c744377-4821-4714-9d0d-5b96acbfb8f0",
        "plan_OXtDPFaYlmYWN",
    ]
    pro_product_ids: List[str] = [
        "8a55bd82-d07a-4655-acd9-25728c50ba4b",
        "plan_HjjXVb5SWxdOK",
    ]

    @property
    def cors_allowed_origins(self) -> List[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:3001",
            ]
        return [
            "https://app.mailient.xyz",
            "https://api.mailient.xyz",
        ]


settings = Settings()
