from functools import lru_cache
from typing import Literal

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when a setting required by an operation is missing."""


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    project_name: str = "Service Health Cache"
    environment: Literal["local", "dev", "staging", "prod", "test"] = Field("local", alias="ENVIRONMENT")
    api_v1_prefix: str = "/api/v1"

    # Health event source
    subscription_id: str | None = Field(default=None, alias="AZURE_SUBSCRIPTION_ID")
    resource_graph_url: AnyHttpUrl = Field("https://management.azure.com", alias="RESOURCE_GRAPH_URL")
    resource_graph_api_version: str = Field("2022-10-01", alias="RESOURCE_GRAPH_API_VERSION")
    resource_graph_token: str | None = Field(default=None, alias="RESOURCE_GRAPH_TOKEN")
    resource_graph_timeout: float = Field(30.0, alias="RESOURCE_GRAPH_TIMEOUT")
    resource_graph_page_size: int = Field(1000, alias="RESOURCE_GRAPH_PAGE_SIZE", ge=1, le=1000)

    # Cache storage (S3-compatible)
    cache_bucket: str | None = Field(default=None, alias="HEALTH_CACHE_BUCKET")
    cache_key: str = Field("servicehealth/cache.json", alias="HEALTH_CACHE_KEY")
    aws_region: str = Field("us-east-1", alias="AWS_REGION")
    aws_profile: str | None = Field(default=None, alias="AWS_PROFILE")
    aws_access_key_id: str | None = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    aws_session_token: str | None = Field(default=None, alias="AWS_SESSION_TOKEN")
    s3_endpoint_url: AnyHttpUrl | None = Field(default=None, alias="AWS_S3_ENDPOINT_URL")

    # Poller
    enable_health_poller: bool = Field(True, alias="ENABLE_HEALTH_POLLER")
    poll_interval_seconds: int = Field(900, alias="POLL_INTERVAL_SECONDS", ge=1)
    poll_on_startup: bool = Field(True, alias="POLL_ON_STARTUP")
    sync_catchup_days: int = Field(7, alias="SYNC_CATCHUP_DAYS", ge=1)
    sync_write_on_update: bool = Field(False, alias="SYNC_WRITE_ON_UPDATE")

    # Dashboard
    dashboard_stale_after_minutes: int = Field(20, alias="DASHBOARD_STALE_AFTER_MINUTES", ge=1)
    dashboard_default_top_n: int = Field(5, alias="DASHBOARD_DEFAULT_TOP_N", ge=1, le=100)

    # Observability
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "text"] = Field("json", alias="LOG_FORMAT")

    @field_validator(
        "subscription_id",
        "resource_graph_token",
        "cache_bucket",
        "aws_profile",
        "aws_access_key_id",
        "aws_secret_access_key",
        "aws_session_token",
        "s3_endpoint_url",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: str | None):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    def require_subscription_id(self) -> str:
        if not self.subscription_id:
            raise ConfigurationError("AZURE_SUBSCRIPTION_ID is not configured")
        return self.subscription_id

    def missing_settings(self) -> list[str]:
        """Names of the environment variables the poller and cache reads need but lack."""
        missing = []
        if not self.subscription_id:
            missing.append("AZURE_SUBSCRIPTION_ID")
        if not self.cache_bucket:
            missing.append("HEALTH_CACHE_BUCKET")
        return missing


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


settings = get_settings()
