from __future__ import annotations

from pydantic import ConfigDict, field_validator, model_validator
from pydantic_settings import BaseSettings

DEFAULT_ALLOWED_SERVICES = [
    "Amazon Lightsail",
    "AmazonCloudWatch",
    "Amazon EC2 Container Registry (ECR)",
    "Amazon Simple Storage Service",
]


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_prefix="BLOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App
    env: str = "dev"
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    site_url: str = "http://localhost:8080"
    site_title: str = "Personal Blog"

    # Logging
    log_level: str = "INFO"
    pretty_logging: bool = False
    log_file: str = ""

    # Telemetry
    metric_export_interval_seconds: float = 5.0
    runtime_sample_interval_seconds: float = 5.0
    span_buffer_capacity: int = 10

    # Cost tracking
    cost_tracking_enabled: bool = False
    cost_refresh_interval_hours: float = 6.0
    cost_region: str = "us-east-1"
    cost_allowed_services: list[str] = list(DEFAULT_ALLOWED_SERVICES)
    cost_retry_attempts: int = 3
    cost_retry_min_wait_seconds: int = 2
    cost_retry_max_wait_seconds: int = 30

    # Profiling
    profiling_enabled: bool = False
    profiling_report: str = ""

    @field_validator("span_buffer_capacity")
    @classmethod
    def positive_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("span_buffer_capacity must be at least 1")
        return v

    @model_validator(mode="after")
    def check_profiling(self) -> Settings:
        if self.profiling_enabled and not self.profiling_report:
            raise ValueError("profiling_report must be set when profiling is enabled")
        return self


def get_settings() -> Settings:
    return Settings()
