"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """StepGate server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback; health data should not be served to the LAN by accident.
    stepgate_host: str = "127.0.0.1"
    stepgate_port: int = 8001
    stepgate_log_level: str = "info"
    # No auth layer: binding to a non-loopback host must be opted into.
    stepgate_allow_insecure_bind: bool = False

    # Metric
    metric_identifier: str = "HKQuantityTypeIdentifierStepCount"

    # Health platform
    health_platform: Literal["simulated", "apple_health_export"] = "simulated"
    apple_health_export_path: str = ""
    platform_available: bool = True

    # Test data injection (off in production)
    enable_synthetic_data: bool = False
    synthetic_min: int = 1000
    synthetic_max: int = 10000
    synthetic_settle_delay: float = 0.5

    @model_validator(mode="after")
    def _check_synthetic_range(self) -> Settings:
        if self.synthetic_min > self.synthetic_max:
            raise ValueError("synthetic_min must not exceed synthetic_max")
        if self.synthetic_settle_delay < 0:
            raise ValueError("synthetic_settle_delay must be non-negative")
        return self


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
