"""Configuration management backed by pydantic-settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process settings loaded from environment variables (``PERFCORE_*``) and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="PERFCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    log_level: str = "INFO"

    # Execution
    request_timeout_ms: int = Field(default=30000, ge=1)
    global_timeout_seconds: float = Field(default=3600.0, gt=0)
    default_success_threshold: float = Field(default=100.0, ge=0, le=100)
    percentiles: Tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)

    # Lowest-precedence variable scope, e.g. PERFCORE_GLOBAL_VARIABLES='{"baseUrl": "http://api"}'
    global_variables: Dict[str, str] = Field(default_factory=dict)

    # HTTP executors
    http_base_url: Optional[str] = None
    http_user_agent: str = "perfcore/0.1"
    verify_tls: bool = True


@dataclass(frozen=True)
class ExecutionConfig:
    """Immutable per-run configuration handed to the scheduler and harness."""

    request_timeout_ms: int = 30000
    global_timeout_seconds: float = 3600.0
    default_success_threshold: float = 100.0
    percentiles: Tuple[float, ...] = (50.0, 90.0, 95.0, 99.0)
    global_variables: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "global_variables", MappingProxyType(dict(self.global_variables)))
        object.__setattr__(self, "percentiles", tuple(float(p) for p in self.percentiles))

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutionConfig":
        return cls(
            request_timeout_ms=settings.request_timeout_ms,
            global_timeout_seconds=settings.global_timeout_seconds,
            default_success_threshold=settings.default_success_threshold,
            percentiles=settings.percentiles,
            global_variables=settings.global_variables,
        )
