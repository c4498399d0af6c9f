from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PerfCollectorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    collect_interval_seconds: float = Field(default=60.0, gt=0)
    min_save_interval_seconds: float = Field(default=300.0, ge=0)
    min_ticks: int = Field(default=600, ge=0)
    summary_window_seconds: float = Field(default=6 * 60 * 60, gt=0)
    summary_min_snapshots: int = Field(default=36, ge=1)
    request_timeout_seconds: float = Field(default=1.5, gt=0)
    server_host: Optional[str] = None  # overrides the runner's host (debug external stats source)


class MonitorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    heartbeat_delay_seconds: int = Field(default=15, ge=1)
    heartbeat_fatal_seconds: int = Field(default=60, ge=1)
    health_check_delay_seconds: int = Field(default=10, ge=1)
    health_check_fatal_seconds: int = Field(default=180, ge=1)
    health_check_interval_seconds: float = Field(default=1.0, gt=0)
    health_check_timeout_seconds: float = Field(default=1.5, gt=0)

    @model_validator(mode="after")
    def _delay_before_fatal(self) -> "MonitorConfig":
        if self.heartbeat_delay_seconds >= self.heartbeat_fatal_seconds:
            raise ValueError("heartbeat_delay_seconds must be lower than heartbeat_fatal_seconds")
        if self.health_check_delay_seconds >= self.health_check_fatal_seconds:
            raise ValueError("health_check_delay_seconds must be lower than health_check_fatal_seconds")
        return self


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    telemetry: PerfCollectorConfig = Field(default_factory=PerfCollectorConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
