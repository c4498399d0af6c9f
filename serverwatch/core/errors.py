from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class WatchError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return f"{self.code}: {self.user_message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": dict(self.context or {}),
        }


class ConfigError(WatchError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class PerfFetchError(WatchError):
    def __init__(self, user_message: str = "Failed to fetch performance counters.", **ctx: Any):
        super().__init__("perf_fetch_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class PerfParseError(WatchError):
    def __init__(self, user_message: str = "Invalid performance counters data.", **ctx: Any):
        super().__init__("perf_parse_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class StatsFileError(WatchError):
    def __init__(self, user_message: str = "Invalid stats data file.", **ctx: Any):
        super().__init__("stats_file_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)
