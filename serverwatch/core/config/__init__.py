"""
Profile configuration (config/*.json), validated with pydantic.

Missing files are created with defaults; corrupt files are restored from last-known-good.
"""

from serverwatch.core.config.manager import ConfigManager
from serverwatch.core.config.models import AppConfig, MonitorConfig, PerfCollectorConfig
from serverwatch.core.config.paths import ProfilePaths

__all__ = ["ConfigManager", "AppConfig", "MonitorConfig", "PerfCollectorConfig", "ProfilePaths"]
