from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class ProfilePaths:
    """Filesystem layout of a server profile directory."""

    root: str = "."

    @property
    def config_dir(self) -> str:
        return os.path.join(self.root, "config")

    @property
    def data_dir(self) -> str:
        return os.path.join(self.root, "data")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.config_dir, "backups")

    @property
    def last_known_good_dir(self) -> str:
        return os.path.join(self.backups_dir, "last_known_good")

    # Files
    @property
    def telemetry(self) -> str:
        return os.path.join(self.config_dir, "telemetry.json")

    @property
    def monitor(self) -> str:
        return os.path.join(self.config_dir, "monitor.json")

    @property
    def stats_data(self) -> str:
        return os.path.join(self.data_dir, "statsData.json")
