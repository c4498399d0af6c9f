from __future__ import annotations

import os
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from serverwatch.core.config.io import atomic_write_json, ensure_dirs, read_json_file, recover_from_corrupt, snapshot_last_known_good
from serverwatch.core.config.models import AppConfig, MonitorConfig, PerfCollectorConfig
from serverwatch.core.config.paths import ProfilePaths
from serverwatch.core.errors import ConfigError

RawFiles = Dict[str, Dict[str, Any]]

# filename -> (AppConfig field, model)
CONFIG_FILES: Dict[str, Tuple[str, Type[BaseModel]]] = {
    "telemetry.json": ("telemetry", PerfCollectorConfig),
    "monitor.json": ("monitor", MonitorConfig),
}


class ConfigManager:
    """
    Loads config/telemetry.json and config/monitor.json of a profile.

    Missing files are filled with defaults (and written, unless read-only).
    A corrupt file is moved to config/backups/ and replaced by its last-known-good copy.
    """

    def __init__(self, *, fs: Optional[ProfilePaths] = None, logger=None, read_only: bool = False):
        self.fs = fs or ProfilePaths(".")
        self.logger = logger
        self.read_only = read_only
        self._cfg: Optional[AppConfig] = None
        self._seen: RawFiles = {}

    def load_all(self) -> AppConfig:
        if not self.read_only:
            ensure_dirs(self.fs.config_dir, self.fs.backups_dir, self.fs.last_known_good_dir)
        raw = self._with_defaults(self._read_all())
        cfg = self._build(raw)
        self._cfg = cfg
        self._seen = raw
        if not self.read_only:
            snapshot_last_known_good(self.fs.config_dir, self.fs.last_known_good_dir, CONFIG_FILES)
        return cfg

    def get(self) -> AppConfig:
        if self._cfg is None:
            raise ConfigError("Config not loaded.")
        return self._cfg

    def save_non_sensitive(self, filename: str, data: Dict[str, Any]) -> AppConfig:
        """Validates, writes (with a backup of the previous file) and reloads. Invalid data raises ConfigError."""
        if self.read_only:
            raise ConfigError("Config manager is read-only.")
        entry = CONFIG_FILES.get(filename)
        if entry is None:
            raise ConfigError(f"Unknown config file: {filename}", filename=filename)
        try:
            entry[1].model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"{filename} invalid: {e}", filename=filename) from e
        atomic_write_json(os.path.join(self.fs.config_dir, filename), data, self.fs.backups_dir)
        return self.load_all()

    def reload_if_changed(self) -> bool:
        """True when the files changed on disk and the new set is valid; otherwise the current config stays."""
        if self._cfg is None:
            return False
        raw = self._read_all()
        if all(not data or self._seen.get(name) == data for name, data in raw.items()):
            return False
        raw = self._with_defaults(raw)
        try:
            cfg = self._build(raw)
        except ConfigError as e:
            if self.logger:
                self.logger.warning(f"Config reload rejected (keeping previous): {e}")
            return False
        self._cfg = cfg
        self._seen = raw
        if self.logger:
            self.logger.info("Config reloaded.")
        return True

    def _read_all(self) -> RawFiles:
        out: RawFiles = {}
        for name in CONFIG_FILES:
            path = os.path.join(self.fs.config_dir, name)
            rr = read_json_file(path)
            if rr.corrupt and not self.read_only:
                data, recovered = recover_from_corrupt(path, self.fs.backups_dir, self.fs.last_known_good_dir)
                if self.logger:
                    self.logger.warning(f"Corrupt config {name} -> recovered={recovered}")
                out[name] = data
            else:
                out[name] = rr.data if rr.ok else {}
        return out

    def _with_defaults(self, raw: RawFiles) -> RawFiles:
        out = dict(raw)
        for name, (_, model) in CONFIG_FILES.items():
            if out.get(name):
                continue
            out[name] = model().model_dump()
            if self.logger:
                self.logger.warning(f"Missing config {name}; using defaults.")
            if not self.read_only:
                atomic_write_json(os.path.join(self.fs.config_dir, name), out[name], self.fs.backups_dir)
        return out

    def _build(self, raw: RawFiles) -> AppConfig:
        try:
            return AppConfig(**{attr: model.model_validate(raw.get(name) or {}) for name, (attr, model) in CONFIG_FILES.items()})
        except ValidationError as e:
            raise ConfigError(str(e)) from e
