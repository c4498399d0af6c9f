from __future__ import annotations

import glob
import json
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple

MISSING = "missing"
NOT_OBJECT = "not_object"
CORRUPT_PREFIX = "corrupt_json"


@dataclass(frozen=True)
class ReadResult:
    ok: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def missing(self) -> bool:
        return self.error == MISSING

    @property
    def corrupt(self) -> bool:
        return bool(self.error) and self.error.startswith(CORRUPT_PREFIX)


def _stamp() -> str:
    return time.strftime("%Y%m%d_%H%M%S", time.gmtime())


def ensure_dirs(*dirs: str) -> None:
    for d in filter(None, dirs):
        os.makedirs(d, exist_ok=True)


def read_json_file(path: str) -> ReadResult:
    """Reads a JSON object file. Errors: "missing", "not_object", "corrupt_json:<detail>" or the OS error."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except FileNotFoundError:
        return ReadResult(ok=False, error=MISSING)
    except UnicodeDecodeError as e:
        return ReadResult(ok=False, error=f"{CORRUPT_PREFIX}:{e}")
    except OSError as e:
        return ReadResult(ok=False, error=str(e))
    try:
        obj = json.loads(raw)
    except ValueError as e:
        return ReadResult(ok=False, error=f"{CORRUPT_PREFIX}:{e}")
    if not isinstance(obj, dict):
        return ReadResult(ok=False, error=NOT_OBJECT)
    return ReadResult(ok=True, data=obj)


def _prune(backups_dir: str, base: str, keep: int) -> None:
    copies = sorted(glob.glob(os.path.join(glob.escape(backups_dir), f"{glob.escape(base)}.*")), key=os.path.getmtime)
    for old in copies[: max(0, len(copies) - keep)]:
        try:
            os.remove(old)
        except OSError:
            pass


def backup_file(path: str, backups_dir: str, *, reason: str, max_backups: int = 10) -> Optional[str]:
    """Copies path to backups/<name>.<stamp>.<reason>.json, keeping the newest max_backups copies per file."""
    if not os.path.isfile(path):
        return None
    ensure_dirs(backups_dir)
    base = os.path.basename(path)
    dst = os.path.join(backups_dir, f"{base}.{_stamp()}.{reason}.json")
    try:
        shutil.copy2(path, dst)
    except OSError:
        return None
    _prune(backups_dir, base, max_backups)
    return dst


def atomic_write_json(
    path: str,
    data: Dict[str, Any],
    backups_dir: Optional[str] = None,
    *,
    max_backups: int = 10,
    pretty: bool = True,
) -> None:
    """
    Full rewrite through a temp file + os.replace, so readers never see a torn file.
    Config files are written pretty and backed up first; the stats file is written compact.
    """
    folder = os.path.dirname(path) or "."
    ensure_dirs(folder)
    if backups_dir:
        backup_file(path, backups_dir, reason="prewrite", max_backups=max_backups)
    if pretty:
        text = json.dumps(data, indent=2, ensure_ascii=False, sort_keys=True) + "\n"
    else:
        text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=folder)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def recover_from_corrupt(path: str, backups_dir: str, last_known_good_dir: str, *, max_backups: int = 10) -> Tuple[Dict[str, Any], bool]:
    """
    Moves a corrupt file aside (backups/<name>.<stamp>.corrupt.json) and puts
    the last-known-good copy back in place. Returns (data, recovered).
    """
    ensure_dirs(backups_dir)
    base = os.path.basename(path)
    if os.path.exists(path):
        try:
            shutil.move(path, os.path.join(backups_dir, f"{base}.{_stamp()}.corrupt.json"))
        except OSError:
            pass
    lkg = read_json_file(os.path.join(last_known_good_dir, base))
    if not lkg.ok:
        return {}, False
    atomic_write_json(path, lkg.data, backups_dir, max_backups=max_backups)
    return lkg.data, True


def snapshot_last_known_good(config_dir: str, last_known_good_dir: str, names: Iterable[str]) -> None:
    """Copies the given config files (after a successful load) into last_known_good/."""
    ensure_dirs(last_known_good_dir)
    for name in names:
        src = os.path.join(config_dir, name)
        if not os.path.isfile(src):
            continue
        try:
            shutil.copy2(src, os.path.join(last_known_good_dir, name))
        except OSError:
            pass
