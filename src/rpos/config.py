from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path
    backups_dir: Path


@dataclass(frozen=True)
class RuntimeConfig:
    sync_url: str | None = None
    sync_timeout: float = 10.0
    outbox_max_attempts: int = 5
    backup_retention: int = 30


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "RetailPOS") -> AppPaths:
    override = os.environ.get("RPOS_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    backups = base / "backups"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs, backups_dir=backups)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_runtime_config() -> RuntimeConfig:
    return RuntimeConfig(
        sync_url=os.environ.get("RPOS_SYNC_URL", "").strip() or None,
        sync_timeout=_env_float("RPOS_SYNC_TIMEOUT", 10.0),
        outbox_max_attempts=max(1, _env_int("RPOS_OUTBOX_MAX_ATTEMPTS", 5)),
        backup_retention=max(1, _env_int("RPOS_BACKUP_RETENTION", 30)),
    )
