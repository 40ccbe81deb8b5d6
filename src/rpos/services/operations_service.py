from __future__ import annotations

import json
import logging
import zipfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path

from rpos.domain.errors import NotFoundError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    sqlite_integrity: str
    db_size_bytes: int
    logs_count: int
    outbox: dict[str, int] = field(default_factory=dict)
    stock_mismatches: tuple[str, ...] = ()
    generated_at: str = ""

    @property
    def outbox_backlog(self) -> int:
        return self.outbox.get("pending", 0) + self.outbox.get("failed", 0)

    @property
    def dead_events(self) -> int:
        return self.outbox.get("dead", 0)

    @property
    def healthy(self) -> bool:
        return self.sqlite_integrity == "ok" and not self.dead_events and not self.stock_mismatches


class OperationsService:
    def __init__(self, repo, stock_service, db_path: Path | str, logs_dir: Path | str, backup_dir: Path | str):
        self.repo = repo
        self.stock = stock_service
        self.db_path = Path(db_path)
        self.logs_dir = Path(logs_dir)
        self.backup_dir = Path(backup_dir)

    def run_health_check(self) -> HealthReport:
        integrity = self.repo.integrity_check()
        logs_count = len(list(self.logs_dir.glob("*.log"))) if self.logs_dir.exists() else 0
        size = self.db_path.stat().st_size if self.db_path.exists() else 0
        report = HealthReport(
            sqlite_integrity=integrity,
            db_size_bytes=size,
            logs_count=logs_count,
            outbox=self.repo.count_side_effects_by_status(),
            stock_mismatches=tuple(self.stock.stock_mismatches()),
            generated_at=datetime.now().isoformat(timespec="seconds"),
        )
        if not report.healthy:
            log.warning(
                "health_check_degraded integrity=%s dead=%s mismatches=%s",
                integrity, report.dead_events, len(report.stock_mismatches),
            )
        return report

    def export_diagnostics(self, target_dir: Path | str | None = None) -> Path:
        out_dir = Path(target_dir) if target_dir else self.db_path.parent
        out_dir.mkdir(parents=True, exist_ok=True)

        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        zip_path = out_dir / f"diagnostics_{ts}.zip"
        report = self.run_health_check()

        with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            if self.db_path.exists():
                zf.write(self.db_path, arcname=self.db_path.name)

            if self.logs_dir.exists():
                for f in sorted(self.logs_dir.glob("*.log")):
                    zf.write(f, arcname=f"logs/{f.name}")

            if self.backup_dir.exists():
                latest = sorted(self.backup_dir.glob("rpos_backup_*.json"))
                for f in latest[-3:]:
                    zf.write(f, arcname=f"backups/{f.name}")

            zf.writestr("health_report.json", json.dumps(asdict(report), ensure_ascii=False, indent=2))

        log.info("diagnostics_exported path=%s", zip_path)
        return zip_path

    def restore_latest_backup(self, backup_service) -> Path:
        files = backup_service.list_backups()
        if not files:
            raise NotFoundError("No backups available to restore")
        latest = files[-1]
        backup_service.restore_backup(latest)
        log.warning("backup_restored latest=%s", latest.name)
        return latest
