from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rpos.domain.errors import ValidationError
from rpos.domain.models import (
    Attendance,
    Bill,
    BillLine,
    Customer,
    Expense,
    Item,
    Purchase,
    PurchaseLine,
    Settings,
    Staff,
    Variant,
    Vendor,
    now_iso,
)

log = logging.getLogger(__name__)

BACKUP_VERSION = 1
BACKUP_GLOB = "rpos_backup_*.json"


def _item(d: dict) -> Item:
    return Item(**{**d, "variants": tuple(Variant(**v) for v in d.get("variants", ()))})


def _bill(d: dict) -> Bill:
    return Bill(**{**d, "lines": tuple(BillLine(**l) for l in d.get("lines", ()))})


def _purchase(d: dict) -> Purchase:
    return Purchase(**{**d, "lines": tuple(PurchaseLine(**l) for l in d.get("lines", ()))})


def _staff(d: dict) -> Staff:
    return Staff(**{**d, "permissions": tuple(d.get("permissions", ()))})


# envelope key -> (parser, repository inserter), in restore order
_SECTIONS = (
    ("settings", Settings, "insert_settings"),
    ("items", _item, "add_item"),
    ("customers", Customer, "add_customer"),
    ("vendors", Vendor, "add_vendor"),
    ("bills", _bill, "insert_bill"),
    ("purchases", _purchase, "insert_purchase"),
    ("expenses", Expense, "add_expense"),
    ("staff", _staff, "add_staff"),
    ("attendance", Attendance, "add_attendance"),
)


class BackupService:
    """JSON snapshots of every ledger table.

    The outbox is not part of a snapshot: restoring one replaces the ledger with a state
    whose side effects were already applied.
    """

    def __init__(self, repo, backup_dir: Path | str, settings_service=None, retention: int = 30):
        self.repo = repo
        self.backup_dir = Path(backup_dir)
        self.settings = settings_service
        self.retention = retention

    def export_snapshot(self) -> dict:
        settings = self.repo.get_settings()
        data = {
            "items": self.repo.list_items(),
            "customers": self.repo.list_customers(),
            "bills": self.repo.list_bills(),
            "vendors": self.repo.list_vendors(),
            "purchases": self.repo.list_purchases(),
            "expenses": self.repo.list_expenses(),
            "staff": self.repo.list_staff(),
            "attendance": self.repo.list_attendance(),
            "settings": [settings] if settings else [],
        }
        return {
            "version": BACKUP_VERSION,
            "exportedAt": int(time.time() * 1000),
            "data": {k: [asdict(r) for r in rows] for k, rows in data.items()},
        }

    def restore_snapshot(self, envelope: dict) -> dict[str, int]:
        """Replace every table with the snapshot's contents. All-or-nothing."""
        parsed = self._parse(envelope)
        with self.repo.transaction() as conn:
            self.repo.clear_tables(conn)
            for key, _parser, inserter in _SECTIONS:
                insert = getattr(self.repo, inserter)
                for record in parsed[key]:
                    insert(record, conn=conn)
        counts = {k: len(v) for k, v in parsed.items()}
        log.warning("snapshot_restored %s", " ".join(f"{k}={v}" for k, v in counts.items()))
        return counts

    def create_backup(self) -> Path:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        target = self.backup_dir / f"rpos_backup_{ts}.json"
        target.write_text(json.dumps(self.export_snapshot(), ensure_ascii=False), encoding="utf-8")
        self._enforce_retention(self.retention)
        if self.settings is not None:
            self.settings.mark_backup(now_iso())
        log.info("backup_created path=%s", target)
        return target

    def restore_backup(self, backup_file: Path | str) -> dict[str, int]:
        path = Path(backup_file)
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValidationError(f"Backup file is not valid JSON: {path.name}") from e
        return self.restore_snapshot(envelope)

    def list_backups(self) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        return sorted(self.backup_dir.glob(BACKUP_GLOB))

    def _enforce_retention(self, max_backups: int) -> None:
        files = self.list_backups()
        if len(files) <= max_backups:
            return
        for old in files[: len(files) - max_backups]:
            old.unlink(missing_ok=True)

    @staticmethod
    def _parse(envelope: dict) -> dict[str, list]:
        if not isinstance(envelope, dict) or envelope.get("version") != BACKUP_VERSION:
            raise ValidationError("Unsupported backup format.")
        data = envelope.get("data")
        if not isinstance(data, dict):
            raise ValidationError("Backup has no data section.")
        parsed: dict[str, list] = {}
        for key, parser, _inserter in _SECTIONS:
            try:
                parsed[key] = [parser(row) for row in data.get(key) or []]
            except (TypeError, KeyError, ValueError) as e:
                raise ValidationError(f"Backup section '{key}' is malformed: {e}") from e
        return parsed
