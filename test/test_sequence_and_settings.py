import sqlite3
from pathlib import Path

import pytest

from rpos.domain.errors import AllocationError, ValidationError
from rpos.repositories.sqlite_repo import SqliteRepository
from rpos.services.sequence_service import SequenceService
from rpos.services.settings_service import SettingsService


class LockedRepo(SqliteRepository):
    def compare_and_set_invoice_counter(self, expected, new_value):
        raise sqlite3.OperationalError("database is locked")


class AlwaysStaleRepo(SqliteRepository):
    def compare_and_set_invoice_counter(self, expected, new_value):
        return False


class RacingRepo(SqliteRepository):
    """Another writer takes the current number right before our first swap."""

    raced = False

    def compare_and_set_invoice_counter(self, expected, new_value):
        if not self.raced:
            self.raced = True
            super().compare_and_set_invoice_counter(expected, new_value)
        return super().compare_and_set_invoice_counter(expected, new_value)


def _repo(tmp_path: Path, cls=SqliteRepository):
    repo = cls(tmp_path / "ledger.db")
    repo.init_db()
    return repo


def test_sequential_invoice_numbers(tmp_path: Path):
    seq = SequenceService(_repo(tmp_path))

    assert seq.next_invoice_number() == "INV-00001"
    assert seq.next_invoice_number() == "INV-00002"
    assert seq.peek_next_invoice_number() == "INV-00003"


def test_settings_created_on_first_access(tmp_path: Path):
    repo = _repo(tmp_path)
    assert repo.get_settings() is None

    s = SettingsService(repo).get_settings()

    assert s.id == "default"
    assert s.invoice_prefix == "INV"
    assert s.invoice_counter == 1


def test_prefix_change_keeps_counter_increasing(tmp_path: Path):
    repo = _repo(tmp_path)
    settings = SettingsService(repo)
    seq = SequenceService(repo, settings)

    first = seq.next_invoice_number()
    settings.update_settings(invoice_prefix="SHOP")
    second = seq.next_invoice_number()

    assert first == "INV-00001"
    assert second == "SHOP-00002"


def test_counter_cannot_move_backwards(tmp_path: Path):
    repo = _repo(tmp_path)
    settings = SettingsService(repo)
    seq = SequenceService(repo, settings)
    seq.next_invoice_number()
    seq.next_invoice_number()

    with pytest.raises(ValidationError, match="backwards"):
        settings.update_settings(invoice_counter=1)

    settings.update_settings(invoice_counter=100)
    assert seq.next_invoice_number() == "INV-00100"


def test_settings_validation(tmp_path: Path):
    settings = SettingsService(_repo(tmp_path))

    with pytest.raises(ValidationError):
        settings.update_settings(invoice_prefix="  ")
    with pytest.raises(ValidationError):
        settings.update_settings(thermal_printer_width=72)

    updated = settings.update_settings(shop_name="Corner Store", thermal_printer_width=80)
    assert updated.shop_name == "Corner Store"
    assert updated.thermal_printer_width == 80


def test_storage_failure_issues_no_number(tmp_path: Path):
    repo = _repo(tmp_path, LockedRepo)
    seq = SequenceService(repo)

    with pytest.raises(AllocationError):
        seq.next_invoice_number()
    assert repo.get_settings().invoice_counter == 1


def test_exhausted_swaps_fail_closed(tmp_path: Path):
    repo = _repo(tmp_path, AlwaysStaleRepo)
    seq = SequenceService(repo, max_attempts=3)

    with pytest.raises(AllocationError):
        seq.next_invoice_number()


def test_conflicting_writer_never_yields_duplicate(tmp_path: Path):
    repo = _repo(tmp_path, RacingRepo)
    seq = SequenceService(repo)

    number = seq.next_invoice_number()

    assert number == "INV-00002"
    assert repo.get_settings().invoice_counter == 3


def test_migrations_are_idempotent(tmp_path: Path):
    repo = _repo(tmp_path)
    repo.init_db()

    conn = repo._conn()
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    conn.close()
    assert versions == [1, 2]
    assert repo.integrity_check() == "ok"
