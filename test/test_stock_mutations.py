from pathlib import Path

import pytest

from conftest import add_shirt, variant_stock
from rpos.domain.errors import ConcurrencyError, ValidationError
from rpos.repositories.sqlite_repo import SqliteRepository
from rpos.services.inventory_service import InventoryService
from rpos.services.stock_service import StockService


class StaleOnceRepo(SqliteRepository):
    conflicts = 0

    def replace_item(self, item, expected_version, conn=None):
        if self.conflicts == 0:
            self.conflicts += 1
            return False
        return super().replace_item(item, expected_version, conn=conn)


class AlwaysStaleRepo(SqliteRepository):
    def replace_item(self, item, expected_version, conn=None):
        return False


def _setup(tmp_path: Path, cls=SqliteRepository):
    repo = cls(tmp_path / "stock.db")
    repo.init_db()
    inventory = InventoryService(repo)
    return repo, inventory, StockService(repo)


def test_deduction_clamps_at_zero(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory, stock_m=3, stock_l=4)

    outcome = stock.apply_delta(item_id, "M", "Blue", -5)

    assert outcome.applied
    assert outcome.stock_after == 0
    assert outcome.shortfall == 2
    assert variant_stock(repo, item_id, "M", "Blue") == 0
    assert repo.get_item(item_id).total_stock == 4


def test_missing_item_is_a_logged_no_op(tmp_path: Path, caplog):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory)
    before = repo.get_item(item_id)

    with caplog.at_level("WARNING", logger="rpos.stock"):
        outcome = stock.apply_delta("item_does_not_exist", "M", "Blue", -1)

    assert not outcome.applied
    assert outcome.reason == "item_not_found"
    assert repo.get_item(item_id) == before
    assert "stock_skip_missing_item" in caplog.text


def test_missing_variant_is_a_no_op(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory)
    before = repo.get_item(item_id)

    outcome = stock.apply_delta(item_id, "XL", "Green", -1)

    assert not outcome.applied
    assert outcome.reason == "variant_not_found"
    assert repo.get_item(item_id) == before


def test_total_stock_tracks_variants(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory, stock_m=10, stock_l=4)

    stock.apply_delta(item_id, "M", "Blue", -3)
    stock.add_stock(item_id, "L", "Red", 6)

    item = repo.get_item(item_id)
    assert item.total_stock == sum(v.stock for v in item.variants) == 17
    assert stock.stock_mismatches() == []


def test_replace_bumps_version(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory)
    v0 = repo.get_item(item_id).version

    stock.apply_delta(item_id, "M", "Blue", -1)

    assert repo.get_item(item_id).version == v0 + 1


def test_version_conflict_is_retried(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path, StaleOnceRepo)
    item_id = add_shirt(inventory, stock_m=10)

    outcome = stock.apply_delta(item_id, "M", "Blue", -2)

    assert outcome.applied
    assert variant_stock(repo, item_id, "M", "Blue") == 8


def test_persistent_conflict_raises(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path, AlwaysStaleRepo)
    item_id = add_shirt(inventory)

    with pytest.raises(ConcurrencyError):
        stock.apply_delta(item_id, "M", "Blue", -1)


def test_add_stock_requires_positive_quantity(tmp_path: Path):
    _repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory)

    with pytest.raises(ValidationError):
        stock.add_stock(item_id, "M", "Blue", 0)


def test_low_stock_uses_aggregate_threshold(tmp_path: Path):
    repo, inventory, stock = _setup(tmp_path)
    item_id = add_shirt(inventory, stock_m=2, stock_l=2)
    other = inventory.add_item("Jeans", "Apparel", 900, 12, [{"size": "32", "color": "Black", "stock": 50}])

    low = {i.id for i in stock.low_stock_items()}

    assert item_id not in low
    stock.apply_delta(item_id, "M", "Blue", -1)
    low = {i.id for i in stock.low_stock_items()}
    assert item_id in low
    assert other not in low


def test_item_validation(tmp_path: Path):
    _repo, inventory, _stock = _setup(tmp_path)

    with pytest.raises(ValidationError, match="Tax rate"):
        inventory.add_item("Cap", "Apparel", 10, 7, [{"size": "F", "color": "Red"}])
    with pytest.raises(ValidationError, match="at least one variant"):
        inventory.add_item("Cap", "Apparel", 10, 5, [])
    with pytest.raises(ValidationError, match="Duplicate"):
        inventory.add_item("Cap", "Apparel", 10, 5, [{"size": "F", "color": "Red"}, {"size": "F", "color": "Red"}])
