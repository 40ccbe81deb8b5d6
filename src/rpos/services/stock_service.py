from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from typing import Iterable, Optional

from rpos.domain.errors import ConcurrencyError, ValidationError
from rpos.domain.models import Item, Variant, now_iso

log = logging.getLogger("rpos.stock")


@dataclass(frozen=True)
class StockOutcome:
    item_id: str
    size: Optional[str]
    color: Optional[str]
    requested: int
    applied: bool
    stock_after: Optional[int] = None
    shortfall: int = 0
    reason: Optional[str] = None


def total_stock(variants: Iterable[Variant]) -> int:
    return sum(int(v.stock) for v in variants)


class StockService:
    def __init__(self, repo, max_attempts: int = 3):
        self.repo = repo
        self.max_attempts = max_attempts

    def apply_delta(
        self,
        item_id: str,
        size: Optional[str],
        color: Optional[str],
        signed_quantity: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> StockOutcome:
        """
        Add ``signed_quantity`` to one variant, floor at zero, then replace the whole item.

        A missing item or variant is not an error: the outcome comes back with
        ``applied=False`` and the miss is logged, so stale cart references never block a sale.
        """
        delta = int(signed_quantity)
        for attempt in range(1, self.max_attempts + 1):
            item = self.repo.get_item(item_id, conn=conn)
            if item is None:
                log.warning("stock_skip_missing_item item=%s size=%s color=%s delta=%s", item_id, size, color, delta)
                return StockOutcome(item_id, size, color, delta, applied=False, reason="item_not_found")

            idx = item.variant_index(size, color) if size is not None and color is not None else -1
            if idx < 0:
                log.warning("stock_skip_missing_variant item=%s size=%s color=%s delta=%s", item_id, size, color, delta)
                return StockOutcome(item_id, size, color, delta, applied=False, reason="variant_not_found")

            updated, new_stock, shortfall = self._with_delta(item, idx, delta)
            if self.repo.replace_item(updated, expected_version=item.version, conn=conn):
                if shortfall:
                    log.warning(
                        "stock_clamped item=%s size=%s color=%s delta=%s shortfall=%s",
                        item_id, size, color, delta, shortfall,
                    )
                log.info("stock_applied item=%s size=%s color=%s delta=%s stock_after=%s", item_id, size, color, delta, new_stock)
                return StockOutcome(item_id, size, color, delta, applied=True, stock_after=new_stock, shortfall=shortfall)

            log.warning("stock_version_conflict item=%s attempt=%s", item_id, attempt)

        raise ConcurrencyError(f"Item {item_id} kept changing while adjusting stock.")

    def add_stock(
        self,
        item_id: str,
        size: Optional[str],
        color: Optional[str],
        quantity: int,
        conn: Optional[sqlite3.Connection] = None,
    ) -> StockOutcome:
        if int(quantity) <= 0:
            raise ValidationError("Quantity to add must be > 0.")
        return self.apply_delta(item_id, size, color, int(quantity), conn=conn)

    def low_stock_items(self) -> list[Item]:
        return self.repo.list_low_stock_items()

    def stock_mismatches(self) -> list[str]:
        """Ids of items whose aggregate disagrees with their variants (or that hold negative stock)."""
        bad: list[str] = []
        for item in self.repo.list_items():
            if item.total_stock != total_stock(item.variants) or any(v.stock < 0 for v in item.variants):
                bad.append(item.id)
        return bad

    @staticmethod
    def _with_delta(item: Item, idx: int, delta: int) -> tuple[Item, int, int]:
        variant = item.variants[idx]
        raw = int(variant.stock) + delta
        new_stock = max(0, raw)
        variants = list(item.variants)
        variants[idx] = replace(variant, stock=new_stock)
        updated = replace(
            item,
            variants=tuple(variants),
            total_stock=total_stock(variants),
            updated_at=now_iso(),
        )
        return updated, new_stock, new_stock - raw
