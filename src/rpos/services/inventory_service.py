from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Optional

from rpos.domain.errors import ConcurrencyError, NotFoundError, ValidationError
from rpos.domain.models import Item, Variant, new_id, now_iso
from rpos.domain.pricing import validate_tax_rate
from rpos.services.stock_service import total_stock

log = logging.getLogger(__name__)

ITEM_EDITABLE = {"name", "category", "base_price", "tax_rate", "unit", "hsn_code", "low_stock_threshold", "variants"}


def _to_variant(raw: Variant | dict) -> Variant:
    if isinstance(raw, Variant):
        v = raw
    else:
        price = raw.get("price")
        v = Variant(
            size=str(raw.get("size") or "").strip(),
            color=str(raw.get("color") or "").strip(),
            sku=str(raw.get("sku") or "").strip(),
            stock=int(raw.get("stock") or 0),
            price=(float(price) if price not in (None, "") else None),
        )
    if not v.size or not v.color:
        raise ValidationError("Variant size and color are required.")
    if v.stock < 0:
        raise ValidationError("Stock values must be >= 0.")
    if v.price is not None and v.price < 0:
        raise ValidationError("Variant price must be >= 0.")
    return v


def _to_variants(raw: Iterable[Variant | dict]) -> tuple[Variant, ...]:
    variants = tuple(_to_variant(v) for v in raw)
    if not variants:
        raise ValidationError("An item needs at least one variant.")
    keys = [(v.size, v.color) for v in variants]
    if len(set(keys)) != len(keys):
        raise ValidationError("Duplicate size/color variant.")
    return variants


class InventoryService:
    def __init__(self, repo, max_attempts: int = 3):
        self.repo = repo
        self.max_attempts = max_attempts

    def list_items(self) -> list[Item]:
        return self.repo.list_items()

    def low_stock_items(self) -> list[Item]:
        return self.repo.list_low_stock_items()

    def get_item(self, item_id: str) -> Item:
        item = self.repo.get_item(item_id)
        if not item:
            raise NotFoundError("Item not found.")
        return item

    def add_item(
        self,
        name: str,
        category: str,
        base_price: float,
        tax_rate: float,
        variants: Iterable[Variant | dict],
        unit: str = "pcs",
        low_stock_threshold: int = 5,
        hsn_code: Optional[str] = None,
    ) -> str:
        name = (name or "").strip()
        category = (category or "").strip()
        if not name or not category:
            raise ValidationError("Name and category are required.")
        if float(base_price) < 0:
            raise ValidationError("Base price must be >= 0.")
        if int(low_stock_threshold) < 0:
            raise ValidationError("Low stock threshold must be >= 0.")
        rate = validate_tax_rate(tax_rate)
        parsed = _to_variants(variants)

        ts = now_iso()
        item = Item(
            id=new_id("item"),
            name=name,
            category=category,
            base_price=float(base_price),
            tax_rate=rate,
            unit=(unit or "pcs").strip(),
            variants=parsed,
            total_stock=total_stock(parsed),
            low_stock_threshold=int(low_stock_threshold),
            hsn_code=hsn_code,
            created_at=ts,
            updated_at=ts,
        )
        self.repo.add_item(item)
        log.info("item_added id=%s name=%s variants=%s stock=%s", item.id, name, len(parsed), item.total_stock)
        return item.id

    def update_item(self, item_id: str, **fields) -> Item:
        unknown = set(fields) - ITEM_EDITABLE
        if unknown:
            raise ValidationError(f"Unknown item fields: {', '.join(sorted(unknown))}")

        for _attempt in range(self.max_attempts):
            current = self.get_item(item_id)
            changes = dict(fields)
            if "name" in changes:
                changes["name"] = (changes["name"] or "").strip()
                if not changes["name"]:
                    raise ValidationError("Name is required.")
            if "base_price" in changes:
                if float(changes["base_price"]) < 0:
                    raise ValidationError("Base price must be >= 0.")
                changes["base_price"] = float(changes["base_price"])
            if "tax_rate" in changes:
                changes["tax_rate"] = validate_tax_rate(changes["tax_rate"])
            if "low_stock_threshold" in changes and int(changes["low_stock_threshold"]) < 0:
                raise ValidationError("Low stock threshold must be >= 0.")
            if "variants" in changes:
                changes["variants"] = _to_variants(changes["variants"])
                changes["total_stock"] = total_stock(changes["variants"])

            updated = replace(current, updated_at=now_iso(), **changes)
            if self.repo.replace_item(updated, expected_version=current.version):
                log.info("item_updated id=%s fields=%s", item_id, ",".join(sorted(fields)))
                return self.get_item(item_id)
        raise ConcurrencyError("Item changed while saving. Please retry.")

    def add_variant(self, item_id: str, variant: Variant | dict) -> Item:
        current = self.get_item(item_id)
        return self.update_item(item_id, variants=[*current.variants, _to_variant(variant)])

    def delete_item(self, item_id: str) -> None:
        if not self.repo.delete_item(item_id):
            raise NotFoundError("Item not found.")
        log.info("item_deleted id=%s", item_id)
