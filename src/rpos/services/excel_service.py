from __future__ import annotations

import logging

from openpyxl import load_workbook

from rpos.domain.errors import AppError, ValidationError

log = logging.getLogger(__name__)

IMPORT_VENDOR_NAME = "Excel import"


class ExcelService:
    def __init__(self, repo, purchase_service, inventory_service):
        self.repo = repo
        self.purchases = purchase_service
        self.inventory = inventory_service

    def import_items_excel(self, path: str) -> tuple[int, int]:
        """
        One row per variant. The stock column is a RESTOCK quantity, not an absolute value.
        Headers:
          name | category | base_price | tax_rate | unit | size | color | stock | low_stock_threshold
        Optional:
          price (variant override) | cost_price (purchase cost, defaults to 0)
        """
        wb = load_workbook(path)
        ws = wb.active

        headers = {}
        for col in range(1, ws.max_column + 1):
            v = ws.cell(row=1, column=col).value
            if isinstance(v, str):
                headers[v.strip().lower()] = col

        required = ["name", "category", "base_price", "tax_rate", "unit", "size", "color", "stock", "low_stock_threshold"]
        for r in required:
            if r not in headers:
                raise ValidationError(f"Missing column header: {r}")

        def cell(row: int, key: str):
            col = headers.get(key)
            return ws.cell(row=row, column=col).value if col else None

        ok = 0
        skipped = 0
        vendor_id = None

        for row in range(2, ws.max_row + 1):
            try:
                name = cell(row, "name")
                size = cell(row, "size")
                color = cell(row, "color")
                if not name or size is None or color is None:
                    skipped += 1
                    continue

                name = str(name).strip()
                size = str(size).strip()
                color = str(color).strip()
                restock_qty = int(float(cell(row, "stock") or 0))
                if restock_qty < 0:
                    skipped += 1
                    continue
                price = cell(row, "price")
                cost = float(cell(row, "cost_price") or 0)
                variant = {"size": size, "color": color, "stock": 0, "price": price}

                existing = self.repo.find_item_by_name(name)
                if existing is None:
                    item_id = self.inventory.add_item(
                        name=name,
                        category=str(cell(row, "category") or "").strip(),
                        base_price=float(cell(row, "base_price")),
                        tax_rate=float(cell(row, "tax_rate")),
                        unit=str(cell(row, "unit") or "pcs").strip(),
                        variants=[variant],
                        low_stock_threshold=int(float(cell(row, "low_stock_threshold") or 0)),
                    )
                else:
                    item_id = existing.id
                    if existing.variant_index(size, color) < 0:
                        self.inventory.add_variant(item_id, variant)

                if restock_qty > 0:
                    if vendor_id is None:
                        vendor_id = self._import_vendor_id()
                    self.purchases.create_purchase(
                        vendor_id=vendor_id,
                        items=[{
                            "item_id": item_id,
                            "size": size,
                            "color": color,
                            "quantity": restock_qty,
                            "cost_price": cost,
                        }],
                    )

                ok += 1
            except (AppError, ValueError, TypeError) as e:
                log.warning("Excel import skipped row %s: %s", row, e)
                skipped += 1

        log.info("items_imported path=%s ok=%s skipped=%s", path, ok, skipped)
        return ok, skipped

    def _import_vendor_id(self) -> str:
        for v in self.purchases.list_vendors():
            if v.name == IMPORT_VENDOR_NAME:
                return v.id
        return self.purchases.add_vendor(IMPORT_VENDOR_NAME, phone="")
