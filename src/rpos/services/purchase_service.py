from __future__ import annotations

import logging
from typing import Iterable, Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import Purchase, PurchaseLine, Vendor, new_id, now_iso

log = logging.getLogger(__name__)


class PurchaseService:
    def __init__(self, repo, stock_service):
        self.repo = repo
        self.stock = stock_service

    # ---------- Vendors ----------
    def add_vendor(
        self,
        name: str,
        phone: str,
        email: Optional[str] = None,
        address: Optional[str] = None,
        gst_number: Optional[str] = None,
    ) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Vendor name is required.")
        vendor = Vendor(
            id=new_id("vendor"),
            name=name,
            phone=(phone or "").strip(),
            email=email,
            address=address,
            gst_number=gst_number,
            created_at=now_iso(),
        )
        self.repo.add_vendor(vendor)
        log.info("vendor_added id=%s", vendor.id)
        return vendor.id

    def get_vendor(self, vendor_id: str) -> Vendor:
        v = self.repo.get_vendor(vendor_id)
        if not v:
            raise NotFoundError("Vendor not found.")
        return v

    def list_vendors(self) -> list[Vendor]:
        return self.repo.list_vendors()

    def update_vendor(self, vendor_id: str, **fields) -> Vendor:
        if "name" in fields and not (fields["name"] or "").strip():
            raise ValidationError("Vendor name is required.")
        try:
            updated = self.repo.update_vendor(vendor_id, fields)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not updated:
            raise NotFoundError("Vendor not found.")
        return self.get_vendor(vendor_id)

    def delete_vendor(self, vendor_id: str) -> None:
        if not self.repo.delete_vendor(vendor_id):
            raise NotFoundError("Vendor not found.")

    # ---------- Purchases ----------
    def create_purchase(
        self,
        vendor_id: str,
        items: Iterable[dict],
        paid_amount: Optional[float] = None,
        invoice_number: Optional[str] = None,
    ) -> str:
        """
        items: [{item_id, size, color, quantity, cost_price}]

        The purchase record and every stock increase commit together; an unknown
        item or variant rolls the whole purchase back.
        """
        items = list(items)
        if not items:
            raise ValidationError("Purchase has no lines.")
        vendor = self.get_vendor(vendor_id)

        lines: list[PurchaseLine] = []
        for it in items:
            qty = int(it["quantity"])
            cost = float(it["cost_price"])
            if qty <= 0:
                raise ValidationError("Qty must be >= 1.")
            if cost < 0:
                raise ValidationError("Cost price must be >= 0.")
            item = self.repo.get_item(str(it["item_id"]))
            if not item:
                raise NotFoundError("Item not found.")
            lines.append(
                PurchaseLine(
                    item_id=item.id,
                    name=item.name,
                    size=it.get("size"),
                    color=it.get("color"),
                    quantity=qty,
                    cost_price=cost,
                    total=qty * cost,
                )
            )

        total = sum(l.total for l in lines)
        paid = total if paid_amount is None else float(paid_amount)
        if paid < 0:
            raise ValidationError("Paid amount must be >= 0.")
        if paid >= total:
            status = "received"
        elif paid > 0:
            status = "partial"
        else:
            status = "pending"

        purchase = Purchase(
            id=new_id("purchase"),
            vendor_id=vendor.id,
            vendor_name=vendor.name,
            lines=tuple(lines),
            total_amount=total,
            paid_amount=paid,
            status=status,
            created_at=now_iso(),
            invoice_number=invoice_number,
        )

        with self.repo.transaction() as conn:
            self.repo.insert_purchase(purchase, conn=conn)
            for line in lines:
                outcome = self.stock.add_stock(line.item_id, line.size, line.color, line.quantity, conn=conn)
                if not outcome.applied:
                    raise NotFoundError(f"Variant {line.size}/{line.color} not found for {line.name}.")

        log.info("purchase_created id=%s vendor=%s lines=%s total=%.2f status=%s", purchase.id, vendor.id, len(lines), total, status)
        return purchase.id

    def list_purchases(self) -> list[Purchase]:
        return self.repo.list_purchases()

    def list_purchases_between(self, start_iso: str, end_iso: str) -> list[Purchase]:
        return self.repo.list_purchases_between(start_iso, end_iso)
