from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import CUSTOMER_TAGS, Customer, new_id, now_iso

log = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, repo):
        self.repo = repo

    def list_customers(self) -> list[Customer]:
        return self.repo.list_customers()

    def get_customer(self, customer_id: str) -> Customer:
        c = self.repo.get_customer(customer_id)
        if not c:
            raise NotFoundError("Customer not found.")
        return c

    def find_by_phone(self, phone: str) -> Optional[Customer]:
        return self.repo.find_customer_by_phone((phone or "").strip())

    def add_customer(
        self,
        name: str,
        phone: str,
        tag: str = "new",
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> str:
        name = (name or "").strip()
        phone = (phone or "").strip()
        if not name or not phone:
            raise ValidationError("Name and phone are required.")
        if tag not in CUSTOMER_TAGS:
            raise ValidationError(f"Unknown customer tag: {tag}")

        customer = Customer(
            id=new_id("cust"),
            name=name,
            phone=phone,
            tag=tag,
            email=email,
            address=address,
            created_at=now_iso(),
        )
        self.repo.add_customer(customer)
        log.info("customer_added id=%s", customer.id)
        return customer.id

    def update_customer(self, customer_id: str, **fields) -> Customer:
        if "tag" in fields and fields["tag"] not in CUSTOMER_TAGS:
            raise ValidationError(f"Unknown customer tag: {fields['tag']}")
        for key in ("name", "phone"):
            if key in fields:
                fields[key] = (fields[key] or "").strip()
                if not fields[key]:
                    raise ValidationError(f"{key.capitalize()} is required.")
        try:
            updated = self.repo.update_customer(customer_id, fields)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        if not updated:
            raise NotFoundError("Customer not found.")
        return self.get_customer(customer_id)

    def delete_customer(self, customer_id: str) -> None:
        if not self.repo.delete_customer(customer_id):
            raise NotFoundError("Customer not found.")

    def record_purchase(
        self,
        customer_id: str,
        amount: float,
        on_credit: bool,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Bump lifetime purchases; credit sales also add to the outstanding balance. False if the customer is gone."""
        outstanding = float(amount) if on_credit else 0.0
        ok = self.repo.apply_customer_purchase(customer_id, float(amount), outstanding, now_iso(), conn=conn)
        if ok:
            log.info("customer_ledger_updated id=%s amount=%.2f outstanding_delta=%.2f", customer_id, amount, outstanding)
        else:
            log.warning("customer_ledger_skip_missing id=%s amount=%.2f", customer_id, amount)
        return ok

    def receive_payment(self, customer_id: str, amount: float) -> Customer:
        amount = float(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be > 0.")
        customer = self.get_customer(customer_id)
        if amount > customer.outstanding_amount + 0.01:
            raise ValidationError(f"Payment exceeds outstanding balance ({customer.outstanding_amount:.2f}).")
        self.repo.reduce_outstanding(customer_id, amount)
        log.info("customer_payment_received id=%s amount=%.2f", customer_id, amount)
        return self.get_customer(customer_id)
