from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

TAX_RATES: tuple[int, ...] = (0, 5, 12, 18, 28)
PAYMENT_METHODS: tuple[str, ...] = ("cash", "upi", "card", "credit")
EXPENSE_PAYMENT_METHODS: tuple[str, ...] = ("cash", "upi", "card")
BILL_STATUSES: tuple[str, ...] = ("completed", "pending", "cancelled")
SYNC_STATUSES: tuple[str, ...] = ("pending", "synced")
CUSTOMER_TAGS: tuple[str, ...] = ("new", "regular", "vip")
PURCHASE_STATUSES: tuple[str, ...] = ("received", "pending", "partial")
STAFF_ROLES: tuple[str, ...] = ("staff", "manager")
ATTENDANCE_STATUSES: tuple[str, ...] = ("present", "absent", "late", "half-day")

SIDE_EFFECT_KINDS: tuple[str, ...] = ("deduct_stock", "update_customer_ledger")
SIDE_EFFECT_STATUSES: tuple[str, ...] = ("pending", "done", "skipped", "failed", "dead")

DEFAULT_SETTINGS_ID = "default"


def now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def new_id(prefix: str) -> str:
    """Caller-generated record id, e.g. ``bill_1718000000000_3f9a1c2b7d``."""
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


@dataclass(frozen=True)
class Variant:
    size: str
    color: str
    sku: str = ""
    stock: int = 0
    price: Optional[float] = None

    def matches(self, size: str, color: str) -> bool:
        return self.size == size and self.color == color


@dataclass(frozen=True)
class Item:
    id: str
    name: str
    category: str
    base_price: float
    tax_rate: float
    unit: str
    variants: tuple[Variant, ...]
    total_stock: int
    low_stock_threshold: int
    hsn_code: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    version: int = 0

    def variant_index(self, size: str, color: str) -> int:
        for idx, v in enumerate(self.variants):
            if v.matches(size, color):
                return idx
        return -1

    @property
    def is_low_stock(self) -> bool:
        return self.total_stock <= self.low_stock_threshold


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    phone: str
    tag: str = "new"
    total_purchases: float = 0.0
    outstanding_amount: float = 0.0
    email: Optional[str] = None
    address: Optional[str] = None
    last_visit: Optional[str] = None
    created_at: str = ""


@dataclass(frozen=True)
class BillLine:
    """Snapshot of an item at the time of sale. Never refers back to the live Item."""

    item_id: str
    name: str
    size: Optional[str]
    color: Optional[str]
    quantity: int
    unit_price: float
    tax_rate: float
    tax_amount: float
    discount: float
    total: float


@dataclass(frozen=True)
class Bill:
    id: str
    invoice_number: str
    lines: tuple[BillLine, ...]
    subtotal: float
    discount_amount: float
    discount_percent: float
    tax_amount: float
    grand_total: float
    paid_amount: float
    payment_method: str
    status: str
    sync_status: str
    created_at: str
    created_by: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    id: str = DEFAULT_SETTINGS_ID
    shop_name: str = "My Shop"
    invoice_prefix: str = "INV"
    invoice_counter: int = 1
    gstin: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    auto_whatsapp: bool = False
    thermal_printer_width: int = 58
    last_backup: Optional[str] = None
    version: int = 0


@dataclass(frozen=True)
class Vendor:
    id: str
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    gst_number: Optional[str] = None
    created_at: str = ""


@dataclass(frozen=True)
class PurchaseLine:
    item_id: str
    name: str
    size: Optional[str]
    color: Optional[str]
    quantity: int
    cost_price: float
    total: float


@dataclass(frozen=True)
class Purchase:
    id: str
    vendor_id: str
    vendor_name: str
    lines: tuple[PurchaseLine, ...]
    total_amount: float
    paid_amount: float
    status: str
    created_at: str
    invoice_number: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    id: str
    category: str
    description: str
    amount: float
    payment_method: str
    date: str
    created_at: str = ""


@dataclass(frozen=True)
class Staff:
    id: str
    name: str
    phone: str
    role: str
    salary: float
    joining_date: str
    permissions: tuple[str, ...] = ()
    is_active: bool = True
    created_at: str = ""


@dataclass(frozen=True)
class Attendance:
    id: str
    staff_id: str
    date: str
    status: str
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class SideEffect:
    id: int
    bill_id: str
    kind: str
    payload: dict = field(default_factory=dict)
    status: str = "pending"
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: str = ""
    processed_at: Optional[str] = None
    next_attempt_at: Optional[str] = None
