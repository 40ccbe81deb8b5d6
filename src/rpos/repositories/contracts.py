from __future__ import annotations

import sqlite3
from typing import ContextManager, Iterable, Optional, Protocol

from rpos.domain.models import Bill, Customer, Item, Settings, SideEffect


class ItemRepository(Protocol):
    def get_item(self, item_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Item]: ...
    def replace_item(self, item: Item, expected_version: int, conn: Optional[sqlite3.Connection] = None) -> bool: ...
    def list_items(self) -> list[Item]: ...


class SettingsRepository(Protocol):
    def get_settings(self, conn: Optional[sqlite3.Connection] = None) -> Optional[Settings]: ...
    def insert_settings(self, settings: Settings, conn: Optional[sqlite3.Connection] = None) -> bool: ...
    def compare_and_set_invoice_counter(self, expected: int, new_value: int) -> bool: ...


class BillingRepository(ItemRepository, SettingsRepository, Protocol):
    def transaction(self) -> ContextManager[sqlite3.Connection]: ...
    def get_customer(self, customer_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Customer]: ...
    def insert_bill(
        self,
        bill: Bill,
        side_effects: Iterable[tuple[str, dict]] = (),
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[int]: ...
    def get_bill(self, bill_id: str) -> Optional[Bill]: ...
    def list_bills_between(self, start_iso: str, end_iso: str, status: Optional[str] = None) -> list[Bill]: ...
    def update_bill_status(self, bill_id: str, status: str) -> bool: ...
    def mark_bills_synced(self, bill_ids: Iterable[str]) -> int: ...
    def list_side_effects(
        self,
        statuses: Iterable[str] = ("pending", "failed"),
        bill_id: Optional[str] = None,
        due_at: Optional[str] = None,
        limit: Optional[int] = 100,
        kinds: Optional[Iterable[str]] = None,
    ) -> list[SideEffect]: ...


class DocumentRenderer(Protocol):
    """Turns a finished bill into a printable blob (PDF, thermal receipt...). Contents are opaque to the core."""

    def __call__(self, bill: Bill, settings: Settings) -> bytes: ...
