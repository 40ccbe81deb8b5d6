from __future__ import annotations

import json
import shutil
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from rpos.domain.models import (
    DEFAULT_SETTINGS_ID,
    Attendance,
    Bill,
    BillLine,
    Customer,
    Expense,
    Item,
    Purchase,
    PurchaseLine,
    Settings,
    SideEffect,
    Staff,
    Variant,
    Vendor,
)

ITEM_COLUMNS = (
    "id, name, category, base_price, tax_rate, hsn_code, unit, variants_json, "
    "total_stock, low_stock_threshold, created_at, updated_at, version"
)
CUSTOMER_COLUMNS = (
    "id, name, phone, email, address, tag, total_purchases, outstanding_amount, last_visit, created_at"
)
BILL_COLUMNS = (
    "id, invoice_number, customer_id, customer_name, customer_phone, subtotal, discount_amount, "
    "discount_percent, tax_amount, grand_total, paid_amount, payment_method, status, sync_status, "
    "created_at, created_by"
)
SETTINGS_COLUMNS = (
    "id, shop_name, invoice_prefix, invoice_counter, gstin, address, phone, email, auto_whatsapp, "
    "thermal_printer_width, last_backup, version"
)
SIDE_EFFECT_COLUMNS = (
    "id, bill_id, kind, payload_json, status, attempts, last_error, created_at, processed_at, next_attempt_at"
)

CUSTOMER_EDITABLE = {"name", "phone", "email", "address", "tag"}
VENDOR_EDITABLE = {"name", "phone", "email", "address", "gst_number"}
STAFF_EDITABLE = {"name", "phone", "role", "salary", "permissions_json", "is_active"}
SETTINGS_EDITABLE = {
    "shop_name", "invoice_prefix", "invoice_counter", "gstin", "address", "phone", "email",
    "auto_whatsapp", "thermal_printer_width", "last_backup",
}

# restore order: parents before children
BACKUP_TABLES = (
    "settings", "items", "customers", "vendors", "bills", "purchases", "expenses", "staff", "attendance",
)


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """One write transaction; everything done on the yielded connection commits or rolls back together."""
        conn = self._conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _writing(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own:
            yield own

    @contextmanager
    def _reading(self, conn: Optional[sqlite3.Connection]) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        own = self._conn()
        try:
            yield own
        finally:
            own.close()

    def init_db(self) -> None:
        self.run_migrations()

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_base),
                (2, self._migration_v2_outbox),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_base(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS settings (
            id TEXT PRIMARY KEY,
            shop_name TEXT NOT NULL,
            invoice_prefix TEXT NOT NULL,
            invoice_counter INTEGER NOT NULL CHECK(invoice_counter >= 1),
            gstin TEXT,
            address TEXT,
            phone TEXT,
            email TEXT,
            auto_whatsapp INTEGER NOT NULL DEFAULT 0 CHECK(auto_whatsapp IN (0,1)),
            thermal_printer_width INTEGER NOT NULL DEFAULT 58 CHECK(thermal_printer_width IN (58,80)),
            last_backup TEXT,
            version INTEGER NOT NULL DEFAULT 0
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS items (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            category TEXT NOT NULL,
            base_price REAL NOT NULL CHECK(base_price >= 0),
            tax_rate REAL NOT NULL,
            hsn_code TEXT,
            unit TEXT NOT NULL,
            variants_json TEXT NOT NULL DEFAULT '[]',
            total_stock INTEGER NOT NULL DEFAULT 0 CHECK(total_stock >= 0),
            low_stock_threshold INTEGER NOT NULL DEFAULT 0 CHECK(low_stock_threshold >= 0),
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            version INTEGER NOT NULL DEFAULT 0
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS customers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            email TEXT,
            address TEXT,
            tag TEXT NOT NULL DEFAULT 'new' CHECK(tag IN ('new','regular','vip')),
            total_purchases REAL NOT NULL DEFAULT 0,
            outstanding_amount REAL NOT NULL DEFAULT 0,
            last_visit TEXT,
            created_at TEXT NOT NULL
        )
        """
        )

        # customer_id carries no FK: bills outlive deleted customers
        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS bills (
            id TEXT PRIMARY KEY,
            invoice_number TEXT NOT NULL UNIQUE,
            customer_id TEXT,
            customer_name TEXT,
            customer_phone TEXT,
            subtotal REAL NOT NULL,
            discount_amount REAL NOT NULL,
            discount_percent REAL NOT NULL CHECK(discount_percent >= 0 AND discount_percent <= 100),
            tax_amount REAL NOT NULL,
            grand_total REAL NOT NULL,
            paid_amount REAL NOT NULL,
            payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','upi','card','credit')),
            status TEXT NOT NULL CHECK(status IN ('completed','pending','cancelled')),
            sync_status TEXT NOT NULL CHECK(sync_status IN ('pending','synced')),
            created_at TEXT NOT NULL,
            created_by TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS bill_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bill_id TEXT NOT NULL,
            line_no INTEGER NOT NULL,
            item_id TEXT NOT NULL,
            name TEXT NOT NULL,
            size TEXT,
            color TEXT,
            quantity INTEGER NOT NULL CHECK(quantity > 0),
            unit_price REAL NOT NULL CHECK(unit_price >= 0),
            tax_rate REAL NOT NULL,
            tax_amount REAL NOT NULL,
            discount REAL NOT NULL,
            total REAL NOT NULL,
            FOREIGN KEY(bill_id) REFERENCES bills(id) ON DELETE CASCADE,
            UNIQUE(bill_id, line_no)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS vendors (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            email TEXT,
            address TEXT,
            gst_number TEXT,
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS purchases (
            id TEXT PRIMARY KEY,
            vendor_id TEXT NOT NULL,
            vendor_name TEXT NOT NULL,
            total_amount REAL NOT NULL CHECK(total_amount >= 0),
            paid_amount REAL NOT NULL CHECK(paid_amount >= 0),
            status TEXT NOT NULL CHECK(status IN ('received','pending','partial')),
            invoice_number TEXT,
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS purchase_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            purchase_id TEXT NOT NULL,
            line_no INTEGER NOT NULL,
            item_id TEXT NOT NULL,
            name TEXT NOT NULL,
            size TEXT,
            color TEXT,
            quantity INTEGER NOT NULL CHECK(quantity > 0),
            cost_price REAL NOT NULL CHECK(cost_price >= 0),
            total REAL NOT NULL,
            FOREIGN KEY(purchase_id) REFERENCES purchases(id) ON DELETE CASCADE,
            UNIQUE(purchase_id, line_no)
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS expenses (
            id TEXT PRIMARY KEY,
            category TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            amount REAL NOT NULL CHECK(amount > 0),
            payment_method TEXT NOT NULL CHECK(payment_method IN ('cash','upi','card')),
            date TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS staff (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            role TEXT NOT NULL CHECK(role IN ('staff','manager')),
            salary REAL NOT NULL DEFAULT 0 CHECK(salary >= 0),
            joining_date TEXT NOT NULL,
            permissions_json TEXT NOT NULL DEFAULT '[]',
            is_active INTEGER NOT NULL DEFAULT 1 CHECK(is_active IN (0,1)),
            created_at TEXT NOT NULL
        )
        """
        )

        cur.execute(
            """
        CREATE TABLE IF NOT EXISTS attendance (
            id TEXT PRIMARY KEY,
            staff_id TEXT NOT NULL,
            date TEXT NOT NULL,
            check_in TEXT,
            check_out TEXT,
            status TEXT NOT NULL CHECK(status IN ('present','absent','late','half-day')),
            notes TEXT,
            UNIQUE(staff_id, date)
        )
        """
        )

        cur.execute("CREATE INDEX IF NOT EXISTS idx_bills_created_at ON bills(created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_bills_sync_status ON bills(sync_status)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_purchases_created_at ON purchases(created_at)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date)")

    def _migration_v2_outbox(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS side_effects (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                bill_id TEXT NOT NULL,
                kind TEXT NOT NULL CHECK(kind IN ('deduct_stock','update_customer_ledger')),
                payload_json TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK(status IN ('pending','done','skipped','failed','dead')),
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL,
                processed_at TEXT,
                next_attempt_at TEXT,
                FOREIGN KEY(bill_id) REFERENCES bills(id) ON DELETE CASCADE
            )
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_side_effects_status ON side_effects(status, id)")

    def _update_fields(
        self,
        table: str,
        record_id: str,
        fields: dict,
        allowed: set[str],
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown {table} fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        assignments = ", ".join(f"{col}=?" for col in fields)
        with self._writing(conn) as c:
            cur = c.execute(f"UPDATE {table} SET {assignments} WHERE id=?", (*fields.values(), record_id))
            return cur.rowcount > 0

    def _delete(self, table: str, record_id: str) -> bool:
        with self._writing(None) as c:
            cur = c.execute(f"DELETE FROM {table} WHERE id=?", (record_id,))
            return cur.rowcount > 0

    # ---------- Settings ----------
    @staticmethod
    def _settings_from_row(r: sqlite3.Row) -> Settings:
        return Settings(
            id=str(r["id"]),
            shop_name=str(r["shop_name"]),
            invoice_prefix=str(r["invoice_prefix"]),
            invoice_counter=int(r["invoice_counter"]),
            gstin=r["gstin"],
            address=r["address"],
            phone=r["phone"],
            email=r["email"],
            auto_whatsapp=bool(r["auto_whatsapp"]),
            thermal_printer_width=int(r["thermal_printer_width"]),
            last_backup=r["last_backup"],
            version=int(r["version"]),
        )

    def get_settings(self, conn: Optional[sqlite3.Connection] = None) -> Optional[Settings]:
        with self._reading(conn) as c:
            r = c.execute(f"SELECT {SETTINGS_COLUMNS} FROM settings WHERE id=?", (DEFAULT_SETTINGS_ID,)).fetchone()
        return self._settings_from_row(r) if r else None

    def insert_settings(self, settings: Settings, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Insert the singleton unless it already exists. Returns True when this call created it."""
        with self._writing(conn) as c:
            cur = c.execute(
                f"""
                INSERT OR IGNORE INTO settings ({SETTINGS_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    settings.id,
                    settings.shop_name,
                    settings.invoice_prefix,
                    int(settings.invoice_counter),
                    settings.gstin,
                    settings.address,
                    settings.phone,
                    settings.email,
                    int(bool(settings.auto_whatsapp)),
                    int(settings.thermal_printer_width),
                    settings.last_backup,
                    int(settings.version),
                ),
            )
            return cur.rowcount > 0

    def update_settings(self, fields: dict, expected_version: int) -> bool:
        unknown = set(fields) - SETTINGS_EDITABLE
        if unknown:
            raise ValueError(f"Unknown settings fields: {', '.join(sorted(unknown))}")
        if not fields:
            return False
        assignments = ", ".join(f"{col}=?" for col in fields)
        with self._writing(None) as c:
            cur = c.execute(
                f"UPDATE settings SET {assignments}, version=version+1 WHERE id=? AND version=?",
                (*fields.values(), DEFAULT_SETTINGS_ID, int(expected_version)),
            )
            return cur.rowcount > 0

    def compare_and_set_invoice_counter(self, expected: int, new_value: int) -> bool:
        with self._writing(None) as c:
            cur = c.execute(
                """
                UPDATE settings
                SET invoice_counter=?, version=version+1
                WHERE id=? AND invoice_counter=?
                """,
                (int(new_value), DEFAULT_SETTINGS_ID, int(expected)),
            )
            return cur.rowcount > 0

    # ---------- Items ----------
    @staticmethod
    def _variants_to_json(variants: Iterable[Variant]) -> str:
        return json.dumps([asdict(v) for v in variants], ensure_ascii=False)

    @staticmethod
    def _item_from_row(r: sqlite3.Row) -> Item:
        variants = tuple(
            Variant(
                size=str(v["size"]),
                color=str(v["color"]),
                sku=str(v.get("sku") or ""),
                stock=int(v.get("stock") or 0),
                price=(float(v["price"]) if v.get("price") is not None else None),
            )
            for v in json.loads(r["variants_json"] or "[]")
        )
        return Item(
            id=str(r["id"]),
            name=str(r["name"]),
            category=str(r["category"]),
            base_price=float(r["base_price"]),
            tax_rate=float(r["tax_rate"]),
            hsn_code=r["hsn_code"],
            unit=str(r["unit"]),
            variants=variants,
            total_stock=int(r["total_stock"]),
            low_stock_threshold=int(r["low_stock_threshold"]),
            created_at=str(r["created_at"]),
            updated_at=str(r["updated_at"]),
            version=int(r["version"]),
        )

    def add_item(self, item: Item, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                f"""
                INSERT INTO items ({ITEM_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    item.id,
                    item.name,
                    item.category,
                    float(item.base_price),
                    float(item.tax_rate),
                    item.hsn_code,
                    item.unit,
                    self._variants_to_json(item.variants),
                    int(item.total_stock),
                    int(item.low_stock_threshold),
                    item.created_at,
                    item.updated_at,
                    int(item.version),
                ),
            )
        return item.id

    def get_item(self, item_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Item]:
        with self._reading(conn) as c:
            r = c.execute(f"SELECT {ITEM_COLUMNS} FROM items WHERE id=?", (item_id,)).fetchone()
        return self._item_from_row(r) if r else None

    def list_items(self) -> list[Item]:
        with self._reading(None) as c:
            rows = c.execute(f"SELECT {ITEM_COLUMNS} FROM items ORDER BY name, id").fetchall()
        return [self._item_from_row(r) for r in rows]

    def list_low_stock_items(self) -> list[Item]:
        with self._reading(None) as c:
            rows = c.execute(
                f"""
                SELECT {ITEM_COLUMNS}
                FROM items
                WHERE total_stock <= low_stock_threshold
                ORDER BY (total_stock - low_stock_threshold) ASC, name ASC
                """
            ).fetchall()
        return [self._item_from_row(r) for r in rows]

    def find_item_by_name(self, name: str) -> Optional[Item]:
        with self._reading(None) as c:
            r = c.execute(
                f"SELECT {ITEM_COLUMNS} FROM items WHERE lower(name)=lower(?) ORDER BY created_at LIMIT 1",
                (name,),
            ).fetchone()
        return self._item_from_row(r) if r else None

    def replace_item(self, item: Item, expected_version: int, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Whole-record replace guarded by ``version``. False means another write got there first (or the item is gone)."""
        with self._writing(conn) as c:
            cur = c.execute(
                """
                UPDATE items
                SET name=?, category=?, base_price=?, tax_rate=?, hsn_code=?, unit=?, variants_json=?,
                    total_stock=?, low_stock_threshold=?, updated_at=?, version=version+1
                WHERE id=? AND version=?
                """,
                (
                    item.name,
                    item.category,
                    float(item.base_price),
                    float(item.tax_rate),
                    item.hsn_code,
                    item.unit,
                    self._variants_to_json(item.variants),
                    int(item.total_stock),
                    int(item.low_stock_threshold),
                    item.updated_at,
                    item.id,
                    int(expected_version),
                ),
            )
            return cur.rowcount > 0

    def delete_item(self, item_id: str) -> bool:
        return self._delete("items", item_id)

    # ---------- Customers ----------
    @staticmethod
    def _customer_from_row(r: sqlite3.Row) -> Customer:
        return Customer(
            id=str(r["id"]),
            name=str(r["name"]),
            phone=str(r["phone"]),
            email=r["email"],
            address=r["address"],
            tag=str(r["tag"]),
            total_purchases=float(r["total_purchases"]),
            outstanding_amount=float(r["outstanding_amount"]),
            last_visit=r["last_visit"],
            created_at=str(r["created_at"]),
        )

    def add_customer(self, customer: Customer, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                f"INSERT INTO customers ({CUSTOMER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    customer.id,
                    customer.name,
                    customer.phone,
                    customer.email,
                    customer.address,
                    customer.tag,
                    float(customer.total_purchases),
                    float(customer.outstanding_amount),
                    customer.last_visit,
                    customer.created_at,
                ),
            )
        return customer.id

    def get_customer(self, customer_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Customer]:
        with self._reading(conn) as c:
            r = c.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE id=?", (customer_id,)).fetchone()
        return self._customer_from_row(r) if r else None

    def find_customer_by_phone(self, phone: str) -> Optional[Customer]:
        with self._reading(None) as c:
            r = c.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers WHERE phone=? LIMIT 1", (phone,)).fetchone()
        return self._customer_from_row(r) if r else None

    def list_customers(self) -> list[Customer]:
        with self._reading(None) as c:
            rows = c.execute(f"SELECT {CUSTOMER_COLUMNS} FROM customers ORDER BY name, id").fetchall()
        return [self._customer_from_row(r) for r in rows]

    def update_customer(self, customer_id: str, fields: dict) -> bool:
        return self._update_fields("customers", customer_id, fields, CUSTOMER_EDITABLE)

    def delete_customer(self, customer_id: str) -> bool:
        return self._delete("customers", customer_id)

    def apply_customer_purchase(
        self,
        customer_id: str,
        amount: float,
        outstanding_delta: float,
        visited_at: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        with self._writing(conn) as c:
            cur = c.execute(
                """
                UPDATE customers
                SET total_purchases = total_purchases + ?,
                    outstanding_amount = outstanding_amount + ?,
                    last_visit = ?
                WHERE id = ?
                """,
                (float(amount), float(outstanding_delta), visited_at, customer_id),
            )
            return cur.rowcount > 0

    def reduce_outstanding(self, customer_id: str, amount: float) -> bool:
        with self._writing(None) as c:
            cur = c.execute(
                "UPDATE customers SET outstanding_amount = MAX(outstanding_amount - ?, 0) WHERE id = ?",
                (float(amount), customer_id),
            )
            return cur.rowcount > 0

    # ---------- Bills ----------
    def insert_bill(
        self,
        bill: Bill,
        side_effects: Iterable[tuple[str, dict]] = (),
        conn: Optional[sqlite3.Connection] = None,
    ) -> list[int]:
        """Insert the bill header, its snapshot lines and its outbox rows in one transaction."""
        with self._writing(conn) as c:
            c.execute(
                f"""
                INSERT INTO bills ({BILL_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    bill.id,
                    bill.invoice_number,
                    bill.customer_id,
                    bill.customer_name,
                    bill.customer_phone,
                    float(bill.subtotal),
                    float(bill.discount_amount),
                    float(bill.discount_percent),
                    float(bill.tax_amount),
                    float(bill.grand_total),
                    float(bill.paid_amount),
                    bill.payment_method,
                    bill.status,
                    bill.sync_status,
                    bill.created_at,
                    bill.created_by,
                ),
            )
            for line_no, line in enumerate(bill.lines, start=1):
                c.execute(
                    """
                    INSERT INTO bill_items (
                        bill_id, line_no, item_id, name, size, color, quantity,
                        unit_price, tax_rate, tax_amount, discount, total
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        bill.id,
                        line_no,
                        line.item_id,
                        line.name,
                        line.size,
                        line.color,
                        int(line.quantity),
                        float(line.unit_price),
                        float(line.tax_rate),
                        float(line.tax_amount),
                        float(line.discount),
                        float(line.total),
                    ),
                )
            effect_ids: list[int] = []
            for kind, payload in side_effects:
                cur = c.execute(
                    """
                    INSERT INTO side_effects (bill_id, kind, payload_json, status, attempts, created_at)
                    VALUES (?, ?, ?, 'pending', 0, ?)
                    """,
                    (bill.id, kind, json.dumps(payload, ensure_ascii=False), bill.created_at),
                )
                effect_ids.append(int(cur.lastrowid))
            return effect_ids

    def _bills_from_rows(self, c: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Bill]:
        if not rows:
            return []
        ids = [str(r["id"]) for r in rows]
        placeholders = ", ".join("?" for _ in ids)
        line_rows = c.execute(
            f"""
            SELECT bill_id, item_id, name, size, color, quantity, unit_price, tax_rate, tax_amount, discount, total
            FROM bill_items
            WHERE bill_id IN ({placeholders})
            ORDER BY bill_id, line_no
            """,
            ids,
        ).fetchall()
        lines_by_bill: dict[str, list[BillLine]] = {}
        for lr in line_rows:
            lines_by_bill.setdefault(str(lr["bill_id"]), []).append(
                BillLine(
                    item_id=str(lr["item_id"]),
                    name=str(lr["name"]),
                    size=lr["size"],
                    color=lr["color"],
                    quantity=int(lr["quantity"]),
                    unit_price=float(lr["unit_price"]),
                    tax_rate=float(lr["tax_rate"]),
                    tax_amount=float(lr["tax_amount"]),
                    discount=float(lr["discount"]),
                    total=float(lr["total"]),
                )
            )
        return [
            Bill(
                id=str(r["id"]),
                invoice_number=str(r["invoice_number"]),
                customer_id=r["customer_id"],
                customer_name=r["customer_name"],
                customer_phone=r["customer_phone"],
                lines=tuple(lines_by_bill.get(str(r["id"]), [])),
                subtotal=float(r["subtotal"]),
                discount_amount=float(r["discount_amount"]),
                discount_percent=float(r["discount_percent"]),
                tax_amount=float(r["tax_amount"]),
                grand_total=float(r["grand_total"]),
                paid_amount=float(r["paid_amount"]),
                payment_method=str(r["payment_method"]),
                status=str(r["status"]),
                sync_status=str(r["sync_status"]),
                created_at=str(r["created_at"]),
                created_by=str(r["created_by"]),
            )
            for r in rows
        ]

    def get_bill(self, bill_id: str) -> Optional[Bill]:
        with self._reading(None) as c:
            rows = c.execute(f"SELECT {BILL_COLUMNS} FROM bills WHERE id=?", (bill_id,)).fetchall()
            bills = self._bills_from_rows(c, rows)
        return bills[0] if bills else None

    def get_bill_by_invoice_number(self, invoice_number: str) -> Optional[Bill]:
        with self._reading(None) as c:
            rows = c.execute(f"SELECT {BILL_COLUMNS} FROM bills WHERE invoice_number=?", (invoice_number,)).fetchall()
            bills = self._bills_from_rows(c, rows)
        return bills[0] if bills else None

    def list_bills(self) -> list[Bill]:
        with self._reading(None) as c:
            rows = c.execute(f"SELECT {BILL_COLUMNS} FROM bills ORDER BY created_at DESC, id DESC").fetchall()
            return self._bills_from_rows(c, rows)

    def list_bills_between(self, start_iso: str, end_iso: str, status: Optional[str] = None) -> list[Bill]:
        sql = f"SELECT {BILL_COLUMNS} FROM bills WHERE created_at >= ? AND created_at < ?"
        params: list = [start_iso, end_iso]
        if status is not None:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, id DESC"
        with self._reading(None) as c:
            rows = c.execute(sql, params).fetchall()
            return self._bills_from_rows(c, rows)

    def list_bills_by_sync_status(self, sync_status: str, limit: int = 100) -> list[Bill]:
        with self._reading(None) as c:
            rows = c.execute(
                f"SELECT {BILL_COLUMNS} FROM bills WHERE sync_status=? ORDER BY created_at, id LIMIT ?",
                (sync_status, int(limit)),
            ).fetchall()
            return self._bills_from_rows(c, rows)

    def update_bill_status(self, bill_id: str, status: str) -> bool:
        with self._writing(None) as c:
            cur = c.execute("UPDATE bills SET status=? WHERE id=?", (status, bill_id))
            return cur.rowcount > 0

    def mark_bills_synced(self, bill_ids: Iterable[str]) -> int:
        ids = list(bill_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._writing(None) as c:
            cur = c.execute(f"UPDATE bills SET sync_status='synced' WHERE id IN ({placeholders})", ids)
            return int(cur.rowcount)

    # ---------- Side effects (outbox) ----------
    @staticmethod
    def _side_effect_from_row(r: sqlite3.Row) -> SideEffect:
        return SideEffect(
            id=int(r["id"]),
            bill_id=str(r["bill_id"]),
            kind=str(r["kind"]),
            payload=json.loads(r["payload_json"] or "{}"),
            status=str(r["status"]),
            attempts=int(r["attempts"]),
            last_error=r["last_error"],
            created_at=str(r["created_at"]),
            processed_at=r["processed_at"],
            next_attempt_at=r["next_attempt_at"],
        )

    def list_side_effects(
        self,
        statuses: Iterable[str] = ("pending", "failed"),
        bill_id: Optional[str] = None,
        due_at: Optional[str] = None,
        limit: Optional[int] = 100,
        kinds: Optional[Iterable[str]] = None,
    ) -> list[SideEffect]:
        wanted = list(statuses)
        placeholders = ", ".join("?" for _ in wanted)
        sql = f"SELECT {SIDE_EFFECT_COLUMNS} FROM side_effects WHERE status IN ({placeholders})"
        params: list = list(wanted)
        if bill_id is not None:
            sql += " AND bill_id = ?"
            params.append(bill_id)
        if due_at is not None:
            sql += " AND (next_attempt_at IS NULL OR next_attempt_at <= ?)"
            params.append(due_at)
        if kinds is not None:
            kind_list = list(kinds)
            sql += f" AND kind IN ({', '.join('?' for _ in kind_list)})"
            params.extend(kind_list)
        sql += " ORDER BY id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._reading(None) as c:
            rows = c.execute(sql, params).fetchall()
        return [self._side_effect_from_row(r) for r in rows]

    def mark_side_effect(
        self,
        effect_id: int,
        status: str,
        attempts: int,
        last_error: Optional[str] = None,
        processed_at: Optional[str] = None,
        next_attempt_at: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> None:
        with self._writing(conn) as c:
            c.execute(
                """
                UPDATE side_effects
                SET status=?, attempts=?, last_error=?, processed_at=?, next_attempt_at=?
                WHERE id=?
                """,
                (status, int(attempts), last_error, processed_at, next_attempt_at, int(effect_id)),
            )

    def count_side_effects_by_status(self) -> dict[str, int]:
        with self._reading(None) as c:
            rows = c.execute("SELECT status, COUNT(*) FROM side_effects GROUP BY status").fetchall()
        return {str(r[0]): int(r[1]) for r in rows}

    # ---------- Vendors & purchases ----------
    @staticmethod
    def _vendor_from_row(r: sqlite3.Row) -> Vendor:
        return Vendor(
            id=str(r["id"]),
            name=str(r["name"]),
            phone=str(r["phone"]),
            email=r["email"],
            address=r["address"],
            gst_number=r["gst_number"],
            created_at=str(r["created_at"]),
        )

    def add_vendor(self, vendor: Vendor, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                """
                INSERT INTO vendors (id, name, phone, email, address, gst_number, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (vendor.id, vendor.name, vendor.phone, vendor.email, vendor.address, vendor.gst_number, vendor.created_at),
            )
        return vendor.id

    def get_vendor(self, vendor_id: str) -> Optional[Vendor]:
        with self._reading(None) as c:
            r = c.execute(
                "SELECT id, name, phone, email, address, gst_number, created_at FROM vendors WHERE id=?",
                (vendor_id,),
            ).fetchone()
        return self._vendor_from_row(r) if r else None

    def list_vendors(self) -> list[Vendor]:
        with self._reading(None) as c:
            rows = c.execute(
                "SELECT id, name, phone, email, address, gst_number, created_at FROM vendors ORDER BY name, id"
            ).fetchall()
        return [self._vendor_from_row(r) for r in rows]

    def update_vendor(self, vendor_id: str, fields: dict) -> bool:
        return self._update_fields("vendors", vendor_id, fields, VENDOR_EDITABLE)

    def delete_vendor(self, vendor_id: str) -> bool:
        return self._delete("vendors", vendor_id)

    def insert_purchase(self, purchase: Purchase, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                """
                INSERT INTO purchases (id, vendor_id, vendor_name, total_amount, paid_amount, status, invoice_number, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    purchase.id,
                    purchase.vendor_id,
                    purchase.vendor_name,
                    float(purchase.total_amount),
                    float(purchase.paid_amount),
                    purchase.status,
                    purchase.invoice_number,
                    purchase.created_at,
                ),
            )
            for line_no, line in enumerate(purchase.lines, start=1):
                c.execute(
                    """
                    INSERT INTO purchase_items (purchase_id, line_no, item_id, name, size, color, quantity, cost_price, total)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        purchase.id,
                        line_no,
                        line.item_id,
                        line.name,
                        line.size,
                        line.color,
                        int(line.quantity),
                        float(line.cost_price),
                        float(line.total),
                    ),
                )
        return purchase.id

    def _purchases_from_rows(self, c: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Purchase]:
        out: list[Purchase] = []
        for r in rows:
            line_rows = c.execute(
                """
                SELECT item_id, name, size, color, quantity, cost_price, total
                FROM purchase_items WHERE purchase_id=? ORDER BY line_no
                """,
                (r["id"],),
            ).fetchall()
            out.append(
                Purchase(
                    id=str(r["id"]),
                    vendor_id=str(r["vendor_id"]),
                    vendor_name=str(r["vendor_name"]),
                    lines=tuple(
                        PurchaseLine(
                            item_id=str(lr["item_id"]),
                            name=str(lr["name"]),
                            size=lr["size"],
                            color=lr["color"],
                            quantity=int(lr["quantity"]),
                            cost_price=float(lr["cost_price"]),
                            total=float(lr["total"]),
                        )
                        for lr in line_rows
                    ),
                    total_amount=float(r["total_amount"]),
                    paid_amount=float(r["paid_amount"]),
                    status=str(r["status"]),
                    invoice_number=r["invoice_number"],
                    created_at=str(r["created_at"]),
                )
            )
        return out

    def list_purchases(self) -> list[Purchase]:
        with self._reading(None) as c:
            rows = c.execute("SELECT * FROM purchases ORDER BY created_at DESC, id DESC").fetchall()
            return self._purchases_from_rows(c, rows)

    def list_purchases_between(self, start_iso: str, end_iso: str) -> list[Purchase]:
        with self._reading(None) as c:
            rows = c.execute(
                "SELECT * FROM purchases WHERE created_at >= ? AND created_at < ? ORDER BY created_at DESC, id DESC",
                (start_iso, end_iso),
            ).fetchall()
            return self._purchases_from_rows(c, rows)

    # ---------- Expenses ----------
    @staticmethod
    def _expense_from_row(r: sqlite3.Row) -> Expense:
        return Expense(
            id=str(r["id"]),
            category=str(r["category"]),
            description=str(r["description"]),
            amount=float(r["amount"]),
            payment_method=str(r["payment_method"]),
            date=str(r["date"]),
            created_at=str(r["created_at"]),
        )

    def add_expense(self, expense: Expense, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                """
                INSERT INTO expenses (id, category, description, amount, payment_method, date, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    expense.id,
                    expense.category,
                    expense.description,
                    float(expense.amount),
                    expense.payment_method,
                    expense.date,
                    expense.created_at,
                ),
            )
        return expense.id

    def list_expenses(self) -> list[Expense]:
        with self._reading(None) as c:
            rows = c.execute("SELECT * FROM expenses ORDER BY date DESC, id DESC").fetchall()
        return [self._expense_from_row(r) for r in rows]

    def list_expenses_between(self, start_iso: str, end_iso: str) -> list[Expense]:
        with self._reading(None) as c:
            rows = c.execute(
                "SELECT * FROM expenses WHERE date >= ? AND date < ? ORDER BY date DESC, id DESC",
                (start_iso, end_iso),
            ).fetchall()
        return [self._expense_from_row(r) for r in rows]

    def delete_expense(self, expense_id: str) -> bool:
        return self._delete("expenses", expense_id)

    # ---------- Staff & attendance ----------
    @staticmethod
    def _staff_from_row(r: sqlite3.Row) -> Staff:
        return Staff(
            id=str(r["id"]),
            name=str(r["name"]),
            phone=str(r["phone"]),
            role=str(r["role"]),
            salary=float(r["salary"]),
            joining_date=str(r["joining_date"]),
            permissions=tuple(json.loads(r["permissions_json"] or "[]")),
            is_active=bool(r["is_active"]),
            created_at=str(r["created_at"]),
        )

    def add_staff(self, staff: Staff, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                """
                INSERT INTO staff (id, name, phone, role, salary, joining_date, permissions_json, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    staff.id,
                    staff.name,
                    staff.phone,
                    staff.role,
                    float(staff.salary),
                    staff.joining_date,
                    json.dumps(list(staff.permissions)),
                    int(bool(staff.is_active)),
                    staff.created_at,
                ),
            )
        return staff.id

    def get_staff(self, staff_id: str) -> Optional[Staff]:
        with self._reading(None) as c:
            r = c.execute("SELECT * FROM staff WHERE id=?", (staff_id,)).fetchone()
        return self._staff_from_row(r) if r else None

    def list_staff(self, active_only: bool = False) -> list[Staff]:
        sql = "SELECT * FROM staff"
        if active_only:
            sql += " WHERE is_active=1"
        sql += " ORDER BY name, id"
        with self._reading(None) as c:
            rows = c.execute(sql).fetchall()
        return [self._staff_from_row(r) for r in rows]

    def update_staff(self, staff_id: str, fields: dict) -> bool:
        return self._update_fields("staff", staff_id, fields, STAFF_EDITABLE)

    @staticmethod
    def _attendance_from_row(r: sqlite3.Row) -> Attendance:
        return Attendance(
            id=str(r["id"]),
            staff_id=str(r["staff_id"]),
            date=str(r["date"]),
            status=str(r["status"]),
            check_in=r["check_in"],
            check_out=r["check_out"],
            notes=r["notes"],
        )

    def add_attendance(self, attendance: Attendance, conn: Optional[sqlite3.Connection] = None) -> str:
        with self._writing(conn) as c:
            c.execute(
                """
                INSERT INTO attendance (id, staff_id, date, check_in, check_out, status, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    attendance.id,
                    attendance.staff_id,
                    attendance.date,
                    attendance.check_in,
                    attendance.check_out,
                    attendance.status,
                    attendance.notes,
                ),
            )
        return attendance.id

    def upsert_attendance(self, attendance: Attendance) -> Attendance:
        """One row per staff member per day; a second mark on the same day overwrites status and check-in."""
        with self._writing(None) as c:
            c.execute(
                """
                INSERT INTO attendance (id, staff_id, date, check_in, check_out, status, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(staff_id, date) DO UPDATE SET status=excluded.status, check_in=excluded.check_in
                """,
                (
                    attendance.id,
                    attendance.staff_id,
                    attendance.date,
                    attendance.check_in,
                    attendance.check_out,
                    attendance.status,
                    attendance.notes,
                ),
            )
            r = c.execute(
                "SELECT * FROM attendance WHERE staff_id=? AND date=?", (attendance.staff_id, attendance.date)
            ).fetchone()
        return self._attendance_from_row(r)

    def list_attendance(self, staff_id: Optional[str] = None, date_prefix: str = "") -> list[Attendance]:
        sql = "SELECT * FROM attendance WHERE date LIKE ?"
        params: list = [f"{date_prefix}%"]
        if staff_id is not None:
            sql += " AND staff_id = ?"
            params.append(staff_id)
        sql += " ORDER BY date, staff_id"
        with self._reading(None) as c:
            rows = c.execute(sql, params).fetchall()
        return [self._attendance_from_row(r) for r in rows]

    # ---------- Maintenance ----------
    def integrity_check(self) -> str:
        with self._reading(None) as c:
            row = c.execute("PRAGMA integrity_check").fetchone()
        return str(row[0]) if row else "unknown"

    def clear_tables(self, conn: sqlite3.Connection) -> None:
        """Empty every backed-up table (children first). Only meant to run inside ``transaction()``."""
        conn.execute("DELETE FROM side_effects")
        conn.execute("DELETE FROM bill_items")
        conn.execute("DELETE FROM purchase_items")
        for table in reversed(BACKUP_TABLES):
            conn.execute(f"DELETE FROM {table}")
