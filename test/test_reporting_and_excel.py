from datetime import date
from pathlib import Path

import pytest
from openpyxl import Workbook, load_workbook

from conftest import add_shirt, variant_stock
from rpos.application.container import build_container
from rpos.domain.errors import ValidationError
from rpos.services.billing_service import BillingSession

START = "2000-01-01"
END = "2100-01-01"


def _sell(app, item_id, qty, size=None, color=None, discount=0.0):
    session = BillingSession(discount_percent=discount)
    app.billing.add_to_cart(session, item_id, qty, size=size, color=color)
    return app.billing.checkout(session).bill


def test_sales_views_exclude_cancelled_bills(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    shirt = add_shirt(app.inventory, tax_rate=0)
    jeans = app.inventory.add_item("Jeans", "Apparel", 900, 0, [{"size": "32", "color": "Black", "stock": 5}])

    _sell(app, shirt, 2)
    _sell(app, jeans, 1)
    cancelled = _sell(app, shirt, 5)
    app.billing.cancel_bill(cancelled.id)

    bills = app.reporting.sales_for_period(START, END)
    today = app.reporting.daily_sales(date.today().isoformat())
    items = app.reporting.item_wise_sales(START, END)

    assert len(bills) == 2
    assert today.bill_count == 2
    assert today.total_sales == 1100
    assert [(s.name, s.quantity, s.revenue) for s in items] == [("Jeans", 1, 900), ("Shirt", 2, 200)]


def test_profit_and_loss(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    shirt = add_shirt(app.inventory, tax_rate=5)
    vendor_id = app.purchases.add_vendor("Textiles Co", "9111111111")
    app.purchases.create_purchase(
        vendor_id, [{"item_id": shirt, "size": "M", "color": "Blue", "quantity": 2, "cost_price": 40.0}]
    )
    app.expenses.add_expense("Electricity", 30)
    _sell(app, shirt, 2, discount=10)

    pl = app.reporting.profit_and_loss(START, END)

    assert pl.total_sales == 189
    assert pl.tax_collected == 9
    assert pl.total_purchases == 80
    assert pl.total_expenses == 30
    assert pl.gross_profit == 109
    assert pl.net_profit == 79


def test_total_outstanding(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    shirt = add_shirt(app.inventory, tax_rate=0)
    for name, phone in (("A", "1"), ("B", "2")):
        cid = app.customers.add_customer(name, phone)
        session = BillingSession(customer_id=cid, payment_method="credit")
        app.billing.add_to_cart(session, shirt, 1)
        app.billing.checkout(session)

    assert app.reporting.total_outstanding() == 200


def test_export_sales_report_excel(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    shirt = add_shirt(app.inventory)
    _sell(app, shirt, 1)
    _sell(app, shirt, 1, size="L", color="Red")
    app.expenses.add_expense("Tea", 50)

    out = tmp_path / "report.xlsx"
    app.reporting.export_sales_report_excel(str(out), START, END)

    wb = load_workbook(out)
    assert wb.sheetnames == ["Summary", "Bills", "Item Sales", "Expenses"]
    assert wb["Bills"].max_row == 3
    assert wb["Item Sales"]["B2"].value == "Shirt"
    assert wb["Expenses"]["B2"].value == "Tea"


def _sheet(path: Path, rows, headers=None):
    wb = Workbook()
    ws = wb.active
    ws.append(headers or [
        "name", "category", "base_price", "tax_rate", "unit", "size", "color", "stock", "low_stock_threshold",
        "price", "cost_price",
    ])
    for r in rows:
        ws.append(r)
    wb.save(path)
    return str(path)


def test_import_items_creates_items_variants_and_restock_purchases(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    path = _sheet(tmp_path / "items.xlsx", [
        ["Kurta", "Apparel", 800, 12, "pcs", "M", "White", 5, 2, None, 450],
        ["Kurta", "Apparel", 800, 12, "pcs", "L", "White", 3, 2, 850, 470],
        ["Scarf", "Accessories", 200, 7, "pcs", "F", "Red", 4, 1, None, 90],
        ["", "Apparel", 1, 0, "pcs", "F", "Red", 1, 1, None, 1],
    ])

    ok, skipped = app.excel.import_items_excel(path)

    assert (ok, skipped) == (2, 2)
    kurta = app.repo.find_item_by_name("Kurta")
    assert kurta.tax_rate == 12
    assert [(v.size, v.stock, v.price) for v in kurta.variants] == [("M", 5, None), ("L", 3, 850.0)]
    assert kurta.total_stock == 8
    assert app.repo.find_item_by_name("Scarf") is None

    purchases = app.purchases.list_purchases()
    assert len(purchases) == 2
    assert {p.vendor_name for p in purchases} == {"Excel import"}
    assert len(app.purchases.list_vendors()) == 1


def test_import_restocks_known_variant(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    shirt = add_shirt(app.inventory, stock_m=2)
    path = _sheet(tmp_path / "restock.xlsx", [
        ["Shirt", "Apparel", 100, 5, "pcs", "M", "Blue", 6, 3, None, 55],
    ])

    ok, skipped = app.excel.import_items_excel(path)

    assert (ok, skipped) == (1, 0)
    assert variant_stock(app.repo, shirt, "M", "Blue") == 8
    assert app.purchases.list_purchases()[0].total_amount == 330


def test_import_requires_headers(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    path = _sheet(tmp_path / "bad.xlsx", [["Shirt"]], headers=["name"])

    with pytest.raises(ValidationError, match="Missing column header"):
        app.excel.import_items_excel(path)
