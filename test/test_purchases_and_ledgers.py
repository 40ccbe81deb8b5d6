from datetime import date
from pathlib import Path

import pytest

from conftest import add_shirt, variant_stock
from rpos.application.container import build_container
from rpos.domain.errors import NotFoundError, ValidationError
from rpos.services.billing_service import BillingSession


def test_purchase_adds_stock_and_records_lines(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    item_id = add_shirt(app.inventory, stock_m=1, stock_l=0)
    vendor_id = app.purchases.add_vendor("Textiles Co", "9111111111", gst_number="29ABCDE1234F1Z5")

    pid = app.purchases.create_purchase(
        vendor_id,
        [
            {"item_id": item_id, "size": "M", "color": "Blue", "quantity": 5, "cost_price": 60.0},
            {"item_id": item_id, "size": "L", "color": "Red", "quantity": 2, "cost_price": 70.0},
        ],
        paid_amount=100.0,
        invoice_number="TC-77",
    )

    [purchase] = app.purchases.list_purchases()
    assert purchase.id == pid
    assert purchase.vendor_name == "Textiles Co"
    assert purchase.total_amount == 440.0
    assert purchase.status == "partial"
    assert len(purchase.lines) == 2
    assert variant_stock(app.repo, item_id, "M", "Blue") == 6
    assert variant_stock(app.repo, item_id, "L", "Red") == 2
    assert app.repo.get_item(item_id).total_stock == 8


def test_purchase_with_unknown_variant_rolls_back_everything(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    item_id = add_shirt(app.inventory, stock_m=1)
    vendor_id = app.purchases.add_vendor("Textiles Co", "9111111111")

    with pytest.raises(NotFoundError):
        app.purchases.create_purchase(
            vendor_id,
            [
                {"item_id": item_id, "size": "M", "color": "Blue", "quantity": 5, "cost_price": 60.0},
                {"item_id": item_id, "size": "XL", "color": "Green", "quantity": 1, "cost_price": 60.0},
            ],
        )

    assert app.purchases.list_purchases() == []
    assert variant_stock(app.repo, item_id, "M", "Blue") == 1


def test_purchase_validation(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    item_id = add_shirt(app.inventory)
    vendor_id = app.purchases.add_vendor("Textiles Co", "9111111111")

    with pytest.raises(ValidationError):
        app.purchases.create_purchase(vendor_id, [])
    with pytest.raises(ValidationError):
        app.purchases.create_purchase(
            vendor_id, [{"item_id": item_id, "size": "M", "color": "Blue", "quantity": 0, "cost_price": 1.0}]
        )
    with pytest.raises(NotFoundError):
        app.purchases.create_purchase(
            "vendor_missing", [{"item_id": item_id, "size": "M", "color": "Blue", "quantity": 1, "cost_price": 1.0}]
        )


def test_receive_payment_settles_credit(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    item_id = app.inventory.add_item("Saree", "Apparel", 500, 0, [{"size": "F", "color": "Red", "stock": 5}])
    cid = app.customers.add_customer("Ravi", "9000000002", tag="regular")
    session = BillingSession(customer_id=cid, payment_method="credit")
    app.billing.add_to_cart(session, item_id, 1)
    app.billing.checkout(session)

    with pytest.raises(ValidationError, match="exceeds"):
        app.customers.receive_payment(cid, 600)
    with pytest.raises(ValidationError):
        app.customers.receive_payment(cid, 0)

    customer = app.customers.receive_payment(cid, 200)
    assert customer.outstanding_amount == 300
    assert customer.total_purchases == 500


def test_customer_crud(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    cid = app.customers.add_customer("Asha", "9000000001")

    assert app.customers.find_by_phone("9000000001").id == cid
    updated = app.customers.update_customer(cid, tag="vip", email="asha@example.com")
    assert updated.tag == "vip"
    with pytest.raises(ValidationError):
        app.customers.update_customer(cid, tag="gold")
    with pytest.raises(ValidationError):
        app.customers.add_customer("", "1")

    app.customers.delete_customer(cid)
    with pytest.raises(NotFoundError):
        app.customers.get_customer(cid)


def test_expenses_by_date_window(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    app.expenses.add_expense("Rent", 15000, "March rent", date="2024-03-01")
    app.expenses.add_expense("Electricity", 1200, payment_method="upi", date="2024-03-15")
    app.expenses.add_expense("Rent", 15000, date="2024-04-01")

    march = app.expenses.list_expenses_between("2024-03-01", "2024-04-01")

    assert sorted(e.category for e in march) == ["Electricity", "Rent"]
    with pytest.raises(ValidationError):
        app.expenses.add_expense("Rent", -5)
    with pytest.raises(ValidationError):
        app.expenses.add_expense("Rent", 5, payment_method="credit")


def test_attendance_is_one_row_per_staff_per_day(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    sid = app.staff.add_staff("Kiran", "9222222222", role="manager", salary=25000, permissions=["billing", "reports"])

    app.staff.mark_attendance(sid, "late", day="2024-05-02")
    saved = app.staff.mark_attendance(sid, "present", day="2024-05-02")
    app.staff.mark_attendance(sid, "absent", day="2024-05-03")
    app.staff.mark_attendance(sid, "present", day="2024-06-01")

    may = app.staff.staff_attendance(sid, "2024-05")
    assert saved.status == "present"
    assert [(a.date, a.status) for a in may] == [("2024-05-02", "present"), ("2024-05-03", "absent")]
    assert app.staff.get_staff(sid).permissions == ("billing", "reports")
    with pytest.raises(ValidationError):
        app.staff.mark_attendance(sid, "holiday")


def test_staff_updates(tmp_path: Path):
    app = build_container(tmp_path / "pos.db")
    sid = app.staff.add_staff("Kiran", "9222222222", joining_date=date(2024, 1, 15).isoformat())

    app.staff.update_staff(sid, permissions=["billing"], salary=18000)
    app.staff.deactivate(sid)

    s = app.staff.get_staff(sid)
    assert s.permissions == ("billing",)
    assert s.salary == 18000
    assert not s.is_active
    assert app.staff.list_staff(active_only=True) == []
