from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from rpos.domain.models import Bill


@dataclass(frozen=True)
class DailySales:
    day: str
    total_sales: float
    bill_count: int
    bills: tuple[Bill, ...]


@dataclass(frozen=True)
class ItemSales:
    item_id: str
    name: str
    quantity: int
    revenue: float


@dataclass(frozen=True)
class ProfitAndLoss:
    start_iso: str
    end_iso: str
    total_sales: float
    tax_collected: float
    total_purchases: float
    total_expenses: float
    gross_profit: float
    net_profit: float


def _next_day(day: str) -> str:
    return (date.fromisoformat(day[:10]) + timedelta(days=1)).isoformat()


class ReportingService:
    """Read-only views, recomputed from the ledger on every call."""

    def __init__(self, repo):
        self.repo = repo

    def sales_for_period(self, start_iso: str, end_iso: str) -> list[Bill]:
        """Completed bills only; cancelled and pending bills are not sales."""
        return self.repo.list_bills_between(start_iso, end_iso, status="completed")

    def daily_sales(self, day: str) -> DailySales:
        bills = self.sales_for_period(day[:10], _next_day(day))
        return DailySales(
            day=day[:10],
            total_sales=sum(b.grand_total for b in bills),
            bill_count=len(bills),
            bills=tuple(bills),
        )

    def item_wise_sales(self, start_iso: str, end_iso: str) -> list[ItemSales]:
        acc: dict[str, list] = {}
        for bill in self.sales_for_period(start_iso, end_iso):
            for line in bill.lines:
                row = acc.setdefault(line.item_id, [line.name, 0, 0.0])
                row[1] += int(line.quantity)
                row[2] += float(line.total)
        out = [ItemSales(item_id=k, name=v[0], quantity=v[1], revenue=v[2]) for k, v in acc.items()]
        return sorted(out, key=lambda s: s.revenue, reverse=True)

    def profit_and_loss(self, start_iso: str, end_iso: str) -> ProfitAndLoss:
        bills = self.sales_for_period(start_iso, end_iso)
        purchases = self.repo.list_purchases_between(start_iso, end_iso)
        expenses = self.repo.list_expenses_between(start_iso, end_iso)

        sales = sum(b.grand_total for b in bills)
        spent = sum(p.total_amount for p in purchases)
        costs = sum(e.amount for e in expenses)
        gross = sales - spent
        return ProfitAndLoss(
            start_iso=start_iso,
            end_iso=end_iso,
            total_sales=sales,
            tax_collected=sum(b.tax_amount for b in bills),
            total_purchases=spent,
            total_expenses=costs,
            gross_profit=gross,
            net_profit=gross - costs,
        )

    def total_outstanding(self) -> float:
        return sum(c.outstanding_amount for c in self.repo.list_customers())

    def export_sales_report_excel(self, path: str, start_iso: str, end_iso: str) -> None:
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        pl = self.profit_and_loss(start_iso, end_iso)
        bills = self.sales_for_period(start_iso, end_iso)
        expenses = self.repo.list_expenses_between(start_iso, end_iso)

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = "Profit & Loss"
        ws["A1"].font = Font(bold=True, size=14)

        ws["A3"] = "Window"
        ws["B3"] = f"{start_iso}  ->  {end_iso}"

        rows = [
            ("Bills", len(bills), "int"),
            ("Total sales", pl.total_sales, "money"),
            ("GST collected", pl.tax_collected, "money"),
            ("Purchases", pl.total_purchases, "money"),
            ("Gross profit", pl.gross_profit, "money"),
            ("Expenses", pl.total_expenses, "money"),
            ("Net profit", pl.net_profit, "money"),
            ("Outstanding credit (all time)", self.total_outstanding(), "money"),
        ]
        start_row = 5
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 30, "B": 34})

        # -------- 2) Bills --------
        ws2 = wb.create_sheet("Bills")
        ws2.append([
            "Invoice", "Datetime", "Customer", "Payment",
            "Subtotal", "Discount", "Tax", "Grand Total", "Paid",
        ])
        bold_row(ws2, 1)
        for out_row, b in enumerate(bills, start=2):
            ws2.append([
                b.invoice_number, b.created_at, b.customer_name or "", b.payment_method,
                b.subtotal, b.discount_amount, b.tax_amount, b.grand_total, b.paid_amount,
            ])
            for col in "EFGHI":
                money(ws2[f"{col}{out_row}"])
        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 14, "B": 22, "C": 24, "D": 10, "E": 14, "F": 14, "G": 14, "H": 14, "I": 14})
        if ws2.max_row >= 2:
            add_table(ws2, "BillsDetail", 1, 1, ws2.max_row, 9)

        # -------- 3) Item Sales --------
        ws3 = wb.create_sheet("Item Sales")
        ws3.append(["Item ID", "Name", "Qty", "Revenue"])
        bold_row(ws3, 1)
        for out_row, s in enumerate(self.item_wise_sales(start_iso, end_iso), start=2):
            ws3.append([s.item_id, s.name, s.quantity, s.revenue])
            money(ws3[f"D{out_row}"])
        ws3.freeze_panes = "A2"
        set_widths(ws3, {"A": 34, "B": 34, "C": 8, "D": 16})
        if ws3.max_row >= 2:
            add_table(ws3, "ItemSales", 1, 1, ws3.max_row, 4)

        # -------- 4) Expenses --------
        ws4 = wb.create_sheet("Expenses")
        ws4.append(["Date", "Category", "Description", "Payment", "Amount"])
        bold_row(ws4, 1)
        for out_row, e in enumerate(expenses, start=2):
            ws4.append([e.date, e.category, e.description, e.payment_method, e.amount])
            money(ws4[f"E{out_row}"])
        ws4.freeze_panes = "A2"
        set_widths(ws4, {"A": 12, "B": 18, "C": 34, "D": 10, "E": 14})

        wb.save(path)
