from __future__ import annotations

import logging
from datetime import date as date_cls
from typing import Optional

from rpos.domain.errors import NotFoundError, ValidationError
from rpos.domain.models import EXPENSE_PAYMENT_METHODS, Expense, new_id, now_iso

log = logging.getLogger(__name__)


class ExpenseService:
    def __init__(self, repo):
        self.repo = repo

    def add_expense(
        self,
        category: str,
        amount: float,
        description: str = "",
        payment_method: str = "cash",
        date: Optional[str] = None,
    ) -> str:
        category = (category or "").strip()
        if not category:
            raise ValidationError("Expense category is required.")
        amount = float(amount)
        if amount <= 0:
            raise ValidationError("Expense amount must be > 0.")
        if payment_method not in EXPENSE_PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {payment_method}")
        day = date or date_cls.today().isoformat()
        try:
            date_cls.fromisoformat(day[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid expense date: {day}") from e

        expense = Expense(
            id=new_id("expense"),
            category=category,
            description=(description or "").strip(),
            amount=amount,
            payment_method=payment_method,
            date=day,
            created_at=now_iso(),
        )
        self.repo.add_expense(expense)
        log.info("expense_added id=%s category=%s amount=%.2f", expense.id, category, amount)
        return expense.id

    def list_expenses(self) -> list[Expense]:
        return self.repo.list_expenses()

    def list_expenses_between(self, start_iso: str, end_iso: str) -> list[Expense]:
        return self.repo.list_expenses_between(start_iso, end_iso)

    def delete_expense(self, expense_id: str) -> None:
        if not self.repo.delete_expense(expense_id):
            raise NotFoundError("Expense not found.")
