from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from rpos.domain.cart import Cart
from rpos.domain.errors import AppError, NotFoundError, ValidationError
from rpos.domain.models import PAYMENT_METHODS, Bill, BillLine, Customer, new_id, now_iso
from rpos.domain.pricing import Totals, compute_totals, validate_discount
from rpos.repositories.contracts import BillingRepository, DocumentRenderer
from rpos.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from rpos.services.outbox_service import SideEffectWorker
from rpos.services.sequence_service import SequenceService
from rpos.services.settings_service import SettingsService

log = logging.getLogger("rpos.billing")


class BillingState(str, Enum):
    BUILDING = "building"
    PRICING = "pricing"
    ALLOCATING = "allocating"
    PERSISTING = "persisting"
    STOCK_ADJUSTING = "stock_adjusting"
    LEDGER_UPDATING = "ledger_updating"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = (BillingState.COMPLETE, BillingState.FAILED)


@dataclass
class BillingSession:
    """What the cashier is building. Nothing here is persisted until checkout."""

    cart: Cart = field(default_factory=Cart)
    customer_id: Optional[str] = None
    discount_percent: float = 0.0
    payment_method: str = "cash"

    def reset(self) -> None:
        self.cart.clear()
        self.customer_id = None
        self.discount_percent = 0.0
        self.payment_method = "cash"


@dataclass
class CheckoutContext:
    session: BillingSession
    created_by: str
    state: BillingState = BillingState.BUILDING
    customer: Optional[Customer] = None
    totals: Optional[Totals] = None
    lines: tuple[BillLine, ...] = ()
    invoice_number: Optional[str] = None
    bill: Optional[Bill] = None
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CheckoutResult:
    bill: Bill
    warnings: tuple[str, ...] = ()
    document: Optional[bytes] = None

    @property
    def fully_done(self) -> bool:
        return not self.warnings


class BillingService:
    def __init__(
        self,
        repo: BillingRepository,
        sequence: SequenceService,
        worker: SideEffectWorker,
        settings_service: SettingsService | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        document_renderer: DocumentRenderer | None = None,
    ):
        self.repo = repo
        self.sequence = sequence
        self.worker = worker
        self.settings = settings_service or SettingsService(repo)
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))
        self.document_renderer = document_renderer
        self._steps = {
            BillingState.BUILDING: self._validate,
            BillingState.PRICING: self._price,
            BillingState.ALLOCATING: self._allocate,
            BillingState.PERSISTING: self._persist,
            BillingState.STOCK_ADJUSTING: self._adjust_stock,
            BillingState.LEDGER_UPDATING: self._update_ledger,
        }

    # ---------- Building ----------
    def add_to_cart(
        self,
        session: BillingSession,
        item_id: str,
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
    ):
        """Shared entry for manual picks and pre-resolved voice/OCR lines."""
        item = self.repo.get_item(item_id)
        if not item:
            raise NotFoundError("Item not found.")
        return session.cart.add(item, quantity=quantity, size=size, color=color)

    def quote(self, session: BillingSession) -> Totals:
        return compute_totals(session.cart.lines, session.discount_percent)

    # ---------- Checkout ----------
    def checkout(self, session: BillingSession, created_by: str = "owner") -> CheckoutResult:
        ctx = CheckoutContext(session=session, created_by=created_by)
        while ctx.state not in TERMINAL_STATES:
            step = self._steps[ctx.state]
            try:
                ctx.state = step(ctx)
            except (AppError, sqlite3.Error) as e:
                failed_in = ctx.state
                ctx.state = BillingState.FAILED
                log.error(
                    "checkout_failed state=%s invoice=%s error=%s",
                    failed_in.value, ctx.invoice_number, e,
                )
                raise

        if ctx.bill is None:
            raise AppError("Checkout finished without a bill.")
        session.reset()
        document = self._render(ctx)
        log.info(
            "checkout_complete invoice=%s total=%.2f warnings=%s",
            ctx.bill.invoice_number, ctx.bill.grand_total, len(ctx.warnings),
        )
        return CheckoutResult(bill=ctx.bill, warnings=tuple(ctx.warnings), document=document)

    def _validate(self, ctx: CheckoutContext) -> BillingState:
        s = ctx.session
        if s.cart.is_empty():
            raise ValidationError("Cart is empty.")
        validate_discount(s.discount_percent)
        if s.payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unknown payment method: {s.payment_method}")
        if s.customer_id:
            ctx.customer = self.repo.get_customer(s.customer_id)
            if ctx.customer is None:
                raise NotFoundError("Customer not found.")
        if s.payment_method == "credit" and ctx.customer is None:
            raise ValidationError("Credit sales need a customer.")
        return BillingState.PRICING

    def _price(self, ctx: CheckoutContext) -> BillingState:
        totals = compute_totals(ctx.session.cart.lines, ctx.session.discount_percent)
        if not totals.balances():
            raise ValidationError("Bill totals do not balance.")
        ctx.totals = totals
        ctx.lines = tuple(
            BillLine(
                item_id=line.item_id,
                name=line.name,
                size=line.size,
                color=line.color,
                quantity=int(line.quantity),
                unit_price=float(line.unit_price),
                tax_rate=float(line.tax_rate),
                tax_amount=priced.tax,
                discount=priced.discount,
                total=priced.total,
            )
            for line, priced in zip(ctx.session.cart.lines, totals.lines)
        )
        return BillingState.ALLOCATING

    def _allocate(self, ctx: CheckoutContext) -> BillingState:
        ctx.invoice_number = self.sequence.next_invoice_number()
        return BillingState.PERSISTING

    def _persist(self, ctx: CheckoutContext) -> BillingState:
        s = ctx.session
        t = ctx.totals
        if t is None or ctx.invoice_number is None:
            raise AppError("Bill cannot be persisted before pricing and allocation.")
        customer = ctx.customer
        bill = Bill(
            id=new_id("bill"),
            invoice_number=ctx.invoice_number,
            lines=ctx.lines,
            subtotal=t.subtotal,
            discount_amount=t.discount_amount,
            discount_percent=t.discount_percent,
            tax_amount=t.tax_amount,
            grand_total=t.grand_total,
            paid_amount=0.0 if s.payment_method == "credit" else t.grand_total,
            payment_method=s.payment_method,
            status="completed",
            sync_status="pending",
            created_at=now_iso(),
            created_by=ctx.created_by,
            customer_id=customer.id if customer else None,
            customer_name=customer.name if customer else None,
            customer_phone=customer.phone if customer else None,
        )

        effects: list[tuple[str, dict]] = [
            ("deduct_stock", {"item_id": l.item_id, "size": l.size, "color": l.color, "quantity": l.quantity})
            for l in bill.lines
        ]
        if customer:
            effects.append(
                (
                    "update_customer_ledger",
                    {"customer_id": customer.id, "amount": bill.grand_total, "on_credit": s.payment_method == "credit"},
                )
            )

        with self.uow_factory() as uow:
            uow.persist_bill(bill, effects)
        ctx.bill = bill
        log.info(
            "bill_created invoice=%s bill=%s lines=%s total=%.2f payment=%s customer=%s",
            bill.invoice_number, bill.id, len(bill.lines), bill.grand_total, bill.payment_method, bill.customer_id,
        )
        return BillingState.STOCK_ADJUSTING

    def _adjust_stock(self, ctx: CheckoutContext) -> BillingState:
        self._drain_for(ctx, "deduct_stock")
        return BillingState.LEDGER_UPDATING

    def _update_ledger(self, ctx: CheckoutContext) -> BillingState:
        if ctx.bill is not None and ctx.bill.customer_id:
            self._drain_for(ctx, "update_customer_ledger")
        return BillingState.COMPLETE

    def _drain_for(self, ctx: CheckoutContext, kind: str) -> None:
        # The bill is committed from here on; problems become warnings, never exceptions.
        bill = ctx.bill
        if bill is None:
            raise AppError(f"No bill to run {kind} for.")
        try:
            report = self.worker.drain(bill_id=bill.id, kinds=(kind,), limit=None, ignore_schedule=True)
        except (AppError, sqlite3.Error) as e:
            log.error("side_effect_drain_failed bill=%s kind=%s error=%s", bill.id, kind, e)
            ctx.warnings.append(f"{kind} for bill {bill.id} could not run: {e}")
            return
        ctx.warnings.extend(report.warnings)

    def _render(self, ctx: CheckoutContext) -> Optional[bytes]:
        if self.document_renderer is None or ctx.bill is None:
            return None
        try:
            return self.document_renderer(ctx.bill, self.settings.get_settings())
        except Exception as e:
            log.error("document_render_failed invoice=%s error=%s", ctx.bill.invoice_number, e)
            ctx.warnings.append(f"Invoice document could not be generated: {e}")
            return None

    # ---------- After the sale ----------
    def resume_pending(self, ignore_schedule: bool = False, limit: int = 100):
        """Re-drain events left pending or failed, e.g. after a crash mid-checkout."""
        return self.worker.drain(limit=limit, ignore_schedule=ignore_schedule)

    def get_bill(self, bill_id: str) -> Bill:
        bill = self.repo.get_bill(bill_id)
        if not bill:
            raise NotFoundError("Bill not found.")
        return bill

    def list_bills_between(self, start_iso: str, end_iso: str) -> list[Bill]:
        return self.repo.list_bills_between(start_iso, end_iso)

    def cancel_bill(self, bill_id: str) -> Bill:
        bill = self.get_bill(bill_id)
        if bill.status != "cancelled":
            self.repo.update_bill_status(bill_id, "cancelled")
            log.info("bill_cancelled invoice=%s bill=%s", bill.invoice_number, bill_id)
        return self.get_bill(bill_id)

    def mark_synced(self, bill_id: str) -> None:
        if not self.repo.mark_bills_synced([bill_id]):
            raise NotFoundError("Bill not found.")
