from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional

from rpos.domain.errors import AppError
from rpos.domain.models import SideEffect, now_iso

log = logging.getLogger("rpos.billing")

MAX_BACKOFF_SECONDS = 300


def next_retry_at(attempts: int, now: Optional[datetime] = None) -> str:
    """Exponential backoff capped at five minutes: 1s, 2s, 4s ... 300s."""
    delay = min(MAX_BACKOFF_SECONDS, 2 ** max(0, int(attempts) - 1))
    base = (now or datetime.now()).replace(microsecond=0)
    return (base + timedelta(seconds=delay)).isoformat(sep=" ")


@dataclass
class DrainReport:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    dead: int = 0
    warnings: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed and not self.dead


class SideEffectWorker:
    """Applies queued post-sale effects.

    Each effect runs on the same connection as its status update, so an event is either
    applied and marked done, or neither. Failures are recorded on the row and retried
    later with backoff until ``max_attempts``, after which the row is ``dead``.
    """

    def __init__(self, repo, stock_service, customer_service, max_attempts: int = 5):
        self.repo = repo
        self.stock = stock_service
        self.customers = customer_service
        self.max_attempts = max_attempts

    def drain(
        self,
        bill_id: Optional[str] = None,
        kinds: Optional[Iterable[str]] = None,
        limit: Optional[int] = 100,
        ignore_schedule: bool = False,
    ) -> DrainReport:
        """Process due events in id order. ``limit=None`` drains everything that matches."""
        due_at = None if ignore_schedule else now_iso()
        report = DrainReport()
        effects = self.repo.list_side_effects(
            bill_id=bill_id, due_at=due_at, limit=limit, kinds=tuple(kinds) if kinds is not None else None
        )
        for effect in effects:
            self._process(effect, report)
        if report.processed or report.failed or report.dead:
            log.info(
                "outbox_drained bill=%s processed=%s skipped=%s failed=%s dead=%s",
                bill_id, report.processed, report.skipped, report.failed, report.dead,
            )
        return report

    def _process(self, effect: SideEffect, report: DrainReport) -> None:
        attempts = effect.attempts + 1
        try:
            with self.repo.transaction() as conn:
                applied = self._apply(effect, conn)
                status = "done" if applied else "skipped"
                self.repo.mark_side_effect(effect.id, status, attempts, processed_at=now_iso(), conn=conn)
        except (AppError, sqlite3.Error, LookupError, ValueError, TypeError) as e:
            dead = attempts >= self.max_attempts
            status = "dead" if dead else "failed"
            retry_at = None if dead else next_retry_at(attempts)
            self.repo.mark_side_effect(effect.id, status, attempts, last_error=str(e), next_attempt_at=retry_at)
            log.error(
                "side_effect_failed id=%s bill=%s kind=%s attempts=%s status=%s error=%s",
                effect.id, effect.bill_id, effect.kind, attempts, status, e,
            )
            report.warnings.append(f"{effect.kind} for bill {effect.bill_id} failed: {e}")
            if dead:
                report.dead += 1
            else:
                report.failed += 1
            return

        report.processed += 1
        if status == "skipped":
            report.skipped += 1

    def _apply(self, effect: SideEffect, conn: sqlite3.Connection) -> bool:
        p = effect.payload
        if effect.kind == "deduct_stock":
            outcome = self.stock.apply_delta(
                p["item_id"], p.get("size"), p.get("color"), -int(p["quantity"]), conn=conn
            )
            return outcome.applied
        if effect.kind == "update_customer_ledger":
            return self.customers.record_purchase(
                p["customer_id"], float(p["amount"]), bool(p["on_credit"]), conn=conn
            )
        raise ValueError(f"Unknown side effect kind: {effect.kind}")
