from __future__ import annotations

import logging
import sqlite3

from rpos.domain.errors import AllocationError
from rpos.services.settings_service import SettingsService

log = logging.getLogger("rpos.billing")


class SequenceService:
    """Invoice numbers come from ``settings.invoice_counter`` only, never from a bill count.

    The counter is bumped with a compare-and-swap before the number is returned, so a
    number handed out is always already reserved. A crash afterwards leaves a gap, never
    a duplicate.
    """

    def __init__(self, repo, settings_service: SettingsService | None = None, max_attempts: int = 5):
        self.repo = repo
        self.settings = settings_service or SettingsService(repo)
        self.max_attempts = max_attempts

    @staticmethod
    def format_invoice_number(prefix: str, counter: int) -> str:
        return f"{prefix}-{int(counter):05d}"

    def peek_next_invoice_number(self) -> str:
        s = self.settings.get_settings()
        return self.format_invoice_number(s.invoice_prefix, s.invoice_counter)

    def next_invoice_number(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                s = self.settings.get_settings()
                number = self.format_invoice_number(s.invoice_prefix, s.invoice_counter)
                reserved = self.repo.compare_and_set_invoice_counter(s.invoice_counter, s.invoice_counter + 1)
            except sqlite3.Error as e:
                log.error("invoice_allocation_failed error=%s", e)
                raise AllocationError("Could not reserve an invoice number. Please retry.") from e

            if reserved:
                log.info("invoice_number_reserved number=%s", number)
                return number
            log.warning("invoice_counter_conflict attempt=%s counter=%s", attempt, s.invoice_counter)

        raise AllocationError("Invoice counter kept changing; no number was issued. Please retry.")
