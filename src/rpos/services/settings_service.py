from __future__ import annotations

import logging

from rpos.domain.errors import ConcurrencyError, ValidationError
from rpos.domain.models import Settings

log = logging.getLogger(__name__)


class SettingsService:
    def __init__(self, repo, max_attempts: int = 3):
        self.repo = repo
        self.max_attempts = max_attempts

    def get_settings(self) -> Settings:
        """Return the singleton, creating the defaults on first access."""
        settings = self.repo.get_settings()
        if settings is not None:
            return settings
        if self.repo.insert_settings(Settings()):
            log.info("settings_initialized id=%s", Settings().id)
        return self.repo.get_settings()

    def update_settings(self, **fields) -> Settings:
        fields = self._clean(fields)
        if not fields:
            return self.get_settings()

        for _attempt in range(self.max_attempts):
            current = self.get_settings()
            if "invoice_counter" in fields and int(fields["invoice_counter"]) < current.invoice_counter:
                raise ValidationError(
                    f"Invoice counter cannot move backwards (current {current.invoice_counter})."
                )
            if self.repo.update_settings(fields, expected_version=current.version):
                log.info("settings_updated fields=%s", ",".join(sorted(fields)))
                return self.get_settings()
        raise ConcurrencyError("Settings changed while saving. Please retry.")

    def mark_backup(self, timestamp: str) -> Settings:
        return self.update_settings(last_backup=timestamp)

    @staticmethod
    def _clean(fields: dict) -> dict:
        out = dict(fields)
        if "invoice_prefix" in out:
            prefix = (out["invoice_prefix"] or "").strip()
            if not prefix:
                raise ValidationError("Invoice prefix is required.")
            out["invoice_prefix"] = prefix
        if "shop_name" in out:
            name = (out["shop_name"] or "").strip()
            if not name:
                raise ValidationError("Shop name is required.")
            out["shop_name"] = name
        if "thermal_printer_width" in out and int(out["thermal_printer_width"]) not in (58, 80):
            raise ValidationError("Thermal printer width must be 58 or 80 mm.")
        if "invoice_counter" in out:
            counter = int(out["invoice_counter"])
            if counter < 1:
                raise ValidationError("Invoice counter must be >= 1.")
            out["invoice_counter"] = counter
        if "auto_whatsapp" in out:
            out["auto_whatsapp"] = int(bool(out["auto_whatsapp"]))
        return out
