from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

import requests

from rpos.domain.errors import SyncUnavailableError

log = logging.getLogger("rpos.sync")


@dataclass(frozen=True)
class SyncReport:
    attempted: int
    synced_ids: tuple[str, ...] = ()
    failed_ids: tuple[str, ...] = ()
    server_timestamp: Optional[int] = None


class SyncService:
    """Mirrors pending bills to a remote endpoint. The local ledger stays authoritative."""

    def __init__(self, repo, endpoint: Optional[str], timeout: float = 10.0):
        self.repo = repo
        self.endpoint = endpoint
        self.timeout = timeout
        self.last_sync_timestamp: Optional[int] = None

    def _post_json(self, url: str, payload: dict) -> dict:
        r = requests.post(url, json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def push_pending_bills(self, limit: int = 100) -> SyncReport:
        if not self.endpoint:
            raise SyncUnavailableError("No sync endpoint configured (RPOS_SYNC_URL).")

        bills = self.repo.list_bills_by_sync_status("pending", limit=limit)
        if not bills:
            return SyncReport(attempted=0, server_timestamp=self.last_sync_timestamp)

        payload = {"bills": [asdict(b) for b in bills], "lastSyncTimestamp": self.last_sync_timestamp}
        try:
            data = self._post_json(self.endpoint, payload)
        except (requests.RequestException, ValueError) as e:
            log.warning("sync_failed url=%s bills=%s error=%s", self.endpoint, len(bills), e)
            raise SyncUnavailableError(f"Sync failed: {e}") from e

        sent = {b.id for b in bills}
        synced = [i for i in data.get("syncedIds") or [] if i in sent]
        failed = [str(i) for i in data.get("failedIds") or []]
        self.repo.mark_bills_synced(synced)
        server_ts = data.get("serverTimestamp")
        if server_ts is not None:
            self.last_sync_timestamp = int(server_ts)

        log.info("sync_pushed attempted=%s synced=%s failed=%s", len(bills), len(synced), len(failed))
        return SyncReport(
            attempted=len(bills),
            synced_ids=tuple(synced),
            failed_ids=tuple(failed),
            server_timestamp=self.last_sync_timestamp,
        )
