from pathlib import Path

import pytest
import requests

from conftest import add_shirt
from rpos.application.container import build_container
from rpos.config import RuntimeConfig
from rpos.domain.errors import SyncUnavailableError
from rpos.services.billing_service import BillingSession


def _app_with_bills(tmp_path: Path, count: int = 2, url: str | None = "https://sync.example.test/bills"):
    app = build_container(tmp_path / "pos.db", config=RuntimeConfig(sync_url=url))
    item_id = add_shirt(app.inventory)
    bills = []
    for _ in range(count):
        session = BillingSession()
        app.billing.add_to_cart(session, item_id, 1)
        bills.append(app.billing.checkout(session).bill)
    return app, bills


def test_push_marks_acknowledged_bills_synced(tmp_path: Path):
    app, bills = _app_with_bills(tmp_path)
    sent = []

    def fake_post(url, payload):
        sent.append((url, payload))
        return {"syncedIds": [bills[0].id], "failedIds": [bills[1].id], "serverTimestamp": 1718000000000}

    app.sync._post_json = fake_post  # type: ignore[attr-defined]

    report = app.sync.push_pending_bills()

    url, payload = sent[0]
    assert url == "https://sync.example.test/bills"
    assert payload["lastSyncTimestamp"] is None
    assert {b["id"] for b in payload["bills"]} == {b.id for b in bills}
    assert report.synced_ids == (bills[0].id,)
    assert report.failed_ids == (bills[1].id,)
    assert app.billing.get_bill(bills[0].id).sync_status == "synced"
    assert app.billing.get_bill(bills[1].id).sync_status == "pending"

    app.sync.push_pending_bills()
    assert sent[1][1]["lastSyncTimestamp"] == 1718000000000
    assert [b["id"] for b in sent[1][1]["bills"]] == [bills[1].id]


def test_nothing_pending_skips_the_request(tmp_path: Path):
    app, _bills = _app_with_bills(tmp_path, count=0)

    def fail(url, payload):
        raise AssertionError("should not be called")

    app.sync._post_json = fail  # type: ignore[attr-defined]

    assert app.sync.push_pending_bills().attempted == 0


def test_transport_failure_raises_and_keeps_bills_pending(tmp_path: Path):
    app, bills = _app_with_bills(tmp_path, count=1)

    def down(url, payload):
        raise requests.ConnectionError("network down")

    app.sync._post_json = down  # type: ignore[attr-defined]

    with pytest.raises(SyncUnavailableError):
        app.sync.push_pending_bills()
    assert app.billing.get_bill(bills[0].id).sync_status == "pending"


def test_missing_endpoint_is_unavailable(tmp_path: Path):
    app, _bills = _app_with_bills(tmp_path, count=1, url=None)

    with pytest.raises(SyncUnavailableError, match="RPOS_SYNC_URL"):
        app.sync.push_pending_bills()
