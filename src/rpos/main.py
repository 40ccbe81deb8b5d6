from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from dataclasses import asdict
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Sequence

from rpos.application.container import AppContainer, build_container
from rpos.config import get_app_paths, load_runtime_config
from rpos.domain.errors import AppError
from rpos.logging_config import setup_logging

log = logging.getLogger(__name__)


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def cmd_init(app: AppContainer, args) -> int:
    s = app.settings.get_settings()
    _print_json({"db": str(app.repo.db_path), "shop_name": s.shop_name, "next_invoice": app.sequence.peek_next_invoice_number()})
    return 0


def cmd_health(app: AppContainer, args) -> int:
    report = app.operations.run_health_check()
    _print_json({**asdict(report), "healthy": report.healthy})
    if args.diagnostics:
        print(app.operations.export_diagnostics())
    return 0 if report.healthy else 1


def cmd_drain(app: AppContainer, args) -> int:
    while True:
        report = app.billing.resume_pending(ignore_schedule=args.all, limit=args.limit)
        _print_json(asdict(report))
        if not args.loop:
            return 0 if report.clean else 1
        time.sleep(args.sleep)


def cmd_sync(app: AppContainer, args) -> int:
    report = app.sync.push_pending_bills(limit=args.limit)
    _print_json(asdict(report))
    return 0 if not report.failed_ids else 1


def cmd_backup(app: AppContainer, args) -> int:
    print(app.backup.create_backup())
    return 0


def cmd_restore(app: AppContainer, args) -> int:
    if args.path:
        counts = app.backup.restore_backup(args.path)
        _print_json(counts)
    else:
        print(app.operations.restore_latest_backup(app.backup))
    return 0


def cmd_report(app: AppContainer, args) -> int:
    end = args.end or (date.today() + timedelta(days=1)).isoformat()
    start = args.start or date.today().replace(day=1).isoformat()
    pl = app.reporting.profit_and_loss(start, end)
    _print_json({
        "profit_and_loss": asdict(pl),
        "item_sales": [asdict(s) for s in app.reporting.item_wise_sales(start, end)],
        "low_stock": [i.name for i in app.inventory.low_stock_items()],
    })
    if args.excel:
        app.reporting.export_sales_report_excel(args.excel, start, end)
        print(args.excel)
    return 0


def cmd_import_items(app: AppContainer, args) -> int:
    ok, skipped = app.excel.import_items_excel(args.path)
    _print_json({"imported": ok, "skipped": skipped})
    return 0 if not skipped else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rpos", description="Retail POS ledger maintenance")
    parser.add_argument("--db", default=None, help="SQLite ledger path (defaults to the app data dir)")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create or migrate the ledger and default settings")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("health", help="Integrity, outbox backlog and stock consistency")
    p.add_argument("--diagnostics", action="store_true", help="Also write a diagnostics zip")
    p.set_defaults(func=cmd_health)

    p = sub.add_parser("drain", help="Retry pending or failed post-sale side effects")
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--all", action="store_true", help="Ignore the retry schedule")
    p.add_argument("--loop", action="store_true", help="Run continuously as a service")
    p.add_argument("--sleep", type=float, default=5.0, help="Seconds to sleep between loops")
    p.set_defaults(func=cmd_drain)

    p = sub.add_parser("sync", help="Push pending bills to the sync endpoint")
    p.add_argument("--limit", type=int, default=100)
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("backup", help="Write a JSON snapshot of the ledger")
    p.set_defaults(func=cmd_backup)

    p = sub.add_parser("restore", help="Replace the ledger with a snapshot (latest if no path)")
    p.add_argument("path", nargs="?")
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("report", help="P&L and item sales for a window [start, end)")
    p.add_argument("--start", help="YYYY-MM-DD, defaults to the first of this month")
    p.add_argument("--end", help="YYYY-MM-DD (exclusive), defaults to tomorrow")
    p.add_argument("--excel", help="Also export an .xlsx report to this path")
    p.set_defaults(func=cmd_report)

    p = sub.add_parser("import-items", help="Import or restock items from an .xlsx sheet")
    p.add_argument("path")
    p.set_defaults(func=cmd_import_items)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    db_path = Path(args.db) if args.db else get_app_paths().db_path
    setup_logging(db_path.parent / "logs", level=logging.DEBUG if args.verbose else logging.INFO)

    app = build_container(db_path, config=load_runtime_config())
    try:
        return int(args.func(app, args))
    except AppError as e:
        log.error("command_failed command=%s error=%s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
