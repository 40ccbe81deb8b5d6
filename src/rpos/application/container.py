from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rpos.config import RuntimeConfig
from rpos.repositories.contracts import DocumentRenderer
from rpos.repositories.sqlite_repo import SqliteRepository
from rpos.services.backup_service import BackupService
from rpos.services.billing_service import BillingService
from rpos.services.customer_service import CustomerService
from rpos.services.excel_service import ExcelService
from rpos.services.expense_service import ExpenseService
from rpos.services.inventory_service import InventoryService
from rpos.services.operations_service import OperationsService
from rpos.services.outbox_service import SideEffectWorker
from rpos.services.purchase_service import PurchaseService
from rpos.services.reporting_service import ReportingService
from rpos.services.sequence_service import SequenceService
from rpos.services.settings_service import SettingsService
from rpos.services.staff_service import StaffService
from rpos.services.stock_service import StockService
from rpos.services.sync_service import SyncService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    settings: SettingsService
    sequence: SequenceService
    stock: StockService
    inventory: InventoryService
    customers: CustomerService
    worker: SideEffectWorker
    billing: BillingService
    purchases: PurchaseService
    expenses: ExpenseService
    staff: StaffService
    excel: ExcelService
    reporting: ReportingService
    backup: BackupService
    sync: SyncService
    operations: OperationsService


def build_container(
    db_path: Path | str,
    config: RuntimeConfig | None = None,
    document_renderer: DocumentRenderer | None = None,
) -> AppContainer:
    config = config or RuntimeConfig()
    repo = SqliteRepository(db_path)
    repo.init_db()

    settings = SettingsService(repo)
    sequence = SequenceService(repo, settings)
    stock = StockService(repo)
    inventory = InventoryService(repo)
    customers = CustomerService(repo)
    worker = SideEffectWorker(repo, stock, customers, max_attempts=config.outbox_max_attempts)
    billing = BillingService(repo, sequence, worker, settings_service=settings, document_renderer=document_renderer)
    purchases = PurchaseService(repo, stock)
    expenses = ExpenseService(repo)
    staff = StaffService(repo)
    excel = ExcelService(repo, purchases, inventory)
    reporting = ReportingService(repo)
    backup_dir = Path(db_path).parent / "backups"
    backup = BackupService(repo, backup_dir, settings_service=settings, retention=config.backup_retention)
    sync = SyncService(repo, config.sync_url, timeout=config.sync_timeout)
    operations = OperationsService(
        repo, stock, db_path=db_path, logs_dir=Path(db_path).parent / "logs", backup_dir=backup_dir
    )

    return AppContainer(
        repo=repo,
        settings=settings,
        sequence=sequence,
        stock=stock,
        inventory=inventory,
        customers=customers,
        worker=worker,
        billing=billing,
        purchases=purchases,
        expenses=expenses,
        staff=staff,
        excel=excel,
        reporting=reporting,
        backup=backup,
        sync=sync,
        operations=operations,
    )
