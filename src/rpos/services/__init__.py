from .settings_service import SettingsService
from .sequence_service import SequenceService
from .stock_service import StockService
from .inventory_service import InventoryService
from .customer_service import CustomerService
from .outbox_service import SideEffectWorker
from .billing_service import BillingService, BillingSession, BillingState, CheckoutResult
from .purchase_service import PurchaseService
from .expense_service import ExpenseService
from .staff_service import StaffService
from .excel_service import ExcelService
from .reporting_service import ReportingService
from .backup_service import BackupService
from .sync_service import SyncService
from .operations_service import OperationsService

__all__ = [
    "SettingsService",
    "SequenceService",
    "StockService",
    "InventoryService",
    "CustomerService",
    "SideEffectWorker",
    "BillingService",
    "BillingSession",
    "BillingState",
    "CheckoutResult",
    "PurchaseService",
    "ExpenseService",
    "StaffService",
    "ExcelService",
    "ReportingService",
    "BackupService",
    "SyncService",
    "OperationsService",
]
