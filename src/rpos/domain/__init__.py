from .models import Item, Variant, Customer, Bill, BillLine, Settings, SideEffect
from .errors import ValidationError, NotFoundError, AllocationError, ConcurrencyError, SyncUnavailableError

__all__ = [
    "Item",
    "Variant",
    "Customer",
    "Bill",
    "BillLine",
    "Settings",
    "SideEffect",
    "ValidationError",
    "NotFoundError",
    "AllocationError",
    "ConcurrencyError",
    "SyncUnavailableError",
]
