class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class AllocationError(AppError):
    """Invoice number could not be reserved; nothing was persisted."""


class ConcurrencyError(AppError):
    """A versioned record kept changing underneath a compare-and-swap write."""


class SyncUnavailableError(AppError):
    pass
