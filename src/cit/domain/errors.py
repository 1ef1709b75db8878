class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InsufficientStockError(AppError):
    """A sale or sample movement asked for more than is available."""


class InsufficientQuantityError(AppError):
    """A bucket transfer source holds less than the requested amount."""


class AuthorizationError(AppError):
    pass


class StorageError(AppError):
    """Wraps sqlite3 errors; the message is the backend's."""


class InvalidTransitionError(AppError):
    """Order status change not allowed from the current status."""


class CatalogUnavailableError(AppError):
    pass
