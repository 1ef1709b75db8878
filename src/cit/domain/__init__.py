from .models import (
    BalanceEntry,
    BatchResult,
    MovementGroup,
    MovementRecord,
    OperationResult,
    Order,
    OrderLine,
    ProductVariant,
    User,
)
from .errors import (
    AppError,
    AuthorizationError,
    CatalogUnavailableError,
    InsufficientQuantityError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)

__all__ = [
    "BalanceEntry",
    "BatchResult",
    "MovementGroup",
    "MovementRecord",
    "OperationResult",
    "Order",
    "OrderLine",
    "ProductVariant",
    "User",
    "AppError",
    "AuthorizationError",
    "CatalogUnavailableError",
    "InsufficientQuantityError",
    "InsufficientStockError",
    "InvalidTransitionError",
    "NotFoundError",
    "StorageError",
    "ValidationError",
]
