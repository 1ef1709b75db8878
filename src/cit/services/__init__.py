from .auth_service import AuthService
from .balance_service import BalanceService
from .catalog_service import CatalogService
from .excel_service import ExcelService
from .ledger_service import LedgerService
from .movement_log_service import MovementLogService
from .order_service import OrderService
from .reporting_service import ReportingService

__all__ = [
    "AuthService",
    "BalanceService",
    "CatalogService",
    "ExcelService",
    "LedgerService",
    "MovementLogService",
    "OrderService",
    "ReportingService",
]
