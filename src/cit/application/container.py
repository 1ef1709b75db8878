from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from cit.repositories.sqlite_repo import SqliteRepository
from cit.services.auth_service import AuthService
from cit.services.balance_service import BalanceService
from cit.services.catalog_service import CatalogService
from cit.services.excel_service import ExcelService
from cit.services.ledger_service import LedgerService
from cit.services.movement_log_service import MovementLogService
from cit.services.order_service import OrderService
from cit.services.reporting_service import ReportingService


@dataclass(frozen=True)
class AppContainer:
    repo: SqliteRepository
    auth: AuthService
    catalog: CatalogService
    balances: BalanceService
    movements: MovementLogService
    ledger: LedgerService
    orders: OrderService
    reporting: ReportingService
    excel: ExcelService


def build_container(
    db_path: Path | str,
    bootstrap_admin: str = "admin",
    clock: Callable[[], datetime] | None = None,
) -> AppContainer:
    repo = SqliteRepository(db_path)
    repo.init_db(bootstrap_admin=bootstrap_admin)

    auth = AuthService(repo)
    catalog = CatalogService(repo, auth)
    balances = BalanceService(repo)
    movements = MovementLogService(repo, auth, clock=clock)
    ledger = LedgerService(repo, balances, movements, auth, clock=clock)
    orders = OrderService(repo, ledger, auth)
    reporting = ReportingService(repo, auth)
    excel = ExcelService(repo, ledger, auth)

    return AppContainer(
        repo=repo,
        auth=auth,
        catalog=catalog,
        balances=balances,
        movements=movements,
        ledger=ledger,
        orders=orders,
        reporting=reporting,
        excel=excel,
    )
