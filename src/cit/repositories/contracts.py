from __future__ import annotations

from typing import Iterable, Optional, Protocol

from cit.domain.models import BalanceEntry, MovementRecord, Order, OrderLine, ProductVariant, User


class CatalogRepository(Protocol):
    def list_variants(self) -> list[ProductVariant]: ...
    def get_variant(self, variant_id: str) -> Optional[ProductVariant]: ...
    def find_variant(self, team: str, color: str) -> Optional[ProductVariant]: ...


class LedgerRepository(CatalogRepository, Protocol):
    def list_balances(self) -> list[BalanceEntry]: ...
    def list_balances_for_product(self, product_id: str) -> list[BalanceEntry]: ...
    def get_balance(self, product_id: str, size: str) -> Optional[BalanceEntry]: ...
    def get_balance_by_id(self, entry_id: int) -> Optional[BalanceEntry]: ...
    def transfer_bucket(self, entry_id: int, from_bucket: str, to_bucket: str, amount: int) -> None: ...
    def adjust_bucket(self, entry_id: int, bucket: str, delta: int) -> None: ...
    def reset_all(self) -> tuple[int, int]: ...
    def clear_movements(self) -> int: ...
    def recent_movements(self, limit: int = 100) -> list[MovementRecord]: ...
    def get_user_by_username(self, username: str) -> Optional[User]: ...


class OrderRepository(CatalogRepository, Protocol):
    def get_order(self, order_id: int) -> Optional[Order]: ...
    def list_orders(self) -> list[Order]: ...
    def create_order_with_lines(
        self,
        counterparty: str,
        contact: Optional[str],
        kind: str,
        status: str,
        order_date: str,
        delivery_date: Optional[str],
        total: float,
        notes: Optional[str],
        lines: Iterable[OrderLine],
        actor_user_id: Optional[int] = None,
    ) -> int: ...
    def update_order_status(
        self,
        order_id: int,
        status: str,
        expected_statuses: Iterable[str],
        confirmation_date: Optional[str] = None,
    ) -> bool: ...
