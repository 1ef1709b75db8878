from __future__ import annotations

import logging
from typing import Callable

from cit.domain.errors import NotFoundError, ValidationError
from cit.domain.models import SIZES, BalanceEntry

log = logging.getLogger(__name__)

BalanceObserver = Callable[[list[BalanceEntry]], None]


class BalanceService:
    """Read side of the balance store plus change notifications.

    Observers receive a full snapshot after every successful mutation and
    must treat it as "re-fetch", never as a delta.
    """

    def __init__(self, repo):
        self.repo = repo
        self._observers: list[BalanceObserver] = []

    def get_balances(self) -> list[BalanceEntry]:
        return self.repo.list_balances()

    def get_balances_for_product(self, product_id: str) -> list[BalanceEntry]:
        """Persisted entries of one variant, sizes in S, M, L, XL order."""
        return self.repo.list_balances_for_product(product_id)

    def get_balance(self, product_id: str, size: str) -> BalanceEntry:
        if size not in SIZES:
            raise ValidationError(f"Size must be one of {', '.join(SIZES)}.")
        entry = self.repo.get_balance(product_id, size)
        if entry:
            return entry
        # not persisted until the first movement targets the pair
        return BalanceEntry(id=0, product_id=product_id, size=size, available=0, sample=0, sold=0)

    def get_entry(self, entry_id: int) -> BalanceEntry:
        entry = self.repo.get_balance_by_id(int(entry_id))
        if not entry:
            raise NotFoundError("Inventory entry not found.")
        return entry

    def subscribe(self, observer: BalanceObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: BalanceObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self) -> None:
        if not self._observers:
            return
        snapshot = self.get_balances()
        for observer in list(self._observers):
            try:
                observer(list(snapshot))
            except Exception:
                log.exception("balance_observer_failed observer=%r", observer)
