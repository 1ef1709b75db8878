from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from cit.domain.models import OrderLine


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def record_movement(
        self,
        product_id: str,
        size: str,
        kind: str,
        quantity: int,
        *,
        movement_date: Optional[str] = None,
        note: Optional[str] = None,
        sale_price: Optional[float] = None,
        return_date: Optional[str] = None,
        actor_user_id: int | None = None,
        batch_id: Optional[str] = None,
    ) -> int: ...
    def create_order(
        self,
        counterparty: str,
        contact: Optional[str],
        kind: str,
        status: str,
        delivery_date: Optional[str],
        notes: Optional[str],
        lines: Iterable[OrderLine],
        actor_user_id: int | None = None,
    ) -> int: ...


def _system_clock() -> datetime:
    return datetime.now()


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for transactional write use-cases.

    Each repository write method runs its own SQL transaction (balance upsert
    plus movement append, order header plus lines). This class stamps
    timestamps and keeps services persistence-agnostic.
    """

    repo: object
    clock: Callable[[], datetime] = field(default=_system_clock)

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def _now(self) -> datetime:
        return self.clock().replace(microsecond=0)

    def record_movement(
        self,
        product_id: str,
        size: str,
        kind: str,
        quantity: int,
        *,
        movement_date: Optional[str] = None,
        note: Optional[str] = None,
        sale_price: Optional[float] = None,
        return_date: Optional[str] = None,
        actor_user_id: int | None = None,
        batch_id: Optional[str] = None,
    ) -> int:
        now = self._now()
        return int(
            self.repo.apply_movement(
                product_id=product_id,
                size=size,
                kind=kind,
                quantity=int(quantity),
                created_at=now.isoformat(sep=" "),
                movement_date=movement_date or now.date().isoformat(),
                note=note,
                sale_price=sale_price,
                return_date=return_date,
                actor_user_id=actor_user_id,
                batch_id=batch_id,
            )
        )

    def create_order(
        self,
        counterparty: str,
        contact: Optional[str],
        kind: str,
        status: str,
        delivery_date: Optional[str],
        notes: Optional[str],
        lines: Iterable[OrderLine],
        actor_user_id: int | None = None,
    ) -> int:
        lines = list(lines)
        total = sum(line.quantity * line.unit_price for line in lines)
        return int(
            self.repo.create_order_with_lines(
                counterparty=counterparty,
                contact=contact,
                kind=kind,
                status=status,
                order_date=self._now().isoformat(sep=" "),
                delivery_date=delivery_date,
                total=total,
                notes=notes,
                lines=lines,
                actor_user_id=actor_user_id,
            )
        )
