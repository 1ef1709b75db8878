from __future__ import annotations

import logging
from datetime import date
from typing import Callable, Iterable, Optional

from cit.domain.errors import (
    AppError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from cit.domain.models import (
    LINE_TYPES,
    ORDER_FLOW,
    PENDING_STATUSES,
    SIZES,
    OperationResult,
    Order,
    OrderLine,
    User,
)
from cit.domain.validators import non_negative_price, positive_int
from cit.repositories.contracts import OrderRepository
from cit.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("cit.orders")


class OrderService:
    def __init__(
        self,
        repo: OrderRepository,
        ledger,
        auth_service,
        uow_factory: Callable[[], UnitOfWork] | None = None,
    ):
        self.repo = repo
        self.ledger = ledger
        self.auth = auth_service
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))

    def list_orders(self) -> list[Order]:
        return self.repo.list_orders()

    def get_order(self, order_id: int) -> Order:
        order = self.repo.get_order(int(order_id))
        if not order:
            raise NotFoundError(f"Order #{order_id} not found.")
        return order

    def pending_orders(self) -> list[Order]:
        return [o for o in self.repo.list_orders() if o.status in PENDING_STATUSES]

    def _run(self, op: str, fn: Callable[[], OperationResult]) -> OperationResult:
        try:
            return fn()
        except StorageError as e:
            log.exception("%s_storage_failed error=%s", op, e)
            return OperationResult.fail(e)
        except AppError as e:
            log.warning("%s_rejected error=%s", op, e)
            return OperationResult.fail(e)
        except Exception as e:
            log.exception("%s_failed error=%s", op, e)
            return OperationResult.fail(e)

    def _build_line(self, raw: dict) -> OrderLine:
        if not isinstance(raw, dict) or "quantity" not in raw:
            raise ValidationError("Each line needs a quantity.")
        qty = positive_int(raw["quantity"], "Line quantity")
        unit_price = non_negative_price(raw.get("unit_price", 0), "Unit price")

        product_id = raw.get("product_id")
        line_type = raw.get("line_type") or ("catalog" if product_id else "freeform")
        if line_type not in LINE_TYPES:
            raise ValidationError(f"Line type must be one of {', '.join(LINE_TYPES)}.")
        description = (raw.get("description") or "").strip()

        if line_type == "freeform":
            if not description:
                raise ValidationError("Freeform lines need a description.")
            return OrderLine(line_type="freeform", description=description, quantity=qty, unit_price=unit_price)

        size = raw.get("size")
        if not product_id or size not in SIZES:
            raise ValidationError("Catalog lines need a product and a size (S, M, L, XL).")
        variant = self.repo.get_variant(str(product_id))
        if not variant:
            raise NotFoundError(f"Product variant not found: {product_id}")
        return OrderLine(
            line_type="catalog",
            product_id=variant.id,
            size=size,
            description=description or f"{variant.team} {variant.color} ({size})",
            quantity=qty,
            unit_price=unit_price,
        )

    def create_order(
        self,
        counterparty: str,
        kind: str,
        lines: Iterable[dict],
        actor: User | None,
        contact: Optional[str] = None,
        delivery_date: date | str | None = None,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        lines: [{line_type?, product_id?, size?, description?, quantity, unit_price}]
        """

        def op() -> OperationResult:
            self.auth.require_action(actor, "manage_orders")
            name = (counterparty or "").strip()
            if not name:
                raise ValidationError("Counterparty name is required.")
            if kind not in ORDER_FLOW:
                raise ValidationError(f"Order kind must be one of {', '.join(ORDER_FLOW)}.")
            built = [self._build_line(raw) for raw in lines]
            if not built:
                raise ValidationError("Add at least one line item.")

            delivery = None
            if delivery_date:
                try:
                    delivery = date.fromisoformat(str(delivery_date)).isoformat()
                except ValueError as e:
                    raise ValidationError("Delivery date must be a YYYY-MM-DD date.") from e

            initial_status = ORDER_FLOW[kind][0]
            with self.uow_factory() as uow:
                order_id = uow.create_order(
                    counterparty=name,
                    contact=(contact or "").strip() or None,
                    kind=kind,
                    status=initial_status,
                    delivery_date=delivery,
                    notes=(notes or "").strip() or None,
                    lines=built,
                    actor_user_id=actor.id,
                )
            log.info("order_created order_id=%s kind=%s lines=%s actor=%s", order_id, kind, len(built), actor.id)
            return OperationResult.ok(order_id=order_id)

        return self._run("order_create", op)

    def update_order_status(self, order_id: int, status: str, actor: User | None) -> OperationResult:
        """Direct status changes are limited to cancelling a pending order.

        Terminal delivery states are reached only through confirm_order.
        """

        def op() -> OperationResult:
            self.auth.require_action(actor, "manage_orders")
            order = self.get_order(order_id)
            if status != "cancelled":
                raise ValidationError("Only cancellation can be set directly; use confirm_order to complete an order.")
            if order.status not in PENDING_STATUSES:
                raise InvalidTransitionError(f"Order #{order.id} is already '{order.status}'.")
            if not self.repo.update_order_status(order.id, "cancelled", expected_statuses=[order.status]):
                raise InvalidTransitionError(f"Order #{order.id} changed state concurrently.")
            log.info("order_cancelled order_id=%s actor=%s", order.id, actor.id)
            return OperationResult.ok(order_id=order.id)

        return self._run("order_status", op)

    def cancel_order(self, order_id: int, actor: User | None) -> OperationResult:
        return self.update_order_status(order_id, "cancelled", actor)

    def confirm_order(self, order_id: int, confirmation_date: date | str, actor: User | None) -> OperationResult:
        """Replay catalog lines through the ledger and close the order.

        Stops at the first failing line. Movements applied for earlier lines
        stay applied and the order keeps its pending status.
        """

        def op() -> OperationResult:
            self.auth.require_action(actor, "manage_orders")
            order = self.get_order(order_id)
            if order.status not in PENDING_STATUSES:
                raise InvalidTransitionError(f"Order #{order.id} is already '{order.status}'.")
            try:
                confirmed_on = date.fromisoformat(str(confirmation_date)).isoformat()
            except ValueError as e:
                raise ValidationError("Confirmation date must be a YYYY-MM-DD date.") from e

            _initial, final_status, movement_kind = ORDER_FLOW[order.kind]
            note = f"Order #{order.id} confirmation ({order.kind})"

            applied = 0
            for line in order.lines:
                if line.line_type != "catalog" or not line.product_id or not line.size:
                    continue
                res = self.ledger.record_movement(
                    line.product_id,
                    line.size,
                    movement_kind,
                    line.quantity,
                    actor,
                    note=note,
                    sale_price=line.unit_price if movement_kind == "sale" else None,
                    movement_date=confirmed_on,
                )
                if not res.success:
                    log.warning(
                        "order_confirm_aborted order_id=%s line=%s applied=%s error=%s",
                        order.id, line.id, applied, res.error,
                    )
                    return OperationResult(
                        success=False,
                        error=f"Could not update stock for {line.description}: {res.error}",
                        error_type=res.error_type,
                        order_id=order.id,
                    )
                applied += 1

            if not self.repo.update_order_status(
                order.id, final_status, expected_statuses=[order.status], confirmation_date=confirmed_on
            ):
                raise InvalidTransitionError(f"Order #{order.id} changed state concurrently.")
            log.info(
                "order_confirmed order_id=%s status=%s movements=%s",
                order.id, final_status, applied,
                extra={"actor": actor.id, "order_id": order.id},
            )
            return OperationResult.ok(order_id=order.id)

        return self._run("order_confirm", op)
