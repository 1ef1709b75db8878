from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from cit.domain.errors import (
    AppError,
    InsufficientStockError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from cit.domain.models import (
    BATCH_NOTE_PREFIX,
    BUCKETS,
    MOVEMENT_KINDS,
    SIZES,
    BatchResult,
    OperationResult,
    User,
)
from cit.domain.validators import non_negative_price, positive_int
from cit.repositories.contracts import LedgerRepository
from cit.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork

log = logging.getLogger("cit.ledger")


def _iso_date(value: date | str | None, label: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value.isoformat()
    try:
        return date.fromisoformat(str(value).strip()).isoformat()
    except ValueError as e:
        raise ValidationError(f"{label} must be a YYYY-MM-DD date.") from e


class LedgerService:
    """Single authority for mutating inventory balances.

    Public operations never raise: every failure is returned as an
    OperationResult (or BatchResult) carrying the error message and type.
    """

    def __init__(
        self,
        repo: LedgerRepository,
        balances,
        movements,
        auth_service,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repo = repo
        self.balances = balances
        self.movements = movements
        self.auth = auth_service
        if uow_factory is None:
            uow_factory = (lambda: RepositoryUnitOfWork(repo, clock=clock)) if clock else (lambda: RepositoryUnitOfWork(repo))
        self.uow_factory = uow_factory

    # ---------- guarded entry points ----------
    def _run(self, op: str, fn: Callable[[], OperationResult], notify: bool = True) -> OperationResult:
        try:
            result = fn()
        except StorageError as e:
            log.exception("%s_storage_failed error=%s", op, e)
            return OperationResult.fail(e)
        except AppError as e:
            log.warning("%s_rejected error=%s", op, e)
            return OperationResult.fail(e)
        except Exception as e:
            log.exception("%s_failed error=%s", op, e)
            return OperationResult.fail(e)
        if notify and result.success:
            self._notify(op)
        return result

    def _notify(self, op: str) -> None:
        # the write is committed; a failed snapshot must not turn it into a failure
        try:
            self.balances.notify()
        except Exception:
            log.exception("%s_notify_failed", op)

    def record_movement(
        self,
        product_id: str,
        size: str,
        kind: str,
        quantity: int,
        actor: User | None,
        note: Optional[str] = None,
        sale_price: Optional[float] = None,
        return_date: date | str | None = None,
        movement_date: date | str | None = None,
        batch_id: Optional[str] = None,
    ) -> OperationResult:
        def op() -> OperationResult:
            self.auth.require_action(actor, "record_movement")
            movement_id = self._record(
                product_id, size, kind, quantity, actor,
                note=note, sale_price=sale_price, return_date=return_date,
                movement_date=movement_date, batch_id=batch_id,
            )
            return OperationResult.ok(movement_id=movement_id)

        return self._run("movement", op)

    def submit_batch(
        self,
        lines: Iterable[dict],
        actor: User | None,
        kind: Optional[str] = None,
        note: Optional[str] = None,
        movement_date: date | str | None = None,
        return_date: date | str | None = None,
    ) -> BatchResult:
        """
        lines: [{product_id, size, quantity, kind?, sale_price?}]

        Lines are applied one by one in the given order; a failed line does
        not undo the lines applied before it.
        """
        try:
            lines = list(lines or ())
        except TypeError:
            err = ValidationError("Batch lines must be a list of mappings.")
            log.warning("batch_rejected error=%s", err)
            return BatchResult(False, None, 0, 0, str(err), str(err), (OperationResult.fail(err),))
        if not lines:
            err = ValidationError("Batch is empty.")
            return BatchResult(False, None, 0, 0, str(err), str(err), (OperationResult.fail(err),))

        if not self.auth.can(actor, "record_movement"):
            role = actor.role if actor else "anonymous"
            msg = f"Role '{role}' is not allowed to perform 'record_movement'."
            log.warning("batch_rejected error=%s", msg)
            outcome = OperationResult(success=False, error=msg, error_type="AuthorizationError")
            return BatchResult(False, None, 0, len(lines), msg, msg, tuple(outcome for _ in lines))

        batch_id = uuid.uuid4().hex
        batch_note = note
        if len(lines) > 1:
            batch_note = f"{BATCH_NOTE_PREFIX} {note}" if note else BATCH_NOTE_PREFIX

        outcomes: list[OperationResult] = []
        for idx, line in enumerate(lines, start=1):

            def op(line=line) -> OperationResult:
                if not isinstance(line, dict):
                    raise ValidationError("Batch line must be a mapping.")
                movement_id = self._record(
                    line.get("product_id"),
                    line.get("size"),
                    line.get("kind") or kind,
                    line.get("quantity"),
                    actor,
                    note=batch_note,
                    sale_price=line.get("sale_price"),
                    return_date=line.get("return_date", return_date),
                    movement_date=movement_date,
                    batch_id=batch_id,
                )
                return OperationResult.ok(movement_id=movement_id)

            result = self._run(f"batch_line_{idx}", op, notify=False)
            outcomes.append(result)

        failures = [o for o in outcomes if not o.success]
        applied = len(outcomes) - len(failures)
        if applied:
            self._notify("batch")
        log.info(
            "batch_submitted batch=%s applied=%s failed=%s",
            batch_id, applied, len(failures),
            extra={"actor": actor.id if actor else None, "batch_id": batch_id},
        )
        return BatchResult(
            success=not failures,
            batch_id=batch_id,
            applied=applied,
            failed=len(failures),
            first_error=failures[0].error if failures else None,
            last_error=failures[-1].error if failures else None,
            outcomes=tuple(outcomes),
        )

    def transfer_bucket(self, entry_id: int, from_bucket: str, to_bucket: str, amount: int, actor: User | None) -> OperationResult:
        def op() -> OperationResult:
            self.auth.require_action(actor, "adjust_inventory")
            if from_bucket not in BUCKETS or to_bucket not in BUCKETS:
                raise ValidationError(f"Bucket must be one of {', '.join(BUCKETS)}.")
            if from_bucket == to_bucket:
                raise ValidationError("Source and target buckets must differ.")
            qty = positive_int(amount, "Amount")
            entry = self.balances.get_entry(entry_id)
            self.repo.transfer_bucket(entry.id, from_bucket, to_bucket, qty)
            log.info(
                "bucket_transferred entry=%s from=%s to=%s amount=%s actor=%s",
                entry.id, from_bucket, to_bucket, qty, actor.id,
            )
            return OperationResult.ok()

        return self._run("transfer", op)

    def adjust_direct(self, entry_id: int, bucket: str, delta: int, actor: User | None) -> OperationResult:
        def op() -> OperationResult:
            self.auth.require_action(actor, "adjust_inventory")
            if bucket not in BUCKETS:
                raise ValidationError(f"Bucket must be one of {', '.join(BUCKETS)}.")
            if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
                raise ValidationError("Delta must be a non-zero whole number.")
            entry = self.balances.get_entry(entry_id)
            if entry.bucket(bucket) + delta < 0:
                log.warning("adjust_clamped entry=%s bucket=%s current=%s delta=%s", entry.id, bucket, entry.bucket(bucket), delta)
            self.repo.adjust_bucket(entry.id, bucket, delta)
            log.info("bucket_adjusted entry=%s bucket=%s delta=%s actor=%s", entry.id, bucket, delta, actor.id)
            return OperationResult.ok()

        return self._run("adjust", op)

    def reset_all(self, actor: User | None) -> OperationResult:
        def op() -> OperationResult:
            self.auth.require_action(actor, "reset_inventory")
            balances, movements = self.repo.reset_all()
            log.warning("inventory_reset balances=%s movements=%s actor=%s", balances, movements, actor.id)
            return OperationResult.ok()

        return self._run("reset", op)

    def clear_log(self, actor: User | None) -> OperationResult:
        def op() -> OperationResult:
            self.movements.clear(actor)
            return OperationResult.ok()

        return self._run("clear_log", op, notify=False)

    # ---------- internals ----------
    def _record(
        self,
        product_id,
        size,
        kind,
        quantity,
        actor: User,
        *,
        note: Optional[str] = None,
        sale_price: Optional[float] = None,
        return_date: date | str | None = None,
        movement_date: date | str | None = None,
        batch_id: Optional[str] = None,
    ) -> int:
        if not product_id:
            raise ValidationError("Product is required.")
        if size not in SIZES:
            raise ValidationError(f"Size must be one of {', '.join(SIZES)}.")
        if kind not in MOVEMENT_KINDS:
            raise ValidationError(f"Movement kind must be one of {', '.join(MOVEMENT_KINDS)}.")
        qty = positive_int(quantity, "Quantity")

        price = non_negative_price(sale_price, "Sale price") if sale_price is not None else None

        variant = self.repo.get_variant(str(product_id))
        if not variant:
            raise NotFoundError(f"Product variant not found: {product_id}")

        current = self.repo.get_balance(variant.id, size)
        available = current.available if current else 0
        if kind in ("to_sample", "sale") and available < qty:
            raise InsufficientStockError(
                f"Insufficient stock for {variant.team} {variant.color} ({size}). Available: {available}"
            )
        if kind == "out" and available < qty:
            log.warning("movement_out_clamped product=%s size=%s available=%s qty=%s", variant.id, size, available, qty)

        with self.uow_factory() as uow:
            movement_id = uow.record_movement(
                variant.id,
                size,
                kind,
                qty,
                movement_date=_iso_date(movement_date, "Movement date"),
                note=(note or "").strip() or None,
                sale_price=price,
                return_date=_iso_date(return_date, "Return date") if kind == "to_sample" else None,
                actor_user_id=actor.id if actor else None,
                batch_id=batch_id,
            )
        log.info(
            "movement_recorded id=%s product=%s size=%s kind=%s qty=%s actor=%s batch=%s",
            movement_id, variant.id, size, kind, qty, actor.id if actor else None, batch_id,
        )
        return movement_id
