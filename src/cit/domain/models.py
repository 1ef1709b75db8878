from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional


SIZES: tuple[str, ...] = ("S", "M", "L", "XL")
MOVEMENT_KINDS: tuple[str, ...] = ("in", "out", "to_sample", "sale")
BUCKETS: tuple[str, ...] = ("available", "sample", "sold")

ORDER_KINDS: tuple[str, ...] = ("sale", "supply", "dispatch")
LINE_TYPES: tuple[str, ...] = ("catalog", "freeform")

# order kind -> (initial status, confirmed status, movement kind on confirmation)
ORDER_FLOW: dict[str, tuple[str, str, str]] = {
    "sale": ("pending", "delivered", "sale"),
    "supply": ("pending_receive", "received", "in"),
    "dispatch": ("pending_dispatch", "dispatched", "sale"),
}
PENDING_STATUSES: frozenset[str] = frozenset(flow[0] for flow in ORDER_FLOW.values())
TERMINAL_STATUSES: frozenset[str] = frozenset({"delivered", "received", "dispatched", "cancelled"})

BATCH_NOTE_PREFIX = "Mov. Lote:"


@dataclass(frozen=True)
class ProductVariant:
    id: str
    team: str
    color: str
    image_url: Optional[str] = None
    gallery_urls: tuple[str, ...] = ()
    video_url: Optional[str] = None
    created_at: Optional[str] = None


@dataclass(frozen=True)
class BalanceEntry:
    id: int
    product_id: str
    size: str
    available: int
    sample: int
    sold: int
    updated_at: Optional[str] = None
    team: str = ""
    color: str = ""

    def bucket(self, name: str) -> int:
        return int(getattr(self, name))


@dataclass(frozen=True)
class MovementRecord:
    id: int
    product_id: str
    size: str
    kind: str
    quantity: int
    created_at: str
    movement_date: str
    note: Optional[str]
    sale_price: Optional[float]
    return_date: Optional[str]
    actor_user_id: Optional[int]
    batch_id: Optional[str] = None
    team: str = ""
    color: str = ""


@dataclass(frozen=True)
class MovementGroup:
    """Display group for records submitted together."""

    records: tuple[MovementRecord, ...]

    @property
    def is_batch(self) -> bool:
        return len(self.records) > 1

    @property
    def total_quantity(self) -> int:
        return sum(r.quantity for r in self.records)


@dataclass(frozen=True)
class OrderLine:
    line_type: str
    description: str
    quantity: int
    unit_price: float
    product_id: Optional[str] = None
    size: Optional[str] = None
    id: Optional[int] = None
    order_id: Optional[int] = None

    @property
    def line_total(self) -> float:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class Order:
    id: int
    counterparty: str
    contact: Optional[str]
    kind: str
    status: str
    order_date: str
    delivery_date: Optional[str]
    confirmation_date: Optional[str]
    total: float
    notes: Optional[str]
    lines: tuple[OrderLine, ...] = ()


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str
    active: int = 1


@dataclass(frozen=True)
class OperationResult:
    success: bool
    error: Optional[str] = None
    error_type: Optional[str] = None
    movement_id: Optional[int] = None
    order_id: Optional[int] = None

    @classmethod
    def ok(cls, **kwargs) -> "OperationResult":
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, exc: Exception) -> "OperationResult":
        return cls(success=False, error=str(exc), error_type=type(exc).__name__)


@dataclass(frozen=True)
class BatchResult:
    success: bool
    batch_id: Optional[str]
    applied: int
    failed: int
    first_error: Optional[str] = None
    last_error: Optional[str] = None
    outcomes: tuple[OperationResult, ...] = field(default_factory=tuple)

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None
        if not self.failed:
            return self.last_error
        return f"{self.failed} line(s) failed. Last error: {self.last_error}"
