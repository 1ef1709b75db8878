from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from cit.domain.models import BATCH_NOTE_PREFIX, MovementGroup, MovementRecord, User

log = logging.getLogger("cit.ledger")

BATCH_WINDOW_SECONDS = 2.0
TICKER_LINES_PER_CATEGORY = 5


def _ts(record: MovementRecord) -> datetime:
    return datetime.fromisoformat(record.created_at)


def _same_legacy_batch(prev: MovementRecord, cur: MovementRecord) -> bool:
    return (
        prev.batch_id is None
        and prev.note == cur.note
        and prev.kind == cur.kind
        and prev.movement_date == cur.movement_date
        and abs((_ts(prev) - _ts(cur)).total_seconds()) < BATCH_WINDOW_SECONDS
    )


def group_batches(records: Iterable[MovementRecord]) -> list[MovementGroup]:
    """Fold consecutive records of one batch submission into display groups.

    Records written with a batch_id group by that id. Older records without
    one group when their note carries the batch prefix and they match the
    previous record's note, kind and date within a two second window.
    """
    groups: list[MovementGroup] = []
    current: list[MovementRecord] = []

    def flush() -> None:
        if current:
            groups.append(MovementGroup(records=tuple(current)))
            current.clear()

    for rec in records:
        prev = current[-1] if current else None
        if rec.batch_id:
            if prev is None or prev.batch_id != rec.batch_id:
                flush()
            current.append(rec)
        elif rec.note and rec.note.startswith(BATCH_NOTE_PREFIX):
            if prev is None or not _same_legacy_batch(prev, rec):
                flush()
            current.append(rec)
        else:
            flush()
            groups.append(MovementGroup(records=(rec,)))
    flush()
    return groups


class MovementLogService:
    def __init__(self, repo, auth_service, clock: Callable[[], datetime] | None = None):
        self.repo = repo
        self.auth = auth_service
        self.clock = clock or datetime.now

    def get_recent_movements(self, limit: int = 100) -> list[MovementRecord]:
        return self.repo.recent_movements(max(0, int(limit)))

    def get_recent_groups(self, limit: int = 100) -> list[MovementGroup]:
        return group_batches(self.get_recent_movements(limit))

    def clear(self, actor: User | None) -> int:
        self.auth.require_action(actor, "clear_log")
        deleted = self.repo.clear_movements()
        log.warning("movement_log_cleared deleted=%s actor=%s", deleted, actor.id)
        return deleted

    def category_counts(self, limit: int = 100) -> dict[str, int]:
        counts = {"sale": 0, "to_sample": 0, "in": 0, "out": 0}
        for rec in self.get_recent_movements(limit):
            counts[rec.kind] = counts.get(rec.kind, 0) + 1
        return counts

    def ticker_segments(self, limit: int = 100, user_name: Optional[str] = None) -> list[str]:
        recent = self.get_recent_movements(limit)
        sales = [m for m in recent if m.kind == "sale"]
        samples = [m for m in recent if m.kind == "to_sample"]
        entries = [m for m in recent if m.kind == "in"]

        now = self.clock().strftime("%H:%M")
        segments = [f"[{now}] INVENTORY ::: STATUS: OK ::: USER: {(user_name or 'admin').upper()}"]

        if sales:
            for m in sales[:TICKER_LINES_PER_CATEGORY]:
                segments.append(f"SALE [{_ts(m).strftime('%H:%M')}]: {m.team} ({m.size}) x{m.quantity}")
        else:
            segments.append("SALES: waiting for the first sale of the day")

        if samples:
            for m in samples[:TICKER_LINES_PER_CATEGORY]:
                segments.append(f"ON DISPLAY: {m.team} {m.color} ({m.size})")
        else:
            segments.append("SAMPLES: all stock is in the warehouse")

        if entries:
            for m in entries[:TICKER_LINES_PER_CATEGORY]:
                segments.append(f"NEW STOCK: {m.team} {m.color} ({m.size}) x{m.quantity}")
        else:
            balances = self.repo.list_balances()
            total_units = sum(b.available for b in balances)
            best = max(balances, key=lambda b: b.sold, default=None)
            best_team = best.team if best and best.sold > 0 else "-"
            segments.append(f"DATA: {total_units} units in stock ::: TOP SELLER: {best_team}")

        return segments
