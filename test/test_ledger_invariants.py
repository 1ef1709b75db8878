import sqlite3
from pathlib import Path

import pytest

from conftest import add_staff, admin_of, make_container, seed_variant, stock_in

from cit.domain.errors import InsufficientStockError, StorageError
from cit.repositories.sqlite_repo import SqliteRepository
from cit.services.auth_service import AuthService
from cit.services.balance_service import BalanceService
from cit.services.ledger_service import LedgerService
from cit.services.movement_log_service import MovementLogService


def test_first_movement_creates_entry_lazily(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)

    assert c.balances.get_balances() == []
    assert c.balances.get_balance(pid, "M").available == 0

    stock_in(c, pid, "M", 12)

    entry = c.balances.get_balance(pid, "M")
    assert (entry.available, entry.sample, entry.sold) == (12, 0, 0)
    assert entry.team == "Barcelona"
    assert len(c.balances.get_balances()) == 1


def test_sale_rejected_when_stock_is_short_and_nothing_is_written(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "M", 3)
    before = c.movements.get_recent_movements(100)

    res = c.ledger.record_movement(pid, "M", "sale", 5, admin_of(c))

    assert res.success is False
    assert res.error_type == "InsufficientStockError"
    assert "insufficient stock" in res.error.lower()
    assert "Available: 3" in res.error
    assert c.balances.get_balance(pid, "M").available == 3
    assert c.movements.get_recent_movements(100) == before


def test_to_sample_conserves_available_plus_sample(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "L", 10)
    before = c.balances.get_balance(pid, "L")

    res = c.ledger.record_movement(pid, "L", "to_sample", 4, admin_of(c), return_date="2024-03-10")

    after = c.balances.get_balance(pid, "L")
    assert res.success
    assert after.available + after.sample == before.available + before.sample
    assert (after.available, after.sample) == (6, 4)
    assert c.movements.get_recent_movements(1)[0].return_date == "2024-03-10"


def test_sale_conserves_available_plus_sold_and_keeps_price(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "S", 7)
    before = c.balances.get_balance(pid, "S")

    res = c.ledger.record_movement(pid, "S", "sale", 7, admin_of(c), sale_price=250.0, return_date="2024-03-10")

    after = c.balances.get_balance(pid, "S")
    assert res.success
    assert after.available + after.sold == before.available + before.sold
    assert (after.available, after.sold) == (0, 7)
    last = c.movements.get_recent_movements(1)[0]
    assert last.kind == "sale"
    assert last.sale_price == 250.0
    assert last.return_date is None


def test_out_clamps_available_at_zero(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "XL", 2)

    res = c.ledger.record_movement(pid, "XL", "out", 5, admin_of(c), note="damaged")

    assert res.success
    entry = c.balances.get_balance(pid, "XL")
    assert entry.available == 0
    assert c.movements.get_recent_movements(1)[0].quantity == 5


@pytest.mark.parametrize(
    "size, kind, qty, error_type",
    [
        ("XXL", "in", 1, "ValidationError"),
        ("M", "gift", 1, "ValidationError"),
        ("M", "in", 0, "ValidationError"),
        ("M", "in", -3, "ValidationError"),
        ("M", "in", 1.5, "ValidationError"),
    ],
)
def test_invalid_movements_are_rejected_before_writing(tmp_path: Path, size, kind, qty, error_type):
    c = make_container(tmp_path)
    pid = seed_variant(c)

    res = c.ledger.record_movement(pid, size, kind, qty, admin_of(c))

    assert res.success is False
    assert res.error_type == error_type
    assert c.repo.count_movements() == 0


def test_unknown_product_is_not_found(tmp_path: Path):
    c = make_container(tmp_path)

    res = c.ledger.record_movement("missing", "M", "in", 1, admin_of(c))

    assert res.success is False
    assert res.error_type == "NotFoundError"


def test_viewer_can_not_record_movements(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    viewer = add_staff(c, "viewer1", "viewer")

    res = c.ledger.record_movement(pid, "M", "in", 5, viewer)

    assert res.success is False
    assert res.error_type == "AuthorizationError"
    assert c.balances.get_balances() == []


def test_staff_movement_records_actor(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    staff = add_staff(c)

    res = c.ledger.record_movement(pid, "M", "in", 5, staff)

    assert res.success
    assert c.movements.get_recent_movements(1)[0].actor_user_id == staff.id


def test_get_balances_is_idempotent(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    other = seed_variant(c, "Real Madrid", "White")
    stock_in(c, pid, "XL", 1)
    stock_in(c, pid, "S", 2)
    stock_in(c, other, "M", 3)

    first = c.balances.get_balances()
    second = c.balances.get_balances()

    assert first == second
    assert [(b.team, b.size) for b in first] == [("Barcelona", "S"), ("Barcelona", "XL"), ("Real Madrid", "M")]


class FailingRepo(SqliteRepository):
    def apply_movement(self, product_id, size, kind, quantity, created_at, movement_date, **kwargs):
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO movements (product_id, size, kind, quantity, created_at, movement_date)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (product_id, size, kind, int(quantity), created_at, movement_date),
            )
            raise sqlite3.OperationalError("disk I/O error")


def test_storage_failure_rolls_back_log_and_balance(tmp_path: Path):
    repo = FailingRepo(tmp_path / "failing.db")
    repo.init_db()
    auth = AuthService(repo)
    balances = BalanceService(repo)
    ledger = LedgerService(repo, balances, MovementLogService(repo, auth), auth)
    admin = auth.get_actor("admin")
    pid = repo.upsert_variant("Barcelona", "Blaugrana")

    res = ledger.record_movement(pid, "M", "in", 5, admin)

    assert res.success is False
    assert res.error_type == "StorageError"
    assert "disk I/O error" in res.error
    assert repo.count_movements() == 0
    assert repo.get_balance(pid, "M") is None


def test_transaction_helper_wraps_sqlite_errors(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "wrap.db")
    repo.init_db()

    with pytest.raises(StorageError):
        with repo._transaction() as cur:
            cur.execute("INSERT INTO balances (product_id, size) VALUES ('nope', 'M')")


def test_balances_for_product_in_size_order(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    other = seed_variant(c, "Real Madrid", "White")
    stock_in(c, pid, "XL", 1)
    stock_in(c, pid, "S", 2)
    stock_in(c, pid, "L", 3)
    stock_in(c, other, "M", 4)

    entries = c.balances.get_balances_for_product(pid)

    assert [(b.size, b.available) for b in entries] == [("S", 2), ("L", 3), ("XL", 1)]
    assert {b.team for b in entries} == {"Barcelona"}
    assert c.balances.get_balances_for_product("missing") == []


@pytest.mark.parametrize("kind", ["sale", "to_sample"])
def test_repository_guard_rejects_short_decrement_atomically(tmp_path: Path, kind):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "M", 3)
    logged = c.repo.count_movements()

    with pytest.raises(InsufficientStockError, match="Available: 3"):
        c.repo.apply_movement(
            product_id=pid,
            size="M",
            kind=kind,
            quantity=5,
            created_at="2024-03-01 10:00:00",
            movement_date="2024-03-01",
        )

    entry = c.repo.get_balance(pid, "M")
    assert (entry.available, entry.sample, entry.sold) == (3, 0, 0)
    assert c.repo.count_movements() == logged


def test_repository_guard_on_unseen_pair_leaves_no_row(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)

    with pytest.raises(InsufficientStockError, match="Available: 0"):
        c.repo.apply_movement(
            product_id=pid,
            size="S",
            kind="sale",
            quantity=1,
            created_at="2024-03-01 10:00:00",
            movement_date="2024-03-01",
        )

    assert c.repo.get_balance(pid, "S") is None
    assert c.repo.count_movements() == 0
