from pathlib import Path

import pytest

from conftest import add_staff, admin_of, make_container, seed_variant, stock_in

from cit.domain.errors import NotFoundError


def _create(c, kind, lines, counterparty="Club Atlético", **kwargs):
    res = c.orders.create_order(counterparty, kind, lines, admin_of(c), **kwargs)
    assert res.success, res.error
    return res.order_id


def test_create_order_computes_total_and_initial_status(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)

    order_id = _create(
        c,
        "sale",
        [
            {"product_id": pid, "size": "M", "quantity": 2, "unit_price": 150.0},
            {"description": "Custom printing", "quantity": 2, "unit_price": 20.0},
        ],
        contact="+54 11 5555",
        delivery_date="2024-03-05",
    )

    order = c.orders.get_order(order_id)
    assert order.status == "pending"
    assert order.total == 340.0
    assert order.delivery_date == "2024-03-05"
    assert [line.line_type for line in order.lines] == ["catalog", "freeform"]
    assert order.lines[0].description == "Barcelona Blaugrana (M)"
    assert [o.id for o in c.orders.pending_orders()] == [order_id]


@pytest.mark.parametrize(
    "counterparty, kind, lines",
    [
        ("", "sale", [{"description": "x", "quantity": 1, "unit_price": 1}]),
        ("Shop", "barter", [{"description": "x", "quantity": 1, "unit_price": 1}]),
        ("Shop", "sale", []),
        ("Shop", "sale", [{"description": "x", "quantity": 0, "unit_price": 1}]),
        ("Shop", "sale", [{"description": "x", "quantity": 1, "unit_price": -1}]),
        ("Shop", "sale", [{"product_id": "p", "size": "XXL", "quantity": 1, "unit_price": 1}]),
        ("Shop", "sale", [{"quantity": 1, "unit_price": 1}]),
        ("Shop", "supply", [{"description": "x", "quantity": 2.5, "unit_price": 10}]),
        ("Shop", "supply", [{"description": "x", "quantity": True, "unit_price": 10}]),
        ("Shop", "supply", [{"description": "x", "quantity": "two", "unit_price": 10}]),
        ("Shop", "supply", [{"description": "x", "quantity": 1, "unit_price": float("nan")}]),
        ("Shop", "supply", [{"description": "x", "quantity": 1, "unit_price": float("inf")}]),
        ("Shop", "supply", [{"description": "x", "quantity": 1, "unit_price": "cheap"}]),
        ("Shop", "supply", ["not a mapping"]),
    ],
)
def test_create_order_validation(tmp_path: Path, counterparty, kind, lines):
    c = make_container(tmp_path)

    res = c.orders.create_order(counterparty, kind, lines, admin_of(c))

    assert res.success is False
    assert res.error_type == "ValidationError"
    assert c.orders.list_orders() == []


def test_viewer_can_not_create_orders(tmp_path: Path):
    c = make_container(tmp_path)
    viewer = add_staff(c, "viewer1", "viewer")

    res = c.orders.create_order("Shop", "sale", [{"description": "x", "quantity": 1, "unit_price": 1}], viewer)

    assert res.error_type == "AuthorizationError"


def test_confirm_supply_order_adds_stock(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    order_id = _create(c, "supply", [{"product_id": pid, "size": "L", "quantity": 20, "unit_price": 80.0}])
    assert c.orders.get_order(order_id).status == "pending_receive"

    res = c.orders.confirm_order(order_id, "2024-03-01", admin_of(c))

    assert res.success, res.error
    assert c.balances.get_balance(pid, "L").available == 20
    latest = c.movements.get_recent_movements(1)[0]
    assert (latest.kind, latest.quantity) == ("in", 20)
    assert latest.note == f"Order #{order_id} confirmation (supply)"
    assert latest.movement_date == "2024-03-01"
    order = c.orders.get_order(order_id)
    assert order.status == "received"
    assert order.confirmation_date == "2024-03-01"
    assert c.orders.pending_orders() == []


def test_confirm_dispatch_order_records_sale_with_price(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "S", 5)
    order_id = _create(
        c,
        "dispatch",
        [
            {"product_id": pid, "size": "S", "quantity": 3, "unit_price": 199.9},
            {"description": "Shipping", "quantity": 1, "unit_price": 15.0},
        ],
    )

    res = c.orders.confirm_order(order_id, "2024-03-02", admin_of(c))

    assert res.success, res.error
    entry = c.balances.get_balance(pid, "S")
    assert (entry.available, entry.sold) == (2, 3)
    sales = [m for m in c.movements.get_recent_movements(10) if m.kind == "sale"]
    assert len(sales) == 1
    assert sales[0].sale_price == 199.9
    assert c.orders.get_order(order_id).status == "dispatched"


def test_partial_confirmation_keeps_earlier_lines_and_status(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    stock_in(c, pid, "M", 5)
    stock_in(c, pid, "L", 1)
    order_id = _create(
        c,
        "sale",
        [
            {"product_id": pid, "size": "M", "quantity": 4, "unit_price": 100.0},
            {"product_id": pid, "size": "L", "quantity": 3, "unit_price": 100.0},
        ],
    )

    res = c.orders.confirm_order(order_id, "2024-03-01", admin_of(c))

    assert res.success is False
    assert res.error_type == "InsufficientStockError"
    assert res.error.startswith("Could not update stock for Barcelona Blaugrana (L)")
    assert c.balances.get_balance(pid, "M").available == 1
    assert c.balances.get_balance(pid, "L").available == 1
    order = c.orders.get_order(order_id)
    assert order.status == "pending"
    assert order.confirmation_date is None


def test_cancel_then_confirm_is_an_invalid_transition(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    order_id = _create(c, "supply", [{"product_id": pid, "size": "M", "quantity": 2, "unit_price": 10}])

    cancelled = c.orders.cancel_order(order_id, admin_of(c))
    confirm = c.orders.confirm_order(order_id, "2024-03-01", admin_of(c))
    again = c.orders.cancel_order(order_id, admin_of(c))

    assert cancelled.success
    assert c.orders.get_order(order_id).status == "cancelled"
    assert confirm.error_type == "InvalidTransitionError"
    assert again.error_type == "InvalidTransitionError"
    assert c.balances.get_balances() == []


def test_confirmed_order_can_not_be_confirmed_twice(tmp_path: Path):
    c = make_container(tmp_path)
    pid = seed_variant(c)
    order_id = _create(c, "supply", [{"product_id": pid, "size": "M", "quantity": 2, "unit_price": 10}])

    assert c.orders.confirm_order(order_id, "2024-03-01", admin_of(c)).success
    second = c.orders.confirm_order(order_id, "2024-03-02", admin_of(c))

    assert second.error_type == "InvalidTransitionError"
    assert c.balances.get_balance(pid, "M").available == 2


def test_status_can_only_be_set_to_cancelled(tmp_path: Path):
    c = make_container(tmp_path)
    order_id = _create(c, "sale", [{"description": "Scarf", "quantity": 1, "unit_price": 10}])

    res = c.orders.update_order_status(order_id, "delivered", admin_of(c))

    assert res.error_type == "ValidationError"
    assert c.orders.get_order(order_id).status == "pending"


def test_confirm_rejects_bad_date_and_unknown_order(tmp_path: Path):
    c = make_container(tmp_path)
    order_id = _create(c, "sale", [{"description": "Scarf", "quantity": 1, "unit_price": 10}])

    bad_date = c.orders.confirm_order(order_id, "01/03/2024", admin_of(c))
    missing = c.orders.confirm_order(999, "2024-03-01", admin_of(c))

    assert bad_date.error_type == "ValidationError"
    assert missing.error_type == "NotFoundError"
    with pytest.raises(NotFoundError):
        c.orders.get_order(999)


def test_whole_float_quantity_is_accepted(tmp_path: Path):
    c = make_container(tmp_path)

    order_id = _create(c, "supply", [{"description": "Socks", "quantity": 3.0, "unit_price": 10}])

    order = c.orders.get_order(order_id)
    assert order.lines[0].quantity == 3
    assert order.total == 30.0
