import sys
from datetime import datetime, timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


class StepClock:
    """Deterministic clock advancing by ``step_seconds`` on every call."""

    def __init__(self, start: datetime | None = None, step_seconds: float = 0.0):
        self.now = start or datetime(2024, 3, 1, 10, 0, 0)
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


def make_container(tmp_path: Path, name: str = "inventory.db", clock=None):
    from cit.application.container import build_container

    return build_container(tmp_path / name, clock=clock)


def admin_of(container):
    return container.auth.get_actor("admin")


def add_staff(container, username: str = "staff1", role: str = "staff"):
    admin = admin_of(container)
    container.auth.create_user(admin, username, role)
    return container.auth.get_actor(username)


def seed_variant(container, team: str = "Barcelona", color: str = "Blaugrana") -> str:
    return container.catalog.add_variant(admin_of(container), team, color)


def stock_in(container, product_id: str, size: str, qty: int) -> None:
    res = container.ledger.record_movement(product_id, size, "in", qty, admin_of(container), note="initial stock")
    assert res.success, res.error
