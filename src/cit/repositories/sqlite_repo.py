from __future__ import annotations

import json
import sqlite3
import shutil
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional

from cit.domain.errors import (
    InsufficientQuantityError,
    InsufficientStockError,
    NotFoundError,
    StorageError,
)
from cit.domain.models import (
    BUCKETS,
    BalanceEntry,
    MovementRecord,
    Order,
    OrderLine,
    ProductVariant,
    User,
)

_SIZE_ORDER_SQL = "CASE b.size WHEN 'S' THEN 1 WHEN 'M' THEN 2 WHEN 'L' THEN 3 WHEN 'XL' THEN 4 ELSE 5 END"

# kind -> (SET clause, guarded bucket or None)
_MOVEMENT_UPDATES: dict[str, tuple[str, Optional[str]]] = {
    "in": ("available = available + :q", None),
    "out": ("available = MAX(0, available - :q)", None),
    "to_sample": ("available = available - :q, sample = sample + :q", "available"),
    "sale": ("available = available - :q, sold = sold + :q", "available"),
}


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


def _check_bucket(name: str) -> str:
    # bucket names are interpolated into SQL, only the known columns pass
    if name not in BUCKETS:
        raise ValueError(f"Unknown bucket: {name}")
    return name


class SqliteRepository:
    def __init__(self, db_path: Path | str):
        self.db_path = str(db_path)

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        conn = self._conn()
        cur = conn.cursor()
        try:
            cur.execute("BEGIN IMMEDIATE")
            yield cur
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self, bootstrap_admin: str = "admin") -> None:
        self.run_migrations()
        self._ensure_bootstrap_admin(bootstrap_admin)

    def run_migrations(self) -> None:
        conn = self._conn()
        backup_path = self._create_pre_migration_backup()
        try:
            cur = conn.cursor()
            cur.execute("BEGIN")
            cur.execute("CREATE TABLE IF NOT EXISTS schema_migrations (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL)")
            cur.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations")
            current_version = int(cur.fetchone()[0])

            migrations = [
                (1, self._migration_v1_ledger),
                (2, self._migration_v2_orders),
                (3, self._migration_v3_movement_batches),
            ]

            for version, migration in migrations:
                if version <= current_version:
                    continue
                migration(cur)
                cur.execute(
                    "INSERT INTO schema_migrations (version, applied_at) VALUES (?, datetime('now'))",
                    (version,),
                )
            conn.commit()
        except Exception as exc:
            conn.rollback()
            self._restore_pre_migration_backup(backup_path)
            raise RuntimeError(
                "Database migration failed. Original database restored from automatic backup."
            ) from exc
        finally:
            conn.close()

    def _create_pre_migration_backup(self) -> Path | None:
        db_file = Path(self.db_path)
        if not db_file.exists() or db_file.stat().st_size == 0:
            return None
        backup_file = db_file.with_name(f"{db_file.stem}.pre_migration_{datetime.now().strftime('%Y%m%d%H%M%S')}.bak")
        shutil.copy2(db_file, backup_file)
        return backup_file

    def _restore_pre_migration_backup(self, backup_path: Path | None) -> None:
        if backup_path is None or not backup_path.exists():
            return
        shutil.copy2(backup_path, self.db_path)

    def _migration_v1_ledger(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username TEXT NOT NULL UNIQUE,
                role TEXT NOT NULL CHECK(role IN ('admin','staff','viewer')),
                active INTEGER NOT NULL DEFAULT 1 CHECK(active IN (0,1)),
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS variants (
                id TEXT PRIMARY KEY,
                team TEXT NOT NULL,
                color TEXT NOT NULL,
                image_url TEXT,
                gallery_urls TEXT NOT NULL DEFAULT '[]',
                video_url TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                UNIQUE(team, color)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS balances (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id TEXT NOT NULL,
                size TEXT NOT NULL CHECK(size IN ('S','M','L','XL')),
                available INTEGER NOT NULL DEFAULT 0 CHECK(available >= 0),
                sample INTEGER NOT NULL DEFAULT 0 CHECK(sample >= 0),
                sold INTEGER NOT NULL DEFAULT 0 CHECK(sold >= 0),
                updated_at TEXT,
                FOREIGN KEY(product_id) REFERENCES variants(id),
                UNIQUE(product_id, size)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS movements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                product_id TEXT NOT NULL,
                size TEXT NOT NULL CHECK(size IN ('S','M','L','XL')),
                kind TEXT NOT NULL CHECK(kind IN ('in','out','to_sample','sale')),
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                created_at TEXT NOT NULL,
                movement_date TEXT NOT NULL,
                note TEXT,
                sale_price REAL CHECK(sale_price IS NULL OR sale_price >= 0),
                return_date TEXT,
                actor_user_id INTEGER,
                FOREIGN KEY(product_id) REFERENCES variants(id),
                FOREIGN KEY(actor_user_id) REFERENCES users(id)
            )
            """
        )

    def _migration_v2_orders(self, cur: sqlite3.Cursor) -> None:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                counterparty TEXT NOT NULL,
                contact TEXT,
                kind TEXT NOT NULL CHECK(kind IN ('sale','supply','dispatch')),
                status TEXT NOT NULL CHECK(status IN (
                    'pending','delivered','pending_receive','received',
                    'pending_dispatch','dispatched','cancelled'
                )),
                order_date TEXT NOT NULL,
                delivery_date TEXT,
                confirmation_date TEXT,
                total REAL NOT NULL CHECK(total >= 0),
                notes TEXT,
                actor_user_id INTEGER,
                FOREIGN KEY(actor_user_id) REFERENCES users(id)
            )
            """
        )

        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS order_lines (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id INTEGER NOT NULL,
                line_type TEXT NOT NULL CHECK(line_type IN ('catalog','freeform')),
                product_id TEXT,
                size TEXT CHECK(size IS NULL OR size IN ('S','M','L','XL')),
                description TEXT NOT NULL,
                quantity INTEGER NOT NULL CHECK(quantity > 0),
                unit_price REAL NOT NULL CHECK(unit_price >= 0),
                FOREIGN KEY(order_id) REFERENCES orders(id) ON DELETE CASCADE,
                FOREIGN KEY(product_id) REFERENCES variants(id)
            )
            """
        )

    def _migration_v3_movement_batches(self, cur: sqlite3.Cursor) -> None:
        self._add_column_if_missing(cur, "movements", "batch_id", "TEXT")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_recent ON movements(created_at DESC, id DESC)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_movements_batch ON movements(batch_id)")

    def _ensure_bootstrap_admin(self, username: str) -> None:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM users WHERE active=1 AND role='admin'")
        admins = int(cur.fetchone()[0])
        if admins == 0:
            cur.execute(
                """
                INSERT INTO users (username, role, active) VALUES (?, 'admin', 1)
                ON CONFLICT(username) DO UPDATE SET role='admin', active=1
                """,
                (username,),
            )
            conn.commit()
        conn.close()

    def _add_column_if_missing(self, cur: sqlite3.Cursor, table: str, column: str, definition: str) -> None:
        cur.execute(f"PRAGMA table_info({table})")
        cols = {str(r[1]) for r in cur.fetchall()}
        if column in cols:
            return
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    # ---------- Users ----------
    def list_users(self) -> list[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, role, active FROM users WHERE active=1 ORDER BY username")
        rows = cur.fetchall()
        conn.close()
        return [User(id=int(r[0]), username=str(r[1]), role=str(r[2]), active=int(r[3])) for r in rows]

    def get_user_by_username(self, username: str) -> Optional[User]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT id, username, role, active FROM users WHERE active=1 AND username=?", (username,))
        r = cur.fetchone()
        conn.close()
        if not r:
            return None
        return User(id=int(r[0]), username=str(r[1]), role=str(r[2]), active=int(r[3]))

    def create_user(self, username: str, role: str) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("INSERT INTO users (username, role, active) VALUES (?, ?, 1)", (username, role))
        uid = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return uid

    def deactivate_user(self, user_id: int) -> bool:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("UPDATE users SET active=0 WHERE id=? AND active=1", (int(user_id),))
        changed = cur.rowcount > 0
        conn.commit()
        conn.close()
        return bool(changed)

    # ---------- Catalog ----------
    def upsert_variant(
        self,
        team: str,
        color: str,
        image_url: Optional[str] = None,
        gallery_urls: Iterable[str] = (),
        video_url: Optional[str] = None,
        variant_id: Optional[str] = None,
    ) -> str:
        vid = variant_id or uuid.uuid4().hex
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO variants (id, team, color, image_url, gallery_urls, video_url)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                team=excluded.team, color=excluded.color, image_url=excluded.image_url,
                gallery_urls=excluded.gallery_urls, video_url=excluded.video_url
            """,
            (vid, team, color, image_url, json.dumps(list(gallery_urls)), video_url),
        )
        conn.commit()
        conn.close()
        return vid

    def list_variants(self) -> list[ProductVariant]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, team, color, image_url, gallery_urls, video_url, created_at
            FROM variants
            ORDER BY team, color
            """
        )
        rows = cur.fetchall()
        conn.close()
        return [self._variant_from_row(r) for r in rows]

    def get_variant(self, variant_id: str) -> Optional[ProductVariant]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, team, color, image_url, gallery_urls, video_url, created_at
            FROM variants
            WHERE id=?
            """,
            (variant_id,),
        )
        r = cur.fetchone()
        conn.close()
        return self._variant_from_row(r) if r else None

    def find_variant(self, team: str, color: str) -> Optional[ProductVariant]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT id, team, color, image_url, gallery_urls, video_url, created_at
            FROM variants
            WHERE lower(team)=lower(?) AND lower(color)=lower(?)
            """,
            (team, color),
        )
        r = cur.fetchone()
        conn.close()
        return self._variant_from_row(r) if r else None

    @staticmethod
    def _variant_from_row(r) -> ProductVariant:
        return ProductVariant(
            id=str(r[0]),
            team=str(r[1]),
            color=str(r[2]),
            image_url=(r[3] if r[3] is not None else None),
            gallery_urls=tuple(json.loads(r[4] or "[]")),
            video_url=(r[5] if r[5] is not None else None),
            created_at=(str(r[6]) if r[6] is not None else None),
        )

    # ---------- Balances ----------
    _BALANCE_SELECT = """
        SELECT b.id, b.product_id, b.size, b.available, b.sample, b.sold, b.updated_at,
               COALESCE(v.team, ''), COALESCE(v.color, '')
        FROM balances b
        LEFT JOIN variants v ON v.id = b.product_id
    """

    @staticmethod
    def _balance_from_row(r) -> BalanceEntry:
        return BalanceEntry(
            id=int(r[0]),
            product_id=str(r[1]),
            size=str(r[2]),
            available=int(r[3]),
            sample=int(r[4]),
            sold=int(r[5]),
            updated_at=(str(r[6]) if r[6] is not None else None),
            team=str(r[7]),
            color=str(r[8]),
        )

    def list_balances(self) -> list[BalanceEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._BALANCE_SELECT} ORDER BY v.team, v.color, {_SIZE_ORDER_SQL}, b.id")
        rows = cur.fetchall()
        conn.close()
        return [self._balance_from_row(r) for r in rows]

    def list_balances_for_product(self, product_id: str) -> list[BalanceEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._BALANCE_SELECT} WHERE b.product_id=? ORDER BY {_SIZE_ORDER_SQL}", (product_id,))
        rows = cur.fetchall()
        conn.close()
        return [self._balance_from_row(r) for r in rows]

    def get_balance(self, product_id: str, size: str) -> Optional[BalanceEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._BALANCE_SELECT} WHERE b.product_id=? AND b.size=?", (product_id, size))
        r = cur.fetchone()
        conn.close()
        return self._balance_from_row(r) if r else None

    def get_balance_by_id(self, entry_id: int) -> Optional[BalanceEntry]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._BALANCE_SELECT} WHERE b.id=?", (int(entry_id),))
        r = cur.fetchone()
        conn.close()
        return self._balance_from_row(r) if r else None

    def apply_movement(
        self,
        product_id: str,
        size: str,
        kind: str,
        quantity: int,
        created_at: str,
        movement_date: str,
        note: Optional[str] = None,
        sale_price: Optional[float] = None,
        return_date: Optional[str] = None,
        actor_user_id: Optional[int] = None,
        batch_id: Optional[str] = None,
    ) -> int:
        """Upsert the balance and append the movement in one transaction.

        Guarded kinds decrement only when ``available >= quantity``; when the
        guard fails nothing is written and InsufficientStockError is raised.
        """
        set_clause, guard = _MOVEMENT_UPDATES[kind]
        params = {"q": int(quantity), "pid": product_id, "size": size, "ts": created_at}
        where = "product_id = :pid AND size = :size"
        if guard:
            where += f" AND {guard} >= :q"

        with self._transaction() as cur:
            cur.execute(
                "INSERT OR IGNORE INTO balances (product_id, size, updated_at) VALUES (?, ?, ?)",
                (product_id, size, created_at),
            )
            cur.execute(f"UPDATE balances SET {set_clause}, updated_at = :ts WHERE {where}", params)
            if cur.rowcount == 0:
                cur.execute("SELECT available FROM balances WHERE product_id=? AND size=?", (product_id, size))
                row = cur.fetchone()
                available = int(row[0]) if row else 0
                raise InsufficientStockError(f"Insufficient stock for size {size}. Available: {available}")

            cur.execute(
                """
                INSERT INTO movements (
                    product_id, size, kind, quantity, created_at, movement_date,
                    note, sale_price, return_date, actor_user_id, batch_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    product_id,
                    size,
                    kind,
                    int(quantity),
                    created_at,
                    movement_date,
                    note,
                    (float(sale_price) if sale_price is not None else None),
                    return_date,
                    actor_user_id,
                    batch_id,
                ),
            )
            return int(cur.lastrowid)

    def transfer_bucket(self, entry_id: int, from_bucket: str, to_bucket: str, amount: int) -> None:
        src = _check_bucket(from_bucket)
        dst = _check_bucket(to_bucket)
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE balances
                SET {src} = {src} - :amount, {dst} = {dst} + :amount, updated_at = :ts
                WHERE id = :id AND {src} >= :amount
                """,
                {"amount": int(amount), "id": int(entry_id), "ts": _now_iso()},
            )
            if cur.rowcount == 0:
                cur.execute(f"SELECT {src} FROM balances WHERE id=?", (int(entry_id),))
                row = cur.fetchone()
                if not row:
                    raise NotFoundError("Inventory entry not found.")
                raise InsufficientQuantityError(f"Insufficient quantity in '{src}' to move. Current: {int(row[0])}")

    def adjust_bucket(self, entry_id: int, bucket: str, delta: int) -> None:
        col = _check_bucket(bucket)
        with self._transaction() as cur:
            cur.execute(
                f"UPDATE balances SET {col} = MAX(0, {col} + ?), updated_at = ? WHERE id = ?",
                (int(delta), _now_iso(), int(entry_id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Inventory entry not found.")

    def reset_all(self) -> tuple[int, int]:
        with self._transaction() as cur:
            cur.execute("UPDATE balances SET available = 0, sample = 0, sold = 0, updated_at = ?", (_now_iso(),))
            balances = int(cur.rowcount)
            cur.execute("DELETE FROM movements")
            movements = int(cur.rowcount)
        return balances, movements

    # ---------- Movements ----------
    def clear_movements(self) -> int:
        with self._transaction() as cur:
            cur.execute("DELETE FROM movements")
            return int(cur.rowcount)

    def recent_movements(self, limit: int = 100) -> list[MovementRecord]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(
            """
            SELECT m.id, m.product_id, m.size, m.kind, m.quantity, m.created_at, m.movement_date,
                   m.note, m.sale_price, m.return_date, m.actor_user_id, m.batch_id,
                   COALESCE(v.team, ''), COALESCE(v.color, '')
            FROM movements m
            LEFT JOIN variants v ON v.id = m.product_id
            ORDER BY m.created_at DESC, m.id DESC
            LIMIT ?
            """,
            (int(limit),),
        )
        rows = cur.fetchall()
        conn.close()
        return [
            MovementRecord(
                id=int(r[0]),
                product_id=str(r[1]),
                size=str(r[2]),
                kind=str(r[3]),
                quantity=int(r[4]),
                created_at=str(r[5]),
                movement_date=str(r[6]),
                note=(r[7] if r[7] is not None else None),
                sale_price=(float(r[8]) if r[8] is not None else None),
                return_date=(r[9] if r[9] is not None else None),
                actor_user_id=(int(r[10]) if r[10] is not None else None),
                batch_id=(r[11] if r[11] is not None else None),
                team=str(r[12]),
                color=str(r[13]),
            )
            for r in rows
        ]

    def count_movements(self) -> int:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute("SELECT COUNT(*) FROM movements")
        n = int(cur.fetchone()[0])
        conn.close()
        return n

    # ---------- Orders ----------
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
    ) -> int:
        with self._transaction() as cur:
            cur.execute(
                """
                INSERT INTO orders (counterparty, contact, kind, status, order_date, delivery_date, total, notes, actor_user_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (counterparty, contact, kind, status, order_date, delivery_date, float(total), notes, actor_user_id),
            )
            order_id = int(cur.lastrowid)
            for line in lines:
                cur.execute(
                    """
                    INSERT INTO order_lines (order_id, line_type, product_id, size, description, quantity, unit_price)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        order_id,
                        line.line_type,
                        line.product_id,
                        line.size,
                        line.description,
                        int(line.quantity),
                        float(line.unit_price),
                    ),
                )
            return order_id

    _ORDER_SELECT = """
        SELECT id, counterparty, contact, kind, status, order_date, delivery_date,
               confirmation_date, total, notes
        FROM orders
    """

    def _order_lines(self, cur: sqlite3.Cursor, order_id: int) -> tuple[OrderLine, ...]:
        cur.execute(
            """
            SELECT id, order_id, line_type, product_id, size, description, quantity, unit_price
            FROM order_lines
            WHERE order_id = ?
            ORDER BY id
            """,
            (int(order_id),),
        )
        return tuple(
            OrderLine(
                id=int(r[0]),
                order_id=int(r[1]),
                line_type=str(r[2]),
                product_id=(r[3] if r[3] is not None else None),
                size=(r[4] if r[4] is not None else None),
                description=str(r[5]),
                quantity=int(r[6]),
                unit_price=float(r[7]),
            )
            for r in cur.fetchall()
        )

    def _order_from_row(self, cur: sqlite3.Cursor, r) -> Order:
        return Order(
            id=int(r[0]),
            counterparty=str(r[1]),
            contact=(r[2] if r[2] is not None else None),
            kind=str(r[3]),
            status=str(r[4]),
            order_date=str(r[5]),
            delivery_date=(r[6] if r[6] is not None else None),
            confirmation_date=(r[7] if r[7] is not None else None),
            total=float(r[8]),
            notes=(r[9] if r[9] is not None else None),
            lines=self._order_lines(cur, int(r[0])),
        )

    def get_order(self, order_id: int) -> Optional[Order]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._ORDER_SELECT} WHERE id = ?", (int(order_id),))
        r = cur.fetchone()
        order = self._order_from_row(cur, r) if r else None
        conn.close()
        return order

    def list_orders(self) -> list[Order]:
        conn = self._conn()
        cur = conn.cursor()
        cur.execute(f"{self._ORDER_SELECT} ORDER BY order_date DESC, id DESC")
        rows = cur.fetchall()
        orders = [self._order_from_row(cur, r) for r in rows]
        conn.close()
        return orders

    def update_order_status(
        self,
        order_id: int,
        status: str,
        expected_statuses: Iterable[str],
        confirmation_date: Optional[str] = None,
    ) -> bool:
        expected = list(expected_statuses)
        placeholders = ",".join("?" for _ in expected)
        with self._transaction() as cur:
            cur.execute(
                f"""
                UPDATE orders
                SET status = ?, confirmation_date = COALESCE(?, confirmation_date)
                WHERE id = ? AND status IN ({placeholders})
                """,
                (status, confirmation_date, int(order_id), *expected),
            )
            return cur.rowcount > 0
