"""
Database operations for the store sync engine.
Uses SQLite for storage.

Every category, product and order mirrored from the store carries its
`external_id` under a UNIQUE constraint, which is what makes repeated sync
runs idempotent.
"""

import json
import sqlite3
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple, Iterable
from contextlib import contextmanager

from .exceptions import SyncInProgressError

logger = logging.getLogger(__name__)

# Table and column names
CUSTOMERS_TABLE = "customers"
CATEGORIES_TABLE = "product_categories"
PRODUCTS_TABLE = "products"
ORDERS_TABLE = "orders"
ORDER_ITEMS_TABLE = "order_items"
CURSORS_TABLE = "sync_cursors"
LOCKS_TABLE = "sync_locks"
CONFLICTS_TABLE = "identity_conflicts"

# Structured columns stored as JSON text
JSON_COLUMNS = {
    "images", "attributes", "shipping_address", "billing_address",
    "conflicting_customer_ids", "identifiers",
}

COUNTED_TABLES = (
    CUSTOMERS_TABLE, CATEGORIES_TABLE, PRODUCTS_TABLE, ORDERS_TABLE, ORDER_ITEMS_TABLE,
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(values: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize structured columns to JSON text."""
    encoded = {}
    for column, value in values.items():
        if column in JSON_COLUMNS and value is not None:
            value = json.dumps(value, ensure_ascii=False)
        elif isinstance(value, bool):
            value = int(value)
        encoded[column] = value
    return encoded


def _row_to_dict(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for column in JSON_COLUMNS & data.keys():
        if data[column] is not None:
            data[column] = json.loads(data[column])
    return data


def _insert(cursor: sqlite3.Cursor, table: str, values: Dict[str, Any]) -> int:
    values = _encode(values)
    columns = ", ".join(values)
    placeholders = ", ".join("?" for _ in values)
    cursor.execute(
        f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
        tuple(values.values())
    )
    return cursor.lastrowid


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._ensure_tables()

    @contextmanager
    def _connection(self):
        """Context manager for database connections. One call is one transaction."""
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CUSTOMERS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL DEFAULT '',
                    first_name TEXT,
                    last_name TEXT,
                    id_number TEXT,
                    email TEXT,
                    phone TEXT,
                    street TEXT,
                    city TEXT,
                    province TEXT,
                    delivery_instructions TEXT,
                    brand TEXT,
                    source TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_customers_id_number ON {CUSTOMERS_TABLE}(id_number)")
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_customers_phone ON {CUSTOMERS_TABLE}(phone)")
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_customers_email ON {CUSTOMERS_TABLE}(email COLLATE NOCASE)")

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CATEGORIES_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    description TEXT,
                    slug TEXT UNIQUE,
                    brand TEXT,
                    external_id INTEGER UNIQUE,
                    parent_category_id INTEGER,
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY (parent_category_id) REFERENCES {CATEGORIES_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {PRODUCTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    sku TEXT NOT NULL UNIQUE,
                    description TEXT,
                    price REAL DEFAULT 0,
                    stock INTEGER DEFAULT 0,
                    brand TEXT,
                    category_id INTEGER,
                    external_id INTEGER UNIQUE,
                    external_url TEXT,
                    active INTEGER DEFAULT 1,
                    images TEXT,
                    attributes TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY (category_id) REFERENCES {CATEGORIES_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ORDERS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    customer_id INTEGER,
                    order_number TEXT UNIQUE,
                    total_amount REAL DEFAULT 0,
                    status TEXT,
                    payment_status TEXT,
                    payment_method TEXT,
                    brand TEXT,
                    source TEXT,
                    external_id INTEGER UNIQUE,
                    shipping_address TEXT,
                    billing_address TEXT,
                    notes TEXT,
                    created_at TEXT,
                    updated_at TEXT,
                    FOREIGN KEY (customer_id) REFERENCES {CUSTOMERS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ORDER_ITEMS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    order_id INTEGER NOT NULL,
                    product_id INTEGER,
                    product_name TEXT,
                    quantity INTEGER,
                    unit_price REAL,
                    subtotal REAL,
                    attributes TEXT,
                    created_at TEXT,
                    FOREIGN KEY (order_id) REFERENCES {ORDERS_TABLE}(id),
                    FOREIGN KEY (product_id) REFERENCES {PRODUCTS_TABLE}(id)
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CURSORS_TABLE} (
                    name TEXT PRIMARY KEY,
                    last_external_id INTEGER,
                    last_created_at TEXT,
                    last_synced_at TEXT
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {LOCKS_TABLE} (
                    name TEXT PRIMARY KEY,
                    owner TEXT NOT NULL,
                    acquired_at TEXT NOT NULL
                )
            """)

            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {CONFLICTS_TABLE} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chosen_customer_id INTEGER,
                    conflicting_customer_ids TEXT,
                    identifiers TEXT,
                    context TEXT,
                    created_at TEXT
                )
            """)

            logger.info(f"Database initialized at {self.db_path}")

    def _fetch_one(self, query: str, params: Iterable[Any] = ()) -> Optional[Dict[str, Any]]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            return _row_to_dict(cursor.fetchone())

    def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, tuple(params))
            return [_row_to_dict(row) for row in cursor.fetchall()]

    def _upsert_by_external_id(
        self,
        table: str,
        external_id: int,
        insert_values: Dict[str, Any],
        update_values: Dict[str, Any]
    ) -> Tuple[int, bool]:
        """
        Insert a row keyed by external_id, or update the given columns if it exists.
        Returns (row id, created).
        """
        now = _now()
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT id FROM {table} WHERE external_id = ?", (external_id,))
            row = cursor.fetchone()

            if row:
                values = _encode({**update_values, 'updated_at': now})
                assignments = ", ".join(f"{column} = ?" for column in values)
                cursor.execute(
                    f"UPDATE {table} SET {assignments} WHERE id = ?",
                    (*values.values(), row['id'])
                )
                return row['id'], False

            values = {**insert_values, 'external_id': external_id, 'created_at': now, 'updated_at': now}
            return _insert(cursor, table, values), True

    # ==================== Customer Operations ====================

    def get_customer(self, customer_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(f"SELECT * FROM {CUSTOMERS_TABLE} WHERE id = ?", (customer_id,))

    def find_customer_by_id_number(self, id_number: str) -> Optional[Dict[str, Any]]:
        """Find the oldest customer with this national ID."""
        return self._fetch_one(
            f"SELECT * FROM {CUSTOMERS_TABLE} WHERE id_number = ? ORDER BY id LIMIT 1",
            (id_number,)
        )

    def find_customer_by_phones(self, candidates: List[str]) -> Optional[Dict[str, Any]]:
        """Find the oldest customer whose phone equals any of the candidates."""
        if not candidates:
            return None
        placeholders = ", ".join("?" for _ in candidates)
        return self._fetch_one(
            f"SELECT * FROM {CUSTOMERS_TABLE} WHERE phone IN ({placeholders}) ORDER BY id LIMIT 1",
            candidates
        )

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Find the oldest customer with this email (case-insensitive)."""
        return self._fetch_one(
            f"SELECT * FROM {CUSTOMERS_TABLE} WHERE email = ? COLLATE NOCASE ORDER BY id LIMIT 1",
            (email.strip(),)
        )

    def insert_customer(self, values: Dict[str, Any]) -> int:
        now = _now()
        with self._connection() as conn:
            return _insert(conn.cursor(), CUSTOMERS_TABLE, {**values, 'created_at': now, 'updated_at': now})

    def refresh_customer_address(
        self,
        customer_id: int,
        street: Optional[str] = None,
        city: Optional[str] = None,
        province: Optional[str] = None
    ) -> bool:
        """Overwrite the address fields that have a non-empty new value."""
        values = {k: v for k, v in (('street', street), ('city', city), ('province', province)) if v}
        if not values:
            return False

        values['updated_at'] = _now()
        assignments = ", ".join(f"{column} = ?" for column in values)
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE {CUSTOMERS_TABLE} SET {assignments} WHERE id = ?",
                (*values.values(), customer_id)
            )
            return cursor.rowcount > 0

    def record_identity_conflict(
        self,
        chosen_customer_id: int,
        conflicting_customer_ids: List[int],
        identifiers: Dict[str, Any],
        context: Optional[str] = None
    ) -> int:
        """Queue an ambiguous customer match for manual review."""
        with self._connection() as conn:
            return _insert(conn.cursor(), CONFLICTS_TABLE, {
                'chosen_customer_id': chosen_customer_id,
                'conflicting_customer_ids': conflicting_customer_ids,
                'identifiers': identifiers,
                'context': context,
                'created_at': _now(),
            })

    def get_identity_conflicts(self, limit: int = 50) -> List[Dict[str, Any]]:
        return self._fetch_all(
            f"SELECT * FROM {CONFLICTS_TABLE} ORDER BY id DESC LIMIT ?", (limit,)
        )

    # ==================== Catalog Operations ====================

    def get_category_by_external_id(self, external_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT * FROM {CATEGORIES_TABLE} WHERE external_id = ?", (external_id,)
        )

    def upsert_category(
        self,
        external_id: int,
        insert_values: Dict[str, Any],
        update_values: Dict[str, Any]
    ) -> Tuple[int, bool]:
        return self._upsert_by_external_id(CATEGORIES_TABLE, external_id, insert_values, update_values)

    def link_category_parent(self, external_id: int, parent_external_id: int) -> bool:
        """
        Point a category at its parent, both given by external id.
        Returns False if either side is not mirrored locally.
        """
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT id FROM {CATEGORIES_TABLE} WHERE external_id = ?", (parent_external_id,)
            )
            parent = cursor.fetchone()
            if not parent:
                return False
            cursor.execute(f"""
                UPDATE {CATEGORIES_TABLE} SET parent_category_id = ?
                WHERE external_id = ? AND id != ?
                  AND (parent_category_id IS NULL OR parent_category_id != ?)
            """, (parent['id'], external_id, parent['id'], parent['id']))
            return cursor.rowcount > 0

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(f"SELECT * FROM {PRODUCTS_TABLE} WHERE id = ?", (product_id,))

    def get_product_by_external_id(self, external_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT * FROM {PRODUCTS_TABLE} WHERE external_id = ?", (external_id,)
        )

    def upsert_product(
        self,
        external_id: int,
        insert_values: Dict[str, Any],
        update_values: Dict[str, Any]
    ) -> Tuple[int, bool]:
        return self._upsert_by_external_id(PRODUCTS_TABLE, external_id, insert_values, update_values)

    def get_mapped_products(self) -> List[Dict[str, Any]]:
        """Products mirrored from the store, i.e. carrying an external_id."""
        return self._fetch_all(
            f"SELECT id, name, sku, stock, external_id FROM {PRODUCTS_TABLE} "
            f"WHERE external_id IS NOT NULL ORDER BY id"
        )

    def set_product_stock(self, product_id: int, stock: int) -> None:
        with self._connection() as conn:
            conn.execute(
                f"UPDATE {PRODUCTS_TABLE} SET stock = ?, updated_at = ? WHERE id = ?",
                (stock, _now(), product_id)
            )

    # ==================== Order Operations ====================

    def get_order(self, order_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(f"SELECT * FROM {ORDERS_TABLE} WHERE id = ?", (order_id,))

    def get_order_by_external_id(self, external_id: int) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT * FROM {ORDERS_TABLE} WHERE external_id = ?", (external_id,)
        )

    def get_order_items(self, order_id: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            f"SELECT * FROM {ORDER_ITEMS_TABLE} WHERE order_id = ? ORDER BY id", (order_id,)
        )

    def update_order_status(self, external_id: int, status: str, payment_status: str) -> bool:
        """Refresh the status fields of an imported order. Nothing else changes."""
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                UPDATE {ORDERS_TABLE}
                SET status = ?, payment_status = ?, updated_at = ?
                WHERE external_id = ?
            """, (status, payment_status, _now(), external_id))
            return cursor.rowcount > 0

    def create_order(
        self,
        order: Dict[str, Any],
        items: List[Dict[str, Any]],
        new_customer: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, Optional[int]]:
        """
        Insert an order with its items, and optionally the customer it belongs to,
        in a single transaction. Either all rows are written or none are.

        Orders without an order_number get `ORD-{id:06d}`.

        Returns:
            Tuple of (order id, customer id)
        """
        now = _now()
        values = dict(order)
        values.setdefault('created_at', now)
        values.setdefault('updated_at', now)

        with self._connection() as conn:
            cursor = conn.cursor()

            if new_customer is not None:
                values['customer_id'] = _insert(
                    cursor, CUSTOMERS_TABLE, {**new_customer, 'created_at': now, 'updated_at': now}
                )

            order_id = _insert(cursor, ORDERS_TABLE, values)

            if not values.get('order_number'):
                cursor.execute(
                    f"UPDATE {ORDERS_TABLE} SET order_number = ? WHERE id = ?",
                    (f"ORD-{order_id:06d}", order_id)
                )

            for item in items:
                _insert(cursor, ORDER_ITEMS_TABLE, {**item, 'order_id': order_id, 'created_at': now})

            return order_id, values.get('customer_id')

    # ==================== Sync State ====================

    def get_cursor(self, name: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(f"SELECT * FROM {CURSORS_TABLE} WHERE name = ?", (name,))

    def save_cursor(self, name: str, last_external_id: Optional[int], last_created_at: Optional[str]) -> None:
        with self._connection() as conn:
            conn.execute(f"""
                INSERT INTO {CURSORS_TABLE} (name, last_external_id, last_created_at, last_synced_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    last_external_id=excluded.last_external_id,
                    last_created_at=excluded.last_created_at,
                    last_synced_at=excluded.last_synced_at
            """, (name, last_external_id, last_created_at, _now()))

    def _read_lock(self, cursor: sqlite3.Cursor, name: str) -> Optional[Dict[str, Any]]:
        cursor.execute(f"SELECT owner, acquired_at FROM {LOCKS_TABLE} WHERE name = ?", (name,))
        row = cursor.fetchone()
        return dict(row) if row else None

    def acquire_lock(self, name: str, owner: str, stale_after_seconds: int = 3600) -> None:
        """
        Take the named run lock. A lock older than stale_after_seconds is
        treated as abandoned and replaced, but only if it is still the row
        that was read; a competing run that replaced it first wins.

        Raises:
            SyncInProgressError: the lock is held by a live run
        """
        cutoff = (datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)).isoformat()
        try:
            with self._connection() as conn:
                cursor = conn.cursor()
                seen = self._read_lock(cursor, name)
                if seen:
                    if seen['acquired_at'] > cutoff:
                        raise SyncInProgressError(seen['owner'], seen['acquired_at'])
                    cursor.execute(
                        f"DELETE FROM {LOCKS_TABLE} WHERE name = ? AND owner = ? AND acquired_at = ?",
                        (name, seen['owner'], seen['acquired_at'])
                    )
                    if cursor.rowcount == 0:
                        current = self._read_lock(cursor, name) or seen
                        raise SyncInProgressError(current['owner'], current['acquired_at'])
                    logger.warning(
                        f"Replaced stale lock '{name}' held by {seen['owner']} since {seen['acquired_at']}"
                    )

                cursor.execute(
                    f"INSERT INTO {LOCKS_TABLE} (name, owner, acquired_at) VALUES (?, ?, ?)",
                    (name, owner, _now())
                )
        except sqlite3.IntegrityError:
            lock = self.get_lock(name) or {}
            raise SyncInProgressError(lock.get('owner', 'unknown'), lock.get('acquired_at', 'unknown'))

    def release_lock(self, name: str, owner: str) -> bool:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"DELETE FROM {LOCKS_TABLE} WHERE name = ? AND owner = ?", (name, owner))
            return cursor.rowcount > 0

    def get_lock(self, name: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(f"SELECT * FROM {LOCKS_TABLE} WHERE name = ?", (name,))

    # ==================== Stats ====================

    def get_counts(self) -> Dict[str, int]:
        """Row count per business table."""
        counts = {}
        with self._connection() as conn:
            cursor = conn.cursor()
            for table in COUNTED_TABLES:
                cursor.execute(f"SELECT COUNT(*) AS count FROM {table}")
                counts[table] = cursor.fetchone()['count']
        return counts


# Global database instance
_db_instance: Optional[Database] = None


def get_database(db_path: Optional[Path] = None) -> Database:
    """Get the global database instance."""
    global _db_instance
    if _db_instance is None:
        if db_path is None:
            from .config import get_config
            db_path = get_config().db_path
        _db_instance = Database(db_path)
    return _db_instance
