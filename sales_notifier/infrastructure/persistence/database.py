"""
SQLite Reference Store - Sales, Outlets, Products, Admin Settings
=================================================================

Reference data is kept with plain key and hash semantics so the layout
matches the key-value service the dashboard was first built against:

    sales_data               key   JSON {sales_id: {name, password}}
    outlets                  hash  outlet_id -> outlet name
    products                 hash  product_id -> JSON {id, name}
    admin_whatsapp_number    key   admin destination number
    notification_template    key   template text
"""

import json
import re
import sqlite3
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union
from dataclasses import dataclass, asdict
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DATABASE_FILE = "sales_notifier.db"

SALES_KEY = "sales_data"
OUTLETS_HASH = "outlets"
PRODUCTS_HASH = "products"
ADMIN_NUMBER_KEY = "admin_whatsapp_number"
NOTIFICATION_TEMPLATE_KEY = "notification_template"

_OUTLET_ID = re.compile(r"^outlet(\d+)$")


@dataclass
class SalesAccount:
    """Field sales account. Passwords are compared as plain text."""
    id: str
    name: str
    password: str = ""


@dataclass
class Product:
    """Product reference record. Price and quantity live on submissions."""
    id: str
    name: str


class ReferenceStore:
    """
    SQLite store for the reference data used by the form and dashboard.

    Usage:
        store = ReferenceStore()
        store.init()

        outlet_id = store.add_outlet("Toko Sumber Rejeki")   # "outlet1"
        store.set_admin_number("08123456789")
        names = store.get_outlet_names()
    """

    def __init__(self, db_path: Union[str, Path] = DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS hashes (
                    name TEXT NOT NULL,
                    field TEXT NOT NULL,
                    value TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    PRIMARY KEY (name, field)
                )
            """)

            logger.info(f"Reference store initialized: {self.db_path}")

    # ── Key operations ─────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Get a JSON-decoded value, or None when the key is absent."""
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return json.loads(row["value"]) if row else None

    def set(self, key: str, value: Any) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value))
            )

    def delete(self, key: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return cursor.rowcount > 0

    # ── Hash operations ────────────────────────────────────────────

    def hset(self, name: str, mapping: Dict[str, str]) -> int:
        """Set hash fields. Returns the number of newly created fields."""
        created = 0
        with self._get_connection() as conn:
            for field_name, value in mapping.items():
                exists = conn.execute(
                    "SELECT 1 FROM hashes WHERE name = ? AND field = ?", (name, field_name)
                ).fetchone()
                if exists:
                    conn.execute(
                        "UPDATE hashes SET value = ? WHERE name = ? AND field = ?",
                        (value, name, field_name)
                    )
                    continue
                position = conn.execute(
                    "SELECT COALESCE(MAX(position), 0) + 1 FROM hashes WHERE name = ?", (name,)
                ).fetchone()[0]
                conn.execute(
                    "INSERT INTO hashes (name, field, value, position) VALUES (?, ?, ?, ?)",
                    (name, field_name, value, position)
                )
                created += 1
        return created

    def hget(self, name: str, field_name: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM hashes WHERE name = ? AND field = ?", (name, field_name)
            ).fetchone()
            return row["value"] if row else None

    def hdel(self, name: str, field_name: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM hashes WHERE name = ? AND field = ?", (name, field_name)
            )
            return cursor.rowcount > 0

    def hgetall(self, name: str) -> Dict[str, str]:
        """All fields of a hash, in insertion order."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT field, value FROM hashes WHERE name = ? ORDER BY position", (name,)
            ).fetchall()
            return {row["field"]: row["value"] for row in rows}

    # ── Sales accounts ─────────────────────────────────────────────

    def get_sales_data(self) -> Dict[str, SalesAccount]:
        data = self.get(SALES_KEY) or {}
        return {
            sales_id: SalesAccount(
                id=sales_id,
                name=entry.get("name", ""),
                password=entry.get("password", "")
            )
            for sales_id, entry in data.items()
        }

    def set_sales_data(self, accounts: Dict[str, SalesAccount]) -> None:
        self.set(SALES_KEY, {
            sales_id: {"name": account.name, "password": account.password}
            for sales_id, account in accounts.items()
        })

    def add_sales_account(self, sales_id: str, name: str, password: str) -> SalesAccount:
        """Create or replace a sales account."""
        sales_id = sales_id.strip()
        if not sales_id or not name.strip():
            raise ValueError("Sales id and name are required")

        accounts = self.get_sales_data()
        account = SalesAccount(id=sales_id, name=name.strip(), password=password)
        accounts[sales_id] = account
        self.set_sales_data(accounts)
        logger.info(f"Saved sales account {sales_id}")
        return account

    def delete_sales_account(self, sales_id: str) -> bool:
        accounts = self.get_sales_data()
        if sales_id not in accounts:
            return False
        del accounts[sales_id]
        self.set_sales_data(accounts)
        return True

    def get_sales_names(self) -> Dict[str, str]:
        """Sales id -> display name, without passwords (for the form dropdown)."""
        return {sales_id: account.name for sales_id, account in self.get_sales_data().items()}

    def verify_sales_password(self, sales_id: str, password: str) -> bool:
        account = self.get_sales_data().get(sales_id)
        return account is not None and account.password == password

    # ── Outlets ────────────────────────────────────────────────────

    def get_outlet_names(self) -> Dict[str, str]:
        return self.hgetall(OUTLETS_HASH)

    def next_outlet_id(self) -> str:
        """Next sequential outlet id: one past the highest existing outletN."""
        numbers = [
            int(match.group(1))
            for match in (_OUTLET_ID.match(outlet_id) for outlet_id in self.get_outlet_names())
            if match
        ]
        return f"outlet{max(numbers) + 1 if numbers else 1}"

    def add_outlet(self, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValueError("Outlet name is required")

        outlet_id = self.next_outlet_id()
        self.hset(OUTLETS_HASH, {outlet_id: name})
        logger.info(f"Added outlet {outlet_id}: {name}")
        return outlet_id

    def delete_outlet(self, outlet_id: str) -> bool:
        return self.hdel(OUTLETS_HASH, outlet_id)

    # ── Products ───────────────────────────────────────────────────

    @staticmethod
    def product_id_for(name: str) -> str:
        """Slug used as product id: lowercase, spaces to underscores, [a-z0-9_] only."""
        slug = re.sub(r"\s+", "_", name.strip().lower())
        return re.sub(r"[^a-z0-9_]", "", slug)

    def get_products(self) -> Dict[str, Product]:
        products = {}
        for product_id, raw in self.hgetall(PRODUCTS_HASH).items():
            try:
                data = json.loads(raw)
                products[product_id] = Product(id=data.get("id", product_id), name=data["name"])
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                logger.error(f"Skipping unreadable product {product_id}: {e}")
        return products

    def add_product(self, name: str) -> Product:
        name = name.strip()
        product_id = self.product_id_for(name)
        if not product_id:
            raise ValueError("Product name must contain letters or digits")

        product = Product(id=product_id, name=name)
        self.hset(PRODUCTS_HASH, {product_id: json.dumps(asdict(product))})
        logger.info(f"Added product {product_id}: {name}")
        return product

    def delete_product(self, product_id: str) -> bool:
        return self.hdel(PRODUCTS_HASH, product_id)

    # ── Admin settings ─────────────────────────────────────────────

    def get_admin_number(self) -> Optional[str]:
        number = self.get(ADMIN_NUMBER_KEY)
        return str(number) if number else None

    def set_admin_number(self, number: str) -> None:
        self.set(ADMIN_NUMBER_KEY, str(number or "").strip())

    def get_notification_template(self) -> Optional[str]:
        return self.get(NOTIFICATION_TEMPLATE_KEY)

    def set_notification_template(self, template: str) -> None:
        self.set(NOTIFICATION_TEMPLATE_KEY, template)


# Quick init helper
def init_store(db_path: Union[str, Path] = DATABASE_FILE) -> ReferenceStore:
    """Create the store and make sure its tables exist."""
    store = ReferenceStore(db_path)
    store.init()
    return store
