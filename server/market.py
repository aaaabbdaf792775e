"""Marketplace records the escrow service reads from.

SQLite-backed listing item templates, the live listings posted from them,
payment information per template, and buyer shipping addresses.
"""

import logging
import sqlite3
import threading
import time

from server.exceptions import NotFoundException
from server.store import fits_sqlite_int

log = logging.getLogger(__name__)

ADDRESS_FIELDS = (
    "title", "first_name", "last_name", "address_line1", "address_line2",
    "city", "state", "country", "zip_code",
)


class MarketStore:
    """SQLite-backed templates, listing items, payment information and addresses."""

    def __init__(self, db_path: str = ":memory:"):
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        self.db.execute("PRAGMA foreign_keys = ON")
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS listing_item_templates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                hash TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            )
        """)
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS listing_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_item_template_id INTEGER NOT NULL REFERENCES listing_item_templates(id) ON DELETE CASCADE,
                hash TEXT NOT NULL,
                created_at REAL NOT NULL
            )
        """)
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS payment_informations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                listing_item_template_id INTEGER UNIQUE REFERENCES listing_item_templates(id) ON DELETE CASCADE,
                type TEXT NOT NULL DEFAULT 'SALE',
                created_at REAL NOT NULL
            )
        """)
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS addresses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL DEFAULT '',
                first_name TEXT NOT NULL DEFAULT '',
                last_name TEXT NOT NULL DEFAULT '',
                address_line1 TEXT NOT NULL DEFAULT '',
                address_line2 TEXT NOT NULL DEFAULT '',
                city TEXT NOT NULL DEFAULT '',
                state TEXT NOT NULL DEFAULT '',
                country TEXT NOT NULL DEFAULT '',
                zip_code TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            )
        """)
        self.db.commit()

    # --- Templates and listings ---

    def create_template(self, template_hash: str = "") -> dict:
        with self._lock:
            cursor = self.db.execute(
                "INSERT INTO listing_item_templates (hash, created_at) VALUES (?, ?)",
                (template_hash, time.time()),
            )
            self.db.commit()
        return self.find_template(cursor.lastrowid)

    def find_template(self, template_id: int) -> dict | None:
        """Get a template with its posted listing items."""
        if not fits_sqlite_int(template_id):
            return None
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM listing_item_templates WHERE id = ?", (template_id,),
            ).fetchone()
            if not row:
                return None
            items = self.db.execute(
                "SELECT * FROM listing_items WHERE listing_item_template_id = ? ORDER BY id",
                (template_id,),
            ).fetchall()
        return {
            "id": row["id"],
            "hash": row["hash"],
            "created_at": row["created_at"],
            "listing_items": [dict(i) for i in items],
        }

    def post_listing(self, template_id: int, item_hash: str) -> dict:
        """Record a live listing posted from a template."""
        if not fits_sqlite_int(template_id):
            raise NotFoundException(template_id)
        with self._lock:
            try:
                cursor = self.db.execute(
                    "INSERT INTO listing_items (listing_item_template_id, hash, created_at) VALUES (?, ?, ?)",
                    (template_id, item_hash, time.time()),
                )
            except sqlite3.IntegrityError:
                raise NotFoundException(template_id)
            self.db.commit()
            row = self.db.execute("SELECT * FROM listing_items WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return dict(row)

    # --- Payment information ---

    def create_payment_information(self, template_id: int, payment_type: str = "SALE") -> dict:
        if not fits_sqlite_int(template_id):
            raise ValueError(f"Template {template_id} does not exist")
        with self._lock:
            try:
                cursor = self.db.execute(
                    "INSERT INTO payment_informations (listing_item_template_id, type, created_at) VALUES (?, ?, ?)",
                    (template_id, payment_type, time.time()),
                )
            except sqlite3.IntegrityError:
                raise ValueError(f"Template {template_id} is missing or already has payment information")
            self.db.commit()
            row = self.db.execute("SELECT * FROM payment_informations WHERE id = ?", (cursor.lastrowid,)).fetchone()
        return dict(row)

    def find_payment_information_by_template(self, template_id: int) -> dict | None:
        if not fits_sqlite_int(template_id):
            return None
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM payment_informations WHERE listing_item_template_id = ?",
                (template_id,),
            ).fetchone()
        return dict(row) if row else None

    # --- Addresses ---

    def create_address(self, **fields) -> dict:
        unknown = set(fields) - set(ADDRESS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown address fields: {sorted(unknown)}")
        columns = [f for f in ADDRESS_FIELDS if f in fields]
        placeholders = ", ".join("?" for _ in columns)
        with self._lock:
            cursor = self.db.execute(
                f"INSERT INTO addresses ({', '.join(columns + ['created_at'])}) VALUES ({placeholders}{', ' if columns else ''}?)",
                [str(fields[c]) for c in columns] + [time.time()],
            )
            self.db.commit()
        return self.find_address(cursor.lastrowid)

    def find_address(self, address_id: int) -> dict | None:
        if not fits_sqlite_int(address_id):
            return None
        with self._lock:
            row = self.db.execute("SELECT * FROM addresses WHERE id = ?", (address_id,)).fetchone()
        return dict(row) if row else None

    def close(self):
        self.db.close()


class AddressService:
    """Address lookups for escrow lock messages."""

    def __init__(self, market: MarketStore):
        self.market = market

    def find_one(self, address_id: int) -> dict:
        address = self.market.find_address(address_id)
        if address is None:
            log.warning("Address with the id=%s was not found!", address_id)
            raise NotFoundException(address_id)
        return address
