"""Escrow storage for the listing escrow service.

SQLite-backed CRUD over escrow rows and their buyer/seller ratio rows.
An escrow hangs off exactly one payment information record; a ratio hangs
off exactly one escrow and is deleted with it.
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

from protocol import SQLITE_INT_MAX, SQLITE_INT_MIN
from server.exceptions import MessageException, NotFoundException


def fits_sqlite_int(value) -> bool:
    """False for ints too wide to bind. No row can carry such an id."""
    return not isinstance(value, int) or SQLITE_INT_MIN <= value <= SQLITE_INT_MAX


@dataclass
class EscrowRatio:
    """Buyer/seller split attached to an escrow."""
    id: int
    escrow_id: int
    buyer: int
    seller: int
    created_at: float = 0.0
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "escrow_id": self.escrow_id,
            "buyer": self.buyer,
            "seller": self.seller,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class Escrow:
    """Escrow configuration for a listing template's payment information.

    ratio is only populated when the escrow was fetched with related rows.
    """
    id: int
    type: str
    payment_information_id: int
    created_at: float = 0.0
    updated_at: float = 0.0
    ratio: EscrowRatio | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "payment_information_id": self.payment_information_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "ratio": self.ratio.to_dict() if self.ratio else None,
        }


class EscrowStore:
    """SQLite-backed escrow storage.

    Writes go through transaction(). Nested transactions join the outermost
    one, which commits on success and rolls back everything on error.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db = sqlite3.connect(db_path, check_same_thread=False)
        self.db.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._init_db()

    def _init_db(self):
        self.db.execute("PRAGMA foreign_keys = ON")
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS escrows (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                type TEXT NOT NULL,
                payment_information_id INTEGER NOT NULL UNIQUE,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self.db.execute("""
            CREATE TABLE IF NOT EXISTS escrow_ratios (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                escrow_id INTEGER NOT NULL REFERENCES escrows(id) ON DELETE CASCADE,
                buyer INTEGER NOT NULL,
                seller INTEGER NOT NULL,
                created_at REAL NOT NULL,
                updated_at REAL NOT NULL
            )
        """)
        self.db.execute("CREATE INDEX IF NOT EXISTS idx_ratio_escrow ON escrow_ratios(escrow_id)")
        self.db.commit()

    @contextmanager
    def transaction(self):
        """Run a block of writes atomically."""
        with self._lock:
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    self.db.rollback()
                raise
            self._depth -= 1
            if self._depth == 0:
                self.db.commit()

    # --- Escrows ---

    def find_all(self) -> list[Escrow]:
        """All escrows, without related rows."""
        with self._lock:
            rows = self.db.execute("SELECT * FROM escrows ORDER BY id").fetchall()
        return [self._row_to_escrow(r) for r in rows]

    def find_one(self, escrow_id: int, with_related: bool = True) -> Escrow:
        """Get an escrow by id. Raises NotFoundException if absent."""
        if not fits_sqlite_int(escrow_id):
            raise NotFoundException(escrow_id)
        with self._lock:
            row = self.db.execute("SELECT * FROM escrows WHERE id = ?", (escrow_id,)).fetchone()
            if not row:
                raise NotFoundException(escrow_id)
            escrow = self._row_to_escrow(row)
            if with_related:
                escrow.ratio = self.find_ratio_by_escrow(escrow.id)
        return escrow

    def find_one_by_payment_information(self, payment_information_id: int,
                                        with_related: bool = True) -> Escrow:
        """Get the escrow attached to a payment information record."""
        if not fits_sqlite_int(payment_information_id):
            raise NotFoundException(payment_information_id)
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM escrows WHERE payment_information_id = ?",
                (payment_information_id,),
            ).fetchone()
            if not row:
                raise NotFoundException(payment_information_id)
            escrow = self._row_to_escrow(row)
            if with_related:
                escrow.ratio = self.find_ratio_by_escrow(escrow.id)
        return escrow

    def create(self, body: dict) -> Escrow:
        """Insert an escrow row. body needs payment_information_id and type."""
        for key in ("payment_information_id", "type"):
            if body.get(key) is None:
                raise ValueError(f"Escrow body is missing '{key}'")
        if not fits_sqlite_int(body["payment_information_id"]):
            raise ValueError(f"payment_information_id out of range: {body['payment_information_id']}")
        now = time.time()
        with self.transaction():
            try:
                cursor = self.db.execute(
                    "INSERT INTO escrows (type, payment_information_id, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (str(body["type"]), body["payment_information_id"], now, now),
                )
            except sqlite3.IntegrityError:
                raise MessageException(
                    f"Escrow for payment_information_id={body['payment_information_id']} already exists"
                )
            return self.find_one(cursor.lastrowid, with_related=False)

    def update(self, escrow_id: int, body: dict) -> Escrow:
        """Overwrite the mutable fields (type). Returns the escrow with its ratio."""
        if body.get("type") is None:
            raise ValueError("Escrow body is missing 'type'")
        if not fits_sqlite_int(escrow_id):
            raise NotFoundException(escrow_id)
        with self.transaction():
            cursor = self.db.execute(
                "UPDATE escrows SET type = ?, updated_at = ? WHERE id = ?",
                (str(body["type"]), time.time(), escrow_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundException(escrow_id)
            return self.find_one(escrow_id, with_related=True)

    def destroy(self, escrow_id: int) -> None:
        """Delete an escrow and its ratio. Raises NotFoundException if absent."""
        if not fits_sqlite_int(escrow_id):
            raise NotFoundException(escrow_id)
        with self.transaction():
            cursor = self.db.execute("DELETE FROM escrows WHERE id = ?", (escrow_id,))
            if cursor.rowcount == 0:
                raise NotFoundException(escrow_id)

    # --- Ratios ---

    def find_ratio(self, ratio_id: int) -> EscrowRatio | None:
        if not fits_sqlite_int(ratio_id):
            return None
        with self._lock:
            row = self.db.execute("SELECT * FROM escrow_ratios WHERE id = ?", (ratio_id,)).fetchone()
        return self._row_to_ratio(row) if row else None

    def find_ratio_by_escrow(self, escrow_id: int) -> EscrowRatio | None:
        """Most recent ratio row for an escrow."""
        if not fits_sqlite_int(escrow_id):
            return None
        with self._lock:
            row = self.db.execute(
                "SELECT * FROM escrow_ratios WHERE escrow_id = ? ORDER BY id DESC LIMIT 1",
                (escrow_id,),
            ).fetchone()
        return self._row_to_ratio(row) if row else None

    def count_ratios(self, escrow_id: int) -> int:
        if not fits_sqlite_int(escrow_id):
            return 0
        with self._lock:
            row = self.db.execute(
                "SELECT COUNT(*) AS n FROM escrow_ratios WHERE escrow_id = ?", (escrow_id,),
            ).fetchone()
        return row["n"]

    def insert_ratio(self, escrow_id: int, buyer: int, seller: int) -> EscrowRatio:
        if not fits_sqlite_int(escrow_id):
            raise NotFoundException(escrow_id)
        if not (fits_sqlite_int(buyer) and fits_sqlite_int(seller)):
            raise ValueError(f"Ratio out of range: buyer={buyer}, seller={seller}")
        now = time.time()
        with self.transaction():
            try:
                cursor = self.db.execute(
                    "INSERT INTO escrow_ratios (escrow_id, buyer, seller, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (escrow_id, buyer, seller, now, now),
                )
            except sqlite3.IntegrityError:
                # FK violation: the escrow is gone
                raise NotFoundException(escrow_id)
            return self.find_ratio(cursor.lastrowid)

    def delete_ratio(self, ratio_id: int) -> bool:
        if not fits_sqlite_int(ratio_id):
            return False
        with self.transaction():
            cursor = self.db.execute("DELETE FROM escrow_ratios WHERE id = ?", (ratio_id,))
            return cursor.rowcount > 0

    def _row_to_escrow(self, row) -> Escrow:
        return Escrow(
            id=row["id"],
            type=row["type"],
            payment_information_id=row["payment_information_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_ratio(self, row) -> EscrowRatio:
        return EscrowRatio(
            id=row["id"],
            escrow_id=row["escrow_id"],
            buyer=row["buyer"],
            seller=row["seller"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def close(self):
        self.db.close()
