"""
Repository pattern for data access.

Handles the account mirror and the stored object catalog.
"""

import sqlite3
from datetime import datetime
from typing import List, Optional

from .db import get_connection
from .models import Account, StoredObject


_OBJECT_COLUMNS = (
    "file_id, owner, cid, name, size, extension, created_at, is_deleted, deleted_at"
)


def initialize_schema(db_path: str = "vault_guard.db") -> None:
    """Create the account and stored_object tables if they don't exist.

    The partial unique index allows at most one live object per owner and
    content address, while tombstoned duplicates may accumulate.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS account (
                address TEXT PRIMARY KEY,
                balance INTEGER,
                consumption INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS stored_object (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                file_id TEXT NOT NULL UNIQUE,
                owner TEXT NOT NULL,
                cid TEXT NOT NULL,
                name TEXT NOT NULL,
                size INTEGER NOT NULL,
                extension TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                is_deleted INTEGER NOT NULL DEFAULT 0,
                deleted_at TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS ix_stored_object_owner ON stored_object (owner)"
        )
        conn.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS ux_stored_object_owner_cid
            ON stored_object (owner, cid) WHERE is_deleted = 0
        """)
        conn.commit()
    finally:
        conn.close()


class AccountRepository:
    """Mirror of per-address ledger fields.

    Writers only ever touch their own address's row, so no cross-row
    coordination is needed.
    """

    def __init__(self, db_path: str = "vault_guard.db"):
        self.db_path = db_path

    def get(self, address: str) -> Optional[Account]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT address, balance, consumption, created_at FROM account WHERE address = ?",
                (address,)
            ).fetchone()
            return _row_to_account(row) if row else None
        finally:
            conn.close()

    def get_or_create(self, address: str) -> Account:
        """Return the mirror row for an address, creating it on first reference.

        New accounts start with zero consumption and an unset balance.
        """
        conn = get_connection(self.db_path)
        try:
            _ensure_account(conn, address)
            conn.commit()
            row = conn.execute(
                "SELECT address, balance, consumption, created_at FROM account WHERE address = ?",
                (address,)
            ).fetchone()
            return _row_to_account(row)
        finally:
            conn.close()

    def set_balance(self, address: str, balance: Optional[int]) -> None:
        self._set_field(address, "balance", balance)

    def set_consumption(self, address: str, consumption: int) -> None:
        self._set_field(address, "consumption", consumption)

    def find_consuming(self) -> List[Account]:
        """Accounts whose mirrored consumption is above zero."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "SELECT address, balance, consumption, created_at FROM account "
                "WHERE consumption > 0 ORDER BY address"
            )
            return [_row_to_account(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def _set_field(self, address: str, column: str, value: Optional[int]) -> None:
        conn = get_connection(self.db_path)
        try:
            _ensure_account(conn, address)
            conn.execute(f"UPDATE account SET {column} = ? WHERE address = ?", (value, address))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class ObjectRepository:
    """Catalog of stored objects keyed by file id and by owner + content address."""

    def __init__(self, db_path: str = "vault_guard.db"):
        self.db_path = db_path

    def insert(self, obj: StoredObject) -> bool:
        """Insert a catalog entry unless the owner already has a live copy of the cid.

        Returns:
            True if the row was inserted, False if a live duplicate exists

        Raises:
            sqlite3.IntegrityError: For any other constraint violation
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute(f"""
                INSERT INTO stored_object ({_OBJECT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                obj.file_id,
                obj.owner,
                obj.cid,
                obj.name,
                obj.size,
                obj.extension,
                obj.created_at.isoformat(),
                int(obj.is_deleted),
                obj.deleted_at.isoformat() if obj.deleted_at else None
            ))
            conn.commit()
            return True
        except sqlite3.IntegrityError:
            conn.rollback()
            if self.find_active(obj.owner, obj.cid) is not None:
                return False
            raise
        finally:
            conn.close()

    def get(self, file_id: str) -> Optional[StoredObject]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_OBJECT_COLUMNS} FROM stored_object WHERE file_id = ?",
                (file_id,)
            ).fetchone()
            return _row_to_object(row) if row else None
        finally:
            conn.close()

    def find_active(self, owner: str, cid: str) -> Optional[StoredObject]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_OBJECT_COLUMNS} FROM stored_object "
                "WHERE owner = ? AND cid = ? AND is_deleted = 0",
                (owner, cid)
            ).fetchone()
            return _row_to_object(row) if row else None
        finally:
            conn.close()

    def list_active(self, owner: str) -> List[StoredObject]:
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"SELECT {_OBJECT_COLUMNS} FROM stored_object "
                "WHERE owner = ? AND is_deleted = 0 ORDER BY created_at",
                (owner,)
            )
            return [_row_to_object(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def mark_deleted(self, file_id: str, deleted_at: Optional[datetime] = None) -> bool:
        """Tombstone a single object.

        Returns:
            True if the object was live and is now deleted
        """
        when = deleted_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE stored_object SET is_deleted = 1, deleted_at = ? "
                "WHERE file_id = ? AND is_deleted = 0",
                (when.isoformat(), file_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    def restore(self, file_id: str) -> bool:
        """Undo a tombstone.

        Returns:
            True if the object was deleted and is live again

        Raises:
            sqlite3.IntegrityError: If the owner already has a live copy of the cid
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE stored_object SET is_deleted = 0, deleted_at = NULL "
                "WHERE file_id = ? AND is_deleted = 1",
                (file_id,)
            )
            conn.commit()
            return cursor.rowcount > 0
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def tombstone_owner(self, owner: str, deleted_at: Optional[datetime] = None) -> List[StoredObject]:
        """Tombstone every live object of an owner in one transaction.

        Returns:
            The objects that were live before the call, as they were
        """
        when = deleted_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                f"SELECT {_OBJECT_COLUMNS} FROM stored_object "
                "WHERE owner = ? AND is_deleted = 0",
                (owner,)
            )
            objects = [_row_to_object(row) for row in cursor.fetchall()]
            conn.execute(
                "UPDATE stored_object SET is_deleted = 1, deleted_at = ? "
                "WHERE owner = ? AND is_deleted = 0",
                (when.isoformat(), owner)
            )
            conn.commit()
            return objects
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def _ensure_account(conn: sqlite3.Connection, address: str) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO account (address, balance, consumption, created_at) "
        "VALUES (?, NULL, 0, ?)",
        (address, datetime.now().isoformat())
    )


def _row_to_account(row) -> Account:
    return Account(
        address=row[0],
        balance=row[1],
        consumption=row[2],
        created_at=datetime.fromisoformat(row[3])
    )


def _row_to_object(row) -> StoredObject:
    return StoredObject(
        file_id=row[0],
        owner=row[1],
        cid=row[2],
        name=row[3],
        size=row[4],
        extension=row[5],
        created_at=datetime.fromisoformat(row[6]),
        is_deleted=bool(row[7]),
        deleted_at=datetime.fromisoformat(row[8]) if row[8] else None
    )
