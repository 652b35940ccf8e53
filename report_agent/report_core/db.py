import sqlite3
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

SQLITE_BUSY_TIMEOUT_MS = 5000
SQLITE_CONNECT_TIMEOUT_SECONDS = SQLITE_BUSY_TIMEOUT_MS / 1000


CREATE_TABLE_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS user_phones (
        telegram_id INTEGER PRIMARY KEY,
        phone_number TEXT NOT NULL,
        original_phone TEXT,
        display_name TEXT,
        language_code TEXT NOT NULL DEFAULT 'uz',
        first_name TEXT,
        last_name TEXT,
        username TEXT,
        registry_row INTEGER,
        is_registered INTEGER NOT NULL DEFAULT 1,
        registered_at TEXT NOT NULL,
        updated_at TEXT DEFAULT CURRENT_TIMESTAMP
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS process_locks (
        name TEXT PRIMARY KEY,
        owner TEXT NOT NULL,
        acquired_at TEXT NOT NULL,
        expires_at REAL NOT NULL
    );
    """,
]

CREATE_INDEX_STATEMENTS = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_user_phones_phone ON user_phones(phone_number);",
    "CREATE INDEX IF NOT EXISTS idx_user_phones_registered ON user_phones(is_registered, registered_at);",
]


@dataclass
class RegisteredUser:
    telegram_id: int
    phone_number: str
    display_name: str
    language_code: str
    registered_at: str
    original_phone: Optional[str] = None
    registry_row: Optional[int] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "telegram_id": self.telegram_id,
            "phone_number": self.phone_number,
            "display_name": self.display_name,
            "language_code": self.language_code,
            "registered_at": self.registered_at,
            "original_phone": self.original_phone,
            "registry_row": self.registry_row,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "username": self.username,
        }


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS};")
    conn.execute("PRAGMA journal_mode = WAL;")
    conn.execute("PRAGMA synchronous = NORMAL;")


def init_db(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        _apply_pragmas(conn)
        for stmt in CREATE_TABLE_STATEMENTS:
            conn.execute(stmt)
        for stmt in CREATE_INDEX_STATEMENTS:
            conn.execute(stmt)
        conn.commit()


def get_connection(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(
        db_path,
        check_same_thread=False,
        timeout=SQLITE_CONNECT_TIMEOUT_SECONDS,
    )
    _apply_pragmas(conn)
    conn.row_factory = sqlite3.Row
    return conn


def _row_to_user(row: Optional[sqlite3.Row]) -> Optional[RegisteredUser]:
    if row is None:
        return None
    return RegisteredUser(
        telegram_id=int(row["telegram_id"]),
        phone_number=row["phone_number"],
        display_name=row["display_name"] or "",
        language_code=row["language_code"] or "uz",
        registered_at=row["registered_at"],
        original_phone=row["original_phone"],
        registry_row=row["registry_row"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        username=row["username"],
    )


def get_user_by_telegram_id(conn: sqlite3.Connection, telegram_id: int) -> Optional[RegisteredUser]:
    cursor = conn.execute(
        "SELECT * FROM user_phones WHERE telegram_id = ? AND is_registered = 1",
        (telegram_id,),
    )
    return _row_to_user(cursor.fetchone())


def get_user_by_phone(conn: sqlite3.Connection, phone_number: str) -> Optional[RegisteredUser]:
    cursor = conn.execute(
        "SELECT * FROM user_phones WHERE phone_number = ? AND is_registered = 1",
        (phone_number,),
    )
    return _row_to_user(cursor.fetchone())


def upsert_user_phone(
    conn: sqlite3.Connection,
    telegram_id: int,
    phone_number: str,
    display_name: str = "",
    language_code: str = "uz",
    original_phone: Optional[str] = None,
    registry_row: Optional[int] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    username: Optional[str] = None,
) -> RegisteredUser:
    registered_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
    # A phone belongs to one chat: re-registering it from another account moves it.
    conn.execute(
        "DELETE FROM user_phones WHERE phone_number = ? AND telegram_id != ?",
        (phone_number, telegram_id),
    )
    conn.execute(
        """
        INSERT INTO user_phones (
            telegram_id, phone_number, original_phone, display_name, language_code,
            first_name, last_name, username, registry_row, is_registered, registered_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
        ON CONFLICT(telegram_id) DO UPDATE SET
            phone_number = excluded.phone_number,
            original_phone = excluded.original_phone,
            display_name = excluded.display_name,
            language_code = excluded.language_code,
            first_name = excluded.first_name,
            last_name = excluded.last_name,
            username = excluded.username,
            registry_row = excluded.registry_row,
            is_registered = 1,
            updated_at = CURRENT_TIMESTAMP
        """,
        (
            telegram_id,
            phone_number,
            original_phone,
            display_name,
            language_code,
            first_name,
            last_name,
            username,
            registry_row,
            registered_at,
        ),
    )
    conn.commit()
    user = get_user_by_telegram_id(conn, telegram_id)
    if user is None:
        raise RuntimeError(f"user_phones row for {telegram_id} disappeared after upsert")
    return user


def update_user_language(conn: sqlite3.Connection, telegram_id: int, language_code: str) -> None:
    conn.execute(
        "UPDATE user_phones SET language_code = ?, updated_at = CURRENT_TIMESTAMP WHERE telegram_id = ?",
        (language_code, telegram_id),
    )
    conn.commit()


def list_registered_users(conn: sqlite3.Connection) -> List[RegisteredUser]:
    cursor = conn.execute(
        """
        SELECT * FROM user_phones
        WHERE is_registered = 1
        ORDER BY registered_at DESC, telegram_id ASC
        """
    )
    return [user for user in (_row_to_user(row) for row in cursor.fetchall()) if user is not None]


def clear_user_registration(conn: sqlite3.Connection, telegram_id: int) -> int:
    cursor = conn.execute("DELETE FROM user_phones WHERE telegram_id = ?", (telegram_id,))
    conn.commit()
    return int(cursor.rowcount or 0)


def clear_all_registrations(conn: sqlite3.Connection) -> int:
    cursor = conn.execute("DELETE FROM user_phones")
    conn.commit()
    return int(cursor.rowcount or 0)


def try_acquire_process_lock(
    conn: sqlite3.Connection,
    name: str,
    owner: str,
    ttl_seconds: float,
    now_ts: Optional[float] = None,
) -> bool:
    now = time.time() if now_ts is None else now_ts
    acquired_at = datetime.now(timezone.utc).isoformat(timespec="seconds")
    try:
        conn.execute("BEGIN IMMEDIATE")
        # Expired rows belong to crashed holders.
        conn.execute("DELETE FROM process_locks WHERE name = ? AND expires_at < ?", (name, now))
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO process_locks (name, owner, acquired_at, expires_at)
            VALUES (?, ?, ?, ?)
            """,
            (name, owner, acquired_at, now + ttl_seconds),
        )
        acquired = cursor.rowcount == 1
        if not acquired:
            cursor = conn.execute(
                "UPDATE process_locks SET expires_at = ? WHERE name = ? AND owner = ?",
                (now + ttl_seconds, name, owner),
            )
            acquired = cursor.rowcount == 1
        conn.execute("COMMIT")
    except Exception:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.OperationalError:
            pass
        raise
    return acquired


def refresh_process_lock(
    conn: sqlite3.Connection,
    name: str,
    owner: str,
    ttl_seconds: float,
    now_ts: Optional[float] = None,
) -> bool:
    now = time.time() if now_ts is None else now_ts
    cursor = conn.execute(
        "UPDATE process_locks SET expires_at = ? WHERE name = ? AND owner = ?",
        (now + ttl_seconds, name, owner),
    )
    conn.commit()
    return cursor.rowcount == 1


def release_process_lock(conn: sqlite3.Connection, name: str, owner: str) -> bool:
    cursor = conn.execute("DELETE FROM process_locks WHERE name = ? AND owner = ?", (name, owner))
    conn.commit()
    return cursor.rowcount == 1


def get_process_lock_owner(conn: sqlite3.Connection, name: str) -> Optional[str]:
    row = conn.execute("SELECT owner FROM process_locks WHERE name = ?", (name,)).fetchone()
    return str(row["owner"]) if row is not None else None
