import os
import sqlite3
import time
from pathlib import Path
from typing import Dict, Optional

from languages import SOURCE_LANG


def get_db_path() -> str:
    db_path = os.getenv("DB_PATH")
    if db_path:
        return db_path
    return str(Path("./data") / "store.db")


def ensure_db_dir(db_path: Optional[str] = None) -> str:
    path = Path(db_path or get_db_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    return str(path)


def get_conn(db_path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path or get_db_path(), check_same_thread=False, timeout=5.0)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode=WAL")
    except sqlite3.Error:
        pass
    try:
        conn.execute("PRAGMA busy_timeout=3000")
    except sqlite3.Error:
        pass
    return conn


def init_db(db_path: Optional[str] = None) -> None:
    conn = get_conn(ensure_db_dir(db_path))
    try:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS state_kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                telegram_id INTEGER PRIMARY KEY,
                language_code TEXT
            )
            """
        )
        cur = conn.execute("PRAGMA table_info(users)")
        cols = {row["name"] for row in cur.fetchall()}
        if "language_code" not in cols:
            conn.execute("ALTER TABLE users ADD COLUMN language_code TEXT")
        conn.commit()
    finally:
        conn.close()


def get_state(key: str, default: Optional[str] = None, *, db_path: Optional[str] = None) -> Optional[str]:
    conn = get_conn(db_path)
    try:
        cur = conn.execute("SELECT value FROM state_kv WHERE key = ?", (key,))
        row = cur.fetchone()
        return str(row["value"]) if row is not None else default
    finally:
        conn.close()


def set_state(key: str, value: str, *, db_path: Optional[str] = None) -> None:
    now = int(time.time())
    conn = get_conn(db_path)
    try:
        conn.execute(
            """
            INSERT INTO state_kv (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key)
            DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, now),
        )
        conn.commit()
    finally:
        conn.close()


def get_user_language(telegram_id: int, *, db_path: Optional[str] = None) -> str:
    conn = get_conn(db_path)
    try:
        cur = conn.execute(
            "SELECT language_code FROM users WHERE telegram_id = ?",
            (telegram_id,),
        )
        row = cur.fetchone()
    except sqlite3.Error:
        return SOURCE_LANG
    finally:
        conn.close()
    if row is None or not row["language_code"]:
        return SOURCE_LANG
    return str(row["language_code"])


def count_users_by_language(*, db_path: Optional[str] = None) -> Dict[str, int]:
    conn = get_conn(db_path)
    try:
        cur = conn.execute(
            """
            SELECT COALESCE(language_code, ?) AS lang, COUNT(*) AS total
            FROM users
            GROUP BY lang
            ORDER BY total DESC
            """,
            (SOURCE_LANG,),
        )
        return {str(row["lang"]): int(row["total"]) for row in cur.fetchall()}
    except sqlite3.Error:
        return {}
    finally:
        conn.close()
