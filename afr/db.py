from __future__ import annotations

import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from .settings import settings


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _resolve_db_path() -> str:
    """Return a file path usable by sqlite.

    If the configured path is a directory (e.g. a volume mounted where a
    file was expected), the DB file is placed inside it.
    """

    p = os.path.abspath(settings.db_path)

    if os.path.isdir(p):
        p = os.path.join(p, "afr.db")

    parent = os.path.dirname(p)
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)

    return p


def connect() -> sqlite3.Connection:
    conn = sqlite3.connect(_resolve_db_path(), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Create tables if they do not exist."""
    with connect() as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS events (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              ts TEXT NOT NULL,
              level TEXT NOT NULL,
              fleet TEXT,
              node TEXT,
              pod TEXT,
              message TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_events_ts ON events(ts);
            CREATE INDEX IF NOT EXISTS idx_events_fleet ON events(fleet);
            """
        )


def log_event(
    level: str,
    message: str,
    fleet: str | None = None,
    node: str | None = None,
    pod: str | None = None,
) -> None:
    with connect() as conn:
        conn.execute(
            "INSERT INTO events (ts, level, fleet, node, pod, message) VALUES (?, ?, ?, ?, ?, ?)",
            (utc_now(), level.upper(), fleet, node, pod, message),
        )


def latest_events(limit: int = 100, fleet: str | None = None) -> list[dict[str, Any]]:
    with connect() as conn:
        if fleet:
            rows = conn.execute(
                "SELECT * FROM events WHERE fleet=? ORDER BY id DESC LIMIT ?", (fleet, limit)
            ).fetchall()
        else:
            rows = conn.execute("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,)).fetchall()
        return [dict(r) for r in rows]


def count_events(level: str | None = None, fleet: str | None = None, contains: str | None = None) -> int:
    clauses: list[str] = []
    params: list[Any] = []
    if level:
        clauses.append("level=?")
        params.append(level.upper())
    if fleet:
        clauses.append("fleet=?")
        params.append(fleet)
    if contains:
        clauses.append("message LIKE ?")
        params.append(f"%{contains}%")
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    with connect() as conn:
        row = conn.execute(f"SELECT COUNT(*) AS n FROM events{where}", params).fetchone()
        return int(row["n"])
