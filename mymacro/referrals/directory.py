# -*- coding: utf-8 -*-
"""Referrals — code → referrer lookup shared across users."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Protocol

from ..app_db import db_conn


class ReferrerDirectory(Protocol):
    def register(self, code: str, user_id: str) -> None: ...

    def lookup(self, code: str) -> Optional[str]: ...


class MemoryReferrerDirectory:
    def __init__(self) -> None:
        self._codes: Dict[str, str] = {}
        self._lock = threading.Lock()

    def register(self, code: str, user_id: str) -> None:
        with self._lock:
            owner = self._codes.setdefault(code.lower(), user_id)
        if owner != user_id:
            raise ValueError(f"Referral code already taken: {code}")

    def lookup(self, code: str) -> Optional[str]:
        with self._lock:
            return self._codes.get(code.lower())


class SqliteReferrerDirectory:
    """Backed by the `referral_codes` table (codes compare case-insensitively)."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def register(self, code: str, user_id: str) -> None:
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        with db_conn(self.db_path) as conn:
            try:
                conn.execute(
                    "INSERT INTO referral_codes (code, user_id, created_at) VALUES (?, ?, ?)",
                    (code, user_id, now),
                )
            except sqlite3.IntegrityError as exc:
                row = conn.execute("SELECT user_id FROM referral_codes WHERE code = ?", (code,)).fetchone()
                if row and row["user_id"] == user_id:
                    return
                raise ValueError(f"Referral code already taken: {code}") from exc

    def lookup(self, code: str) -> Optional[str]:
        with db_conn(self.db_path) as conn:
            row = conn.execute("SELECT user_id FROM referral_codes WHERE code = ?", (code,)).fetchone()
            return row["user_id"] if row else None
