# -*- coding: utf-8 -*-
"""Key-value persistence — string keys to JSON-encoded string values.

Stores expose plain get/set plus an atomic read-modify-write over one or
more keys (`update_many_json`). Readers get `None` for "no data yet" and a
`CorruptValueError` for "data present but unreadable".
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple

from ..app_db import db_conn, db_transaction

logger = logging.getLogger(__name__)

# fn(current_values) -> (values_to_write or None, result)
UpdateFn = Callable[[Dict[str, Any]], Tuple[Optional[Dict[str, Any]], Any]]


class CorruptValueError(ValueError):
    """A value is stored under `key` but cannot be decoded."""

    def __init__(self, key: str, raw: str) -> None:
        super().__init__(f"Stored value for {key!r} is not valid JSON")
        self.key = key
        self.raw = raw


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _decode(key: str, raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise CorruptValueError(key, raw) from exc


def _decode_or_default(key: str, raw: Optional[str], default: Any) -> Any:
    try:
        value = _decode(key, raw)
    except CorruptValueError:
        logger.warning("Treating corrupt value for key %s as empty", key)
        value = None
    return copy.deepcopy(default) if value is None else value


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def get_json(self, key: str) -> Any: ...

    def set_json(self, key: str, value: Any) -> None: ...

    def update_json(self, key: str, fn: Callable[[Any], Tuple[Any, Any]], default: Any = None) -> Any: ...

    def update_many_json(
        self, keys: Sequence[str], fn: UpdateFn, defaults: Optional[Dict[str, Any]] = None
    ) -> Any: ...


class _JsonMixin:
    """JSON helpers shared by concrete stores (they provide get/set/update_many_json)."""

    def get_json(self, key: str) -> Any:
        """Return the decoded value, None when absent; raises CorruptValueError."""
        return _decode(key, self.get(key))  # type: ignore[attr-defined]

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, _encode(value))  # type: ignore[attr-defined]

    def update_json(self, key: str, fn: Callable[[Any], Tuple[Any, Any]], default: Any = None) -> Any:
        """Atomically apply `fn(current) -> (new_value, result)` and return result.

        Absent or corrupt values reach `fn` as a copy of `default`. Returning
        `new_value is None` leaves the stored value untouched.
        """

        def _single(values: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Any]:
            new_value, result = fn(values[key])
            return (None if new_value is None else {key: new_value}), result

        return self.update_many_json([key], _single, {key: default})  # type: ignore[attr-defined]


class MemoryKeyValueStore(_JsonMixin):
    """In-process store. Handy for tests and single-process tools."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def update_many_json(
        self, keys: Sequence[str], fn: UpdateFn, defaults: Optional[Dict[str, Any]] = None
    ) -> Any:
        defaults = defaults or {}
        with self._lock:
            current = {k: _decode_or_default(k, self._data.get(k), defaults.get(k)) for k in keys}
            updates, result = fn(current)
            for k, v in (updates or {}).items():
                self._data[k] = _encode(v)
            return result


class SqliteKeyValueStore(_JsonMixin):
    """Store backed by the `kv_store` table, scoped to one namespace (usually a user id)."""

    def __init__(self, db_path: Path, namespace: str) -> None:
        self.db_path = db_path
        self.namespace = namespace

    def get(self, key: str) -> Optional[str]:
        with db_conn(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
            return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with db_conn(self.db_path) as conn:
            _upsert(conn, self.namespace, key, value)

    def delete(self, key: str) -> None:
        with db_conn(self.db_path) as conn:
            conn.execute(
                "DELETE FROM kv_store WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            )

    def update_many_json(
        self, keys: Sequence[str], fn: UpdateFn, defaults: Optional[Dict[str, Any]] = None
    ) -> Any:
        defaults = defaults or {}
        with db_transaction(self.db_path) as conn:
            current: Dict[str, Any] = {}
            for k in keys:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE namespace = ? AND key = ?",
                    (self.namespace, k),
                ).fetchone()
                current[k] = _decode_or_default(k, row["value"] if row else None, defaults.get(k))
            updates, result = fn(current)
            for k, v in (updates or {}).items():
                _upsert(conn, self.namespace, k, _encode(v))
            return result


def _upsert(conn: Any, namespace: str, key: str, value: str) -> None:
    conn.execute(
        """
        INSERT INTO kv_store (namespace, key, value, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(namespace, key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (namespace, key, value, _utc_now()),
    )
