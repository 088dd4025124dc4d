# -*- coding: utf-8 -*-
"""Key-value persistence used by per-user ledgers."""

from .store import CorruptValueError, KeyValueStore, MemoryKeyValueStore, SqliteKeyValueStore

__all__ = ["CorruptValueError", "KeyValueStore", "MemoryKeyValueStore", "SqliteKeyValueStore"]
