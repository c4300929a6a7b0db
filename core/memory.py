# core/memory.py
from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import duckdb

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("STORE_PATH") or str(
    Path(__file__).resolve().parent.parent / "portfolio_store.duckdb"
)

# Characters the realtime store refuses inside a path segment.
FORBIDDEN_SEGMENT_CHARS = frozenset(".#$[]")

Watcher = Callable[[Any], None]


class StoreError(Exception):
    """Backend failure while reading or writing the store."""


class InvalidPathError(ValueError):
    pass


def split_path(path: str) -> List[str]:
    segments = (path or "").strip("/").split("/")
    if not segments or any(not s for s in segments):
        raise InvalidPathError(f"Invalid store path: {path!r}")
    for s in segments:
        bad = FORBIDDEN_SEGMENT_CHARS.intersection(s)
        if bad:
            raise InvalidPathError(
                f"Path segment {s!r} contains forbidden characters: {''.join(sorted(bad))}"
            )
    return segments


def _related(a: str, b: str) -> bool:
    return a == b or a.startswith(b + "/") or b.startswith(a + "/")


class KeyValueStore:
    """
    Slash-addressed JSON document store on top of a single DuckDB table.

    A value written at a path owns the whole subtree below it: no stored
    row is ever an ancestor of another stored row. Writes below a stored
    object are folded into that object, writes above it replace it.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH
        self._conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._watchers: Dict[str, List[Watcher]] = {}

    # --------------------------------------------------------
    # connection
    # --------------------------------------------------------
    @property
    def conn(self) -> duckdb.DuckDBPyConnection:
        if self._conn is None:
            try:
                self._conn = duckdb.connect(self.db_path)
                _init_tables(self._conn)
            except duckdb.Error as e:
                self._conn = None
                raise StoreError(f"Could not open store at {self.db_path}: {e}") from e
        return self._conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # --------------------------------------------------------
    # low level
    # --------------------------------------------------------
    def _fetch(self, key: str) -> Optional[Any]:
        row = self.conn.execute("SELECT value FROM kv WHERE path = ?", [key]).fetchone()
        return json.loads(row[0]) if row else None

    def _stored_ancestor(self, segments: List[str]):
        ancestors = ["/".join(segments[:i]) for i in range(1, len(segments))]
        if not ancestors:
            return None
        placeholders = ", ".join("?" for _ in ancestors)
        row = self.conn.execute(
            f"SELECT path, value FROM kv WHERE path IN ({placeholders})", ancestors
        ).fetchone()
        if row is None:
            return None
        return row[0], json.loads(row[1])

    def _write(self, key: str, value: Any) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO kv VALUES (?, ?, ?)",
            [key, json.dumps(value, ensure_ascii=False), _utcnow()],
        )

    def _delete_subtree(self, key: str) -> None:
        self.conn.execute(
            "DELETE FROM kv WHERE path = ? OR starts_with(path, ?)", [key, key + "/"]
        )

    # --------------------------------------------------------
    # public API
    # --------------------------------------------------------
    def get(self, path: str) -> Any:
        segments = split_path(path)
        key = "/".join(segments)
        with self._lock:
            try:
                value = self._fetch(key)
                if value is not None:
                    return value

                found = self._stored_ancestor(segments)
                if found is not None:
                    anc_path, node = found
                    for seg in segments[len(anc_path.split("/")):]:
                        if not isinstance(node, dict) or seg not in node:
                            return None
                        node = node[seg]
                    return node

                rows = self.conn.execute(
                    "SELECT path, value FROM kv WHERE starts_with(path, ?)", [key + "/"]
                ).fetchall()
            except duckdb.Error as e:
                raise StoreError(f"Read failed for {key}: {e}") from e

        if not rows:
            return None
        tree: Dict[str, Any] = {}
        for row_path, raw in rows:
            rest = row_path[len(key) + 1:].split("/")
            node = tree
            for seg in rest[:-1]:
                node = node.setdefault(seg, {})
            node[rest[-1]] = json.loads(raw)
        return tree

    def set(self, path: str, value: Any) -> None:
        if value is None:
            self.remove(path)
            return
        segments = split_path(path)
        key = "/".join(segments)
        with self._lock:
            try:
                found = self._stored_ancestor(segments)
                if found is not None:
                    anc_path, doc = found
                    rest = segments[len(anc_path.split("/")):]
                    if not isinstance(doc, dict):
                        doc = {}
                    node = doc
                    for seg in rest[:-1]:
                        child = node.get(seg)
                        if not isinstance(child, dict):
                            child = node[seg] = {}
                        node = child
                    node[rest[-1]] = value
                    self._write(anc_path, doc)
                else:
                    self._delete_subtree(key)
                    self._write(key, value)
            except duckdb.Error as e:
                raise StoreError(f"Write failed for {key}: {e}") from e
        self._notify(key)

    def remove(self, path: str) -> None:
        segments = split_path(path)
        key = "/".join(segments)
        with self._lock:
            try:
                found = self._stored_ancestor(segments)
                if found is not None:
                    anc_path, doc = found
                    node = doc
                    rest = segments[len(anc_path.split("/")):]
                    for seg in rest[:-1]:
                        node = node.get(seg) if isinstance(node, dict) else None
                    if isinstance(node, dict) and rest[-1] in node:
                        del node[rest[-1]]
                        self._write(anc_path, doc)
                else:
                    self._delete_subtree(key)
            except duckdb.Error as e:
                raise StoreError(f"Delete failed for {key}: {e}") from e
        self._notify(key)

    def watch(self, path: str, callback: Watcher) -> Callable[[], None]:
        """
        Call `callback` with the current value at `path`, then again after
        every write touching it. Returns a function that stops watching.
        """
        key = "/".join(split_path(path))
        with self._lock:
            self._watchers.setdefault(key, []).append(callback)
        callback(self.get(key))

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._watchers.get(key, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._watchers.pop(key, None)

        return unsubscribe

    def _notify(self, changed: str) -> None:
        with self._lock:
            targets = [
                (watched, list(callbacks))
                for watched, callbacks in self._watchers.items()
                if _related(watched, changed)
            ]
        for watched, callbacks in targets:
            # The write is already committed; a failed re-read only skips the watchers.
            try:
                value = self.get(watched)
            except StoreError:
                logger.exception("Could not re-read %s for watchers", watched)
                continue
            for cb in callbacks:
                try:
                    cb(value)
                except Exception:
                    logger.exception("Watcher for %s failed", watched)


def _init_tables(conn):
    conn.execute("""
        CREATE TABLE IF NOT EXISTS kv (
            path TEXT PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMP
        )
    """)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    global _store
    if _store is None:
        _store = KeyValueStore()
    return _store
