from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import requests

import config
from models import Cabinet, LibraryEntry, decode_cabinets, decode_library, encode_all

logger = logging.getLogger(__name__)


class RemoteStoreError(Exception):
    """Raised when the remote document store cannot be read or written."""


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


class LocalSnapshotStore:
    """SQLite-backed key/value blobs holding the last-known library on this device."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or config.local_db_path())
        self._lock = threading.Lock()
        self._conn = _connect(self.db_path)
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS snapshots (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );
                """
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def get_raw(self, key: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute("SELECT value FROM snapshots WHERE key = ?;", (key,)).fetchone()
        return row["value"] if row else None

    def set_raw(self, key: str, value: str) -> None:
        with self._lock, self._conn:
            self._upsert(key, value)

    def _upsert(self, key: str, value: str) -> None:
        self._conn.execute(
            """
            INSERT INTO snapshots (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = CURRENT_TIMESTAMP;
            """,
            (key, value),
        )

    def _read_list(self, key: str) -> Any:
        raw = self.get_raw(key)
        if not raw:
            return []
        try:
            return json.loads(raw)
        except ValueError as exc:
            logger.error("Local snapshot %s is corrupt, ignoring it: %s", key, exc)
            return []

    def read_library(self) -> List[LibraryEntry]:
        return decode_library(self._read_list(config.LIBRARY_KEY))

    def read_cabinets(self) -> List[Cabinet]:
        return decode_cabinets(self._read_list(config.CABINETS_KEY))

    def write(self, library: Sequence[LibraryEntry], cabinets: Sequence[Cabinet]) -> None:
        library_blob = json.dumps(encode_all(library), ensure_ascii=False)
        cabinets_blob = json.dumps(encode_all(cabinets), ensure_ascii=False)
        with self._lock, self._conn:
            self._upsert(config.LIBRARY_KEY, library_blob)
            self._upsert(config.CABINETS_KEY, cabinets_blob)


class RemoteDocumentStore:
    """One document per user identity, written with merge semantics."""

    def get_document(self, uid: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set_document(self, uid: str, fields: Dict[str, Any], *, merge: bool = True) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class SqliteDocumentStore(RemoteDocumentStore):
    collection = "libraries"

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or config.remote_db_path())
        self._lock = threading.Lock()
        self._conn = _connect(self.db_path)
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, doc_id)
                );
                """
            )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _load(self, uid: str) -> Optional[Dict[str, Any]]:
        row = self._conn.execute(
            "SELECT body FROM documents WHERE collection = ? AND doc_id = ?;",
            (self.collection, uid),
        ).fetchone()
        if row is None:
            return None
        body = json.loads(row["body"])
        if not isinstance(body, dict):
            raise ValueError("document body is not an object")
        return body

    def get_document(self, uid: str) -> Optional[Dict[str, Any]]:
        try:
            with self._lock:
                return self._load(uid)
        except (sqlite3.Error, ValueError) as exc:
            raise RemoteStoreError(f"Unable to read document {uid}: {exc}") from exc

    def set_document(self, uid: str, fields: Dict[str, Any], *, merge: bool = True) -> None:
        try:
            with self._lock, self._conn:
                body: Dict[str, Any] = {}
                if merge:
                    body = self._load(uid) or {}
                body.update(fields)
                self._conn.execute(
                    """
                    INSERT INTO documents (collection, doc_id, body) VALUES (?, ?, ?)
                    ON CONFLICT(collection, doc_id) DO UPDATE SET
                        body = excluded.body,
                        updated_at = CURRENT_TIMESTAMP;
                    """,
                    (self.collection, uid, json.dumps(body, ensure_ascii=False)),
                )
        except (sqlite3.Error, ValueError) as exc:
            raise RemoteStoreError(f"Unable to write document {uid}: {exc}") from exc


class HttpDocumentStore(RemoteDocumentStore):
    """Client for a REST document service exposing ``/libraries/{uid}``."""

    def __init__(self, base_url: str, *, timeout: Optional[float] = None, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or config.http_timeout()
        self._session = requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, uid: str) -> str:
        return f"{self.base_url}/libraries/{uid}"

    def close(self) -> None:
        self._session.close()

    def get_document(self, uid: str) -> Optional[Dict[str, Any]]:
        try:
            response = self._session.get(self._url(uid), timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise RemoteStoreError(f"Unable to read document {uid}: {exc}") from exc
        if not isinstance(body, dict):
            raise RemoteStoreError(f"Document {uid} is not an object")
        return body

    def set_document(self, uid: str, fields: Dict[str, Any], *, merge: bool = True) -> None:
        method = self._session.patch if merge else self._session.put
        try:
            response = method(self._url(uid), json=fields, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise RemoteStoreError(f"Unable to write document {uid}: {exc}") from exc


def open_remote_store() -> RemoteDocumentStore:
    url = config.remote_url()
    if url:
        logger.info("Using remote document service at %s", url)
        return HttpDocumentStore(url)
    return SqliteDocumentStore()
